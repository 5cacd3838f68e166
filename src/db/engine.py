from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.config.settings import Settings


def get_engine(url: str | None = None):
    url = url or Settings().db_url
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        # one shared connection so every checkout sees the same in-memory db
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True)
