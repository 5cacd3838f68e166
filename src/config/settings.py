import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: int = int(os.getenv("DB_PORT", "5432"))
    db_name: str = os.getenv("DB_NAME", "journal")
    db_user: str = os.getenv("DB_USER", "journal")
    db_password: str = os.getenv("DB_PASSWORD", "journal_password")
    database_url: str | None = os.getenv("DATABASE_URL")

    price_timeout_seconds: float = float(os.getenv("PRICE_TIMEOUT_SECONDS", "15"))
    price_max_workers: int = int(os.getenv("PRICE_MAX_WORKERS", "4"))
    symbol_suffix: str = os.getenv("SYMBOL_SUFFIX", "")

    import_batch_size: int = int(os.getenv("IMPORT_BATCH_SIZE", "50"))

    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "")
    alert_from_addr: str = os.getenv("ALERT_FROM_ADDR", "")

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )
