from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Sequence

from src.ledger.matcher import ImportSummary, LotBook, match_executions
from src.ledger.store import LedgerStore
from src.ledger.types import Execution, LedgerMutation

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


def apply_in_batches(
    store: LedgerStore,
    user_id: str,
    mutations: Sequence[LedgerMutation],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """
    Commits mutations in fixed-size batches, in order. Each batch is atomic;
    a failure leaves earlier batches committed and propagates.
    Returns the number of batches committed.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")

    n = 0
    for i in range(0, len(mutations), batch_size):
        store.apply(user_id, mutations[i : i + batch_size])
        n += 1
    return n


class LedgerImporter:
    """
    Imports execution batches into a LedgerStore, one writer per user.

    With `settle=True`, a batch whose sells consumed lots bought in the same
    batch is matched a second time against the now-persisted ledger so those
    lots get closed.
    """

    def __init__(
        self,
        store: LedgerStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        settle: bool = True,
    ) -> None:
        self.store = store
        self.batch_size = int(batch_size)
        self.settle = settle
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[user_id]

    def import_executions(self, user_id: str, executions: Sequence[Execution]) -> ImportSummary:
        with self._user_lock(user_id):
            summary = self._run_once(user_id, executions)

            if self.settle and summary.deferred:
                second = self._run_once(user_id, executions)
                summary.settled = second.mutations
                summary.mutations += second.mutations
                summary.batches += second.batches
                logger.info("settle pass for user=%s closed %d lot(s)", user_id, second.mutations)

        logger.info(
            "import user=%s total=%d applied=%d skipped=%d partial=%d batches=%d",
            user_id,
            summary.total,
            summary.applied,
            summary.skipped,
            summary.partial,
            summary.batches,
        )
        return summary

    def _run_once(self, user_id: str, executions: Sequence[Execution]) -> ImportSummary:
        book = LotBook(self.store.trades(user_id))
        result = match_executions(book, executions)
        result.summary.batches = apply_in_batches(
            self.store, user_id, result.mutations, self.batch_size
        )
        return result.summary

