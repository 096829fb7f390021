"""Transactional state for the ledger.

All records, indexes, balances, role assignments and id counters live in a
single ``LedgerState`` document. Writers run inside ``LedgerStore.transaction()``
which serializes them behind one re-entrant lock and works on a deep copy of
the committed state (minus the append-only event log); the copy only replaces
the committed state when the whole call chain returns normally. Readers grab
the committed reference once and therefore always see a complete snapshot.
Ids used by a transaction whose final write to disk fails are not reused.

In-memory collaborators (the origin double, the transfer double) can be
enlisted so their own state is restored when a transaction aborts.
"""

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from pydantic import BaseModel

from .models import Citation, LedgerEvent, Paper, RoyaltyPayment, Withdrawal

logger = logging.getLogger(__name__)

ID_COUNTERS = ("paper_counter", "citation_counter", "payment_counter", "withdrawal_counter")


class LedgerState(BaseModel):
    admin: str = ""
    treasury: Optional[str] = None
    fee_basis_points: int = 0

    # capability value -> principal -> granted
    roles: Dict[str, Dict[str, bool]] = {}

    papers: Dict[int, Paper] = {}
    papers_by_author: Dict[str, List[int]] = {}
    papers_by_keyword: Dict[str, List[int]] = {}

    citations: Dict[int, Citation] = {}
    incoming_citations: Dict[int, List[int]] = {}  # paper is cited
    outgoing_citations: Dict[int, List[int]] = {}  # paper cites

    payments: Dict[int, RoyaltyPayment] = {}
    payments_by_paper: Dict[int, List[int]] = {}
    payments_by_researcher: Dict[str, List[int]] = {}
    balances: Dict[str, int] = {}
    withdrawals: List[Withdrawal] = []

    paper_counter: int = 0
    citation_counter: int = 0
    payment_counter: int = 0
    withdrawal_counter: int = 0

    events: List[LedgerEvent] = []

    def next_id(self, counter: str) -> int:
        value = getattr(self, counter) + 1
        setattr(self, counter, value)
        return value

    def emit(self, name: str, **payload: Any) -> LedgerEvent:
        event = LedgerEvent(name=name, payload=payload)
        self.events.append(event)
        return event


class Transactional(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


class LedgerStore:
    def __init__(self, data_file: Optional[Union[str, Path]] = None):
        self._lock = threading.RLock()
        self._local = threading.local()
        self._participants: List[Transactional] = []
        self._data_file = Path(data_file) if data_file else None
        self._state = self._load()

    def enlist(self, participant: Transactional) -> None:
        """Register a collaborator whose state must roll back with the ledger."""
        with self._lock:
            self._participants.append(participant)

    @property
    def state(self) -> LedgerState:
        """Working copy inside a transaction on this thread, committed state otherwise."""
        working = getattr(self._local, "working", None)
        return working if working is not None else self._state

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "working", None) is not None

    @contextmanager
    def transaction(self) -> Iterator[LedgerState]:
        """Run the enclosed writes atomically.

        The working copy starts with an empty ``events`` list; events emitted
        inside the transaction are appended to the committed log on commit, so
        the log itself is never deep-copied.
        """
        if self.in_transaction:
            # nested call chain joins the enclosing transaction
            yield self._local.working
            return

        with self._lock:
            committed = self._state
            working = committed.model_copy(update={'events': []}).model_copy(deep=True)
            saved = [(p, p.snapshot()) for p in self._participants]
            self._local.working = working
            try:
                try:
                    yield working
                except BaseException:
                    self._restore(saved)
                    raise
                working.events = committed.events + working.events
                if self._data_file is not None:
                    try:
                        self._write(working)
                    except BaseException:
                        # external effects of the body may already be final;
                        # never hand out the ids they used a second time
                        self._restore(saved)
                        self._state = committed.model_copy(
                            update={counter: getattr(working, counter) for counter in ID_COUNTERS}
                        )
                        logger.error("Could not persist ledger state to %s; transaction aborted", self._data_file)
                        raise
                self._state = working
            finally:
                self._local.working = None

    @staticmethod
    def _restore(saved) -> None:
        for participant, snapshot in reversed(saved):
            participant.restore(snapshot)

    def _load(self) -> LedgerState:
        if self._data_file is None or not self._data_file.exists():
            return LedgerState()
        state = LedgerState.model_validate_json(self._data_file.read_text(encoding="utf-8"))
        logger.info(
            "Loaded ledger state from %s (%d papers, %d citations, %d payments)",
            self._data_file, len(state.papers), len(state.citations), len(state.payments),
        )
        return state

    def _write(self, state: LedgerState) -> None:
        self._data_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._data_file.with_suffix(self._data_file.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self._data_file)
