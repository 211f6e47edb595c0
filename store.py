"""
In-memory ledger tables and the transaction boundary around them.

Every state-mutating operation runs inside ``LedgerStore.transaction()`` and
changes the tables through ``write``, ``touch``, ``append`` and ``bump``.
Inside a transaction each of those records how to undo itself; if the body
raises, the undo log is replayed newest-first and buffered events are
dropped, so a failed operation leaves no trace. Only the entries an
operation touches are copied. Events are published to the bus only after
the outermost transaction commits.
"""
import copy
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from events import EventBus
from schemas import Charity, DonationRecord, LedgerEvent, ReputationCredential

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_address(value: Optional[str]) -> Optional[str]:
    """Canonical form of an identity, or None for the null identity."""
    if value is None:
        return None
    value = str(value).strip().lower()
    if not value or value == ZERO_ADDRESS:
        return None
    return value


class LedgerStore:
    def __init__(self, events: Optional[EventBus] = None):
        self.events = events or EventBus()

        # Charity registry
        self.charities: Dict[str, Charity] = {}
        self.contributions: Dict[Tuple[str, str], int] = {}

        # Donation ledger
        self.donations: Dict[int, DonationRecord] = {}
        self.charity_donations: Dict[str, List[int]] = {}
        self.donor_donations: Dict[str, List[int]] = {}
        self.next_donation_id = 0

        # Credential issuer
        self.credentials: Dict[int, ReputationCredential] = {}
        self.credential_by_donor: Dict[str, int] = {}
        self.credential_owners: Dict[int, str] = {}
        self.next_credential_id = 1

        # Token support
        self.token_support: Dict[str, bool] = {}

        self._depth = 0
        self._undo: List[Callable[[], None]] = []
        self._pending: List[LedgerEvent] = []

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # Journaled mutations

    def touch(self, table: str, key: Hashable) -> None:
        """Remember the current entry so in-place changes to it can be undone."""
        if not self._depth:
            return
        entries = getattr(self, table)
        if key in entries:
            saved = copy.deepcopy(entries[key])
            self._undo.append(lambda: entries.__setitem__(key, saved))
        else:
            self._undo.append(lambda: entries.pop(key, None))

    def write(self, table: str, key: Hashable, value: Any) -> None:
        self.touch(table, key)
        getattr(self, table)[key] = value

    def delete(self, table: str, key: Hashable) -> None:
        self.touch(table, key)
        getattr(self, table).pop(key, None)

    def append(self, table: str, key: Hashable, item: Any) -> None:
        entries = getattr(self, table)
        if key not in entries:
            self.write(table, key, [item])
            return
        items = entries[key]
        items.append(item)
        if self._depth:
            self._undo.append(items.pop)

    def bump(self, counter: str) -> int:
        """Return the counter's current value and advance it by one."""
        value = getattr(self, counter)
        setattr(self, counter, value + 1)
        if self._depth:
            self._undo.append(lambda: setattr(self, counter, value))
        return value

    @contextmanager
    def transaction(self):
        if self._depth:
            # nested: joins the enclosing transaction
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
        except BaseException:
            undo, self._undo = self._undo, []
            for step in reversed(undo):
                step()
            dropped = len(self._pending)
            self._pending = []
            logger.debug("Transaction rolled back, %d changes undone, %d buffered events dropped", len(undo), dropped)
            raise
        finally:
            self._depth = 0

        self._undo = []
        pending, self._pending = self._pending, []
        for event in pending:
            self.events.publish(event)

    def emit(self, event: LedgerEvent) -> None:
        if self._depth:
            self._pending.append(event)
        else:
            self.events.publish(event)
