"""
Charity registry.

A charity moves Unregistered -> Registered (unverified) -> Verified and never
back. Per-donor contributions live in their own (charity, donor) table rather
than inside the charity record.
"""
import logging
from typing import Callable, List, Optional

from errors import (
    AlreadyVerified,
    CharityAlreadyRegistered,
    CharityNotRegistered,
    InvalidAddress,
)
from events import make_event
from schemas import Charity
from store import LedgerStore, normalize_address

logger = logging.getLogger(__name__)


class CharityRegistry:
    def __init__(self, store: LedgerStore, clock: Callable[[], int]):
        self.store = store
        self.clock = clock

    def register(self, caller: str, name: str, description: str, metadata_pointer: str) -> Charity:
        charity_id = normalize_address(caller)
        if charity_id is None:
            raise InvalidAddress("caller must not be empty")
        if charity_id in self.store.charities:
            raise CharityAlreadyRegistered(f"{charity_id} is already registered")
        if not name:
            raise InvalidAddress("name must not be empty")
        if not metadata_pointer:
            raise InvalidAddress("metadata pointer must not be empty")

        now = self.clock()
        charity = Charity(
            charity_id=charity_id,
            name=name,
            description=description or "",
            metadata_pointer=metadata_pointer,
            created_at=now,
            updated_at=now,
        )
        self.store.write("charities", charity_id, charity)
        self.store.emit(make_event("CharityRegistered", charity=charity_id, charity_name=name))
        logger.info("Charity registered: %s (%s)", name, charity_id)
        return charity

    def verify(self, charity_id: str) -> Charity:
        charity = self.require(charity_id)
        if charity.verified:
            raise AlreadyVerified(f"{charity.charity_id} is already verified")
        self.store.touch("charities", charity.charity_id)
        charity.verified = True
        charity.updated_at = self.clock()
        self.store.emit(make_event("CharityVerified", charity=charity.charity_id))
        logger.info("Charity verified: %s", charity.charity_id)
        return charity

    def record_contribution(self, charity_id: str, donor: str, amount: int) -> None:
        charity = self.require(charity_id)
        key = (charity.charity_id, donor)
        previous = self.store.contributions.get(key, 0)
        self.store.touch("charities", charity.charity_id)
        if previous == 0:
            charity.donor_count += 1
        self.store.write("contributions", key, previous + amount)
        charity.total_donations += amount
        charity.updated_at = self.clock()

    def require(self, charity_id: Optional[str]) -> Charity:
        charity = self.get(charity_id)
        if charity is None:
            raise CharityNotRegistered(f"{charity_id} is not registered")
        return charity

    # Lookups

    def get(self, charity_id: Optional[str]) -> Optional[Charity]:
        charity_id = normalize_address(charity_id)
        if charity_id is None:
            return None
        return self.store.charities.get(charity_id)

    def contribution_of(self, charity_id: Optional[str], donor: Optional[str]) -> int:
        key = (normalize_address(charity_id), normalize_address(donor))
        return self.store.contributions.get(key, 0)

    def list_charities(self, verified: Optional[bool] = None) -> List[Charity]:
        items = list(self.store.charities.values())
        if verified is not None:
            items = [c for c in items if c.verified == verified]
        return items
