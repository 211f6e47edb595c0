"""
Reputation credential issuer.

Each donor holds at most one credential. It is minted by the ledger on the
donor's first donation and updated on every later one; its owner never
changes afterwards. Every pathway that could move ownership goes through
``_change_owner``, which rejects any change where both the old and the new
owner are defined.
"""
import logging
from typing import Callable, Optional

import descriptor
from errors import (
    CredentialNotFound,
    InvalidAddress,
    InvalidAmount,
    InvalidMetadata,
    TokenAlreadyMinted,
    TokenNotTransferable,
    Unauthorized,
)
from events import make_event
from schemas import ReputationCredential, Tier
from store import LedgerStore, normalize_address

logger = logging.getLogger(__name__)

# Inclusive lower bounds in base units, highest first
TIER_THRESHOLDS = (
    (10000, Tier.DIAMOND),
    (5000, Tier.PLATINUM),
    (1000, Tier.GOLD),
    (500, Tier.SILVER),
)


def tier_for(total: int) -> Tier:
    for threshold, tier in TIER_THRESHOLDS:
        if total >= threshold:
            return tier
    return Tier.BRONZE


def attempt_ownership_change(previous: Optional[str], new: Optional[str], credential_id: int) -> None:
    if normalize_address(previous) is not None and normalize_address(new) is not None:
        raise TokenNotTransferable(f"credential {credential_id} cannot move from {previous} to {new}")


class ReputationCredentialIssuer:
    def __init__(
        self,
        store: LedgerStore,
        clock: Callable[[], int],
        minter: str,
        name: str = "Donor Reputation",
        symbol: str = "DREP",
    ):
        self.store = store
        self.clock = clock
        self.minter = normalize_address(minter)
        if self.minter is None:
            raise InvalidAddress("minter must not be empty")
        self.name = name
        self.symbol = symbol

    def _require_minter(self, caller: Optional[str]) -> None:
        if normalize_address(caller) != self.minter:
            raise Unauthorized(f"{caller} may not issue credentials")

    def _change_owner(self, credential_id: int, new_owner: Optional[str]) -> None:
        previous = self.store.credential_owners.get(credential_id)
        attempt_ownership_change(previous, new_owner, credential_id)
        new_owner = normalize_address(new_owner)
        if new_owner is None:
            self.store.delete("credential_owners", credential_id)
        else:
            self.store.write("credential_owners", credential_id, new_owner)

    def mint_for(self, caller: str, donor: str, metadata_pointer: str) -> ReputationCredential:
        self._require_minter(caller)
        donor = normalize_address(donor)
        if donor is None:
            raise InvalidAddress("donor must not be empty")
        if not isinstance(metadata_pointer, str):
            raise InvalidMetadata(f"metadata pointer must be a string, got {type(metadata_pointer).__name__}")
        if donor in self.store.credential_by_donor:
            raise TokenAlreadyMinted(f"{donor} already holds credential {self.store.credential_by_donor[donor]}")

        credential_id = self.store.bump("next_credential_id")
        self._change_owner(credential_id, donor)

        credential = ReputationCredential(
            credential_id=credential_id,
            owner=donor,
            tier=Tier.BRONZE,
            last_donation_at=self.clock(),
            metadata_pointer=metadata_pointer,
        )
        self.store.write("credentials", credential_id, credential)
        self.store.write("credential_by_donor", donor, credential_id)
        self.store.emit(make_event("CredentialMinted", donor=donor, credential_id=credential_id, tier=credential.tier.label))
        logger.info("Minted credential %d for %s", credential_id, donor)
        return credential

    def update_for(self, caller: str, credential_id: int, amount: int) -> ReputationCredential:
        self._require_minter(caller)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount(f"invalid amount {amount!r}")
        credential = self.store.credentials.get(credential_id)
        if credential is None:
            raise CredentialNotFound(f"credential {credential_id} does not exist")

        self.store.touch("credentials", credential_id)
        credential.total_donations += amount
        credential.donation_count += 1
        credential.last_donation_at = self.clock()
        previous_tier = credential.tier
        credential.tier = tier_for(credential.total_donations)
        if credential.tier != previous_tier:
            logger.info("Credential %d moved from %s to %s", credential_id, previous_tier.label, credential.tier.label)

        self.store.emit(
            make_event(
                "CredentialUpdated",
                credential_id=credential_id,
                total_donations=credential.total_donations,
                donation_count=credential.donation_count,
                tier=credential.tier.label,
            )
        )
        return credential

    # Ownership pathways. None of them can move an existing credential.

    def transfer_credential(self, caller: str, from_: str, to: str, credential_id: int) -> None:
        try:
            attempt_ownership_change(from_, to, credential_id)
            if normalize_address(to) is None:
                raise InvalidAddress("cannot transfer to the null identity")
            self.owner_of(credential_id)
            self._change_owner(credential_id, to)
        except TokenNotTransferable:
            logger.warning("Rejected transfer of credential %s requested by %s", credential_id, caller)
            raise

    def safe_transfer_credential(self, caller: str, from_: str, to: str, credential_id: int, data: bytes = b"") -> None:
        self.transfer_credential(caller, from_, to, credential_id)

    # Lookups

    def credential_id_of(self, donor: Optional[str]) -> Optional[int]:
        donor = normalize_address(donor)
        if donor is None:
            return None
        return self.store.credential_by_donor.get(donor)

    def credential_of(self, donor: Optional[str]) -> ReputationCredential:
        credential_id = self.credential_id_of(donor)
        if credential_id is None:
            raise CredentialNotFound(f"{donor} holds no credential")
        return self.store.credentials[credential_id]

    def owner_of(self, credential_id: int) -> str:
        owner = self.store.credential_owners.get(credential_id)
        if owner is None:
            raise CredentialNotFound(f"credential {credential_id} does not exist")
        return owner

    def balance_of(self, owner: Optional[str]) -> int:
        return 1 if self.credential_id_of(owner) is not None else 0

    def total_supply(self) -> int:
        return len(self.store.credential_owners)

    def token_uri(self, credential_id: int) -> str:
        credential = self.store.credentials.get(credential_id)
        if credential is None:
            raise CredentialNotFound(f"credential {credential_id} does not exist")
        return descriptor.token_uri(credential, self.name)
