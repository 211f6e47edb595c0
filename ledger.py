"""
Donation ledger and the system facade that wires the registries together.

``DonationLedger.donate`` is the orchestrating operation: it validates the
request, appends the donation record, updates the charity aggregates, mints
or updates the donor's reputation credential and finally pulls the funds
through the value-transfer collaborator. All of it runs under the reentrancy
guard and inside one store transaction, so a failure at any step leaves
nothing behind.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

from charities import CharityRegistry
from credentials import ReputationCredentialIssuer
from errors import (
    CharityNotRegistered,
    CharityNotVerified,
    InvalidAddress,
    InvalidAmount,
    InvalidMetadata,
    LedgerError,
    TokenNotSupported,
    TransferFailed,
)
from events import EventBus, make_event
from guard import (
    EMERGENCY_WITHDRAW,
    SET_TOKEN_SUPPORT,
    VERIFY_CHARITY,
    AccessPolicy,
    ReentrancyGuard,
    SingleOwnerPolicy,
    build_policy,
)
from schemas import (
    Charity,
    CredentialView,
    DonationRecord,
    LeaderboardItem,
    ReputationCredential,
)
from store import LedgerStore, normalize_address
from tokens import TokenSupportRegistry
from transfers import InMemoryTokenBank, ValueTransfer

logger = logging.getLogger(__name__)


def unix_now() -> int:
    return int(time.time())


def check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"invalid amount {amount!r}")
    return amount


def check_message(message) -> str:
    if message is None:
        return ""
    if not isinstance(message, str):
        raise InvalidMetadata(f"message must be a string, got {type(message).__name__}")
    return message


class DonationLedger:
    def __init__(
        self,
        store: LedgerStore,
        tokens: TokenSupportRegistry,
        charities: CharityRegistry,
        credentials: ReputationCredentialIssuer,
        transfers: ValueTransfer,
        guard: ReentrancyGuard,
        address: str,
        clock: Callable[[], int],
    ):
        self.store = store
        self.tokens = tokens
        self.charities = charities
        self.credentials = credentials
        self.transfers = transfers
        self.guard = guard
        self.address = normalize_address(address)
        self.clock = clock

    def _pull_funds(self, token: str, donor: str, charity_id: str, amount: int) -> None:
        try:
            ok = self.transfers.transfer_from(token, donor, charity_id, amount)
        except LedgerError:
            raise
        except Exception as exc:
            logger.error("Transfer of %d %s from %s raised: %s", amount, token, donor, exc)
            raise TransferFailed(f"transfer of {amount} {token} from {donor} failed: {exc}") from exc
        if not ok:
            raise TransferFailed(f"transfer of {amount} {token} from {donor} failed")

    def donate(self, caller: str, charity_id: str, token: str, amount: int, message: str = "") -> int:
        with self.guard, self.store.transaction():
            donor = normalize_address(caller)
            if donor is None:
                raise InvalidAddress("donor must not be empty")
            if not self.tokens.is_supported(token):
                raise TokenNotSupported(f"{token} is not accepted")
            check_amount(amount)
            charity = self.charities.get(charity_id)
            if charity is None:
                raise CharityNotRegistered(f"{charity_id} is not registered")
            if not charity.verified:
                raise CharityNotVerified(f"{charity.charity_id} is not verified")
            message = check_message(message)

            token = normalize_address(token)
            now = self.clock()
            record = DonationRecord(
                id=self.store.next_donation_id,
                donor=donor,
                charity=charity.charity_id,
                amount=amount,
                token=token,
                message=message,
                timestamp=now,
            )

            # ledger changes first, external transfer last
            donation_id = self.store.bump("next_donation_id")
            self.store.write("donations", donation_id, record)
            self.store.append("charity_donations", charity.charity_id, donation_id)
            self.store.append("donor_donations", donor, donation_id)

            self.charities.record_contribution(charity.charity_id, donor, amount)

            credential_id = self.credentials.credential_id_of(donor)
            if credential_id is None:
                credential_id = self.credentials.mint_for(self.address, donor, "").credential_id
            self.credentials.update_for(self.address, credential_id, amount)

            self.store.emit(
                make_event(
                    "DonationMade",
                    donation_id=donation_id,
                    donor=donor,
                    charity=charity.charity_id,
                    amount=amount,
                    token=token,
                    timestamp=now,
                )
            )

            self._pull_funds(token, donor, charity.charity_id, amount)
        logger.info("Donation %d: %s gave %d %s to %s", donation_id, donor, amount, token, charity.charity_id)
        return donation_id

    # Lookups

    def get(self, donation_id: int) -> Optional[DonationRecord]:
        return self.store.donations.get(donation_id)

    def ids_for_charity(self, charity_id: Optional[str]) -> List[int]:
        return list(self.store.charity_donations.get(normalize_address(charity_id), []))

    def ids_for_donor(self, donor: Optional[str]) -> List[int]:
        return list(self.store.donor_donations.get(normalize_address(donor), []))

    def count(self) -> int:
        return self.store.next_donation_id


class DonationSystem:
    """
    Caller-facing operations of the donation system.

    Every operation takes the calling identity explicitly. Operations are
    serialized with a re-entrant lock; a nested call from the same thread
    (e.g. from inside a token transfer) is caught by the reentrancy guard.
    """

    def __init__(
        self,
        transfers: Optional[ValueTransfer] = None,
        access: Optional[AccessPolicy] = None,
        ledger_address: str = "0x00000000000000000000000000000000000d0a7e",
        owner: Optional[str] = None,
        clock: Callable[[], int] = unix_now,
        events: Optional[EventBus] = None,
        credential_name: str = "Donor Reputation",
        credential_symbol: str = "DREP",
    ):
        self.address = normalize_address(ledger_address)
        if self.address is None:
            raise InvalidAddress("ledger address must not be empty")
        if access is None:
            if owner is None:
                raise InvalidAddress("an owner or an access policy is required")
            access = SingleOwnerPolicy(owner)
        self.access = access
        self.transfers = transfers if transfers is not None else InMemoryTokenBank(self.address)
        self.clock = clock

        self.store = LedgerStore(events)
        self.events = self.store.events
        self.guard = ReentrancyGuard()
        self.tokens = TokenSupportRegistry(self.store)
        self.charities = CharityRegistry(self.store, clock)
        self.credentials = ReputationCredentialIssuer(
            self.store, clock, minter=self.address, name=credential_name, symbol=credential_symbol
        )
        self.ledger = DonationLedger(
            self.store, self.tokens, self.charities, self.credentials,
            self.transfers, self.guard, self.address, clock,
        )
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, transfers: Optional[ValueTransfer] = None, events: Optional[EventBus] = None):
        system = cls(
            transfers=transfers,
            access=build_policy(settings),
            ledger_address=settings.ledger_address,
            events=events,
            credential_name=settings.credential_name,
            credential_symbol=settings.credential_symbol,
        )
        for token in settings.supported_token_list:
            with system.store.transaction():
                system.tokens.set_support(token, True)
        return system

    @contextmanager
    def _privileged(self, caller: str, action: str, **params):
        with self._lock:
            self.access.require(caller, action, **params)
            with self.store.transaction():
                yield
            self.access.consume(action, **params)

    # Mutating operations

    def register_charity(self, caller: str, name: str, description: str, metadata_pointer: str) -> Charity:
        with self._lock, self.store.transaction():
            return self.charities.register(caller, name, description, metadata_pointer)

    def verify_charity(self, caller: str, charity_id: str) -> Charity:
        with self._privileged(caller, VERIFY_CHARITY, charity=normalize_address(charity_id)):
            charity = self.charities.verify(charity_id)
        return charity

    def set_token_support(self, caller: str, token: str, supported: bool) -> None:
        with self._privileged(caller, SET_TOKEN_SUPPORT, token=normalize_address(token), supported=bool(supported)):
            self.tokens.set_support(token, supported)

    def donate(self, caller: str, charity_id: str, token: str, amount: int, message: str = "") -> int:
        with self._lock:
            return self.ledger.donate(caller, charity_id, token, amount, message)

    def transfer_credential(self, caller: str, from_: str, to: str, credential_id: int) -> None:
        with self._lock, self.store.transaction():
            self.credentials.transfer_credential(caller, from_, to, credential_id)

    def emergency_withdraw(self, caller: str, token: Optional[str], to: str, amount: int) -> None:
        recipient = normalize_address(to)
        params = dict(token=normalize_address(token), to=recipient, amount=amount)
        with self._privileged(caller, EMERGENCY_WITHDRAW, **params), self.guard:
            if recipient is None:
                raise InvalidAddress("recipient must not be empty")
            check_amount(amount)
            token = normalize_address(token)
            try:
                ok = self.transfers.transfer(token, self.address, recipient, amount)
            except LedgerError:
                raise
            except Exception as exc:
                raise TransferFailed(f"withdrawal of {amount} failed: {exc}") from exc
            if not ok:
                raise TransferFailed(f"withdrawal of {amount} failed")
            self.store.emit(make_event("EmergencyWithdrawal", token=token, to=recipient, amount=amount))
        logger.warning("Emergency withdrawal of %d %s to %s by %s", amount, token or "native", recipient, caller)

    # Lookups

    def get_charity(self, charity_id: str) -> Optional[Charity]:
        return self.charities.get(charity_id)

    def list_charities(self, verified: Optional[bool] = None) -> List[Charity]:
        return self.charities.list_charities(verified)

    def get_donor_contribution(self, charity_id: str, donor: str) -> int:
        return self.charities.contribution_of(charity_id, donor)

    def get_donation(self, donation_id: int) -> Optional[DonationRecord]:
        return self.ledger.get(donation_id)

    def get_charity_donation_ids(self, charity_id: str) -> List[int]:
        return self.ledger.ids_for_charity(charity_id)

    def get_donor_donation_ids(self, donor: str) -> List[int]:
        return self.ledger.ids_for_donor(donor)

    def total_donation_count(self) -> int:
        return self.ledger.count()

    def is_token_supported(self, token: str) -> bool:
        return self.tokens.is_supported(token)

    def get_credential_id(self, donor: str) -> Optional[int]:
        return self.credentials.credential_id_of(donor)

    def get_credential(self, donor: str) -> ReputationCredential:
        return self.credentials.credential_of(donor)

    def get_credential_metadata(self, donor: str) -> CredentialView:
        return CredentialView.from_credential(self.credentials.credential_of(donor))

    def credential_descriptor(self, credential_id: int) -> str:
        return self.credentials.token_uri(credential_id)

    def leaderboard(self, limit: int = 10) -> List[LeaderboardItem]:
        ranked = sorted(
            self.store.credentials.values(),
            key=lambda c: (-c.total_donations, c.credential_id),
        )
        return [
            LeaderboardItem(
                donor=c.owner,
                total_donations=c.total_donations,
                donation_count=c.donation_count,
                tier=c.tier.label,
            )
            for c in ranked[:limit]
        ]
