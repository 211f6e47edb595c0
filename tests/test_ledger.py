"""
Tests for the donation workflow: validation order, record keeping, credential
mint-or-update, atomicity and reentrancy.
"""
import pytest

from conftest import CHARITY, DONOR_A, DONOR_B, LEDGER, OWNER, TOKEN_X, TOKEN_Y
from errors import (
    CharityNotRegistered,
    CharityNotVerified,
    InvalidAmount,
    InvalidMetadata,
    ReentrantCall,
    TokenNotSupported,
    TokenNotTransferable,
    TransferFailed,
)
from ledger import DonationSystem
from schemas import Tier
from transfers import InMemoryTokenBank


def snapshot(system):
    charity = system.get_charity(CHARITY)
    return {
        "count": system.total_donation_count(),
        "charity": charity.model_dump() if charity else None,
        "credential": system.get_credential_id(DONOR_A),
        "donor_ids": system.get_donor_donation_ids(DONOR_A),
        "charity_ids": system.get_charity_donation_ids(CHARITY),
        "events": len(system.events.history()),
    }


def test_first_donation_mints_credential(ready_system, bank, clock):
    donation_id = ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "go")

    assert donation_id == 0
    record = ready_system.get_donation(0)
    assert record.donor == DONOR_A
    assert record.charity == CHARITY
    assert record.amount == 100
    assert record.token == TOKEN_X
    assert record.message == "go"
    assert record.timestamp == clock.now

    view = ready_system.get_credential_metadata(DONOR_A)
    assert view.tier == "Bronze"
    assert view.total_donations == 100
    assert view.donation_count == 1
    assert view.metadata_pointer == ""

    charity = ready_system.get_charity(CHARITY)
    assert charity.total_donations == 100
    assert charity.donor_count == 1
    assert bank.balance_of(TOKEN_X, CHARITY) == 100
    assert bank.balance_of(TOKEN_X, DONOR_A) == 1_000_000 - 100


def test_second_donation_updates_same_credential(ready_system):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "go")
    credential_id = ready_system.get_credential_id(DONOR_A)

    assert ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 450, "") == 1

    assert ready_system.get_credential_id(DONOR_A) == credential_id
    view = ready_system.get_credential_metadata(DONOR_A)
    assert view.total_donations == 550
    assert view.donation_count == 2
    assert view.tier == "Silver"
    assert ready_system.credentials.total_supply() == 1
    assert ready_system.get_charity(CHARITY).donor_count == 1


def test_diamond_tier_at_ten_thousand(ready_system):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 9999, "")
    assert ready_system.get_credential(DONOR_A).tier == Tier.PLATINUM

    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 1, "")
    assert ready_system.get_credential(DONOR_A).tier == Tier.DIAMOND


def test_total_tracks_sum_of_donations(ready_system):
    amounts = [5, 495, 700, 3800, 1]
    totals = []
    for amount in amounts:
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, amount, "")
        totals.append(ready_system.get_credential(DONOR_A).total_donations)

    assert totals == sorted(totals)
    assert totals[-1] == sum(amounts)
    assert ready_system.get_credential(DONOR_A).donation_count == len(amounts)
    assert ready_system.get_donor_contribution(CHARITY, DONOR_A) == sum(amounts)


def test_ids_are_sequential_across_donors(ready_system):
    ids = [
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 10, ""),
        ready_system.donate(DONOR_B, CHARITY, TOKEN_X, 20, ""),
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 30, ""),
    ]

    assert ids == [0, 1, 2]
    assert ready_system.get_donor_donation_ids(DONOR_A) == [0, 2]
    assert ready_system.get_donor_donation_ids(DONOR_B) == [1]
    assert ready_system.get_charity_donation_ids(CHARITY) == [0, 1, 2]
    assert ready_system.get_credential_id(DONOR_A) != ready_system.get_credential_id(DONOR_B)
    assert ready_system.get_charity(CHARITY).donor_count == 2


def test_lookups_for_unknown_keys_are_empty(ready_system):
    assert ready_system.get_donation(99) is None
    assert ready_system.get_donor_donation_ids(DONOR_B) == []
    assert ready_system.get_charity_donation_ids(DONOR_B) == []
    assert ready_system.get_credential_id(DONOR_B) is None


def test_donation_made_event(ready_system, clock):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "go")

    names = [e.name for e in ready_system.events.history()][-3:]
    assert names == ["CredentialMinted", "CredentialUpdated", "DonationMade"]
    assert ready_system.events.history("DonationMade")[0].payload == {
        "donation_id": 0,
        "donor": DONOR_A,
        "charity": CHARITY,
        "amount": 100,
        "token": TOKEN_X,
        "timestamp": clock.now,
    }


def test_unverified_charity_rejected(system):
    system.set_token_support(OWNER, TOKEN_X, True)
    system.register_charity(CHARITY, "Helpers", "", "ipfs://helpers")
    before = snapshot(system)

    with pytest.raises(CharityNotVerified):
        system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "go")

    assert snapshot(system) == before


def test_unregistered_charity_rejected(ready_system):
    with pytest.raises(CharityNotRegistered):
        ready_system.donate(DONOR_A, DONOR_B, TOKEN_X, 100, "")
    assert ready_system.total_donation_count() == 0


def test_unsupported_token_rejected(ready_system, bank):
    before = snapshot(ready_system)

    with pytest.raises(TokenNotSupported):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_Y, 100, "")

    assert snapshot(ready_system) == before
    assert bank.balance_of(TOKEN_Y, CHARITY) == 0


@pytest.mark.parametrize("amount", [0, -5, True, 1.5])
def test_invalid_amount_rejected(ready_system, amount):
    before = snapshot(ready_system)

    with pytest.raises(InvalidAmount):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, amount, "")

    assert snapshot(ready_system) == before


def test_token_check_precedes_amount_check(ready_system):
    with pytest.raises(TokenNotSupported):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_Y, 0, "")


def test_failed_transfer_leaves_no_trace(ready_system, bank):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "")
    bank.approve(TOKEN_X, DONOR_A, 0)
    before = snapshot(ready_system)

    with pytest.raises(TransferFailed):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "")

    assert snapshot(ready_system) == before
    assert ready_system.get_credential(DONOR_A).total_donations == 100


class ExplodingBank(InMemoryTokenBank):
    def transfer_from(self, token, sender, recipient, amount):
        raise ConnectionError("node unreachable")


def test_transfer_exception_reported_as_transfer_failed(clock):
    system = DonationSystem(transfers=ExplodingBank(LEDGER), owner=OWNER, ledger_address=LEDGER, clock=clock)
    system.set_token_support(OWNER, TOKEN_X, True)
    system.register_charity(CHARITY, "Helpers", "", "ipfs://helpers")
    system.verify_charity(OWNER, CHARITY)

    with pytest.raises(TransferFailed):
        system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "")
    assert system.total_donation_count() == 0
    assert system.get_credential_id(DONOR_A) is None


def test_non_string_message_rejected_before_funds_move(ready_system, bank):
    before = snapshot(ready_system)

    with pytest.raises(InvalidMetadata):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, 123)

    assert snapshot(ready_system) == before
    assert ready_system.get_donation(0) is None
    assert bank.balance_of(TOKEN_X, DONOR_A) == 1_000_000
    assert bank.balance_of(TOKEN_X, CHARITY) == 0


def test_missing_message_stored_as_empty(ready_system):
    donation_id = ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, None)
    assert ready_system.get_donation(donation_id).message == ""


def test_credential_failure_rolls_back_everything_and_keeps_funds(ready_system, bank, monkeypatch):
    def broken_update(caller, credential_id, amount):
        raise RuntimeError("issuer offline")

    monkeypatch.setattr(ready_system.credentials, "update_for", broken_update)
    events_before = len(ready_system.events.history())

    with pytest.raises(RuntimeError):
        ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "")

    assert bank.balance_of(TOKEN_X, DONOR_A) == 1_000_000
    assert bank.balance_of(TOKEN_X, CHARITY) == 0
    assert ready_system.total_donation_count() == 0
    assert ready_system.get_donation(0) is None
    assert ready_system.get_charity(CHARITY).total_donations == 0
    assert ready_system.get_charity(CHARITY).donor_count == 0
    assert ready_system.get_donor_contribution(CHARITY, DONOR_A) == 0
    assert ready_system.get_credential_id(DONOR_A) is None
    assert ready_system.get_donor_donation_ids(DONOR_A) == []
    assert len(ready_system.events.history()) == events_before


class ReentrantBank(InMemoryTokenBank):
    """Calls back into the ledger while the first transfer is in flight."""

    def __init__(self, spender, swallow):
        super().__init__(spender)
        self.system = None
        self.swallow = swallow
        self.reentry_errors = []

    def transfer_from(self, token, sender, recipient, amount):
        try:
            self.system.donate(sender, recipient, token, amount, "again")
        except ReentrantCall as exc:
            self.reentry_errors.append(exc)
            if not self.swallow:
                raise
        return super().transfer_from(token, sender, recipient, amount)


def _reentrant_system(clock, swallow):
    bank = ReentrantBank(LEDGER, swallow)
    bank.mint(TOKEN_X, DONOR_A, 10_000)
    bank.approve(TOKEN_X, DONOR_A, 10_000)
    system = DonationSystem(transfers=bank, owner=OWNER, ledger_address=LEDGER, clock=clock)
    bank.system = system
    system.set_token_support(OWNER, TOKEN_X, True)
    system.register_charity(CHARITY, "Helpers", "", "ipfs://helpers")
    system.verify_charity(OWNER, CHARITY)
    return system, bank


def test_reentrant_donation_is_blocked(clock):
    system, bank = _reentrant_system(clock, swallow=True)

    assert system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "") == 0

    assert len(bank.reentry_errors) == 1
    assert system.total_donation_count() == 1
    assert system.get_credential(DONOR_A).donation_count == 1
    assert system.get_charity(CHARITY).total_donations == 100
    assert bank.balance_of(TOKEN_X, CHARITY) == 100


def test_reentrant_failure_unwinds_outer_donation(clock):
    system, bank = _reentrant_system(clock, swallow=False)

    with pytest.raises(ReentrantCall):
        system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "")

    assert system.total_donation_count() == 0
    assert system.get_credential_id(DONOR_A) is None
    assert system.guard.entered is False

    # the guard is released, so a well-behaved retry succeeds
    bank.system = None
    bank.transfer_from = lambda *args: InMemoryTokenBank.transfer_from(bank, *args)
    assert system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "") == 0


def test_donor_credential_cannot_move(ready_system):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 100, "go")
    credential_id = ready_system.get_credential_id(DONOR_A)

    with pytest.raises(TokenNotTransferable):
        ready_system.transfer_credential(DONOR_A, DONOR_A, DONOR_B, credential_id)
    with pytest.raises(TokenNotTransferable):
        ready_system.transfer_credential(OWNER, DONOR_A, DONOR_B, credential_id)

    assert ready_system.credentials.owner_of(credential_id) == DONOR_A
    assert ready_system.get_credential_id(DONOR_B) is None


def test_leaderboard_ranks_by_total(ready_system):
    ready_system.donate(DONOR_A, CHARITY, TOKEN_X, 600, "")
    ready_system.donate(DONOR_B, CHARITY, TOKEN_X, 1500, "")

    board = ready_system.leaderboard()
    assert [(item.donor, item.tier) for item in board] == [(DONOR_B, "Gold"), (DONOR_A, "Silver")]
    assert len(ready_system.leaderboard(limit=1)) == 1
