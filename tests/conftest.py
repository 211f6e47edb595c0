"""
Pytest configuration and fixtures for the donation ledger tests.

Every test gets a fresh DonationSystem with a fixed clock and an in-memory
token bank, so nothing is shared between tests.
"""
import base64
import json
import sys
import pathlib
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger import DonationSystem  # noqa: E402
from transfers import InMemoryTokenBank  # noqa: E402

OWNER = "0x00000000000000000000000000000000000000aa"
LEDGER = "0x00000000000000000000000000000000000000ee"
CHARITY = "0x00000000000000000000000000000000000000c1"
DONOR_A = "0x000000000000000000000000000000000000000a"
DONOR_B = "0x000000000000000000000000000000000000000b"
TOKEN_X = "0x0000000000000000000000000000000000000f01"
TOKEN_Y = "0x0000000000000000000000000000000000000f02"


def decode_token_uri(uri: str) -> dict:
    prefix = "data:application/json;base64,"
    assert uri.startswith(prefix), uri
    return json.loads(base64.b64decode(uri[len(prefix):]))


class FixedClock:
    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def bank():
    bank = InMemoryTokenBank(spender=LEDGER)
    for donor in (DONOR_A, DONOR_B):
        bank.mint(TOKEN_X, donor, 1_000_000)
        bank.approve(TOKEN_X, donor, 1_000_000)
        bank.mint(TOKEN_Y, donor, 1_000_000)
        bank.approve(TOKEN_Y, donor, 1_000_000)
    return bank


@pytest.fixture
def system(bank, clock):
    return DonationSystem(transfers=bank, owner=OWNER, ledger_address=LEDGER, clock=clock)


@pytest.fixture
def ready_system(system):
    """Token X supported, charity "Helpers" registered and verified."""
    system.set_token_support(OWNER, TOKEN_X, True)
    system.register_charity(CHARITY, "Helpers", "We help", "ipfs://helpers")
    system.verify_charity(OWNER, CHARITY)
    return system


@pytest.fixture
def client(ready_system):
    from main import create_app

    return TestClient(create_app(ready_system))
