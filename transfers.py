"""
Value-transfer collaborator.

The ledger only needs ``transfer_from`` (move a donor's approved funds to a
charity) and ``transfer`` (move the ledger's own balance out). Both report
failure by returning False; the ledger also treats a raised exception as a
failed transfer.
"""
import logging
from typing import Dict, Optional, Protocol, Tuple

from store import normalize_address

logger = logging.getLogger(__name__)

NATIVE = "native"


class ValueTransfer(Protocol):
    def transfer_from(self, token: str, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer(self, token: Optional[str], sender: str, recipient: str, amount: int) -> bool:
        ...


class InMemoryTokenBank:
    """
    Balances and allowances per token, held in memory.

    ``transfer_from`` spends the sender's allowance to the given spender,
    which is the ledger identity the bank was created with.
    """

    def __init__(self, spender: str):
        self.spender = normalize_address(spender)
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}

    @staticmethod
    def _token(token: Optional[str]) -> str:
        return normalize_address(token) or NATIVE

    def mint(self, token: Optional[str], holder: str, amount: int) -> None:
        key = (self._token(token), normalize_address(holder))
        self.balances[key] = self.balances.get(key, 0) + amount

    def approve(self, token: str, holder: str, amount: int) -> None:
        self.allowances[(self._token(token), normalize_address(holder), self.spender)] = amount

    def balance_of(self, token: Optional[str], holder: str) -> int:
        return self.balances.get((self._token(token), normalize_address(holder)), 0)

    def _move(self, token: str, sender: str, recipient: str, amount: int) -> bool:
        sender, recipient = normalize_address(sender), normalize_address(recipient)
        if sender is None or recipient is None or amount <= 0:
            return False
        if self.balances.get((token, sender), 0) < amount:
            logger.debug("Insufficient %s balance for %s", token, sender)
            return False
        self.balances[(token, sender)] -= amount
        self.balances[(token, recipient)] = self.balances.get((token, recipient), 0) + amount
        return True

    def transfer_from(self, token, sender, recipient, amount):
        token = self._token(token)
        key = (token, normalize_address(sender), self.spender)
        allowed = self.allowances.get(key, 0)
        if allowed < amount:
            logger.debug("Insufficient %s allowance for %s", token, sender)
            return False
        if not self._move(token, sender, recipient, amount):
            return False
        self.allowances[key] = allowed - amount
        return True

    def transfer(self, token, sender, recipient, amount):
        return self._move(self._token(token), sender, recipient, amount)
