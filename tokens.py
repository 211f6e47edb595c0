import logging
from typing import Optional

from errors import InvalidAddress
from events import make_event
from store import LedgerStore, normalize_address

logger = logging.getLogger(__name__)


class TokenSupportRegistry:
    """Whitelist of token identifiers accepted for donations."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def set_support(self, token: Optional[str], supported: bool) -> None:
        token = normalize_address(token)
        if token is None:
            raise InvalidAddress("token must not be empty")
        self.store.write("token_support", token, bool(supported))
        self.store.emit(make_event("TokenSupportUpdated", token=token, supported=bool(supported)))
        logger.info("Token %s support set to %s", token, supported)

    def is_supported(self, token: Optional[str]) -> bool:
        token = normalize_address(token)
        return token is not None and self.store.token_support.get(token, False)
