from pydantic_settings import BaseSettings
from typing import List, Optional


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    app_name: str = "Donation Reputation Ledger"

    # Identities
    ledger_address: str = "0x00000000000000000000000000000000000d0a7e"
    owner_address: str = "0x000000000000000000000000000000000000ad01"

    # Access control: single_owner | multisig | roles
    access_policy: str = "single_owner"
    multisig_signers: str = ""
    multisig_threshold: int = 2
    admin_addresses: str = ""

    # Tokens accepted at startup
    supported_tokens: str = ""

    # Credential
    credential_name: str = "Donor Reputation"
    credential_symbol: str = "DREP"

    # Mongo mirror
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    # HTTP
    cors_allow_origins: str = "*"
    port: int = 8000

    @property
    def supported_token_list(self) -> List[str]:
        return _split(self.supported_tokens)

    @property
    def multisig_signer_list(self) -> List[str]:
        return _split(self.multisig_signers)

    @property
    def admin_address_list(self) -> List[str]:
        return _split(self.admin_addresses)

    @property
    def cors_origin_list(self) -> List[str]:
        return _split(self.cors_allow_origins) or ["*"]


settings = Settings()
