from enum import IntEnum
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any

# Records held by the ledger tables, plus the request/response shapes of the API


class Tier(IntEnum):
    BRONZE = 0
    SILVER = 1
    GOLD = 2
    PLATINUM = 3
    DIAMOND = 4

    @property
    def label(self) -> str:
        return self.name.title()


class Charity(BaseModel):
    charity_id: str = Field(..., description="Charity identity (payout address)")
    name: str
    description: str = ""
    metadata_pointer: str = Field(..., description="Opaque pointer to off-system metadata")
    verified: bool = Field(default=False, description="Verification status")
    total_donations: int = Field(default=0, ge=0)
    donor_count: int = Field(default=0, ge=0)
    created_at: int
    updated_at: int


class DonationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0)
    donor: str
    charity: str
    amount: int = Field(..., ge=1)
    token: str
    message: str = ""
    timestamp: int


class ReputationCredential(BaseModel):
    credential_id: int = Field(..., ge=1)
    owner: str = Field(..., description="Donor identity, fixed for life")
    total_donations: int = Field(default=0, ge=0)
    donation_count: int = Field(default=0, ge=0)
    tier: Tier = Tier.BRONZE
    last_donation_at: int
    metadata_pointer: str = ""


class CredentialView(BaseModel):
    credential_id: int
    owner: str
    total_donations: int
    donation_count: int
    tier: str
    tier_level: int
    last_donation_at: int
    metadata_pointer: str

    @classmethod
    def from_credential(cls, credential: ReputationCredential) -> "CredentialView":
        return cls(
            credential_id=credential.credential_id,
            owner=credential.owner,
            total_donations=credential.total_donations,
            donation_count=credential.donation_count,
            tier=credential.tier.label,
            tier_level=int(credential.tier),
            last_donation_at=credential.last_donation_at,
            metadata_pointer=credential.metadata_pointer,
        )


class LedgerEvent(BaseModel):
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)


# Request bodies

class CharityIn(BaseModel):
    name: str
    description: str = ""
    metadata_pointer: str


class DonationIn(BaseModel):
    charity_id: str
    token: str
    amount: int
    message: str = ""


class TokenSupportIn(BaseModel):
    supported: bool


class CredentialTransferIn(BaseModel):
    to: str


class EmergencyWithdrawIn(BaseModel):
    token: Optional[str] = Field(None, description="Token identifier, omitted for native value")
    to: str
    amount: int


# Leaderboard aggregation response (not stored)
class LeaderboardItem(BaseModel):
    donor: str
    total_donations: int
    donation_count: int
    tier: str


class DonationsOut(BaseModel):
    ids: List[int]
