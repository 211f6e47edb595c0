import logging
import os
from datetime import datetime
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional
from bson import ObjectId

from config import settings
import database
from database import MongoEventSink, get_documents
from errors import LedgerError
from ledger import DonationSystem
from schemas import (
    Charity,
    CharityIn,
    CredentialTransferIn,
    CredentialView,
    DonationIn,
    DonationRecord,
    DonationsOut,
    EmergencyWithdrawIn,
    LeaderboardItem,
    TokenSupportIn,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def oid_str(oid):
    return str(oid) if isinstance(oid, ObjectId) else oid


def serialize(doc):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["_id"] = oid_str(doc["_id"])
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def create_app(system: Optional[DonationSystem] = None) -> FastAPI:
    if system is None:
        system = DonationSystem.from_settings(settings)
        if database.db is not None:
            system.events.subscribe(MongoEventSink())

    app = FastAPI(title=settings.app_name)
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})

    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} API running"}

    @app.get("/health")
    def health():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": "❌ Not Set",
            "connection_status": "Not Connected",
            "donations": system.total_donation_count(),
            "credentials": system.credentials.total_supply(),
            "credential_symbol": system.credentials.symbol,
        }
        try:
            if database.db is not None:
                response["database"] = "✅ Available"
                response["database_name"] = database.db.name
                response["connection_status"] = "Connected"
        except Exception as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
        return response

    # Charities
    @app.get("/api/charities", response_model=List[Charity])
    def list_charities(verified: Optional[bool] = None):
        return system.list_charities(verified)

    @app.post("/api/charities", response_model=Charity, status_code=201)
    def register_charity(payload: CharityIn, x_caller: str = Header(...)):
        return system.register_charity(x_caller, payload.name, payload.description, payload.metadata_pointer)

    @app.get("/api/charities/{charity_id}", response_model=Charity)
    def get_charity(charity_id: str):
        charity = system.get_charity(charity_id)
        if not charity:
            raise HTTPException(status_code=404, detail="Charity not found")
        return charity

    @app.post("/api/charities/{charity_id}/verify", response_model=Charity)
    def verify_charity(charity_id: str, x_caller: str = Header(...)):
        return system.verify_charity(x_caller, charity_id)

    @app.get("/api/charities/{charity_id}/donations", response_model=DonationsOut)
    def charity_donations(charity_id: str):
        return {"ids": system.get_charity_donation_ids(charity_id)}

    @app.get("/api/charities/{charity_id}/contributions/{donor}")
    def donor_contribution(charity_id: str, donor: str):
        return {"charity": charity_id, "donor": donor, "amount": system.get_donor_contribution(charity_id, donor)}

    # Tokens
    @app.put("/api/tokens/{token}")
    def set_token_support(token: str, payload: TokenSupportIn, x_caller: str = Header(...)):
        system.set_token_support(x_caller, token, payload.supported)
        return {"token": token, "supported": system.is_token_supported(token)}

    @app.get("/api/tokens/{token}")
    def token_support(token: str):
        return {"token": token, "supported": system.is_token_supported(token)}

    # Donations
    @app.post("/api/donations", status_code=201)
    def donate(payload: DonationIn, x_caller: str = Header(...)):
        donation_id = system.donate(x_caller, payload.charity_id, payload.token, payload.amount, payload.message)
        return {
            "donation_id": donation_id,
            "credential_id": system.get_credential_id(x_caller),
            "message": "Donation recorded",
        }

    @app.get("/api/donations/{donation_id}", response_model=DonationRecord)
    def get_donation(donation_id: int):
        donation = system.get_donation(donation_id)
        if not donation:
            raise HTTPException(status_code=404, detail="Donation not found")
        return donation

    @app.get("/api/donors/{donor}/donations", response_model=DonationsOut)
    def donor_donations(donor: str):
        return {"ids": system.get_donor_donation_ids(donor)}

    # Credentials
    @app.get("/api/donors/{donor}/credential-id")
    def credential_id(donor: str):
        return {"donor": donor, "credential_id": system.get_credential_id(donor)}

    @app.get("/api/donors/{donor}/credential", response_model=CredentialView)
    def credential(donor: str):
        return system.get_credential_metadata(donor)

    @app.get("/api/credentials/{credential_id}/descriptor")
    def credential_descriptor(credential_id: int):
        return {"credential_id": credential_id, "token_uri": system.credential_descriptor(credential_id)}

    @app.post("/api/credentials/{credential_id}/transfer")
    def transfer_credential(credential_id: int, payload: CredentialTransferIn, x_caller: str = Header(...)):
        system.transfer_credential(x_caller, x_caller, payload.to, credential_id)
        return {"status": "ok"}

    # Administration
    @app.post("/api/emergency-withdraw")
    def emergency_withdraw(payload: EmergencyWithdrawIn, x_caller: str = Header(...)):
        system.emergency_withdraw(x_caller, payload.token, payload.to, payload.amount)
        return {"status": "ok"}

    # Simple leaderboard
    @app.get("/api/leaderboard", response_model=List[LeaderboardItem])
    def leaderboard(limit: int = 10):
        return system.leaderboard(limit)

    @app.get("/api/events")
    def list_events(name: Optional[str] = None, limit: int = 50):
        items = system.events.history(name)[-limit:]
        return [e.model_dump() for e in items[::-1]]  # newest first

    @app.get("/api/mirror/events")
    def list_mirrored_events(name: Optional[str] = None, limit: int = 50):
        if database.db is None:
            raise HTTPException(status_code=503, detail="Event mirror not configured")
        docs = get_documents(MongoEventSink.collection, {"name": name} if name else {}, limit)
        return [serialize(d) for d in docs]


    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
