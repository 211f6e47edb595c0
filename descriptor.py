import base64
import json

from schemas import ReputationCredential


def describe(credential: ReputationCredential, collection_name: str = "Donor Reputation") -> dict:
    return {
        "name": f"{collection_name} #{credential.credential_id}",
        "description": "Non-transferable record of charitable giving.",
        "image": credential.metadata_pointer,
        "attributes": [
            {"trait_type": "Tier", "value": credential.tier.label},
            {"trait_type": "Total Donations", "display_type": "number", "value": credential.total_donations},
            {"trait_type": "Donation Count", "display_type": "number", "value": credential.donation_count},
            {"trait_type": "Last Donation", "display_type": "date", "value": credential.last_donation_at},
        ],
    }


def token_uri(credential: ReputationCredential, collection_name: str = "Donor Reputation") -> str:
    body = json.dumps(describe(credential, collection_name), separators=(",", ":"))
    return "data:application/json;base64," + base64.b64encode(body.encode("utf-8")).decode("ascii")

