from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

from database import get_document, set_document, update_document
from ratings import rating_label
from schemas import USERS, Location, User


def create_profile(uid: str, name: str, email: str, address: str = "", phone_number: str = "") -> Dict[str, Any]:
    profile = User(
        name=name,
        email=email,
        location=Location(address=address or ""),
        phone_number=phone_number or "",
        created_at=datetime.now(timezone.utc),
    )
    # average_rating stays absent until someone rates this user
    data = profile.model_dump(exclude={"average_rating"})
    set_document(USERS, uid, data)
    return data


def get_profile(uid: str) -> Dict[str, Any]:
    profile = get_document(USERS, uid)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


def update_profile(
    uid: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if name is not None:
        changes["name"] = name
    if email is not None:
        changes["email"] = email
    if address is not None:
        changes["location"] = {"address": address}
    if phone_number is not None:
        changes["phone_number"] = phone_number
    if changes and not update_document(USERS, uid, changes):
        raise HTTPException(status_code=404, detail="User not found")
    return get_profile(uid)


def donor_profile(uid: str) -> Dict[str, Any]:
    donor = get_profile(uid)
    return {
        "id": uid,
        "name": donor.get("name", ""),
        "location": donor.get("location") or {"address": ""},
        "created_at": donor.get("created_at"),
        "average_rating": donor.get("average_rating"),
        "rating_label": rating_label(donor),
        "rating_count": len(donor.get("ratings") or []),
        "rating_comments": donor.get("rating_comments") or [],
    }
