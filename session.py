"""
Session context.

One ``Session`` per authenticated scope (a request, a websocket). It subscribes
once to the identity provider for its token and re-hydrates ``current_user``
from the ``users`` collection on every auth-state callback.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from database import delete_document, delete_documents, get_document
from identity import IdentityProvider
from schemas import ACTIVITIES, CHATS, FOOD_ITEMS, RESERVATIONS, USERS

logger = logging.getLogger(__name__)


def _fallback_user(credential: dict) -> Dict[str, Any]:
    return {
        "id": credential["uid"],
        "name": credential.get("display_name") or "",
        "email": credential.get("email") or "",
        "location": {"address": ""},
        "phone_number": "",
        "created_at": datetime.now(timezone.utc),
    }


def hydrate_user(credential: dict) -> Dict[str, Any]:
    """Merge the stored profile over what the identity provider knows."""
    try:
        profile = get_document(USERS, credential["uid"])
    except Exception as e:
        logger.error(f"Error fetching user data: {e}")
        return _fallback_user(credential)
    if not profile:
        logger.info(f"No profile document for {credential['uid']}, using basic profile")
        return _fallback_user(credential)
    return {
        "id": credential["uid"],
        "name": profile.get("name") or credential.get("display_name") or "",
        "email": credential.get("email") or "",
        "location": profile.get("location") or {"address": ""},
        "phone_number": profile.get("phone_number") or "",
        "created_at": profile.get("created_at") or datetime.now(timezone.utc),
    }


class Session:
    def __init__(self, identity: IdentityProvider, token: Optional[str]):
        self.identity = identity
        self.token = token
        self.current_user: Optional[Dict[str, Any]] = None
        self.is_loading = True
        self._unsubscribe = None

    def __enter__(self) -> "Session":
        self._unsubscribe = self.identity.on_auth_state_changed(self.token, self._on_auth_state_changed)
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_state_changed(self, credential: Optional[dict]):
        try:
            self.current_user = hydrate_user(credential) if credential else None
        finally:
            self.is_loading = False

    def logout(self):
        try:
            self.identity.sign_out(self.token)
        except Exception as e:
            logger.error(f"Error signing out: {e}")
        self.current_user = None

    def delete_user(self):
        """
        Remove the account and what it owns.

        Deletes foodItems and chats by donor_id, activities and reservations by
        user_id, then the profile, then the credential. Nothing is rolled back
        if a step fails; the error goes to the caller.
        """
        if not self.current_user:
            return
        uid = self.current_user["id"]
        try:
            deleted = {
                FOOD_ITEMS: delete_documents(FOOD_ITEMS, {"donor_id": uid}),
                CHATS: delete_documents(CHATS, {"donor_id": uid}),
                ACTIVITIES: delete_documents(ACTIVITIES, {"user_id": uid}),
                RESERVATIONS: delete_documents(RESERVATIONS, {"user_id": uid}),
            }
            delete_document(USERS, uid)
            self.identity.delete_account(self.token)
        except Exception as e:
            logger.error(f"Error deleting user {uid}: {e}")
            raise
        logger.info(f"Deleted user {uid}: {deleted}")
        self.current_user = None
