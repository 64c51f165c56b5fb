"""
Identity provider backed by the document store.

Issues and validates email/password credentials, hands out bearer tokens and
publishes auth-state changes per token. Credential dicts handed to listeners
look like ``{"uid", "email", "display_name"}``.
"""
import hashlib
import logging
import secrets
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import HTTPException

from database import (
    create_document,
    delete_document,
    delete_documents,
    get_document,
    get_documents,
    update_document,
)
from schemas import AUTH_SESSIONS, CREDENTIALS

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(days=7)

AuthListener = Callable[[Optional[dict]], None]


def hash_password(password: str, salt: Optional[str] = None) -> Tuple[str, str]:
    salt = salt or secrets.token_hex(16)
    hashed = hashlib.sha256((salt + password).encode()).hexdigest()
    return hashed, salt


def _public(credential_doc: dict) -> dict:
    return {
        "uid": str(credential_doc["_id"]),
        "email": credential_doc.get("email", ""),
        "display_name": credential_doc.get("display_name") or "",
    }


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdentityProvider:
    def __init__(self):
        self._listeners: Dict[str, List[AuthListener]] = defaultdict(list)
        self._lock = threading.Lock()

    # ---- credentials ----

    def sign_up(self, email: str, password: str) -> Tuple[str, dict]:
        email = email.strip().lower()
        if not email or not password:
            raise HTTPException(status_code=400, detail="Email and password are required")
        if get_documents(CREDENTIALS, {"email": email}, limit=1):
            raise HTTPException(status_code=400, detail="Email already registered")
        hashed, salt = hash_password(password)
        uid = create_document(CREDENTIALS, {
            "email": email,
            "display_name": "",
            "password_hash": hashed,
            "password_salt": salt,
        })
        logger.info(f"Credential created: {uid}")
        token = self._issue_token(uid)
        return token, self.current(token)

    def sign_in(self, email: str, password: str) -> Tuple[str, dict]:
        found = get_documents(CREDENTIALS, {"email": email.strip().lower()}, limit=1)
        if not found:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        credential = found[0]
        hashed, _ = hash_password(password, credential.get("password_salt"))
        if hashed != credential.get("password_hash"):
            raise HTTPException(status_code=401, detail="Invalid credentials")
        token = self._issue_token(str(credential["_id"]))
        return token, _public(credential)

    def sign_out(self, token: str):
        delete_documents(AUTH_SESSIONS, {"token": token})
        self._emit(token, None)

    def delete_account(self, token: str):
        credential = self.current(token)
        if credential is None:
            raise HTTPException(status_code=401, detail="Not signed in")
        uid = credential["uid"]
        delete_document(CREDENTIALS, uid)
        tokens = [s["token"] for s in get_documents(AUTH_SESSIONS, {"user_id": uid})]
        delete_documents(AUTH_SESSIONS, {"user_id": uid})
        logger.info(f"Credential deleted: {uid}")
        for t in tokens:
            self._emit(t, None)

    def update_display_name(self, token: str, display_name: str):
        credential = self.current(token)
        if credential is None:
            raise HTTPException(status_code=401, detail="Not signed in")
        update_document(CREDENTIALS, credential["uid"], {"display_name": display_name})
        self._emit(token, self.current(token))

    def current(self, token: Optional[str]) -> Optional[dict]:
        """Credential behind a live token, or None."""
        if not token:
            return None
        found = get_documents(AUTH_SESSIONS, {"token": token}, limit=1)
        if not found:
            return None
        session = found[0]
        expires_at = session.get("expires_at")
        if expires_at is not None and _as_utc(expires_at) < datetime.now(timezone.utc):
            return None
        credential = get_document(CREDENTIALS, session["user_id"])
        return _public(credential) if credential else None

    # ---- auth-state stream ----

    def on_auth_state_changed(self, token: Optional[str], callback: AuthListener) -> Callable[[], None]:
        """
        Register ``callback`` for changes to ``token``'s signed-in state.

        The callback fires once right away with the current credential (or
        None), then on every sign-out, deletion or profile change. Returns an
        unsubscribe function.
        """
        key = token or ""
        with self._lock:
            self._listeners[key].append(callback)
        callback(self.current(token))

        def unsubscribe():
            with self._lock:
                if callback in self._listeners.get(key, []):
                    self._listeners[key].remove(callback)
                if not self._listeners.get(key):
                    self._listeners.pop(key, None)

        return unsubscribe

    def _emit(self, token: str, credential: Optional[dict]):
        with self._lock:
            callbacks = list(self._listeners.get(token, ()))
        for callback in callbacks:
            callback(credential)

    def _issue_token(self, uid: str) -> str:
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        create_document(AUTH_SESSIONS, {
            "user_id": uid,
            "token": token,
            "created_at": now,
            "expires_at": now + TOKEN_TTL,
        })
        return token
