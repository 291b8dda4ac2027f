"""
Accounts and sessions

Credentials live apart from the public user records, in an `accounts`
collection keyed by the same id as the user. Sessions are opaque tokens.
"""

import hashlib
import logging
import secrets
from typing import Any, Dict, Optional

from database import Constraint, DocumentRef, DocumentStore

logger = logging.getLogger(__name__)

ACCOUNTS = ("accounts",)
SESSIONS = ("sessions",)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(8)
    return salt + "$" + hashlib.sha256((salt + password).encode()).hexdigest()


def verify_password(password: str, stored: str) -> bool:
    try:
        salt, _ = stored.split("$")
    except ValueError:
        return False
    return secrets.compare_digest(hash_password(password, salt), stored)


class AccountService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        docs = self.store.query(ACCOUNTS, [Constraint("email", "==", email)], limit=1)
        return docs[0] if docs else None

    def create_account(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
        uid: Optional[str] = None,
    ) -> str:
        if self.find_by_email(email):
            raise ValueError(f"An account for {email} already exists")
        uid = uid or self.store.allocate_id(ACCOUNTS)
        self.store.set(
            DocumentRef(ACCOUNTS, uid),
            {
                "uid": uid,
                "email": email,
                "password_hash": hash_password(password),
                "display_name": display_name,
                "photo_url": photo_url,
                "disabled": False,
            },
        )
        logger.info("Created account %s", uid)
        return uid

    def update_account(
        self,
        uid: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
        disabled: Optional[bool] = None,
    ) -> None:
        changes: Dict[str, Any] = {
            "email": email,
            "display_name": display_name,
            "photo_url": photo_url,
            "disabled": disabled,
        }
        if password:
            changes["password_hash"] = hash_password(password)
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return
        self.store.update(DocumentRef(ACCOUNTS, uid), changes)
        logger.info("Updated account %s (%s)", uid, ", ".join(sorted(changes)))

    def disable_account(self, uid: str) -> None:
        self.update_account(uid, disabled=True)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Account id for valid credentials of an enabled account, else None."""
        account = self.find_by_email(email)
        if not account or account.get("disabled"):
            return None
        if not verify_password(password, account.get("password_hash", "")):
            return None
        return account["uid"]

    def create_session(self, uid: str) -> str:
        token = secrets.token_hex(24)
        self.store.set(DocumentRef(SESSIONS, token), {"token": token, "uid": uid})
        return token

    def resolve_session(self, token: str) -> Optional[str]:
        session = self.store.get(DocumentRef(SESSIONS, token))
        if not session:
            return None
        return session["uid"]
