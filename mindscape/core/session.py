# mindscape/core/session.py
from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from typing import Optional
from PyQt6.QtCore import QObject, pyqtSignal

from mindscape import db_ops as dbo

log = logging.getLogger("session")


class NotAuthenticatedError(RuntimeError):
    """Raised when an operation needs a signed-in user and there is none."""


@dataclass
class CurrentUser:
    id: int
    email: str
    display_name: Optional[str] = None


@dataclass
class SessionData:
    user: Optional[CurrentUser] = None
    access_token: Optional[str] = None


class SessionManager(QObject):
    """
    Stand-in for the hosted auth service: email/password accounts, one
    current session, and the bearer credential attached to chat requests.
    """
    sessionChanged = pyqtSignal(object)   # emits SessionData

    def __init__(self, conn, cfg: Optional[dict] = None):
        super().__init__()
        self._conn = conn
        self._cfg = cfg or {}
        self.current = SessionData()

    # --- account helpers ---

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> CurrentUser:
        """Create the account and sign straight in."""
        dbo.create_user(self._conn, email=email, password=password, display_name=display_name)
        return self.sign_in(email, password)

    def sign_in(self, email: str, password: str) -> CurrentUser:
        res = dbo.authenticate(self._conn, email=email, password=password)
        if res is None:
            log.info("Sign-in rejected for %s", (email or "").strip().lower())
            raise ValueError("Invalid email or password")
        user = CurrentUser(id=int(res["id"]), email=res["email"], display_name=res.get("display_name"))
        self.current = SessionData(user=user, access_token=secrets.token_urlsafe(32))
        log.info("Signed in user id=%s", user.id)
        self.sessionChanged.emit(self.current)
        return user

    def sign_out(self) -> None:
        if self.current.user is not None:
            log.info("Signed out user id=%s", self.current.user.id)
        self.current = SessionData()
        self.sessionChanged.emit(self.current)

    def update_display_name(self, display_name: str) -> None:
        user = self.require_user()
        dbo.upsert_profile(self._conn, user.id, display_name)
        user.display_name = display_name
        self.sessionChanged.emit(self.current)

    # --- session contract used by screens/services ---

    def has_session(self) -> bool:
        return self.current.user is not None

    def get_current_user(self) -> Optional[CurrentUser]:
        return self.current.user

    def require_user(self) -> CurrentUser:
        user = self.current.user
        if user is None:
            raise NotAuthenticatedError("Please sign in first")
        return user

    def bearer_token(self) -> Optional[str]:
        """Configured chat key if any, else this session's access token."""
        chat_cfg = self._cfg.get("chat") or {}
        return chat_cfg.get("api_key") or self.current.access_token
