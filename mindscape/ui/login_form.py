# mindscape/ui/login_form.py
from __future__ import annotations
import logging
from PyQt6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QLabel, QLineEdit, QPushButton, QFormLayout, QMessageBox
)

from mindscape.core.session import SessionManager

log = logging.getLogger("ui.login")


class LoginForm(QDialog):
    """Email/password sign-in with an inline sign-up path. Accepts once a session exists."""

    def __init__(self, session: SessionManager, parent=None):
        super().__init__(parent)
        self._session = session
        self.setWindowTitle("Sign in to MindScape")

        lay = QVBoxLayout(self)
        lay.setContentsMargins(12, 12, 12, 12)
        lay.setSpacing(8)
        lay.addWidget(QLabel("<b>Welcome back</b>", self))

        form = QFormLayout()
        self._email = QLineEdit(placeholderText="you@example.com")
        self._password = QLineEdit(placeholderText="Password")
        self._password.setEchoMode(QLineEdit.EchoMode.Password)
        self._display_name = QLineEdit(placeholderText="Display name (sign-up only)")
        form.addRow("Email", self._email)
        form.addRow("Password", self._password)
        form.addRow("Name", self._display_name)
        lay.addLayout(form)

        buttons = QHBoxLayout(); buttons.addStretch(1)
        btn_signup = QPushButton("Create account"); btn_signup.clicked.connect(self._on_signup)
        btn_login = QPushButton("Sign in"); btn_login.setDefault(True); btn_login.clicked.connect(self._on_login)
        buttons.addWidget(btn_signup); buttons.addWidget(btn_login)
        lay.addLayout(buttons)

    def _credentials(self) -> tuple[str, str] | None:
        email = (self._email.text() or "").strip()
        password = self._password.text() or ""
        if not email or not password:
            QMessageBox.warning(self, "Missing details", "Please enter your email and password.")
            return None
        return email, password

    def _on_login(self):
        creds = self._credentials()
        if not creds:
            return
        try:
            self._session.sign_in(*creds)
        except ValueError as exc:
            QMessageBox.warning(self, "Sign-in failed", str(exc))
            return
        self.accept()

    def _on_signup(self):
        creds = self._credentials()
        if not creds:
            return
        try:
            self._session.sign_up(*creds, display_name=(self._display_name.text() or "").strip() or None)
        except ValueError as exc:
            QMessageBox.warning(self, "Sign-up failed", str(exc))
            return
        self.accept()
