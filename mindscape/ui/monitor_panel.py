# mindscape/ui/monitor_panel.py
from __future__ import annotations
import logging
from typing import Callable, Optional
from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QLabel, QLineEdit, QPushButton, QComboBox, QListWidget,
    QListWidgetItem, QGroupBox
)

from mindscape.services.monitoring import MonitoringService, MONITOR_ROLES

log = logging.getLogger("ui.monitor")

ROW_ID = Qt.ItemDataRole.UserRole


class MonitorPanel(QWidget):
    """
    Guardian monitoring screen.

    Top half is the monitored user's side: incoming requests to approve/deny and
    access already granted (revocable). Bottom half is the monitor's side: role,
    new request by email, and a snapshot of each approved user.
    """
    changed = pyqtSignal()

    def __init__(self, service: MonitoringService, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._svc = service
        root = QVBoxLayout(self); root.setContentsMargins(12, 12, 12, 12); root.setSpacing(8)
        root.addWidget(QLabel("<b>Monitoring</b>", self))
        self.status = QLabel("", self)
        self.status.setStyleSheet("color:#b3261e;")
        root.addWidget(self.status)

        # -- requests aimed at me --
        mine = QGroupBox("Requests to monitor you", self)
        mine_lay = QVBoxLayout(mine)
        self.pending = QListWidget(mine)
        approve = QPushButton("Approve", mine); approve.clicked.connect(self.approve_selected)
        deny = QPushButton("Deny", mine); deny.clicked.connect(self.deny_selected)
        self.granted = QListWidget(mine)
        revoke = QPushButton("Revoke", mine); revoke.clicked.connect(self.revoke_selected)
        mine_lay.addWidget(self.pending)
        mine_lay.addLayout(_row(approve, deny))
        mine_lay.addWidget(QLabel("Granted access", mine))
        mine_lay.addWidget(self.granted)
        mine_lay.addLayout(_row(revoke))
        root.addWidget(mine)

        # -- people I monitor --
        theirs = QGroupBox("People you monitor", self)
        theirs_lay = QVBoxLayout(theirs)
        self.role = QComboBox(theirs); self.role.addItems(MONITOR_ROLES)
        set_role = QPushButton("Set role", theirs); set_role.clicked.connect(self.save_role)
        self.email = QLineEdit(theirs, placeholderText="Email of the person to monitor")
        send = QPushButton("Request access", theirs); send.clicked.connect(self.send_request)
        self.monitored = QListWidget(theirs)
        self.monitored.currentItemChanged.connect(lambda *_: self.show_snapshot())
        self.snapshot = QListWidget(theirs)
        resolve = QPushButton("Resolve alert", theirs); resolve.clicked.connect(self.resolve_selected)
        theirs_lay.addLayout(_row(self.role, set_role))
        theirs_lay.addLayout(_row(self.email, send))
        theirs_lay.addWidget(self.monitored)
        theirs_lay.addWidget(self.snapshot)
        theirs_lay.addLayout(_row(resolve))
        root.addWidget(theirs, 1)

    def _attempt(self, action: Callable[[], object]) -> bool:
        try:
            action()
        except (ValueError, LookupError, PermissionError) as exc:
            log.debug("Action rejected: %s", exc)
            self.status.setText(str(exc))
            return False
        self.status.clear()
        self.refresh()
        self.changed.emit()
        return True

    # ---- actions ----
    def save_role(self):
        self._attempt(lambda: self._svc.set_monitor_role(self.role.currentText()))

    def send_request(self):
        if self._attempt(lambda: self._svc.request_monitoring(self.email.text(), self.role.currentText())):
            self.email.clear()

    def approve_selected(self):
        rid = _selected(self.pending)
        if rid is not None:
            self._attempt(lambda: self._svc.approve_request(rid))

    def deny_selected(self):
        rid = _selected(self.pending)
        if rid is not None:
            self._attempt(lambda: self._svc.deny_request(rid))

    def revoke_selected(self):
        rid = _selected(self.granted)
        if rid is not None:
            self._attempt(lambda: self._svc.revoke_access(rid))

    def resolve_selected(self):
        alert_id = _selected(self.snapshot)
        if alert_id is not None:
            self._attempt(lambda: self._svc.resolve_alert(alert_id))

    # ---- view ----
    def refresh(self):
        role = self._svc.get_monitor_role()
        if role:
            self.role.setCurrentText(role)
        _fill(self.pending, self._svc.pending_requests(),
              lambda r: f"{r.get('monitor_display_name') or 'Someone'} ({r['relationship_type']})")
        _fill(self.granted, self._svc.granted_access(),
              lambda r: f"{r.get('monitor_display_name') or 'Someone'} ({r['relationship_type']})")
        keep = _selected(self.monitored)
        _fill(self.monitored, self._svc.monitored_users(), lambda u: u.get("display_name") or f"User {u['id']}")
        for i in range(self.monitored.count()):
            if self.monitored.item(i).data(ROW_ID) == keep:
                self.monitored.setCurrentRow(i)
        self.show_snapshot()

    def show_snapshot(self):
        self.snapshot.clear()
        user_id = _selected(self.monitored)
        if user_id is None:
            return
        try:
            snap = self._svc.mental_health_data(user_id)
        except PermissionError as exc:
            self.status.setText(str(exc))
            return
        for a in snap.alerts:
            item = QListWidgetItem(f"⚠ [{a['severity']}] {a['alert_type']}: {a['message']}")
            item.setData(ROW_ID, a["id"])
            self.snapshot.addItem(item)
        for point in snap.chart:
            # chart rows are informational; no id to act on
            self.snapshot.addItem(f"{point['date']}  score {point['score']}")


def _row(*widgets) -> QHBoxLayout:
    lay = QHBoxLayout()
    for w in widgets:
        lay.addWidget(w)
    return lay


def _fill(lst: QListWidget, rows, label: Callable[[dict], str]) -> None:
    lst.clear()
    for r in rows:
        item = QListWidgetItem(label(r))
        item.setData(ROW_ID, r["id"])
        lst.addItem(item)


def _selected(lst: QListWidget) -> Optional[int]:
    item = lst.currentItem()
    return item.data(ROW_ID) if item is not None else None
