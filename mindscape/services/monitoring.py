# mindscape/services/monitoring.py
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from mindscape import db_ops as dbo
from mindscape.core.session import SessionManager
from mindscape.services.wellness import mood_score

log = logging.getLogger("monitoring")

MONITOR_ROLES = ("parent", "guardian", "police")
ALERT_SEVERITIES = ("low", "medium", "high", "critical")
RECENT_MOODS = 30


@dataclass
class MentalHealthSnapshot:
    moods: List[Dict[str, Any]] = field(default_factory=list)     # newest first
    alerts: List[Dict[str, Any]] = field(default_factory=list)    # unresolved, newest first
    chart: List[Dict[str, Any]] = field(default_factory=list)     # oldest first: {date, score}


def chart_label(ts: int) -> str:
    """'Mar 4' style label for a unix timestamp."""
    d = datetime.fromtimestamp(int(ts))
    return f"{d.strftime('%b')} {d.day}"


class MonitoringService:
    """
    Guardian access to another user's mood and alert data. Access exists only
    after the monitored user approves the request, and they can revoke it.
    """

    def __init__(self, conn, session: SessionManager):
        self._conn = conn
        self._session = session

    def _uid(self) -> int:
        return self._session.require_user().id

    def _display_name(self, user_id: int) -> Optional[str]:
        profile = dbo.get_profile(self._conn, user_id)
        return profile.get("display_name") if profile else None

    # ---------- roles ----------

    def get_monitor_role(self) -> Optional[str]:
        rows = dbo.query(self._conn, "user_roles", {"user_id": self._uid(), "role": list(MONITOR_ROLES)}, limit=1)
        return rows[0]["role"] if rows else None

    def set_monitor_role(self, role: str) -> str:
        if role not in MONITOR_ROLES:
            raise ValueError(f"Unknown monitoring role {role!r}")
        uid = self._uid()
        dbo.delete(self._conn, "user_roles", {"user_id": uid, "role": list(MONITOR_ROLES)})
        dbo.insert(self._conn, "user_roles", {"user_id": uid, "role": role})
        log.info("User id=%s now monitors as %s", uid, role)
        return role

    # ---------- consent requests ----------

    def request_monitoring(self, email: str, relationship_type: str = "parent") -> Dict[str, Any]:
        if not (email or "").strip():
            raise ValueError("Please enter an email address")
        uid = self._uid()
        target = dbo.find_user_by_email(self._conn, email)
        if target is None:
            raise LookupError("User not found with that email")
        if target["id"] == uid:
            raise ValueError("You cannot monitor yourself")
        if dbo.query(self._conn, "monitoring_relationships",
                     {"monitor_id": uid, "monitored_user_id": target["id"]}, limit=1):
            raise ValueError("A monitoring request for this user already exists")
        row = dbo.insert(self._conn, "monitoring_relationships", {
            "monitor_id": uid, "monitored_user_id": target["id"],
            "relationship_type": relationship_type, "approved": False,
        })
        log.info("Monitoring request %s: %s -> %s", row["id"], uid, target["id"])
        return row

    def pending_requests(self) -> List[Dict[str, Any]]:
        """Unapproved requests aimed at the signed-in user, with the requester's name."""
        rows = dbo.query(self._conn, "monitoring_relationships",
                         {"monitored_user_id": self._uid(), "approved": False}, order_by="created")
        for r in rows:
            r["monitor_display_name"] = self._display_name(r["monitor_id"])
        return rows

    def granted_access(self) -> List[Dict[str, Any]]:
        """Approved relationships where the signed-in user is the one being monitored."""
        rows = dbo.query(self._conn, "monitoring_relationships",
                         {"monitored_user_id": self._uid(), "approved": True}, order_by="created")
        for r in rows:
            r["monitor_display_name"] = self._display_name(r["monitor_id"])
        return rows

    def _own_request(self, request_id: int) -> Dict[str, Any]:
        rel = dbo.get(self._conn, "monitoring_relationships", request_id)
        if rel is None:
            raise LookupError(f"No such monitoring request: {request_id}")
        if rel["monitored_user_id"] != self._uid():
            raise PermissionError("Only the monitored user can decide on this request")
        return rel

    def approve_request(self, request_id: int) -> Dict[str, Any]:
        self._own_request(request_id)
        log.info("Monitoring request %s approved", request_id)
        return dbo.update(self._conn, "monitoring_relationships", request_id, {"approved": True})

    def deny_request(self, request_id: int) -> None:
        self._own_request(request_id)
        dbo.delete(self._conn, "monitoring_relationships", {"id": int(request_id)})
        log.info("Monitoring request %s denied", request_id)

    def revoke_access(self, request_id: int) -> None:
        self._own_request(request_id)
        dbo.delete(self._conn, "monitoring_relationships", {"id": int(request_id)})
        log.info("Monitoring access %s revoked", request_id)

    # ---------- monitor's view ----------

    def monitored_users(self) -> List[Dict[str, Any]]:
        rels = dbo.query(self._conn, "monitoring_relationships",
                         {"monitor_id": self._uid(), "approved": True}, order_by="created")
        out = []
        for rel in rels:
            profile = dbo.get_profile(self._conn, rel["monitored_user_id"])
            if profile:
                out.append({"id": profile["user_id"], "display_name": profile.get("display_name")})
        return out

    def _require_access(self, user_id: int) -> None:
        if not dbo.query(self._conn, "monitoring_relationships",
                         {"monitor_id": self._uid(), "monitored_user_id": int(user_id), "approved": True},
                         limit=1):
            raise PermissionError("No approved monitoring access for this user")

    def mental_health_data(self, user_id: int) -> MentalHealthSnapshot:
        self._require_access(user_id)
        moods = dbo.query(self._conn, "moods", {"user_id": int(user_id)},
                          order_by="created", descending=True, limit=RECENT_MOODS)
        alerts = dbo.query(self._conn, "alerts", {"user_id": int(user_id), "resolved": False},
                           order_by="created", descending=True)
        chart = [{"date": chart_label(m["created"]), "score": mood_score(m["mood"])} for m in reversed(moods)]
        return MentalHealthSnapshot(moods=moods, alerts=alerts, chart=chart)

    # ---------- alerts ----------

    def raise_alert(self, user_id: int, alert_type: str, message: str, severity: str = "medium") -> Dict[str, Any]:
        if severity not in ALERT_SEVERITIES:
            raise ValueError(f"Unknown severity {severity!r}")
        row = dbo.insert(self._conn, "alerts", {
            "user_id": int(user_id), "alert_type": alert_type, "severity": severity,
            "message": message, "resolved": False,
        })
        log.warning("Alert %s raised for user id=%s (%s/%s)", row["id"], user_id, alert_type, severity)
        return row

    def resolve_alert(self, alert_id: int) -> Dict[str, Any]:
        alert = dbo.get(self._conn, "alerts", alert_id)
        if alert is None:
            raise LookupError(f"No such alert: {alert_id}")
        self._require_access(alert["user_id"])
        return dbo.update(self._conn, "alerts", alert_id, {
            "resolved": True, "resolved_by": self._uid(), "resolved_at": int(time.time()),
        })
