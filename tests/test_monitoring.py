import pytest

from mindscape.core.session import SessionManager
from mindscape.services.monitoring import MonitoringService, chart_label
from mindscape.services.wellness import WellnessService


@pytest.fixture
def people(conn):
    """Two accounts: a parent and the teen they want to look after."""
    parent = SessionManager(conn)
    parent.sign_up("parent@example.com", "pw", display_name="Pat")
    teen = SessionManager(conn)
    teen.sign_up("teen@example.com", "pw", display_name="Tia")
    return parent, teen


def test_monitor_role(conn, people):
    parent, _ = people
    svc = MonitoringService(conn, parent)
    assert svc.get_monitor_role() is None
    svc.set_monitor_role("guardian")
    svc.set_monitor_role("parent")
    assert svc.get_monitor_role() == "parent"
    with pytest.raises(ValueError):
        svc.set_monitor_role("admin")


def test_request_validation(conn, people):
    parent, _ = people
    svc = MonitoringService(conn, parent)
    with pytest.raises(LookupError):
        svc.request_monitoring("ghost@example.com")
    with pytest.raises(ValueError):
        svc.request_monitoring("parent@example.com")
    svc.request_monitoring("teen@example.com")
    with pytest.raises(ValueError):
        svc.request_monitoring("TEEN@example.com")


def test_access_requires_approval(conn, people):
    parent, teen = people
    as_parent = MonitoringService(conn, parent)
    as_teen = MonitoringService(conn, teen)
    req = as_parent.request_monitoring("teen@example.com", "parent")

    assert as_parent.monitored_users() == []
    with pytest.raises(PermissionError):
        as_parent.mental_health_data(teen.require_user().id)
    with pytest.raises(PermissionError):
        as_parent.approve_request(req["id"])

    pending = as_teen.pending_requests()
    assert [(p["id"], p["monitor_display_name"]) for p in pending] == [(req["id"], "Pat")]
    as_teen.approve_request(req["id"])
    assert as_teen.pending_requests() == []
    assert [g["monitor_display_name"] for g in as_teen.granted_access()] == ["Pat"]
    assert as_parent.monitored_users() == [{"id": teen.require_user().id, "display_name": "Tia"}]

    as_teen.revoke_access(req["id"])
    assert as_parent.monitored_users() == []


def test_deny_removes_request(conn, people):
    parent, teen = people
    req = MonitoringService(conn, parent).request_monitoring("teen@example.com")
    MonitoringService(conn, teen).deny_request(req["id"])
    assert MonitoringService(conn, teen).pending_requests() == []
    with pytest.raises(LookupError):
        MonitoringService(conn, teen).deny_request(req["id"])


def test_mental_health_snapshot(conn, people, data_dir):
    parent, teen = people
    as_parent = MonitoringService(conn, parent)
    as_teen = MonitoringService(conn, teen)
    teen_id = teen.require_user().id
    as_teen.approve_request(as_parent.request_monitoring("teen@example.com")["id"])

    wellness = WellnessService(conn, teen, data_dir)
    wellness.log_mood("sad")
    wellness.log_mood("happy")
    alert = as_parent.raise_alert(teen_id, "mood_drop", "Several low days", severity="high")

    snap = as_parent.mental_health_data(teen_id)
    assert len(snap.moods) == 2
    assert [a["id"] for a in snap.alerts] == [alert["id"]]
    assert [c["score"] for c in snap.chart] == [2, 5]
    assert snap.chart[0]["date"] == chart_label(snap.moods[-1]["created"])

    resolved = as_parent.resolve_alert(alert["id"])
    assert resolved["resolved"] is True
    assert resolved["resolved_by"] == parent.require_user().id
    assert as_parent.mental_health_data(teen_id).alerts == []


def test_resolve_alert_needs_access(conn, people):
    parent, teen = people
    as_parent = MonitoringService(conn, parent)
    alert = as_parent.raise_alert(teen.require_user().id, "check_in", "No mood logged this week", "low")
    with pytest.raises(PermissionError):
        as_parent.resolve_alert(alert["id"])
    with pytest.raises(ValueError):
        as_parent.raise_alert(teen.require_user().id, "x", "y", severity="urgent")


def test_chart_label():
    # 2024-03-04 12:00 UTC is in March in every timezone
    assert chart_label(1709553600).startswith("Mar ")
