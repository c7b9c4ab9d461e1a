import pytest
from PIL import Image

from mindscape.core.session import SessionManager
from mindscape.services.wellness import WellnessService, image_mime, mood_score


@pytest.fixture
def wellness(conn, session, data_dir):
    return WellnessService(conn, session, data_dir)


def test_mood_scores():
    assert mood_score("happy") == 5
    assert mood_score("Sad") == 2
    assert mood_score("depressed") == 1
    assert mood_score("confused") == 3
    assert mood_score(None) == 3


def test_log_and_list_moods(wellness):
    wellness.log_mood("Good", note=" sunny day ", intensity=7)
    wellness.log_mood("sad")
    moods = wellness.list_moods()
    assert {m["mood"] for m in moods} == {"good", "sad"}
    good = next(m for m in moods if m["mood"] == "good")
    assert good["note"] == "sunny day" and good["intensity"] == 7
    assert len(wellness.list_moods(limit=1)) == 1


@pytest.mark.parametrize("mood,intensity", [("meh", None), ("happy", 0), ("happy", 11)])
def test_log_mood_validation(wellness, mood, intensity):
    with pytest.raises(ValueError):
        wellness.log_mood(mood, intensity=intensity)


def test_journal(wellness):
    e = wellness.add_entry("Monday", "Went for a walk.")
    assert wellness.list_entries()[0]["content"] == "Went for a walk."
    with pytest.raises(ValueError):
        wellness.add_entry("Empty", "  ")
    wellness.delete_entry(e["id"])
    assert wellness.list_entries() == []


def test_journal_in_strict_store(strict_conn, data_dir):
    s = SessionManager(strict_conn)
    s.sign_up("kim@example.com", "pw")
    svc = WellnessService(strict_conn, s, data_dir)
    svc.add_entry("Secret", "only for me")
    assert svc.list_entries()[0]["content"] == "only for me"


def test_goals(wellness):
    g = wellness.add_goal("Meditate", "10 min daily")
    assert g["progress"] == 0 and g["completed"] is False

    g = wellness.set_progress(g["id"], 140)
    assert g["progress"] == 100 and g["completed"] is True
    g = wellness.set_progress(g["id"], -5)
    assert g["progress"] == 0 and g["completed"] is False

    g = wellness.toggle_completed(g["id"])
    assert g["completed"] is True and g["progress"] == 100
    g = wellness.toggle_completed(g["id"])
    assert g["completed"] is False

    with pytest.raises(ValueError):
        wellness.add_goal("  ")
    wellness.delete_goal(g["id"])
    assert wellness.list_goals() == []


def test_other_users_rows_are_off_limits(conn, session, wellness):
    g = wellness.add_goal("Mine")
    session.sign_out()
    session.sign_up("other@example.com", "pw")
    with pytest.raises(LookupError):
        wellness.set_progress(g["id"], 50)
    with pytest.raises(LookupError):
        wellness.delete_goal(g["id"])
    assert wellness.list_goals() == []


def test_inspiration_board(wellness, tmp_path):
    img = tmp_path / "calm.png"
    Image.new("RGB", (8, 8), (120, 180, 200)).save(img)
    by_url = wellness.add_item(image_url="https://example.com/sea.jpg", title="Sea")
    by_file = wellness.add_item(image_path=str(img), title="Calm lake")

    assert wellness.image_path(by_file).read_bytes() == img.read_bytes()
    assert wellness.image_path(by_url) is None

    fav = wellness.toggle_favorite(by_url["id"])
    assert fav["is_favorite"] is True
    assert [i["title"] for i in wellness.search("LAKE")] == ["Calm lake"]
    assert len(wellness.search("")) == 2


def test_inspiration_rejects_bad_input(wellness, tmp_path):
    with pytest.raises(ValueError):
        wellness.add_item(title="nothing")
    doc = tmp_path / "notes.png"
    doc.write_text("not an image")
    with pytest.raises(ValueError):
        wellness.add_item(image_path=str(doc))


def test_dashboard_stats(wellness):
    assert wellness.dashboard_stats() == {"mood_count": 0, "journal_count": 0, "goals_progress": 0}
    wellness.log_mood("okay")
    wellness.add_entry("", "text")
    a = wellness.add_goal("a")
    wellness.add_goal("b")
    wellness.set_progress(a["id"], 25)
    stats = wellness.dashboard_stats()
    # (25 + 0) / 2 = 12.5 rounds up
    assert stats == {"mood_count": 1, "journal_count": 1, "goals_progress": 13}


def test_image_mime_reads_content_not_extension(tmp_path):
    img = tmp_path / "photo.dat"
    Image.new("RGB", (4, 4)).save(img, format="JPEG")
    assert image_mime(str(img)) == "image/jpeg"
