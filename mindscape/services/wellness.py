# mindscape/services/wellness.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from PIL import Image, UnidentifiedImageError

from mindscape import db_ops as dbo
from mindscape.core.session import SessionManager

log = logging.getLogger("wellness")

MOODS = ("happy", "good", "okay", "sad", "anxious", "angry", "depressed")

# chart score per mood; anything unknown plots as neutral
MOOD_SCORES: Dict[str, int] = {
    "happy": 5,
    "good": 4,
    "okay": 3,
    "sad": 2,
    "anxious": 1,
    "angry": 1,
    "depressed": 1,
}
NEUTRAL_SCORE = 3


def mood_score(mood: Optional[str]) -> int:
    return MOOD_SCORES.get((mood or "").strip().lower(), NEUTRAL_SCORE)


def image_mime(path: str) -> str:
    """MIME type judged from the file content. Raises ValueError when it is not an image."""
    try:
        with Image.open(path) as im:
            fmt = (im.format or "").upper()
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError(f"Not an image: {path}") from exc
    return Image.MIME.get(fmt, "application/octet-stream")


class WellnessService:
    """Mood log, journal, goals, inspiration board and dashboard figures for the signed-in user."""

    def __init__(self, conn, session: SessionManager, data_dir: Optional[Path] = None):
        self._conn = conn
        self._session = session
        self._data_dir = data_dir

    def _uid(self) -> int:
        return self._session.require_user().id

    def _owned(self, table: str, row_id: int) -> Dict[str, Any]:
        row = dbo.get(self._conn, table, row_id)
        if row is None or row.get("user_id") != self._uid():
            raise LookupError(f"No such {table} row: {row_id}")
        return row

    # ---------- moods ----------

    def log_mood(self, mood: str, note: str = "", intensity: Optional[int] = None) -> Dict[str, Any]:
        key = (mood or "").strip().lower()
        if key not in MOODS:
            raise ValueError(f"Unknown mood {mood!r}; expected one of {', '.join(MOODS)}")
        if intensity is not None and not 1 <= int(intensity) <= 10:
            raise ValueError("intensity must be between 1 and 10")
        row = dbo.insert(self._conn, "moods", {
            "user_id": self._uid(), "mood": key,
            "intensity": int(intensity) if intensity is not None else None,
            "note": (note or "").strip() or None,
        })
        log.info("Mood logged: %s", key)
        return row

    def list_moods(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return dbo.query(self._conn, "moods", {"user_id": self._uid()},
                         order_by="created", descending=True, limit=limit)

    # ---------- journal ----------

    def add_entry(self, title: str, content: str) -> Dict[str, Any]:
        if not (content or "").strip():
            raise ValueError("Journal entry is empty")
        return dbo.insert(self._conn, "journals", {
            "user_id": self._uid(), "title": (title or "").strip() or None, "content": content,
        })

    def list_entries(self) -> List[Dict[str, Any]]:
        return dbo.query(self._conn, "journals", {"user_id": self._uid()},
                         order_by="created", descending=True)

    def delete_entry(self, entry_id: int) -> None:
        self._owned("journals", entry_id)
        dbo.delete(self._conn, "journals", {"id": int(entry_id)})

    # ---------- goals ----------

    def add_goal(self, title: str, description: str = "") -> Dict[str, Any]:
        if not (title or "").strip():
            raise ValueError("Goal title is required")
        return dbo.insert(self._conn, "goals", {
            "user_id": self._uid(), "title": title.strip(),
            "description": (description or "").strip() or None,
            "progress": 0, "completed": False,
        })

    def list_goals(self) -> List[Dict[str, Any]]:
        return dbo.query(self._conn, "goals", {"user_id": self._uid()}, order_by="created", descending=True)

    def set_progress(self, goal_id: int, progress: int) -> Dict[str, Any]:
        self._owned("goals", goal_id)
        pct = max(0, min(100, int(progress)))
        return dbo.update(self._conn, "goals", goal_id, {"progress": pct, "completed": pct == 100})

    def toggle_completed(self, goal_id: int) -> Dict[str, Any]:
        goal = self._owned("goals", goal_id)
        done = not goal["completed"]
        changes: Dict[str, Any] = {"completed": done}
        if done:
            changes["progress"] = 100
        return dbo.update(self._conn, "goals", goal_id, changes)

    def delete_goal(self, goal_id: int) -> None:
        self._owned("goals", goal_id)
        dbo.delete(self._conn, "goals", {"id": int(goal_id)})

    # ---------- inspiration board ----------

    def add_item(self, *, image_url: Optional[str] = None, title: Optional[str] = None,
                 image_path: Optional[str] = None) -> Dict[str, Any]:
        """Pin an image by URL, or by local file (copied into the CAS)."""
        file_id = None
        if image_path:
            if self._data_dir is None:
                raise RuntimeError("No data directory configured for uploads")
            mime = image_mime(image_path)
            file_id = dbo.cas_put(self._conn, self._data_dir, src_path=image_path, mime=mime)
        elif not (image_url or "").strip():
            raise ValueError("Please provide an image URL or file")
        return dbo.insert(self._conn, "inspiration_items", {
            "user_id": self._uid(), "title": (title or "").strip() or None,
            "image_url": (image_url or "").strip() or None, "file_id": file_id,
            "is_favorite": False,
        })

    def list_items(self) -> List[Dict[str, Any]]:
        return dbo.query(self._conn, "inspiration_items", {"user_id": self._uid()},
                         order_by="created", descending=True)

    def toggle_favorite(self, item_id: int) -> Dict[str, Any]:
        item = self._owned("inspiration_items", item_id)
        return dbo.update(self._conn, "inspiration_items", item_id, {"is_favorite": not item["is_favorite"]})

    def search(self, text: str) -> List[Dict[str, Any]]:
        needle = (text or "").strip().lower()
        items = self.list_items()
        if not needle:
            return items
        return [i for i in items if needle in (i.get("title") or "").lower()]

    def image_path(self, item: Dict[str, Any]) -> Optional[Path]:
        if not item.get("file_id") or self._data_dir is None:
            return None
        return dbo.cas_path_for_file(self._conn, self._data_dir, item["file_id"])

    # ---------- dashboard ----------

    def dashboard_stats(self) -> Dict[str, int]:
        uid = self._uid()
        goals = dbo.query(self._conn, "goals", {"user_id": uid})
        # half-up, not banker's rounding
        progress = int(sum(g["progress"] or 0 for g in goals) / len(goals) + 0.5) if goals else 0
        return {
            "mood_count": dbo.count(self._conn, "moods", {"user_id": uid}),
            "journal_count": dbo.count(self._conn, "journals", {"user_id": uid}),
            "goals_progress": int(progress),
        }
