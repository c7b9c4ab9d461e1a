# mindscape/ui/wellness_panels.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable, Optional
from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QFormLayout, QLabel, QLineEdit, QPlainTextEdit, QPushButton,
    QComboBox, QSpinBox, QListWidget, QListWidgetItem, QFileDialog
)

from mindscape.services.wellness import WellnessService, MOODS

log = logging.getLogger("ui.wellness")

ROW_ID = Qt.ItemDataRole.UserRole


def _when(ts) -> str:
    return datetime.fromtimestamp(int(ts)).strftime("%b %d, %Y") if ts else ""


class _Panel(QWidget):
    """Shared bits: a status line and a guard that turns service errors into it."""
    changed = pyqtSignal()

    def __init__(self, service: WellnessService, title: str, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._svc = service
        self._root = QVBoxLayout(self); self._root.setContentsMargins(12, 12, 12, 12); self._root.setSpacing(8)
        self._root.addWidget(QLabel(f"<b>{title}</b>", self))
        self.status = QLabel("", self)
        self.status.setStyleSheet("color:#b3261e;")

    def _attempt(self, action: Callable[[], object]) -> bool:
        try:
            action()
        except (ValueError, LookupError, PermissionError, RuntimeError) as exc:
            log.debug("Action rejected: %s", exc)
            self.status.setText(str(exc))
            return False
        self.status.clear()
        self.refresh()
        self.changed.emit()
        return True

    def refresh(self):
        pass

    @staticmethod
    def _selected_id(lst: QListWidget) -> Optional[int]:
        item = lst.currentItem()
        return item.data(ROW_ID) if item is not None else None


class DashboardPanel(_Panel):
    def __init__(self, service: WellnessService, parent: Optional[QWidget] = None):
        super().__init__(service, "Dashboard", parent)
        form = QFormLayout()
        self.moods = QLabel("0", self)
        self.entries = QLabel("0", self)
        self.progress = QLabel("0%", self)
        form.addRow("Mood entries", self.moods)
        form.addRow("Journal entries", self.entries)
        form.addRow("Goals progress", self.progress)
        self._root.addLayout(form)
        self._root.addWidget(self.status)
        self._root.addStretch(1)

    def refresh(self):
        stats = self._svc.dashboard_stats()
        self.moods.setText(str(stats["mood_count"]))
        self.entries.setText(str(stats["journal_count"]))
        self.progress.setText(f"{stats['goals_progress']}%")


class MoodPanel(_Panel):
    def __init__(self, service: WellnessService, parent: Optional[QWidget] = None):
        super().__init__(service, "Mood Tracker", parent)
        row = QHBoxLayout()
        self.mood = QComboBox(self); self.mood.addItems(MOODS)
        self.intensity = QSpinBox(self); self.intensity.setRange(1, 10); self.intensity.setValue(5)
        self.note = QLineEdit(self, placeholderText="What's on your mind? (optional)")
        btn = QPushButton("Log mood", self); btn.clicked.connect(self.log_mood)
        row.addWidget(self.mood); row.addWidget(self.intensity); row.addWidget(self.note, 1); row.addWidget(btn)
        self._root.addLayout(row)
        self._root.addWidget(self.status)
        self.history = QListWidget(self)
        self._root.addWidget(self.history, 1)

    def log_mood(self):
        if self._attempt(lambda: self._svc.log_mood(self.mood.currentText(), self.note.text(),
                                                    self.intensity.value())):
            self.note.clear()

    def refresh(self):
        self.history.clear()
        for m in self._svc.list_moods(limit=50):
            note = f" · {m['note']}" if m.get("note") else ""
            self.history.addItem(f"{_when(m['created'])}  {m['mood']} ({m.get('intensity') or '-'}){note}")


class JournalPanel(_Panel):
    def __init__(self, service: WellnessService, parent: Optional[QWidget] = None):
        super().__init__(service, "Journal", parent)
        self.title = QLineEdit(self, placeholderText="Title (optional)")
        self.content = QPlainTextEdit(self); self.content.setPlaceholderText("Write freely…")
        buttons = QHBoxLayout()
        save = QPushButton("Save entry", self); save.clicked.connect(self.save_entry)
        remove = QPushButton("Delete selected", self); remove.clicked.connect(self.delete_selected)
        buttons.addWidget(save); buttons.addWidget(remove); buttons.addStretch(1)
        self.entries = QListWidget(self)
        for w in (self.title, self.content):
            self._root.addWidget(w)
        self._root.addLayout(buttons)
        self._root.addWidget(self.status)
        self._root.addWidget(self.entries, 1)

    def save_entry(self):
        if self._attempt(lambda: self._svc.add_entry(self.title.text(), self.content.toPlainText())):
            self.title.clear()
            self.content.clear()

    def delete_selected(self):
        entry_id = self._selected_id(self.entries)
        if entry_id is not None:
            self._attempt(lambda: self._svc.delete_entry(entry_id))

    def refresh(self):
        self.entries.clear()
        for e in self._svc.list_entries():
            item = QListWidgetItem(f"{_when(e['created'])}  {e.get('title') or 'Untitled'}")
            item.setToolTip(e["content"])
            item.setData(ROW_ID, e["id"])
            self.entries.addItem(item)


class GoalsPanel(_Panel):
    def __init__(self, service: WellnessService, parent: Optional[QWidget] = None):
        super().__init__(service, "Goals", parent)
        row = QHBoxLayout()
        self.title = QLineEdit(self, placeholderText="New goal")
        self.description = QLineEdit(self, placeholderText="Description (optional)")
        add = QPushButton("Add", self); add.clicked.connect(self.add_goal)
        row.addWidget(self.title, 1); row.addWidget(self.description, 1); row.addWidget(add)
        self._root.addLayout(row)
        self._root.addWidget(self.status)
        self.goals = QListWidget(self)
        self._root.addWidget(self.goals, 1)

        edit = QHBoxLayout()
        self.progress = QSpinBox(self); self.progress.setRange(0, 100); self.progress.setSuffix("%")
        set_btn = QPushButton("Set progress", self); set_btn.clicked.connect(self.set_progress)
        done_btn = QPushButton("Toggle done", self); done_btn.clicked.connect(self.toggle_done)
        del_btn = QPushButton("Delete", self); del_btn.clicked.connect(self.delete_selected)
        for w in (self.progress, set_btn, done_btn, del_btn):
            edit.addWidget(w)
        edit.addStretch(1)
        self._root.addLayout(edit)

    def add_goal(self):
        if self._attempt(lambda: self._svc.add_goal(self.title.text(), self.description.text())):
            self.title.clear()
            self.description.clear()

    def set_progress(self):
        goal_id = self._selected_id(self.goals)
        if goal_id is not None:
            self._attempt(lambda: self._svc.set_progress(goal_id, self.progress.value()))

    def toggle_done(self):
        goal_id = self._selected_id(self.goals)
        if goal_id is not None:
            self._attempt(lambda: self._svc.toggle_completed(goal_id))

    def delete_selected(self):
        goal_id = self._selected_id(self.goals)
        if goal_id is not None:
            self._attempt(lambda: self._svc.delete_goal(goal_id))

    def refresh(self):
        self.goals.clear()
        for g in self._svc.list_goals():
            mark = "✓" if g["completed"] else " "
            item = QListWidgetItem(f"[{mark}] {g['title']}  {g['progress']}%")
            item.setData(ROW_ID, g["id"])
            self.goals.addItem(item)


class InspirationPanel(_Panel):
    def __init__(self, service: WellnessService, parent: Optional[QWidget] = None):
        super().__init__(service, "Inspiration Board", parent)
        row = QHBoxLayout()
        self.title = QLineEdit(self, placeholderText="Title (optional)")
        self.url = QLineEdit(self, placeholderText="Image URL")
        add = QPushButton("Add URL", self); add.clicked.connect(self.add_url)
        upload = QPushButton("Upload…", self); upload.clicked.connect(self._pick_file)
        row.addWidget(self.title); row.addWidget(self.url, 1); row.addWidget(add); row.addWidget(upload)
        self._root.addLayout(row)

        self.search = QLineEdit(self, placeholderText="Search titles")
        self.search.textChanged.connect(lambda _t: self.refresh())
        self._root.addWidget(self.search)
        self._root.addWidget(self.status)
        self.items = QListWidget(self)
        self.items.itemDoubleClicked.connect(lambda _i: self.toggle_favorite())
        self._root.addWidget(self.items, 1)

    def add_url(self):
        if self._attempt(lambda: self._svc.add_item(image_url=self.url.text(), title=self.title.text())):
            self.url.clear()
            self.title.clear()

    def add_image_file(self, path: str) -> bool:
        ok = self._attempt(lambda: self._svc.add_item(image_path=path, title=self.title.text()))
        if ok:
            self.title.clear()
        return ok

    def _pick_file(self):
        path, _ = QFileDialog.getOpenFileName(self, "Choose an image", "", "Images (*.png *.jpg *.jpeg *.gif *.webp)")
        if path:
            self.add_image_file(path)

    def toggle_favorite(self):
        item_id = self._selected_id(self.items)
        if item_id is not None:
            self._attempt(lambda: self._svc.toggle_favorite(item_id))

    def refresh(self):
        self.items.clear()
        for i in self._svc.search(self.search.text()):
            where = self._svc.image_path(i) or i.get("image_url") or ""
            star = "★ " if i["is_favorite"] else ""
            item = QListWidgetItem(f"{star}{i.get('title') or 'Untitled'}  ({where})")
            item.setData(ROW_ID, i["id"])
            self.items.addItem(item)
