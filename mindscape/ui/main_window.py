# mindscape/ui/main_window.py
from __future__ import annotations
import logging
from typing import Optional
from PyQt6.QtWidgets import QMainWindow, QWidget, QTabWidget, QStatusBar, QLabel

from mindscape.services.wellness import WellnessService
from mindscape.services.monitoring import MonitoringService
from .chat_controller import ChatController
from .chat_window import ChatWindow
from .wellness_panels import DashboardPanel, MoodPanel, JournalPanel, GoalsPanel, InspirationPanel
from .monitor_panel import MonitorPanel

log = logging.getLogger("ui")


class MainWindow(QMainWindow):
    def __init__(self, controller: ChatController, wellness: WellnessService,
                 monitoring: MonitoringService, user_label: str = "",
                 parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._ctl = controller
        self.setWindowTitle("MindScape")
        self.resize(960, 680)

        self.dashboard = DashboardPanel(wellness, self)
        self.chat = ChatWindow(controller, self)
        self.panels = [
            self.dashboard,
            MoodPanel(wellness, self),
            JournalPanel(wellness, self),
            GoalsPanel(wellness, self),
            InspirationPanel(wellness, self),
            MonitorPanel(monitoring, self),
        ]

        self.tabs = QTabWidget(self)
        self.tabs.addTab(self.dashboard, "Dashboard")
        self.tabs.addTab(self.chat, "AI Assistant")
        for panel, name in zip(self.panels[1:], ("Mood", "Journal", "Goals", "Inspiration", "Monitor")):
            self.tabs.addTab(panel, name)
        self.setCentralWidget(self.tabs)

        # dashboard figures follow edits made on the other tabs
        for panel in self.panels[1:-1]:
            panel.changed.connect(self.dashboard.refresh)

        bar = QStatusBar(self)
        self.reply_state = QLabel("Idle", bar)
        bar.addPermanentWidget(self.reply_state)
        if user_label:
            bar.showMessage(f"Signed in as {user_label}")
        self.setStatusBar(bar)
        controller.broker.queue_changed.connect(self._on_queue_changed)

    def refresh_all(self):
        for panel in self.panels:
            panel.refresh()

    def _on_queue_changed(self, active: int, waiting: int):
        if active == -1:
            self.reply_state.setText("Idle")
        elif waiting:
            self.reply_state.setText(f"Assistant replying · {waiting} waiting")
        else:
            self.reply_state.setText("Assistant replying…")

    def closeEvent(self, e):
        log.info("Main window closing; stopping reply worker")
        self._ctl.shutdown()
        super().closeEvent(e)
