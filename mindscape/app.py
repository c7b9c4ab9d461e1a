# mindscape/app.py
from __future__ import annotations
import argparse, logging, os, platform, sys
from pathlib import Path
from PyQt6.QtWidgets import QApplication, QDialog

from .paths import default_data_dir, log_paths, settings_dir
from .settings import load_settings, apply_env_overrides, set_security_mode
from .logging_config import init_logging, install_qt_message_handler
from .constants import APP_NAME, __version__
from .db_ops import open_database
from .db_init import DB_MODE_ENV
from .core.session import SessionManager
from .infra.chat.stream_client import ChatStreamClient
from .services.chat import ChatService
from .services.wellness import WellnessService
from .services.monitoring import MonitoringService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog=APP_NAME.lower(), description="MindScape wellness companion")
    p.add_argument("--data-dir", type=str, default=None, help="Override data directory")
    p.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--no-console-log", action="store_true", help="Disable console logging")
    p.add_argument("--chat-url", type=str, default=None, help="Chat completion endpoint (SSE)")
    p.add_argument("--db-mode", choices=("open", "strict"), default=None,
                   help="Storage mode for a new database (strict encrypts chat and journal text)")
    p.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    return p.parse_args(argv)


def build_chat_client(cfg: dict, session: SessionManager) -> ChatStreamClient:
    chat = cfg["chat"]
    return ChatStreamClient(chat["url"], token=session.bearer_token, timeout=float(chat["timeout"]))


def requested_db_mode(args: argparse.Namespace, cfg: dict) -> str | None:
    """--db-mode, then MINDSCAPE_DB_MODE, then the mode remembered in settings."""
    return args.db_mode or os.getenv(DB_MODE_ENV) or (cfg.get("security") or {}).get("mode")


def run_ui(conn, cfg: dict, data_dir: Path) -> int:
    from .ui.login_form import LoginForm
    from .ui.chat_controller import ChatController
    from .ui.main_window import MainWindow

    log = logging.getLogger("boot")
    app = QApplication(sys.argv)
    install_qt_message_handler()
    session = SessionManager(conn, cfg)

    login = LoginForm(session)
    if login.exec() != QDialog.DialogCode.Accepted or not session.has_session():
        log.info("No session established; exiting.")
        return 0

    user = session.require_user()
    controller = ChatController(ChatService(conn, session, build_chat_client(cfg, session)))
    window = MainWindow(
        controller,
        WellnessService(conn, session, data_dir),
        MonitoringService(conn, session),
        user_label=user.email,
    )
    controller.load()
    window.refresh_all()
    window.show()
    log.info("Launching main window for user id=%s", user.id)
    return app.exec()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    data_dir = Path(args.data_dir).expanduser().resolve() if args.data_dir else default_data_dir()
    logs_dir, log_path = log_paths(data_dir)
    settings_path = settings_dir().joinpath("app.json")
    cfg = load_settings(settings_path)

    level = (args.log_level or cfg["logging"]["level"]).upper()
    init_logging(
        logs_dir,
        level=level,
        max_bytes=int(cfg["logging"]["max_bytes"]),
        backup_count=int(cfg["logging"]["backup_count"]),
        also_console=(not args.no_console_log),
    )
    log = logging.getLogger("boot")
    log.info("=== %s %s starting ===", APP_NAME, __version__)
    log.info("Platform: %s | Python: %s", platform.platform(), platform.python_version())
    log.info("Data dir: %s | Log file: %s", data_dir, log_path)
    log.info("Settings: %s", settings_path)

    try:
        conn, db_mode = open_database(data_dir, mode=requested_db_mode(args, cfg))
        cfg = set_security_mode(settings_path, cfg, db_mode)
    except Exception:
        log.exception("Fatal error during startup")
        return 1

    runtime_cfg = apply_env_overrides(cfg)
    if args.chat_url:
        runtime_cfg["chat"]["url"] = args.chat_url
    log.info("Database mode: %s | Chat endpoint: %s", db_mode, runtime_cfg["chat"]["url"])

    try:
        return run_ui(conn, runtime_cfg, data_dir)
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
