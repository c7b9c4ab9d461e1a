# mindscape/paths.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Tuple

DATA_DIR_ENV = "MINDSCAPE_DATA_DIR"


def _ensure(d: Path) -> Path:
    d.mkdir(parents=True, exist_ok=True)
    return d


def default_data_dir() -> Path:
    """./data, or wherever MINDSCAPE_DATA_DIR points."""
    override = os.getenv(DATA_DIR_ENV)
    return Path(override).expanduser().resolve() if override else Path("data").resolve()


def log_paths(data_dir: Path) -> Tuple[Path, Path]:
    """(logs directory, main log file) under data_dir."""
    logs = _ensure(data_dir / "logs")
    return logs, logs / "app.log"


def cas_dir(data_dir: Path) -> Path:
    # content-addressed image store: data/cas/<sha256>
    return _ensure(data_dir / "cas")


def settings_dir(project_root: Path | None = None) -> Path:
    return _ensure(Path(project_root or ".").resolve() / "settings")
