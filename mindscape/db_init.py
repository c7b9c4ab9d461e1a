# mindscape/db_init.py
from __future__ import annotations
import logging, os, sqlite3
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError

from .constants import SCHEMA_VERSION

log = logging.getLogger("db")
DB_FILENAME = "mindscape.db"
DB_MODES = ("open", "strict")
DB_MODE_ENV = "MINDSCAPE_DB_MODE"

KEYRING_SERVICE = "MindScape"
KEYRING_FIELD_ACCOUNT = "field-key-v1"


def ensure_database_ready(data_dir: Path, *, mode: Optional[str] = None) -> str:
    """
    Create or verify the database under data_dir and return its effective mode.
    Raises RuntimeError when an existing file fails verification.
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "cas").mkdir(parents=True, exist_ok=True)
    db_path = data_dir / DB_FILENAME

    if not db_path.exists():
        chosen = _choose_mode(mode)
        log.info("Selected database mode: %s", chosen)
        if chosen == "strict":
            # strict mode needs the field key before the first sealed write
            get_or_create_field_key(existing_only=False)
        _create_db(db_path, chosen)
        return chosen

    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("PRAGMA integrity_check;").fetchone()
        if not row or row[0] != "ok":
            raise RuntimeError(f"Integrity check failed for {db_path}")
        db_mode = read_meta(conn, "db_mode")
        if db_mode not in DB_MODES:
            raise RuntimeError(f"meta.db_mode missing or invalid in {db_path}")
        # re-running the DDL is idempotent and picks up tables added since creation
        _create_schema(conn, db_mode)
        conn.commit()
        log.info("Database ready (schema version %s, mode %s).", SCHEMA_VERSION, db_mode)
        return db_mode
    finally:
        conn.close()


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_common_pragmas(conn)
    return conn


# ------------------------- mode selection -------------------------

def _choose_mode(requested: Optional[str]) -> str:
    """Explicit argument wins, then MINDSCAPE_DB_MODE, then 'open'."""
    for candidate in (requested, os.getenv(DB_MODE_ENV)):
        val = (candidate or "").strip().lower()
        if val in DB_MODES:
            return val
        if val:
            log.warning("Ignoring unknown db mode %r", candidate)
    return "open"


def _create_db(path: Path, mode: str) -> None:
    conn = sqlite3.connect(path)
    try:
        _apply_common_pragmas(conn)
        _create_schema(conn, mode=mode)
        conn.commit()
    finally:
        conn.close()
    log.info("New %s database created at %s.", mode.upper(), path)


# ------------------------- helpers -------------------------

def _apply_common_pragmas(conn) -> None:
    cur = conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    cur.execute("PRAGMA temp_store=MEMORY;")

def read_meta(conn, key: str) -> Optional[str]:
    try:
        row = conn.execute("SELECT value FROM meta WHERE key=?", (key,)).fetchone()
    except sqlite3.OperationalError:
        return None
    return row[0] if row else None


# ------------------------- key management -------------------------

def get_or_create_field_key(existing_only: bool = False) -> Optional[bytes]:
    """
    AES-GCM key for strict-mode fields. MINDSCAPE_KEY_FIELD (64 hex chars) wins,
    then the OS keyring. Without either, a key is generated and stored in the keyring.
    """
    raw_hex = os.getenv("MINDSCAPE_KEY_FIELD")
    if raw_hex:
        try:
            key = bytes.fromhex(raw_hex)
        except ValueError:
            raise RuntimeError("MINDSCAPE_KEY_FIELD is not valid hex.") from None
        if len(key) != 32:
            raise RuntimeError("MINDSCAPE_KEY_FIELD must encode 32 bytes.")
        return key

    try:
        stored = keyring.get_password(KEYRING_SERVICE, KEYRING_FIELD_ACCOUNT)
    except KeyringError as e:
        log.warning("Keyring unavailable: %s", e)
        stored = None
    if stored:
        try:
            return bytes.fromhex(stored)
        except ValueError:
            log.warning("Keyring field key is not hex; ignoring stored value.")
    if existing_only:
        return None

    raw = os.urandom(32)
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_FIELD_ACCOUNT, raw.hex())
    except KeyringError as e:
        raise RuntimeError(
            "No keyring available to store the field key; set MINDSCAPE_KEY_FIELD to a 64-hex key."
        ) from e
    log.info("Generated new field key and stored it in the OS keyring.")
    return raw


# ------------------------- schema -------------------------

DDL_CORE = """
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

-- Accounts (email + scrypt password)
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  email TEXT UNIQUE NOT NULL,
  pw_salt BLOB NOT NULL,
  pw_hash BLOB NOT NULL,
  created INTEGER,
  last_login INTEGER
);

CREATE TABLE IF NOT EXISTS profiles (
  user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
  display_name TEXT,
  updated INTEGER
);

CREATE TABLE IF NOT EXISTS user_roles (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  role TEXT CHECK(role IN ('user','parent','guardian','police')) NOT NULL,
  created INTEGER,
  UNIQUE(user_id, role)
);

-- Assistant transcript: plaintext in 'open', AEAD columns in 'strict'
CREATE TABLE IF NOT EXISTS chat_messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  role TEXT CHECK(role IN ('user','assistant')) NOT NULL,
  content TEXT NULL,
  content_ct BLOB NULL,
  content_nonce BLOB NULL,
  metadata TEXT,
  created INTEGER
);
CREATE INDEX IF NOT EXISTS idx_chat_user ON chat_messages(user_id, created, id);

CREATE TABLE IF NOT EXISTS moods (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  mood TEXT NOT NULL,
  intensity INTEGER NULL,
  note TEXT,
  created INTEGER
);
CREATE INDEX IF NOT EXISTS idx_moods_user ON moods(user_id, created DESC);

CREATE TABLE IF NOT EXISTS journals (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  title TEXT,
  content TEXT NULL,
  content_ct BLOB NULL,
  content_nonce BLOB NULL,
  created INTEGER
);

CREATE TABLE IF NOT EXISTS goals (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  title TEXT NOT NULL,
  description TEXT,
  progress INTEGER NOT NULL DEFAULT 0,
  completed INTEGER NOT NULL DEFAULT 0,
  created INTEGER
);

-- File metadata (payloads live in the on-disk CAS)
CREATE TABLE IF NOT EXISTS files (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sha256 BLOB UNIQUE,
  mime TEXT,
  size_bytes INTEGER,
  original_name TEXT,
  created INTEGER
);

CREATE TABLE IF NOT EXISTS inspiration_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  title TEXT,
  image_url TEXT,
  file_id INTEGER NULL REFERENCES files(id) ON DELETE SET NULL,
  is_favorite INTEGER NOT NULL DEFAULT 0,
  created INTEGER
);

-- Guardian access, granted by the monitored user
CREATE TABLE IF NOT EXISTS monitoring_relationships (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  monitor_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  monitored_user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  relationship_type TEXT NOT NULL,
  approved INTEGER NOT NULL DEFAULT 0,
  created INTEGER,
  UNIQUE(monitor_id, monitored_user_id)
);

CREATE TABLE IF NOT EXISTS alerts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  alert_type TEXT NOT NULL,
  severity TEXT CHECK(severity IN ('low','medium','high','critical')) NOT NULL DEFAULT 'medium',
  message TEXT,
  resolved INTEGER NOT NULL DEFAULT 0,
  resolved_by INTEGER NULL REFERENCES users(id) ON DELETE SET NULL,
  resolved_at INTEGER NULL,
  created INTEGER
);
"""

# Strict mode must never hold plaintext in the encrypted columns' siblings
DDL_STRICT_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS trg_chat_strict_ins
BEFORE INSERT ON chat_messages
WHEN (SELECT value FROM meta WHERE key='db_mode')='strict'
AND NEW.content IS NOT NULL
BEGIN
  SELECT RAISE(ABORT, 'strict mode requires encrypted content');
END;

CREATE TRIGGER IF NOT EXISTS trg_journal_strict_ins
BEFORE INSERT ON journals
WHEN (SELECT value FROM meta WHERE key='db_mode')='strict'
AND NEW.content IS NOT NULL
BEGIN
  SELECT RAISE(ABORT, 'strict mode requires encrypted content');
END;
"""

def _create_schema(conn, mode: str) -> None:
    cur = conn.cursor()
    cur.executescript(DDL_CORE)
    cur.execute("INSERT OR REPLACE INTO meta(key, value) VALUES('schema_version', ?)", (SCHEMA_VERSION,))
    cur.execute("INSERT OR IGNORE INTO meta(key, value) VALUES('db_mode', ?)", (mode,))
    cur.execute("INSERT OR IGNORE INTO meta(key, value) VALUES('created', strftime('%s','now'))")
    cur.execute("INSERT OR REPLACE INTO meta(key, value) VALUES('updated', strftime('%s','now'))")
    if mode == "strict":
        cur.executescript(DDL_STRICT_TRIGGERS)
