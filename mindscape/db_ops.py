# mindscape/db_ops.py
"""
Data-service layer over the local SQLite store.

Screens and services only use the narrow contracts here: query / insert /
update / delete / count on an allow-listed set of tables, plus account and
chat-message helpers. In strict mode, chat and journal text is sealed with
AES-GCM on the way in and opened on the way out, so callers never see
ciphertext.
"""
import os, sqlite3, json, time, hashlib, hmac, secrets, logging
from pathlib import Path
from typing import Optional, Tuple, List, Dict, Any, Iterable, Literal, Mapping
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mindscape import db_init as _dbi
from mindscape.paths import cas_dir

log = logging.getLogger("db.ops")

ChatRole = Literal["user", "assistant"]

# table -> writable columns (id is implicit)
TABLES: Dict[str, Tuple[str, ...]] = {
    "users": ("email", "pw_salt", "pw_hash", "created", "last_login"),
    "profiles": ("user_id", "display_name", "updated"),
    "user_roles": ("user_id", "role", "created"),
    "chat_messages": ("user_id", "role", "content", "metadata", "created"),
    "moods": ("user_id", "mood", "intensity", "note", "created"),
    "journals": ("user_id", "title", "content", "created"),
    "goals": ("user_id", "title", "description", "progress", "completed", "created"),
    "files": ("sha256", "mime", "size_bytes", "original_name", "created"),
    "inspiration_items": ("user_id", "title", "image_url", "file_id", "is_favorite", "created"),
    "monitoring_relationships": ("monitor_id", "monitored_user_id", "relationship_type", "approved", "created"),
    "alerts": ("user_id", "alert_type", "severity", "message", "resolved", "resolved_by", "resolved_at", "created"),
}
# sealed in strict mode
ENCRYPTED_FIELDS: Dict[str, str] = {"chat_messages": "content", "journals": "content"}
BOOL_COLUMNS = {"approved", "completed", "is_favorite", "resolved"}
JSON_COLUMNS = {"metadata"}
# never handed back through query()
HIDDEN_COLUMNS = {"pw_salt", "pw_hash", "content_ct", "content_nonce"}

# ---------- password hashing (scrypt) ----------

def _hash_password(plain: str, salt: bytes) -> bytes:
    return hashlib.scrypt(plain.encode("utf-8"), salt=salt, n=16384, r=8, p=1, dklen=32)

def _verify_password(plain: str, salt: bytes, expect_hash: bytes) -> bool:
    trial = _hash_password(plain, salt)
    return hmac.compare_digest(trial, expect_hash)

# ---------- connection handling ----------

def open_database(data_dir: Path, *, mode: Optional[str] = None) -> Tuple[sqlite3.Connection, str]:
    """Ensure the DB exists and validates, then return (conn, db_mode)."""
    db_mode = _dbi.ensure_database_ready(data_dir, mode=mode)
    conn = _dbi.connect(data_dir / _dbi.DB_FILENAME)
    return conn, db_mode

def read_db_mode(conn) -> str:
    return _dbi.read_meta(conn, "db_mode") or "open"

def read_schema_version(conn) -> str:
    return _dbi.read_meta(conn, "schema_version") or "unknown"

# ---------- tiny helpers ----------

def _now() -> int:
    return int(time.time())

def _check_table(table: str) -> Tuple[str, ...]:
    cols = TABLES.get(table)
    if cols is None:
        raise ValueError(f"Unknown table: {table!r}")
    return cols

def _check_columns(table: str, names: Iterable[str], *, allow_id: bool = True) -> None:
    cols = _check_table(table)
    for name in names:
        if name == "id" and allow_id:
            continue
        if name not in cols:
            raise ValueError(f"Unknown column {name!r} for table {table!r}")

def _field_key(existing_only: bool = False) -> bytes:
    k = _dbi.get_or_create_field_key(existing_only=existing_only)
    if not k:
        raise RuntimeError("Field key unavailable; strict mode requires MINDSCAPE_KEY_FIELD or keyring.")
    return k

def encrypt_field(plaintext: str) -> tuple[bytes, bytes]:
    """Seal a text field with AES-GCM. Returns (ciphertext, nonce)."""
    aes = AESGCM(_field_key(existing_only=False))
    nonce = os.urandom(12)
    return aes.encrypt(nonce, plaintext.encode("utf-8"), None), nonce

def decrypt_field(ciphertext: bytes, nonce: bytes) -> str:
    aes = AESGCM(_field_key(existing_only=True))
    return aes.decrypt(nonce, ciphertext, None).decode("utf-8")

def _where(filters: Optional[Mapping[str, Any]]) -> Tuple[str, list]:
    if not filters:
        return "", []
    parts, params = [], []
    for col, val in filters.items():
        if val is None:
            parts.append(f"{col} IS NULL")
        elif isinstance(val, (list, tuple, set, frozenset)):
            vals = list(val)
            if not vals:
                parts.append("0")
                continue
            parts.append(f"{col} IN ({','.join('?' * len(vals))})")
            params.extend(_to_db(col, v) for v in vals)
        else:
            parts.append(f"{col} = ?")
            params.append(_to_db(col, val))
    return " WHERE " + " AND ".join(parts), params

def _to_db(col: str, val: Any) -> Any:
    if col in BOOL_COLUMNS and isinstance(val, bool):
        return int(val)
    if col in JSON_COLUMNS and not isinstance(val, str) and val is not None:
        return json.dumps(val)
    return val

def _row_out(table: str, row: sqlite3.Row) -> Dict[str, Any]:
    out = {}
    for key in row.keys():
        if key in HIDDEN_COLUMNS:
            continue
        val = row[key]
        if key in BOOL_COLUMNS and val is not None:
            val = bool(val)
        elif key in JSON_COLUMNS:
            val = json.loads(val or "{}")
        out[key] = val
    field = ENCRYPTED_FIELDS.get(table)
    if field and out.get(field) is None and "content_ct" in row.keys():
        ct, nonce = row["content_ct"], row["content_nonce"]
        if ct is not None and nonce is not None:
            try:
                out[field] = decrypt_field(bytes(ct), bytes(nonce))
            except (InvalidTag, RuntimeError) as e:
                log.error("Could not decrypt %s.%s id=%s: %s", table, field, out.get("id"), e)
                out[field] = ""
    return out

# ---------- generic data contracts ----------

def query(conn, table: str, filters: Optional[Mapping[str, Any]] = None, *,
          order_by: Optional[str] = None, descending: bool = False,
          limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Rows of `table` matching every filter (equality, IN for sequences, IS NULL for None)."""
    _check_columns(table, (filters or {}).keys())
    sql = f"SELECT * FROM {table}"
    where, params = _where(filters)
    sql += where
    if order_by:
        _check_columns(table, [order_by])
        direction = "DESC" if descending else "ASC"
        sql += f" ORDER BY {order_by} {direction}, id {direction}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    rows = conn.execute(sql, params).fetchall()
    return [_row_out(table, r) for r in rows]

def get(conn, table: str, row_id: int) -> Optional[Dict[str, Any]]:
    rows = query(conn, table, {"id": int(row_id)}, limit=1)
    return rows[0] if rows else None

def count(conn, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
    _check_columns(table, (filters or {}).keys())
    where, params = _where(filters)
    return int(conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0])

def insert(conn, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
    """Insert one row and return it as stored (with id). 'created' is filled in when absent."""
    cols = _check_table(table)
    _check_columns(table, row.keys(), allow_id=False)
    data = {k: _to_db(k, v) for k, v in row.items()}
    if "created" in cols and data.get("created") is None:
        data["created"] = _now()

    field = ENCRYPTED_FIELDS.get(table)
    if field and field in data and read_db_mode(conn) == "strict":
        plaintext = data.pop(field)
        if plaintext is not None:
            data["content_ct"], data["content_nonce"] = encrypt_field(str(plaintext))
        data[field] = None

    names = list(data.keys())
    sql = f"INSERT INTO {table}({', '.join(names)}) VALUES({', '.join('?' * len(names))})"
    cur = conn.cursor()
    cur.execute(sql, [data[n] for n in names])
    new_id = cur.lastrowid
    conn.commit()
    if table == "profiles":
        return get_profile(conn, int(row["user_id"])) or {}
    return get(conn, table, new_id) or {}

def update(conn, table: str, row_id: int, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply changes to one row by id; returns the updated row or None if it does not exist."""
    if not changes:
        return get(conn, table, row_id)
    if ENCRYPTED_FIELDS.get(table) in changes and read_db_mode(conn) == "strict":
        raise ValueError(f"Sealed field {table}.{ENCRYPTED_FIELDS[table]} cannot be updated in strict mode")
    _check_columns(table, changes.keys(), allow_id=False)
    names = list(changes.keys())
    sets = ", ".join(f"{n} = ?" for n in names)
    cur = conn.cursor()
    cur.execute(f"UPDATE {table} SET {sets} WHERE id = ?", [_to_db(n, changes[n]) for n in names] + [int(row_id)])
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get(conn, table, row_id)

def delete(conn, table: str, filters: Mapping[str, Any]) -> int:
    """Delete matching rows and return how many went. Refuses an empty filter."""
    if not filters:
        raise ValueError("delete() needs at least one filter")
    _check_columns(table, filters.keys())
    where, params = _where(filters)
    cur = conn.cursor()
    cur.execute(f"DELETE FROM {table}{where}", params)
    conn.commit()
    return cur.rowcount

# ---------- users & auth ----------

def create_user(conn, *, email: str, password: str, display_name: Optional[str] = None) -> int:
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValueError("email and password are required")
    salt = secrets.token_bytes(16)
    pw_hash = _hash_password(password, salt)
    ts = _now()
    cur = conn.cursor()
    try:
        cur.execute(
            "INSERT INTO users(email, pw_salt, pw_hash, created, last_login) VALUES(?,?,?,?,NULL)",
            (email, salt, pw_hash, ts),
        )
    except sqlite3.IntegrityError:
        conn.rollback()
        raise ValueError(f"An account already exists for {email}") from None
    user_id = cur.lastrowid
    cur.execute(
        "INSERT INTO profiles(user_id, display_name, updated) VALUES(?,?,?)",
        (user_id, display_name or email.split("@", 1)[0], ts),
    )
    cur.execute("INSERT INTO user_roles(user_id, role, created) VALUES(?, 'user', ?)", (user_id, ts))
    conn.commit()
    log.info("Created user id=%s", user_id)
    return user_id

def authenticate(conn, *, email: str, password: str) -> Optional[Dict[str, Any]]:
    """Return {id, email, display_name} on success, None on bad credentials."""
    row = conn.execute(
        "SELECT id, email, pw_salt, pw_hash FROM users WHERE email=?",
        ((email or "").strip().lower(),),
    ).fetchone()
    if not row:
        return None
    if not _verify_password(password, bytes(row["pw_salt"]), bytes(row["pw_hash"])):
        return None
    user_id = int(row["id"])
    conn.execute("UPDATE users SET last_login=? WHERE id=?", (_now(), user_id))
    conn.commit()
    profile = get_profile(conn, user_id) or {}
    return {"id": user_id, "email": row["email"], "display_name": profile.get("display_name")}

def find_user_by_email(conn, email: str) -> Optional[Dict[str, Any]]:
    rows = query(conn, "users", {"email": (email or "").strip().lower()}, limit=1)
    return rows[0] if rows else None

def get_profile(conn, user_id: int) -> Optional[Dict[str, Any]]:
    rows = query(conn, "profiles", {"user_id": int(user_id)}, limit=1)
    return rows[0] if rows else None

def upsert_profile(conn, user_id: int, display_name: str) -> Dict[str, Any]:
    conn.execute(
        "INSERT INTO profiles(user_id, display_name, updated) VALUES(?,?,?) "
        "ON CONFLICT(user_id) DO UPDATE SET display_name=excluded.display_name, updated=excluded.updated",
        (int(user_id), display_name, _now()),
    )
    conn.commit()
    return get_profile(conn, user_id) or {}

# ---------- chat messages ----------

def add_chat_message(conn, user_id: int, role: ChatRole, content: str,
                     metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if role not in ("user", "assistant"):
        raise ValueError(f"Unsupported chat role: {role!r}")
    return insert(conn, "chat_messages", {
        "user_id": int(user_id), "role": role, "content": content,
        "metadata": metadata or {},
    })

def list_chat_messages(conn, user_id: int) -> List[Dict[str, Any]]:
    """Every message for the user, oldest first."""
    return query(conn, "chat_messages", {"user_id": int(user_id)}, order_by="created")

def clear_chat_messages(conn, user_id: int) -> int:
    return delete(conn, "chat_messages", {"user_id": int(user_id)})

# ---------- Storage for attachments ----------

def cas_put(conn, data_dir: Path, *, src_path: str, mime: str) -> int:
    """
    Store the file in the on-disk CAS (data/cas/<sha256>), de-dupe by hash,
    and return the files.id.
    """
    raw_bytes = Path(src_path).read_bytes()
    sha_hex = hashlib.sha256(raw_bytes).hexdigest()
    cas_path = cas_dir(data_dir) / sha_hex
    if not cas_path.exists():
        cas_path.write_bytes(raw_bytes)

    sha_blob = bytes.fromhex(sha_hex)
    row = conn.execute("SELECT id FROM files WHERE sha256=?", (sha_blob,)).fetchone()
    if row:
        return int(row[0])
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO files(sha256, mime, size_bytes, original_name, created) VALUES(?,?,?,?,?)",
        (sha_blob, mime, len(raw_bytes), Path(src_path).name, _now()),
    )
    conn.commit()
    return int(cur.lastrowid)

def cas_path_for_file(conn, data_dir: Path, file_id: int) -> Optional[Path]:
    """Filesystem path of a stored file, or None if unknown or missing on disk."""
    row = conn.execute("SELECT sha256 FROM files WHERE id=?", (int(file_id),)).fetchone()
    if not row:
        return None
    sha_blob = row[0]
    if isinstance(sha_blob, memoryview):
        sha_blob = sha_blob.tobytes()
    path = cas_dir(data_dir) / bytes(sha_blob).hex()
    return path if path.exists() else None
