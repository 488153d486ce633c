"""
Posts and scans in the app SQLite DB.

Schema changes go through MIGRATIONS; the applied version is kept in PRAGMA user_version.
"""
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

from src.data.geo import BoundingBox
from src.errors import StorageUnavailable

logger = logging.getLogger(__name__)

POST_TYPES = frozenset({"image", "model", "text"})
BBOX_CANDIDATE_LIMIT = 500
LATEST_LIMIT = 20

POST_COLUMNS = (
    "id, type, title, description, lat, lng, mediaUrl, thumbUrl, size, "
    "contentType, originalName, createdBy, scanId, createdAt"
)

# (version, statements). Append only; never edit an applied entry.
MIGRATIONS: list[tuple[int, list[str]]] = [
    (
        1,
        [
            """
            CREATE TABLE IF NOT EXISTS posts (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL CHECK (type IN ('image','model','text')),
                title TEXT,
                description TEXT,
                lat REAL NOT NULL,
                lng REAL NOT NULL,
                mediaUrl TEXT,
                thumbUrl TEXT,
                size INTEGER,
                createdBy TEXT,
                createdAt TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS scans (
                id TEXT PRIMARY KEY,
                qrPayload TEXT NOT NULL,
                lat REAL NOT NULL,
                lng REAL NOT NULL,
                sessionId TEXT,
                spotId TEXT,
                createdAt TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS spots (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                lat REAL NOT NULL,
                lng REAL NOT NULL,
                radius REAL NOT NULL DEFAULT 50,
                meta TEXT,
                createdAt TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_posts_lat ON posts(lat)",
            "CREATE INDEX IF NOT EXISTS idx_posts_lng ON posts(lng)",
        ],
    ),
    (
        2,
        [
            "ALTER TABLE posts ADD COLUMN scanId TEXT",
            "ALTER TABLE posts ADD COLUMN contentType TEXT",
            "ALTER TABLE posts ADD COLUMN originalName TEXT",
        ],
    ),
    (
        3,
        [
            "CREATE INDEX IF NOT EXISTS idx_scans_qr_payload ON scans(qrPayload)",
            "CREATE INDEX IF NOT EXISTS idx_posts_scan_id ON posts(scanId)",
        ],
    ),
]
SCHEMA_VERSION = MIGRATIONS[-1][0]


class PostRecord(NamedTuple):
    id: str
    type: str
    title: str | None
    description: str | None
    lat: float
    lng: float
    media_url: str | None
    thumb_url: str | None
    size: int | None
    content_type: str | None
    original_name: str | None
    created_by: str | None
    scan_id: str | None
    created_at: str


class ScanRecord(NamedTuple):
    id: str
    qr_payload: str
    lat: float
    lng: float
    session_id: str | None
    spot_id: str | None
    created_at: str


def _now_sql() -> str:
    # Same text format as SQLite datetime('now')
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _row_to_post(r: sqlite3.Row) -> PostRecord:
    return PostRecord(
        id=r["id"],
        type=r["type"],
        title=r["title"],
        description=r["description"],
        lat=r["lat"],
        lng=r["lng"],
        media_url=r["mediaUrl"],
        thumb_url=r["thumbUrl"],
        size=r["size"],
        content_type=r["contentType"],
        original_name=r["originalName"],
        created_by=r["createdBy"],
        scan_id=r["scanId"],
        created_at=r["createdAt"],
    )


def init_db(db_path: str | Path) -> int:
    """Create the DB if needed and apply pending migrations. Returns the schema version."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with _connect(db_path) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            for version, statements in MIGRATIONS:
                if version <= current:
                    continue
                for stmt in statements:
                    conn.execute(stmt)
                # PRAGMA does not accept bound parameters
                conn.execute(f"PRAGMA user_version = {int(version)}")
                logger.info("telemetry migration_applied db=%s version=%s", db_path.name, version)
                current = version
            conn.commit()
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Failed to initialize database: {e}") from e
    return current


def insert_post(
    db_path: str | Path,
    *,
    post_type: str,
    lat: float,
    lng: float,
    title: str | None = None,
    description: str | None = None,
    media_url: str | None = None,
    thumb_url: str | None = None,
    size: int | None = None,
    content_type: str | None = None,
    original_name: str | None = None,
    created_by: str | None = None,
    scan_id: str | None = None,
    post_id: str | None = None,
    created_at: str | None = None,
) -> PostRecord:
    record = PostRecord(
        id=post_id or str(uuid.uuid4()),
        type=post_type,
        title=title,
        description=description,
        lat=lat,
        lng=lng,
        media_url=media_url,
        thumb_url=thumb_url,
        size=size,
        content_type=content_type,
        original_name=original_name,
        created_by=created_by,
        scan_id=scan_id,
        created_at=created_at or _now_sql(),
    )
    try:
        with _connect(Path(db_path)) as conn:
            conn.execute(
                f"INSERT INTO posts ({POST_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                tuple(record),
            )
            conn.commit()
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Failed to insert post: {e}") from e
    return record


def get_post(db_path: str | Path, post_id: str) -> PostRecord | None:
    db_path = Path(db_path)
    if not db_path.exists():
        return None
    try:
        with _connect(db_path) as conn:
            r = conn.execute(f"SELECT {POST_COLUMNS} FROM posts WHERE id = ?", (post_id,)).fetchone()
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Failed to read post: {e}") from e
    return _row_to_post(r) if r is not None else None


def insert_scan(
    db_path: str | Path,
    *,
    qr_payload: str,
    lat: float,
    lng: float,
    session_id: str | None = None,
    spot_id: str | None = None,
    scan_id: str | None = None,
    created_at: str | None = None,
) -> ScanRecord:
    record = ScanRecord(
        id=scan_id or str(uuid.uuid4()),
        qr_payload=qr_payload,
        lat=lat,
        lng=lng,
        session_id=session_id,
        spot_id=spot_id,
        created_at=created_at or _now_sql(),
    )
    try:
        with _connect(Path(db_path)) as conn:
            conn.execute(
                """
                INSERT INTO scans (id, qrPayload, lat, lng, sessionId, spotId, createdAt)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                tuple(record),
            )
            conn.commit()
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Failed to insert scan: {e}") from e
    return record


def list_in_bbox(db_path: str | Path, box: BoundingBox, limit: int = BBOX_CANDIDATE_LIMIT) -> list[PostRecord]:
    """
    Posts whose lat/lng fall inside box, newest first, at most limit rows.
    Longitude is matched against box.lng_ranges() so antimeridian boxes work.
    """
    db_path = Path(db_path)
    if not db_path.exists():
        return []
    ranges = box.lng_ranges()
    lng_clause = " OR ".join("lng BETWEEN ? AND ?" for _ in ranges)
    params: list[float | int] = [box.min_lat, box.max_lat]
    for lo, hi in ranges:
        params.extend((lo, hi))
    params.append(min(limit, BBOX_CANDIDATE_LIMIT))
    try:
        with _connect(db_path) as conn:
            cur = conn.execute(
                f"""
                SELECT {POST_COLUMNS}
                FROM posts
                WHERE lat BETWEEN ? AND ? AND ({lng_clause})
                ORDER BY datetime(createdAt) DESC, rowid DESC
                LIMIT ?
                """,
                params,
            )
            return [_row_to_post(r) for r in cur.fetchall()]
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Bounding box query failed: {e}") from e


def list_by_qr_payload(db_path: str | Path, qr_payload: str, limit: int) -> list[PostRecord]:
    """Posts attached to any scan of qr_payload, newest first."""
    db_path = Path(db_path)
    if not db_path.exists():
        return []
    cols = ", ".join(f"p.{c.strip()}" for c in POST_COLUMNS.split(","))
    try:
        with _connect(db_path) as conn:
            cur = conn.execute(
                f"""
                SELECT {cols}
                FROM posts p
                JOIN scans s ON p.scanId = s.id
                WHERE s.qrPayload = ?
                ORDER BY datetime(p.createdAt) DESC, p.rowid DESC
                LIMIT ?
                """,
                (qr_payload, limit),
            )
            return [_row_to_post(r) for r in cur.fetchall()]
    except sqlite3.Error as e:
        raise StorageUnavailable(f"QR payload query failed: {e}") from e


def list_latest(db_path: str | Path, limit: int = LATEST_LIMIT) -> list[PostRecord]:
    db_path = Path(db_path)
    if not db_path.exists():
        return []
    try:
        with _connect(db_path) as conn:
            cur = conn.execute(
                f"SELECT {POST_COLUMNS} FROM posts ORDER BY datetime(createdAt) DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            return [_row_to_post(r) for r in cur.fetchall()]
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Latest posts query failed: {e}") from e
