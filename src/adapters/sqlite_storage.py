"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
import sqlite3
from typing import Any, Iterator, Optional

from core.errors import DuplicateKeyword, NotFound
from core.models import NormalizedMessage, TriggerRule


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_rule(row: sqlite3.Row) -> TriggerRule:
    return TriggerRule(
        keyword=row["keyword"],
        response=row["response"],
        match_kind=row["match_kind"],
        case_sensitive=bool(row["case_sensitive"]),
        active=bool(row["is_active"]),
    )


def _bump_trigger_revision(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        INSERT INTO store_meta (key, value) VALUES ('trigger_revision', 1)
        ON CONFLICT(key) DO UPDATE SET value = value + 1
        """
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - users: one row per sender with activity counters
        - messages: every admitted inbound message, unique by message_id
        - triggers: auto-response rules, unique by keyword
        - spam_logs: spam escalation events
        - collected_data: phone numbers, URLs and media references
        - bot_logs: audit trail of pipeline events
        - groups / group_members: group conversations and their membership
        - store_meta: counters such as the trigger revision
        """

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sender_id TEXT UNIQUE NOT NULL,
                    first_seen TIMESTAMP NOT NULL,
                    last_seen TIMESTAMP,
                    message_count INTEGER NOT NULL DEFAULT 0
                );

                -- message_id is UNIQUE so redelivered events are ignored.
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT UNIQUE NOT NULL,
                    conversation_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    content_kind TEXT NOT NULL,
                    content TEXT,
                    media_url TEXT,
                    media_type TEXT,
                    timestamp TIMESTAMP NOT NULL,
                    is_group INTEGER NOT NULL DEFAULT 0,
                    reply_to TEXT,
                    is_forwarded INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS triggers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    keyword TEXT UNIQUE NOT NULL,
                    response TEXT NOT NULL,
                    match_kind TEXT NOT NULL DEFAULT 'exact',
                    case_sensitive INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS spam_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sender_id TEXT NOT NULL,
                    message_id TEXT,
                    reason TEXT NOT NULL,
                    severity TEXT NOT NULL DEFAULT 'low',
                    action_taken TEXT,
                    timestamp TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS collected_data (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    value TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    message_id TEXT,
                    context TEXT,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bot_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    context TEXT,
                    timestamp TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS groups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT UNIQUE NOT NULL,
                    member_count INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS group_members (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL,
                    member_id TEXT NOT NULL,
                    joined_at TIMESTAMP NOT NULL,
                    left_at TIMESTAMP,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    UNIQUE(conversation_id, member_id)
                );

                CREATE TABLE IF NOT EXISTS store_meta (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_messages_sender_timestamp ON messages(sender_id, timestamp);
                CREATE INDEX IF NOT EXISTS idx_spam_logs_sender ON spam_logs(sender_id);
                CREATE INDEX IF NOT EXISTS idx_collected_data_kind ON collected_data(kind);
                CREATE INDEX IF NOT EXISTS idx_bot_logs_level_timestamp ON bot_logs(level, timestamp);
                """
            )

    def save_message(self, message: NormalizedMessage) -> bool:
        """Insert a message; returns False when the id was already stored."""

        media = message.media_ref
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO messages (
                    message_id,
                    conversation_id,
                    sender_id,
                    content_kind,
                    content,
                    media_url,
                    media_type,
                    timestamp,
                    is_group,
                    reply_to,
                    is_forwarded,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.conversation_id,
                    message.sender_id,
                    message.content_kind,
                    message.text,
                    media.url if media else None,
                    media.mime_type if media else None,
                    message.timestamp.isoformat(),
                    int(message.is_group),
                    message.reply_to_id,
                    int(message.is_forwarded),
                    _now_iso(),
                ),
            )
            return cur.rowcount == 1

    def get_messages(self, conversation_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY timestamp DESC LIMIT ?",
                (conversation_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def upsert_user(self, sender_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (sender_id, first_seen) VALUES (?, ?)",
                (sender_id, _now_iso()),
            )

    def touch_user_activity(self, sender_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users
                SET last_seen = ?, message_count = message_count + 1
                WHERE sender_id = ?
                """,
                (_now_iso(), sender_id),
            )

    def get_user(self, sender_id: str) -> Optional[dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE sender_id = ?", (sender_id,)).fetchone()
        return dict(row) if row else None

    def get_active_triggers(self) -> list[TriggerRule]:
        """Return active triggers in insertion order."""

        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM triggers WHERE is_active = 1 ORDER BY id").fetchall()
        return [_row_to_rule(row) for row in rows]

    def list_triggers(self) -> list[TriggerRule]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM triggers ORDER BY id").fetchall()
        return [_row_to_rule(row) for row in rows]

    def add_trigger(self, rule: TriggerRule) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO triggers (keyword, response, match_kind, case_sensitive, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rule.keyword,
                        rule.response,
                        rule.match_kind,
                        int(rule.case_sensitive),
                        int(rule.active),
                        _now_iso(),
                    ),
                )
                _bump_trigger_revision(conn)
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyword(rule.keyword) from exc

    def remove_trigger(self, keyword: str) -> None:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM triggers WHERE keyword = ?", (keyword,))
            if cur.rowcount == 0:
                raise NotFound(keyword)
            _bump_trigger_revision(conn)

    def trigger_revision(self) -> int:
        """Counter bumped in the same transaction as every trigger write."""

        with self._connect() as conn:
            row = conn.execute("SELECT value FROM store_meta WHERE key = 'trigger_revision'").fetchone()
        return int(row["value"]) if row else 0

    def record_group_member(self, conversation_id: str, member_id: str, active: bool) -> None:
        """Mark a member as joined (active) or left; rejoining reactivates the row."""

        now = _now_iso()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO groups (conversation_id, created_at, updated_at) VALUES (?, ?, ?)",
                (conversation_id, now, now),
            )
            if active:
                conn.execute(
                    """
                    INSERT INTO group_members (conversation_id, member_id, joined_at, is_active)
                    VALUES (?, ?, ?, 1)
                    ON CONFLICT(conversation_id, member_id)
                    DO UPDATE SET is_active = 1, joined_at = excluded.joined_at, left_at = NULL
                    """,
                    (conversation_id, member_id, now),
                )
            else:
                conn.execute(
                    """
                    INSERT INTO group_members (conversation_id, member_id, joined_at, left_at, is_active)
                    VALUES (?, ?, ?, ?, 0)
                    ON CONFLICT(conversation_id, member_id)
                    DO UPDATE SET is_active = 0, left_at = excluded.left_at
                    """,
                    (conversation_id, member_id, now, now),
                )

    def update_group_member_count(self, conversation_id: str, member_count: int) -> None:
        now = _now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO groups (conversation_id, member_count, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id)
                DO UPDATE SET member_count = excluded.member_count, updated_at = excluded.updated_at
                """,
                (conversation_id, member_count, now, now),
            )

    def get_group(self, conversation_id: str) -> Optional[dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM groups WHERE conversation_id = ?", (conversation_id,)).fetchone()
        return dict(row) if row else None

    def get_group_members(self, conversation_id: str, active_only: bool = True) -> list[str]:
        query = "SELECT member_id FROM group_members WHERE conversation_id = ?"
        if active_only:
            query += " AND is_active = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", (conversation_id,)).fetchall()
        return [row["member_id"] for row in rows]

    def append_log(self, level: str, message: str, context: Optional[dict[str, Any]] = None) -> None:
        payload = json.dumps(context, default=str) if context is not None else None
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO bot_logs (level, message, context, timestamp) VALUES (?, ?, ?, ?)",
                (level, message, payload, _now_iso()),
            )

    def get_logs(self, level: Optional[str] = None, limit: int = 100) -> list[dict[str, Any]]:
        query = "SELECT * FROM bot_logs"
        params: tuple = ()
        if level:
            query += " WHERE level = ?"
            params = (level,)
        query += " ORDER BY id DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, params + (limit,)).fetchall()
        return [dict(row) for row in rows]

    def save_collected_data_point(
        self,
        kind: str,
        value: str,
        source_id: str,
        message_id: Optional[str],
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        payload = json.dumps(context) if context is not None else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO collected_data (kind, value, source_id, message_id, context, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (kind, value, source_id, message_id, payload, _now_iso()),
            )

    def get_collected_data(self, kind: str, limit: int = 100) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM collected_data WHERE kind = ? ORDER BY id DESC LIMIT ?",
                (kind, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def save_spam_event(
        self,
        source_id: str,
        message_id: Optional[str],
        reason: str,
        severity: str,
        action: Optional[str],
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO spam_logs (sender_id, message_id, reason, severity, action_taken, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (source_id, message_id, reason, severity, action, _now_iso()),
            )

    def get_spam_events(self, source_id: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM spam_logs WHERE sender_id = ? ORDER BY id DESC LIMIT ?",
                (source_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        """Totals across the store plus today's counts (UTC)."""

        today = datetime.now(timezone.utc).date().isoformat()
        with self._connect() as conn:
            def count(query: str, params: tuple = ()) -> int:
                return int(conn.execute(query, params).fetchone()[0])

            return {
                "total": {
                    "messages": count("SELECT COUNT(*) FROM messages"),
                    "users": count("SELECT COUNT(*) FROM users"),
                    "conversations": count("SELECT COUNT(DISTINCT conversation_id) FROM messages"),
                    "groups": count("SELECT COUNT(*) FROM groups"),
                    "triggers": count("SELECT COUNT(*) FROM triggers WHERE is_active = 1"),
                },
                "today": {
                    "messages": count("SELECT COUNT(*) FROM messages WHERE substr(created_at, 1, 10) = ?", (today,)),
                    "spam_detected": count(
                        "SELECT COUNT(*) FROM spam_logs WHERE substr(timestamp, 1, 10) = ?",
                        (today,),
                    ),
                },
            }
