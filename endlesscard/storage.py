# storage.py
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import List

from endlesscard.errors import EndlessCardError, NotFoundError, PermissionDeniedError
from endlesscard.models import Card

logger = logging.getLogger(__name__)

CARD_COLUMNS = ("name", "title", "company", "phone", "email", "website", "address", "photo", "logo", "style")


# ====== Database ======

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


class Database:
    """Thread-local SQLite connections with WAL mode."""

    def __init__(self, path: str):
        self.path = path
        self._local = threading.local()

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def init_schema(self):
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                auth_id TEXT UNIQUE NOT NULL,
                email TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cards (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                title TEXT,
                company TEXT,
                phone TEXT,
                email TEXT,
                website TEXT,
                address TEXT,
                socials TEXT DEFAULT '[]',
                photo TEXT,
                logo TEXT,
                style TEXT DEFAULT 'kosma',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_cards_user ON cards(user_id)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS saved_cards (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (user_id, card_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (card_id) REFERENCES cards(id) ON DELETE CASCADE
            )
        """)

        conn.commit()
        logger.info("Database schema ready at %s", self.path)


# ====== Cards ======

class CardStore:
    def __init__(self, db: Database):
        self.db = db

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.get_connection()

    # ---- users ----

    def ensure_user(self, auth_id: str, email: str = "") -> str:
        row = self.conn.execute("SELECT id FROM users WHERE auth_id = ?", (auth_id,)).fetchone()
        if row is not None:
            return row["id"]
        user_id = new_id()
        now = _now()
        self.conn.execute(
            "INSERT INTO users (id, auth_id, email, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, auth_id, email or "", now, now),
        )
        self.conn.commit()
        return user_id

    def _user_id(self, auth_id: str) -> str:
        row = self.conn.execute("SELECT id FROM users WHERE auth_id = ?", (auth_id,)).fetchone()
        if row is None:
            raise NotFoundError("User not found")
        return row["id"]

    # ---- cards ----

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> dict:
        try:
            socials = json.loads(row["socials"] or "[]")
        except ValueError as e:
            logger.warning("Failed to parse socials for card %s: %s", row["id"], e)
            socials = []
        card = Card.model_validate({**{c: row[c] for c in CARD_COLUMNS}, "socials": socials})
        return {"id": row["id"], **card.model_dump(), "created_at": row["created_at"], "updated_at": row["updated_at"]}

    @staticmethod
    def _values(card: Card) -> list:
        data = card.model_dump()
        return [data[c] for c in CARD_COLUMNS] + [json.dumps(data["socials"])]

    def create(self, owner: str, card: Card, email: str = "") -> str:
        user_id = self.ensure_user(owner, email)
        card_id = new_id()
        now = _now()
        cols = ", ".join(CARD_COLUMNS)
        marks = ", ".join("?" for _ in CARD_COLUMNS)
        self.conn.execute(
            f"INSERT INTO cards (id, user_id, {cols}, socials, created_at, updated_at) VALUES (?, ?, {marks}, ?, ?, ?)",
            [card_id, user_id] + self._values(card) + [now, now],
        )
        self.conn.commit()
        logger.info("Created card %s for user %s", card_id, user_id)
        return card_id

    def list_for_owner(self, owner: str) -> List[dict]:
        try:
            user_id = self._user_id(owner)
        except NotFoundError:
            return []
        rows = self.conn.execute(
            "SELECT * FROM cards WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
        ).fetchall()
        return [self._row_to_card(r) for r in rows]

    def get(self, card_id: str) -> dict:
        row = self.conn.execute("SELECT * FROM cards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise NotFoundError("Card not found")
        return self._row_to_card(row)

    def _check_owner(self, owner: str, card_id: str) -> str:
        row = self.conn.execute("SELECT user_id FROM cards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise NotFoundError("Card not found")
        try:
            user_id = self._user_id(owner)
        except NotFoundError:
            raise PermissionDeniedError("Forbidden")
        if row["user_id"] != user_id:
            raise PermissionDeniedError("Forbidden")
        return user_id

    def update(self, owner: str, card_id: str, card: Card) -> dict:
        self._check_owner(owner, card_id)
        assignments = ", ".join(f"{c} = ?" for c in CARD_COLUMNS)
        self.conn.execute(
            f"UPDATE cards SET {assignments}, socials = ?, updated_at = ? WHERE id = ?",
            self._values(card) + [_now(), card_id],
        )
        self.conn.commit()
        return self.get(card_id)

    def delete(self, owner: str, card_id: str):
        self._check_owner(owner, card_id)
        self.conn.execute("DELETE FROM cards WHERE id = ?", (card_id,))
        self.conn.commit()
        logger.info("Deleted card %s", card_id)

    # ---- saved cards ----

    def save_for_user(self, owner: str, card_id: str, email: str = ""):
        user_id = self.ensure_user(owner, email)
        self.get(card_id)
        existing = self.conn.execute(
            "SELECT id FROM saved_cards WHERE user_id = ? AND card_id = ?", (user_id, card_id)
        ).fetchone()
        if existing is not None:
            raise EndlessCardError("Card already saved")
        self.conn.execute(
            "INSERT INTO saved_cards (user_id, card_id, created_at) VALUES (?, ?, ?)", (user_id, card_id, _now())
        )
        self.conn.commit()

    def unsave_for_user(self, owner: str, card_id: str):
        user_id = self._user_id(owner)
        self.conn.execute("DELETE FROM saved_cards WHERE user_id = ? AND card_id = ?", (user_id, card_id))
        self.conn.commit()

    def saved_for_user(self, owner: str) -> List[dict]:
        try:
            user_id = self._user_id(owner)
        except NotFoundError:
            return []
        rows = self.conn.execute(
            """
            SELECT c.* FROM cards c
            JOIN saved_cards s ON s.card_id = c.id
            WHERE s.user_id = ?
            ORDER BY s.created_at DESC
            """,
            (user_id,),
        ).fetchall()
        return [self._row_to_card(r) for r in rows]

