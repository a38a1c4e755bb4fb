# database.py
import sqlite3

from config import settings

DB_PATH = settings["db_path"]


def get_conn():
    """
    Returns a fresh SQLite connection with safe settings.
    Each FastAPI request should call this instead of sharing globals.
    """
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")  # write-ahead logging for concurrency
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def init_db():
    """Initialize database and create tables if they don’t exist."""
    conn = get_conn()
    cur = conn.cursor()

    # Profiles: public wallet address <-> display identity
    cur.execute("""
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        email TEXT,
        address TEXT NOT NULL UNIQUE,
        is_encrypted INTEGER DEFAULT 0,
        created_at INTEGER
    );
    """)

    # Threads: participant pair stored sorted
    cur.execute("""
    CREATE TABLE IF NOT EXISTS threads (
        id TEXT PRIMARY KEY,
        participant1 TEXT NOT NULL,
        participant2 TEXT NOT NULL,
        created_at INTEGER,
        last_message_at INTEGER,
        UNIQUE (participant1, participant2)
    );
    """)

    # Messages
    cur.execute("""
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL,
        thread_id TEXT NOT NULL,
        sender TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        is_encrypted INTEGER DEFAULT 0,
        read INTEGER DEFAULT 0
    );
    """)

    # Indexes for performance
    cur.execute("CREATE INDEX IF NOT EXISTS idx_thread ON messages(thread_id, created_at);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_p1 ON threads(participant1);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_p2 ON threads(participant2);")

    conn.commit()
    conn.close()


def profile_dict(r) -> dict:
    return {
        "id": r["id"],
        "username": r["username"],
        "email": r["email"],
        "address": r["address"],
        "is_encrypted": bool(r["is_encrypted"]),
        "created_at": r["created_at"],
    }


def thread_dict(r) -> dict:
    return {
        "id": r["id"],
        "participant1": r["participant1"],
        "participant2": r["participant2"],
        "created_at": r["created_at"],
        "last_message_at": r["last_message_at"],
    }


def message_dict(r) -> dict:
    return {
        "id": r["id"],
        "thread_id": r["thread_id"],
        "sender": r["sender"],
        "content": r["content"],
        "created_at": r["created_at"],
        "is_encrypted": bool(r["is_encrypted"]),
        "read": bool(r["read"]),
    }
