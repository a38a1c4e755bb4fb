# main.py
"""
Development store backend.

Stands in for the managed database the chat client talks to: three
collections (profiles, threads, messages) over REST, plus realtime insert and
update notifications over a websocket per topic (thread id, or "*" for all).

    uvicorn main:app --port 3000
"""
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Set

from eth_utils import is_address, to_checksum_address
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from crypto_utils import thread_participants
from database import get_conn, init_db, message_dict, profile_dict, thread_dict
from models import MarkRead, NewMessage, NewProfile, NewThread
from config import settings

subscribers: Dict[str, Set[WebSocket]] = {}  # in-memory fan-out map (not shared across processes)


def now_ms() -> int:
    return int(time.time() * 1000)


def checksummed(value: str) -> str:
    """Addresses in paths and query strings get the spelling request bodies get."""
    if not is_address(value):
        raise HTTPException(status_code=400, detail="Invalid wallet address format")
    return to_checksum_address(value)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    subscribers.clear()


app = FastAPI(title="walletchat dev store", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


# -------------------- realtime push --------------------
async def publish(topic: str, event: dict):
    for key in (topic, "*"):
        for ws in list(subscribers.get(key, ())):
            try:
                await ws.send_json(event)
            except Exception as e:
                print(f"⚠️ Dropping subscriber on {key}: {e}")
                subscribers.get(key, set()).discard(ws)


@app.websocket("/ws/{topic}")
async def ws_endpoint(ws: WebSocket, topic: str):
    await ws.accept()
    subscribers.setdefault(topic, set()).add(ws)
    print("WS subscribed", topic)
    # lets clients know fan-out is live before they act
    await ws.send_json({"type": "SUBSCRIBED", "table": "system", "new": {"topic": topic}})
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        print("WS unsubscribed", topic)
    finally:
        subscribers.get(topic, set()).discard(ws)


@app.get("/health")
async def health():
    return {"ok": True}


# -------------------- profiles --------------------
@app.post("/api/profiles")
async def create_profile(data: NewProfile):
    row = {
        "id": uuid.uuid4().hex,
        "username": data.username,
        "email": data.email,
        "address": data.address,
        "is_encrypted": data.is_encrypted,
        "created_at": now_ms(),
    }
    conn = get_conn()
    cur = conn.cursor()
    try:
        taken = cur.execute("SELECT 1 FROM profiles WHERE username = ?", (data.username,)).fetchone()
        if taken:
            raise HTTPException(status_code=409, detail="This username is already taken")
        cur.execute(
            "INSERT INTO profiles (id, username, email, address, is_encrypted, created_at) VALUES (?,?,?,?,?,?)",
            (row["id"], row["username"], row["email"], row["address"], int(row["is_encrypted"]), row["created_at"]),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="This address is already registered")
    finally:
        conn.close()
    print(f"🆕 Profile {data.username} -> {data.address}")
    return {"ok": True, "profile": row}


@app.get("/api/profiles")
async def find_profile(username: str, email: Optional[str] = None):
    conn = get_conn()
    cur = conn.cursor()
    if email is None:
        r = cur.execute("SELECT * FROM profiles WHERE username = ? AND email IS NULL", (username,)).fetchone()
    else:
        r = cur.execute("SELECT * FROM profiles WHERE username = ? AND email = ?", (username, email)).fetchone()
    conn.close()
    if not r:
        raise HTTPException(status_code=404, detail="Invalid username or email")
    return {"ok": True, "profile": profile_dict(r)}


@app.get("/api/profiles/search")
async def search_profiles(q: str = "", exclude: Optional[str] = None, limit: Optional[int] = None):
    limit = limit or int(settings.get("search_limit", 10))
    exclude = checksummed(exclude) if exclude else ""
    conn = get_conn()
    cur = conn.cursor()
    rows = cur.execute(
        "SELECT * FROM profiles WHERE username LIKE ? AND address != ? ORDER BY username LIMIT ?",
        (f"%{q}%", exclude, limit),
    ).fetchall()
    conn.close()
    return {"ok": True, "profiles": [profile_dict(r) for r in rows]}


@app.get("/api/profiles/by-address/{address}")
async def get_profile_by_address(address: str):
    address = checksummed(address)
    conn = get_conn()
    r = conn.execute("SELECT * FROM profiles WHERE address = ?", (address,)).fetchone()
    conn.close()
    if not r:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"ok": True, "profile": profile_dict(r)}


# -------------------- threads --------------------
@app.post("/api/threads")
async def get_or_create_thread(data: NewThread):
    p1, p2 = thread_participants(data.participant1, data.participant2)
    if p1 == p2:
        raise HTTPException(status_code=400, detail="Cannot start chat with yourself")
    conn = get_conn()
    cur = conn.cursor()
    try:
        r = cur.execute("SELECT * FROM threads WHERE participant1 = ? AND participant2 = ?", (p1, p2)).fetchone()
        if r:
            return {"ok": True, "thread": thread_dict(r)}
        ts = now_ms()
        row = {"id": uuid.uuid4().hex, "participant1": p1, "participant2": p2, "created_at": ts, "last_message_at": ts}
        cur.execute(
            "INSERT INTO threads (id, participant1, participant2, created_at, last_message_at) VALUES (?,?,?,?,?)",
            (row["id"], p1, p2, ts, ts),
        )
        conn.commit()
    finally:
        conn.close()
    return {"ok": True, "thread": row}


@app.get("/api/threads")
async def list_threads(participant: str):
    participant = checksummed(participant)
    conn = get_conn()
    rows = conn.execute(
        "SELECT * FROM threads WHERE participant1 = ? OR participant2 = ? ORDER BY last_message_at DESC",
        (participant, participant),
    ).fetchall()
    conn.close()
    return {"ok": True, "threads": [thread_dict(r) for r in rows]}


@app.get("/api/threads/{thread_id}")
async def get_thread(thread_id: str):
    conn = get_conn()
    r = conn.execute("SELECT * FROM threads WHERE id = ?", (thread_id,)).fetchone()
    conn.close()
    if not r:
        raise HTTPException(status_code=404, detail="Thread not found")
    return {"ok": True, "thread": thread_dict(r)}


@app.get("/api/threads/{thread_id}/unread")
async def count_unread(thread_id: str, reader: str):
    reader = checksummed(reader)
    conn = get_conn()
    r = conn.execute(
        "SELECT COUNT(*) FROM messages WHERE thread_id = ? AND sender != ? AND read = 0",
        (thread_id, reader),
    ).fetchone()
    conn.close()
    return {"ok": True, "count": r[0]}


# -------------------- messages --------------------
@app.post("/api/messages")
async def insert_message(data: NewMessage):
    if not data.content:
        raise HTTPException(status_code=400, detail="empty content")
    conn = get_conn()
    cur = conn.cursor()
    try:
        t = cur.execute("SELECT * FROM threads WHERE id = ?", (data.thread_id,)).fetchone()
        if not t:
            raise HTTPException(status_code=404, detail="Thread not found")
        if data.sender not in (t["participant1"], t["participant2"]):
            raise HTTPException(status_code=403, detail="sender is not a participant")
        seq = cur.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM messages").fetchone()[0]
        row = {
            "id": uuid.uuid4().hex,
            "thread_id": data.thread_id,
            "sender": data.sender,
            "content": data.content,
            "created_at": now_ms(),
            "is_encrypted": data.is_encrypted,
            "read": False,
        }
        cur.execute(
            "INSERT INTO messages (id, seq, thread_id, sender, content, created_at, is_encrypted, read) VALUES (?,?,?,?,?,?,?,0)",
            (row["id"], seq, row["thread_id"], row["sender"], row["content"], row["created_at"], int(row["is_encrypted"])),
        )
        # Update thread's last_message_at
        cur.execute("UPDATE threads SET last_message_at = ? WHERE id = ?", (row["created_at"], data.thread_id))
        conn.commit()
    finally:
        conn.close()

    await publish(data.thread_id, {"type": "INSERT", "table": "messages", "new": row})
    return {"ok": True, "message": row}


@app.get("/api/messages")
async def list_messages(thread_id: str):
    conn = get_conn()
    rows = conn.execute(
        "SELECT * FROM messages WHERE thread_id = ? ORDER BY created_at ASC, seq ASC", (thread_id,)
    ).fetchall()
    conn.close()
    return {"ok": True, "messages": [message_dict(r) for r in rows]}


@app.get("/api/messages/latest")
async def latest_messages(thread_id: List[str] = Query(default=[])):
    latest = {}
    conn = get_conn()
    cur = conn.cursor()
    for tid in thread_id:
        r = cur.execute(
            "SELECT * FROM messages WHERE thread_id = ? ORDER BY created_at DESC, seq DESC LIMIT 1", (tid,)
        ).fetchone()
        if r:
            latest[tid] = message_dict(r)
    conn.close()
    return {"ok": True, "messages": latest}


@app.post("/api/messages/read")
async def mark_read(data: MarkRead):
    if not data.ids:
        return {"ok": True, "ids": []}
    conn = get_conn()
    cur = conn.cursor()
    marks = ",".join("?" for _ in data.ids)
    rows = cur.execute(f"SELECT * FROM messages WHERE read = 0 AND id IN ({marks})", data.ids).fetchall()
    changed = [message_dict(r) for r in rows]
    cur.execute(f"UPDATE messages SET read = 1 WHERE id IN ({marks})", data.ids)
    conn.commit()
    conn.close()

    for row in changed:
        row["read"] = True
        await publish(row["thread_id"], {"type": "UPDATE", "table": "messages", "new": row})
    return {"ok": True, "ids": [r["id"] for r in changed]}
