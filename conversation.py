# conversation.py
"""
Per-conversation message state.

One ConversationStateMachine backs one open chat view. It owns the ordered
message list and is the only thing that mutates it, through four entry
points: load_history, submit, on_remote_push and on_remote_update. Each of
them changes the list in a single synchronous step (no await between reading
and writing it), so the event loop never observes a half-applied change.

Entry lifecycle:

    submit -> PENDING (temp-* id) -> CONFIRMED (store id)
                                  \\-> evicted, SendError raised

Confirmed entries carry a delivery state that only moves forward:
sent -> delivered -> read.

Realtime pushes are merged by id, so re-subscribing (which replays rows) is
harmless; rows authored by the local identity are skipped because submit has
already placed them.
"""
import asyncio
import bisect
import itertools
import logging
import time
import uuid
from typing import Callable, List, Optional, Set, Tuple

from pydantic import ValidationError as ModelError

from config import settings
from crypto_utils import decrypt_for_display, encrypt as encrypt_text, message_key
from errors import EncryptionError, LoadError, SendError
from models import (
    DeliveryState,
    EntryState,
    Message,
    MessageRow,
    NewMessage,
    RealtimeEvent,
    TEMP_ID_PREFIX,
    Thread,
)

log = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class ConversationStateMachine:
    def __init__(self, session, store, timeout: Optional[float] = None, clock: Callable[[], int] = now_ms):
        self.session = session
        self.store = store
        self.me = session.address
        self.timeout = timeout if timeout is not None else float(settings.get("store_timeout_secs", 10))
        self.clock = clock
        self.thread: Optional[Thread] = None
        self.thread_id: Optional[str] = None
        self.focused = True
        self.load_failed = False
        self.disposed = False
        self._entries: List[Message] = []
        self._seq = itertools.count(1)
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._channel = None

    # ------------------------------------------------------------------ views
    @property
    def messages(self) -> List[Message]:
        return list(self._entries)

    @property
    def unread_count(self) -> int:
        return sum(1 for m in self._entries if not self._is_me(m.sender) and m.delivery is not DeliveryState.READ)

    def display(self) -> List[Tuple[Message, str]]:
        """Entries paired with the text to show; undecryptable ones get a placeholder."""
        out = []
        for m in self._entries:
            if m.is_encrypted and self.thread is not None:
                text = decrypt_for_display(m.content, message_key(self.thread, m.sender))
            else:
                text = m.content
            out.append((m, text))
        return out

    # -------------------------------------------------------------- internals
    def _is_me(self, address: str) -> bool:
        return address.lower() == self.me.lower()

    def _index(self, message_id: str) -> int:
        for i, m in enumerate(self._entries):
            if m.id == message_id:
                return i
        return -1

    def _get(self, message_id: str) -> Optional[Message]:
        i = self._index(message_id)
        return self._entries[i] if i >= 0 else None

    def _insert(self, entry: Message) -> None:
        bisect.insort(self._entries, entry, key=lambda m: m.sort_key)

    def _remove(self, message_id: str) -> None:
        i = self._index(message_id)
        if i >= 0:
            del self._entries[i]

    def _entry_from_row(self, row: MessageRow, delivery: DeliveryState, seq: Optional[int] = None) -> Message:
        if row.read:
            delivery = delivery.advance(DeliveryState.READ)
        return Message(
            id=row.id,
            thread_id=row.thread_id,
            sender=row.sender,
            content=row.content,
            created_at=row.created_at,
            is_encrypted=row.is_encrypted,
            state=EntryState.CONFIRMED,
            delivery=delivery,
            seq=seq if seq is not None else next(self._seq),
        )

    async def _call(self, coro):
        return await asyncio.wait_for(coro, self.timeout)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _load_failed(self) -> None:
        if not self.disposed:
            self.load_failed = True
            self._entries = []

    async def _mark_read(self, ids: List[str]) -> None:
        try:
            await self._call(self.store.mark_read(ids))
        except Exception as e:  # read marking never fails the view
            log.warning("Failed to mark %d message(s) read: %s", len(ids), e)
            return
        if self.disposed:
            return
        wanted = set(ids)
        for m in self._entries:
            if m.id in wanted:
                m.delivery = m.delivery.advance(DeliveryState.READ)

    # -------------------------------------------------------------- operations
    async def load_history(self, thread_id: str) -> List[Message]:
        """
        Fetch the thread and all of its confirmed messages.

        Incoming unread messages are marked read in one batch. On any store
        failure the list is cleared and LoadError is raised; nothing partial
        is left visible.
        """
        if self.thread_id != thread_id:
            self._entries = []
        self.thread_id = thread_id
        try:
            thread = await self._call(self.store.get_thread(thread_id))
            rows = await self._call(self.store.list_messages(thread_id)) if thread else []
        except asyncio.CancelledError:
            self._load_failed()
            raise
        except Exception as e:
            self._load_failed()
            log.warning("Failed to load chat %s: %s", thread_id, e)
            raise LoadError("Failed to load chat history") from e

        if self.disposed:
            return []
        if thread is None or not thread.has(self.me):
            self._load_failed()
            raise LoadError("Chat not found")

        self.thread = thread
        self.load_failed = False
        loaded = [self._entry_from_row(r, DeliveryState.DELIVERED) for r in rows]
        loaded_ids = {m.id for m in loaded}
        # keep pushes and pending sends that raced with the fetch
        merged = loaded + [m for m in self._entries if m.id not in loaded_ids]
        merged.sort(key=lambda m: m.sort_key)
        self._entries = merged
        log.debug("Loaded %d message(s) for %s", len(loaded), thread_id)

        unread = [m.id for m in loaded if not self._is_me(m.sender) and m.delivery is not DeliveryState.READ]
        if unread and self.focused:
            await self._mark_read(unread)
        return self.messages

    async def submit(
        self,
        text: str,
        encrypt: Optional[bool] = None,
        draft_id: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Send `text` optimistically.

        The pending entry is visible immediately. Returns the confirmed entry,
        or None when nothing was sent (blank text, the same draft already in
        flight, or the view was closed meanwhile). Raises SendError, with the
        draft text attached, after rolling the pending entry back.
        """
        if not text or not text.strip():
            return None
        if draft_id is not None and draft_id in self._in_flight:
            return None
        if self.disposed or self.thread is None:
            raise SendError("Chat is not open", draft=text)
        if encrypt is None:
            encrypt = self.session.encrypt_by_default

        thread = self.thread
        body = text.strip()
        temp = Message(
            id=f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            thread_id=thread.id,
            sender=self.me,
            content=body,
            created_at=self.clock(),
            is_encrypted=encrypt,
            state=EntryState.PENDING,
            delivery=DeliveryState.SENT,
            seq=next(self._seq),
        )
        self._insert(temp)
        try:
            if encrypt:
                temp.content = encrypt_text(body, message_key(thread, self.me))
        except EncryptionError as e:
            self._remove(temp.id)
            raise SendError("Failed to encrypt message", draft=text) from e

        if draft_id is not None:
            self._in_flight.add(draft_id)
        try:
            row = await self._call(
                self.store.insert_message(
                    NewMessage(thread_id=thread.id, sender=self.me, content=temp.content, is_encrypted=encrypt)
                )
            )
        except asyncio.CancelledError:
            if not self.disposed:
                self._remove(temp.id)
            raise
        except Exception as e:
            if not self.disposed:
                self._remove(temp.id)
            log.warning("Send failed in %s: %s", thread.id, e)
            raise SendError("Failed to send message", draft=text) from e
        finally:
            if draft_id is not None:
                self._in_flight.discard(draft_id)

        if self.disposed:
            return None
        self._remove(temp.id)
        confirmed = self._get(row.id)
        if confirmed is None:
            confirmed = self._entry_from_row(row, DeliveryState.SENT, seq=temp.seq)
            self._insert(confirmed)
        return confirmed

    def on_remote_push(self, raw_row) -> None:
        """Merge a realtime insert. Safe to call any number of times per row."""
        if self.disposed:
            return
        row = self._parse_row(raw_row)
        if row is None or row.thread_id != self.thread_id:
            return
        if self._get(row.id) is not None:
            return
        if self._is_me(row.sender):
            return
        entry = self._entry_from_row(row, DeliveryState.DELIVERED)
        self._insert(entry)
        if self.focused and entry.delivery is not DeliveryState.READ:
            self._spawn(self._mark_read([entry.id]))

    def on_remote_update(self, raw_row) -> None:
        """Apply a read receipt pushed by the store."""
        if self.disposed:
            return
        row = self._parse_row(raw_row)
        if row is None or not row.read:
            return
        entry = self._get(row.id)
        if entry is not None:
            entry.delivery = entry.delivery.advance(DeliveryState.READ)

    def handle_event(self, event: RealtimeEvent) -> None:
        if event.table != "messages":
            return
        if event.type == "INSERT":
            self.on_remote_push(event.new)
        elif event.type == "UPDATE":
            self.on_remote_update(event.new)

    async def set_focus(self, focused: bool) -> None:
        """Track view focus; regaining it marks everything incoming as read."""
        self.focused = focused
        if not focused or self.disposed:
            return
        unread = [
            m.id for m in self._entries
            if not m.is_pending and not self._is_me(m.sender) and m.delivery is not DeliveryState.READ
        ]
        if unread:
            await self._mark_read(unread)

    def bind(self, channel) -> None:
        self._channel = channel

    async def dispose(self) -> None:
        """Tear down: unsubscribe and ignore every later completion or push."""
        self.disposed = True
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.stop()
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    @staticmethod
    def _parse_row(raw_row) -> Optional[MessageRow]:
        if isinstance(raw_row, MessageRow):
            return raw_row
        try:
            return MessageRow.model_validate(raw_row)
        except ModelError as e:
            log.warning("Ignoring malformed message row: %s", e)
            return None
