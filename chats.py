# chats.py
import logging
from typing import List

from conversation import ConversationStateMachine
from crypto_utils import decrypt_for_display, message_key
from errors import ValidationError
from models import ChatPreview, Profile, Thread
from realtime import RealtimeChannel
from wallet import normalize_address

log = logging.getLogger(__name__)

NO_MESSAGES = "No messages yet"
UNKNOWN_USER = "Unknown User"


async def start_chat(session, store, address: str) -> Thread:
    """Find or create the thread with `address`. Input checks happen before any network call."""
    address = (address or "").strip()
    if not address:
        raise ValidationError("Please enter a wallet address")
    address = normalize_address(address)
    if address.lower() == session.address.lower():
        raise ValidationError("Cannot start chat with yourself")

    profile = await store.get_profile_by_address(address)
    if profile is None:
        raise ValidationError("This wallet address is not registered")
    return await store.get_or_create_thread(session.address, profile.address)


async def search_users(session, store, query: str) -> List[Profile]:
    """Registered users whose username contains `query`, never the signed-in wallet."""
    query = (query or "").strip()
    if not query:
        return []
    return await store.search_profiles(query, session.address)


async def list_chats(session, store) -> List[ChatPreview]:
    """Chat list for the signed-in wallet, most recent activity first."""
    me = session.address
    threads = await store.list_threads(me)
    if not threads:
        return []
    latest = await store.latest_messages([t.id for t in threads])

    previews = []
    for t in threads:
        other = t.other(me)
        profile = await store.get_profile_by_address(other)
        last = latest.get(t.id)
        if last is None:
            text, ts = NO_MESSAGES, t.created_at
        elif last.is_encrypted:
            text, ts = decrypt_for_display(last.content, message_key(t, last.sender)), last.created_at
        else:
            text, ts = last.content, last.created_at
        previews.append(ChatPreview(
            thread_id=t.id,
            participant=other,
            participant_username=profile.username if profile else UNKNOWN_USER,
            last_message=text,
            timestamp=ts,
            unread=await store.count_unread(t.id, me),
        ))
    return previews


async def open_conversation(session, store, thread_id: str, subscribe: bool = True, realtime_url=None) -> ConversationStateMachine:
    """
    Build the state for one chat view: subscribe first so nothing inserted
    during the history fetch is missed, then load.
    """
    convo = ConversationStateMachine(session, store)
    if subscribe:
        channel = RealtimeChannel(thread_id, convo.handle_event, url=realtime_url)
        convo.bind(channel)
        channel.start()
    try:
        await convo.load_history(thread_id)
    except Exception:
        await convo.dispose()
        raise
    return convo
