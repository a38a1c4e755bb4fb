# chat_client.py
"""
Terminal chat client.

    python chat_client.py register alice --email alice@example.com
    python chat_client.py login --address 0x... --seed ...
    python chat_client.py chats
    python chat_client.py search ali
    python chat_client.py chat 0xRecipient...
"""
import argparse
import asyncio
import logging
import sys
import time

from accounts import login_with_password, login_with_seed, register
from chats import list_chats, open_conversation, search_users, start_chat
from errors import ChatError, LoadError, SendError
from models import DeliveryState
from session import Session
from store import RelayStore

TICKS = {DeliveryState.PENDING: "…", DeliveryState.SENT: "✓", DeliveryState.DELIVERED: "✓✓", DeliveryState.READ: "✓✓ read"}


def fmt_time(ms: int) -> str:
    return time.strftime("%H:%M", time.localtime(ms / 1000))


def render(convo) -> None:
    for m, text in convo.display():
        lock = "🔒" if m.is_encrypted else "🔓"
        if m.sender == convo.me:
            print(f"  [{fmt_time(m.created_at)}] you {lock}: {text}  {TICKS[DeliveryState.PENDING if m.is_pending else m.delivery]}")
        else:
            print(f"  [{fmt_time(m.created_at)}] {m.sender[:10]}… {lock}: {text}")


async def cmd_register(args, store):
    session, seed = await register(store, args.username, args.email, args.session)
    print(f"✅ Registered {session.username}")
    print(f"🔐 Wallet address: {session.address}")
    print(f"🔑 Seed (save it, it is shown once): {seed}")


async def cmd_login(args, store):
    if args.seed:
        session = await login_with_seed(store, args.address, args.seed, args.session)
    else:
        session = await login_with_password(store, args.username, args.email, args.session)
    print(f"🔐 Signed in as {session.username or session.address}")


async def cmd_chats(args, store):
    session = Session.load(args.session)
    previews = await list_chats(session, store)
    if not previews:
        print("No chats yet.")
    for p in previews:
        unread = f" ({p.unread} new)" if p.unread else ""
        print(f"[{fmt_time(p.timestamp)}] {p.participant_username} <{p.participant}>{unread}: {p.last_message}")


async def cmd_search(args, store):
    session = Session.load(args.session)
    found = await search_users(session, store, args.query)
    if not found:
        print("No users found.")
    for p in found:
        print(f"👤 {p.username} <{p.address}>")


async def cmd_chat(args, store):
    session = Session.load(args.session)
    thread = await start_chat(session, store, args.address)
    try:
        convo = await open_conversation(session, store, thread.id)
    except LoadError as e:
        print(f"⚠️ {e}")
        return
    print(f"💬 Chat with {thread.other(session.address)}  (/enc toggles encryption, /quit exits)")
    render(convo)
    encrypt = session.encrypt_by_default
    try:
        while True:
            line = await asyncio.to_thread(input, "> ")
            if line.strip() == "/quit":
                break
            if line.strip() == "/enc":
                encrypt = not encrypt
                print("🔒 Encryption on" if encrypt else "🔓 Encryption off")
                continue
            try:
                await convo.submit(line, encrypt=encrypt)
            except SendError as e:
                print(f"⚠️ {e} (draft kept: {e.draft!r})")
            render(convo)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await convo.dispose()


async def cmd_logout(args, store):
    Session.load(args.session).dispose(args.session)
    print("👋 Signed out")


async def cmd_whoami(args, store):
    session = Session.load(args.session)
    if not session.is_active:
        print("Not signed in.")
        return
    for w in session.wallets:
        mark = "*" if w.address == session.current_address else " "
        print(f"{mark} {w.name}: {w.address}")
    print(f"user: {session.username}  mode: {session.identity_mode.value}/{session.auth_mode.value}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="walletchat")
    p.add_argument("--store", help="store base URL")
    p.add_argument("--session", help="session file path")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("register")
    r.add_argument("username")
    r.add_argument("--email")
    r.set_defaults(func=cmd_register)

    lg = sub.add_parser("login")
    lg.add_argument("--username")
    lg.add_argument("--email")
    lg.add_argument("--address")
    lg.add_argument("--seed")
    lg.set_defaults(func=cmd_login)

    sub.add_parser("logout").set_defaults(func=cmd_logout)
    sub.add_parser("whoami").set_defaults(func=cmd_whoami)
    sub.add_parser("chats").set_defaults(func=cmd_chats)

    s = sub.add_parser("search")
    s.add_argument("query")
    s.set_defaults(func=cmd_search)

    c = sub.add_parser("chat")
    c.add_argument("address")
    c.set_defaults(func=cmd_chat)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    store = RelayStore(args.store)
    try:
        asyncio.run(args.func(args, store))
    except ChatError as e:
        print(f"⚠️ {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
