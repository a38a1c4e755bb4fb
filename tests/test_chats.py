import unittest

from chats import NO_MESSAGES, UNKNOWN_USER, list_chats, open_conversation, search_users, start_chat
from crypto_utils import encrypt, message_key
from errors import LoadError, ValidationError
from session import Session
from tests.fakes import ALICE, BOB, CAROL, FakeStore


def session_for(address):
    s = Session.new()
    s.add_wallet(address)
    return s


class StartChatTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = FakeStore()
        self.store.add_profile("alice", ALICE)
        self.store.add_profile("bob", BOB)
        self.alice = session_for(ALICE)

    async def test_rejected_before_network(self):
        for bad in ("", "   ", "not-an-address", "0x123", ALICE, ALICE.upper().replace("0X", "0x")):
            with self.assertRaises(ValidationError):
                await start_chat(self.alice, self.store, bad)
        self.assertEqual(self.store.calls, [])

    async def test_unregistered_recipient(self):
        with self.assertRaises(ValidationError):
            await start_chat(self.alice, self.store, CAROL)
        self.assertNotIn("get_or_create_thread", self.store.calls)

    async def test_thread_is_shared(self):
        t1 = await start_chat(self.alice, self.store, BOB)
        t2 = await start_chat(session_for(BOB), self.store, ALICE)
        self.assertEqual(t1.id, t2.id)
        self.assertEqual((t1.participant1, t1.participant2), (ALICE, BOB))


class SearchUsersTests(unittest.IsolatedAsyncioTestCase):
    async def test_search_excludes_me(self):
        store = FakeStore()
        store.add_profile("alice", ALICE)
        store.add_profile("alina", BOB)
        store.add_profile("carol", CAROL)
        found = await search_users(session_for(ALICE), store, " ali ")
        self.assertEqual([p.username for p in found], ["alina"])

    async def test_blank_query(self):
        store = FakeStore()
        self.assertEqual(await search_users(session_for(ALICE), store, "  "), [])
        self.assertEqual(store.calls, [])


class ListChatsTests(unittest.IsolatedAsyncioTestCase):
    async def test_previews(self):
        store = FakeStore()
        store.add_profile("bob", BOB)
        with_bob = store.add_thread(ALICE, BOB)
        with_carol = store.add_thread(ALICE, CAROL)
        store.add_row(with_bob.id, ALICE, "older")
        secret = encrypt("see you", message_key(with_bob, BOB))
        store.add_row(with_bob.id, BOB, secret, is_encrypted=True)
        store.add_row(with_bob.id, BOB, "unread too", created_at=1)
        store.threads[with_bob.id].last_message_at = store.tick()

        previews = await list_chats(session_for(ALICE), store)

        self.assertEqual([p.thread_id for p in previews], [with_bob.id, with_carol.id])
        bob, carol = previews
        self.assertEqual(bob.participant, BOB)
        self.assertEqual(bob.participant_username, "bob")
        self.assertEqual(bob.last_message, "see you")
        self.assertEqual(bob.unread, 2)
        self.assertEqual(carol.participant_username, UNKNOWN_USER)
        self.assertEqual(carol.last_message, NO_MESSAGES)
        self.assertEqual(carol.timestamp, with_carol.created_at)
        self.assertEqual(carol.unread, 0)

    async def test_no_threads(self):
        self.assertEqual(await list_chats(session_for(ALICE), FakeStore()), [])


class OpenConversationTests(unittest.IsolatedAsyncioTestCase):
    async def test_open_loads_history(self):
        store = FakeStore()
        t = store.add_thread(ALICE, BOB)
        store.add_row(t.id, BOB, "hi")
        convo = await open_conversation(session_for(ALICE), store, t.id, subscribe=False)
        self.assertEqual([m.content for m in convo.messages], ["hi"])
        await convo.dispose()

    async def test_open_failure_propagates(self):
        store = FakeStore()
        store.fail.add("get_thread")
        with self.assertRaises(LoadError):
            await open_conversation(session_for(ALICE), store, "t1", subscribe=False)


if __name__ == "__main__":
    unittest.main()
