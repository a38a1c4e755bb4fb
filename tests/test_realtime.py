import asyncio
import json
import unittest

import websockets

from conversation import ConversationStateMachine
from realtime import RealtimeChannel, parse_event
from session import Session
from tests.fakes import ALICE, BOB, FakeStore


class ParseEventTests(unittest.TestCase):
    def test_valid_and_invalid_frames(self):
        ev = parse_event(json.dumps({"type": "INSERT", "table": "messages", "new": {"id": "m1"}}))
        self.assertEqual(ev.type, "INSERT")
        self.assertEqual(ev.new, {"id": "m1"})
        for raw in ("not json", json.dumps([1, 2]), json.dumps({"type": "INSERT"}), None):
            self.assertIsNone(parse_event(raw))


class RealtimeChannelTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.frames = []
        self.server = await websockets.serve(self._serve, "127.0.0.1", 0)
        port = self.server.sockets[0].getsockname()[1]
        self.url = f"ws://127.0.0.1:{port}"

    async def asyncTearDown(self):
        self.server.close()
        await self.server.wait_closed()

    async def _serve(self, ws):
        # send whatever is queued, then hang up so the client reconnects
        for frame in self.frames:
            await ws.send(frame)
        await ws.close()

    async def test_delivers_events_and_skips_garbage(self):
        row = {"id": "m1", "thread_id": "t1", "sender": BOB, "content": "yo", "created_at": 1, "is_encrypted": False, "read": False}
        self.frames = ["garbage", json.dumps({"type": "INSERT", "table": "messages", "new": row})]
        received = asyncio.Queue()
        channel = RealtimeChannel("t1", received.put_nowait, url=self.url, reconnect_secs=0.01)
        channel.start()
        try:
            event = await asyncio.wait_for(received.get(), 5)
            self.assertEqual(event.new["id"], "m1")
        finally:
            await channel.stop()

    async def test_replayed_rows_after_reconnect_are_merged_once(self):
        store = FakeStore()
        thread = store.add_thread(ALICE, BOB)
        session = Session.new()
        session.add_wallet(ALICE)
        convo = ConversationStateMachine(session, store, timeout=1)
        await convo.load_history(thread.id)
        convo.focused = False

        row = {"id": "m1", "thread_id": thread.id, "sender": BOB, "content": "yo", "created_at": 1, "is_encrypted": False, "read": False}
        self.frames = [json.dumps({"type": "INSERT", "table": "messages", "new": row})]
        seen = asyncio.Queue()

        def handler(event):
            convo.handle_event(event)
            seen.put_nowait(event)

        channel = RealtimeChannel(thread.id, handler, url=self.url, reconnect_secs=0.01)
        convo.bind(channel)
        channel.start()
        # same row delivered by two separate connections
        await asyncio.wait_for(seen.get(), 5)
        await asyncio.wait_for(seen.get(), 5)
        self.assertEqual([m.id for m in convo.messages], ["m1"])

        await convo.dispose()
        self.assertIsNone(channel._task)

    async def test_stop_without_start(self):
        channel = RealtimeChannel("t1", lambda e: None, url=self.url)
        await channel.stop()
        self.assertEqual(channel.url, f"{self.url}/ws/t1")


if __name__ == "__main__":
    unittest.main()
