import tempfile
import unittest
from pathlib import Path

from errors import ValidationError
from session import AuthMode, IdentityMode, Session
from tests.fakes import ALICE, BOB


class SessionTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "session.json"

    def test_new_session_is_signed_out(self):
        s = Session.new()
        self.assertFalse(s.is_active)
        self.assertIsNone(s.current_wallet)
        with self.assertRaises(ValidationError):
            s.address

    def test_save_load_dispose(self):
        s = Session.new(auth_mode=AuthMode.PASSWORD_LOGIN, username="alice")
        s.add_wallet(ALICE, seed="secret")
        s.save(self.path)

        loaded = Session.load(self.path)
        self.assertEqual(loaded.address, ALICE)
        self.assertEqual(loaded.username, "alice")
        self.assertEqual(loaded.current_wallet.seed, "secret")
        self.assertIs(loaded.auth_mode, AuthMode.PASSWORD_LOGIN)

        loaded.dispose(self.path)
        self.assertFalse(loaded.is_active)
        self.assertEqual(loaded.wallets, [])
        self.assertFalse(self.path.exists())
        self.assertFalse(Session.load(self.path).is_active)

    def test_corrupt_file_gives_fresh_session(self):
        self.path.write_text("{not json", encoding="utf-8")
        self.assertFalse(Session.load(self.path).is_active)

    def test_single_wallet_refuses_second(self):
        s = Session.new(IdentityMode.SINGLE_WALLET)
        s.add_wallet(ALICE)
        self.assertEqual(s.add_wallet(ALICE.upper().replace("0X", "0x")).address, ALICE)
        with self.assertRaises(ValidationError):
            s.add_wallet(BOB)

    def test_multi_wallet_select(self):
        s = Session.new(IdentityMode.MULTI_WALLET)
        s.add_wallet(ALICE)
        s.add_wallet(BOB, name="Work")
        self.assertEqual(s.address, ALICE)
        s.select_wallet(BOB)
        self.assertEqual(s.address, BOB)
        self.assertEqual(s.current_wallet.name, "Work")
        with self.assertRaises(ValidationError):
            s.select_wallet("0x" + "d" * 40)


if __name__ == "__main__":
    unittest.main()
