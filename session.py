# session.py
"""
Local session: who is signed in on this device and with which wallet.

The session is an explicit object handed to the chat core rather than ambient
global state. Lifecycle: Session.load(path) -> active -> dispose(path).
"""
import logging
import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError as ModelError

from config import settings
from errors import ValidationError
from wallet import normalize_address

log = logging.getLogger(__name__)


class IdentityMode(str, Enum):
    SINGLE_WALLET = "single_wallet"
    MULTI_WALLET = "multi_wallet"


class AuthMode(str, Enum):
    PASSWORD_LOGIN = "password_login"
    SEED_LOGIN = "seed_login"


class WalletEntry(BaseModel):
    address: str
    name: str = "Main wallet"
    seed: Optional[str] = None


class Session(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    wallets: List[WalletEntry] = []
    current_address: Optional[str] = None
    identity_mode: IdentityMode = IdentityMode.SINGLE_WALLET
    auth_mode: AuthMode = AuthMode.SEED_LOGIN
    encrypt_by_default: bool = False

    @classmethod
    def new(cls, identity_mode=None, auth_mode=None, **kwargs) -> "Session":
        return cls(
            identity_mode=IdentityMode(identity_mode or settings.get("identity_mode", "single_wallet")),
            auth_mode=AuthMode(auth_mode or settings.get("auth_mode", "seed_login")),
            **kwargs,
        )

    @classmethod
    def load(cls, path=None) -> "Session":
        """Load the persisted session, or a fresh signed-out one."""
        path = Path(path or settings["session_path"])
        if not path.exists():
            return cls.new()
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ModelError as e:
            log.warning("Ignoring unreadable session file %s: %s", path, e)
            return cls.new()

    def save(self, path=None) -> None:
        path = Path(path or settings["session_path"])
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        # Atomic replace to avoid partial files
        os.replace(tmp, path)

    def dispose(self, path=None) -> None:
        """Sign out: forget the identity and delete the persisted file."""
        path = Path(path or settings["session_path"])
        self.username = None
        self.email = None
        self.wallets = []
        self.current_address = None
        path.unlink(missing_ok=True)

    @property
    def is_active(self) -> bool:
        return self.current_address is not None

    @property
    def address(self) -> str:
        if not self.current_address:
            raise ValidationError("not signed in")
        return self.current_address

    @property
    def current_wallet(self) -> Optional[WalletEntry]:
        for w in self.wallets:
            if w.address == self.current_address:
                return w
        return None

    def add_wallet(self, address: str, name: str = "Main wallet", seed: Optional[str] = None) -> WalletEntry:
        address = normalize_address(address)
        for w in self.wallets:
            if w.address.lower() == address.lower():
                return w
        if self.identity_mode is IdentityMode.SINGLE_WALLET and self.wallets:
            raise ValidationError("single-wallet session already has a wallet")
        entry = WalletEntry(address=address, name=name, seed=seed)
        self.wallets.append(entry)
        if self.current_address is None:
            self.current_address = address
        return entry

    def select_wallet(self, address: str) -> None:
        for w in self.wallets:
            if w.address.lower() == address.lower():
                self.current_address = w.address
                return
        raise ValidationError(f"unknown wallet {address}")
