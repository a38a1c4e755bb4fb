"""
Config loader that exposes a dict-like `settings` object.

It loads values from `settings.json` (JSON or JSONC) and falls back to sane
defaults. Supports:
- Trailing inline `//` comments and `/* ... */` block comments
- Numeric literals with underscores, e.g. 10_000

Environment overrides (applied last):
- WALLETCHAT_STORE_URL -> store_url (realtime_url follows unless set)
- DB_PATH -> db_path

Usage:
    from config import settings
    settings["store_url"]
    settings.get("store_timeout_secs", 10)
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict


SETTINGS_PATH = Path(__file__).with_name("settings.json")


def _strip_jsonc(text: str) -> str:
    """Remove JSONC comments and numeric underscores to make it JSON-safe."""
    # Remove /* block */ comments
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.S)
    # Remove // line comments (but not the // inside http:// or ws://)
    text = re.sub(r"(?<!:)//.*", "", text)
    # Remove underscores within numeric literals (e.g., 10_000 -> 10000)
    text = re.sub(r"(?<=\d)_(?=\d)", "", text)
    return text


def _read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8")
    cleaned = _strip_jsonc(raw)
    try:
        return json.loads(cleaned or "{}")
    except ValueError:
        # Fall back to empty if parsing fails; callers will merge defaults.
        return {}


DEFAULTS: Dict[str, Any] = {
    "store_url": "http://127.0.0.1:3000",
    "realtime_url": None,  # derived from store_url when unset
    "db_path": "walletchat.db",
    "session_path": "session.json",
    # Key derivation (PBKDF2-SHA256 over the recipient address)
    "pbkdf2_iterations": 1000,
    "key_size_bytes": 32,
    "store_timeout_secs": 10,
    "realtime_reconnect_secs": 3,
    "decrypt_placeholder": "[unable to decrypt]",
    "search_limit": 10,
    "identity_mode": "single_wallet",
    "auth_mode": "seed_login",
}


def _apply_env(out: Dict[str, Any]) -> None:
    store_url = os.getenv("WALLETCHAT_STORE_URL")
    if store_url:
        out["store_url"] = store_url
    db_path = os.getenv("DB_PATH")
    if db_path:
        out["db_path"] = db_path
    if not out.get("realtime_url"):
        out["realtime_url"] = out["store_url"].replace("http", "ws", 1)


def _merged_settings() -> Dict[str, Any]:
    data = _read_settings_file(SETTINGS_PATH)
    out = DEFAULTS.copy()
    out.update(data)
    _apply_env(out)
    return out


class _Settings(dict):
    """Dict subclass with a handy reload() and attribute access."""

    def __getattr__(self, key: str) -> Any:  # settings.key support
        try:
            return self[key]
        except KeyError as exc:
            raise AttributeError(key) from exc

    def reload(self) -> None:
        self.clear()
        self.update(_merged_settings())


# Public settings object
settings = _Settings(_merged_settings())
