# crypto_utils.py
"""
Message envelope codec.

Key material is public: the sender encrypts with the *recipient's* wallet
address, salted by the thread id, and the recipient derives the very same key
to read it. Anyone who knows the address and thread id can do the same, so
this is obfuscation at rest, not end-to-end encryption.
"""
import base64
import binascii
import hashlib
import logging
from typing import Optional, Tuple

import nacl.encoding
import nacl.exceptions
import nacl.hash
import nacl.secret
import nacl.utils

from config import settings
from errors import DecryptionError, EncryptionError

log = logging.getLogger(__name__)

ENVELOPE_MAGIC = b"WCv1"
SALT_SIZE = 16  # blake2b salt length
_HEADER_SIZE = len(ENVELOPE_MAGIC) + SALT_SIZE
_MIN_ENVELOPE = _HEADER_SIZE + nacl.secret.SecretBox.NONCE_SIZE + nacl.secret.SecretBox.MACBYTES


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def derive_key(public_identifier: str, salt: Optional[str] = None) -> str:
    """
    Derive symmetric key material from a public identifier.

    With a salt (normally the thread id) the salt is hashed and fed to
    PBKDF2-SHA256 over the identifier; the result is returned as hex. Without
    one the identifier itself is the key material.
    """
    if not public_identifier:
        raise EncryptionError("cannot derive a key from an empty identifier")
    if salt is None:
        return public_identifier
    hashed_salt = sha256_hex(salt.encode())
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        public_identifier.encode(),
        hashed_salt.encode(),
        int(settings.get("pbkdf2_iterations", 1000)),
        dklen=int(settings.get("key_size_bytes", 32)),
    )
    return raw.hex()


def _box_for(key: str, salt: bytes) -> nacl.secret.SecretBox:
    box_key = nacl.hash.blake2b(
        key.encode(),
        digest_size=nacl.secret.SecretBox.KEY_SIZE,
        salt=salt,
        encoder=nacl.encoding.RawEncoder,
    )
    return nacl.secret.SecretBox(box_key)


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt text into a self-contained base64 envelope."""
    if not plaintext:
        raise EncryptionError("nothing to encrypt")
    if not key:
        raise EncryptionError("missing key")
    try:
        salt = nacl.utils.random(SALT_SIZE)
        sealed = _box_for(key, salt).encrypt(plaintext.encode("utf-8"))
    except (nacl.exceptions.CryptoError, TypeError, ValueError) as e:
        raise EncryptionError(f"failed to encrypt message: {e}") from e
    return base64.b64encode(ENVELOPE_MAGIC + salt + bytes(sealed)).decode()


def decrypt(envelope: str, key: str) -> str:
    if not isinstance(envelope, str) or not key:
        raise DecryptionError("missing envelope or key")
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("envelope is not valid base64") from e
    if len(raw) < _MIN_ENVELOPE or not raw.startswith(ENVELOPE_MAGIC):
        raise DecryptionError("not a message envelope")
    salt = raw[len(ENVELOPE_MAGIC):_HEADER_SIZE]
    try:
        data = _box_for(key, salt).decrypt(raw[_HEADER_SIZE:])
    except nacl.exceptions.CryptoError as e:
        raise DecryptionError("wrong key or corrupted envelope") from e
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("decrypted bytes are not text") from e


def decrypt_for_display(envelope: str, key: str, placeholder: Optional[str] = None) -> str:
    """Like decrypt(), but returns a placeholder instead of raising."""
    try:
        return decrypt(envelope, key)
    except DecryptionError as e:
        log.warning("Decrypt failed: %s", e)
        if placeholder is None:
            placeholder = settings.get("decrypt_placeholder", "[unable to decrypt]")
        return placeholder


# --- Thread helpers ---
def thread_participants(a: str, b: str) -> Tuple[str, str]:
    """Canonical participant pair so lookups are symmetric."""
    p1, p2 = sorted([a, b], key=str.lower)
    return p1, p2


def message_key(thread, sender: str) -> str:
    """Key for a message in `thread` written by `sender`: recipient address salted by thread id."""
    recipient = thread.other(sender)
    return derive_key(recipient, thread.id)
