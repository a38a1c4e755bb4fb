import logging
from typing import NamedTuple

from eth_account import Account
from eth_utils import is_address, to_checksum_address

from errors import ValidationError

log = logging.getLogger(__name__)


class WalletIdentity(NamedTuple):
    address: str
    seed: str  # hex private key; stays on this device


def generate_identity() -> WalletIdentity:
    acct = Account.create()
    log.debug("Generated wallet %s", acct.address)
    return WalletIdentity(acct.address, acct.key.hex())


def address_for_seed(seed: str) -> str:
    return Account.from_key(seed).address


def validate_seed(seed: str, address: str) -> bool:
    """True if `seed` is the private key behind `address`."""
    try:
        derived = address_for_seed(seed)
    except Exception as e:  # malformed hex, wrong length, out-of-range key
        log.debug("Seed rejected: %s", e)
        return False
    return derived.lower() == address.lower()


def is_valid_address_format(address: str) -> bool:
    return isinstance(address, str) and is_address(address)


def normalize_address(address: str) -> str:
    """
    Checksummed spelling of `address`.

    Every address is stored and compared in this form so that a wallet typed
    in lowercase and the same wallet copied in checksum case name one
    participant.
    """
    if not is_valid_address_format(address):
        raise ValidationError("Invalid wallet address format")
    return to_checksum_address(address)
