# accounts.py
"""Sign-up and sign-in. Each returns an active, saved Session."""
import logging
from typing import Optional

from errors import ValidationError
from session import AuthMode, IdentityMode, Session
from wallet import address_for_seed, generate_identity, normalize_address, validate_seed

log = logging.getLogger(__name__)


async def register(store, username: str, email: Optional[str] = None, path=None, identity_mode=None, auth_mode=None):
    """
    Generate a wallet, publish its profile, and persist the session locally.

    Returns (session, seed). The seed is shown to the user once; the store
    never sees it.
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("Please choose a username")
    identity = generate_identity()
    profile = await store.create_profile(username, identity.address, email)
    session = Session.new(identity_mode, auth_mode, username=profile.username, email=profile.email)
    session.add_wallet(identity.address, seed=identity.seed)
    session.save(path)
    log.info("Registered %s as %s", username, identity.address)
    return session, identity.seed


async def login_with_password(store, username: str, email: Optional[str] = None, path=None, identity_mode=None) -> Session:
    profile = await store.find_profile(username, email)
    if profile is None:
        raise ValidationError("Invalid username or email")
    session = Session.new(identity_mode, AuthMode.PASSWORD_LOGIN, username=profile.username, email=profile.email)
    session.add_wallet(profile.address)
    session.save(path)
    return session


async def login_with_seed(store, address: str, seed: str, path=None, identity_mode=None) -> Session:
    address = normalize_address(address)
    if not validate_seed(seed, address):
        raise ValidationError("Seed does not match this wallet")
    profile = await store.get_profile_by_address(address)
    session = Session.new(
        identity_mode,
        AuthMode.SEED_LOGIN,
        username=profile.username if profile else None,
        email=profile.email if profile else None,
    )
    session.add_wallet(address, seed=seed)
    session.save(path)
    return session


def add_wallet(session: Session, name: str, path=None, seed: Optional[str] = None):
    """Attach another wallet to a multi-wallet session (generated unless a seed is given)."""
    if session.identity_mode is not IdentityMode.MULTI_WALLET:
        raise ValidationError("Session is single-wallet")
    if seed is None:
        identity = generate_identity()
        address, seed = identity.address, identity.seed
    else:
        address = address_for_seed(seed)
    entry = session.add_wallet(address, name=name, seed=seed)
    session.save(path)
    return entry
