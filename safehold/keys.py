"""
SafeHold - Key Resolver

Decides which key applies to a project and produces it, without ever
persisting a password:

    Unlocked project             → app key (app.key, random, 0600)
    Locked, master lock off      → scrypt(project password, project salt)
    Locked, master lock on       → scrypt(master password, master salt)

Passwords come from, in order: the explicit argument, an environment
variable (SAFEHOLD_PASSWORD / SAFEHOLD_MASTER_PASSWORD), the caller's prompt
callable (e.g. getpass.getpass). With none of these, MissingPassword.
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from . import crypto
from .config import Config, MasterLockState, atomic_write, load_master_lock_state, read_bytes
from .crypto import Algorithm, KdfParams, wipe
from .errors import Corrupted, MissingPassword, WeakPassword, WrongPassword

logger = logging.getLogger(__name__)

PASSWORD_ENV = "SAFEHOLD_PASSWORD"
MASTER_PASSWORD_ENV = "SAFEHOLD_MASTER_PASSWORD"

Prompt = Callable[[str], str]


@dataclass
class ResolvedKey:
    """
    A usable encryption key plus how to label envelopes sealed with it.

    Use as a context manager so the key bytes are wiped when the operation
    is over, whichever way it exits.
    """
    key: bytearray
    algorithm: Algorithm
    kdf: Optional[KdfParams] = None

    def seal(self, plaintext) -> bytes:
        return crypto.seal(plaintext, self.key, self.algorithm, self.kdf)

    def unseal(self, blob) -> bytearray:
        return crypto.unseal(blob, self.key)

    def wipe(self) -> None:
        wipe(self.key)

    def __enter__(self) -> "ResolvedKey":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()


# =============================================================================
# App Key
# =============================================================================

def ensure_app_key(config: Config) -> None:
    """Create the app-managed 32-byte key if it does not exist yet."""
    if config.app_key_path.exists():
        return
    key = bytearray(os.urandom(crypto.KEY_SIZE))
    try:
        atomic_write(config.app_key_path, bytes(key), mode=0o600)
    finally:
        wipe(key)
    logger.info("Created app key at %s", config.app_key_path)


def load_app_key(config: Config) -> bytearray:
    data = read_bytes(config.app_key_path)
    if data is None:
        ensure_app_key(config)
        data = read_bytes(config.app_key_path)
    if data is None or len(data) != crypto.KEY_SIZE:
        raise Corrupted("invalid app.key size")
    return bytearray(data)


# =============================================================================
# Password Keys
# =============================================================================

def check_password_strength(password: str, minimum: int) -> None:
    if not password:
        raise MissingPassword("a password is required")
    if len(password) < minimum:
        raise WeakPassword(f"password must be at least {minimum} characters long")


def derive_password_key(password: str, kdf: KdfParams) -> Tuple[ResolvedKey, bytearray]:
    """
    Derive (content key, check key) for a password.

    The root key only lives long enough to feed HKDF.

    Returns:
        (ResolvedKey for ChaCha20-Poly1305 labeled with ``kdf``, check key)
    """
    root = crypto.derive_root_key(password, kdf)
    try:
        subkeys = crypto.derive_subkeys(root)
    finally:
        wipe(root)
    return ResolvedKey(subkeys["content_key"], Algorithm.CHACHA20_POLY1305, kdf), subkeys["check_key"]


def verified_password_key(password: str, kdf: KdfParams, verifier: bytes) -> ResolvedKey:
    """
    Derive a key and check it against the stored verifier.

    Raises:
        WrongPassword: the password does not reproduce the verifier
    """
    resolved, check = derive_password_key(password, kdf)
    try:
        if not crypto.constant_compare(check, verifier):
            resolved.wipe()
            raise WrongPassword("wrong password")
    finally:
        wipe(check)
    return resolved


def new_password_key(config: Config, password: str, minimum: int) -> Tuple[ResolvedKey, bytes]:
    """
    Create a new lock: fresh salt, derived key, verifier to store.

    Returns:
        (ResolvedKey, verifier bytes)
    """
    check_password_strength(password, minimum)
    resolved, check = derive_password_key(password, config.new_kdf_params())
    try:
        return resolved, bytes(check)
    finally:
        wipe(check)


# =============================================================================
# Resolver
# =============================================================================

class KeyResolver:
    """
    Produces keys for projects according to the current locking regime.

    Usage:
        resolver = KeyResolver(config, prompt=getpass.getpass)
        with resolver.key_for(record, password) as key:
            plaintext = key.unseal(blob)
    """

    def __init__(self, config: Config, prompt: Optional[Prompt] = None):
        self.config = config
        self.prompt = prompt

    # -- password sources -----------------------------------------------------

    def _resolve(self, explicit: Optional[str], env_var: str, label: str) -> str:
        password = explicit
        if password is None:
            password = os.environ.get(env_var) or None
        if password is None and self.prompt is not None:
            password = self.prompt(f"{label}: ")
        if not password:
            raise MissingPassword(f"{label} required")
        return password

    def project_password(self, project_name: str, password: Optional[str] = None) -> str:
        return self._resolve(password, PASSWORD_ENV, f"Password for '{project_name}'")

    def master_password(self, password: Optional[str] = None) -> str:
        return self._resolve(password, MASTER_PASSWORD_ENV, "Master password")

    # -- keys -------------------------------------------------------------------

    def master_state(self) -> MasterLockState:
        return load_master_lock_state(self.config)

    def app_key(self) -> ResolvedKey:
        return ResolvedKey(load_app_key(self.config), Algorithm.AES_256_GCM)

    def master_key(self, password: Optional[str] = None,
                   state: Optional[MasterLockState] = None) -> ResolvedKey:
        state = state or self.master_state()
        if not state.enabled:
            raise MissingPassword("master lock is not enabled")
        return verified_password_key(self.master_password(password), state.kdf, state.verifier)

    def own_key(self, record, password: Optional[str] = None) -> ResolvedKey:
        """A locked project's per-project key, regardless of master lock."""
        if record.lock is None or record.verifier is None:
            raise Corrupted(f"project '{record.id}' has no lock parameters")
        password = self.project_password(record.name, password)
        return verified_password_key(password, record.lock, record.verifier)

    def key_for(self, record, password: Optional[str] = None) -> ResolvedKey:
        """
        The key a project's file is currently encrypted under.

        Args:
            record: ProjectRecord from the index
            password: Project password, or the master password while master
                lock is enabled; ignored for unlocked projects
        """
        if not record.locked:
            return self.app_key()
        state = self.master_state()
        if state.enabled:
            return self.master_key(password, state)
        return self.own_key(record, password)
