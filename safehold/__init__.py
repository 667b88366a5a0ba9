"""
SafeHold - Local Encrypted Credential Store

Keeps named sets of secrets ("projects") plus one "global" set on the local
disk, each set sealed in one encrypted file.

Key Features:
- Unlocked projects: app-managed key, no password needed
- Locked projects: own password, scrypt + HKDF + ChaCha20-Poly1305
- Master lock: one password re-keys every locked project, all or nothing
- Atomic writes: a crash never leaves a half-written file behind

Components:
- crypto.py: Envelope format, AEAD, key derivation, buffer wiping
- config.py: Data directory, Config, master lock state, settings
- keys.py: Which key applies to a project, and where passwords come from
- store.py: Project index and credential operations
- master_lock.py: Enable/disable master lock
- envops.py: Run commands with credentials, clean stray .env files

Usage:
    from safehold import LockMode, MasterLock, Store, load_config

    store = Store(load_config())
    store.create("alpha")
    store.put("alpha", "API_KEY", "v1")
    store.get("alpha", "API_KEY")          # b"v1"
"""

import logging

__version__ = "0.3.0"
__author__ = "SafeHold Team"

from .config import Config, load_config
from .errors import (
    Corrupted,
    DecryptionFailed,
    DuplicateName,
    FileExists,
    InvalidName,
    IoFailure,
    KeyNotFound,
    MissingPassword,
    NotFound,
    PartialMigration,
    ProjectNotFound,
    SafeholdError,
    WeakPassword,
    WrongPassword,
)
from .master_lock import MasterLock, MasterLockStatus
from .store import LockMode, ProjectSummary, Store

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Config",
    "Corrupted",
    "DecryptionFailed",
    "DuplicateName",
    "FileExists",
    "InvalidName",
    "IoFailure",
    "KeyNotFound",
    "LockMode",
    "MasterLock",
    "MasterLockStatus",
    "MissingPassword",
    "NotFound",
    "PartialMigration",
    "ProjectNotFound",
    "ProjectSummary",
    "SafeholdError",
    "Store",
    "WeakPassword",
    "WrongPassword",
    "load_config",
]
