"""
SafeHold - Error Types

Every failure the storage engine can report is one of these classes, so the
caller layer (CLI or GUI) can decide how to present it. Malformed files and
bad input never escape as KeyError/ValueError/struct.error.

Hierarchy:
    SafeholdError
    ├── NotFound
    │   ├── ProjectNotFound
    │   └── KeyNotFound
    ├── DuplicateName
    ├── InvalidName
    ├── DecryptionFailed
    │   ├── WrongPassword
    │   ├── Corrupted
    │   └── AuthenticationError
    ├── PasswordError
    │   ├── WeakPassword
    │   └── MissingPassword
    ├── FileExists
    ├── IoFailure
    └── PartialMigration
"""

from typing import Optional


class SafeholdError(Exception):
    """Base class for all SafeHold errors."""


class NotFound(SafeholdError):
    """A project or a credential key does not exist."""


class ProjectNotFound(NotFound):
    def __init__(self, project: str):
        super().__init__(f"project not found: {project}")
        self.project = project


class KeyNotFound(NotFound):
    def __init__(self, key: str, project: str):
        super().__init__(f"key '{key}' not found in project '{project}'")
        self.key = key
        self.project = project


class DuplicateName(SafeholdError):
    def __init__(self, name: str):
        super().__init__(f"project already exists: {name}")
        self.name = name


class InvalidName(SafeholdError):
    """A project name or credential key cannot be stored."""


class DecryptionFailed(SafeholdError):
    """
    Decryption did not produce plaintext.

    Catch this when the difference between a wrong password and a damaged
    file does not matter to the caller.
    """


class WrongPassword(DecryptionFailed):
    """The supplied password does not match the stored verifier."""


class Corrupted(DecryptionFailed):
    """The file cannot be parsed, or fails authentication under a verified key."""


class AuthenticationError(DecryptionFailed):
    """
    The AEAD tag did not verify.

    Raised by the crypto layer, which cannot tell a wrong key from a
    tampered ciphertext. The store turns it into WrongPassword or Corrupted.
    """


class PasswordError(SafeholdError):
    """Base class for password policy failures."""


class WeakPassword(PasswordError):
    pass


class MissingPassword(PasswordError):
    pass


class FileExists(SafeholdError):
    def __init__(self, path):
        super().__init__(f"{path} exists, use force to overwrite")
        self.path = path


class IoFailure(SafeholdError):
    """Permission, disk or other OS-level failure in the data directory."""


class PartialMigration(SafeholdError):
    """
    A master lock transition was aborted.

    Nothing was committed: every project file is still encrypted the way it
    was before the attempt. ``project_id`` names the project that failed and
    the original error is chained as ``__cause__``.
    """

    def __init__(self, project_id: str, reason: Optional[str] = None):
        message = f"master lock transition aborted at project '{project_id}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.project_id = project_id
