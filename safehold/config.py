"""
SafeHold - Configuration, Layout and Settings

This file handles:
- Where the data directory lives (SAFEHOLD_HOME or ~/.safehold)
- The Config struct passed explicitly to every component
- Atomic file writes (temp file, fsync, rename)
- Master lock state file (master_lock.json)
- Application preferences (app_settings.json)

Data directory layout:
    app.key            app-managed key (0600)
    index.json         project index (owned by the store)
    master_lock.json   master lock state
    app_settings.json  application preferences
    vaults/<id>.vault  one encrypted file per project
    pending.json       transient commit journal
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from . import __version__
from . import crypto
from .crypto import KdfParams
from .errors import Corrupted, IoFailure

logger = logging.getLogger(__name__)

APP_DIR_NAME = ".safehold"
HOME_ENV = "SAFEHOLD_HOME"

GLOBAL_ID = "global"
VAULT_SUFFIX = ".vault"
STAGED_SUFFIX = ".staged"

PathLike = Union[str, Path]


# =============================================================================
# Config
# =============================================================================

@dataclass
class Config:
    """
    Process-wide configuration, loaded once and passed to every component.

    Nothing in the package reads global state behind the caller's back, so a
    test can point a Config at a throwaway directory and get a fully
    isolated store.
    """
    base_dir: Path
    # scrypt cost used when a new lock or master lock is created
    scrypt_log2_n: int = crypto.SCRYPT_LOG2_N
    scrypt_r: int = crypto.SCRYPT_R
    scrypt_p: int = crypto.SCRYPT_P
    min_password_length: int = 1
    min_master_password_length: int = 8

    @property
    def app_key_path(self) -> Path:
        return self.base_dir / "app.key"

    @property
    def index_path(self) -> Path:
        return self.base_dir / "index.json"

    @property
    def master_lock_path(self) -> Path:
        return self.base_dir / "master_lock.json"

    @property
    def settings_path(self) -> Path:
        return self.base_dir / "app_settings.json"

    @property
    def journal_path(self) -> Path:
        return self.base_dir / "pending.json"

    @property
    def vaults_dir(self) -> Path:
        return self.base_dir / "vaults"

    def vault_path(self, project_id: str) -> Path:
        return self.vaults_dir / f"{project_id}{VAULT_SUFFIX}"

    def new_kdf_params(self) -> KdfParams:
        return crypto.new_kdf_params(self.scrypt_log2_n, self.scrypt_r, self.scrypt_p)

    def ensure_layout(self) -> Path:
        """Create the base and vault directories (owner-only) if missing."""
        try:
            self.base_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.vaults_dir.mkdir(mode=0o700, exist_ok=True)
        except OSError as e:
            raise IoFailure(f"create {self.base_dir}: {e}") from e
        return self.base_dir


def default_base_dir() -> Path:
    special = os.environ.get(HOME_ENV)
    if special:
        return Path(special)
    return Path.home() / APP_DIR_NAME


def load_config(base_dir: Optional[PathLike] = None, **overrides) -> Config:
    """
    Build the Config for this process and make sure the layout exists.

    Args:
        base_dir: Data directory; defaults to $SAFEHOLD_HOME or ~/.safehold
        **overrides: Any other Config field (e.g. scrypt_log2_n in tests)
    """
    base = Path(base_dir) if base_dir is not None else default_base_dir()
    config = Config(base_dir=base.expanduser(), **overrides)
    config.ensure_layout()
    return config


# =============================================================================
# File Helpers
# =============================================================================

def atomic_write(path: Path, data: bytes, mode: int = 0o600) -> None:
    """
    Replace ``path`` with ``data`` so readers see the old or the new file,
    never a partial one.

    The temp file lives in the same directory so os.replace is a rename on
    the same filesystem.
    """
    path = Path(path)
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise IoFailure(f"write {path}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    logger.debug("Wrote %s (%d bytes)", path, len(data))


def read_bytes(path: Path) -> Optional[bytes]:
    """Read a whole file; None if it does not exist."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise IoFailure(f"read {path}: {e}") from e


def remove_file(path: Path) -> bool:
    """Delete a file if present. Returns True if something was removed."""
    try:
        os.unlink(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IoFailure(f"delete {path}: {e}") from e


def dump_json(document: dict) -> bytes:
    return json.dumps(document, indent=2, sort_keys=True).encode("utf-8")


def read_json(path: Path) -> Optional[dict]:
    """Load a JSON object; None if missing, Corrupted if unreadable."""
    raw = read_bytes(path)
    if raw is None:
        return None
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise Corrupted(f"parse {path}: {e}") from e
    if not isinstance(document, dict):
        raise Corrupted(f"parse {path}: expected a JSON object")
    return document


def write_json(path: Path, document: dict) -> None:
    atomic_write(path, dump_json(document))


# =============================================================================
# Master Lock State
# =============================================================================

@dataclass
class MasterLockState:
    """
    Persisted master lock flag plus what is needed to check the password.

    Only the scrypt parameters and the HKDF check key are stored; the master
    password itself never touches the disk.
    """
    enabled: bool = False
    kdf: Optional[KdfParams] = None
    verifier: Optional[bytes] = None

    def to_dict(self) -> dict:
        if not self.enabled:
            return {"enabled": False}
        return {
            "enabled": True,
            "kdf": self.kdf.to_dict(),
            "verifier": self.verifier.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MasterLockState":
        if not data.get("enabled"):
            return cls()
        try:
            return cls(
                enabled=True,
                kdf=KdfParams.from_dict(data["kdf"]),
                verifier=bytes.fromhex(data["verifier"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise Corrupted(f"invalid master lock state: {e}") from e


def load_master_lock_state(config: Config) -> MasterLockState:
    document = read_json(config.master_lock_path)
    if document is None:
        return MasterLockState()
    return MasterLockState.from_dict(document)


# =============================================================================
# Application Settings
# =============================================================================

@dataclass
class SecuritySettings:
    # mirror of master_lock.json, kept for front-ends that only read settings
    global_master_lock: bool = False
    session_timeout_minutes: int = 0
    clipboard_clear_seconds: int = 30
    require_confirmation: bool = True


@dataclass
class CliSettings:
    default_color: str = "auto"      # "auto", "always", "never"
    default_style: str = "fancy"     # "fancy", "plain"
    verbose_help: bool = False
    confirm_destructive: bool = True


@dataclass
class AppSettings:
    """User preferences that persist across sessions, stored apart from projects."""
    security: SecuritySettings = field(default_factory=SecuritySettings)
    cli: CliSettings = field(default_factory=CliSettings)
    settings_version: str = __version__

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        # unknown keys from newer versions are dropped, missing ones defaulted
        def pick(section_cls, values):
            values = values if isinstance(values, dict) else {}
            known = section_cls.__dataclass_fields__
            return section_cls(**{k: v for k, v in values.items() if k in known})

        return cls(
            security=pick(SecuritySettings, data.get("security")),
            cli=pick(CliSettings, data.get("cli")),
            settings_version=str(data.get("settings_version", __version__)),
        )


def load_settings(config: Config) -> AppSettings:
    """Load settings, writing the defaults on first use."""
    document = read_json(config.settings_path)
    if document is None:
        settings = AppSettings()
        save_settings(config, settings)
        return settings
    return AppSettings.from_dict(document)


def save_settings(config: Config, settings: AppSettings) -> None:
    write_json(config.settings_path, settings.to_dict())


def update_settings(config: Config, updater: Callable[[AppSettings], None]) -> AppSettings:
    settings = load_settings(config)
    updater(settings)
    save_settings(config, settings)
    return settings
