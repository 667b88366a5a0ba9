"""
SafeHold - Project Store

This file handles:
- The project index (index.json: id, name, lock mode, lock parameters)
- Credential CRUD over encrypted project files
- Plaintext export
- Multi-file commits through a journal (pending.json)

Every mutation follows the same pattern:
    decrypt whole project → change the map → re-encrypt → atomic replace

Decrypted credentials only exist inside a session (a context manager) and are
wiped when the session ends, on success and on error alike.
"""

import atexit
import logging
import os
import re
import shutil
import struct
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from . import crypto
from .config import (
    GLOBAL_ID,
    STAGED_SUFFIX,
    Config,
    atomic_write,
    dump_json,
    load_master_lock_state,
    read_bytes,
    read_json,
    remove_file,
    update_settings,
    write_json,
)
from .crypto import KdfParams, wipe
from .errors import (
    AuthenticationError,
    Corrupted,
    DuplicateName,
    FileExists,
    InvalidName,
    IoFailure,
    KeyNotFound,
    MissingPassword,
    ProjectNotFound,
)
from .keys import KeyResolver, Prompt, ResolvedKey, ensure_app_key, new_password_key

logger = logging.getLogger(__name__)

INDEX_VERSION = 1
JOURNAL_VERSION = 1

Value = Union[str, bytes, bytearray]
Credentials = Dict[str, bytearray]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# =============================================================================
# Index Model
# =============================================================================

class LockMode(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass(frozen=True)
class ProjectSummary:
    """What callers see when enumerating projects (nothing secret)."""
    id: str
    name: str
    lock_mode: LockMode


@dataclass
class ProjectRecord:
    """
    One index entry.

    ``lock`` and ``verifier`` belong to the project's own password and are
    kept for as long as the project is Locked, also while master lock is on.
    ``escrow`` is the project's own content key sealed under the master key;
    it only exists while master lock is enabled.
    """
    id: str
    name: str
    lock_mode: LockMode = LockMode.UNLOCKED
    created_at: str = field(default_factory=_now)
    lock: Optional[KdfParams] = None
    verifier: Optional[bytes] = None
    escrow: Optional[bytes] = None

    @property
    def locked(self) -> bool:
        return self.lock_mode is LockMode.LOCKED

    def summary(self) -> ProjectSummary:
        return ProjectSummary(self.id, self.name, self.lock_mode)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "lock_mode": self.lock_mode.value,
            "created_at": self.created_at,
            "lock": self.lock.to_dict() if self.lock else None,
            "verifier": self.verifier.hex() if self.verifier else None,
            "escrow": self.escrow.hex() if self.escrow else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectRecord":
        try:
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                lock_mode=LockMode(data["lock_mode"]),
                created_at=str(data.get("created_at", "")),
                lock=KdfParams.from_dict(data["lock"]) if data.get("lock") else None,
                verifier=bytes.fromhex(data["verifier"]) if data.get("verifier") else None,
                escrow=bytes.fromhex(data["escrow"]) if data.get("escrow") else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise Corrupted(f"invalid project record: {e}") from e


@dataclass
class Index:
    projects: List[ProjectRecord] = field(default_factory=list)
    next_seq: int = 1
    created_at: str = field(default_factory=_now)

    def copy(self) -> "Index":
        return Index([replace(r) for r in self.projects], self.next_seq, self.created_at)

    def find_by_name(self, name: str) -> Optional[ProjectRecord]:
        for record in self.projects:
            if record.name == name:
                return record
        return None

    def find_by_id(self, project_id: str) -> Optional[ProjectRecord]:
        for record in self.projects:
            if record.id == project_id:
                return record
        return None

    def find(self, name_or_id: str) -> Optional[ProjectRecord]:
        """Names win over ids; a project may be named like another's id."""
        return self.find_by_name(name_or_id) or self.find_by_id(name_or_id)

    def to_dict(self) -> dict:
        return {
            "version": INDEX_VERSION,
            "created_at": self.created_at,
            "next_seq": self.next_seq,
            "projects": [r.to_dict() for r in self.projects],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Index":
        version = data.get("version", INDEX_VERSION)
        if not isinstance(version, int) or version > INDEX_VERSION:
            raise Corrupted(f"unsupported index version {version!r}")
        projects = data.get("projects", [])
        if not isinstance(projects, list):
            raise Corrupted("invalid index: projects must be a list")
        try:
            next_seq = int(data.get("next_seq", 1))
        except (TypeError, ValueError) as e:
            raise Corrupted(f"invalid index: {e}") from e
        return cls(
            projects=[ProjectRecord.from_dict(p) for p in projects],
            next_seq=next_seq,
            created_at=str(data.get("created_at", _now())),
        )


# =============================================================================
# Plaintext Payload
# =============================================================================

_COUNT = struct.Struct(">I")
_KEY_LEN = struct.Struct(">H")
_VALUE_LEN = struct.Struct(">I")


def pack_credentials(credentials: Mapping[str, bytearray]) -> bytearray:
    """
    Serialize the credential map into one pre-sized buffer.

    Sizing up front means the buffer is never reallocated, so no stray copy
    of the plaintext is left behind by a resize.

    Format: u32 count, then per key (sorted): u16 len, key, u32 len, value
    """
    names = sorted(credentials)
    encoded = [name.encode("utf-8") for name in names]
    size = _COUNT.size + sum(
        _KEY_LEN.size + len(raw) + _VALUE_LEN.size + len(credentials[name])
        for name, raw in zip(names, encoded)
    )
    buf = bytearray(size)
    _COUNT.pack_into(buf, 0, len(names))
    offset = _COUNT.size
    for name, raw in zip(names, encoded):
        _KEY_LEN.pack_into(buf, offset, len(raw))
        offset += _KEY_LEN.size
        buf[offset:offset + len(raw)] = raw
        offset += len(raw)
        value = credentials[name]
        _VALUE_LEN.pack_into(buf, offset, len(value))
        offset += _VALUE_LEN.size
        buf[offset:offset + len(value)] = value
        offset += len(value)
    return buf


def unpack_credentials(buf: bytearray) -> Credentials:
    """Inverse of pack_credentials. Raises Corrupted on malformed input."""
    view = memoryview(buf)
    credentials: Credentials = {}
    try:
        (count,) = _COUNT.unpack_from(view, 0)
        offset = _COUNT.size
        for _ in range(count):
            (key_len,) = _KEY_LEN.unpack_from(view, offset)
            offset += _KEY_LEN.size
            if offset + key_len > len(view):
                raise Corrupted("truncated credential payload")
            name = bytes(view[offset:offset + key_len]).decode("utf-8")
            offset += key_len
            (value_len,) = _VALUE_LEN.unpack_from(view, offset)
            offset += _VALUE_LEN.size
            if offset + value_len > len(view):
                raise Corrupted("truncated credential payload")
            credentials[name] = bytearray(view[offset:offset + value_len])
            offset += value_len
        if offset != len(view):
            raise Corrupted("trailing bytes in credential payload")
    except (struct.error, UnicodeDecodeError) as e:
        wipe_credentials(credentials)
        raise Corrupted(f"malformed credential payload: {e}") from e
    except Corrupted:
        wipe_credentials(credentials)
        raise
    finally:
        view.release()
    return credentials


def wipe_credentials(credentials: Credentials) -> None:
    for value in credentials.values():
        wipe(value)
    credentials.clear()


# =============================================================================
# Validation / Export Encoding
# =============================================================================

_SLUG = re.compile(r"[^A-Za-z0-9_-]+")


def validate_project_name(name: str) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidName("project name must not be empty")
    if name != name.strip() or any(ch in name for ch in "\r\n\t"):
        raise InvalidName(f"invalid project name: {name!r}")


def validate_key(key: str) -> None:
    """Keys must survive a round trip through a KEY=value line."""
    if not isinstance(key, str) or not key:
        raise InvalidName("key must not be empty")
    if key != key.strip() or "=" in key or "\n" in key or "\r" in key:
        raise InvalidName(f"invalid key name: {key!r}")
    if len(key.encode("utf-8")) > 0xFFFF:
        raise InvalidName("key name too long")


def to_buffer(value: Value) -> bytearray:
    if isinstance(value, str):
        return bytearray(value.encode("utf-8"))
    if isinstance(value, (bytes, bytearray)):
        return bytearray(value)
    raise TypeError(f"credential value must be str or bytes, not {type(value).__name__}")


def escape_value(value: bytearray) -> str:
    """Escape a value so it stays on one line (backslash, CR, LF)."""
    escaped = (
        bytes(value)
        .replace(b"\\", b"\\\\")
        .replace(b"\r", b"\\r")
        .replace(b"\n", b"\\n")
    )
    return escaped.decode("utf-8", errors="backslashreplace")


def render_env(credentials: Mapping[str, bytearray]) -> bytearray:
    """KEY=value lines, sorted by key, UTF-8."""
    out = bytearray()
    for name in sorted(credentials):
        out += f"{name}={escape_value(credentials[name])}\n".encode("utf-8")
    return out


def _remove_tree(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)


def _clear_master_flag(settings) -> None:
    settings.security.global_master_lock = False


# =============================================================================
# Commit Journal
# =============================================================================

Staged = List[Tuple[Path, Path]]   # (staged file, target file)


def staged_path(target: Path) -> Path:
    return target.with_name(target.name + STAGED_SUFFIX)


def stage_file(target: Path, data: bytes) -> Tuple[Path, Path]:
    """Write the next version of ``target`` next to it, without replacing it."""
    staged = staged_path(target)
    atomic_write(staged, data)
    return staged, target


def discard_staged(staged: Staged) -> None:
    for path, _ in staged:
        remove_file(path)


def commit_staged(config: Config, staged: Staged) -> None:
    """
    Replace several files as one unit.

    Writing the journal is the commit point: before it, nothing changed and
    the staged files are orphans; after it, recover_journal() will finish the
    replacements even if this process dies half way.
    """
    base = config.base_dir
    journal = {
        "version": JOURNAL_VERSION,
        "replace": [
            [str(s.relative_to(base)), str(t.relative_to(base))] for s, t in staged
        ],
    }
    write_json(config.journal_path, journal)
    _apply_journal(config, journal)
    remove_file(config.journal_path)


def _apply_journal(config: Config, journal: dict) -> int:
    applied = 0
    entries = journal.get("replace", [])
    if not isinstance(entries, list) or not all(
            isinstance(e, list) and len(e) == 2 for e in entries):
        raise Corrupted("invalid commit journal")
    for staged, target in entries:
        source = config.base_dir / staged
        if source.exists():
            try:
                os.replace(source, config.base_dir / target)
            except OSError as e:
                raise IoFailure(f"replace {target}: {e}") from e
            applied += 1
    return applied


def recover_journal(config: Config) -> None:
    """
    Finish an interrupted commit, then delete orphan staged files.

    Called on every start-up; does nothing in the normal case.
    """
    journal = read_json(config.journal_path)
    if journal is not None:
        applied = _apply_journal(config, journal)
        remove_file(config.journal_path)
        logger.warning("Completed an interrupted commit (%d file(s) replaced)", applied)
    for directory in (config.base_dir, config.vaults_dir):
        for orphan in directory.glob(f"*{STAGED_SUFFIX}"):
            remove_file(orphan)
            logger.warning("Removed orphan staged file %s", orphan.name)


# =============================================================================
# Store
# =============================================================================

class Session:
    """Decrypted view of one project for the duration of one operation."""

    def __init__(self, store: "Store", record: ProjectRecord, key: ResolvedKey,
                 credentials: Credentials):
        self.store = store
        self.record = record
        self.key = key
        self.credentials = credentials

    def save(self) -> None:
        self.store.write_credentials(self.record, self.key, self.credentials)
        self.store.materialize(self.record)


class Store:
    """
    CRUD surface over projects and credentials.

    Usage:
        config = load_config()
        store = Store(config, prompt=getpass.getpass)

        store.create("alpha")
        store.put("alpha", "API_KEY", "v1")
        store.get("alpha", "API_KEY")          # b"v1"

        store.create("beta", LockMode.LOCKED, password="p1")
        store.put("beta", "A", "x", password="p1")
    """

    def __init__(self, config: Config, prompt: Optional[Prompt] = None):
        self.config = config
        self.resolver = KeyResolver(config, prompt)
        config.ensure_layout()
        ensure_app_key(config)
        recover_journal(config)
        self.index = self._load_index()

    # =========================================================================
    # Index
    # =========================================================================

    def _load_index(self) -> Index:
        document = read_json(self.config.index_path)
        if document is None:
            return Index()
        return Index.from_dict(document)

    def _save_index(self, index: Optional[Index] = None) -> None:
        index = index or self.index
        write_json(self.config.index_path, index.to_dict())
        self.index = index

    def stage_index(self, index: Index) -> Tuple[Path, Path]:
        return stage_file(self.config.index_path, dump_json(index.to_dict()))

    def _record(self, project: str) -> ProjectRecord:
        """
        Look a project up by name, then by id.

        The global project exists conceptually before its first write; until
        then an unlocked placeholder is returned and nothing is persisted.
        """
        record = self.index.find(project)
        if record is not None:
            return record
        if project == GLOBAL_ID:
            return ProjectRecord(id=GLOBAL_ID, name=GLOBAL_ID)
        raise ProjectNotFound(project)

    def materialize(self, record: ProjectRecord) -> None:
        """Add a placeholder global record to the index after its first save."""
        if self.index.find_by_id(record.id) is not None:
            return
        index = self.index.copy()
        index.projects.insert(0, record)
        self._save_index(index)
        logger.info("Created global project")

    def locked_projects(self) -> List[ProjectRecord]:
        return [r for r in self.index.projects if r.locked]

    # =========================================================================
    # Encrypted Files
    # =========================================================================

    def read_credentials(self, record: ProjectRecord, key: ResolvedKey) -> Credentials:
        """
        Decrypt a project file with an already verified key.

        A missing file is an empty project. Since the key was verified
        (password) or is the app key, an authentication failure here means
        the file is damaged, not that the password is wrong.
        """
        blob = read_bytes(self.config.vault_path(record.id))
        if blob is None:
            return {}
        envelope = crypto.parse_envelope(blob)
        if envelope.algorithm is not key.algorithm or envelope.kdf != key.kdf:
            raise Corrupted(f"project '{record.name}' is encrypted under a different key")
        try:
            plaintext = key.unseal(blob)
        except AuthenticationError as e:
            raise Corrupted(f"project '{record.name}' failed authentication") from e
        try:
            return unpack_credentials(plaintext)
        finally:
            wipe(plaintext)

    def seal_credentials(self, key: ResolvedKey, credentials: Credentials) -> bytes:
        plaintext = pack_credentials(credentials)
        try:
            return key.seal(plaintext)
        finally:
            wipe(plaintext)

    def write_credentials(self, record: ProjectRecord, key: ResolvedKey,
                          credentials: Credentials) -> None:
        atomic_write(self.config.vault_path(record.id), self.seal_credentials(key, credentials))

    def session(self, project: str, password: Optional[str] = None):
        return self.open_record(self._record(project), password)

    @contextmanager
    def open_record(self, record: ProjectRecord,
                    password: Optional[str] = None) -> Iterator[Session]:
        """Decrypt ``record`` for one operation; values are wiped on exit."""
        credentials: Credentials = {}
        with self.resolver.key_for(record, password) as key:
            try:
                credentials = self.read_credentials(record, key)
                yield Session(self, record, key, credentials)
            finally:
                wipe_credentials(credentials)

    # =========================================================================
    # Projects
    # =========================================================================

    def create(self, name: str, lock_mode: LockMode = LockMode.UNLOCKED,
               password: Optional[str] = None, master_password: Optional[str] = None) -> str:
        """
        Create a project (or configure the global project).

        Args:
            name: Display name, unique among projects; "global" for the
                global project
            lock_mode: LOCKED requires a project password
            password: The project's own password (prompted if omitted)
            master_password: Needed only to create a Locked project while
                master lock is enabled

        Returns:
            The new project id

        Raises:
            DuplicateName, InvalidName, MissingPassword, WeakPassword,
            WrongPassword (master password)
        """
        lock_mode = LockMode(lock_mode)
        validate_project_name(name)
        index = self.index.copy()

        if name == GLOBAL_ID:
            if index.find_by_id(GLOBAL_ID) is not None:
                raise DuplicateName(name)
            project_id = GLOBAL_ID
        else:
            if index.find_by_name(name) is not None:
                raise DuplicateName(name)
            project_id = f"{index.next_seq:03d}_{_SLUG.sub('-', name).strip('-') or 'project'}"
            index.next_seq += 1

        record = ProjectRecord(id=project_id, name=name, lock_mode=lock_mode)
        if lock_mode is LockMode.LOCKED:
            key = self._apply_new_lock(record, password, master_password)
        else:
            key = self.resolver.app_key()
        with key:
            self.write_credentials(record, key, {})

        if project_id == GLOBAL_ID:
            index.projects.insert(0, record)
        else:
            index.projects.append(record)
        self._save_index(index)
        logger.info("Created project %s (%s)", project_id, lock_mode.value)
        return project_id

    def _apply_new_lock(self, record: ProjectRecord, password: Optional[str],
                        master_password: Optional[str]) -> ResolvedKey:
        """
        Give ``record`` its own password lock and return the key its file
        must now be sealed under (own key, or master key if master lock is on).
        """
        password = self.resolver.project_password(record.name, password)
        own, verifier = new_password_key(self.config, password, self.config.min_password_length)
        record.lock_mode = LockMode.LOCKED
        record.lock = own.kdf
        record.verifier = verifier
        record.escrow = None

        state = load_master_lock_state(self.config)
        if not state.enabled:
            return own
        with own:
            master = self.resolver.master_key(master_password, state)
            record.escrow = master.seal(own.key)
        return master

    def delete(self, project: str, force: bool = False) -> ProjectSummary:
        """
        Remove a project's file and index entry.

        Confirmation is the caller's job; ``force`` is accepted so front-ends
        can pass their flag through, and the deletion itself is unconditional.
        """
        record = self.index.find(project)
        if record is None:
            raise ProjectNotFound(project)
        remove_file(self.config.vault_path(record.id))
        index = self.index.copy()
        index.projects = [r for r in index.projects if r.id != record.id]
        self._save_index(index)
        logger.info("Deleted project %s", record.id)
        return record.summary()

    def delete_all(self, force: bool = False) -> int:
        """
        Delete every project, the global project and the master lock state.

        The app key, the settings and the id counter survive, so ids are
        still never reused.

        Returns:
            Number of projects removed
        """
        removed = len(self.index.projects)
        for record in self.index.projects:
            remove_file(self.config.vault_path(record.id))
        index = self.index.copy()
        index.projects = []
        self._save_index(index)
        remove_file(self.config.master_lock_path)
        update_settings(self.config, _clear_master_flag)
        logger.info("Deleted all projects (%d)", removed)
        return removed

    def list_all(self) -> List[ProjectSummary]:
        """Global first, then projects in creation order. Decrypts nothing."""
        summaries = [self._record(GLOBAL_ID).summary()]
        summaries.extend(r.summary() for r in self.index.projects if r.id != GLOBAL_ID)
        return summaries

    def set_lock_mode(self, project: str, lock_mode: LockMode, password: Optional[str] = None,
                      new_password: Optional[str] = None,
                      master_password: Optional[str] = None) -> ProjectSummary:
        """
        Switch a project between Locked and Unlocked.

        The file is re-encrypted and the index updated in one journaled
        commit, so the lock mode on record always matches the file's key.

        Args:
            password: Unlocks the current file (project or master password)
            new_password: The project's own password when locking
            master_password: Needed when locking while master lock is on
        """
        lock_mode = LockMode(lock_mode)
        record = self._record(project)
        if record.lock_mode is lock_mode:
            return record.summary()

        index = self.index.copy()
        updated = index.find_by_id(record.id)
        if updated is None:
            updated = replace(record)
            index.projects.insert(0, updated)
        with self.open_record(record, password) as session:
            if lock_mode is LockMode.UNLOCKED:
                updated.lock_mode = LockMode.UNLOCKED
                updated.lock = updated.verifier = updated.escrow = None
                target = self.resolver.app_key()
            else:
                target = self._apply_new_lock(updated, new_password, master_password)
            with target:
                blob = self.seal_credentials(target, session.credentials)

        staged = []
        try:
            staged.append(stage_file(self.config.vault_path(record.id), blob))
            staged.append(self.stage_index(index))
        except Exception:
            discard_staged(staged)
            raise
        commit_staged(self.config, staged)
        self.index = index
        logger.info("Project %s is now %s", record.id, lock_mode.value)
        return updated.summary()

    # =========================================================================
    # Credentials
    # =========================================================================

    def put(self, project: str, key: str, value: Value, password: Optional[str] = None) -> None:
        """Add or overwrite a credential."""
        validate_key(key)
        new_value = to_buffer(value)
        try:
            with self.session(project, password) as session:
                old = session.credentials.get(key)
                session.credentials[key] = new_value
                wipe(old)
                session.save()
        except Exception:
            wipe(new_value)
            raise

    add = put

    def get(self, project: str, key: str, password: Optional[str] = None) -> bytes:
        """
        Return one decrypted value. The caller owns the returned bytes.

        Raises:
            KeyNotFound, ProjectNotFound, WrongPassword, Corrupted
        """
        with self.session(project, password) as session:
            if key not in session.credentials:
                raise KeyNotFound(key, session.record.name)
            return bytes(session.credentials[key])

    def update(self, project: str, key: str, value: Value, password: Optional[str] = None) -> None:
        """Like put(), but the key must already exist."""
        new_value = to_buffer(value)
        try:
            with self.session(project, password) as session:
                if key not in session.credentials:
                    raise KeyNotFound(key, session.record.name)
                old = session.credentials[key]
                session.credentials[key] = new_value
                wipe(old)
                session.save()
        except Exception:
            wipe(new_value)
            raise

    def delete_key(self, project: str, key: str, password: Optional[str] = None) -> None:
        with self.session(project, password) as session:
            if key not in session.credentials:
                raise KeyNotFound(key, session.record.name)
            wipe(session.credentials.pop(key))
            session.save()

    def list(self, project: str, password: Optional[str] = None) -> List[str]:
        """Sorted key names; values stay encrypted from the caller's view."""
        with self.session(project, password) as session:
            return sorted(session.credentials)

    def credentials(self, project: str, password: Optional[str] = None) -> Dict[str, bytes]:
        """Every credential of a project, decrypted. The caller owns the copy."""
        with self.session(project, password) as session:
            return {name: bytes(value) for name, value in session.credentials.items()}

    def show_all(self, passwords: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, bytes]]:
        """
        Decrypt every project, global first.

        Locked projects with no password available (argument, environment
        or prompt) are skipped with a warning, so one locked project does not
        hide the rest. A wrong password still raises.

        Returns:
            {project name: {key: value}}
        """
        passwords = passwords or {}
        records = [self._record(GLOBAL_ID)]
        records.extend(r for r in self.index.projects if r.id != GLOBAL_ID)

        shown: Dict[str, Dict[str, bytes]] = {}
        for record in records:
            password = passwords.get(record.id, passwords.get(record.name))
            try:
                with self.open_record(record, password) as session:
                    shown[record.name] = {
                        name: bytes(value) for name, value in session.credentials.items()
                    }
            except MissingPassword:
                logger.warning("Skipped locked project %s (no password)", record.id)
        return shown

    def count(self, project: Optional[str] = None, include_global: bool = False,
              detailed: bool = False, passwords: Optional[Mapping[str, str]] = None):
        """
        Count credentials.

        Args:
            project: Count only this project
            include_global: Add the global project to an all-projects count
            detailed: Return {project name: count} instead of the total
            passwords: Passwords by project id or name (master password for
                locked projects while master lock is on)

        Returns:
            int total, or dict breakdown when ``detailed``
        """
        passwords = passwords or {}
        if project is not None:
            targets = [self._record(project)]
        else:
            targets = [r for r in self.index.projects if r.id != GLOBAL_ID]
            if include_global:
                targets.insert(0, self._record(GLOBAL_ID))

        counts: Dict[str, int] = {}
        for record in targets:
            password = passwords.get(record.id, passwords.get(record.name))
            with self.open_record(record, password) as session:
                counts[record.name] = len(session.credentials)
        if detailed:
            return counts
        return sum(counts.values())

    def export(self, project: str, destination: Optional[Union[str, Path]] = None,
               force: bool = False, temp: bool = False,
               password: Optional[str] = None) -> Path:
        """
        Write a project's credentials as a plaintext KEY=value file (0600).

        Args:
            destination: Target path (default ".env" in the working directory)
            force: Overwrite an existing file
            temp: Write into a fresh private temp directory that is removed
                when the interpreter exits, for short-lived use

        Returns:
            Path of the written file

        Raises:
            FileExists: target exists and ``force`` is not set
        """
        filename = Path(destination) if destination is not None else Path(".env")
        if temp:
            directory = tempfile.mkdtemp(prefix="safehold-")
            atexit.register(_remove_tree, directory)
            target = Path(directory) / filename.name
        else:
            target = filename
            if target.exists() and not force:
                raise FileExists(target)

        with self.session(project, password) as session:
            content = render_env(session.credentials)
        try:
            atomic_write(target, bytes(content), mode=0o600)
        finally:
            wipe(content)
        logger.info("Exported project %s to %s", project, target)
        return target
