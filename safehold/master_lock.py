"""
SafeHold - Master Lock Coordinator

Turns master lock on and off. While it is on, every Locked project (global
included) is encrypted under one key derived from the master password;
Unlocked projects are never touched.

Each transition is all-or-nothing:
    1. Decrypt every Locked project and re-seal it in memory
    2. Stage the new files next to the old ones (<name>.staged)
    3. Commit files, index, lock state and settings through the journal

Any failure before step 3 removes the staged files and raises
PartialMigration; the files on disk are exactly what they were before.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from . import crypto
from .config import MasterLockState, dump_json, load_master_lock_state, load_settings
from .crypto import Algorithm, wipe
from .errors import AuthenticationError, Corrupted, PartialMigration, SafeholdError
from .keys import ResolvedKey, check_password_strength, new_password_key
from .store import Index, ProjectRecord, Store, commit_staged, discard_staged, stage_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MasterLockStatus:
    enabled: bool
    affected_projects: int


class MasterLock:
    """
    Usage:
        master = MasterLock(store)
        master.enable("correct horse", project_passwords={"beta": "p1"})
        master.status()                 # MasterLockStatus(enabled=True, ...)
        master.disable("correct horse")
    """

    def __init__(self, store: Store):
        self.store = store
        self.config = store.config
        self.resolver = store.resolver

    def status(self) -> MasterLockStatus:
        """Read-only; decrypts nothing."""
        state = load_master_lock_state(self.config)
        return MasterLockStatus(state.enabled, len(self.store.locked_projects()))

    def verify(self, master_password: str) -> bool:
        state = load_master_lock_state(self.config)
        if not state.enabled:
            return False
        try:
            key = self.resolver.master_key(master_password, state)
        except SafeholdError:
            return False
        key.wipe()
        return True

    # =========================================================================
    # Enable
    # =========================================================================

    def enable(self, master_password: Optional[str] = None,
               project_passwords: Optional[Mapping[str, str]] = None) -> MasterLockStatus:
        """
        Re-encrypt every Locked project under a new master key.

        Args:
            master_password: At least ``min_master_password_length`` chars
            project_passwords: Current passwords by project id or name; any
                project missing here is resolved through the environment or
                the prompt

        Raises:
            WeakPassword: master password too short
            PartialMigration: a project could not be migrated; nothing changed
        """
        state = load_master_lock_state(self.config)
        if state.enabled:
            logger.warning("Master lock is already enabled")
            return self.status()

        password = self.resolver.master_password(master_password)
        check_password_strength(password, self.config.min_master_password_length)
        project_passwords = project_passwords or {}

        master, verifier = new_password_key(
            self.config, password, self.config.min_master_password_length)
        index = self.store.index.copy()
        staged = []
        with master:
            for record in index.projects:
                if not record.locked:
                    continue
                try:
                    staged.append(self._seal_under_master(record, master, project_passwords))
                except SafeholdError as e:
                    discard_staged(staged)
                    logger.error("Master lock not enabled: project %s failed (%s)",
                                 record.id, type(e).__name__)
                    raise PartialMigration(record.id, str(e)) from e

            migrated = len(staged)
            new_state = MasterLockState(enabled=True, kdf=master.kdf, verifier=verifier)
            self._commit(index, new_state, staged)

        logger.info("Master lock enabled (%d locked project(s))", migrated)
        return self.status()

    def _seal_under_master(self, record: ProjectRecord, master: ResolvedKey,
                           passwords: Mapping[str, str]):
        password = passwords.get(record.id, passwords.get(record.name))
        with self.resolver.own_key(record, password) as own:
            credentials = self.store.read_credentials(record, own)
            try:
                blob = self.store.seal_credentials(master, credentials)
            finally:
                for value in credentials.values():
                    wipe(value)
            record.escrow = master.seal(own.key)
        return stage_file(self.config.vault_path(record.id), blob)

    # =========================================================================
    # Disable
    # =========================================================================

    def disable(self, master_password: Optional[str] = None) -> MasterLockStatus:
        """
        Restore per-project encryption for every Locked project.

        The per-project keys come from the escrow written by enable(), so the
        individual project passwords are not needed.

        Raises:
            WrongPassword: the master password does not match
            PartialMigration: a project could not be migrated; nothing changed
        """
        state = load_master_lock_state(self.config)
        if not state.enabled:
            logger.warning("Master lock is already disabled")
            return self.status()

        index = self.store.index.copy()
        staged = []
        with self.resolver.master_key(master_password, state) as master:
            for record in index.projects:
                if not record.locked:
                    continue
                try:
                    staged.append(self._seal_under_own(record, master))
                except SafeholdError as e:
                    discard_staged(staged)
                    logger.error("Master lock not disabled: project %s failed (%s)",
                                 record.id, type(e).__name__)
                    raise PartialMigration(record.id, str(e)) from e

        migrated = len(staged)
        self._commit(index, MasterLockState(), staged)
        logger.info("Master lock disabled (%d locked project(s))", migrated)
        return self.status()

    def _seal_under_own(self, record: ProjectRecord, master: ResolvedKey):
        if record.escrow is None or record.lock is None:
            raise Corrupted(f"project '{record.id}' has no escrowed key")
        try:
            own_key = master.unseal(record.escrow)
        except AuthenticationError as e:
            raise Corrupted(f"escrowed key of project '{record.id}' failed authentication") from e
        if len(own_key) != crypto.KEY_SIZE:
            wipe(own_key)
            raise Corrupted(f"escrowed key of project '{record.id}' has the wrong size")

        with ResolvedKey(own_key, Algorithm.CHACHA20_POLY1305, record.lock) as own:
            credentials = self.store.read_credentials(record, master)
            try:
                blob = self.store.seal_credentials(own, credentials)
            finally:
                for value in credentials.values():
                    wipe(value)
        record.escrow = None
        return stage_file(self.config.vault_path(record.id), blob)

    # =========================================================================
    # Commit
    # =========================================================================

    def _commit(self, index: Index, state: MasterLockState, staged) -> None:
        """Stage index, lock state and settings mirror, then commit all at once."""
        try:
            settings = load_settings(self.config)
            settings.security.global_master_lock = state.enabled
            staged.append(self.store.stage_index(index))
            staged.append(stage_file(self.config.master_lock_path, dump_json(state.to_dict())))
            staged.append(stage_file(self.config.settings_path, dump_json(settings.to_dict())))
        except SafeholdError:
            discard_staged(staged)
            raise
        commit_staged(self.config, staged)
        self.store.index = index
