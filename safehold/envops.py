"""
SafeHold - Environment Operations

Helpers for putting credentials to use without leaving them on disk:
- run a command with a project's credentials in its environment
- sweep stray plaintext .env files out of a directory tree
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

from .config import GLOBAL_ID
from .errors import Corrupted, IoFailure
from .store import Store

logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"


def _decode(project: str, credentials: Mapping[str, bytes]) -> Dict[str, str]:
    try:
        return {name: value.decode("utf-8") for name, value in credentials.items()}
    except UnicodeDecodeError as e:
        raise Corrupted(f"project '{project}' holds a value that is not valid UTF-8") from e


def run_with_credentials(store: Store, project: str, command: Sequence[str],
                         with_global: bool = False,
                         passwords: Optional[Mapping[str, str]] = None) -> int:
    """
    Run ``command`` with the project's credentials added to its environment.

    Args:
        store: Open store
        project: Project id or name
        command: Program and arguments, e.g. ["npm", "start"]
        with_global: Also inject the global project; on a name clash the
            global value wins
        passwords: Passwords by project id or name

    Returns:
        The child's exit code
    """
    if not command:
        raise ValueError("command required")
    passwords = passwords or {}

    env = dict(os.environ)
    env.update(_decode(project, store.credentials(project, passwords.get(project))))
    if with_global:
        env.update(_decode(GLOBAL_ID, store.credentials(GLOBAL_ID, passwords.get(GLOBAL_ID))))

    logger.info("Running %s with credentials of %s", command[0], project)
    try:
        completed = subprocess.run(list(command), env=env, check=False)
    except OSError as e:
        raise IoFailure(f"run {command[0]}: {e}") from e
    finally:
        env.clear()
    if completed.returncode != 0:
        logger.warning("%s exited with status %d", command[0], completed.returncode)
    return completed.returncode


def clean_env_files(root: Union[str, Path] = ".") -> int:
    """
    Delete every file named .env under ``root``.

    Returns:
        Number of files removed
    """
    removed = 0
    for directory, _, files in os.walk(root):
        if ENV_FILENAME not in files:
            continue
        path = os.path.join(directory, ENV_FILENAME)
        try:
            os.remove(path)
        except OSError as e:
            raise IoFailure(f"delete {path}: {e}") from e
        removed += 1
        logger.debug("Removed %s", path)
    logger.info("Removed %d .env file(s) under %s", removed, root)
    return removed
