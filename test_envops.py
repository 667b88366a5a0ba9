import sys

import pytest

from safehold.config import GLOBAL_ID, load_config
from safehold.envops import clean_env_files, run_with_credentials
from safehold.keys import MASTER_PASSWORD_ENV, PASSWORD_ENV
from safehold.store import LockMode, Store

CHECK_ENV = (
    "import os, sys; "
    "sys.exit(0 if os.environ.get('TOKEN') == sys.argv[1] "
    "and os.environ.get('SHARED', '') == sys.argv[2] else 3)"
)


@pytest.fixture(autouse=True)
def no_password_env(monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    monkeypatch.delenv(MASTER_PASSWORD_ENV, raising=False)


@pytest.fixture
def store(tmp_path):
    store = Store(load_config(tmp_path / "home", scrypt_log2_n=10))
    store.create("app")
    store.put("app", "TOKEN", "project-token")
    store.put(GLOBAL_ID, "TOKEN", "global-token")
    store.put(GLOBAL_ID, "SHARED", "everywhere")
    return store


def test_run_injects_project_credentials(store):
    command = [sys.executable, "-c", CHECK_ENV, "project-token", ""]
    assert run_with_credentials(store, "app", command) == 0


def test_run_with_global_overrides_project(store):
    command = [sys.executable, "-c", CHECK_ENV, "global-token", "everywhere"]
    assert run_with_credentials(store, "app", command, with_global=True) == 0


def test_run_returns_child_exit_code(store):
    command = [sys.executable, "-c", CHECK_ENV, "something-else", ""]
    assert run_with_credentials(store, "app", command) == 3


def test_run_locked_project(store):
    store.create("vault", LockMode.LOCKED, password="pw")
    store.put("vault", "TOKEN", "locked-token", password="pw")
    command = [sys.executable, "-c", CHECK_ENV, "locked-token", ""]
    assert run_with_credentials(store, "vault", command, passwords={"vault": "pw"}) == 0


def test_run_requires_command(store):
    with pytest.raises(ValueError):
        run_with_credentials(store, "app", [])


def test_clean_env_files(tmp_path):
    root = tmp_path / "tree"
    (root / "a" / "b").mkdir(parents=True)
    (root / ".env").write_text("K=v\n")
    (root / "a" / "b" / ".env").write_text("K=v\n")
    (root / "a" / ".env.example").write_text("K=\n")

    assert clean_env_files(root) == 2
    assert not (root / ".env").exists()
    assert (root / "a" / ".env.example").exists()
    assert clean_env_files(root) == 0
