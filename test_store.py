import os

import pytest

from safehold import crypto
from safehold import store as store_module
from safehold.config import GLOBAL_ID, load_config, write_json
from safehold.crypto import Algorithm
from safehold.errors import (
    Corrupted,
    DuplicateName,
    FileExists,
    InvalidName,
    KeyNotFound,
    MissingPassword,
    ProjectNotFound,
    WrongPassword,
)
from safehold.keys import MASTER_PASSWORD_ENV, PASSWORD_ENV
from safehold.store import (
    LockMode,
    Store,
    escape_value,
    pack_credentials,
    stage_file,
    unpack_credentials,
)


@pytest.fixture(autouse=True)
def no_password_env(monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    monkeypatch.delenv(MASTER_PASSWORD_ENV, raising=False)


@pytest.fixture
def config(tmp_path):
    return load_config(tmp_path / "home", scrypt_log2_n=10)


@pytest.fixture
def store(config):
    return Store(config)


def flip_last_byte(path):
    data = bytearray(path.read_bytes())
    data[-1] ^= 1
    path.write_bytes(bytes(data))


def test_unlocked_project_lifecycle(store):
    store.create("alpha")
    store.put("alpha", "KEY", "v1")
    assert store.get("alpha", "KEY") == b"v1"

    store.update("alpha", "KEY", "v2")
    assert store.get("alpha", "KEY") == b"v2"

    store.delete_key("alpha", "KEY")
    with pytest.raises(KeyNotFound):
        store.get("alpha", "KEY")


def test_locked_project_survives_reopen(config, store):
    store.create("beta", LockMode.LOCKED, password="p1")
    store.put("beta", "A", "x", password="p1")

    reopened = Store(config)
    assert reopened.get("beta", "A", password="p1") == b"x"
    with pytest.raises(WrongPassword):
        reopened.get("beta", "A", password="p2")


def test_locked_project_needs_a_password(store):
    with pytest.raises(MissingPassword):
        store.create("beta", LockMode.LOCKED)
    store.create("beta", LockMode.LOCKED, password="p1")
    with pytest.raises(MissingPassword):
        store.list("beta")


def test_password_from_prompt(config):
    store = Store(config, prompt=lambda label: "p1")
    store.create("beta", LockMode.LOCKED)
    store.put("beta", "A", "x")
    assert store.get("beta", "A", password="p1") == b"x"


def test_put_overwrites_update_requires_existing(store):
    store.create("alpha")
    store.put("alpha", "KEY", "v1")
    store.put("alpha", "KEY", "v2")
    assert store.get("alpha", "KEY") == b"v2"

    with pytest.raises(KeyNotFound):
        store.update("alpha", "MISSING", "x")
    with pytest.raises(KeyNotFound):
        store.delete_key("alpha", "MISSING")


def test_binary_values_round_trip(store):
    store.create("alpha")
    store.put("alpha", "BLOB", b"\x00\xff\n=")
    assert store.get("alpha", "BLOB") == b"\x00\xff\n="


def test_list_and_count(store):
    store.create("alpha")
    store.create("beta", LockMode.LOCKED, password="p1")
    for key in ("Z", "A", "M"):
        store.put("alpha", key, "v")
    store.put("beta", "B", "v", password="p1")
    store.put(GLOBAL_ID, "G", "v")

    assert store.list("alpha") == ["A", "M", "Z"]
    assert store.count("alpha") == 3
    assert store.count(passwords={"beta": "p1"}) == 4
    assert store.count(include_global=True, passwords={"beta": "p1"}) == 5
    assert store.count(detailed=True, include_global=True, passwords={"beta": "p1"}) == {
        "global": 1,
        "alpha": 3,
        "beta": 1,
    }


def test_global_is_materialized_lazily(config, store):
    summaries = store.list_all()
    assert summaries[0].id == GLOBAL_ID
    assert summaries[0].lock_mode is LockMode.UNLOCKED
    assert store.list(GLOBAL_ID) == []
    with pytest.raises(KeyNotFound):
        store.get(GLOBAL_ID, "X")
    assert not config.vault_path(GLOBAL_ID).exists()

    store.put(GLOBAL_ID, "SHARED", "s")
    assert Store(config).get(GLOBAL_ID, "SHARED") == b"s"
    assert config.vault_path(GLOBAL_ID).exists()


def test_global_can_be_created_locked(store):
    assert store.create(GLOBAL_ID, LockMode.LOCKED, password="g1") == GLOBAL_ID
    store.put(GLOBAL_ID, "SHARED", "s", password="g1")
    with pytest.raises(WrongPassword):
        store.get(GLOBAL_ID, "SHARED", password="nope")
    with pytest.raises(DuplicateName):
        store.create(GLOBAL_ID)


def test_list_all_order(store):
    store.create("zeta")
    store.create("alpha", LockMode.LOCKED, password="p")
    names = [s.name for s in store.list_all()]
    assert names == ["global", "zeta", "alpha"]


def test_ids_are_never_reused(config, store):
    first = store.create("alpha")
    store.delete("alpha")
    second = store.create("alpha")
    assert first == "001_alpha"
    assert second == "002_alpha"

    store.delete_all(force=True)
    assert Store(config).create("my project!") == "003_my-project"


def test_delete_removes_file(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "v")
    assert config.vault_path(project_id).exists()
    store.delete(project_id)
    assert not config.vault_path(project_id).exists()
    with pytest.raises(ProjectNotFound):
        store.get("alpha", "K")
    with pytest.raises(ProjectNotFound):
        store.delete("alpha")


def test_duplicate_and_invalid_names(store):
    store.create("alpha")
    with pytest.raises(DuplicateName):
        store.create("alpha")
    for bad in ("", "  ", "two\nlines"):
        with pytest.raises(InvalidName):
            store.create(bad)
    for bad in ("", "A=B", " A", "A\nB"):
        with pytest.raises(InvalidName):
            store.put("alpha", bad, "v")
    with pytest.raises(TypeError):
        store.put("alpha", "K", 42)


def test_tampered_unlocked_file_is_corrupted(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "v")
    flip_last_byte(config.vault_path(project_id))
    with pytest.raises(Corrupted):
        store.get("alpha", "K")


def test_tampered_locked_file_is_corrupted_not_wrong_password(config, store):
    project_id = store.create("beta", LockMode.LOCKED, password="p1")
    store.put("beta", "A", "x", password="p1")
    flip_last_byte(config.vault_path(project_id))
    with pytest.raises(Corrupted):
        store.get("beta", "A", password="p1")
    with pytest.raises(WrongPassword):
        store.get("beta", "A", password="p2")


def test_garbage_index_is_corrupted(config, store):
    config.index_path.write_text("{not json")
    with pytest.raises(Corrupted):
        Store(config)


def test_files_are_owner_only(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "v")
    if os.name == "posix":
        for path in (config.vault_path(project_id), config.index_path, config.app_key_path):
            assert (os.stat(path).st_mode & 0o777) == 0o600


def test_export_writes_env_file(tmp_path, store):
    store.create("alpha")
    store.put("alpha", "B", "line1\nline2")
    store.put("alpha", "A", "back\\slash")
    target = tmp_path / "out.env"

    assert store.export("alpha", target) == target
    assert target.read_text() == "A=back\\\\slash\nB=line1\\nline2\n"
    if os.name == "posix":
        assert (os.stat(target).st_mode & 0o777) == 0o600

    with pytest.raises(FileExists):
        store.export("alpha", target)
    store.put("alpha", "C", "new")
    store.export("alpha", target, force=True)
    assert target.read_text().endswith("C=new\n")


def test_export_defaults_to_dot_env(tmp_path, monkeypatch, store):
    monkeypatch.chdir(tmp_path)
    store.create("alpha")
    store.put("alpha", "K", "v")
    store.export("alpha")
    assert (tmp_path / ".env").read_text() == "K=v\n"


def test_export_to_temp_dir(store):
    store.create("alpha")
    store.put("alpha", "K", "v")
    target = store.export("alpha", temp=True)
    assert target.parent.name.startswith("safehold-")
    assert target.read_text() == "K=v\n"


def test_set_lock_mode_reencrypts(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "v")

    store.set_lock_mode("alpha", LockMode.LOCKED, new_password="pw")
    envelope = crypto.parse_envelope(config.vault_path(project_id).read_bytes())
    assert envelope.algorithm is Algorithm.CHACHA20_POLY1305
    assert envelope.kdf is not None
    with pytest.raises(MissingPassword):
        store.get("alpha", "K")
    assert Store(config).get("alpha", "K", password="pw") == b"v"

    store.set_lock_mode("alpha", LockMode.UNLOCKED, password="pw")
    envelope = crypto.parse_envelope(config.vault_path(project_id).read_bytes())
    assert envelope.algorithm is Algorithm.AES_256_GCM
    assert store.get("alpha", "K") == b"v"
    assert not config.journal_path.exists()


def test_interrupted_commit_is_rolled_forward(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "old")

    with store.resolver.app_key() as key:
        blob = store.seal_credentials(key, {"K": bytearray(b"new")})
    staged, target = stage_file(config.vault_path(project_id), blob)
    write_json(config.journal_path, {
        "version": 1,
        "replace": [[str(staged.relative_to(config.base_dir)),
                     str(target.relative_to(config.base_dir))]],
    })

    reopened = Store(config)
    assert reopened.get("alpha", "K") == b"new"
    assert not config.journal_path.exists()
    assert not staged.exists()


def test_orphan_staged_files_are_discarded(config, store):
    project_id = store.create("alpha")
    store.put("alpha", "K", "old")
    staged, _ = stage_file(config.vault_path(project_id), b"garbage")

    reopened = Store(config)
    assert not staged.exists()
    assert reopened.get("alpha", "K") == b"old"


def test_payload_rejects_truncation():
    packed = pack_credentials({"A": bytearray(b"1"), "B": bytearray(b"22")})
    assert {k: bytes(v) for k, v in unpack_credentials(packed).items()} == {"A": b"1", "B": b"22"}
    with pytest.raises(Corrupted):
        unpack_credentials(packed[:-1])
    with pytest.raises(Corrupted):
        unpack_credentials(packed + b"\x00")


def test_escape_value():
    assert escape_value(bytearray(b"a\r\nb")) == "a\\r\\nb"
    assert escape_value(bytearray(b"\xff")) == "\\xff"


def test_name_lookup_wins_over_ids(store):
    store.create("002_beta")
    store.put("002_beta", "K", "named")
    assert store.create("beta") == "002_beta"
    store.put("beta", "K", "beta")

    assert store.get("002_beta", "K") == b"named"
    assert store.get("beta", "K") == b"beta"

    assert store.delete("002_beta").name == "002_beta"
    assert store.get("beta", "K") == b"beta"
    assert [s.name for s in store.list_all()] == ["global", "beta"]


def test_name_may_look_like_an_existing_id(store):
    assert store.create("alpha") == "001_alpha"
    assert store.create("001_alpha") == "002_001_alpha"
    store.put("alpha", "K", "a")
    store.put("001_alpha", "K", "b")
    assert store.get("alpha", "K") == b"a"
    assert store.get("001_alpha", "K") == b"b"


def test_failed_put_wipes_the_new_value(monkeypatch, store):
    store.create("beta", LockMode.LOCKED, password="p1")
    buffers = []
    real_to_buffer = store_module.to_buffer

    def capture(value):
        buffers.append(real_to_buffer(value))
        return buffers[-1]

    monkeypatch.setattr(store_module, "to_buffer", capture)
    with pytest.raises(WrongPassword):
        store.put("beta", "K", "topsecret", password="wrong")
    with pytest.raises(WrongPassword):
        store.update("beta", "K", "topsecret", password="wrong")
    assert buffers == [bytearray(9), bytearray(9)]


def test_failed_write_to_global_does_not_create_it(config, store):
    with pytest.raises(KeyNotFound):
        store.update(GLOBAL_ID, "X", "v")
    with pytest.raises(KeyNotFound):
        store.delete_key(GLOBAL_ID, "X")
    assert Store(config).index.find_by_id(GLOBAL_ID) is None
    assert not config.vault_path(GLOBAL_ID).exists()


def test_lock_global_before_first_write(config, store):
    store.set_lock_mode(GLOBAL_ID, LockMode.LOCKED, new_password="g1")
    reopened = Store(config)
    assert reopened.list_all()[0].lock_mode is LockMode.LOCKED
    reopened.put(GLOBAL_ID, "SHARED", "s", password="g1")
    assert reopened.get(GLOBAL_ID, "SHARED", password="g1") == b"s"


def test_show_all(store):
    store.create("alpha")
    store.put("alpha", "K", "a")
    store.put(GLOBAL_ID, "G", "g")
    store.create("beta", LockMode.LOCKED, password="p1")
    store.put("beta", "B", "b", password="p1")

    assert store.show_all() == {"global": {"G": b"g"}, "alpha": {"K": b"a"}}
    shown = store.show_all(passwords={"beta": "p1"})
    assert list(shown) == ["global", "alpha", "beta"]
    assert shown["beta"] == {"B": b"b"}
    with pytest.raises(WrongPassword):
        store.show_all(passwords={"beta": "nope"})
