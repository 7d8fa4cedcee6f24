import json
import os
import stat

from scriptstream.client.token_store import FileTokenStore, InMemoryTokenStore
from scriptstream.shared.models import TokenPair


def test_in_memory_store_replaces_pair_as_a_whole():
    store = InMemoryTokenStore()
    assert store.get() is None
    assert store.access_token is None

    store.set(TokenPair(access_token="a1", refresh_token="r1"))
    store.set(TokenPair(access_token="a2", refresh_token="r2"))

    assert store.access_token == "a2"
    assert store.refresh_token == "r2"


def test_in_memory_store_clear_drops_both_tokens():
    store = InMemoryTokenStore(TokenPair(access_token="a", refresh_token="r"))
    store.clear()
    assert store.get() is None
    assert store.refresh_token is None


def test_file_store_persists_with_owner_only_permissions(tmp_path):
    token_file = tmp_path / "nested" / "tokens.json"
    store = FileTokenStore(token_file)

    store.set(TokenPair(access_token="access-1", refresh_token="refresh-1"))

    assert token_file.exists()
    assert stat.S_IMODE(os.stat(token_file).st_mode) == 0o600
    assert json.loads(token_file.read_text()) == {"access_token": "access-1", "refresh_token": "refresh-1"}
    # no temp files left next to it
    assert [p.name for p in token_file.parent.iterdir()] == ["tokens.json"]


def test_file_store_is_read_back_by_a_new_instance(tmp_path):
    token_file = tmp_path / "tokens.json"
    FileTokenStore(token_file).set(TokenPair(access_token="a", refresh_token="r"))

    reloaded = FileTokenStore(token_file)
    assert reloaded.get() == TokenPair(access_token="a", refresh_token="r")


def test_file_store_clear_removes_file(tmp_path):
    token_file = tmp_path / "tokens.json"
    store = FileTokenStore(token_file)
    store.set(TokenPair(access_token="a"))

    store.clear()

    assert not token_file.exists()
    assert store.get() is None
    # clearing twice is harmless
    store.clear()


def test_file_store_treats_corrupt_file_as_logged_out(tmp_path):
    token_file = tmp_path / "tokens.json"
    token_file.write_text("{not json")

    assert FileTokenStore(token_file).get() is None
