"""
Tests for the storage backends and backend configuration.
"""

from unittest.mock import Mock

import pytest
import requests

from annotation_lifecycle.core.persistence import (
    BackendKind,
    DatabaseConfig,
    DurableConfig,
    FileSystemBackend,
    HttpBackend,
    MemoryBackend,
    RemoteConfig,
    SQLiteBackend,
    VolatileConfig,
    create_backend,
    load_persistence_config,
    resolve_backend_spec,
)
from annotation_lifecycle.core.persistence.codec import COMPRESSED_MARKER, PayloadCodec


@pytest.fixture(params=["durable", "volatile", "database"])
def backend(request, tmp_path):
    if request.param == "durable":
        store = FileSystemBackend(tmp_path / "store")
    elif request.param == "volatile":
        store = MemoryBackend()
    else:
        store = SQLiteBackend(tmp_path / "annotations.db")
    yield store
    store.close()


def make_quota_backend(kind, tmp_path, quota):
    if kind == "durable":
        return FileSystemBackend(tmp_path / "store", quota=quota)
    if kind == "volatile":
        return MemoryBackend(quota=quota)
    return SQLiteBackend(tmp_path / "annotations.db", quota=quota)


class TestLocalBackendContract:
    """Every local backend honours the same key/value contract."""

    def test_save_load(self, backend):
        assert backend.save("session-a", '{"x": 1}')
        assert backend.load("session-a") == '{"x": 1}'

    def test_load_missing(self, backend):
        assert backend.load("session-missing") is None

    def test_overwrite(self, backend):
        backend.save("session-a", "1")
        backend.save("session-a", "2")
        assert backend.load("session-a") == "2"
        assert backend.list() == ["session-a"]

    def test_delete_and_exists(self, backend):
        backend.save("session-a", "1")
        assert backend.exists("session-a")
        assert backend.delete("session-a")
        assert not backend.exists("session-a")

    def test_delete_missing_succeeds(self, backend):
        assert backend.delete("session-never")

    def test_list_is_sorted(self, backend):
        for key in ("session-b", "backup-1", "session-a"):
            backend.save(key, "x")
        assert backend.list() == ["backup-1", "session-a", "session-b"]

    def test_clear(self, backend):
        backend.save("session-a", "1")
        backend.save("backup-1", "2")
        assert backend.clear()
        assert backend.list() == []

    def test_stats_count_keys_and_values(self, backend):
        backend.save("ab", "1234")
        assert backend.get_stats().used == 6

    def test_invalid_key_is_refused_not_raised(self, backend):
        assert backend.save("../escape", "x") is False
        assert backend.load("with space") is None
        assert backend.delete("") is False

    def test_unicode_payload(self, backend):
        backend.save("session-u", "área mm²")
        assert backend.load("session-u") == "área mm²"


class TestQuota:
    @pytest.mark.parametrize("kind", ["durable", "volatile", "database"])
    def test_write_over_quota_fails(self, kind, tmp_path):
        store = make_quota_backend(kind, tmp_path, quota=20)
        assert store.save("a", "x" * 10)
        assert store.save("b", "x" * 10) is False
        assert store.load("b") is None
        assert store.get_stats().limit == 20
        store.close()

    @pytest.mark.parametrize("kind", ["durable", "volatile", "database"])
    def test_overwrite_counts_replaced_entry_once(self, kind, tmp_path):
        store = make_quota_backend(kind, tmp_path, quota=20)
        assert store.save("a", "x" * 10)
        assert store.save("a", "y" * 19)
        assert store.load("a") == "y" * 19
        store.close()

    @pytest.mark.parametrize("kind", ["durable", "volatile", "database"])
    def test_non_ascii_payload_counts_bytes(self, kind, tmp_path):
        store = make_quota_backend(kind, tmp_path, quota=20)
        # 9 characters, 18 bytes
        assert store.save("a", "²" * 9)
        assert store.get_stats().used == 19
        assert store.save("b", "x") is False
        assert store.save("a", "²" * 9 + "x")
        store.close()


class TestFileSystemBackend:
    def test_no_temporary_files_left(self, tmp_path):
        store = FileSystemBackend(tmp_path)
        store.save("session-a", "payload")
        assert [p.name for p in tmp_path.iterdir()] == ["session-a.payload"]

    def test_survives_reopen(self, tmp_path):
        FileSystemBackend(tmp_path).save("session-a", "payload")
        assert FileSystemBackend(tmp_path).load("session-a") == "payload"


class TestSQLiteBackend:
    def test_survives_reconnect(self, tmp_path):
        store = SQLiteBackend(tmp_path / "a.db")
        store.save("session-a", "payload")
        store.close()
        assert store.load("session-a") == "payload"

    def test_invalid_table_name(self, tmp_path):
        with pytest.raises(ValueError):
            SQLiteBackend(tmp_path / "a.db", table="x; DROP TABLE y")


def http_response(status=200, payload=None):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = payload
    if response.ok:
        response.raise_for_status.return_value = None
    else:
        response.raise_for_status.side_effect = requests.HTTPError(str(status))
    return response


class TestHttpBackend:
    @pytest.fixture
    def http(self):
        return Mock()

    @pytest.fixture
    def remote(self, http):
        return HttpBackend("https://store.example/api/", api_key="secret", session=http)

    def test_bearer_auth_header(self, remote, http):
        http.headers.update.assert_any_call({"Authorization": "Bearer secret"})

    def test_save_puts_payload(self, remote, http):
        http.put.return_value = http_response(204)
        assert remote.save("session-a", "{}")
        http.put.assert_called_once_with(
            "https://store.example/api/session-a", json="{}", timeout=10.0
        )

    def test_save_rejected(self, remote, http):
        http.put.return_value = http_response(507)
        assert remote.save("session-a", "{}") is False

    def test_load(self, remote, http):
        http.get.return_value = http_response(200, "payload")
        assert remote.load("session-a") == "payload"

    def test_load_missing(self, remote, http):
        http.get.return_value = http_response(404)
        assert remote.load("session-a") is None

    def test_timeout_is_a_failed_call(self, remote, http):
        http.put.side_effect = requests.Timeout("slow")
        http.get.side_effect = requests.Timeout("slow")
        assert remote.save("session-a", "{}") is False
        assert remote.load("session-a") is None
        assert remote.list() == []

    def test_delete_missing_succeeds(self, remote, http):
        http.delete.return_value = http_response(404)
        assert remote.delete("session-a")

    def test_list(self, remote, http):
        http.get.return_value = http_response(200, {"keys": ["session-a", "backup-1"]})
        assert remote.list() == ["session-a", "backup-1"]

    def test_stats(self, remote, http):
        http.get.return_value = http_response(200, {"used": 12, "limit": 100})
        stats = remote.get_stats()
        assert (stats.used, stats.limit) == (12, 100)


class TestBackendSelection:
    def test_default_is_durable(self, tmp_path):
        cfg = load_persistence_config({"backend": {"storage_dir": str(tmp_path)}}, env={})
        spec = resolve_backend_spec(cfg)
        assert spec == DurableConfig(root=tmp_path, quota=100 * 1024 * 1024)

    @pytest.mark.parametrize(
        "kind,expected",
        [
            ("volatile", VolatileConfig),
            ("sessionStorage", VolatileConfig),
            ("memory", VolatileConfig),
            ("database", DatabaseConfig),
            ("IndexedDB", DatabaseConfig),
            ("localStorage", DurableConfig),
        ],
    )
    def test_kinds_and_aliases(self, kind, expected):
        cfg = load_persistence_config({"backend": {"kind": kind}}, env={})
        assert isinstance(resolve_backend_spec(cfg), expected)

    def test_remote_without_endpoint_falls_back_to_durable(self):
        cfg = load_persistence_config({"backend": {"kind": "remote"}}, env={})
        assert isinstance(resolve_backend_spec(cfg), DurableConfig)

    def test_unknown_kind_falls_back_to_durable(self):
        cfg = load_persistence_config({"backend": {"kind": "floppy"}}, env={})
        assert isinstance(resolve_backend_spec(cfg), DurableConfig)

    def test_remote_with_endpoint(self):
        cfg = load_persistence_config(
            {"backend": {"kind": "server", "endpoint": "https://x", "api_key": "k"}}, env={}
        )
        assert resolve_backend_spec(cfg) == RemoteConfig(
            endpoint="https://x", api_key="k", timeout=10.0
        )

    def test_environment_selects_backend(self):
        cfg = load_persistence_config(env={"ANNOT_BACKEND__KIND": "volatile"})
        assert isinstance(resolve_backend_spec(cfg), VolatileConfig)

    def test_create_backend(self, tmp_path):
        assert create_backend(VolatileConfig()).kind is BackendKind.VOLATILE
        assert create_backend(DurableConfig(root=tmp_path)).kind is BackendKind.DURABLE
        assert create_backend(DatabaseConfig(path=tmp_path / "a.db")).kind is BackendKind.DATABASE


class TestPayloadCodec:
    def test_plain_json(self):
        codec = PayloadCodec()
        payload = codec.encode({"b": 1, "a": [1, 2]})
        assert payload == '{"a":[1,2],"b":1}'
        assert codec.decode(payload) == {"a": [1, 2], "b": 1}

    def test_compressed_payload_is_marked(self):
        codec = PayloadCodec(compress=True)
        payload = codec.encode({"records": ["x"] * 100})
        assert payload.startswith(COMPRESSED_MARKER)
        assert codec.decode(payload) == {"records": ["x"] * 100}

    def test_reader_decodes_either_form(self):
        compressed = PayloadCodec(compress=True).encode({"a": 1})
        assert PayloadCodec(compress=False).decode(compressed) == {"a": 1}

    @pytest.mark.parametrize("payload", ["not json", COMPRESSED_MARKER + "!!!"])
    def test_corrupt_payload(self, payload):
        with pytest.raises(ValueError):
            PayloadCodec().decode(payload)
