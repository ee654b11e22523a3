"""Unit tests for the Storage facade.

Behavioural properties run against both backends through the ``any_storage``
fixture; fallback behaviour runs against the in-memory GCS client.
"""

import asyncio
import logging

import pytest
from google.api_core import exceptions as api_exceptions

from nexus_storage.storage.facade import Storage
from nexus_storage.storage.facade import get_storage
from nexus_storage.storage.facade import reset_storage
from nexus_storage.storage.factory import StorageType


class TestStorageContract:
    """Properties every backend must satisfy."""

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, any_storage):
        assert await any_storage.init() is True
        decision = any_storage.decision
        assert await any_storage.init() is True
        assert any_storage.decision is decision

    @pytest.mark.asyncio
    async def test_round_trip(self, any_storage):
        stored = await any_storage.store_item("users", {"name": "Ada", "skills": ["math"]})

        assert stored["id"]
        assert await any_storage.get_item("users", stored["id"]) == stored

    @pytest.mark.asyncio
    async def test_update_is_merge_not_replace(self, any_storage):
        await any_storage.store_item("users", {"id": "r1", "a": 1, "b": 2})

        updated = await any_storage.update_item("users", "r1", {"b": 3})

        assert updated["a"] == 1
        assert updated["b"] == 3
        assert updated["updatedAt"]
        assert await any_storage.get_item("users", "r1") == updated

    @pytest.mark.asyncio
    async def test_update_never_creates(self, any_storage):
        assert await any_storage.update_item("users", "never-stored", {"x": 1}) is None
        assert await any_storage.get_item("users", "never-stored") is None

    @pytest.mark.asyncio
    async def test_delete_idempotence(self, any_storage):
        await any_storage.store_item("users", {"id": "d1"})

        assert await any_storage.delete_item("users", "d1") is True
        assert await any_storage.delete_item("users", "d1") is False

    @pytest.mark.asyncio
    async def test_query_equality_filter(self, any_storage):
        await any_storage.store_item("events", {"id": 1, "cat": "a"})
        await any_storage.store_item("events", {"id": 2, "cat": "b"})

        results = await any_storage.query_items("events", {"cat": "a"})

        assert len(results) == 1
        assert results[0]["id"] == "1"
        assert len(await any_storage.query_items("events")) == 2

    @pytest.mark.asyncio
    async def test_query_unknown_collection(self, any_storage):
        assert await any_storage.query_items("empty") == []

    @pytest.mark.asyncio
    async def test_query_booleans_do_not_match_numbers(self, any_storage):
        await any_storage.store_item("flags", {"id": "a", "active": 1})
        await any_storage.store_item("flags", {"id": "b", "active": True})

        assert [r["id"] for r in await any_storage.query_items("flags", {"active": True})] == ["b"]
        assert [r["id"] for r in await any_storage.query_items("flags", {"active": 1})] == ["a"]

    @pytest.mark.asyncio
    async def test_blob_overwrite(self, any_storage):
        first_url = await any_storage.upload_file("avatars/ada.png", b"first", "image/png")
        second_url = await any_storage.upload_file("avatars/ada.png", b"second", "image/png")

        assert first_url == second_url
        assert first_url.endswith("/avatars/ada.png")
        content = await any_storage.get_file("avatars/ada.png")
        assert content.data == b"second"
        assert content.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_delete_file(self, any_storage):
        await any_storage.upload_file("temp/note.txt", "hello", "text/plain")

        assert await any_storage.delete_file("temp/note.txt") is True
        assert await any_storage.delete_file("temp/note.txt") is False
        assert await any_storage.get_file("temp/note.txt") is None

    @pytest.mark.asyncio
    async def test_concurrent_distinct_id_writes(self, any_storage):
        items = [{"id": f"item-{i}", "n": i} for i in range(25)]

        stored = await asyncio.gather(*(any_storage.store_item("bulk", item) for item in items))

        assert all(s is not None for s in stored)
        for i in range(25):
            assert (await any_storage.get_item("bulk", f"item-{i}"))["n"] == i

    @pytest.mark.asyncio
    async def test_invalid_keys_never_raise(self, any_storage):
        assert await any_storage.store_item("../escape", {"id": "x"}) is None
        assert await any_storage.get_item("users", "a/b") is None
        assert await any_storage.delete_item("", "x") is False
        assert await any_storage.query_items(".hidden") == []
        assert await any_storage.upload_file("../../etc/passwd", b"x", "text/plain") is None

    @pytest.mark.asyncio
    async def test_non_mapping_item_never_raises(self, any_storage):
        assert await any_storage.store_item("users", "not a dict") is None


class TestCorruptData:
    """Corrupt records read as None and are left in place."""

    @pytest.mark.asyncio
    async def test_local_corrupt_record(self, local_storage, storage_root):
        await local_storage.init()
        record_file = storage_root / "data" / "users" / "bad.json"
        record_file.parent.mkdir(parents=True, exist_ok=True)
        record_file.write_text("{broken", encoding="utf-8")

        assert await local_storage.get_item("users", "bad") is None
        assert await local_storage.update_item("users", "bad", {"x": 1}) is None
        assert record_file.read_text(encoding="utf-8") == "{broken"

    @pytest.mark.asyncio
    async def test_remote_corrupt_record(self, remote_storage, fake_client):
        await remote_storage.init()
        bucket = fake_client.bucket("nexus-test")
        bucket.objects["users/bad.json"] = {"data": b"\xff\xfe", "content_type": None, "cache_control": None}

        assert await remote_storage.get_item("users", "bad") is None
        assert "users/bad.json" in bucket.objects
        assert remote_storage.mode == StorageType.GCS


class TestFallback:
    """Remote-to-local downgrade."""

    @pytest.mark.asyncio
    async def test_unreachable_bucket_serves_from_local(self, remote_storage, fake_client, storage_root):
        fake_client.fail("exists", ConnectionError("network unreachable"))

        assert await remote_storage.init() is True
        assert remote_storage.mode == StorageType.LOCAL
        assert "unreachable" in remote_storage.decision.reason

        stored = await remote_storage.store_item("users", {"id": "u1", "name": "Ada"})
        assert await remote_storage.get_item("users", "u1") == stored
        assert (storage_root / "data" / "users" / "u1.json").is_file()

    @pytest.mark.asyncio
    async def test_missing_credentials_serve_from_local(self, remote_settings, mocker):
        settings = remote_settings.model_copy(update={"google_cloud_private_key": None})
        factory = mocker.Mock()
        storage = Storage(settings, client_factory=factory)

        assert await storage.init() is True
        assert storage.mode == StorageType.LOCAL
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_runtime_failure_downgrades_and_retries(self, remote_storage, fake_client, storage_root, mocker):
        record_fallback = mocker.patch("nexus_storage.storage.facade.record_fallback")
        await remote_storage.init()
        assert remote_storage.mode == StorageType.GCS

        fake_client.fail("*", api_exceptions.ServiceUnavailable("backend down"))
        stored = await remote_storage.store_item("users", {"id": "u1"})

        assert stored["id"] == "u1"
        assert remote_storage.mode == StorageType.LOCAL
        assert (storage_root / "data" / "users" / "u1.json").is_file()
        record_fallback.assert_called_once_with("server")

        # The downgrade is permanent: no further remote calls
        calls_before = len(fake_client.calls)
        fake_client.recover()
        assert await remote_storage.get_item("users", "u1") == stored
        assert len(fake_client.calls) == calls_before

    @pytest.mark.asyncio
    async def test_runtime_timeout_downgrades(self, remote_settings, fake_client, client_factory):
        storage = Storage(remote_settings.model_copy(update={"storage_remote_timeout": 0.05}), client_factory)
        await storage.init()

        fake_client.delays["upload"] = 0.5
        url = await storage.upload_file("avatars/a.png", b"png", "image/png")

        assert url == "/uploads/avatars/a.png"
        assert storage.mode == StorageType.LOCAL

    @pytest.mark.asyncio
    async def test_concurrent_failures_downgrade_once(self, remote_storage, fake_client, mocker):
        record_fallback = mocker.patch("nexus_storage.storage.facade.record_fallback")
        await remote_storage.init()
        fake_client.fail("*", ConnectionError("offline"))

        results = await asyncio.gather(*(remote_storage.store_item("users", {"id": f"u{i}"}) for i in range(5)))

        assert all(r is not None for r in results)
        assert record_fallback.call_count == 1

    @pytest.mark.asyncio
    async def test_other_remote_errors_do_not_downgrade(self, remote_storage, fake_client):
        await remote_storage.init()
        fake_client.fail("upload", api_exceptions.BadRequest("invalid object name"))

        assert await remote_storage.store_item("users", {"id": "u1"}) is None
        assert remote_storage.mode == StorageType.GCS

    @pytest.mark.asyncio
    async def test_bucket_bootstrap_failure_falls_back(self, remote_storage, fake_client, mocker):
        record_fallback = mocker.patch("nexus_storage.storage.facade.record_fallback")
        fake_client.existing.clear()
        fake_client.fail("create_bucket", api_exceptions.Forbidden("no storage.buckets.create"))

        assert await remote_storage.init() is True
        assert remote_storage.mode == StorageType.LOCAL
        record_fallback.assert_called_once_with("bootstrap")

    @pytest.mark.asyncio
    async def test_missing_bucket_is_created(self, remote_storage, fake_client):
        fake_client.existing.clear()

        assert await remote_storage.init() is True
        assert remote_storage.mode == StorageType.GCS
        assert "nexus-test" in fake_client.existing

    @pytest.mark.asyncio
    async def test_existing_bucket_needs_no_project_listing(self, remote_storage, fake_client, mocker):
        record_fallback = mocker.patch("nexus_storage.storage.facade.record_fallback")
        fake_client.fail("list_buckets", api_exceptions.Forbidden("no storage.buckets.list"))

        assert await remote_storage.init() is True
        assert remote_storage.mode == StorageType.GCS
        assert remote_storage.decision.bucket_exists is True
        assert fake_client.count("list_buckets") == 0
        record_fallback.assert_not_called()

        stored = await remote_storage.store_item("users", {"id": "u1"})
        assert "users/u1.json" in fake_client.bucket("nexus-test").objects
        assert stored["id"] == "u1"


class TestInitialization:
    """Readiness reporting and single-flight init."""

    @pytest.mark.asyncio
    async def test_concurrent_init_checks_bucket_once(self, remote_storage, fake_client):
        fake_client.delays["exists"] = 0.05

        results = await asyncio.gather(*(remote_storage.init() for _ in range(5)))

        assert results == [True] * 5
        assert fake_client.count("exists") == 1

    @pytest.mark.asyncio
    async def test_calls_initialize_lazily(self, local_storage, storage_root):
        assert not local_storage.is_initialized
        assert local_storage.mode_name == "uninitialized"

        await local_storage.store_item("users", {"id": "u1"})

        assert local_storage.is_initialized
        assert local_storage.mode_name == "local"
        assert (storage_root / "uploads" / "avatars").is_dir()

    @pytest.mark.asyncio
    async def test_require_remote_reports_not_ready(self, remote_settings, fake_client, client_factory):
        fake_client.fail("exists", ConnectionError("offline"))
        storage = Storage(remote_settings.model_copy(update={"require_remote_storage": True}), client_factory)

        assert await storage.init() is False
        assert storage.mode == StorageType.LOCAL
        assert await storage.store_item("users", {"id": "u1"}) is not None

    @pytest.mark.asyncio
    async def test_unwritable_directories_report_degraded(self, local_storage, mocker):
        mocker.patch("nexus_storage.storage.bootstrap.os.access", return_value=False)

        assert await local_storage.init() is False
        assert local_storage.mode == StorageType.LOCAL
        # Calls are still attempted individually
        assert await local_storage.store_item("users", {"id": "u1"}) is not None


class TestDiagnostics:
    """Tests for storage info, call logging and the global instance."""

    @pytest.mark.asyncio
    async def test_storage_info(self, local_storage):
        await local_storage.init()

        info = local_storage.get_storage_info()

        assert info["initialized"] is True
        assert info["backend_type"] == "local"
        assert info["detected_type"] == "local"
        assert info["root_path"].endswith("data")
        assert info["fallback_reason"] is None

    @pytest.mark.asyncio
    async def test_init_applies_log_level(self, local_settings, restore_log_levels):
        storage = Storage(local_settings.model_copy(update={"log_level": "WARNING"}))

        await storage.init()

        assert logging.getLogger("nexus_storage").level == logging.WARNING
        assert logging.getLogger("storage_call_logger").level == logging.WARNING

    @pytest.mark.asyncio
    async def test_storage_info_after_fallback(self, remote_storage, fake_client):
        fake_client.fail("exists", ConnectionError("offline"))
        await remote_storage.init()

        info = remote_storage.get_storage_info()

        assert info["backend_type"] == "local"
        assert info["detected_type"] == "gcs"
        assert info["gcs_bucket"] == "nexus-test"
        assert info["fallback_reason"]

    @pytest.mark.asyncio
    async def test_calls_are_counted(self, local_storage, mocker):
        record_operation = mocker.patch("nexus_storage.logger_config.record_operation")

        await local_storage.get_item("users", "missing")
        await local_storage.store_item("users", {"id": "u1"})

        record_operation.assert_any_call("get_item", "local", "empty")
        record_operation.assert_any_call("store_item", "local", "success")

    def test_global_instance(self, local_settings):
        storage = get_storage(local_settings)
        assert get_storage() is storage
        assert storage.settings is local_settings

        reset_storage()
        assert get_storage(local_settings) is not storage
