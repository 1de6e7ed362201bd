"""
Tests for the replication orchestrator.

Covers the worker pool, first-failure cancellation and the rule that the
manifest is uploaded only after every layer is present at the destination.
"""
from __future__ import annotations

import threading

import pytest

from registry_dupe.errors import (
    LayerExistenceCheckError,
    LayerTransferError,
    ManifestFetchError,
    ManifestUploadError,
    RegistryError,
)
from registry_dupe.orchestrator import ReplicationOrchestrator
from registry_dupe.replicator import LayerOutcome

from .fakes.fake_registry import make_schema1_manifest, make_schema2_manifest

REPO = "library/app"
TAG = "v1"


def seed_image(source, blobs, tag=TAG):
    """Seed blobs and a schema1 manifest referencing them; returns (digests, manifest)."""
    digests = [source.seed_blob(REPO, data) for data in blobs]
    manifest = make_schema1_manifest(REPO, tag, digests)
    source.seed_manifest(manifest)
    return digests, manifest


class TestConstruction:

    @pytest.mark.parametrize("concurrency", [0, -1])
    def test_concurrency_must_be_positive(self, source, destination, concurrency):
        with pytest.raises(ValueError, match="concurrency"):
            ReplicationOrchestrator(source, destination, concurrency)

    def test_queue_size_must_be_positive(self, source, destination):
        with pytest.raises(ValueError, match="queue_size"):
            ReplicationOrchestrator(source, destination, 2, queue_size=0)

    def test_empty_tag_rejected_before_any_network_call(self, source, destination):
        orchestrator = ReplicationOrchestrator(source, destination, 2)
        with pytest.raises(ValueError):
            orchestrator.copy(REPO, "")
        assert source.calls == []


class TestSuccessfulCopy:

    def test_copies_missing_and_skips_present(self, source, destination):
        (a, b, c), manifest = seed_image(source, [b"layer-a", b"layer-b", b"layer-c"])
        destination.seed_blob(REPO, b"layer-b")

        result = ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert [layer.digest for layer in result.layers] == [a, b, c]
        assert [layer.outcome for layer in result.layers] == [
            LayerOutcome.COPIED, LayerOutcome.SKIPPED, LayerOutcome.COPIED,
        ]
        assert result.layers_copied == 2
        assert result.layers_skipped == 1
        assert result.bytes_copied == len(b"layer-a") + len(b"layer-c")
        assert destination.blob(REPO, a) == b"layer-a"
        assert destination.blob(REPO, c) == b"layer-c"
        assert sorted(call[2] for call in destination.ops("upload_layer")) == sorted([a, c])
        assert destination.manifest(REPO, TAG).payload == manifest.payload
        assert result.manifest_digest == manifest.digest

    def test_manifest_uploaded_after_every_layer(self, source, destination):
        seed_image(source, [f"layer-{i}".encode() for i in range(8)])

        ReplicationOrchestrator(source, destination, 3).copy(REPO, TAG)

        calls = [call[0] for call in destination.calls]
        assert calls[-1] == "put_manifest"
        assert calls.count("put_manifest") == 1
        assert calls.count("upload_layer_done") == 8

    def test_all_layers_present_transfers_nothing(self, source, destination):
        seed_image(source, [b"one", b"two"])
        destination.seed_blob(REPO, b"one")
        destination.seed_blob(REPO, b"two")

        result = ReplicationOrchestrator(source, destination, 4).copy(REPO, TAG)

        assert result.layers_skipped == 2
        assert source.ops("open_layer_reader") == []
        assert len(destination.ops("put_manifest")) == 1

    def test_second_run_is_idempotent(self, source, destination):
        _, manifest = seed_image(source, [b"one", b"two", b"three"])
        orchestrator = ReplicationOrchestrator(source, destination, 2)

        orchestrator.copy(REPO, TAG)
        second = orchestrator.copy(REPO, TAG)

        assert second.layers_copied == 0
        assert second.layers_skipped == 3
        assert destination.manifest(REPO, TAG).payload == manifest.payload

    def test_manifest_without_layers(self, source, destination):
        seed_image(source, [])

        result = ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert result.layers == ()
        assert len(destination.ops("put_manifest")) == 1

    def test_duplicate_layer_references(self, source, destination):
        a = source.seed_blob(REPO, b"dup")
        b = source.seed_blob(REPO, b"other")
        source.seed_manifest(make_schema1_manifest(REPO, TAG, [a, a, b]))

        result = ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert [layer.digest for layer in result.layers] == [a, a, b]
        assert destination.blob(REPO, a) == b"dup"

    def test_schema2_config_blob_is_replicated(self, source, destination):
        config, layer = b'{"architecture":"amd64"}', b"rootfs"
        source.seed_blob(REPO, config)
        source.seed_blob(REPO, layer)
        manifest = make_schema2_manifest(REPO, TAG, config, [layer])
        source.seed_manifest(manifest)

        ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert destination.blob(REPO, manifest.layers[0].digest) == config
        assert destination.manifest(REPO, TAG).media_type == manifest.media_type

    def test_single_worker(self, source, destination):
        seed_image(source, [b"a", b"b", b"c"])

        ReplicationOrchestrator(source, destination, 1).copy(REPO, TAG)

        assert destination.thread_names == {"layer-worker-0"}
        assert source.thread_names == {"layer-worker-0"}

    def test_workers_bounded_by_concurrency(self, source, destination):
        seed_image(source, [f"layer-{i}".encode() for i in range(12)])

        ReplicationOrchestrator(source, destination, 3).copy(REPO, TAG)

        assert destination.thread_names <= {"layer-worker-0", "layer-worker-1", "layer-worker-2"}

    def test_small_queue_applies_backpressure(self, source, destination):
        digests, _ = seed_image(source, [f"layer-{i}".encode() for i in range(20)])

        result = ReplicationOrchestrator(source, destination, 2, queue_size=1).copy(REPO, TAG)

        assert [layer.digest for layer in result.layers] == digests
        assert result.layers_copied == 20

    def test_progress_observers_per_layer(self, source, destination):
        digests, _ = seed_image(source, [b"x" * 10, b"y" * 20])
        seen = {}
        lock = threading.Lock()

        def factory(digest):
            def observer(progress, total):
                with lock:
                    seen[digest] = (progress, total)
            return observer

        ReplicationOrchestrator(source, destination, 2, observer_factory=factory).copy(REPO, TAG)

        assert seen == {digests[0]: (10, 10), digests[1]: (20, 20)}

    def test_completion_is_not_logged(self, source, destination, caplog):
        seed_image(source, [b"one"])

        with caplog.at_level("INFO"):
            ReplicationOrchestrator(source, destination, 1).copy(REPO, TAG)

        assert "Uploading manifest" in caplog.text
        assert "Upload complete" not in caplog.text


class TestFailures:

    def test_manifest_fetch_failure(self, source, destination):
        with pytest.raises(ManifestFetchError) as exc_info:
            ReplicationOrchestrator(source, destination, 2).copy(REPO, "missing")

        assert exc_info.value.stage == "fetch-manifest"
        assert destination.calls == []

    def test_existence_check_failure_cancels_in_flight_transfer(self, source, destination):
        source.read_chunk = 4
        destination.read_chunk = 4
        destination.read_delay_s = 0.01
        a = source.seed_blob(REPO, b"a" * 400)
        b = source.seed_blob(REPO, b"b" * 4)
        c = source.seed_blob(REPO, b"c" * 4)
        source.seed_manifest(make_schema1_manifest(REPO, TAG, [a, b, c]))

        a_started = threading.Event()
        destination.on("upload_layer", a, a_started.set)

        def fail_once_a_is_running():
            a_started.wait(timeout=5)
            raise RegistryError("HEAD failed", 500)

        destination.on("has_layer", b, fail_once_a_is_running)

        with pytest.raises(LayerExistenceCheckError) as exc_info:
            ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert exc_info.value.digest == b
        assert destination.ops("put_manifest") == []
        assert destination.manifest(REPO, TAG) is None
        # The in-flight transfer stopped before finishing and C never started
        assert destination.blob(REPO, a) is None
        assert c not in [call[2] for call in destination.ops("has_layer")]
        assert all(stream.was_closed for stream in source.opened_streams)

    def test_transfer_failure_blocks_manifest(self, source, destination):
        (a, b), _ = seed_image(source, [b"good", b"bad"])
        destination.fail("upload_layer", b, RegistryError("blob upload invalid", 400))

        with pytest.raises(LayerTransferError) as exc_info:
            ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert exc_info.value.digest == b
        assert isinstance(exc_info.value.__cause__, RegistryError)
        assert destination.ops("put_manifest") == []

    def test_only_first_failure_is_raised(self, source, destination):
        digests, _ = seed_image(source, [b"one", b"two", b"three", b"four"])
        for digest in digests:
            destination.fail("has_layer", digest, RegistryError("HEAD failed", 503))

        with pytest.raises(LayerExistenceCheckError):
            ReplicationOrchestrator(source, destination, 4).copy(REPO, TAG)

        assert destination.ops("put_manifest") == []

    def test_manifest_upload_failure(self, source, destination):
        seed_image(source, [b"one"])
        destination.fail("put_manifest", TAG, RegistryError("manifest invalid", 400))

        with pytest.raises(ManifestUploadError):
            ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

    def test_unexpected_worker_exception_is_wrapped(self, source, destination):
        (a,), _ = seed_image(source, [b"one"])
        boom = KeyError("boom")
        destination.fail("has_layer", a, boom)

        with pytest.raises(LayerTransferError) as exc_info:
            ReplicationOrchestrator(source, destination, 2).copy(REPO, TAG)

        assert exc_info.value.__cause__ is boom
        assert destination.ops("put_manifest") == []

    def test_failure_is_logged(self, source, destination, caplog):
        (a,), _ = seed_image(source, [b"one"])
        destination.fail("upload_layer", a, RegistryError("denied", 403))

        with caplog.at_level("ERROR"), pytest.raises(LayerTransferError):
            ReplicationOrchestrator(source, destination, 1).copy(REPO, TAG)

        assert "cancelling remaining layers" in caplog.text
