#!/usr/bin/env python3
"""
Unit tests for the rebuild / restore orchestrator
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from backends.s3 import S3Backend
from cache.errors import (
    BackendConstructionError, FetchError, MultipleBackendsConfigured,
    NoBackendConfigured, NotFoundError, ReleaseError, StoreError,
)
from cache.key_generator import derive_key
from plugin.config import PluginConfig
from plugin.orchestrator import CacheOrchestrator

from test_s3_backend import FakeS3Client


class Abort(BaseException):
    """Stands in for KeyboardInterrupt / SystemExit."""


class MemoryBackend:
    """Records every call; fails on demand."""

    def __init__(self, name="s3", fail_on=None, release_error=None):
        self.name = name
        self.entries = {}
        self.calls = []
        self.release_calls = 0
        self.fail_on = fail_on or {}
        self.release_error = release_error

    def _maybe_fail(self, op, remote_path, local_path):
        exc = self.fail_on.get((op, local_path))
        if exc is not None:
            raise exc

    def store(self, remote_path, local_path):
        self.calls.append(("store", local_path, remote_path))
        self._maybe_fail("store", remote_path, local_path)
        self.entries[remote_path] = local_path

    def fetch(self, remote_path, local_path):
        self.calls.append(("fetch", local_path, remote_path))
        self._maybe_fail("fetch", remote_path, local_path)
        if remote_path not in self.entries:
            raise NotFoundError(remote_path, local_path, "no entry")

    def release(self):
        self.release_calls += 1
        if self.release_error is not None:
            raise self.release_error


def make_config(**overrides):
    data = {
        "rebuild": False,
        "restore": False,
        "mount": ["A", "B", "C"],
        "repo": "acme/app",
        "branch": "main",
        "path": "/cache",
        "s3": '{"bucket": "ci-cache"}',
    }
    data.update(overrides)
    return PluginConfig.from_dict(data)


def orchestrator_for(backend, **overrides):
    built = []

    def factory(name, blob):
        built.append((name, blob))
        return backend

    orch = CacheOrchestrator(make_config(**overrides), backend_factory=factory)
    return orch, built


# ── Backend Resolution ───────────────────────────────────────────

class TestBackendResolution:

    def test_no_backend_configured(self):
        orch, built = orchestrator_for(MemoryBackend(), s3="")
        with pytest.raises(NoBackendConfigured):
            orch.run()
        assert built == []

    def test_two_backends_configured(self):
        orch, built = orchestrator_for(MemoryBackend(), sftp='{"server": "h"}')
        with pytest.raises(MultipleBackendsConfigured):
            orch.run()
        assert built == []

    def test_factory_receives_selected_slot(self):
        backend = MemoryBackend()
        orch, built = orchestrator_for(backend)

        orch.run()

        assert built == [("s3", '{"bucket": "ci-cache"}')]
        assert backend.release_calls == 1

    def test_unexpected_factory_error_wrapped(self):
        def factory(name, blob):
            raise ValueError("bad blob")

        orch = CacheOrchestrator(make_config(rebuild=True), backend_factory=factory)
        with pytest.raises(BackendConstructionError) as excinfo:
            orch.run()
        assert excinfo.value.backend == "s3"


# ── Phases ───────────────────────────────────────────────────────

class TestPhases:

    def test_remote_path_scenario(self):
        orch, _ = orchestrator_for(MemoryBackend(), mount=["./node_modules"])
        expected = "/cache/acme/app/" + derive_key("./node_modules", "main")
        assert orch.remote_path_for("./node_modules") == expected

    def test_rebuild_stores_every_mount_in_order(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, rebuild=True)

        report = orch.run()

        assert [c[1] for c in backend.calls] == ["A", "B", "C"]
        assert all(c[0] == "store" for c in backend.calls)
        assert backend.calls[0][2] == orch.remote_path_for("A")
        assert report.ok
        assert report.phases[0].processed == ["A", "B", "C"]

    def test_rebuild_fail_fast(self):
        failure = StoreError("/cache/x", "B", "upload failed")
        backend = MemoryBackend(fail_on={("store", "B"): failure})
        orch, _ = orchestrator_for(backend, rebuild=True)

        report = orch.run()

        assert [c[1] for c in backend.calls] == ["A", "B"]
        assert report.error is failure
        assert report.phases[0].processed == ["A"]
        assert backend.release_calls == 1

    def test_restore_fail_fast(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, restore=True)
        backend.entries[orch.remote_path_for("A")] = "A"

        report = orch.run()

        assert [c[1] for c in backend.calls] == ["A", "B"]
        assert isinstance(report.error, NotFoundError)
        assert report.error.local_path == "B"

    def test_unexpected_backend_error_wrapped(self):
        backend = MemoryBackend(fail_on={("store", "A"): RuntimeError("socket reset")})
        orch, _ = orchestrator_for(backend, rebuild=True)

        report = orch.run()

        assert isinstance(report.error, StoreError)
        assert "socket reset" in str(report.error)

    def test_both_phases_rebuild_error_takes_priority(self):
        store_failure = StoreError("/cache/x", "A", "upload failed")
        backend = MemoryBackend(fail_on={("store", "A"): store_failure})
        orch, _ = orchestrator_for(backend, rebuild=True, restore=True)

        report = orch.run()

        assert [p.name for p in report.phases] == ["rebuild", "restore"]
        assert ("fetch", "A", orch.remote_path_for("A")) in backend.calls
        assert report.error is store_failure
        assert len(report.errors) == 2
        assert isinstance(report.errors[1], NotFoundError)

    def test_neither_mode_only_releases(self):
        backend = MemoryBackend()
        orch, built = orchestrator_for(backend)

        report = orch.run()

        assert report.phases == []
        assert backend.calls == []
        assert backend.release_calls == 1
        assert len(built) == 1

    def test_phase_timing_recorded(self):
        orch, _ = orchestrator_for(MemoryBackend(), rebuild=True)
        report = orch.run()
        assert report.phases[0].duration_ms >= 0
        assert report.phases[0].to_dict()["mounts_processed"] == 3

    @patch("plugin.orchestrator.time")
    def test_invalid_summary_does_not_fail_run(self, mock_time):
        """A summary that fails validation is logged; the report still comes back."""
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, rebuild=True, mount=["A"])
        mock_time.monotonic.side_effect = [100.0, 99.0]

        report = orch.run()

        assert report.ok
        assert report.phases[0].duration_ms < 0
        assert backend.release_calls == 1
        assert mock_time.monotonic.call_count == 2


# ── Release Guarantee ────────────────────────────────────────────

class TestRelease:

    def test_released_once_on_interrupt(self):
        backend = MemoryBackend(fail_on={("store", "B"): Abort()})
        orch, _ = orchestrator_for(backend, rebuild=True)

        with pytest.raises(Abort):
            orch.run()
        assert backend.release_calls == 1

    def test_release_error_is_primary_without_phase_error(self):
        backend = MemoryBackend(release_error=OSError("socket gone"))
        orch, _ = orchestrator_for(backend, rebuild=True)

        report = orch.run()

        assert isinstance(report.error, ReleaseError)
        assert report.release_error is report.error

    def test_release_error_does_not_override_phase_error(self):
        failure = StoreError("/cache/x", "A", "upload failed")
        backend = MemoryBackend(
            fail_on={("store", "A"): failure},
            release_error=ReleaseError("s3", "pool busy"),
        )
        orch, _ = orchestrator_for(backend, rebuild=True)

        report = orch.run()

        assert report.error is failure
        assert isinstance(report.errors[-1], ReleaseError)

    def test_execute_raises_first_error(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, restore=True)

        with pytest.raises(NotFoundError):
            orch.execute()
        assert backend.release_calls == 1


# ── Fallback Branch ──────────────────────────────────────────────

class TestFallbackBranch:

    def test_miss_is_hard_failure_by_default(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, restore=True, mount=["A"])
        backend.entries[orch.remote_path_for("A", "master")] = "A"

        report = orch.run()

        assert isinstance(report.error, NotFoundError)
        assert len(backend.calls) == 1

    def test_fallback_used_on_miss(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, restore=True, mount=["A"], fallback_branch="master")
        backend.entries[orch.remote_path_for("A", "master")] = "A"

        report = orch.run()

        assert report.ok
        assert [c[2] for c in backend.calls] == [
            orch.remote_path_for("A"), orch.remote_path_for("A", "master"),
        ]

    def test_fallback_miss_reports_original_error(self):
        backend = MemoryBackend()
        orch, _ = orchestrator_for(backend, restore=True, mount=["A"], fallback_branch="master")

        report = orch.run()

        assert isinstance(report.error, NotFoundError)
        assert report.error.remote_path == orch.remote_path_for("A")

    def test_fallback_not_used_for_io_errors(self):
        failure = FetchError("/cache/x", "A", "connection reset")
        backend = MemoryBackend(fail_on={("fetch", "A"): failure})
        orch, _ = orchestrator_for(backend, restore=True, mount=["A"], fallback_branch="master")

        report = orch.run()

        assert report.error is failure
        assert len(backend.calls) == 1


# ── End-to-end with a real archive ───────────────────────────────

class TestRoundTrip:

    def test_rebuild_then_restore_reproduces_contents(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        mount = Path("node_modules")
        (mount / "left-pad").mkdir(parents=True)
        (mount / "left-pad" / "index.js").write_text("module.exports = pad;\n")
        (mount / ".bin").mkdir()

        client = FakeS3Client()
        factory = lambda name, blob: S3Backend("ci-cache", client)

        CacheOrchestrator(
            make_config(rebuild=True, mount=["./node_modules"]), backend_factory=factory,
        ).execute()

        key = "cache/acme/app/" + derive_key("./node_modules", "main")
        assert ("ci-cache", key) in client.objects

        (mount / "left-pad" / "index.js").unlink()
        (mount / "left-pad").rmdir()
        (mount / ".bin").rmdir()
        mount.rmdir()

        report = CacheOrchestrator(
            make_config(restore=True, mount=["./node_modules"]), backend_factory=factory,
        ).execute()

        assert report.ok
        assert (mount / "left-pad" / "index.js").read_text() == "module.exports = pad;\n"
        assert (mount / ".bin").is_dir()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
