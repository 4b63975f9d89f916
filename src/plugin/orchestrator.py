#!/usr/bin/env python3
"""
Mount Cache Orchestrator — Rebuild / Restore Driver

Resolves the single configured backend, then walks the mount list once
per requested phase:

  Rebuild  → archive each mount, upload to <prefix>/<repo>/<key>
  Restore  → download each entry, unpack into the mount

Failure policy:
- Backend selection or construction failure: nothing else runs
- First failing mount ends its phase; later mounts are not attempted
- Both requested phases run; the first phase error is the run's error
- The backend is released exactly once, however the run ends
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from backends import build_backend
from cache.contract import CacheBackend
from cache.errors import (
    BackendConstructionError, CacheError, FetchError, NotFoundError,
    ReleaseError, StoreError,
)
from cache.key_generator import derive_key, remote_path

from .config import PluginConfig
from .observability import RunRecord
from .selector import select_one

logger = logging.getLogger(__name__)

BackendFactory = Callable[[str, str], CacheBackend]


@dataclass
class PhaseResult:
    """Outcome of one rebuild or restore pass over the mounts."""
    name: str
    mounts_total: int
    processed: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    error: Optional[CacheError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mounts_total": self.mounts_total,
            "mounts_processed": len(self.processed),
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class RunReport:
    backend: str
    mode: str
    phases: List[PhaseResult] = field(default_factory=list)
    release_error: Optional[ReleaseError] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def errors(self) -> List[CacheError]:
        """Every error of the run, in the order it happened."""
        found: List[CacheError] = [p.error for p in self.phases if p.error is not None]
        if self.release_error is not None:
            found.append(self.release_error)
        return found

    @property
    def error(self) -> Optional[CacheError]:
        errors = self.errors
        return errors[0] if errors else None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_record(self, config: PluginConfig) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            backend=self.backend,
            mode=self.mode,
            repo=config.repo,
            branch=config.branch,
            phases=[p.to_dict() for p in self.phases],
            ok=self.ok,
            error=str(self.error) if self.error else None,
            release_error=str(self.release_error) if self.release_error else None,
        )


class CacheOrchestrator:
    """
    Top-level driver for one CI job.

    The configuration is read-only; the backend is built from it once per
    run() and shared by every mount.
    """

    def __init__(self, config: PluginConfig, backend_factory: BackendFactory = build_backend):
        self._config = config
        self._factory = backend_factory

    @property
    def config(self) -> PluginConfig:
        return self._config

    def remote_path_for(self, mount: str, branch: Optional[str] = None) -> str:
        """Remote location of the cache entry for mount on branch (default: current)."""
        key = derive_key(mount, self._config.branch if branch is None else branch)
        return remote_path(self._config.path, self._config.repo, key)

    # ── Run ──────────────────────────────────────────────────────

    def run(self) -> RunReport:
        """
        Execute the requested phases and report what happened.

        Backend selection and construction errors are raised; phase and
        release errors are collected in the returned report.
        """
        selected = select_one(self._config.backend_slots())
        logger.info(f"Using {selected.name} cache backend (mode={self._config.mode})")

        try:
            backend = self._factory(selected.name, selected.config)
        except CacheError:
            raise
        except Exception as e:
            raise BackendConstructionError(selected.name, str(e)) from e

        report = RunReport(backend=selected.name, mode=self._config.mode)
        try:
            if self._config.rebuild:
                report.phases.append(self._run_phase("rebuild", backend))
            if self._config.restore:
                report.phases.append(self._run_phase("restore", backend))
        finally:
            report.release_error = self._release(backend)

        try:
            record = report.to_record(self._config).to_dict()
        except ValueError as e:
            logger.error(f"run summary invalid: {e}")
        else:
            logger.info(f"run summary: {json.dumps(record)}")
        return report

    def execute(self) -> RunReport:
        """run(), then raise the run's first error if there was one."""
        report = self.run()
        report.raise_for_error()
        return report

    # ── Phases ───────────────────────────────────────────────────

    def _run_phase(self, name: str, backend: CacheBackend) -> PhaseResult:
        mounts = self._config.mounts
        step = self._rebuild_mount if name == "rebuild" else self._restore_mount
        phase = PhaseResult(name=name, mounts_total=len(mounts))

        start = time.monotonic()
        for mount in mounts:
            try:
                step(backend, mount)
            except CacheError as e:
                phase.error = e
                logger.error(f"{name} stopped at <{mount}>: {e}")
                break
            phase.processed.append(mount)
        phase.duration_ms = round((time.monotonic() - start) * 1000, 1)

        verb = "built" if name == "rebuild" else "restored"
        logger.info(f"cache {verb} in {phase.duration_ms:.1f}ms")
        return phase

    def _rebuild_mount(self, backend: CacheBackend, mount: str) -> None:
        path = self.remote_path_for(mount)
        logger.info(f"archiving directory <{mount}> to remote cache <{path}>")
        try:
            backend.store(path, mount)
        except CacheError:
            raise
        except Exception as e:
            raise StoreError(path, mount, str(e)) from e

    def _restore_mount(self, backend: CacheBackend, mount: str) -> None:
        path = self.remote_path_for(mount)
        logger.info(f"restoring directory <{mount}> from remote cache <{path}>")
        try:
            self._fetch(backend, path, mount)
        except NotFoundError as miss:
            fallback = self._config.fallback_branch
            if not fallback or fallback == self._config.branch:
                raise

            fallback_path = self.remote_path_for(mount, fallback)
            logger.warning(
                f"restoring directory <{mount}> from remote cache <{fallback_path}>, "
                f"using fallback branch {fallback}"
            )
            try:
                self._fetch(backend, fallback_path, mount)
            except CacheError as e:
                logger.warning(f"fallback restore failed for <{mount}>: {e}")
                raise miss

    @staticmethod
    def _fetch(backend: CacheBackend, path: str, mount: str) -> None:
        try:
            backend.fetch(path, mount)
        except CacheError:
            raise
        except Exception as e:
            raise FetchError(path, mount, str(e)) from e

    @staticmethod
    def _release(backend: CacheBackend) -> Optional[ReleaseError]:
        try:
            backend.release()
        except ReleaseError as e:
            error = e
        except Exception as e:
            error = ReleaseError(getattr(backend, "name", type(backend).__name__), str(e))
        else:
            return None

        logger.error(f"{error}")
        return error
