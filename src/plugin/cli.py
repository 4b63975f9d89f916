#!/usr/bin/env python3
"""
Mount Cache CLI

Entry point for CI steps. Settings come from an optional YAML file, the
CI environment (PLUGIN_*, DRONE_REPO, DRONE_BRANCH) and these flags, in
that order of precedence (flags win).

Exit codes:
  0 — all requested phases succeeded
  1 — a store, fetch, backend or release error
  2 — configuration problem (no backend, two backends, bad file)

Usage:
  PLUGIN_S3='{"bucket": "ci-cache"}' ci-mount-cache --restore \\
      --mount node_modules --repo acme/app --branch main --path /cache
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from cache.errors import CacheError, ConfigurationError

from .config import load_config
from .orchestrator import CacheOrchestrator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ci-mount-cache",
        description="Persist and restore CI build directories in a remote cache.",
    )
    ap.add_argument("--config", help="YAML settings file")
    ap.add_argument("--rebuild", action="store_true", default=None,
                    help="Archive the mounts and upload them")
    ap.add_argument("--restore", action="store_true", default=None,
                    help="Download cached archives into the mounts")
    ap.add_argument("--mount", action="append", help="Directory to cache (repeatable)")
    ap.add_argument("--repo", help="Repository identifier scoping the cache keys")
    ap.add_argument("--branch", help="Branch name used in the cache keys")
    ap.add_argument("--path", help="Remote path prefix")
    ap.add_argument("--sftp", help="SFTP backend configuration (JSON)")
    ap.add_argument("--s3", help="S3 backend configuration (JSON)")
    ap.add_argument("--fallback-branch",
                    help="Branch to restore from when the current branch has no entry")
    ap.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return ap


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "rebuild": args.rebuild,
        "restore": args.restore,
        "mount": args.mount,
        "repo": args.repo,
        "branch": args.branch,
        "path": args.path,
        "sftp": args.sftp,
        "s3": args.s3,
        "fallback_branch": args.fallback_branch,
        "log_level": args.log_level,
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, _overrides(args))
    except (ConfigurationError, FileNotFoundError) as e:
        logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
        logger.error(f"configuration error: {e}")
        return 2

    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, config.log_level, logging.INFO))

    try:
        CacheOrchestrator(config).execute()
    except ConfigurationError as e:
        logger.error(f"{e}")
        return 2
    except CacheError as e:
        logger.error(f"{e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
