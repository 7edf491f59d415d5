from __future__ import annotations

"""Command-line entry point.

Usage example:
    tmharness --nodes n1,n2,n3,n4,n5 --dup-validators --nemesis duplicate-identity-partition \\
        --time-limit 120 --checker mychecks.linear:CasRegisterChecker

Exit status is 0 when the history checks out, 1 when it does not, and 2 when
the options describe a test that cannot be run.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import argparse
import logging

from pydantic import ValidationError

from .checker import default_checker, load_checker
from .config import get_settings, import_string
from .errors import ConfigurationError
from .logger import configure_logging
from .runner import build_test, run_test

logger = logging.getLogger(__name__)

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Options left unset fall back to ``TMHARNESS_*`` environment variables and
    then to the defaults in :class:`tmharness.config.Settings`.
    """
    parser = argparse.ArgumentParser(description="Run a Tendermint fault-injection test.")
    parser.add_argument("--nodes", dest="nodes", default=None,
                        help="Comma-separated cluster nodes, in order")
    parser.add_argument("--dup-validators", dest="enable_duplicated_identity", action="store_const",
                        const=True, default=None,
                        help="Let some nodes share another node's validator key")
    parser.add_argument("--nemesis", dest="nemesis_profile", default=None,
                        help="Fault profile (e.g. half-split, duplicate-identity-partition, none)")
    parser.add_argument("--time-limit", dest="time_limit", type=float, default=None,
                        help="Seconds to run the workload")
    parser.add_argument("--concurrency", dest="concurrency", type=int, default=None,
                        help="Worker threads; a multiple of twice the node count")
    parser.add_argument("--store", dest="store_dir", type=Path, default=None,
                        help="Directory for histories, results and plots")
    parser.add_argument("--checker", dest="checker", default=None,
                        help="Linearizability checker as module:attribute")
    parser.add_argument("--daemon", dest="daemon", default=None,
                        help="Node daemon factory as module:attribute; omit to test a running cluster")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Logging level")
    parser.add_argument("--log-file", dest="log_file", type=Path, default=None, help="Also log to this file")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    fields = (
        "nodes",
        "enable_duplicated_identity",
        "nemesis_profile",
        "time_limit",
        "concurrency",
        "store_dir",
        "log_level",
        "log_file",
    )
    return {name: getattr(args, name) for name in fields if getattr(args, name) is not None}


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint for the ``tmharness`` script."""
    args = parse_args(argv)
    try:
        settings = get_settings(**_overrides(args))
    except ValidationError as exc:
        configure_logging()
        logger.error("Invalid configuration:\n%s", exc)
        return EXIT_CONFIG
    configure_logging(settings.log_level, settings.log_file)

    try:
        daemon = import_string(args.daemon)() if args.daemon else None
        linearizable = load_checker(args.checker) if args.checker else None
        test = build_test(settings, daemon=daemon, checker=default_checker(linearizable))
    except ConfigurationError as exc:
        logger.error("Cannot build test: %s", exc)
        return EXIT_CONFIG

    result = run_test(test)
    logger.info("Results stored in %s", result.store_path)
    return EXIT_VALID if result.valid else EXIT_INVALID


if __name__ == "__main__":
    raise SystemExit(main())
