"""
cordcenterline command line interface.

Runs or checks the per-subject centerline and co-registration pipeline. The
run directories default to the environment exported by the batch runner.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from importlib import metadata
from pathlib import Path

from cordcenterline.config import ENV_VARS, load_pipeline_policy, resolve_run_paths
from cordcenterline.errors import ConfigError
from cordcenterline.pipeline import StepResult, check_subject, run_subject

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cordcenterline",
        description="Spinal cord centerline extraction and contrast co-registration, one subject per call.",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")
    subparsers = parser.add_subparsers(dest="command", required=False)

    run_parser = subparsers.add_parser("run", help="Process one subject")
    _add_subject_arguments(run_parser)

    check_parser = subparsers.add_parser("check", help="Check the outputs of a processed subject")
    _add_subject_arguments(check_parser)

    return parser


def _add_subject_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("subject", help="Subject identifier, e.g. sub-01 or sub-01/ses-01")
    for key, env_name in ENV_VARS.items():
        subparser.add_argument(
            f"--{env_name.lower().replace('_', '-')}",
            dest=f"path_{key}",
            type=Path,
            help=f"Overrides ${env_name}",
        )
    subparser.add_argument(
        "--policy",
        type=Path,
        help="Pipeline policy YAML (default: built-in parameters)",
    )
    subparser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for the stderr log stream (default: INFO)",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("cordcenterline")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        return 0

    if not args.command:
        parser.error("No command provided.")
        return 2

    configure_logging(args.log_level)

    overrides = {key: getattr(args, f"path_{key}") for key in ENV_VARS}
    try:
        paths = resolve_run_paths(overrides)
    except ConfigError as err:
        parser.error(str(err))
        return 2

    try:
        policy = load_pipeline_policy(args.policy)
    except ConfigError as err:
        result = StepResult(status="FAIL", failure_message=str(err))
    else:
        try:
            if args.command == "run":
                result = run_subject(args.subject, paths, policy)
            else:
                result = check_subject(args.subject, paths, policy)
        except KeyboardInterrupt:
            print("Caught Keyboard Interrupt within script. Exiting now.", file=sys.stderr)
            return 130

    if result.tool_output:
        print(result.tool_output, file=sys.stderr)

    summary = {"status": result.status, "failure_message": result.failure_message}
    print(json.dumps(summary, indent=2))

    return 0 if result.status in {"PASS", "WARN"} else 1


if __name__ == "__main__":
    sys.exit(main())
