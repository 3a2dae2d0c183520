"""Container entrypoint: ``python3 -m krebuild.driver <plan>``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from krebuild.driver.pipeline import BuildDriver
from krebuild.errors import KrebuildError, exit_status
from krebuild.models import RESULT_DIR
from krebuild.observability import StructuredLogger, configure_logging
from krebuild.plan import read_plan

LOGGER = logging.getLogger("krebuild.driver")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="krebuild.driver")
    parser.add_argument("plan", type=Path, help="Build plan written by the host orchestrator.")
    parser.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="Directory to download and unpack into (default: the plan's directory).",
    )
    parser.add_argument(
        "--result-dir",
        type=Path,
        default=Path(RESULT_DIR),
        help="Bind-mounted directory that receives the artifacts.",
    )
    args = parser.parse_args(argv)
    configure_logging()

    try:
        spec = read_plan(args.plan)
        input_dir = args.plan.resolve().parent
        driver = BuildDriver(
            spec=spec,
            work_dir=args.work_dir or input_dir,
            input_dir=input_dir,
            result_dir=args.result_dir,
            logger=StructuredLogger(name="krebuild.driver"),
        )
        driver.run()
    except KrebuildError as exc:
        stage = exc.context.get("stage", "plan")
        print(f"error: {stage} stage failed [{exc.code}]: {exc}", file=sys.stderr)
        return exit_status(exc)

    LOGGER.info("all stages completed, artifacts in %s", args.result_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
