"""Command line entrypoints for the pinned kernel and bootloader rebuilds."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from krebuild.engines import resolve_engine
from krebuild.errors import KrebuildError, exit_status
from krebuild.manifest import BuildManifest
from krebuild.models import BuildSpec
from krebuild.observability import configure_logging
from krebuild.orchestrator import Orchestrator, default_search_path
from krebuild.presets import KERNEL, UBOOT

LOGGER = logging.getLogger("krebuild")


def build_parser(prog: str, spec: BuildSpec) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description=f"Rebuild {spec.name} from {spec.source_url} in a disposable container.",
    )
    parser.add_argument(
        "--overwrite-container-executable",
        default=None,
        help="E.g. docker or podman to overwrite the automatically detected container executable.",
    )
    parser.add_argument(
        "--keep-container",
        action="store_true",
        help="Keep the build container after a failed run for debugging.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress the image build output where the container engine supports it.",
    )
    parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Write artifact digests to this path (.json, or .cbor for canonical CBOR).",
    )
    parser.add_argument(
        "--verify-manifest",
        type=Path,
        default=None,
        help="Fail unless the artifacts match the digests in this manifest.",
    )
    return parser


def run_cli(prog: str, spec: BuildSpec, argv: list[str] | None = None) -> int:
    args = build_parser(prog, spec).parse_args(argv)
    configure_logging()

    try:
        engine = resolve_engine(override=args.overwrite_container_executable)
        LOGGER.info("using container engine %s (%s)", engine.name, engine.executable)
        orchestrator = Orchestrator(
            engine=engine,
            search_path=default_search_path(spec),
            keep_container=args.keep_container,
            quiet_build=args.quiet,
        )
        outputs = orchestrator.run(spec)

        manifest = BuildManifest.from_outputs(spec, outputs)
        for name, digest in sorted(manifest.artifacts.items()):
            LOGGER.info("%s: sha256=%s size=%d", name, digest.sha256, digest.size)
        if args.manifest is not None:
            manifest.write(args.manifest)
        if args.verify_manifest is not None:
            manifest.require_match(BuildManifest.read(args.verify_manifest))
    except KrebuildError as exc:
        label = exc.context.get("stage") or exc.code
        print(f"{prog}: [{label}] {exc}", file=sys.stderr)
        return exit_status(exc)
    return 0


def kernel_main(argv: list[str] | None = None) -> int:
    return run_cli("krebuild-kernel", KERNEL, argv)


def uboot_main(argv: list[str] | None = None) -> int:
    return run_cli("krebuild-uboot", UBOOT, argv)
