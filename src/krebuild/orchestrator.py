"""Host-side orchestration of one containerized build.

A run materializes a build context in a fresh temporary directory (inputs,
driver, plan, recipe), builds the image, runs it with that directory mounted
at the driver's result path, then validates and relocates the artifacts. The
temporary directory is removed on every exit path.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import signal
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from krebuild.engines import ContainerEngine, MountSpec
from krebuild.errors import (
    ArtifactMissing,
    BuildCancelled,
    ContainerRunFailed,
    ImageBuildFailed,
    MissingInput,
)
from krebuild.files import copy_file, is_nonempty_dir, is_nonempty_file
from krebuild.models import (
    DRIVER_PACKAGE,
    MODULES_DIR,
    PLAN_FILENAME,
    RECIPE_FILENAME,
    RESULT_DIR,
    BuildSpec,
    OutputArtifactSet,
)
from krebuild.observability import StructuredLogger
from krebuild.plan import write_plan
from krebuild.process import Runner, SubprocessRunner
from krebuild.recipe import render_recipe

LOGGER = logging.getLogger(__name__)

CANCEL_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

# Docker only allows volume mounts below certain host paths on some
# platforms, /tmp is accepted everywhere.
DEFAULT_TMP_ROOT = Path("/tmp")

DRIVER_SOURCE = Path(__file__).resolve().parent

# Patches and extra inputs shipped with the package, one directory per build.
INPUT_ROOT = DRIVER_SOURCE / "inputs"


def default_search_path(spec: BuildSpec) -> tuple[Path, ...]:
    """The working directory first, then the inputs shipped for *spec*."""
    return (Path.cwd(), INPUT_ROOT / spec.name)


@contextmanager
def cancel_on_signals(
    event: threading.Event,
    signals: tuple[signal.Signals, ...] = CANCEL_SIGNALS,
) -> Iterator[list[str]]:
    """Set *event* when one of *signals* arrives; yields the received signal names.

    Handlers can only be installed from the main thread; elsewhere this is a
    no-op and cancellation has to come from setting the event directly.
    """
    received: list[str] = []
    if threading.current_thread() is not threading.main_thread():
        yield received
        return

    def _handler(signum: int, _frame: object) -> None:
        received.append(signal.Signals(signum).name)
        event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield received
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@dataclass(slots=True)
class Orchestrator:
    engine: ContainerEngine
    search_path: tuple[Path, ...] = field(default_factory=lambda: (Path.cwd(),))
    output_root: Path = field(default_factory=Path.cwd)
    uid: str = field(default_factory=lambda: str(os.getuid()))
    gid: str = field(default_factory=lambda: str(os.getgid()))
    tmp_root: Path = DEFAULT_TMP_ROOT
    keep_container: bool = False
    quiet_build: bool = False
    runner: Runner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    cancel: threading.Event = field(default_factory=threading.Event)
    handle_signals: bool = True
    driver_source: Path = DRIVER_SOURCE

    def run(self, spec: BuildSpec) -> OutputArtifactSet:
        spec.validate()
        signals = CANCEL_SIGNALS if self.handle_signals else ()
        with cancel_on_signals(self.cancel, signals) as received:
            workdir = Path(tempfile.mkdtemp(prefix=f"krebuild-{spec.name}-", dir=self.tmp_root))
            try:
                return self._run_in(spec, workdir)
            except BuildCancelled as exc:
                self.logger.log(
                    operation="cancelled",
                    build=spec.name,
                    stage=None,
                    message="build cancelled, cleaned up",
                    level="warning",
                )
                if received and exc.signal is None:
                    raise BuildCancelled(
                        exc.args[0], signal=received[-1], context=exc.context
                    ) from exc
                raise
            finally:
                shutil.rmtree(workdir, ignore_errors=True)

    def find_input(self, name: str) -> Path:
        for directory in self.search_path:
            candidate = directory / name
            if candidate.is_file():
                return candidate
        raise MissingInput(
            f"Could not find input file {name!r}.",
            hint="Run from the directory holding the patches or into the package inputs directory.",
            context={"looked_in": ", ".join(str(directory) for directory in self.search_path)},
        )

    def destination_for(self, path: Path) -> Path:
        return path if path.is_absolute() else self.output_root / path

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _run_in(self, spec: BuildSpec, workdir: Path) -> OutputArtifactSet:
        self._checkpoint("prepare")
        self._stage_context(spec, workdir)

        self._checkpoint("image_build")
        self._build_image(spec, workdir)

        self._checkpoint("container_run")
        self._run_container(spec, workdir)

        self._checkpoint("collect")
        outputs = self._collect(spec, workdir)
        self.logger.log(
            operation="build_succeeded",
            build=spec.name,
            stage=None,
            message=f"copied {len(outputs.artifacts)} artifacts",
            extra={name: str(path) for name, path in outputs.artifacts.items()},
        )
        return outputs

    def _stage_context(self, spec: BuildSpec, workdir: Path) -> None:
        sources = [self.find_input(name) for name in (*spec.patches, *spec.inputs)]
        for source in sources:
            copy_file(source, workdir / source.name)

        shutil.copytree(
            self.driver_source,
            workdir / DRIVER_PACKAGE,
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc", INPUT_ROOT.name),
        )
        write_plan(spec, workdir / PLAN_FILENAME)
        recipe = render_recipe(spec, self.uid, self.gid)
        (workdir / RECIPE_FILENAME).write_text(recipe, encoding="utf-8")
        self.logger.log(
            operation="context_ready",
            build=spec.name,
            stage=None,
            message=f"build context prepared in {workdir}",
            extra={"inputs": len(sources)},
        )

    def _build_image(self, spec: BuildSpec, workdir: Path) -> None:
        self.logger.log(
            operation="image_build",
            build=spec.name,
            stage=None,
            message=f"building {self.engine.name} container for {spec.name} compilation",
        )
        argv = self.engine.build_argv(tag=spec.image_tag, quiet=self.quiet_build)
        returncode = self.runner.run(argv, cwd=workdir, cancel=self.cancel)
        if returncode != 0:
            self._checkpoint("image_build")
            raise ImageBuildFailed(
                f"{self.engine.name} build failed.",
                hint="The engine output above shows the failing recipe step.",
                context={"command": " ".join(argv)},
                returncode=returncode,
            )

    def _run_container(self, spec: BuildSpec, workdir: Path) -> None:
        name = f"{spec.image_tag}-{secrets.token_hex(4)}"
        argv = self.engine.run_argv(
            image=spec.image_tag,
            name=name,
            mounts=(MountSpec(source=workdir, target=RESULT_DIR),),
            remove=not self.keep_container,
        )
        self.logger.log(
            operation="container_run",
            build=spec.name,
            stage=None,
            message=f"compiling {spec.name}",
            extra={"container": name},
        )
        try:
            returncode = self.runner.run(argv, cwd=workdir, cancel=self.cancel)
            if returncode != 0:
                self._checkpoint("container_run")
        except BuildCancelled:
            self._teardown(spec, name)
            raise

        if returncode != 0:
            if self.keep_container:
                self.logger.log(
                    operation="container_kept",
                    build=spec.name,
                    stage=None,
                    message=f"keeping failed container {name} for inspection",
                    level="warning",
                )
            else:
                self._teardown(spec, name)
            raise ContainerRunFailed(
                f"{self.engine.name} run failed.",
                hint="The driver output above names the failing stage.",
                context={"command": " ".join(argv), "container": name},
                returncode=returncode,
            )

        if self.keep_container:
            self._remove(spec, name)

    def _collect(self, spec: BuildSpec, workdir: Path) -> OutputArtifactSet:
        missing = [
            artifact.name
            for artifact in spec.artifacts
            if not is_nonempty_file(workdir / artifact.name)
        ]
        modules_source = workdir / MODULES_DIR / "modules"
        if spec.install_modules and not is_nonempty_dir(modules_source):
            missing.append(f"{MODULES_DIR}/modules")
        if missing:
            raise ArtifactMissing(
                "Container exited but declared artifacts are missing or empty.",
                missing=tuple(missing),
                hint="A build that produced no output is a failed build.",
                context={"build": spec.name},
            )

        outputs = OutputArtifactSet()
        for artifact in spec.artifacts:
            destination = self.destination_for(artifact.destination)
            copy_file(workdir / artifact.name, destination)
            outputs.artifacts[artifact.name] = destination

        if spec.install_modules and spec.modules_destination is not None:
            modules_destination = self.destination_for(spec.modules_destination)
            shutil.copytree(modules_source, modules_destination, symlinks=True, dirs_exist_ok=True)
            outputs.modules_dir = modules_destination
        return outputs

    def _checkpoint(self, step: str) -> None:
        if self.cancel.is_set():
            raise BuildCancelled(
                "Build cancelled before next step.",
                context={"step": step},
            )

    def _teardown(self, spec: BuildSpec, name: str) -> None:
        """Best-effort stop; ``--rm`` on the run removes the container afterwards."""
        self.logger.log(
            operation="container_teardown",
            build=spec.name,
            stage=None,
            message=f"stopping container {name}",
        )
        returncode = self.runner.run(self.engine.stop_argv(name))
        if returncode != 0:
            self.logger.log(
                operation="container_teardown_failed",
                build=spec.name,
                stage=None,
                message=f"stopping container {name} exited with {returncode}",
                level="warning",
            )

    def _remove(self, spec: BuildSpec, name: str) -> None:
        returncode = self.runner.run(self.engine.remove_argv(name))
        if returncode != 0:
            self.logger.log(
                operation="container_remove_failed",
                build=spec.name,
                stage=None,
                message=f"removing container {name} exited with {returncode}",
                level="warning",
            )
