"""In-container build driver.

Stages run in the fixed order of :data:`krebuild.models.STAGE_ORDER`; each
one is a blocking sequence of external commands. The first failing stage
halts the driver and no later stage may run afterwards.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.request import urlopen

from krebuild.driver.fetch import Opener, download
from krebuild.errors import (
    CompileFailed,
    ConfigureFailed,
    ExportFailed,
    PatchFailed,
    StageError,
    UnpackFailed,
    ValidationError,
)
from krebuild.files import copy_file, is_nonempty_file
from krebuild.models import STAGE_ORDER, BuildSpec, Stage, StageResult
from krebuild.observability import StructuredLogger
from krebuild.process import Runner, SubprocessRunner


@dataclass(slots=True)
class BuildDriver:
    spec: BuildSpec
    work_dir: Path
    input_dir: Path
    result_dir: Path
    runner: Runner = field(default_factory=SubprocessRunner)
    opener: Opener = urlopen
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    cpu_count: Callable[[], int | None] = os.cpu_count
    base_env: Mapping[str, str] | None = None
    results: list[StageResult] = field(default_factory=list)
    _next: int = field(default=0, init=False)
    _halted: bool = field(default=False, init=False)

    @property
    def archive_path(self) -> Path:
        return self.work_dir / self.spec.archive_name

    @property
    def source_root(self) -> Path:
        return self.work_dir / self.spec.unpacked_dir

    @property
    def completed(self) -> tuple[Stage, ...]:
        return STAGE_ORDER[: self._next]

    def jobs(self) -> int:
        count = self.cpu_count() or 1
        if self.spec.max_jobs is not None:
            count = min(count, self.spec.max_jobs)
        return max(count, 1)

    def make_env(self) -> dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env["ARCH"] = self.spec.arch
        if self.spec.cross_compile:
            env["CROSS_COMPILE"] = self.spec.cross_compile
        env.update(self.spec.build_env)
        return env

    def run(self) -> list[StageResult]:
        for stage in STAGE_ORDER[self._next :]:
            self.run_stage(stage)
        return self.results

    def run_stage(self, stage: Stage) -> StageResult:
        if self._halted:
            raise ValidationError(
                "Driver halted after a failed stage.",
                hint="Retry the build from the fetch stage.",
                context={"stage": stage.value},
            )
        expected = STAGE_ORDER[self._next] if self._next < len(STAGE_ORDER) else None
        if stage != expected:
            raise ValidationError(
                "Stages must run in order and cannot be skipped.",
                context={"stage": stage.value, "expected": expected.value if expected else ""},
            )

        handlers: dict[Stage, Callable[[], str]] = {
            Stage.FETCH: self._fetch,
            Stage.UNPACK: self._unpack,
            Stage.PATCH: self._patch,
            Stage.CONFIGURE: self._configure,
            Stage.COMPILE: self._compile,
            Stage.EXPORT: self._export,
        }
        self.logger.log(
            operation="stage_start",
            build=self.spec.name,
            stage=stage.value,
            message=f"{stage.value} started",
        )
        try:
            detail = handlers[stage]()
        except StageError as exc:
            self._halted = True
            result = StageResult(stage=stage, ok=False, detail=exc.args[0])
            self.results.append(result)
            self.logger.log(
                operation="stage_failed",
                build=self.spec.name,
                stage=stage.value,
                message=f"{stage.value} failed: {exc.args[0]}",
                level="error",
                extra={"code": exc.code},
            )
            raise

        result = StageResult(stage=stage, ok=True, detail=detail)
        self.results.append(result)
        self._next += 1
        self.logger.log(
            operation="stage_done",
            build=self.spec.name,
            stage=stage.value,
            message=f"{stage.value} done",
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _fetch(self) -> str:
        self.logger.log(
            operation="fetch",
            build=self.spec.name,
            stage=Stage.FETCH.value,
            message=f"downloading source: {self.spec.source_url}",
        )
        download(
            self.spec.source_url,
            self.archive_path,
            sha256=self.spec.sha256,
            opener=self.opener,
        )
        return str(self.archive_path)

    def _unpack(self) -> str:
        if self.source_root.exists():
            shutil.rmtree(self.source_root)
        argv = self._extract_argv()
        returncode = self.runner.run(argv, cwd=self.work_dir)
        if returncode != 0:
            raise UnpackFailed(
                "Extracting the source archive failed.",
                context={"command": " ".join(argv)},
                returncode=returncode,
            )
        if not self.source_root.is_dir():
            raise UnpackFailed(
                "Source archive did not unpack into the expected directory.",
                hint="Set source_dir on the build spec to the archive's top-level directory.",
                context={"expected": str(self.source_root)},
            )
        return str(self.source_root)

    def _patch(self) -> str:
        for index, name in enumerate(self.spec.patches):
            path = self.input_dir / name
            if not path.is_file():
                raise PatchFailed(
                    "Patch file is missing inside the build container.",
                    patch=name,
                    index=index,
                    context={"path": str(path)},
                )
            self.logger.log(
                operation="apply_patch",
                build=self.spec.name,
                stage=Stage.PATCH.value,
                message=f"applying patch {name!r}",
                extra={"index": index},
            )
            with path.open("rb") as handle:
                returncode = self.runner.run(("patch", "-p1"), cwd=self.source_root, stdin=handle)
            if returncode != 0:
                raise PatchFailed(
                    "Applying patch failed.",
                    patch=name,
                    index=index,
                    hint="Rebase this patch onto the pinned upstream revision.",
                    returncode=returncode,
                )
        return f"{len(self.spec.patches)} patches applied"

    def _configure(self) -> str:
        env = self.make_env()
        self._make(
            (self.spec.defconfig,),
            env=env,
            failure=ConfigureFailed,
            message="Default configuration failed.",
        )
        for target in self.spec.config_prepare_targets:
            self._make(
                (target,),
                env=env,
                failure=ConfigureFailed,
                message="Configuration preparation failed.",
            )

        if self.spec.config_addendum:
            addendum = self.spec.config_addendum
            if not addendum.endswith("\n"):
                addendum += "\n"
            config_path = self.source_root / ".config"
            try:
                with config_path.open("a", encoding="utf-8") as handle:
                    handle.write(addendum)
            except OSError as exc:
                raise ConfigureFailed(
                    "Appending configuration overrides failed.",
                    context={"path": str(config_path), "error": str(exc)},
                ) from exc

        if self.spec.config_reconcile:
            self._make(
                (self.spec.config_reconcile,),
                env=env,
                failure=ConfigureFailed,
                message="Configuration reconciliation failed.",
            )
        return str(self.source_root / ".config")

    def _compile(self) -> str:
        env = self.make_env()
        self._make(
            (*self.spec.make_targets, f"-j{self.jobs()}"),
            env=env,
            failure=CompileFailed,
            message="Compilation failed.",
        )
        for command in self.spec.post_build:
            argv = tuple(
                arg.format(input_dir=self.input_dir, source_root=self.source_root)
                for arg in command.argv
            )
            returncode = self.runner.run(
                argv, cwd=self.source_root, env={**env, **command.env}
            )
            if returncode != 0:
                raise CompileFailed(
                    "Post-build command failed.",
                    context={"command": " ".join(argv)},
                    returncode=returncode,
                )
        return f"{self.jobs()} jobs"

    def _export(self) -> str:
        self.result_dir.mkdir(parents=True, exist_ok=True)
        if self.spec.install_modules:
            self._make(
                (f"INSTALL_MOD_PATH={self.result_dir}", "modules_install", f"-j{self.jobs()}"),
                env=self.make_env(),
                failure=ExportFailed,
                message="Installing kernel modules failed.",
            )

        missing = [
            artifact.source
            for artifact in self.spec.artifacts
            if not is_nonempty_file(self.source_root / artifact.source)
        ]
        if missing:
            raise ExportFailed(
                "Build outputs are missing after compile.",
                hint="Check that make_targets produce every declared artifact.",
                context={"missing": ", ".join(missing)},
            )
        for artifact in self.spec.artifacts:
            copy_file(self.source_root / artifact.source, self.result_dir / artifact.name)
        return ", ".join(self.spec.artifact_names())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _extract_argv(self) -> tuple[str, ...]:
        archive = self.spec.archive_name
        if archive.endswith(".zip"):
            return ("unzip", "-q", archive)
        return ("tar", "xf", archive)

    def _make(
        self,
        targets: tuple[str, ...],
        *,
        env: Mapping[str, str],
        failure: type[ConfigureFailed] | type[CompileFailed] | type[ExportFailed],
        message: str,
    ) -> None:
        argv = ("make", f"ARCH={self.spec.arch}", *targets)
        returncode = self.runner.run(argv, cwd=self.source_root, env=env)
        if returncode != 0:
            raise failure(message, context={"command": " ".join(argv)}, returncode=returncode)
