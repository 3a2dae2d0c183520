"""Core typed dataclasses for build descriptions, stages and results."""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from urllib.parse import urlsplit

from krebuild.errors import ValidationError

# Filesystem contract between host and driver.
RESULT_DIR = "/tmp/buildresult"
SOURCE_ROOT = "/usr/src"
DRIVER_ROOT = "/opt/krebuild"
PLAN_FILENAME = "build-plan.json"
RECIPE_FILENAME = "Dockerfile"
DRIVER_PACKAGE = "krebuild"
MODULES_DIR = "lib"

# Names the build context already uses next to the artifacts.
RESERVED_NAMES = frozenset({PLAN_FILENAME, RECIPE_FILENAME, DRIVER_PACKAGE, MODULES_DIR})

ARCHIVE_SUFFIXES: tuple[str, ...] = (
    ".tar.xz",
    ".tar.gz",
    ".tar.bz2",
    ".tgz",
    ".tar",
    ".zip",
)

ALLOWED_URL_SCHEMES = ("https", "http", "file")


class Stage(StrEnum):
    FETCH = "fetch"
    UNPACK = "unpack"
    PATCH = "patch"
    CONFIGURE = "configure"
    COMPILE = "compile"
    EXPORT = "export"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.FETCH,
    Stage.UNPACK,
    Stage.PATCH,
    Stage.CONFIGURE,
    Stage.COMPILE,
    Stage.EXPORT,
)


@dataclass(frozen=True, slots=True)
class CommandSpec:
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    """One output file.

    ``name`` is the filename the driver writes into the result directory,
    ``source`` is its path relative to the unpacked source root, and
    ``destination`` is where the host copies it (relative paths resolve
    against the orchestrator's output root).
    """

    name: str
    source: str
    destination: Path


@dataclass(frozen=True, slots=True)
class BuildSpec:
    name: str
    source_url: str
    artifacts: tuple[ArtifactSpec, ...]
    sha256: str = ""
    source_dir: str | None = None
    patches: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    arch: str = "arm64"
    cross_compile: str = "aarch64-linux-gnu-"
    defconfig: str = "defconfig"
    config_prepare_targets: tuple[str, ...] = ()
    config_addendum: str = ""
    config_reconcile: str | None = "olddefconfig"
    make_targets: tuple[str, ...] = ()
    build_env: Mapping[str, str] = field(default_factory=dict)
    post_build: tuple[CommandSpec, ...] = ()
    install_modules: bool = False
    modules_destination: Path | None = None
    base_image: str = "debian:bookworm"
    packages: tuple[str, ...] = ()
    max_jobs: int | None = None

    @property
    def image_tag(self) -> str:
        return f"krebuild-{self.name}"

    @property
    def archive_name(self) -> str:
        return posixpath.basename(urlsplit(self.source_url).path)

    @property
    def unpacked_dir(self) -> str:
        if self.source_dir:
            return self.source_dir
        archive = self.archive_name
        for suffix in ARCHIVE_SUFFIXES:
            if archive.endswith(suffix):
                return archive[: -len(suffix)]
        return archive

    def artifact_names(self) -> tuple[str, ...]:
        return tuple(artifact.name for artifact in self.artifacts)

    def validate(self) -> BuildSpec:
        """Check structural invariants and return ``self`` for chaining."""
        if not self.name or not _is_plain_name(self.name):
            raise ValidationError(
                "Build name must be a non-empty plain name.",
                context={"name": self.name},
            )
        scheme = urlsplit(self.source_url).scheme
        if scheme not in ALLOWED_URL_SCHEMES:
            raise ValidationError(
                "Source URL must use https, http or file.",
                hint="Pin the upstream archive by explicit URL, never a moving branch.",
                context={"source_url": self.source_url},
            )
        if not any(self.archive_name.endswith(suffix) for suffix in ARCHIVE_SUFFIXES):
            raise ValidationError(
                "Source URL does not name a supported archive.",
                context={
                    "source_url": self.source_url,
                    "supported": " ".join(ARCHIVE_SUFFIXES),
                },
            )
        for label, names in (("patch", self.patches), ("input", self.inputs)):
            for item in names:
                if not _is_plain_name(item):
                    raise ValidationError(
                        f"{label.capitalize()} names must be plain file names.",
                        context={label: item},
                    )
        overlap = set(self.patches) & set(self.inputs)
        if overlap or len(set(self.patches)) != len(self.patches):
            raise ValidationError(
                "Patch and input names must be unique.",
                context={"duplicates": ", ".join(sorted(overlap)) or "patches"},
            )
        if not self.artifacts:
            raise ValidationError("A build must declare at least one artifact.")
        seen: set[str] = set()
        for artifact in self.artifacts:
            if not _is_plain_name(artifact.name):
                raise ValidationError(
                    "Artifact names must be plain file names.",
                    context={"artifact": artifact.name},
                )
            if artifact.name in seen:
                raise ValidationError(
                    "Duplicate artifact name.",
                    context={"artifact": artifact.name},
                )
            if artifact.name in RESERVED_NAMES or artifact.name in self.patches + self.inputs:
                raise ValidationError(
                    "Artifact name collides with a build context file.",
                    context={"artifact": artifact.name},
                )
            seen.add(artifact.name)
        if self.max_jobs is not None and self.max_jobs < 1:
            raise ValidationError(
                "max_jobs must be at least 1.",
                context={"max_jobs": str(self.max_jobs)},
            )
        return self


@dataclass(frozen=True, slots=True)
class StageResult:
    stage: Stage
    ok: bool
    detail: str = ""


@dataclass(slots=True)
class OutputArtifactSet:
    """Artifacts relocated by a successful run, keyed by artifact name."""

    artifacts: dict[str, Path] = field(default_factory=dict)
    modules_dir: Path | None = None

    def path_for(self, name: str) -> Path:
        try:
            return self.artifacts[name]
        except KeyError as exc:
            raise ValidationError(
                "Unknown artifact name.",
                context={"artifact": name, "known": ", ".join(sorted(self.artifacts))},
            ) from exc

    def names(self) -> tuple[str, ...]:
        return tuple(self.artifacts)


def _is_plain_name(value: str) -> bool:
    return (
        bool(value)
        and value not in (".", "..")
        and "/" not in value
        and "\\" not in value
        and not any(ch.isspace() for ch in value)
    )
