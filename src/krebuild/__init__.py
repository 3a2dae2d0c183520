"""Reproducible containerized kernel and bootloader rebuilds.

This package is also copied into the build container as the driver, so the
names exported here must stay importable with the standard library alone.
"""

from .errors import (
    ArtifactMissing,
    BuildCancelled,
    CompileFailed,
    ConfigureFailed,
    ContainerRunFailed,
    EngineNotFound,
    ErrorCode,
    ExportFailed,
    FetchFailed,
    ImageBuildFailed,
    KrebuildError,
    MissingInput,
    PatchFailed,
    ReproducibilityError,
    StageError,
    UnpackFailed,
    ValidationError,
)
from .models import (
    ArtifactSpec,
    BuildSpec,
    CommandSpec,
    OutputArtifactSet,
    Stage,
    StageResult,
)

__all__ = [
    "ArtifactMissing",
    "ArtifactSpec",
    "BuildCancelled",
    "BuildSpec",
    "CommandSpec",
    "CompileFailed",
    "ConfigureFailed",
    "ContainerRunFailed",
    "EngineNotFound",
    "ErrorCode",
    "ExportFailed",
    "FetchFailed",
    "ImageBuildFailed",
    "KrebuildError",
    "MissingInput",
    "OutputArtifactSet",
    "PatchFailed",
    "ReproducibilityError",
    "Stage",
    "StageError",
    "StageResult",
    "UnpackFailed",
    "ValidationError",
]
