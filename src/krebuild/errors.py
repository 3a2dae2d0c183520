"""Typed build error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across host and driver."""

    VALIDATION = "E_VALIDATION"
    ENGINE_NOT_FOUND = "E_ENGINE_NOT_FOUND"
    MISSING_INPUT = "E_MISSING_INPUT"
    IMAGE_BUILD_FAILED = "E_IMAGE_BUILD_FAILED"
    CONTAINER_RUN_FAILED = "E_CONTAINER_RUN_FAILED"
    ARTIFACT_MISSING = "E_ARTIFACT_MISSING"
    FETCH_FAILED = "E_FETCH_FAILED"
    UNPACK_FAILED = "E_UNPACK_FAILED"
    PATCH_FAILED = "E_PATCH_FAILED"
    CONFIGURE_FAILED = "E_CONFIGURE_FAILED"
    COMPILE_FAILED = "E_COMPILE_FAILED"
    EXPORT_FAILED = "E_EXPORT_FAILED"
    CANCELLED = "E_CANCELLED"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"


class KrebuildError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]
    returncode: int | None

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})
        self.returncode = returncode
        if returncode is not None:
            self.context.setdefault("returncode", str(returncode))

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        if self.returncode is not None:
            payload["returncode"] = self.returncode
        return payload


class ValidationError(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class EngineNotFound(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.ENGINE_NOT_FOUND, hint=hint, context=context)


class MissingInput(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MISSING_INPUT, hint=hint, context=context)


class ImageBuildFailed(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.IMAGE_BUILD_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


class ContainerRunFailed(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.CONTAINER_RUN_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


class ArtifactMissing(KrebuildError):
    missing: tuple[str, ...]

    def __init__(
        self,
        message: str,
        *,
        missing: tuple[str, ...] = (),
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = dict(context or {})
        if missing:
            merged.setdefault("missing", ", ".join(missing))
        super().__init__(message, code=ErrorCode.ARTIFACT_MISSING, hint=hint, context=merged)
        self.missing = missing


class BuildCancelled(KrebuildError):
    signal: str | None

    def __init__(
        self,
        message: str,
        *,
        signal: str | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = dict(context or {})
        if signal:
            merged.setdefault("signal", signal)
        super().__init__(message, code=ErrorCode.CANCELLED, hint=hint, context=merged)
        self.signal = signal


class ReproducibilityError(KrebuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.REPRODUCIBILITY, hint=hint, context=context)


# ---------------------------------------------------------------------------
# In-container stage errors
# ---------------------------------------------------------------------------


class StageError(KrebuildError):
    """Failure of one driver stage; ``stage`` names the stage that halted the run."""

    stage: str

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        merged = {"stage": stage, **dict(context or {})}
        super().__init__(message, code=code, hint=hint, context=merged, returncode=returncode)
        self.stage = stage


class FetchFailed(StageError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message, stage="fetch", code=ErrorCode.FETCH_FAILED, hint=hint, context=context
        )


class UnpackFailed(StageError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            stage="unpack",
            code=ErrorCode.UNPACK_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


class PatchFailed(StageError):
    patch: str
    index: int

    def __init__(
        self,
        message: str,
        *,
        patch: str,
        index: int,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        merged = {"patch": patch, "index": str(index), **dict(context or {})}
        super().__init__(
            message,
            stage="patch",
            code=ErrorCode.PATCH_FAILED,
            hint=hint,
            context=merged,
            returncode=returncode,
        )
        self.patch = patch
        self.index = index


class ConfigureFailed(StageError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            stage="configure",
            code=ErrorCode.CONFIGURE_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


class CompileFailed(StageError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            stage="compile",
            code=ErrorCode.COMPILE_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


class ExportFailed(StageError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            stage="export",
            code=ErrorCode.EXPORT_FAILED,
            hint=hint,
            context=context,
            returncode=returncode,
        )


def exit_status(exc: KrebuildError) -> int:
    """Process exit status for *exc*: forwarded tool status where one exists, else 1."""
    if isinstance(exc, BuildCancelled):
        return 130
    if isinstance(exc, (CompileFailed, ImageBuildFailed, ContainerRunFailed)):
        if exc.returncode is not None and 0 < exc.returncode < 256:
            return exc.returncode
    return 1


__all__ = [
    "ArtifactMissing",
    "BuildCancelled",
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
    "PatchFailed",
    "ReproducibilityError",
    "StageError",
    "UnpackFailed",
    "ValidationError",
    "exit_status",
]
