"""Build manifest model, export, and verification helpers."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import cbor2

from krebuild.errors import ReproducibilityError, ValidationError
from krebuild.models import BuildSpec, OutputArtifactSet

MismatchReason = Literal["missing_actual", "unexpected_actual", "value_mismatch"]

SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class ArtifactDigest:
    sha256: str
    size: int
    mode: str

    @classmethod
    def of(cls, path: Path) -> ArtifactDigest:
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            while chunk := handle.read(1 << 20):
                digest.update(chunk)
        stat = path.stat()
        return cls(sha256=digest.hexdigest(), size=stat.st_size, mode=f"{stat.st_mode & 0o7777:04o}")


@dataclass(frozen=True, slots=True)
class ManifestMismatch:
    key: str
    reason: MismatchReason
    expected: str | None
    actual: str | None
    hint: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    mismatches: tuple[ManifestMismatch, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildManifest:
    build: str
    source_url: str
    patches: tuple[str, ...] = ()
    artifacts: dict[str, ArtifactDigest] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def from_outputs(cls, spec: BuildSpec, outputs: OutputArtifactSet) -> BuildManifest:
        return cls(
            build=spec.name,
            source_url=spec.source_url,
            patches=spec.patches,
            artifacts={name: ArtifactDigest.of(path) for name, path in outputs.artifacts.items()},
        )

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def write(self, path: str | Path) -> Path:
        """Write JSON, or canonical CBOR when *path* ends in ``.cbor``."""
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if output_path.suffix == ".cbor":
            self.to_cbor(output_path)
        else:
            self.to_json(output_path)
        return output_path

    @classmethod
    def read(cls, path: str | Path) -> BuildManifest:
        manifest_path = Path(path)
        try:
            if manifest_path.suffix == ".cbor":
                payload = cbor2.loads(manifest_path.read_bytes())
            else:
                payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ValidationError(
                "Manifest does not exist.",
                context={"path": str(manifest_path)},
            ) from exc
        except (json.JSONDecodeError, cbor2.CBORDecodeError) as exc:
            raise ValidationError(
                "Manifest is not valid.",
                hint=str(exc),
                context={"path": str(manifest_path)},
            ) from exc
        return cls._from_payload(payload, source=str(manifest_path))

    def verify(self, expected: BuildManifest) -> VerificationResult:
        """Compare this (actual) manifest against *expected*, key by key."""
        mismatches: list[ManifestMismatch] = []
        if self.source_url != expected.source_url:
            mismatches.append(
                ManifestMismatch(
                    key="source_url",
                    reason="value_mismatch",
                    expected=expected.source_url,
                    actual=self.source_url,
                    hint="Builds from different upstream revisions are not comparable.",
                ),
            )
        if self.patches != expected.patches:
            mismatches.append(
                ManifestMismatch(
                    key="patches",
                    reason="value_mismatch",
                    expected=",".join(expected.patches),
                    actual=",".join(self.patches),
                    hint="Patch sequence or order differs.",
                ),
            )

        for name, expected_digest in sorted(expected.artifacts.items()):
            if name not in self.artifacts:
                mismatches.append(
                    ManifestMismatch(
                        key=name,
                        reason="missing_actual",
                        expected=expected_digest.sha256,
                        actual=None,
                        hint="This build did not produce the artifact.",
                    ),
                )
                continue
            actual_digest = self.artifacts[name]
            if actual_digest.sha256 != expected_digest.sha256:
                mismatches.append(
                    ManifestMismatch(
                        key=name,
                        reason="value_mismatch",
                        expected=expected_digest.sha256,
                        actual=actual_digest.sha256,
                        hint="Check pinned build timestamp and identity variables.",
                    ),
                )

        for name, actual_digest in sorted(self.artifacts.items()):
            if name in expected.artifacts:
                continue
            mismatches.append(
                ManifestMismatch(
                    key=name,
                    reason="unexpected_actual",
                    expected=None,
                    actual=actual_digest.sha256,
                    hint="Expected manifest does not include this artifact.",
                ),
            )

        return VerificationResult(ok=not mismatches, mismatches=tuple(mismatches))

    def require_match(self, expected: BuildManifest) -> None:
        result = self.verify(expected)
        if result.ok:
            return
        raise ReproducibilityError(
            "Build outputs differ from the expected manifest.",
            hint="Identical inputs must produce bit-identical artifacts.",
            context={
                mismatch.key: f"{mismatch.reason}: expected={mismatch.expected} actual={mismatch.actual}"
                for mismatch in result.mismatches
            },
        )

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "build": self.build,
            "source_url": self.source_url,
            "patches": list(self.patches),
            "artifacts": {
                name: {"sha256": digest.sha256, "size": digest.size, "mode": digest.mode}
                for name, digest in sorted(self.artifacts.items())
            },
        }

    @classmethod
    def _from_payload(cls, payload: Any, *, source: str) -> BuildManifest:
        try:
            artifacts = {
                str(name): ArtifactDigest(
                    sha256=str(entry["sha256"]),
                    size=int(entry["size"]),
                    mode=str(entry["mode"]),
                )
                for name, entry in payload["artifacts"].items()
            }
            return cls(
                build=str(payload["build"]),
                source_url=str(payload["source_url"]),
                patches=tuple(str(item) for item in payload["patches"]),
                artifacts=artifacts,
                schema_version=int(payload["schema_version"]),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ValidationError(
                "Manifest has invalid structure.",
                context={"path": source, "error": str(exc)},
            ) from exc
