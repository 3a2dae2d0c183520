"""Build plan parser and serializer.

The plan is the driver's view of a :class:`BuildSpec`: everything needed to
fetch, patch, configure, compile and export, without host-only fields such as
artifact destinations.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from krebuild.errors import ValidationError
from krebuild.models import ArtifactSpec, BuildSpec, CommandSpec

PLAN_VERSION = 1


def serialize_plan(spec: BuildSpec) -> str:
    payload = {
        "version": PLAN_VERSION,
        "name": spec.name,
        "source_url": spec.source_url,
        "sha256": spec.sha256,
        "source_dir": spec.unpacked_dir,
        "patches": list(spec.patches),
        "inputs": list(spec.inputs),
        "arch": spec.arch,
        "cross_compile": spec.cross_compile,
        "defconfig": spec.defconfig,
        "config_prepare_targets": list(spec.config_prepare_targets),
        "config_addendum": spec.config_addendum,
        "config_reconcile": spec.config_reconcile,
        "make_targets": list(spec.make_targets),
        "build_env": dict(sorted(spec.build_env.items())),
        "post_build": [
            {"argv": list(command.argv), "env": dict(sorted(command.env.items()))}
            for command in spec.post_build
        ],
        "install_modules": spec.install_modules,
        "max_jobs": spec.max_jobs,
        "artifacts": [
            {"name": artifact.name, "source": artifact.source} for artifact in spec.artifacts
        ],
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def parse_plan(raw: str) -> BuildSpec:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid build plan JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise ValidationError("Invalid build plan payload type.")

    version = payload.get("version")
    if version != PLAN_VERSION:
        raise ValidationError(
            "Unsupported build plan version.",
            context={"version": str(version), "expected": str(PLAN_VERSION)},
        )

    artifacts_raw = payload.get("artifacts")
    if not isinstance(artifacts_raw, list):
        raise ValidationError("Invalid build plan `artifacts` value.")
    post_build_raw = payload.get("post_build", [])
    if not isinstance(post_build_raw, list):
        raise ValidationError("Invalid build plan `post_build` value.")

    config_reconcile = payload.get("config_reconcile")
    if config_reconcile is not None and not isinstance(config_reconcile, str):
        raise ValidationError("Invalid build plan `config_reconcile` value.")
    max_jobs = payload.get("max_jobs")
    if max_jobs is not None and not isinstance(max_jobs, int):
        raise ValidationError("Invalid build plan `max_jobs` value.")
    install_modules = payload.get("install_modules", False)
    if not isinstance(install_modules, bool):
        raise ValidationError("Invalid build plan `install_modules` value.")

    spec = BuildSpec(
        name=_required_str(payload, "name"),
        source_url=_required_str(payload, "source_url"),
        sha256=_optional_str(payload, "sha256"),
        source_dir=_required_str(payload, "source_dir"),
        patches=_str_tuple(payload, "patches"),
        inputs=_str_tuple(payload, "inputs"),
        arch=_required_str(payload, "arch"),
        cross_compile=_optional_str(payload, "cross_compile"),
        defconfig=_required_str(payload, "defconfig"),
        config_prepare_targets=_str_tuple(payload, "config_prepare_targets"),
        config_addendum=_optional_str(payload, "config_addendum"),
        config_reconcile=config_reconcile,
        make_targets=_str_tuple(payload, "make_targets"),
        build_env=_str_dict(payload, "build_env"),
        post_build=tuple(_parse_command(item) for item in post_build_raw),
        install_modules=install_modules,
        max_jobs=max_jobs,
        artifacts=tuple(_parse_artifact(item) for item in artifacts_raw),
    )
    return spec.validate()


def read_plan(path: str | Path) -> BuildSpec:
    plan_path = Path(path)
    try:
        raw = plan_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Build plan does not exist.",
            hint="The host orchestrator copies the plan into the image; rebuild the image.",
            context={"path": str(plan_path)},
        ) from exc
    return parse_plan(raw)


def write_plan(spec: BuildSpec, path: str | Path) -> Path:
    plan_path = Path(path)
    plan_path.parent.mkdir(parents=True, exist_ok=True)
    plan_path.write_text(serialize_plan(spec), encoding="utf-8")
    return plan_path


def _parse_artifact(item: Any) -> ArtifactSpec:
    if not isinstance(item, dict):
        raise ValidationError("Invalid artifact entry in build plan.")
    name = _required_str(item, "name")
    return ArtifactSpec(name=name, source=_required_str(item, "source"), destination=Path(name))


def _parse_command(item: Any) -> CommandSpec:
    if not isinstance(item, dict):
        raise ValidationError("Invalid post_build entry in build plan.")
    argv = _str_tuple(item, "argv")
    if not argv:
        raise ValidationError("Invalid build plan `argv` value.")
    return CommandSpec(argv=argv, env=_str_dict(item, "env"))


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid build plan `{key}` value.")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key, "")
    if not isinstance(value, str):
        raise ValidationError(f"Invalid build plan `{key}` value.")
    return value


def _str_tuple(payload: dict[str, Any], key: str) -> tuple[str, ...]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"Invalid build plan `{key}` value.")
    return tuple(value)


def _str_dict(payload: dict[str, Any], key: str) -> dict[str, str]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid build plan `{key}` value.")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ValidationError(f"Invalid build plan `{key}` entry.")
    return dict(value)
