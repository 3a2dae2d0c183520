import json
from dataclasses import replace
from pathlib import Path

import pytest

from krebuild.errors import ValidationError
from krebuild.models import BuildSpec, CommandSpec
from krebuild.plan import parse_plan, read_plan, serialize_plan, write_plan


def test_plan_carries_driver_fields_only(sample_spec: BuildSpec) -> None:
    payload = json.loads(serialize_plan(sample_spec))

    assert payload["version"] == 1
    assert payload["source_dir"] == "widget-1.0"
    assert payload["patches"] == ["0001-first.patch", "0002-second.patch"]
    assert payload["artifacts"] == [
        {"name": "vmlinuz", "source": "arch/arm64/boot/Image"},
        {"name": "board.dtb", "source": "arch/arm64/boot/dts/board.dtb"},
    ]
    assert "base_image" not in payload
    assert "packages" not in payload
    assert "out/vmlinuz" not in serialize_plan(sample_spec)


def test_plan_is_deterministic(sample_spec: BuildSpec) -> None:
    assert serialize_plan(sample_spec) == serialize_plan(sample_spec)


def test_parsed_plan_keeps_order_and_commands(sample_spec: BuildSpec) -> None:
    spec = replace(
        sample_spec,
        post_build=(
            CommandSpec(
                argv=("./tools/mkimage", "-d", "{input_dir}/boot.cmd", "boot.scr"),
                env={"SOURCE_DATE_EPOCH": "1600000000"},
            ),
        ),
        config_reconcile=None,
        max_jobs=4,
    )

    parsed = parse_plan(serialize_plan(spec))

    assert parsed.patches == spec.patches
    assert parsed.post_build == spec.post_build
    assert parsed.config_reconcile is None
    assert parsed.max_jobs == 4
    assert parsed.unpacked_dir == "widget-1.0"
    assert [artifact.destination for artifact in parsed.artifacts] == [
        Path("vmlinuz"),
        Path("board.dtb"),
    ]


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda payload: payload.update(version=2), "Unsupported build plan version."),
        (lambda payload: payload.update(artifacts={}), "Invalid build plan `artifacts` value."),
        (lambda payload: payload.update(patches=[1]), "Invalid build plan `patches` value."),
        (lambda payload: payload.pop("name"), "Invalid build plan `name` value."),
        (lambda payload: payload.update(build_env={"A": 1}), "Invalid build plan `build_env` entry."),
        (lambda payload: payload.update(install_modules="yes"), "Invalid build plan `install_modules` value."),
        (
            lambda payload: payload.update(post_build=[{"argv": [], "env": {}}]),
            "Invalid build plan `argv` value.",
        ),
    ],
)
def test_parse_plan_rejects_malformed_payloads(
    sample_spec: BuildSpec,
    mutate: object,
    message: str,
) -> None:
    payload = json.loads(serialize_plan(sample_spec))
    mutate(payload)  # type: ignore[operator]

    with pytest.raises(ValidationError) as exc_info:
        parse_plan(json.dumps(payload))

    assert exc_info.value.args[0] == message


def test_parse_plan_rejects_invalid_json() -> None:
    with pytest.raises(ValidationError, match="Invalid build plan JSON"):
        parse_plan("{not json")


def test_read_plan_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError) as exc_info:
        read_plan(tmp_path / "build-plan.json")

    assert exc_info.value.context["path"].endswith("build-plan.json")


def test_write_then_read_plan(tmp_path: Path, sample_spec: BuildSpec) -> None:
    path = write_plan(sample_spec, tmp_path / "ctx" / "build-plan.json")

    assert read_plan(path).name == "widget"
