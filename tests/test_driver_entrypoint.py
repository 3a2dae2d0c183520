from dataclasses import replace
from pathlib import Path

import pytest

import krebuild.driver.__main__ as entrypoint
from krebuild.models import BuildSpec
from krebuild.plan import write_plan


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(entrypoint, "configure_logging", lambda: None)


def test_missing_plan_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    status = entrypoint.main([str(tmp_path / "build-plan.json")])

    assert status == 1
    assert capsys.readouterr().err.startswith("error: plan stage failed [E_VALIDATION]")


def test_failed_fetch_halts_with_stage_label(
    tmp_path: Path,
    sample_spec: BuildSpec,
    capsys: pytest.CaptureFixture[str],
) -> None:
    missing_archive = tmp_path / "upstream" / "widget-1.0.tar.xz"
    spec = replace(sample_spec, source_url=missing_archive.as_uri())
    plan = write_plan(spec, tmp_path / "usr-src" / "build-plan.json")

    status = entrypoint.main([str(plan), "--result-dir", str(tmp_path / "buildresult")])

    assert status == 1
    assert capsys.readouterr().err.startswith("error: fetch stage failed [E_FETCH_FAILED]")
    assert not (tmp_path / "buildresult").exists()
