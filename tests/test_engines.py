from pathlib import Path

import pytest

from krebuild.engines import (
    ContainerEngine,
    EngineCapabilities,
    MountSpec,
    capabilities_for,
    resolve_engine,
)
from krebuild.errors import EngineNotFound


def _path_with(tmp_path: Path, *names: str) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    for name in names:
        executable = bin_dir / name
        executable.write_text("#!/bin/sh\n", encoding="utf-8")
        executable.chmod(0o755)
    return bin_dir


def _which_in(bin_dir: Path):
    def which(name: str) -> str | None:
        candidate = bin_dir / name
        return str(candidate) if candidate.exists() else None

    return which


def test_podman_is_preferred_over_docker(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path, "podman", "docker")

    engine = resolve_engine(which=_which_in(bin_dir))

    assert engine.name == "podman"
    assert engine.executable == (bin_dir / "podman").resolve()
    assert engine.capabilities.rootless_userns is True


def test_docker_is_used_when_podman_is_absent(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path, "docker")

    engine = resolve_engine(which=_which_in(bin_dir))

    assert engine.name == "docker"
    assert engine.capabilities.rootless_userns is False


def test_docker_symlink_to_podman_gets_podman_flags(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path, "podman")
    (bin_dir / "docker").symlink_to(bin_dir / "podman")

    engine = resolve_engine(preference=("docker",), which=_which_in(bin_dir))

    assert engine.name == "podman"
    argv = engine.run_argv(
        image="krebuild-widget",
        name="krebuild-widget-0a1b2c3d",
        mounts=(MountSpec(source=tmp_path, target="/tmp/buildresult"),),
    )
    assert "--userns=keep-id" in argv


def test_override_wins_over_preference(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path, "podman", "docker")

    engine = resolve_engine(override="docker", which=_which_in(bin_dir))

    assert engine.name == "docker"


def test_missing_override_is_reported(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path, "podman")

    with pytest.raises(EngineNotFound) as exc_info:
        resolve_engine(override="nerdctl", which=_which_in(bin_dir))

    assert exc_info.value.code == "E_ENGINE_NOT_FOUND"
    assert exc_info.value.context["override"] == "nerdctl"


def test_no_engine_on_path(tmp_path: Path) -> None:
    bin_dir = _path_with(tmp_path)

    with pytest.raises(EngineNotFound) as exc_info:
        resolve_engine(which=_which_in(bin_dir))

    assert "--overwrite-container-executable" in (exc_info.value.hint or "")


def test_podman_command_lines(tmp_path: Path, podman_engine: ContainerEngine) -> None:
    assert podman_engine.build_argv(tag="krebuild-widget") == (
        "/usr/bin/podman",
        "build",
        "--rm=true",
        "--tag=krebuild-widget",
        ".",
    )
    assert "--quiet" in podman_engine.build_argv(tag="krebuild-widget", quiet=True)
    assert podman_engine.run_argv(
        image="krebuild-widget",
        name="krebuild-widget-0a1b2c3d",
        mounts=(MountSpec(source=tmp_path, target="/tmp/buildresult"),),
    ) == (
        "/usr/bin/podman",
        "run",
        "--rm",
        "--userns=keep-id",
        "--name",
        "krebuild-widget-0a1b2c3d",
        "--volume",
        f"{tmp_path}:/tmp/buildresult:Z",
        "krebuild-widget",
    )
    assert podman_engine.stop_argv("c1") == ("/usr/bin/podman", "stop", "c1")
    assert podman_engine.remove_argv("c1") == ("/usr/bin/podman", "rm", "--force", "c1")


def test_docker_command_lines_omit_userns(tmp_path: Path) -> None:
    docker = ContainerEngine(
        name="docker",
        executable=Path("/usr/bin/docker"),
        capabilities=capabilities_for("docker"),
    )

    argv = docker.run_argv(
        image="krebuild-widget",
        name="c1",
        mounts=(MountSpec(source=tmp_path, target="/src", read_only=True),),
        remove=False,
    )

    assert "--userns=keep-id" not in argv
    assert "--rm" not in argv
    assert f"{tmp_path}:/src:ro,Z" in argv


def test_unknown_engine_gets_plain_flags() -> None:
    engine = ContainerEngine(
        name="nerdctl",
        executable=Path("/usr/local/bin/nerdctl"),
        capabilities=capabilities_for("nerdctl"),
    )

    assert engine.capabilities == EngineCapabilities()
    assert engine.build_argv(tag="t", quiet=True) == ("/usr/local/bin/nerdctl", "build", "--tag=t", ".")
    assert engine.volume_arg(MountSpec(source=Path("/a"), target="/b")) == "/a:/b"
