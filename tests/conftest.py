"""Shared test fixtures."""

from __future__ import annotations

import io
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

import pytest

from krebuild.engines import ContainerEngine, capabilities_for
from krebuild.models import ArtifactSpec, BuildSpec


@dataclass
class RecordedCall:
    argv: tuple[str, ...]
    cwd: Path | None
    env: dict[str, str] | None
    stdin: bytes | None


@dataclass
class FakeRunner:
    """Records every command; ``handler`` decides the exit status (default 0)."""

    handler: Callable[[RecordedCall], int] | None = None
    calls: list[RecordedCall] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: IO[bytes] | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        call = RecordedCall(
            argv=tuple(argv),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=stdin.read() if stdin is not None else None,
        )
        self.calls.append(call)
        if self.handler is None:
            return 0
        return self.handler(call)

    def argvs(self) -> list[tuple[str, ...]]:
        return [call.argv for call in self.calls]


SAMPLE_OUTPUTS = {
    "arch/arm64/boot/Image": b"kernel image",
    "arch/arm64/boot/dts/board.dtb": b"device tree",
}


def toolchain(
    source_root: Path,
    outputs: Mapping[str, bytes] = SAMPLE_OUTPUTS,
    fail: Callable[[RecordedCall], int] | None = None,
) -> Callable[[RecordedCall], int]:
    """Pretend to be tar, unzip, patch and make operating on *source_root*."""

    def handler(call: RecordedCall) -> int:
        if fail is not None:
            returncode = fail(call)
            if returncode:
                return returncode
        program = call.argv[0]
        if program in ("tar", "unzip"):
            source_root.mkdir(parents=True)
        elif program == "make" and call.argv[2] == "defconfig":
            (source_root / ".config").write_text("CONFIG_DEFAULT=y\n", encoding="utf-8")
        elif program == "make" and "modules_install" in call.argv:
            install_root = Path(call.argv[2].split("=", 1)[1])
            modules = install_root / "lib" / "modules" / "1.0.0"
            modules.mkdir(parents=True)
            (modules / "modules.dep").write_text("", encoding="utf-8")
        elif program == "make" and call.argv[-1].startswith("-j"):
            for relative, data in outputs.items():
                path = source_root / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
        return 0

    return handler


class FakeResponse:
    def __init__(self, status: int | None, body: bytes = b"") -> None:
        self.status = status
        self._body = io.BytesIO(body)

    def read(self, size: int = -1) -> bytes:
        return self._body.read(size)

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_opener() -> Callable[..., Callable[[str], FakeResponse]]:
    """Build an ``urlopen`` stand-in that answers every URL with one response."""

    def factory(status: int | None = 200, body: bytes = b"archive") -> Callable[[str], FakeResponse]:
        def opener(url: str) -> FakeResponse:
            return FakeResponse(status, body)

        return opener

    return factory


@pytest.fixture
def podman_engine() -> ContainerEngine:
    return ContainerEngine(
        name="podman",
        executable=Path("/usr/bin/podman"),
        capabilities=capabilities_for("podman"),
    )


@pytest.fixture
def sample_spec() -> BuildSpec:
    return BuildSpec(
        name="widget",
        source_url="https://downloads.example.org/widget-1.0.tar.xz",
        patches=("0001-first.patch", "0002-second.patch"),
        inputs=("boot.cmd",),
        arch="arm64",
        cross_compile="aarch64-linux-gnu-",
        defconfig="defconfig",
        config_addendum="CONFIG_WIDGET=y",
        make_targets=("Image",),
        build_env={"KBUILD_BUILD_TIMESTAMP": "Wed Mar  1 20:57:29 UTC 2017"},
        artifacts=(
            ArtifactSpec("vmlinuz", "arch/arm64/boot/Image", Path("out/vmlinuz")),
            ArtifactSpec("board.dtb", "arch/arm64/boot/dts/board.dtb", Path("out/board.dtb")),
        ),
        packages=("make", "patch"),
    )


@pytest.fixture
def input_dir(tmp_path: Path, sample_spec: BuildSpec) -> Path:
    """Directory holding the sample build's patches and extra inputs."""
    directory = tmp_path / "inputs"
    directory.mkdir()
    for name in (*sample_spec.patches, *sample_spec.inputs):
        (directory / name).write_text(f"contents of {name}\n", encoding="utf-8")
    return directory
