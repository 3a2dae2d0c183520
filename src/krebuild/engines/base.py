"""Container engine descriptor and command-line construction."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class MountSpec:
    source: Path
    target: str
    read_only: bool = False


@dataclass(frozen=True, slots=True)
class EngineCapabilities:
    """Flags an engine accepts; looked up once when the engine is resolved."""

    rootless_userns: bool = False
    quiet_build: bool = False
    selinux_relabel: bool = False
    remove_intermediate: bool = False


@dataclass(frozen=True, slots=True)
class ContainerEngine:
    """A resolved container engine.

    ``name`` is the canonical basename after symlink resolution, which is
    what the capability table is keyed on: a ``docker`` that is really a
    link to ``podman`` behaves like ``podman``.
    """

    name: str
    executable: Path
    capabilities: EngineCapabilities

    def build_argv(self, *, tag: str, context: str = ".", quiet: bool = False) -> tuple[str, ...]:
        argv = [str(self.executable), "build"]
        if self.capabilities.remove_intermediate:
            argv.append("--rm=true")
        if quiet and self.capabilities.quiet_build:
            argv.append("--quiet")
        argv.extend([f"--tag={tag}", context])
        return tuple(argv)

    def run_argv(
        self,
        *,
        image: str,
        name: str,
        mounts: tuple[MountSpec, ...],
        remove: bool = True,
    ) -> tuple[str, ...]:
        argv = [str(self.executable), "run"]
        if remove:
            argv.append("--rm")
        if self.capabilities.rootless_userns:
            argv.append("--userns=keep-id")
        argv.extend(["--name", name])
        for mount in mounts:
            argv.extend(["--volume", self.volume_arg(mount)])
        argv.append(image)
        return tuple(argv)

    def stop_argv(self, name: str) -> tuple[str, ...]:
        return (str(self.executable), "stop", name)

    def remove_argv(self, name: str) -> tuple[str, ...]:
        return (str(self.executable), "rm", "--force", name)

    def volume_arg(self, mount: MountSpec) -> str:
        options: list[str] = []
        if mount.read_only:
            options.append("ro")
        if self.capabilities.selinux_relabel:
            options.append("Z")
        volume = f"{mount.source}:{mount.target}"
        if options:
            volume = f"{volume}:{','.join(options)}"
        return volume
