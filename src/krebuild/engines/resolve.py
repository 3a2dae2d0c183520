"""Container engine discovery.

Candidates are probed in preference order on ``$PATH``. ``podman`` is tried
first because a ``docker`` binary may be a thin wrapper around it with
podman's flag semantics; resolving symlinks exposes that.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from krebuild.engines.base import ContainerEngine, EngineCapabilities
from krebuild.errors import EngineNotFound

DEFAULT_PREFERENCE: tuple[str, ...] = ("podman", "docker")

ENGINE_CAPABILITIES: Mapping[str, EngineCapabilities] = {
    "podman": EngineCapabilities(
        rootless_userns=True,
        quiet_build=True,
        selinux_relabel=True,
        remove_intermediate=True,
    ),
    "docker": EngineCapabilities(
        rootless_userns=False,
        quiet_build=True,
        selinux_relabel=True,
        remove_intermediate=True,
    ),
}

UNKNOWN_ENGINE_CAPABILITIES = EngineCapabilities()

Which = Callable[[str], str | None]


def capabilities_for(name: str) -> EngineCapabilities:
    return ENGINE_CAPABILITIES.get(name, UNKNOWN_ENGINE_CAPABILITIES)


def resolve_engine(
    *,
    override: str | None = None,
    preference: Sequence[str] = DEFAULT_PREFERENCE,
    which: Which = shutil.which,
) -> ContainerEngine:
    """Return the first usable engine, or the explicitly requested one."""
    if override:
        located = which(override)
        if located is None:
            raise EngineNotFound(
                "Requested container engine was not found.",
                hint="Pass an executable name on $PATH or an absolute path.",
                context={"override": override},
            )
        return _describe(Path(located))

    for candidate in preference:
        located = which(candidate)
        if located is None:
            continue
        return _describe(Path(located))

    raise EngineNotFound(
        "No container engine found in $PATH.",
        hint="Install podman or docker, or pass --overwrite-container-executable.",
        context={"candidates": ", ".join(preference)},
    )


def _describe(located: Path) -> ContainerEngine:
    canonical = located.resolve()
    return ContainerEngine(
        name=canonical.name,
        executable=canonical,
        capabilities=capabilities_for(canonical.name),
    )
