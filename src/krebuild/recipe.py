"""Container recipe generation.

The recipe is rendered from a fixed line structure: base image, toolchain
install, driver and plan copy-in, one copy-in per patch in declaration order,
one per extra input, the build user, the ownership fix and the entrypoint.
Rendering is pure: it touches neither the network nor the filesystem.
"""

from __future__ import annotations

import json

from krebuild.errors import ValidationError
from krebuild.models import DRIVER_PACKAGE, DRIVER_ROOT, PLAN_FILENAME, SOURCE_ROOT, BuildSpec

BUILD_USER = "builduser"


def render_recipe(spec: BuildSpec, uid: str, gid: str) -> str:
    """Render the Dockerfile for *spec* with a build user owning ``uid:gid``.

    Only the user-creation line depends on *uid* and *gid*; the ownership fix
    refers to the user by name.
    """
    _require_numeric_id("uid", uid)
    _require_numeric_id("gid", gid)
    spec.validate()

    lines: list[str] = [f"FROM {spec.base_image}", ""]
    if spec.packages:
        lines.append(
            "RUN apt-get update && apt-get install -y --no-install-recommends "
            + " ".join(spec.packages)
        )
        lines.append("")

    lines.append(f"COPY {DRIVER_PACKAGE} {DRIVER_ROOT}/{DRIVER_PACKAGE}")
    lines.append(f"COPY {PLAN_FILENAME} {SOURCE_ROOT}/{PLAN_FILENAME}")
    for patch in spec.patches:
        lines.append(f"COPY {patch} {SOURCE_ROOT}/{patch}")
    for item in spec.inputs:
        lines.append(f"COPY {item} {SOURCE_ROOT}/{item}")
    lines.append("")

    lines.append(f"RUN echo '{BUILD_USER}:x:{uid}:{gid}:nobody:/:/bin/sh' >> /etc/passwd")
    lines.append(f"RUN chown -R {BUILD_USER}: {SOURCE_ROOT}")
    lines.append("")

    entrypoint = ["python3", "-m", f"{DRIVER_PACKAGE}.driver", f"{SOURCE_ROOT}/{PLAN_FILENAME}"]
    lines.extend(
        [
            f"USER {BUILD_USER}",
            f"WORKDIR {SOURCE_ROOT}",
            f"ENV PYTHONPATH={DRIVER_ROOT}",
            f"ENTRYPOINT {json.dumps(entrypoint)}",
        ]
    )
    return "\n".join(lines) + "\n"


def _require_numeric_id(label: str, value: str) -> None:
    if not value.isdigit():
        raise ValidationError(
            f"Host {label} must be a decimal number.",
            context={label: value},
        )
