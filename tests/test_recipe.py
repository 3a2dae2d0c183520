from dataclasses import replace

import pytest

from krebuild.errors import ValidationError
from krebuild.models import BuildSpec
from krebuild.recipe import render_recipe


def test_recipe_is_deterministic(sample_spec: BuildSpec) -> None:
    assert render_recipe(sample_spec, "1000", "1000") == render_recipe(sample_spec, "1000", "1000")


def test_only_the_user_line_depends_on_ids(sample_spec: BuildSpec) -> None:
    first = render_recipe(sample_spec, "1000", "1000").splitlines()
    second = render_recipe(sample_spec, "1001", "1002").splitlines()

    assert len(first) == len(second)
    changed = [(a, b) for a, b in zip(first, second) if a != b]
    assert changed == [
        (
            "RUN echo 'builduser:x:1000:1000:nobody:/:/bin/sh' >> /etc/passwd",
            "RUN echo 'builduser:x:1001:1002:nobody:/:/bin/sh' >> /etc/passwd",
        )
    ]


def test_copy_lines_follow_patch_order_then_inputs(sample_spec: BuildSpec) -> None:
    spec = replace(sample_spec, patches=("0201-c.patch", "0001-a.patch", "0101-b.patch"))

    lines = render_recipe(spec, "1000", "1000").splitlines()
    copies = [line for line in lines if line.startswith("COPY ")]

    assert copies == [
        "COPY krebuild /opt/krebuild/krebuild",
        "COPY build-plan.json /usr/src/build-plan.json",
        "COPY 0201-c.patch /usr/src/0201-c.patch",
        "COPY 0001-a.patch /usr/src/0001-a.patch",
        "COPY 0101-b.patch /usr/src/0101-b.patch",
        "COPY boot.cmd /usr/src/boot.cmd",
    ]


def test_recipe_structure(sample_spec: BuildSpec) -> None:
    lines = render_recipe(sample_spec, "1000", "1000").splitlines()

    assert lines[0] == "FROM debian:bookworm"
    assert "RUN apt-get update && apt-get install -y --no-install-recommends make patch" in lines
    assert "RUN chown -R builduser: /usr/src" in lines
    assert lines[-4:] == [
        "USER builduser",
        "WORKDIR /usr/src",
        "ENV PYTHONPATH=/opt/krebuild",
        'ENTRYPOINT ["python3", "-m", "krebuild.driver", "/usr/src/build-plan.json"]',
    ]


def test_recipe_without_packages_skips_install(sample_spec: BuildSpec) -> None:
    recipe = render_recipe(replace(sample_spec, packages=()), "1000", "1000")

    assert "apt-get" not in recipe


@pytest.mark.parametrize(("uid", "gid"), [("root", "0"), ("1000", ""), ("-1", "1000")])
def test_non_numeric_ids_are_rejected(sample_spec: BuildSpec, uid: str, gid: str) -> None:
    with pytest.raises(ValidationError):
        render_recipe(sample_spec, uid, gid)
