"""Single-shot source archive download with status and integrity checks."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit
from urllib.request import urlopen

from krebuild.errors import FetchFailed

HTTP_OK = 200

Opener = Callable[[str], Any]


def download(
    url: str,
    destination: Path,
    *,
    sha256: str = "",
    opener: Opener = urlopen,
) -> Path:
    """Download *url* to *destination*; no retry, any failure is terminal."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination.with_name(destination.name + ".part")
    digest = hashlib.sha256()
    try:
        with opener(url) as response:  # noqa: S310 - pinned URL, hash checked below when set
            status = getattr(response, "status", None)
            if urlsplit(url).scheme in ("http", "https") and status != HTTP_OK:
                raise FetchFailed(
                    "Unexpected HTTP status code for source archive.",
                    hint="Check that the pinned URL still exists upstream.",
                    context={"url": url, "got": str(status), "want": str(HTTP_OK)},
                )
            with temp_path.open("wb") as out:
                while chunk := response.read(1 << 20):
                    digest.update(chunk)
                    out.write(chunk)
    except HTTPError as exc:
        temp_path.unlink(missing_ok=True)
        raise FetchFailed(
            "Unexpected HTTP status code for source archive.",
            hint="Check that the pinned URL still exists upstream.",
            context={"url": url, "got": str(exc.code), "want": str(HTTP_OK)},
        ) from exc
    except (URLError, OSError) as exc:
        temp_path.unlink(missing_ok=True)
        raise FetchFailed(
            "Source archive download failed.",
            context={"url": url, "error": str(exc)},
        ) from exc
    except FetchFailed:
        temp_path.unlink(missing_ok=True)
        raise

    actual = digest.hexdigest()
    if sha256 and actual != sha256:
        temp_path.unlink(missing_ok=True)
        raise FetchFailed(
            "Source archive hash mismatch.",
            hint="Update the pinned sha256 or source URL to a trusted immutable archive.",
            context={"url": url, "expected": sha256, "actual": actual},
        )

    os.replace(temp_path, destination)
    return destination
