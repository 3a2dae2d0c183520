"""In-container build driver."""

from .fetch import download
from .pipeline import BuildDriver

__all__ = ["BuildDriver", "download"]
