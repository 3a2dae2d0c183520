"""Container engine interfaces and discovery."""

from .base import ContainerEngine, EngineCapabilities, MountSpec
from .resolve import (
    DEFAULT_PREFERENCE,
    ENGINE_CAPABILITIES,
    capabilities_for,
    resolve_engine,
)

__all__ = [
    "DEFAULT_PREFERENCE",
    "ENGINE_CAPABILITIES",
    "ContainerEngine",
    "EngineCapabilities",
    "MountSpec",
    "capabilities_for",
    "resolve_engine",
]
