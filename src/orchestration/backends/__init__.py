"""Generation backend clients."""

from .base import GenerationBackend
from .fal_backend import FalBackend

__all__ = [
    "GenerationBackend",
    "FalBackend",
]
