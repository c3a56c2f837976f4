"""
Headshot orchestrator CLI - operator commands.

Commands:
- select: rank models for a requirement set
- cache-stats / clear-cache: inspect and purge caches
- usage: monthly quota usage for a user
- performance: recent performance for a model
"""

from .app import main

__all__ = [
    "main",
]
