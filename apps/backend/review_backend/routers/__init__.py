"""HTTP routers."""

from . import decks, health, progress, review

__all__ = [
    "decks",
    "health",
    "progress",
    "review",
]
