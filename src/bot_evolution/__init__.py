"""
bot_evolution
=============

Distributed trial dispatch, log-to-event extraction, fitness scoring and
generational evolution of game-bot heuristic weights.
"""

from importlib.metadata import PackageNotFoundError, version


def get_version() -> str:
    """Return the installed package version or '0.0.0' when unavailable."""
    try:
        return version("bot_evolution")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
