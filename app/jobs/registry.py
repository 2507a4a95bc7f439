"""Job registry for mapping job names to functions."""

from __future__ import annotations

from collections.abc import Callable

from app.core.logging import get_logger


logger = get_logger("jobs.registry")

# Global job registry: name -> (function, interval seconds getter)
_registry: dict[str, tuple[Callable, Callable[[], int]]] = {}


def register_job(name: str, interval: Callable[[], int]) -> Callable:
    """
    Decorator to register a periodic job.

    ``interval`` is evaluated when the scheduler starts, so settings
    overrides applied before startup are honoured.

    Usage:
        @register_job("refresh_portfolio_symbols", lambda: settings.portfolio_refresh_seconds)
        async def refresh_active_portfolio_symbols():
            ...
    """

    def decorator(func: Callable) -> Callable:
        _registry[name] = (func, interval)
        logger.debug(f"Registered job: {name}")
        return func

    return decorator


def get_job(name: str) -> Callable | None:
    """Get a registered job function by name."""
    entry = _registry.get(name)
    return entry[0] if entry else None


def get_all_jobs() -> dict[str, tuple[Callable, Callable[[], int]]]:
    """Get all registered jobs with their interval getters."""
    return _registry.copy()
