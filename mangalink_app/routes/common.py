"""Shared helpers for the API blueprints."""

from typing import Any, Awaitable, Optional

from flask import current_app

# Upper bound for "wait": true requests
WAIT_TIMEOUT = 120


def get_services():
    """The MangaLinkServices bundle attached by create_app()."""
    return current_app.extensions['mangalink']


def run_async(coro: Awaitable, timeout: Optional[float] = 60) -> Any:
    """
    Run async coroutine in sync Flask context.

    Flask routes are sync, the mapping engine is async and lives on its own
    loop thread. This helper bridges the gap.
    """
    return get_services().runner.run(coro, timeout)
