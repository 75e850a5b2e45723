from collections.abc import Callable
from typing import Any

Hook = Callable[[Any, dict], Any]


def noop_hook(middleware: Any, environ: dict) -> None:
    pass


class HookDispatcher:
    """
    Runs the user callbacks around a profiling session.

    ``before`` runs strictly before the engine starts, ``after`` strictly
    after reporting (or after the engine stops when reporting is off).
    Hooks are not trapped: whatever they raise fails the request.
    """

    def __init__(self, before: Hook = noop_hook, after: Hook = noop_hook) -> None:
        self._before = before
        self._after = after

    def before(self, middleware: Any, environ: dict) -> None:
        self._before(middleware, environ)

    def after(self, middleware: Any, environ: dict) -> None:
        self._after(middleware, environ)
