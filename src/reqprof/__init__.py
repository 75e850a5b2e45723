"""
Request-scoped profiling for WSGI applications.
"""

from typing import Any

from .config import ProfilerConfig
from .controller import ProcessInitState, ProfilingController, Session, SessionState
from .engine import CProfileEngine, ProfilingEngine, get_default_engine
from .errors import (
    EngineConfigurationError,
    EngineError,
    ReqProfError,
    SessionStartError,
    SessionStateError,
)
from .middleware import SessionMiddleware
from .paths import PROFILE_ID, PathPolicy

__all__: list[str] = [
    "PROFILE_ID",
    "CProfileEngine",
    "EngineConfigurationError",
    "EngineError",
    "PathPolicy",
    "ProcessInitState",
    "ProfilerConfig",
    "ProfilingController",
    "ProfilingEngine",
    "ReqProfError",
    "Session",
    "SessionMiddleware",
    "SessionStartError",
    "SessionState",
    "SessionStateError",
    "__version__",
    "get_default_engine",
    "profile_app",
    "version",
]

__version__: str = "0.1.0"
version: str = __version__


def profile_app(app, **options: Any) -> SessionMiddleware:
    """
    Wrap a WSGI application with the profiling middleware.

    Options are the keyword arguments of :class:`ProfilerConfig`. With
    ``from_rc=True`` the defaults come from ``~/.reqprof/.reqprofrc``.

    Usage:
        app = profile_app(app, result_dir="profiles",
                          enable_profile=policy.query_param("profile"))
    """
    if options.pop("from_rc", False):
        return SessionMiddleware(app, ProfilerConfig.from_rc(**options))
    return SessionMiddleware(app, **options)
