"""
Profiling engines.

An engine owns the actual measurement and the profile file on disk. The
controller only drives it through ``configure``, ``disable``, ``begin``,
``end`` and ``finalize``.
"""

import cProfile
import os
import threading
import weakref
from abc import ABC, abstractmethod
from typing import Final

from typing_extensions import override

from .errors import EngineConfigurationError, EngineError

ENV_DIRECTIVE: Final = "REQPROF"
DEFAULT_ENGINE_FILE: Final = "reqprof.out"

ERROR_ALREADY_ACTIVE: Final = "the profiling engine is already active"
ERROR_NOT_ACTIVE: Final = "the profiling engine is not active"

_START_VALUES: Final = ("no", "begin")
_BOOL_VALUES: Final = ("0", "1")
_KNOWN_OPTIONS: Final = ("start", "builtins", "file")


class ProfilingEngine(ABC):
    """Abstract base class for profiling engines."""

    @abstractmethod
    def configure(self, directive: str) -> None:
        """
        Apply the environment directive. Called once per process before
        any session starts.

        Raises:
            EngineConfigurationError: if the engine cannot be set up.
        """
        pass  # pragma: no cover

    @abstractmethod
    def disable(self) -> None:
        """Force the engine into a quiescent state."""
        pass  # pragma: no cover

    @abstractmethod
    def begin(self, path: str) -> None:
        """Start writing profile data to ``path``."""
        pass  # pragma: no cover

    @abstractmethod
    def end(self) -> None:
        """Stop writing profile data."""
        pass  # pragma: no cover

    @abstractmethod
    def finalize(self) -> None:
        """Best-effort cleanup at process exit."""
        pass  # pragma: no cover

    @property
    @abstractmethod
    def active(self) -> bool:
        pass  # pragma: no cover


def parse_directive(directive: str) -> dict[str, str]:
    """
    Parse a colon separated ``key=value`` directive such as
    ``"start=no:builtins=0"``.

    Raises:
        EngineConfigurationError: on a malformed item, an unknown key or a
            bad value.
    """
    options: dict[str, str] = {}
    for item in directive.split(":"):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep:
            raise EngineConfigurationError(f"malformed engine directive item {item!r}")
        if key not in _KNOWN_OPTIONS:
            raise EngineConfigurationError(f"unknown engine directive option {key!r}")
        options[key] = value
    if options.get("start", "no") not in _START_VALUES:
        raise EngineConfigurationError(
            f"start must be one of {_START_VALUES}, got {options['start']!r}"
        )
    if options.get("builtins", "1") not in _BOOL_VALUES:
        raise EngineConfigurationError(
            f"builtins must be 0 or 1, got {options['builtins']!r}"
        )
    return options


_engines: "weakref.WeakSet[CProfileEngine]" = weakref.WeakSet()


def _reset_engines_in_child() -> None:
    for engine in list(_engines):
        engine._reset_after_fork()


class CProfileEngine(ProfilingEngine):
    """
    An engine backed by :mod:`cProfile`.

    Profile data is written lazily: ``end`` only pauses the profiler and the
    data stays pending until the next ``begin`` or ``finalize`` writes it to
    its file. A dummy ``begin``/``end`` pair therefore flushes the previous
    profile to disk.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._profile: cProfile.Profile | None = None
        self._path: str | None = None
        self._active = False
        self._pending = False
        self.builtins = True
        self.options: dict[str, str] = {}
        _engines.add(self)

    @property
    @override
    def active(self) -> bool:
        return self._active

    @property
    def pending_path(self) -> str | None:
        """Path of a profile that was ended but not written yet."""
        return self._path if self._pending else None

    @override
    def configure(self, directive: str) -> None:
        with self._lock:
            os.environ[ENV_DIRECTIVE] = directive
            self.options = parse_directive(directive)
            self.builtins = self.options.get("builtins", "1") == "1"
            if self.options.get("start", "no") == "begin":
                self.begin(self.options.get("file", DEFAULT_ENGINE_FILE))

    @override
    def disable(self) -> None:
        with self._lock:
            if self._active:
                self.end()

    @override
    def begin(self, path: str) -> None:
        with self._lock:
            if self._active:
                raise EngineError(ERROR_ALREADY_ACTIVE)
            self._flush_pending()
            profile = cProfile.Profile(builtins=self.builtins)
            try:
                profile.enable()
            except ValueError as e:
                # another profiler already owns the interpreter
                raise EngineError(f"cannot enable the profiler: {e}") from e
            self._profile = profile
            self._path = path
            self._active = True

    @override
    def end(self) -> None:
        with self._lock:
            if not self._active or self._profile is None:
                raise EngineError(ERROR_NOT_ACTIVE)
            self._profile.disable()
            self._active = False
            self._pending = True

    @override
    def finalize(self) -> None:
        with self._lock:
            if self._active:
                self.end()
            self._flush_pending()

    def _flush_pending(self) -> None:
        if not self._pending:
            return
        profile, path = self._profile, self._path
        self._pending = False
        self._profile = None
        assert profile is not None and path is not None
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            profile.dump_stats(path)
        except OSError as e:
            raise EngineError(f"cannot write profile data to {path}: {e}") from e

    def _reset_after_fork(self) -> None:
        # the parent's profile belongs to the parent, never write it here
        self._lock = threading.RLock()
        self._profile = None
        self._path = None
        self._active = False
        self._pending = False

    def __repr__(self) -> str:
        return f"CProfileEngine(active={self._active}, path={self._path!r})"


os.register_at_fork(after_in_child=_reset_engines_in_child)

_default_engine: CProfileEngine | None = None
_default_engine_lock = threading.Lock()


def get_default_engine() -> CProfileEngine:
    """Return the process-wide engine shared by all middleware instances."""
    global _default_engine
    with _default_engine_lock:
        if _default_engine is None:
            _default_engine = CProfileEngine()
        return _default_engine
