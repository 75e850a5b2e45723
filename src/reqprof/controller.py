"""
The profiling session state machine.

A :class:`Session` is the bookkeeping record of one profiled request. The
:class:`ProfilingController` drives the engine through the session
lifecycle and owns the one-time process initialization.
"""

import atexit
import enum
import os
import threading
import weakref
from collections.abc import Callable
from typing import Final

from . import logger
from .engine import ProfilingEngine
from .errors import (
    EngineConfigurationError,
    EngineError,
    SessionStartError,
    SessionStateError,
)

DEFAULT_ENV_DIRECTIVE: Final = "start=no"

ERROR_SESSION_NOT_IDLE: Final = "session {id} cannot start from state {state}"
ERROR_SESSION_NOT_ACTIVE: Final = "session {id} cannot stop from state {state}"
ERROR_SESSION_NOT_STOPPED: Final = "session {id} cannot be reported from state {state}"
ERROR_SESSION_REENTERED: Final = (
    "session {id} cannot start, this thread already has a session active"
)
ERROR_WINDOW_HELD: Final = "cannot flush the engine while this thread has a session active"


class SessionState(enum.Enum):
    Idle = 0
    Active = 1
    Stopped = 2
    Reported = 3


class Session:
    """One profiled request. Its id and result path never change."""

    __slots__ = ("_id", "_result_path", "_state")

    def __init__(self, id: str, result_path: str) -> None:
        self._id = id
        self._result_path = result_path
        self._state = SessionState.Idle

    @property
    def id(self) -> str:
        return self._id

    @property
    def result_path(self) -> str:
        return self._result_path

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, expected: SessionState, target: SessionState, error: str):
        if self._state is not expected:
            raise SessionStateError(error.format(id=self._id, state=self._state.name))
        self._state = target

    def mark_reported(self) -> None:
        self._transition(
            SessionState.Stopped, SessionState.Reported, ERROR_SESSION_NOT_STOPPED
        )

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, state={self._state.name})"


class ProcessInitState:
    """
    Tracks which engines have been configured by which process identity.

    A forked child has a new pid, so it is treated as uninitialized and
    configures each of its engines exactly once on its own.
    """

    def __init__(self, pid_func: Callable[[], int] = os.getpid) -> None:
        self._pid_func = pid_func
        self._lock = threading.Lock()
        self._initialized: set[tuple[int, int]] = set()
        self._started: set[tuple[int, int]] = set()
        self._finalized: set[tuple[int, int]] = set()

    @property
    def pid(self) -> int:
        return self._pid_func()

    def _key(self, engine: object) -> tuple[int, int]:
        return (self.pid, id(engine))

    def is_initialized(self, engine: object) -> bool:
        return self._key(engine) in self._initialized

    def run_once(self, engine: object, func: Callable[[], None]) -> bool:
        """
        Run ``func`` once for ``engine`` and the current process identity.

        Returns:
            bool: True if ``func`` ran in this call.
        """
        key = self._key(engine)
        if key in self._initialized:
            return False
        with self._lock:
            if key in self._initialized:
                return False
            func()
            self._initialized.add(key)
            return True

    def mark_started(self, engine: object) -> bool:
        """Record a started session, True the first time for this engine and process."""
        key = self._key(engine)
        with self._lock:
            if key in self._started:
                return False
            self._started.add(key)
            return True

    def needs_finalize(self, engine: object) -> bool:
        key = self._key(engine)
        return key in self._started and key not in self._finalized

    def mark_finalized(self, engine: object) -> None:
        with self._lock:
            self._finalized.add(self._key(engine))

    def _reset_lock(self) -> None:
        # the lock may have been held by another thread at fork time
        self._lock = threading.Lock()


class ActiveWindow:
    """
    The span between an engine's ``begin`` and ``end``. Every controller
    driving the same engine shares one window, so sessions on that engine
    never overlap.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: int | None = None

    @property
    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    def acquire(self) -> bool:
        """
        Wait until the window is free and take it.

        Returns:
            bool: False without waiting if this thread already holds it.
        """
        if self.held_by_current_thread:
            return False
        self._lock.acquire()
        self._owner = threading.get_ident()
        return True

    def release(self) -> None:
        self._owner = None
        self._lock.release()

    def _reset_after_fork(self) -> None:
        # only the forking thread survives, it keeps the window if it held it
        owner = self._owner if self.held_by_current_thread else None
        self._lock = threading.Lock()
        self._owner = None
        if owner is not None:
            self.acquire()


_process_states: "list[ProcessInitState]" = []
_windows: "weakref.WeakKeyDictionary[ProfilingEngine, ActiveWindow]" = (
    weakref.WeakKeyDictionary()
)
_windows_lock = threading.Lock()


def active_window(engine: ProfilingEngine) -> ActiveWindow:
    """Return the window shared by every controller of ``engine``."""
    with _windows_lock:
        window = _windows.get(engine)
        if window is None:
            window = _windows[engine] = ActiveWindow()
        return window


def _reset_states_in_child() -> None:
    global _windows_lock
    _windows_lock = threading.Lock()
    for state in _process_states:
        state._reset_lock()
    for window in list(_windows.values()):
        window._reset_after_fork()


os.register_at_fork(after_in_child=_reset_states_in_child)


def new_process_state(pid_func: Callable[[], int] = os.getpid) -> ProcessInitState:
    state = ProcessInitState(pid_func)
    _process_states.append(state)
    return state


PROCESS_STATE: Final = new_process_state()


class ProfilingController:
    """
    Drives the engine through ``Idle -> Active -> Stopped``.

    The engine supports one active session at a time, so the window
    between ``start`` and ``stop`` is serialized per engine. Requests
    profiled concurrently on one engine wait for each other, whichever
    middleware handles them. A request re-entering the window on the
    thread that holds it runs unprofiled.
    """

    def __init__(
        self,
        engine: ProfilingEngine,
        env_directive: str = DEFAULT_ENV_DIRECTIVE,
        process_state: ProcessInitState | None = None,
        verbose: bool = False,
    ) -> None:
        self.engine = engine
        self.env_directive = env_directive
        self.process_state = process_state or PROCESS_STATE
        self.verbose = verbose
        self.window = active_window(engine)

    def ensure_process_initialized(self) -> bool:
        """
        Configure the engine once per process identity.

        Returns:
            bool: True if the engine was configured by this call.
        Raises:
            EngineConfigurationError: if the engine cannot be configured.
        """
        return self.process_state.run_once(self.engine, self._initialize)

    def _initialize(self) -> None:
        try:
            self.engine.configure(self.env_directive)
            self.engine.disable()
        except EngineConfigurationError:
            raise
        except Exception as e:
            raise EngineConfigurationError(
                f"cannot configure {self.engine!r} with {self.env_directive!r}: {e}"
            ) from e
        if self.verbose:
            logger.log_success_panel(
                f"Process {os.getpid()} configured the profiling engine "
                f"with `{self.env_directive}`"
            )


    def start(self, session: Session) -> None:
        """
        Raises:
            SessionStateError: if the session is not idle.
            SessionStartError: if the engine refused to begin, or this
                thread already has a session active on the engine.
        """
        if session.state is not SessionState.Idle:
            raise SessionStateError(
                ERROR_SESSION_NOT_IDLE.format(id=session.id, state=session.state.name)
            )
        if not self.window.acquire():
            raise SessionStartError(ERROR_SESSION_REENTERED.format(id=session.id))
        try:
            self.engine.begin(session.result_path)
        except Exception as e:
            self.window.release()
            raise SessionStartError(
                f"cannot start session {session.id} writing to {session.result_path}: {e}"
            ) from e
        session._transition(SessionState.Idle, SessionState.Active, ERROR_SESSION_NOT_IDLE)
        if self.process_state.mark_started(self.engine):
            atexit.register(self._finalize_at_exit)

    def stop(self, session: Session) -> None:
        """
        Raises:
            SessionStateError: if the session is not active.
            EngineError: if the engine failed to end, the session is
                stopped anyway.
        """
        session._transition(
            SessionState.Active, SessionState.Stopped, ERROR_SESSION_NOT_ACTIVE
        )
        try:
            self.engine.end()
        finally:
            self.window.release()

    def null_cycle(self, path: str) -> None:
        """
        Run a dummy begin/end pair against ``path`` to flush the engine.

        Raises:
            EngineError: if the engine fails, or this thread has a session
                active on the engine.
        """
        if not self.window.acquire():
            raise EngineError(ERROR_WINDOW_HELD)
        try:
            self.engine.begin(path)
            self.engine.end()
        finally:
            self.window.release()

    def shutdown(self) -> None:
        """Finalize the engine explicitly, the exit hook becomes a no-op."""
        self.process_state.mark_finalized(self.engine)
        self.engine.finalize()

    def _finalize_at_exit(self) -> None:
        if not self.process_state.needs_finalize(self.engine):
            return
        self.process_state.mark_finalized(self.engine)
        try:
            self.engine.finalize()
        except EngineError as e:  # pragma: no cover
            logger.log_error_panel(f"Process {os.getpid()} failed to finalize: {e}")
