"""
WSGI middleware profiling requests one session at a time.

    from reqprof import SessionMiddleware

    app = SessionMiddleware(app, result_dir="profiles", enable_reporting=False)
"""

from __future__ import annotations

import os
import typing as t
from collections.abc import Callable

from . import logger
from .config import ProfilerConfig
from .controller import (
    ProcessInitState,
    ProfilingController,
    Session,
)
from .errors import EngineError, SessionStartError
from .hooks import HookDispatcher
from .paths import PROFILE_ID
from .report import ReportInvoker

if t.TYPE_CHECKING:
    from _typeshed.wsgi import StartResponse, WSGIApplication, WSGIEnvironment

R = t.TypeVar("R")


class SessionMiddleware:
    """
    Wraps a WSGI application and profiles the requests picked by
    ``config.enable_profile``.

    Per profiled request the order is: session created, before hook,
    engine started, application, engine stopped, report, after hook. The
    engine is stopped on every exit path. When the application raises,
    the report and the after hook are skipped and the error propagates.
    """

    def __init__(
        self,
        app: WSGIApplication | None = None,
        config: ProfilerConfig | None = None,
        *,
        process_state: ProcessInitState | None = None,
        **options: t.Any,
    ) -> None:
        if config is not None and options:
            raise TypeError("pass either a ProfilerConfig or keyword options, not both")
        self.app = app
        self.config = config or ProfilerConfig(**options)
        self.paths = self.config.paths
        self.controller = ProfilingController(
            self.config.engine,
            env_directive=self.config.env_directive,
            process_state=process_state,
            verbose=self.config.verbose,
        )
        self.hooks = HookDispatcher(
            before=self.config.before_profile, after=self.config.after_profile
        )
        self.reporter = ReportInvoker(
            self.controller,
            self.paths,
            command=self.config.report_command,
            timeout=self.config.report_timeout,
            verbose=self.config.verbose,
        )

    def create_session(self, environ: dict) -> Session:
        """Generate the session id, expose it in the environ and fix the result path."""
        session_id = self.config.generate_id(environ)
        environ[PROFILE_ID] = session_id
        return Session(session_id, self.paths.result_file_path(environ))

    def profile_call(
        self,
        environ: dict,
        handler: Callable[[], R],
        unprofiled: Callable[[], R] | None = None,
    ) -> R:
        """
        Run ``handler`` for the request described by ``environ``, profiling
        it when the enable predicate says so.

        Args:
            environ: the request context.
            handler: runs the wrapped pipeline.
            unprofiled: runs the pipeline when the request is not profiled,
                defaults to ``handler``.
        Raises:
            EngineConfigurationError: if the engine cannot be configured in
                this process.
        """
        plain = unprofiled or handler
        self.controller.ensure_process_initialized()

        if not self.config.enable_profile(environ):
            return plain()

        session = self.create_session(environ)
        self.hooks.before(self, environ)
        try:
            self.controller.start(session)
        except SessionStartError as e:
            logger.log_error_panel(
                f"Process {os.getpid()} runs this request unprofiled: {e}"
            )
            return plain()

        try:
            response = handler()
        finally:
            stopped = self._stop(session)

        if not stopped:
            return response
        if self.config.enable_reporting:
            self.reporter.invoke(session, environ)
        elif self.config.verbose:
            logger.log_success_panel(
                f"Session {session.id} profiled into `{session.result_path}`"
            )
        self.hooks.after(self, environ)
        return response

    def _stop(self, session: Session) -> bool:
        try:
            self.controller.stop(session)
        except EngineError as e:
            logger.log_error_panel(f"Cannot stop session {session.id}: {e}")
            return False
        return True

    def shutdown(self) -> None:
        """Write out pending profile data now instead of at process exit."""
        self.controller.shutdown()

    def __call__(
        self, environ: WSGIEnvironment, start_response: StartResponse
    ) -> t.Iterable[bytes]:
        if self.app is None:
            raise RuntimeError("SessionMiddleware has no application to wrap")
        app = self.app
        response_body: list[bytes] = []

        def catching_start_response(status, headers, exc_info=None):
            start_response(status, headers, exc_info)
            return response_body.append

        def run_profiled() -> t.Iterable[bytes]:
            # consume the body inside the session so lazy bodies are measured
            app_iter = app(environ, t.cast("StartResponse", catching_start_response))
            try:
                response_body.extend(app_iter)
            finally:
                if hasattr(app_iter, "close"):
                    app_iter.close()
            return [b"".join(response_body)]

        def run_plain() -> t.Iterable[bytes]:
            return app(environ, start_response)

        return self.profile_call(t.cast(dict, environ), run_profiled, run_plain)

    def __repr__(self) -> str:
        return f"SessionMiddleware(app={self.app!r}, config={self.config!r})"
