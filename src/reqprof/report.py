"""
Report generation after a profiling session.
"""

import os
import subprocess
import sys
from typing import Final

from . import logger
from .controller import ProfilingController, Session, SessionState
from .errors import EngineError
from .paths import PathPolicy

DEFAULT_REPORT_COMMAND: Final = (sys.executable, "-m", "reqprof")


class ReportInvoker:
    """
    Renders a finished session through an external command.

    Reporting never fails a request: every problem is logged and
    :meth:`invoke` returns False.
    """

    def __init__(
        self,
        controller: ProfilingController,
        paths: PathPolicy,
        command: "list[str] | tuple[str, ...]" = DEFAULT_REPORT_COMMAND,
        timeout: float | None = None,
        verbose: bool = False,
    ) -> None:
        self.controller = controller
        self.paths = paths
        self.command = list(command)
        self.timeout = timeout
        self.verbose = verbose

    def build_command(self, session: Session, environ: dict) -> list[str]:
        return [
            *self.command,
            "-f",
            session.result_path,
            "-o",
            self.paths.report_dir_path(environ),
        ]

    def invoke(self, session: Session, environ: dict) -> bool:
        """
        Flush the engine with a null cycle, then run the report command.

        Returns:
            bool: True if the report was generated.
        """
        if session.state is not SessionState.Stopped or not session.id:
            return False

        try:
            self.controller.null_cycle(self.paths.null_file_path(environ))
        except EngineError as e:
            logger.log_error_panel(
                f"Process {os.getpid()} could not flush session {session.id}: {e}"
            )
            return False

        cmd = self.build_command(session, environ)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
            )
        except OSError as e:
            logger.log_error_panel(f"Cannot run report command `{cmd[0]}`: {e}")
            return False
        except subprocess.TimeoutExpired:
            logger.log_error_panel(
                f"Report command for session {session.id} timed out after "
                f"{self.timeout} seconds"
            )
            return False

        if proc.returncode != 0:
            logger.log_error_panel(
                f"Report command `{' '.join(cmd)}` exited with code {proc.returncode}"
                + (f"\n{proc.stderr.strip()}" if proc.stderr.strip() else "")
            )
            return False

        session.mark_reported()
        if self.verbose:
            logger.log_success_panel(
                f"Generated the report of session {session.id} in "
                f"`{self.paths.report_dir_path(environ)}`"
            )
        return True
