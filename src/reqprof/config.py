"""
Configuration file handling and middleware options for reqprof.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

from . import logger
from .controller import DEFAULT_ENV_DIRECTIVE
from .engine import ProfilingEngine, get_default_engine
from .hooks import Hook, noop_hook
from .identity import default_generate_id
from .paths import (
    DEFAULT_NULL_FILE_NAME,
    DEFAULT_REPORT_DIR,
    DEFAULT_RESULT_DIR,
    PathFunc,
    PathPolicy,
    as_path_func,
    default_result_file_name,
)
from .policy import Predicate, always
from .report import DEFAULT_REPORT_COMMAND

CONFIG_DIR = ".reqprof"
CONFIG_FILE = ".reqprofrc"

# options that can be read from the rc file, with their accepted types
RC_OPTIONS: dict[str, tuple[type, ...]] = {
    "enable_reporting": (bool,),
    "env_directive": (str,),
    "result_dir": (str,),
    "report_dir": (str,),
    "null_file_name": (str,),
    "report_command": (list,),
    "report_timeout": (int, float),
    "verbose": (bool,),
}


def _safe_print(message: str) -> None:
    """Print message only if output is not suppressed."""
    if not logger.is_suppressed():
        logger.console.print(message)


def _safe_input(prompt: str) -> str:
    """Get user input, in testing input() is mocked."""
    return input(prompt)


class ReqProfConfig:
    """Configuration file manager for reqprof."""

    def __init__(self) -> None:
        self.config_path = self._get_config_path()

    def _get_config_path(self) -> Path:
        """Get the path to the configuration file."""
        home_dir = Path.home()
        config_dir = home_dir / CONFIG_DIR
        return config_dir / CONFIG_FILE

    def load_config(self) -> dict[str, Any]:
        """
        Load configuration from ~/.reqprof/.reqprofrc file.

        Returns:
            dict[str, Any]: Configuration dictionary. Empty dict if file doesn't exist.
        """
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config = json.load(f)
                if not isinstance(config, dict):
                    _safe_print(
                        f"[yellow]Warning: Configuration file {self.config_path} "
                        "is not a valid JSON object. Ignoring.[/yellow]"
                    )
                    return {}
                return config
        except json.JSONDecodeError as e:
            _safe_print(
                f"[red]Error: Invalid JSON in configuration file "
                f"{self.config_path}: {e}[/red]"
            )
            return {}
        except OSError as e:  # pragma: no cover
            _safe_print(
                f"[red]Error loading configuration file {self.config_path}: {e}[/red]"
            )
            return {}

    def middleware_options(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Pick the middleware options out of a loaded configuration.
        Unknown keys and values of the wrong type are reported and skipped.

        Args:
            config (dict[str, Any]): Configuration dictionary from file
        Returns:
            dict[str, Any]: Keyword arguments for ProfilerConfig.
        """
        options: dict[str, Any] = {}
        for key, value in config.items():
            if key == "args":
                continue
            if key not in RC_OPTIONS:
                _safe_print(
                    f"[yellow]Warning: unknown option '{key}' in configuration "
                    "file. Ignoring.[/yellow]"
                )
                continue
            expected = RC_OPTIONS[key]
            if not isinstance(value, expected) or (
                bool not in expected and isinstance(value, bool)
            ):
                _safe_print(
                    f"[yellow]Warning: '{key}' in configuration file should be "
                    f"{' or '.join(t.__name__ for t in expected)}, got "
                    f"{type(value).__name__}. Ignoring.[/yellow]"
                )
                continue
            options[key] = value
        return options

    def merge_with_args(self, config: dict[str, Any], cmd_args: list[str]) -> list[str]:
        """
        Merge configuration with command line arguments.
        Command line arguments take precedence over configuration file.

        Args:
            config (dict[str, Any]): Configuration dictionary from file
            cmd_args (list[str]): Command line arguments

        Returns:
            list[str]: Merged arguments with config applied first, then command line args
        """
        if not config:
            return cmd_args

        config_args = config.get("args", [])

        if not isinstance(config_args, list):
            _safe_print(
                f"[yellow]Warning: 'args' in configuration file should be a list, "
                f"got {type(config_args).__name__}. Ignoring config args.[/yellow]"
            )
            config_args = []

        return config_args + cmd_args

    def create_example_config(self) -> None:
        """Create an example configuration file."""
        if self.config_path.exists():
            _safe_print(
                f"[yellow]Configuration file already exists at "
                f"{self.config_path}[/yellow]"
            )
            response = (
                _safe_input("Do you want to overwrite it? (y/N): ").strip().lower()
            )
            if response not in ("y", "yes"):
                _safe_print("[blue]Configuration file creation cancelled.[/blue]")
                return

        config_dir = self.config_path.parent
        config_dir.mkdir(exist_ok=True)

        example_config = {
            "enable_reporting": True,
            "env_directive": DEFAULT_ENV_DIRECTIVE,
            "result_dir": "profiles",
            "report_dir": "report",
            "null_file_name": DEFAULT_NULL_FILE_NAME,
            "report_timeout": 60,
            "verbose": False,
            # extra arguments for the `reqprof` report command
            "args": ["--width", "1600"],
        }

        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(example_config, f, indent=2)

        _safe_print(
            f"[green]Created example configuration file at {self.config_path}[/green]"
        )


def load_config_if_exists() -> dict[str, Any]:
    """
    Convenience function to load configuration if it exists.

    Returns:
        dict[str, Any]: Configuration dictionary
    """
    return ReqProfConfig().load_config()


def merge_config_with_args(cmd_args: list[str]) -> list[str]:
    """
    Convenience function to merge configuration with command line arguments.

    Args:
        cmd_args (list[str]): Command line arguments

    Returns:
        list[str]: Merged arguments
    """
    config_manager = ReqProfConfig()
    config = config_manager.load_config()
    return config_manager.merge_with_args(config, cmd_args)


class ProfilerConfig:
    """
    Options of the session middleware. Defaults are resolved here, once,
    and the object is read-only afterwards.
    """

    _fields = (
        "enable_profile",
        "enable_reporting",
        "env_directive",
        "result_dir",
        "report_dir",
        "result_file_name",
        "null_file_name",
        "generate_id",
        "before_profile",
        "after_profile",
        "engine",
        "report_command",
        "report_timeout",
        "verbose",
    )

    def __init__(
        self,
        *,
        enable_profile: Predicate | None = None,
        enable_reporting: bool = True,
        env_directive: str | None = None,
        result_dir: "str | PathFunc | None" = None,
        report_dir: "str | PathFunc | None" = None,
        result_file_name: "str | PathFunc | None" = None,
        null_file_name: str | None = None,
        generate_id: Callable[[dict], str] | None = None,
        before_profile: Hook | None = None,
        after_profile: Hook | None = None,
        engine: ProfilingEngine | None = None,
        report_command: "list[str] | tuple[str, ...] | None" = None,
        report_timeout: float | None = None,
        verbose: bool = False,
    ):
        """Initialize ProfilerConfig with keyword-only arguments.

        Args:
            enable_profile: Predicate on the WSGI environ deciding whether the
                request is profiled. Default: profile every request.
            enable_reporting: Render a report after each profiled request.
                Default: True.
            env_directive: Directive handed to the engine once per process,
                see ``reqprof.engine.parse_directive``. Default: "start=no".
            result_dir: Directory for raw profile files, a string or a function
                of the environ. Default: the current directory.
            report_dir: Directory for rendered reports, a string or a function
                of the environ. Default: "report".
            result_file_name: Profile file name, a string or a function of the
                environ. Default: "reqprof.<session id>.out".
            null_file_name: File name of the dummy profile written while
                flushing the engine. Default: "reqprof.null.out".
            generate_id: Function of the environ returning the session id.
                Default: "<pid>-<seconds>.<microseconds>".
            before_profile: Hook called as ``hook(middleware, environ)`` before
                the engine starts. Default: no-op.
            after_profile: Hook called as ``hook(middleware, environ)`` after
                reporting. Default: no-op.
            engine: The profiling engine. Default: the process-wide
                CProfileEngine.
            report_command: Command prefix of the report renderer, invoked with
                ``-f <profile> -o <report dir>``. Default: ``python -m reqprof``.
            report_timeout: Seconds to wait for the renderer, None waits
                forever. Default: None.
            verbose: Print a panel for every configured process and report.
                Default: False.
        """
        if report_timeout is not None and report_timeout <= 0:
            raise ValueError("report_timeout must be a positive number")
        if null_file_name is not None and not null_file_name:
            raise ValueError("null_file_name must not be empty")

        self.enable_profile: Predicate = enable_profile or always
        self.enable_reporting = bool(enable_reporting)
        self.env_directive: str = env_directive or DEFAULT_ENV_DIRECTIVE
        self.result_dir = as_path_func(result_dir, DEFAULT_RESULT_DIR)
        self.report_dir = as_path_func(report_dir, DEFAULT_REPORT_DIR)
        self.result_file_name = (
            default_result_file_name
            if result_file_name is None
            else as_path_func(result_file_name, "")
        )
        self.null_file_name: str = null_file_name or DEFAULT_NULL_FILE_NAME
        self.generate_id = generate_id or default_generate_id
        self.before_profile: Hook = before_profile or noop_hook
        self.after_profile: Hook = after_profile or noop_hook
        self.engine: ProfilingEngine = engine or get_default_engine()
        self.report_command: tuple[str, ...] = tuple(
            report_command or DEFAULT_REPORT_COMMAND
        )
        self.report_timeout = report_timeout
        self.verbose = verbose
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"ProfilerConfig is read-only, cannot set {name!r}")
        super().__setattr__(name, value)

    @property
    def paths(self) -> PathPolicy:
        return PathPolicy(
            result_dir=self.result_dir,
            result_file_name=self.result_file_name,
            null_file_name=self.null_file_name,
            report_dir=self.report_dir,
        )

    def replace(self, **changes: Any) -> "ProfilerConfig":
        """Return a copy with some options changed."""
        values = {name: getattr(self, name) for name in self._fields}
        values.update(changes)
        return ProfilerConfig(**values)

    @classmethod
    def from_rc(cls, **overrides: Any) -> "ProfilerConfig":
        """
        Build a configuration from ~/.reqprof/.reqprofrc, explicit keyword
        arguments win over the file.
        """
        manager = ReqProfConfig()
        options = manager.middleware_options(manager.load_config())
        options.update(overrides)
        return cls(**options)

    def __repr__(self) -> str:
        return (
            f"ProfilerConfig(enable_reporting={self.enable_reporting}, "
            f"env_directive={self.env_directive!r}, "
            f"null_file_name={self.null_file_name!r}, engine={self.engine!r})"
        )
