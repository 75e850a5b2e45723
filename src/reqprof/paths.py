"""
Where profile data and reports go.

Every location is a function of the request context (the WSGI environ), so
output can be split by route, tenant or anything else found in the request.
The policy only maps a context to path strings, creating directories is
left to the engine that writes the file.
"""

import os
from collections.abc import Callable
from typing import Final

PROFILE_ID: Final = "reqprof.profile_id"

DEFAULT_RESULT_DIR: Final = "."
DEFAULT_REPORT_DIR: Final = "report"
DEFAULT_NULL_FILE_NAME: Final = "reqprof.null.out"

PathFunc = Callable[[dict], str]


def constant(value: str) -> PathFunc:
    """Wrap a fixed string into a path function."""

    def _constant(environ: dict) -> str:
        return value

    _constant.__qualname__ = f"constant({value!r})"
    return _constant


def as_path_func(value: "str | os.PathLike | PathFunc | None", default: str) -> PathFunc:
    """
    Normalize a configured location into a function of the environ.

    Args:
        value: a callable taking the environ, a plain string (or path-like),
            or None for the default.
        default: the fallback string.
    Raises:
        TypeError: if the value is neither a string nor callable.
    """
    if value is None:
        return constant(default)
    if isinstance(value, (str, os.PathLike)):
        return constant(os.fspath(value))
    if callable(value):
        return value
    raise TypeError(f"expected a string or a callable, got {type(value).__name__}")


def default_result_file_name(environ: dict) -> str:
    return f"reqprof.{environ[PROFILE_ID]}.out"


class PathPolicy:
    """A pure mapping from a request context to output locations."""

    __slots__ = ("null_file_name", "report_dir", "result_dir", "result_file_name")

    def __init__(
        self,
        result_dir: PathFunc,
        result_file_name: PathFunc,
        null_file_name: str = DEFAULT_NULL_FILE_NAME,
        report_dir: PathFunc = constant(DEFAULT_REPORT_DIR),
    ) -> None:
        self.result_dir = result_dir
        self.result_file_name = result_file_name
        self.null_file_name = null_file_name
        self.report_dir = report_dir

    def result_file_path(self, environ: dict) -> str:
        return os.path.join(self.result_dir(environ), self.result_file_name(environ))

    def null_file_path(self, environ: dict) -> str:
        return os.path.join(self.result_dir(environ), self.null_file_name)

    def report_dir_path(self, environ: dict) -> str:
        return self.report_dir(environ)

    def __repr__(self) -> str:
        return (
            f"PathPolicy(result_dir={self.result_dir!r}, "
            f"null_file_name={self.null_file_name!r})"
        )
