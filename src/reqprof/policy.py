"""
Stock predicates deciding whether a request gets profiled.

A predicate takes the WSGI environ and returns a bool. It runs once per
request before anything else, so it should stay cheap.
"""

import random
from collections.abc import Callable
from urllib.parse import parse_qs

Predicate = Callable[[dict], bool]


def always(environ: dict) -> bool:
    return True


def never(environ: dict) -> bool:
    return False


def sample(rate: float, rng: random.Random | None = None) -> Predicate:
    """
    Profile roughly ``rate`` of all requests.

    Args:
        rate (float): fraction in [0, 1].
        rng (random.Random | None): random source, mostly for tests.
    Raises:
        ValueError: if rate is out of range.
    """
    if not 0.0 <= rate <= 1.0:
        raise ValueError("rate must be between 0 and 1")
    source = rng or random.Random()

    def _sample(environ: dict) -> bool:
        return source.random() < rate

    return _sample


def header_present(name: str, value: str | None = None) -> Predicate:
    """Profile requests carrying the header ``name`` (optionally equal to ``value``)."""
    key = "HTTP_" + name.upper().replace("-", "_")

    def _header(environ: dict) -> bool:
        if key not in environ:
            return False
        return value is None or environ[key] == value

    return _header


def query_param(name: str) -> Predicate:
    """Profile requests with ``name`` in the query string, e.g. ``?profile=1``."""

    def _query(environ: dict) -> bool:
        params = parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True)
        return name in params

    return _query


def path_prefix(*prefixes: str) -> Predicate:
    def _prefix(environ: dict) -> bool:
        return environ.get("PATH_INFO", "").startswith(prefixes)

    return _prefix


def any_of(*predicates: Predicate) -> Predicate:
    def _any(environ: dict) -> bool:
        return any(predicate(environ) for predicate in predicates)

    return _any


def all_of(*predicates: Predicate) -> Predicate:
    def _all(environ: dict) -> bool:
        return all(predicate(environ) for predicate in predicates)

    return _all
