import itertools
import os
import time

# ids drawn within the same microsecond differ by this sequence number
_sequence = itertools.count()


def default_generate_id(environ: dict | None = None) -> str:
    """
    Build a session id from the process id, the current wall clock with
    microsecond resolution and a per-process sequence number, e.g.
    ``"4242-1700000000.123456-17"``.
    """
    sec, nsec = divmod(time.time_ns(), 1_000_000_000)
    return f"{os.getpid()}-{sec}.{nsec // 1000:06d}-{next(_sequence)}"
