"""
Turns a pstats profile written by the cProfile engine into a report
directory: a flame graph, the folded stacks behind it and a text table.
"""

import os
import pstats
import site
from collections import defaultdict
from typing import Final

from .flamegraph import FlameGraph, shorten_frames

TITLE: Final = "reqprof Flame Graph"
SVG_FILE: Final = "flamegraph.svg"
FOLDED_FILE: Final = "profile.folded"
STATS_FILE: Final = "stats.txt"

# frames deeper than this are folded into their parent
MAX_DEPTH: Final = 256

Func = tuple[str, int, str]


class RenderError(Exception):
    """The profile file cannot be turned into a report."""


def load_stats(path: str) -> pstats.Stats:
    """
    Raises:
        RenderError: if the file is missing, unreadable or empty.
    """
    if not os.path.isfile(path):
        raise RenderError(f"profile file {path} does not exist")
    try:
        return pstats.Stats(path)
    except TypeError as e:
        # pstats refuses files without any recorded call
        raise RenderError(f"profile file {path} holds no profile data") from e
    except (OSError, ValueError, EOFError) as e:
        raise RenderError(f"cannot read profile file {path}: {e}") from e


def frame_label(func: Func) -> str:
    filename, lineno, name = func
    if filename == "~" and lineno == 0:
        return name  # builtins
    return f"{filename}:{lineno} {name}"


def _edge_time(value) -> float:
    # cProfile stores (cc, nc, tt, ct) per caller, the profile module a count
    if isinstance(value, tuple):
        return value[3]
    return 0.0


def folded_stacks(stats: pstats.Stats) -> list[str]:
    """
    Rebuild call stacks from the caller graph.

    cProfile only records caller/callee pairs, so the time of a function is
    split over its call paths by the share each caller has in its
    cumulative time. Recursive edges are cut. Counts are microseconds of
    self time.
    """
    entries: dict[Func, tuple] = stats.stats  # type: ignore[attr-defined]
    callees: dict[Func, list[tuple[Func, float]]] = defaultdict(list)
    for func, (_, _, _, _, callers) in entries.items():
        for caller, value in callers.items():
            callees[caller].append((func, _edge_time(value)))

    roots = [func for func, entry in entries.items() if not entry[4]]
    if not roots and entries:
        roots = [max(entries, key=lambda f: entries[f][3])]

    counts: dict[str, int] = defaultdict(int)

    def walk(func: Func, labels: list[str], seen: set[Func], weight: float) -> None:
        _, _, tt, _, _ = entries[func]
        labels.append(frame_label(func))
        seen.add(func)
        self_us = int(tt * weight * 1_000_000)
        if self_us > 0:
            counts[";".join(labels)] += self_us
        if len(labels) < MAX_DEPTH:
            for callee, edge in callees.get(func, ()):
                callee_ct = entries[callee][3]
                if callee in seen or callee_ct <= 0 or edge <= 0:
                    continue
                share = min(1.0, weight * edge / callee_ct)
                if share * callee_ct * 1_000_000 < 1:
                    continue
                walk(callee, labels, seen, share)
        seen.discard(func)
        labels.pop()

    for root in sorted(roots):
        walk(root, [], set(), 1.0)

    return [f"{stack} {count}" for stack, count in sorted(counts.items())]


def write_report(
    profile_path: str,
    out_dir: str,
    *,
    width: int = 1200,
    inverted: bool = False,
    title: str = TITLE,
    full_path: bool = False,
) -> dict[str, str]:
    """
    Render ``profile_path`` into ``out_dir``.

    Returns:
        dict[str, str]: absolute paths of the written files keyed by kind
        (``svg``, ``folded``, ``stats``).
    Raises:
        RenderError: if the profile cannot be read.
    """
    stats = load_stats(profile_path)
    lines = folded_stacks(stats)
    if not full_path:
        lines = shorten_frames(lines, [*site.getsitepackages(), os.getcwd()])

    os.makedirs(out_dir, exist_ok=True)
    files = {
        "svg": os.path.abspath(os.path.join(out_dir, SVG_FILE)),
        "folded": os.path.abspath(os.path.join(out_dir, FOLDED_FILE)),
        "stats": os.path.abspath(os.path.join(out_dir, STATS_FILE)),
    }

    fg = FlameGraph(
        lines,
        width=width,
        title=title,
        countname="us",
        subtitles=[f"Profile: {os.path.abspath(profile_path)}"],
        inverted=inverted,
    )
    fg.parse_input()
    with open(files["svg"], "w", encoding="utf-8") as f:
        f.write(fg.generate_svg())

    with open(files["folded"], "w", encoding="utf-8") as f:
        f.write("\n".join(lines))

    with open(files["stats"], "w", encoding="utf-8") as f:
        pstats.Stats(profile_path, stream=f).sort_stats("cumulative").print_stats()

    return files
