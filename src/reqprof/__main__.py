"""
reqprof command entry point, the report renderer invoked after each
profiled request.
"""

import argparse
import heapq
import sys
from abc import ABC, abstractmethod

from rich.panel import Panel
from rich.traceback import Traceback, install
from rich_argparse import RichHelpFormatter
from typing_extensions import override

from . import __version__, logger
from .config import ReqProfConfig, merge_config_with_args
from .flamegraph import FlameGraph
from .paths import DEFAULT_REPORT_DIR
from .render import TITLE, write_report

console = logger.console
err_console = logger.err_console

DEFAULT_SVG: str = "result.svg"


class ArgsHandler(ABC):
    def __init__(self, name: str, priority: int = 0) -> None:
        """
        Args:
            name (str): The name of the handler.
            priority (int, optional): Handlers with a higher priority run first.
        """
        self.name = name
        self.priority = priority

    @property
    def weight(self) -> int:
        return self.priority

    @abstractmethod
    def handle(self, args: argparse.Namespace) -> bool:
        """
        Handle the command.
        Args:
            args (argparse.Namespace): The arguments passed to the command.
        Returns:
            bool: Whether the command be handled.
        """
        pass  # pragma: no cover

    @classmethod
    @abstractmethod
    def build(cls) -> "ArgsHandler":
        pass  # pragma: no cover

    def __lt__(self, other: "ArgsHandler") -> bool:
        return self.weight > other.weight  # big heap


handlers: list[ArgsHandler] = []


def _positive_int(value: str) -> int:
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("width must be a positive integer")
    return ivalue


def register_handler(handler: type[ArgsHandler]) -> type[ArgsHandler]:
    """Register a handler class to be used in the application.

    Args:
        handler (type[ArgsHandler]): A handler class implementing ArgsHandler.
    """
    heapq.heappush(handlers, handler.build())
    return handler


@register_handler
class ProfileReportHandler(ArgsHandler):
    """
    Rendering a report directory from a profile file.
    """

    @classmethod
    def build(cls) -> ArgsHandler:
        return cls()

    def __init__(self, priority: int = 1024) -> None:
        super().__init__("ProfileReportHandler", priority=priority)

    @override
    def handle(self, args: argparse.Namespace) -> bool:
        if args.file is None:
            return False
        out_dir = args.out or DEFAULT_REPORT_DIR
        files = write_report(
            args.file,
            out_dir,
            width=args.width,
            inverted=args.inverted,
            title=args.title,
            full_path=args.full_path,
        )
        if args.verbose:
            logger.log_success_panel(
                f"Rendered `{args.file}` into `{out_dir}`, "
                f"please check it out via `open {files['svg']}`"
            )
        return True


@register_handler
class StackTraceHandler(ArgsHandler):
    """
    Generating a flame graph from folded stack files.
    """

    @classmethod
    def build(cls) -> ArgsHandler:
        return cls()

    def __init__(self, priority: int = 512) -> None:
        super().__init__("StackTraceHandler", priority=priority)

    @override
    def handle(self, args: argparse.Namespace) -> bool:
        if not args.parse:
            return False
        folded_lines: list[str] = []
        for file_obj in args.parse:
            with file_obj:
                folded_lines.extend(line for line in file_obj if line.strip())

        flamegraph = FlameGraph(
            folded_lines, width=args.width, title=args.title, inverted=args.inverted
        )
        flamegraph.parse_input()
        output = args.out or DEFAULT_SVG
        with open(output, "w", encoding="utf-8") as f:
            f.write(flamegraph.generate_svg())

        if args.verbose:
            names = ", ".join(f.name for f in args.parse)
            logger.log_success_panel(
                f"Generated a flamegraph svg file `{output}` from the stack "
                f"trace file(s) `{names}`"
            )
        return True


def dispatch(args: argparse.Namespace) -> None:
    for handler in sorted(handlers):
        if handler.handle(args):
            return

    raise RuntimeError(
        "nothing to do: pass a profile with -f or folded stacks with -p, see --help"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reqprof",
        description="Render reports of profiles captured by the reqprof middleware.",
        add_help=False,
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument(
        "-h", "--help", action="store_true", help="Show this help message and exit."
    )
    parser.add_argument(
        "-v", "--version", action="store_true", help="Show version information and exit."
    )
    parser.add_argument(
        "--verbose",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Print a panel when the report is written (default: False).",
    )
    parser.add_argument(
        "-f",
        "--file",
        help="Profile file written by the middleware.",
    )
    parser.add_argument(
        "-o",
        "--out",
        help=f"Report directory for -f (default: {DEFAULT_REPORT_DIR}), "
        f"output svg file for -p (default: {DEFAULT_SVG}).",
    )
    parser.add_argument(
        "-p",
        "--parse",
        nargs="+",
        type=argparse.FileType("r"),
        help="Folded stack file(s) to merge into a single flamegraph svg file.",
    )
    parser.add_argument(
        "--width",
        type=_positive_int,
        default=1200,
        help="SVG width in pixels for generated flamegraphs (default: 1200).",
    )
    parser.add_argument(
        "--inverted",
        action="store_true",
        help="Render flame graphs with the root frame at the top (inverted orientation).",
    )
    parser.add_argument("--title", default=TITLE, help="Title of the flame graph.")
    parser.add_argument(
        "--full-path",
        action="store_true",
        help="Keep absolute file paths in the flamegraph (default: False).",
    )
    parser.add_argument(
        "--disable-traceback",
        action="store_true",
        help="Disable the rich(colorful) traceback and use the default traceback.",
    )
    parser.add_argument(
        "--create-config",
        action="store_true",
        help="Create an example configuration file at ~/.reqprof/.reqprofrc and exit.",
    )
    return parser


def _pre_checks(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    if args.help:
        parser.print_help()
        sys.exit(0)

    if args.version:
        console.print(f"reqprof version {__version__}")
        sys.exit(0)

    if args.create_config:
        ReqProfConfig().create_example_config()
        sys.exit(0)


def main(argv: list[str] | None = None) -> None:
    arguments = sys.argv[1:] if argv is None else argv
    arguments = merge_config_with_args(arguments)

    parser = build_parser()
    args = parser.parse_args(arguments)
    _pre_checks(args, parser)
    if not args.disable_traceback:
        install()
    try:
        dispatch(args)
    except Exception as e:
        if not args.disable_traceback:
            err_console.print(
                Panel(
                    f"[bold red]reqprof failed to render the report:[/bold red] {e}",
                    title="[bold yellow]Error[/bold yellow]",
                    style="red",
                    border_style="bright_red",
                )
            )
            err_console.print(Traceback())
        else:
            print(str(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
