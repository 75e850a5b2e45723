"""
Python FlameGraph Generator
============================

Renders folded stacks as an interactive flame graph SVG, in the spirit of
Brendan Gregg's flamegraph.pl.

Input format:
  Each line holds a semicolon-separated stack followed by a space and a count:
    func_a;func_b;func_c 100
    func_a;func_d 50
"""  # noqa: E501

import collections
import hashlib
import html
from collections import defaultdict
from typing import Final

from . import logger

# shows the frame under the mouse in the details line
_SCRIPT: Final = """
var details;
function init(evt) { details = document.getElementById("details").firstChild; }
function s(node) {
  var title = node.getElementsByTagName("title")[0];
  details.nodeValue = "Function: " + title.textContent;
}
function c() { details.nodeValue = " "; }
window.addEventListener("mouseover", function(e) {
  var target = e.target.parentNode;
  if (target && target.tagName === "g" && target.getElementsByTagName("title").length) s(target);
});
window.addEventListener("mouseout", function(e) { c(); });
"""  # noqa: E501


class FlameGraph:
    class Node:
        __slots__ = ("children", "depth", "name", "parent", "total", "width", "x")

        def __init__(self, name: str):
            self.name = name
            self.total = 0
            self.children: dict[str, FlameGraph.Node] = {}
            self.x: float = 0
            self.depth = 0
            self.parent: None | FlameGraph.Node = None
            self.width: float = 0

        def __repr__(self):
            return f"{self.name} ({self.total})"

    def __init__(
        self,
        lines: list[str],
        height: int = 15,
        width: int = 1200,
        minwidth: float = 0.1,
        title: str = "Flame Graph",
        countname: str = "samples",
        subtitles: list[str] | None = None,
        inverted: bool = False,
    ) -> None:
        """Initialize a FlameGraph instance with given parameters.

        Args:
            lines (list[str]): Folded stack lines to process.
            height (int): Height of one frame in pixels (default: 15).
            width (int): Width of the flame graph in pixels (default: 1200).
            minwidth (float): Minimum width in pixels for a frame to be drawn (default: 0.1).
            title (str): Title of the flame graph (default: "Flame Graph").
            countname (str): Unit of the counts (default: "samples").
            subtitles (list[str] | None): Extra lines printed under the title.
            inverted (bool): Draw the root frame at the top (default: False).
        """  # noqa: E501
        if width <= 0:
            raise ValueError("width must be a positive integer")
        self.lines = lines
        self.height = height
        self.width = width
        self.minwidth = minwidth
        self.countname = countname
        self.title = title
        self.subtitles = subtitles or []
        self.inverted = inverted
        self.stacks: dict[str, int] = defaultdict(int)
        self.total_samples = 0
        self.max_depth = 0
        self.invalid_lines = 0
        self._cached_svg: str | None = None

    def parse_input(self) -> None:
        """Aggregate the counts of identical stacks.
        Example input line:
            func_a;func_b;func_c 100
        """
        for line in self.lines:
            line = line.strip()
            if not line:
                continue

            stack, _, count_str = line.rpartition(" ")
            try:
                count = int(count_str)
            except ValueError:
                count = -1
            if not stack or count < 0:
                self.invalid_lines += 1
                continue

            self.stacks[stack] += count
            self.total_samples += count
            self.max_depth = max(self.max_depth, stack.count(";") + 1)

        if self.invalid_lines:
            logger.log_warning_panel(
                f"Ignored {self.invalid_lines} malformed folded stack line(s)"
            )

    @property
    def sample_count(self) -> int:
        return self.total_samples

    def _build_call_tree(self) -> "FlameGraph.Node":
        root = self.Node("all")

        for stack, count in self.stacks.items():
            node = root
            node.total += count

            for frame in stack.split(";"):
                if frame not in node.children:
                    child = self.Node(frame)
                    node.children[frame] = child
                    child.parent = node

                node = node.children[frame]
                node.total += count

        return root

    def _layout_tree(self, node: Node, x: float, scale: float) -> None:
        """Place ``node`` at ``x`` and its children left to right inside it."""
        node.x = x
        node.width = node.total * scale
        current_x = x
        for child in node.children.values():
            child.depth = node.depth + 1
            self._layout_tree(child, current_x, scale)
            current_x += child.width

    def _collect_nodes_by_depth(self, root: Node) -> dict[int, list[Node]]:
        """Group nodes by depth with a BFS, the root included."""
        nodes_by_depth: dict[int, list[FlameGraph.Node]] = defaultdict(list)
        queue = collections.deque([root])

        while queue:
            node = queue.popleft()
            nodes_by_depth[node.depth].append(node)
            queue.extend(node.children.values())

        return nodes_by_depth

    def _frame_y(self, depth: int, svg_height: int) -> float:
        top = 60 + len(self.subtitles) * 20
        if self.inverted:
            return top + depth * self.height
        return svg_height - 40 - (depth + 1) * self.height

    def generate_svg(self) -> str:
        """Generate the SVG document, cached after the first call."""
        if self._cached_svg is not None:
            return self._cached_svg

        root = self._build_call_tree()
        total = max(1, root.total)
        self._layout_tree(root, 10, (self.width - 20) / total)

        nodes_by_depth = self._collect_nodes_by_depth(root)
        levels = max(nodes_by_depth.keys()) + 1
        height = levels * self.height + 100 + len(self.subtitles) * 20

        svg = [
            '<?xml version="1.0" standalone="no"?>',
            '<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">',  # noqa: E501
            f'<svg version="1.1" width="{self.width}" height="{height}" '
            f'onload="init(evt)" viewBox="0 0 {self.width} {height}" '
            'xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink">',  # noqa: E501
            "<defs>",
            '<linearGradient id="background" y1="0" y2="1" x1="0" x2="0">',
            '<stop stop-color="#eeeeee" offset="5%" />',
            '<stop stop-color="#eeeeb0" offset="95%" />',
            "</linearGradient>",
            "</defs>",
            '<style type="text/css">',
            "text { font-family: Verdana, Arial, sans-serif; font-size: 11px; fill: rgb(0, 0, 0);}",  # noqa: E501
            "#title { text-anchor: middle; font-size: 17px }",
            ".subtitle { text-anchor: middle; font-size: 13px }",
            "#frames > *:hover { stroke: black; stroke-width: 0.5; cursor: pointer; }",
            "</style>",
            '<script type="text/ecmascript">\n<![CDATA[',
            _SCRIPT,
            "]]>\n</script>",
            f'<rect x="0" y="0" width="{self.width}" height="{height}" fill="url(#background)" rx="2" ry="2" />',  # noqa: E501
            f'<text id="title" x="{self.width // 2}" y="24">{html.escape(self.title)}</text>',  # noqa: E501
        ]
        for idx, subtitle in enumerate(self.subtitles):
            svg.append(
                f'<text class="subtitle" x="{self.width // 2}" y="{44 + idx * 20}">'
                f"{html.escape(subtitle)}</text>"
            )
        svg.append(f'<text id="details" x="10" y="{height - 10}"> </text>')
        svg.append('<g id="frames">')

        for depth in sorted(nodes_by_depth.keys()):
            for node in nodes_by_depth[depth]:
                if node.width < self.minwidth:
                    continue
                y = self._frame_y(depth, height)
                percent = node.total / total * 100
                text = self._trim_text(node.name, node.width)
                svg.extend(
                    [
                        "<g>",
                        f"<title>{html.escape(node.name)} ({node.total} {self.countname}, {percent:.2f}%)</title>",  # noqa: E501
                        f'<rect x="{node.x:.2f}" y="{y}" width="{node.width:.2f}" height="{self.height - 1}" fill="{self._get_color(node.name)}" rx="2" ry="2" />',  # noqa: E501
                        f'<text x="{node.x + 3:.2f}" y="{y + self.height - 4}">{html.escape(text)}</text>',  # noqa: E501
                        "</g>",
                    ]
                )

        svg.extend(["</g>", "</svg>"])
        self._cached_svg = "\n".join(svg)
        return self._cached_svg

    def _get_color(self, frame: str) -> str:
        """Hash the frame name into a stable warm color."""
        hash_val = int(hashlib.md5(frame.encode()).hexdigest()[:8], 16)
        hue = hash_val % 60
        sat = 60 + (hash_val % 30)
        lum = 55 + (hash_val % 15)
        return f"hsl({hue}, {sat}%, {lum}%)"

    def _trim_text(self, text: str, width: float) -> str:
        """Trim text to fit in the given width"""
        if width / 6.5 < 3:
            return ""
        if len(text) * 6.5 <= width:
            return text
        max_chars = int(width / 6.5) - 2
        return text[:max_chars] + ".."


def shorten_frames(lines: list[str], prefixes: list[str]) -> list[str]:
    """Strip well known directory prefixes (site-packages, cwd) from frames."""
    ordered = sorted((p.rstrip("/") + "/" for p in prefixes if p), key=len, reverse=True)
    res: list[str] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        frames = []
        for item in line.split(";"):
            for prefix in ordered:
                if item.startswith(prefix):
                    item = item[len(prefix) :]
                    break
            frames.append(item)
        res.append(";".join(frames))
    return res
