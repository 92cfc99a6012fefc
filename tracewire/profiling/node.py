"""
Call-tree nodes and backtrace aggregation.

A forest is an insertion-ordered mapping of frame identity to root Node. Each
Node keeps its children the same way, so merging a backtrace is a dictionary
walk from the outermost frame down to the innermost one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import FrameType
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

# "path/to/file.rb:69:in `method'"
_BACKTRACE_LINE = re.compile(r"^(?P<file>.*?):(?P<line>\d+):in [`'](?P<method>.*)'$")


@dataclass(frozen=True)
class Frame:
    """Frame identity: source location, routine name, line number."""
    file: str
    method: str
    line: int

    def to_list(self) -> List[Any]:
        return [self.file, self.method, self.line]

    @classmethod
    def parse(cls, text: str) -> "Frame":
        """Parse a textual backtrace line such as ``irb.rb:69:in `catch'``."""
        match = _BACKTRACE_LINE.match(text.strip())
        if match is None:
            raise ValueError(f"Unrecognized backtrace line: {text!r}")
        return cls(
            file=match.group("file"),
            method=match.group("method"),
            line=int(match.group("line")),
        )

    @classmethod
    def coerce(cls, value: Union["Frame", str, Sequence[Any]]) -> "Frame":
        """Accept a Frame, a textual backtrace line, or a (file, method, line) triplet."""
        if isinstance(value, Frame):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        file, method, line = value
        return cls(file=str(file), method=str(method), line=int(line))


BacktraceEntry = Union[Frame, str, Sequence[Any]]
Forest = Dict[Frame, "Node"]


def parse_backtrace(backtrace: Iterable[BacktraceEntry]) -> List[Frame]:
    """Normalize a backtrace (innermost frame first) into Frames."""
    return [Frame.coerce(entry) for entry in backtrace]


def extract_backtrace(frame: Optional[FrameType]) -> List[Frame]:
    """Walk a live Python frame outwards, innermost frame first."""
    frames = []
    while frame is not None:
        code = frame.f_code
        frames.append(Frame(file=code.co_filename, method=code.co_name, line=frame.f_lineno))
        frame = frame.f_back
    return frames


@dataclass
class Node:
    """A single stack-frame vertex in an aggregated call tree."""
    frame: Frame
    total_count: int = 0
    runnable_count: int = 0
    children: Dict[Frame, "Node"] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.frame, Frame):
            self.frame = Frame.coerce(self.frame)

    def add_child(self, child: "Node") -> "Node":
        """Attach ``child`` unless a child with the same frame already exists.

        Returns the child that ends up in the tree.
        """
        return self.children.setdefault(child.frame, child)

    def to_array(self) -> List[Any]:
        return [
            self.frame.to_list(),
            self.total_count,
            self.runnable_count,
            [child.to_array() for child in self.children.values()],
        ]

    def depth(self) -> int:
        """Length of the longest root-to-leaf path starting here."""
        if not self.children:
            return 1
        return 1 + max(child.depth() for child in self.children.values())


def aggregate(
    backtrace: Iterable[BacktraceEntry],
    forest: Optional[Forest] = None,
    runnable: bool = True,
    count_total: bool = False,
) -> Optional[Node]:
    """
    Merge one backtrace into ``forest`` and return the root of its path.

    The backtrace is innermost first; the tree is built outermost first so roots
    are entry points and leaves the deepest executing frames. Nodes that already
    exist get their runnable_count bumped when the sample is runnable; new nodes
    start at zero. With ``count_total`` every node on the path also gets its
    total_count bumped.
    """
    if forest is None:
        forest = {}

    frames = parse_backtrace(backtrace)
    root: Optional[Node] = None
    siblings = forest

    for frame in reversed(frames):
        node = siblings.get(frame)
        if node is None:
            node = Node(frame)
            siblings[frame] = node
        elif runnable:
            node.runnable_count += 1

        if count_total:
            node.total_count += 1

        if root is None:
            root = node
        siblings = node.children

    return root


def forest_to_array(forest: Forest) -> List[List[Any]]:
    return [node.to_array() for node in forest.values()]
