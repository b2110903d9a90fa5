# Copyright 2024 TermChat contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Scroll state and visible-slice computation for the message area."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

PAGE_SIZE = 10


class ScrollMode(Enum):
    BOTTOM = "bottom"
    FIXED = "fixed"


@dataclass(frozen=True)
class ScrollState:
    """Either follow the tail (BOTTOM) or stay pinned to a line offset (FIXED)."""
    mode: ScrollMode = ScrollMode.BOTTOM
    offset: int = 0

    @classmethod
    def bottom(cls) -> 'ScrollState':
        return cls(ScrollMode.BOTTOM, 0)

    @classmethod
    def fixed(cls, offset: int) -> 'ScrollState':
        return cls(ScrollMode.FIXED, offset)

    @property
    def at_bottom(self) -> bool:
        return self.mode is ScrollMode.BOTTOM


def max_offset(total_lines: int, height: int) -> int:
    return max(0, total_lines - max(0, height))


def clamp_offset(offset: int, total_lines: int, height: int) -> int:
    """Clamp offset into [0, max(0, total_lines - height)]."""
    return min(max(0, offset), max_offset(total_lines, height))


class Viewport:
    """Maps the flattened display lines onto a window of fixed height.

    layout() must be called with the current line count and height before
    the scroll operations are meaningful; the UI does so on every redraw.
    """

    def __init__(self, page_size: int = PAGE_SIZE):
        self.state = ScrollState.bottom()
        self.page_size = page_size
        self.total_lines = 0
        self.height = 0

    def layout(self, total_lines: int, height: int) -> None:
        """Record the current metrics and re-clamp a fixed offset."""
        self.total_lines = total_lines
        self.height = max(0, height)
        if self.state.mode is ScrollMode.FIXED:
            clamped = clamp_offset(self.state.offset, total_lines, self.height)
            if clamped != self.state.offset:
                self.state = ScrollState.fixed(clamped)

    def top(self) -> int:
        """Index of the first visible line."""
        if self.state.mode is ScrollMode.BOTTOM:
            return max_offset(self.total_lines, self.height)
        return clamp_offset(self.state.offset, self.total_lines, self.height)

    def visible(self, lines: Sequence) -> list:
        self.layout(len(lines), self.height)
        start = self.top()
        return list(lines[start:start + self.height])

    def follow(self) -> None:
        """Switch back to tail-following, e.g. when a message is sent."""
        self.state = ScrollState.bottom()

    def scroll_to(self, offset: int) -> None:
        self.state = ScrollState.fixed(clamp_offset(offset, self.total_lines, self.height))

    def scroll_up(self, lines: int = 1) -> None:
        self.scroll_to(self.top() - lines)

    def scroll_down(self, lines: int = 1) -> None:
        if self.state.mode is ScrollMode.BOTTOM:
            return
        self.scroll_to(self.top() + lines)

    def page_up(self) -> None:
        self.scroll_up(self.page_size)

    def page_down(self) -> None:
        self.scroll_down(self.page_size)

    def jump_top(self) -> None:
        self.state = ScrollState.fixed(0)

    def jump_bottom(self) -> None:
        self.follow()

    def indicator(self, line_owners: Sequence[Optional[int]], message_count: int) -> str:
        """Position text for the message area title.

        Args:
            line_owners: Source message index per display line
            message_count: Total number of messages

        Returns:
            "" with no messages, "[BOTTOM ↓]" when following the tail,
            otherwise "[MSG i/n]" for the message at the top of the window
        """
        if message_count == 0:
            return ""
        if self.state.mode is ScrollMode.BOTTOM:
            return "[BOTTOM ↓]"
        start = self.top()
        owner = None
        for index in range(start, len(line_owners)):
            if line_owners[index] is not None:
                owner = line_owners[index]
                break
        if owner is None:
            owner = message_count - 1
        return f"[MSG {min(owner + 1, message_count)}/{message_count}]"
