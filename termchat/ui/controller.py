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

"""Normal/Editing mode state machine.

Keys arrive as backend-independent names ("enter", "page-up", "ctrl-s", or a
single printable character), so the same controller is driven by the
prompt_toolkit bindings and by the test harness.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..core.session import ChatSession
from ..core.events import UIEventType

logger = logging.getLogger(__name__)


class InputMode(Enum):
    NORMAL = "normal"
    EDITING = "editing"


@dataclass
class EditBuffer:
    """Text being composed, with a cursor index into it."""
    text: str = ""
    cursor: int = 0

    def insert(self, chars: str) -> None:
        self.text = self.text[:self.cursor] + chars + self.text[self.cursor:]
        self.cursor += len(chars)

    def backspace(self) -> None:
        if self.cursor == 0:
            return
        self.text = self.text[:self.cursor - 1] + self.text[self.cursor:]
        self.cursor -= 1

    def move(self, delta: int) -> None:
        self.cursor = min(max(0, self.cursor + delta), len(self.text))

    def home(self) -> None:
        self.cursor = 0

    def end(self) -> None:
        self.cursor = len(self.text)


# Key name -> handler method
NORMAL_BINDINGS = {
    'q': 'quit',
    'i': 'enter_edit',
    'h': 'toggle_help',
    't': 'toggle_reasoning',
    'up': 'scroll_up',
    'down': 'scroll_down',
    'page-up': 'page_up',
    'page-down': 'page_down',
    'home': 'jump_top',
    'end': 'jump_bottom',
    'ctrl-s': 'quick_save',
}

EDITING_BINDINGS = {
    'enter': 'confirm',
    'shift-enter': 'newline',
    'alt-enter': 'newline',
    'ctrl-j': 'newline',
    'escape': 'cancel',
    'backspace': 'backspace',
    'left': 'cursor_left',
    'right': 'cursor_right',
    'home': 'cursor_home',
    'end': 'cursor_end',
    'ctrl-s': 'quick_save',
    # Viewing stays possible while composing
    'page-up': 'page_up',
    'page-down': 'page_down',
}


@dataclass
class SessionState:
    """Snapshot of everything on screen, for assertions."""
    # Message area
    message_count: int
    roles: list
    scroll_mode: str
    scroll_offset: int
    indicator: str

    # Status line
    status_text: str
    status_severity: str

    # Input box
    input_mode: str
    input_text: str
    input_cursor_position: int

    # Request
    awaiting_response: bool
    loader_frame: int

    # Overlays
    show_help: bool
    show_reasoning: bool


class InputController:
    """Translates key names into buffer edits, sends, commands and scrolling."""

    def __init__(self, session: ChatSession):
        self.session = session
        self.mode = InputMode.NORMAL
        self.buffer = EditBuffer()

    def handle_key(self, key: str) -> bool:
        """Dispatch one key.

        Returns:
            True if the key was bound in the current mode
        """
        bindings = NORMAL_BINDINGS if self.mode is InputMode.NORMAL else EDITING_BINDINGS
        action = bindings.get(key)
        if action is not None:
            getattr(self, action)()
            return True
        if self.mode is InputMode.EDITING and len(key) == 1 and key.isprintable():
            self.insert(key)
            return True
        return False

    def _set_mode(self, mode: InputMode) -> None:
        if mode is self.mode:
            return
        self.mode = mode
        self.session.events.emit(UIEventType.MODE_CHANGED, mode=mode.value)

    def _changed(self) -> None:
        self.session.events.emit(
            UIEventType.INPUT_CHANGED,
            length=len(self.buffer.text),
            cursor=self.buffer.cursor,
        )

    # Normal mode

    def quit(self) -> None:
        self.session.request_quit()

    def enter_edit(self) -> None:
        self.buffer = EditBuffer()
        self._set_mode(InputMode.EDITING)

    def toggle_help(self) -> None:
        self.session.toggle_help()

    def toggle_reasoning(self) -> None:
        self.session.toggle_reasoning()

    def scroll_up(self) -> None:
        self.session.scroll('scroll_up')

    def scroll_down(self) -> None:
        self.session.scroll('scroll_down')

    def page_up(self) -> None:
        self.session.scroll('page_up')

    def page_down(self) -> None:
        self.session.scroll('page_down')

    def jump_top(self) -> None:
        self.session.scroll('jump_top')

    def jump_bottom(self) -> None:
        self.session.scroll('jump_bottom')

    def quick_save(self) -> None:
        self.session.quick_save()

    # Editing mode

    def insert(self, chars: str) -> None:
        self.buffer.insert(chars)
        self._changed()

    def newline(self) -> None:
        self.insert("\n")

    def backspace(self) -> None:
        self.buffer.backspace()
        self._changed()

    def cursor_left(self) -> None:
        self.buffer.move(-1)

    def cursor_right(self) -> None:
        self.buffer.move(1)

    def cursor_home(self) -> None:
        self.buffer.home()

    def cursor_end(self) -> None:
        self.buffer.end()

    def cancel(self) -> None:
        self.buffer = EditBuffer()
        self._set_mode(InputMode.NORMAL)

    def confirm(self) -> None:
        """Submit the buffer; it is kept when nothing was consumed."""
        if self.session.submit(self.buffer.text):
            self.buffer = EditBuffer()
            self._set_mode(InputMode.NORMAL)

    @property
    def title(self) -> str:
        if self.mode is InputMode.NORMAL:
            return " Input (Press 'i' to edit) "
        return f" Input [Esc=cancel | Enter=SEND | Shift+Enter=newline | {len(self.buffer.text)}ch] "

    def snapshot(self) -> SessionState:
        """Capture the whole UI state for assertions."""
        session = self.session
        view_state = session.viewport.state
        return SessionState(
            message_count=len(session.store),
            roles=[m.role for m in session.store],
            scroll_mode=view_state.mode.value,
            scroll_offset=view_state.offset,
            indicator=session.indicator(),
            status_text=session.status.text,
            status_severity=session.status.severity.value,
            input_mode=self.mode.value,
            input_text=self.buffer.text,
            input_cursor_position=self.buffer.cursor,
            awaiting_response=session.busy,
            loader_frame=session.loading.frame,
            show_help=session.show_help,
            show_reasoning=session.show_reasoning,
        )
