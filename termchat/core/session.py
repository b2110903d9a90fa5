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

"""Session state shared by the input controller, the event loop and the UI.

Every method here runs on the event-loop thread.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .commands import COMMAND_SIGIL, SAVE_BUSY_WARNING, handle_command
from .config import Config
from .conversations import ConversationStore, Message
from .errors import EmptyInputError, ErrorKind, PersistenceError, describe_error
from .events import UIEventEmitter, UIEventType
from .orchestrator import CompletionClient, Failure, RequestOrchestrator, Response
from .render import DisplayLine, render_conversation
from .status import Severity, Status
from .viewport import Viewport

logger = logging.getLogger(__name__)

SEND_SUCCESS = "✓ Message sent successfully"
SENDING = "Sending message..."
BUSY_WARNING = "Please wait for the current response"


@dataclass
class MessageView:
    """What the message area should draw this frame."""
    lines: list[DisplayLine]
    indicator: str
    total_lines: int


class ChatSession:
    """Conversation, request, scroll and status state for one run."""

    def __init__(
        self,
        config: Config,
        client: CompletionClient,
        persistence,
        events: Optional[UIEventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.persistence = persistence
        self.events = events or UIEventEmitter()
        self.store = ConversationStore()
        if config.system_prompt:
            self.store.append(Message(role='system', content=config.system_prompt))
        self.orchestrator = RequestOrchestrator(
            client,
            self.store,
            max_context_messages=config.max_context_messages,
            clock=clock,
        )
        self.viewport = Viewport()
        self._line_owners: list[Optional[int]] = []
        self.status = Status()
        self.show_help = False
        self.show_reasoning = False
        self.quit_requested = False

    @property
    def busy(self) -> bool:
        return self.orchestrator.busy

    @property
    def loading(self):
        return self.orchestrator.loading

    def set_status(self, text: str, severity: Severity = Severity.INFO) -> None:
        self.status = Status(text, severity)
        self.events.emit(UIEventType.STATUS_CHANGED, text=text, severity=severity.value)

    def submit(self, text: str) -> bool:
        """Handle confirmed input: a command, or a chat message.

        Returns:
            True if the input was consumed and the buffer can be cleared
        """
        stripped = text.strip()
        if not stripped:
            self.set_status(describe_error(ErrorKind.EMPTY_INPUT), Severity.WARNING)
            return False
        if stripped.startswith(COMMAND_SIGIL * 2):
            return self.send_message(stripped[1:])
        if stripped.startswith(COMMAND_SIGIL):
            self.run_command(stripped)
            return True
        return self.send_message(stripped)

    def run_command(self, line: str) -> None:
        result = handle_command(line, self)
        self.set_status(result.message or "", result.severity)
        self.events.emit(
            UIEventType.COMMAND_EXECUTED,
            command=line,
            command_type=result.command_type,
            severity=result.severity.value,
        )
        if result.severity is Severity.SUCCESS and result.command_type == 'save':
            self.events.emit(UIEventType.CONVERSATION_SAVED, message=result.message)
        elif result.severity is Severity.SUCCESS and result.command_type == 'load':
            self.events.emit(UIEventType.CONVERSATION_LOADED, count=len(self.store))

    def send_message(self, text: str) -> bool:
        try:
            sent = self.orchestrator.send(text)
        except EmptyInputError as e:
            self.set_status(str(e), Severity.WARNING)
            return False
        if not sent:
            self.set_status(BUSY_WARNING, Severity.WARNING)
            return False
        self.viewport.follow()
        self.set_status(SENDING, Severity.INFO)
        self.events.emit(UIEventType.MESSAGE_SENT, content=text[:100])
        return True

    def tick(self) -> bool:
        """Apply a finished request and advance the spinner.

        Returns:
            True if anything visible changed
        """
        outcome = self.orchestrator.poll()
        changed = outcome is not None
        if isinstance(outcome, Response):
            self.set_status(SEND_SUCCESS, Severity.SUCCESS)
            self.events.emit(UIEventType.RESPONSE_COMPLETE, length=len(outcome.text))
        elif isinstance(outcome, Failure):
            self.set_status(f"✗ {describe_error(outcome.kind, outcome.description)}", Severity.ERROR)
            self.events.emit(
                UIEventType.REQUEST_FAILED,
                kind=outcome.kind.value,
                description=outcome.description,
            )
        if self.busy:
            self.orchestrator.advance_animation()
            changed = True
        return changed

    def render_view(self, width: int, height: int) -> MessageView:
        """Lay out all messages and cut the visible window."""
        lines = render_conversation(self.store.messages, width, self.show_reasoning)
        self.viewport.layout(len(lines), height)
        self._line_owners = [line.message_index for line in lines]
        start = self.viewport.top()
        return MessageView(lines[start:start + height], self.indicator(), len(lines))

    def indicator(self) -> str:
        """Scroll position text as of the last render_view()."""
        return self.viewport.indicator(self._line_owners, len(self.store))

    def scroll(self, action: str) -> None:
        """Run a viewport operation by name, e.g. "page_up"."""
        before = self.viewport.state
        getattr(self.viewport, action)()
        if self.viewport.state != before:
            self.events.emit(
                UIEventType.SCROLL_CHANGED,
                mode=self.viewport.state.mode.value,
                offset=self.viewport.state.offset,
            )

    def quick_save(self) -> None:
        if self.busy:
            self.set_status(SAVE_BUSY_WARNING, Severity.WARNING)
            return
        try:
            path = self.persistence.save(self.store.messages)
        except PersistenceError as e:
            logger.warning("Quick save failed: %s", e)
            self.set_status(f"Failed to save: {e}", Severity.ERROR)
            return
        self.set_status(f"Saved conversation to {path}", Severity.SUCCESS)
        self.events.emit(UIEventType.CONVERSATION_SAVED, message=str(path))

    def toggle_help(self) -> None:
        self.show_help = not self.show_help
        self.events.emit(UIEventType.HELP_TOGGLED, visible=self.show_help)

    def toggle_reasoning(self) -> None:
        self.show_reasoning = not self.show_reasoning
        state = "visible" if self.show_reasoning else "hidden"
        self.set_status(f"Thinking tokens: {state}", Severity.INFO)
        self.events.emit(UIEventType.REASONING_TOGGLED, visible=self.show_reasoning)

    def request_quit(self) -> None:
        self.quit_requested = True
