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


"""Session events, recorded for tests and optionally written to the log."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class UIEventType(Enum):
    # Lifecycle
    APP_STARTED = auto()
    APP_STOPPED = auto()

    # Input state
    MODE_CHANGED = auto()
    INPUT_CHANGED = auto()

    # Requests
    MESSAGE_SENT = auto()
    RESPONSE_COMPLETE = auto()
    REQUEST_FAILED = auto()

    # Commands and status
    COMMAND_EXECUTED = auto()
    STATUS_CHANGED = auto()

    # View
    SCROLL_CHANGED = auto()
    HELP_TOGGLED = auto()
    REASONING_TOGGLED = auto()

    # Persistence
    CONVERSATION_SAVED = auto()
    CONVERSATION_LOADED = auto()


@dataclass
class UIEvent:
    type: UIEventType
    timestamp: str
    data: dict = field(default_factory=dict)

    def to_log_line(self) -> str:
        return f"UI_EVENT|{self.timestamp}|{self.type.name}|{json.dumps(self.data, default=str)}"


class UIEventEmitter:
    """Keeps a bounded history of session events and fans them out to listeners.

    ChatSession emits; the UI and the test harness listen. Listener failures
    are logged at debug level and never reach the emitter.
    """

    def __init__(self, log_events: bool = False, max_log_size: int = 1000):
        self._listeners: list[Callable[[UIEvent], None]] = []
        self._history: list[UIEvent] = []
        self._log_events = log_events
        self._max_log_size = max_log_size

    def add_listener(self, callback: Callable[[UIEvent], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[UIEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def emit(self, event_type: UIEventType, **data):
        event = UIEvent(event_type, datetime.now().isoformat(), data)

        self._history.append(event)
        del self._history[:-self._max_log_size]

        if self._log_events:
            logger.info(event.to_log_line())

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.debug(f"Event listener error: {e}")

    def get_events(self, event_type: Optional[UIEventType] = None) -> list[UIEvent]:
        return [e for e in self._history if event_type is None or e.type == event_type]

    def get_last_event(self, event_type: Optional[UIEventType] = None) -> Optional[UIEvent]:
        events = self.get_events(event_type)
        return events[-1] if events else None

    def clear(self):
        self._history.clear()

    def wait_for_event(
        self,
        event_type: UIEventType,
        timeout: float = 5.0,
        predicate: Optional[Callable[[UIEvent], bool]] = None
    ) -> Optional[UIEvent]:
        """Block until a matching event is emitted from another thread."""
        found = threading.Event()
        matched: list[UIEvent] = []

        def listener(event: UIEvent):
            if event.type == event_type and (predicate is None or predicate(event)):
                matched.append(event)
                found.set()

        self.add_listener(listener)
        try:
            found.wait(timeout)
        finally:
            self.remove_listener(listener)
        return matched[0] if matched else None
