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

"""Run one completion request at a time off the UI thread.

The worker thread only ever talks to the completion client and puts a single
outcome on a queue. The conversation store and the loading state are touched
exclusively from poll(), which the event loop calls once per tick.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol, Sequence, Union

from .conversations import ConversationStore, Message
from .errors import ChatError, EmptyInputError, ErrorKind, classify_error
from .response import extract_reasoning

logger = logging.getLogger(__name__)

LOADER_FRAMES = "⣾⣽⣻⢿⡿⣟⣯⣷"
CONNECTION_LOST = "API connection lost"


class CompletionClient(Protocol):
    def complete(self, history: Sequence[Message]) -> str:
        """Blocking call returning the raw reply text or raising ChatError."""
        ...


@dataclass(frozen=True)
class LoadingState:
    """Idle, or awaiting a response since started_at with a spinner frame."""
    awaiting: bool = False
    started_at: float = 0.0
    frame: int = 0

    @classmethod
    def idle(cls) -> 'LoadingState':
        return cls()

    @classmethod
    def awaiting_since(cls, started_at: float) -> 'LoadingState':
        return cls(awaiting=True, started_at=started_at, frame=0)

    def advance(self) -> 'LoadingState':
        if not self.awaiting:
            return self
        return replace(self, frame=(self.frame + 1) % len(LOADER_FRAMES))

    @property
    def spinner(self) -> str:
        return LOADER_FRAMES[self.frame % len(LOADER_FRAMES)]


@dataclass(frozen=True)
class Response:
    text: str


@dataclass(frozen=True)
class Failure:
    description: str
    kind: ErrorKind = ErrorKind.API


Outcome = Union[Response, Failure]


def _complete_into(client: CompletionClient, history: tuple[Message, ...], channel: queue.Queue) -> None:
    """Worker body: call the client once and report exactly one outcome."""
    try:
        text = client.complete(history)
    except ChatError as e:
        outcome = Failure(str(e), e.kind)
    except Exception as e:
        logger.exception("Completion request raised unexpectedly")
        description = str(e) or type(e).__name__
        outcome = Failure(description, classify_error(description))
    else:
        outcome = Response(text if isinstance(text, str) else str(text))
    channel.put(outcome)


class RequestOrchestrator:
    """Owns the single in-flight request and its provisional user message."""

    def __init__(
        self,
        client: CompletionClient,
        store: ConversationStore,
        max_context_messages: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        self.max_context_messages = max_context_messages
        self.clock = clock
        self.loading = LoadingState.idle()
        self._channel: Optional[queue.Queue] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def busy(self) -> bool:
        return self.loading.awaiting

    def elapsed(self) -> float:
        """Seconds since the pending request was sent, 0 when idle."""
        if not self.busy:
            return 0.0
        return max(0.0, self.clock() - self.loading.started_at)

    def send(self, text: str) -> bool:
        """Append text as a provisional user message and start the request.

        Returns:
            False without touching anything if a request is already pending

        Raises:
            EmptyInputError: If text is blank
        """
        if self.busy:
            return False
        text = text.strip()
        if not text:
            raise EmptyInputError("Cannot send empty message")

        self.store.append_provisional(text)
        history = self.store.context_window(self.max_context_messages)

        channel: queue.Queue = queue.Queue(maxsize=1)
        worker = threading.Thread(
            target=_complete_into,
            args=(self.client, history, channel),
            name="termchat-completion",
            daemon=True,
        )
        self._channel = channel
        self._worker = worker
        self.loading = LoadingState.awaiting_since(self.clock())
        logger.debug("Dispatching completion request with %d context messages", len(history))
        worker.start()
        return True

    def advance_animation(self) -> None:
        self.loading = self.loading.advance()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the worker thread to finish. Only meant for tests and shutdown."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def poll(self) -> Optional[Outcome]:
        """Apply the pending outcome, if one has arrived. Never blocks."""
        channel = self._channel
        if channel is None:
            return None
        try:
            outcome = channel.get_nowait()
        except queue.Empty:
            if self._worker is not None and self._worker.is_alive():
                return None
            # The worker may have delivered between the two checks
            try:
                outcome = channel.get_nowait()
            except queue.Empty:
                logger.warning("Completion worker exited without a result")
                outcome = Failure(CONNECTION_LOST, ErrorKind.CONNECTION)

        self._channel = None
        self._worker = None
        self._resolve(outcome)
        return outcome

    def _resolve(self, outcome: Outcome) -> None:
        if isinstance(outcome, Response):
            reasoning, body = extract_reasoning(outcome.text)
            self.store.commit_provisional()
            self.store.append(Message(role='assistant', content=body, reasoning=reasoning))
            logger.debug("Completion succeeded after %.1fs", self.elapsed())
        else:
            self.store.rollback_provisional()
            logger.warning("Completion failed (%s): %s", outcome.kind.value, outcome.description)
        self.loading = LoadingState.idle()
