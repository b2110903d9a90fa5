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

"""UI test harness for automated testing without a real terminal."""

import logging
import threading
import time
from pathlib import Path
from typing import Optional, Sequence, Union

from ..core.config import Config
from ..core.conversations import ConversationFileStore, Message
from ..core.errors import CompletionError
from ..core.events import UIEventEmitter
from ..core.session import ChatSession
from .controller import InputController, SessionState

logger = logging.getLogger(__name__)


# Escape sequences for special keys
KEY_SEQUENCES = {
    'enter': '\r',
    'escape': '\x1b',
    'backspace': '\x7f',
    'up': '\x1b[A',
    'down': '\x1b[B',
    'left': '\x1b[D',
    'right': '\x1b[C',
    'home': '\x1b[H',
    'end': '\x1b[F',
    'page-up': '\x1b[5~',
    'page-down': '\x1b[6~',
    'ctrl-c': '\x03',
    'ctrl-j': '\n',
    'ctrl-s': '\x13',
    'alt-enter': '\x1b\r',
}


def make_test_config(conversations_dir: Path, **overrides) -> Config:
    """Config pointing at a local endpoint, logging to stderr."""
    values = dict(
        api_url="http://localhost:11434/v1",
        api_key="unused",
        model="mock-model",
        conversations_dir=conversations_dir,
        log_file=None,
    )
    values.update(overrides)
    return Config(**values)


class MockCompletionClient:
    """Mock completion client for testing without real API calls."""

    def __init__(
        self,
        responses: Optional[dict[str, str]] = None,
        default_response: str = "Mock response",
        failures: Optional[dict[str, Union[str, Exception]]] = None,
        response_delay: Optional[float] = None,
    ):
        """Initialize mock client.

        Args:
            responses: Dict mapping user message patterns to raw replies
            default_response: Reply when no pattern matches
            failures: Dict mapping patterns to an exception (or its message)
                to raise instead of replying
            response_delay: Seconds to block before answering
        """
        self.responses = responses or {}
        self.default_response = default_response
        self.failures = failures or {}
        self.calls: list[dict] = []
        self.delay: float = response_delay if response_delay is not None else 0.0

    def complete(self, history: Sequence[Message]) -> str:
        last = history[-1].content if history else ""
        self.calls.append({
            'message': last,
            'history': [(m.role, m.content) for m in history],
        })

        if self.delay:
            time.sleep(self.delay)

        for pattern, failure in self.failures.items():
            if pattern.lower() in last.lower():
                if isinstance(failure, Exception):
                    raise failure
                raise CompletionError(str(failure))

        for pattern, response in self.responses.items():
            if pattern.lower() in last.lower():
                return response
        return self.default_response


class ChatHarness:
    """Test harness for driving and inspecting the UI programmatically.

    Supports two modes:

    1. **Component mode**: drive the InputController and session directly
       and tick by hand. Fast and synchronous.

    2. **Headless mode**: run the full prompt_toolkit app on pipe input and
       a dummy output in a background thread.

    Example (component mode):
        harness = ChatHarness(config, MockCompletionClient())
        harness.type_and_send("hello")
        harness.wait_for_idle()
        assert harness.get_state().message_count == 2
    """

    def __init__(
        self,
        config: Config,
        client=None,
        persistence=None,
        events: Optional[UIEventEmitter] = None,
    ):
        self.config = config
        self.client = client or MockCompletionClient()
        self.events = events or UIEventEmitter(log_events=True)
        self.session = ChatSession(
            config,
            self.client,
            persistence or ConversationFileStore(config.conversations_dir),
            events=self.events,
        )
        self.controller = InputController(self.session)
        self.ui = None
        self._pipe_input = None
        self._pipe_input_context = None
        self._app_thread: Optional[threading.Thread] = None
        self._headless = False
        self._startup_complete = threading.Event()
        self._error: Optional[Exception] = None

    # =========================================================================
    # Headless Mode (full app with mock I/O)
    # =========================================================================

    def start_headless(self, timeout: float = 5.0) -> 'ChatHarness':
        """Start the UI in headless mode for integration testing."""
        from prompt_toolkit.input import create_pipe_input
        from prompt_toolkit.output import DummyOutput
        from .app import TermChatUI

        self._pipe_input_context = create_pipe_input()
        self._pipe_input = self._pipe_input_context.__enter__()

        self.ui = TermChatUI(self.session, input=self._pipe_input, output=DummyOutput())
        self.controller = self.ui.controller

        self._headless = True
        self._startup_complete.clear()
        self._error = None

        self._app_thread = threading.Thread(
            target=self._run_app_loop,
            daemon=True,
            name="headless-ui"
        )
        self._app_thread.start()

        if not self._startup_complete.wait(timeout):
            self.stop()
            raise TimeoutError(f"App did not start within {timeout}s")
        if self._error:
            raise self._error
        return self

    def _run_app_loop(self):
        try:
            def signal_ready():
                time.sleep(0.1)
                self._startup_complete.set()

            threading.Thread(target=signal_ready, daemon=True).start()
            self.ui.run()
        except Exception as e:
            logger.exception(f"Headless app error: {e}")
            self._error = e
            self._startup_complete.set()

    def stop(self):
        """Stop the UI if running in headless mode."""
        if not self._headless:
            return
        self._headless = False

        # Quit through the key bindings so exit() runs on the app's own loop
        if self.app_running:
            self._pipe_input.send_text(KEY_SEQUENCES['ctrl-c'])

        if self._app_thread and self._app_thread.is_alive():
            self._app_thread.join(timeout=2)

        if self._pipe_input_context:
            self._pipe_input_context.__exit__(None, None, None)
            self._pipe_input_context = None

    @property
    def app_running(self) -> bool:
        return self._app_thread is not None and self._app_thread.is_alive()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.stop()

    # =========================================================================
    # Input
    # =========================================================================

    def send_text(self, text: str, flush_delay: float = 0.02):
        """Type characters one by one."""
        if self._headless:
            self._pipe_input.send_text(text)
            time.sleep(flush_delay)
            return
        for char in text:
            if char == '\n':
                self.controller.handle_key('ctrl-j')
            else:
                self.controller.handle_key(char)

    def send_key(self, key: str, flush_delay: float = 0.05):
        """Press a named key, e.g. 'enter', 'page-up', 'ctrl-s', or a single character."""
        if not self._headless:
            self.controller.handle_key(key if len(key) == 1 else key.lower())
            return
        if len(key) == 1:
            self.send_text(key, flush_delay)
            return
        seq = KEY_SEQUENCES.get(key.lower())
        if seq is None:
            raise ValueError(f"Unknown key: {key}. Supported: {list(KEY_SEQUENCES.keys())}")
        self._pipe_input.send_text(seq)
        time.sleep(flush_delay)

    def type_and_send(self, text: str):
        """Enter edit mode, type text and press Enter."""
        self.send_key('i')
        self.send_text(text)
        self.send_key('enter')

    # =========================================================================
    # Ticking and waiting
    # =========================================================================

    def tick(self) -> bool:
        """Run one event-loop tick (component mode only)."""
        return self.session.tick()

    def wait_for_idle(self, timeout: float = 5.0, poll_interval: float = 0.01) -> bool:
        """Wait until no request is pending.

        In component mode the harness ticks the session itself; in headless
        mode the app's own tick task does.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not self._headless:
                self.session.tick()
            if not self.session.busy:
                return True
            time.sleep(poll_interval)
        return False

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_state(self) -> SessionState:
        return self.controller.snapshot()

    def render_text(self, width: int = 80, height: int = 24) -> str:
        """Plain text of the visible message area."""
        view = self.session.render_view(width, height)
        return '\n'.join(line.text for line in view.lines)

    def assert_status_contains(self, text: str):
        status = self.session.status.text
        assert text in status, f"Expected {text!r} in status, got {status!r}"

    def assert_roles(self, roles: list[str]):
        actual = [m.role for m in self.session.store]
        assert actual == roles, f"Expected roles {roles}, got {actual}"
