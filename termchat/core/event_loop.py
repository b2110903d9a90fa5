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

"""Fixed-interval cooperative driver.

Each tick polls input for at most one interval, applies any finished request,
advances the spinner and asks for a redraw. The full-screen app drives the
same tick from an asyncio task; run() serves scripted and headless use.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from .session import ChatSession

logger = logging.getLogger(__name__)

# Waits up to the given seconds and returns the key names that arrived
InputPoller = Callable[[float], Iterable[str]]


class EventLoop:
    def __init__(
        self,
        session: ChatSession,
        controller,
        tick_interval: float = 0.1,
        redraw: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.controller = controller
        self.tick_interval = tick_interval
        self.redraw = redraw
        self.ticks = 0

    @property
    def running(self) -> bool:
        return not self.session.quit_requested

    def tick(self) -> bool:
        """Poll the result channel and advance animation. Never blocks."""
        self.ticks += 1
        return self.session.tick()

    def run_once(self, poll_input: InputPoller) -> bool:
        """One full iteration: input, channel, animation, redraw.

        Returns:
            False once quit has been requested
        """
        keys = list(poll_input(self.tick_interval))
        for key in keys:
            self.controller.handle_key(key)
            if not self.running:
                break
        changed = self.tick() or bool(keys)
        if changed and self.redraw is not None:
            self.redraw()
        return self.running

    def run(self, poll_input: InputPoller, max_ticks: Optional[int] = None) -> None:
        logger.debug("Event loop started (tick=%.3fs)", self.tick_interval)
        while self.run_once(poll_input):
            if max_ticks is not None and self.ticks >= max_ticks:
                break
        logger.debug("Event loop stopped after %d ticks", self.ticks)

    async def run_async(self) -> None:
        """Tick forever on the asyncio loop; input arrives via key bindings."""
        while self.running:
            if self.tick() and self.redraw is not None:
                self.redraw()
            await asyncio.sleep(self.tick_interval)
