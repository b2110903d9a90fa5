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

import threading
import unittest
from pathlib import Path

import termchat.core
from termchat.core.events import UIEvent, UIEventEmitter, UIEventType


class UIEventTests(unittest.TestCase):
    def test_log_line_format(self):
        event = UIEvent(UIEventType.MESSAGE_SENT, "2024-01-01T00:00:00", {"content": "a|b"})
        self.assertEqual(event.to_log_line(), 'UI_EVENT|2024-01-01T00:00:00|MESSAGE_SENT|{"content": "a|b"}')

    def test_logged_when_enabled(self):
        emitter = UIEventEmitter(log_events=True)
        with self.assertLogs("termchat.core.events", level="INFO") as logs:
            emitter.emit(UIEventType.APP_STARTED)
        self.assertIn("UI_EVENT|", logs.output[0])
        self.assertIn("|APP_STARTED|{}", logs.output[0])

    def test_core_does_not_depend_on_the_ui_package(self):
        for package_dir in termchat.core.__path__:
            for source in Path(package_dir).glob("*.py"):
                text = source.read_text(encoding="utf-8")
                self.assertNotIn("from ..ui", text, source.name)
                self.assertNotIn("termchat.ui", text, source.name)


class UIEventEmitterTests(unittest.TestCase):
    def test_log_is_bounded(self):
        emitter = UIEventEmitter(max_log_size=3)
        for i in range(5):
            emitter.emit(UIEventType.INPUT_CHANGED, length=i)
        self.assertEqual([e.data["length"] for e in emitter.get_events()], [2, 3, 4])

    def test_filter_and_last(self):
        emitter = UIEventEmitter()
        emitter.emit(UIEventType.MODE_CHANGED, mode="editing")
        emitter.emit(UIEventType.STATUS_CHANGED, text="x")
        emitter.emit(UIEventType.MODE_CHANGED, mode="normal")
        self.assertEqual(len(emitter.get_events(UIEventType.MODE_CHANGED)), 2)
        self.assertEqual(emitter.get_last_event(UIEventType.MODE_CHANGED).data["mode"], "normal")
        emitter.clear()
        self.assertIsNone(emitter.get_last_event())

    def test_listener_errors_do_not_propagate(self):
        emitter = UIEventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        emitter.add_listener(broken)
        emitter.add_listener(seen.append)
        emitter.emit(UIEventType.HELP_TOGGLED, visible=True)
        self.assertEqual(len(seen), 1)

    def test_wait_for_event_from_another_thread(self):
        emitter = UIEventEmitter()
        timer = threading.Timer(0.05, lambda: emitter.emit(UIEventType.RESPONSE_COMPLETE, length=3))
        timer.start()
        event = emitter.wait_for_event(UIEventType.RESPONSE_COMPLETE, timeout=5)
        timer.join()
        self.assertIsNotNone(event)
        self.assertEqual(event.data["length"], 3)


if __name__ == '__main__':
    unittest.main()
