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

"""Tests for key handling in Normal and Editing modes (component mode harness)."""

import tempfile
import unittest
from pathlib import Path

from termchat.core.conversations import Message
from termchat.core.errors import CompletionError
from termchat.core.session import BUSY_WARNING
from termchat.ui.controller import EditBuffer, InputMode
from termchat.core.events import UIEventType
from termchat.ui.test_harness import ChatHarness, MockCompletionClient, make_test_config


class EditBufferTests(unittest.TestCase):
    def test_insert_and_backspace_at_cursor(self):
        buf = EditBuffer()
        buf.insert("abc")
        buf.move(-2)
        buf.backspace()
        self.assertEqual((buf.text, buf.cursor), ("bc", 0))
        buf.insert("x")
        self.assertEqual((buf.text, buf.cursor), ("xbc", 1))

    def test_cursor_is_clamped(self):
        buf = EditBuffer("ab", 2)
        buf.move(5)
        self.assertEqual(buf.cursor, 2)
        buf.home()
        buf.backspace()
        self.assertEqual((buf.text, buf.cursor), ("ab", 0))
        buf.end()
        self.assertEqual(buf.cursor, 2)


class InputControllerTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def make_harness(self, client=None):
        return ChatHarness(make_test_config(self.tmp_path), client or MockCompletionClient())

    def test_typing_in_normal_mode_is_ignored(self):
        harness = self.make_harness()
        self.assertFalse(harness.controller.handle_key('x'))
        self.assertEqual(harness.get_state().input_text, "")

    def test_escape_discards_input(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_text("draft")
        harness.send_key('escape')
        state = harness.get_state()
        self.assertEqual(state.input_mode, "normal")
        self.assertEqual(state.input_text, "")
        self.assertEqual(state.message_count, 0)

    def test_confirming_empty_input_stays_in_editing(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_key('enter')
        state = harness.get_state()
        self.assertEqual(state.input_mode, "editing")
        self.assertEqual(state.status_text, "Cannot send empty message")
        self.assertEqual(state.status_severity, "warning")
        self.assertFalse(state.awaiting_response)
        self.assertEqual(harness.client.calls, [])

    def test_whitespace_only_input_is_empty(self):
        harness = self.make_harness()
        harness.type_and_send("   ")
        self.assertEqual(harness.get_state().message_count, 0)
        harness.assert_status_contains("Cannot send empty message")

    def test_send_and_receive(self):
        harness = self.make_harness(MockCompletionClient(responses={"how are you": "I'm doing well!"}))
        harness.type_and_send("Hello, how are you?")

        state = harness.get_state()
        self.assertEqual(state.input_mode, "normal")
        self.assertEqual(state.input_text, "")
        self.assertTrue(state.awaiting_response)

        self.assertTrue(harness.wait_for_idle())
        harness.assert_roles(['user', 'assistant'])
        harness.assert_status_contains("✓ Message sent successfully")
        self.assertIn("I'm doing well!", harness.render_text(80, 24))

    def test_failed_send_shows_error(self):
        client = MockCompletionClient(failures={"hi": CompletionError("HTTP error 401: Unauthorized", status_code=401)})
        harness = self.make_harness(client)
        harness.type_and_send("hi")
        harness.wait_for_idle()
        harness.assert_roles([])
        harness.assert_status_contains("Error 401: Invalid API key")
        self.assertEqual(harness.get_state().status_severity, "error")

    def test_newline_keys(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_text("a")
        harness.send_key('alt-enter')
        harness.send_text("b")
        harness.send_key('shift-enter')
        harness.send_text("c\nd")
        self.assertEqual(harness.get_state().input_text, "a\nb\nc\nd")

    def test_multiline_message_is_sent_whole(self):
        harness = self.make_harness()
        harness.type_and_send("line one\nline two")
        harness.wait_for_idle()
        self.assertEqual(harness.client.calls[0]['message'], "line one\nline two")

    def test_cursor_editing(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_text("abc")
        harness.send_key('left')
        harness.send_key('left')
        harness.send_key('backspace')
        harness.send_text("x")
        state = harness.get_state()
        self.assertEqual(state.input_text, "xbc")
        self.assertEqual(state.input_cursor_position, 1)

    def test_letters_are_text_while_editing(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_text("qhti")
        state = harness.get_state()
        self.assertEqual(state.input_text, "qhti")
        self.assertFalse(harness.session.quit_requested)
        self.assertFalse(state.show_help)

    def test_busy_send_keeps_buffer(self):
        harness = self.make_harness(MockCompletionClient(response_delay=0.3))
        harness.type_and_send("first")
        harness.send_key('i')
        harness.send_text("second")
        harness.send_key('enter')

        state = harness.get_state()
        self.assertEqual(state.input_mode, "editing")
        self.assertEqual(state.input_text, "second")
        self.assertEqual(state.status_text, BUSY_WARNING)
        self.assertEqual(state.message_count, 1)
        harness.wait_for_idle()

    def test_normal_mode_toggles(self):
        harness = self.make_harness()
        harness.send_key('h')
        self.assertTrue(harness.get_state().show_help)
        harness.send_key('t')
        self.assertTrue(harness.get_state().show_reasoning)
        harness.assert_status_contains("Thinking tokens: visible")
        harness.send_key('q')
        self.assertTrue(harness.session.quit_requested)

    def test_ctrl_s_quick_saves(self):
        harness = self.make_harness()
        harness.session.store.append(Message(role='user', content='save me'))
        harness.send_key('ctrl-s')
        self.assertTrue((self.tmp_path / "conversation.json").exists())
        self.assertIsNotNone(harness.events.get_last_event(UIEventType.CONVERSATION_SAVED))

    def test_scroll_keys(self):
        harness = self.make_harness()
        for i in range(12):
            harness.session.store.append(Message(role='user', content=f"message {i}"))
        harness.render_text(80, 10)

        harness.send_key('home')
        state = harness.get_state()
        self.assertEqual((state.scroll_mode, state.scroll_offset), ("fixed", 0))
        self.assertEqual(state.indicator, "[MSG 1/12]")

        harness.send_key('page-down')
        self.assertEqual(harness.get_state().scroll_offset, 10)
        harness.send_key('up')
        self.assertEqual(harness.get_state().scroll_offset, 9)

        harness.send_key('end')
        state = harness.get_state()
        self.assertEqual(state.scroll_mode, "bottom")
        self.assertEqual(state.indicator, "[BOTTOM ↓]")

    def test_page_keys_scroll_while_editing(self):
        harness = self.make_harness()
        for i in range(12):
            harness.session.store.append(Message(role='user', content=f"message {i}"))
        harness.render_text(80, 10)
        harness.send_key('i')
        harness.send_key('page-up')
        self.assertEqual(harness.get_state().scroll_mode, "fixed")
        self.assertIs(harness.controller.mode, InputMode.EDITING)

    def test_titles(self):
        harness = self.make_harness()
        self.assertEqual(harness.controller.title, " Input (Press 'i' to edit) ")
        harness.send_key('i')
        harness.send_text("hey")
        self.assertIn("3ch", harness.controller.title)

    def test_mode_changes_emit_events(self):
        harness = self.make_harness()
        harness.send_key('i')
        harness.send_key('escape')
        modes = [e.data['mode'] for e in harness.events.get_events(UIEventType.MODE_CHANGED)]
        self.assertEqual(modes, ['editing', 'normal'])


if __name__ == '__main__':
    unittest.main()
