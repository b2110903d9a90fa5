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

from datetime import datetime

import pytest
from pygments.token import Token

from termchat.core.conversations import Message
from termchat.core.render import (
    REASONING_HIDDEN,
    TOKEN_COLORS,
    highlight_code,
    render_conversation,
    render_message,
    wrap_fragments,
)

STAMP = datetime(2024, 1, 1, 9, 5, 7)


def row_texts(rows):
    return [''.join(text for _, text in row) for row in rows]


def body(content, role='assistant', show_reasoning=False, width=80, reasoning=None):
    """Rendered rows minus the header and the trailing blank row."""
    message = Message(role=role, content=content, reasoning=reasoning, created_at=STAMP)
    return row_texts(render_message(message, width, show_reasoning))[1:-1]


class TestWrapFragments:
    def test_breaks_at_spaces(self):
        rows = wrap_fragments([('', 'hello world foo')], 11)
        assert row_texts(rows) == ["hello world", "foo"]

    def test_breaks_after_last_space(self):
        rows = wrap_fragments([('', 'aa bb cc dd')], 7)
        assert row_texts(rows) == ["aa bb ", "cc dd"]

    def test_long_word_is_split(self):
        rows = wrap_fragments([('', 'abcdefghij')], 4)
        assert row_texts(rows) == ["abcd", "efgh", "ij"]

    def test_wide_characters_use_two_cells(self):
        rows = wrap_fragments([('', '你好你好')], 4)
        assert row_texts(rows) == ["你好", "你好"]

    def test_empty_line_is_one_row(self):
        assert wrap_fragments([], 10) == [()]

    def test_styles_are_kept(self):
        rows = wrap_fragments([('bold', 'ab'), ('', 'cd')], 10)
        assert rows == [(('bold', 'ab'), ('', 'cd'))]


class TestRenderMessage:
    def test_user_header_and_body(self):
        message = Message(role='user', content='hi\nthere', created_at=STAMP)
        rows = row_texts(render_message(message, 80, False))
        assert rows == ["👤 You [09:05:07]:", "  hi", "  there", ""]

    def test_assistant_header(self):
        message = Message(role='assistant', content='ok', created_at=STAMP)
        assert row_texts(render_message(message, 80, False))[0] == "🤖 AI [09:05:07]:"

    def test_reasoning_hidden_by_default(self):
        rows = body("Done.", reasoning="plan", show_reasoning=False)
        assert rows == [f"  🤔 {REASONING_HIDDEN}", "  Done."]

    def test_reasoning_shown(self):
        rows = body("Done.", reasoning="step 1\nstep 2", show_reasoning=True)
        assert rows == [
            "  🤔 [Thinking Process]",
            "    step 1",
            "    step 2",
            "  ════════════════════",
            "  Done.",
        ]

    def test_user_markdown_is_not_interpreted(self):
        assert body("**literal**", role='user') == ["  **literal**"]

    def test_markdown_blocks(self):
        rows = body("## Plan\n- one\n  - two\n\nSee [docs](http://x.y) and `code`.")
        assert rows == [
            "  ## Plan",
            "  • one",
            "    • two",
            "",
            "  See docs <http://x.y> and code.",
        ]

    def test_code_block_box(self):
        rows = body("```python\nx = 1\n```")
        assert rows == ["  ╭─ python", "  │ 1 x = 1", "  ╰─"]

    def test_table_alignment(self):
        rows = body("| a | bb |\n|---|---|\n| ccc | d |")
        assert rows == ["  a   | bb", "  ----+---", "  ccc | d"]

    def test_long_lines_wrap_to_width(self):
        message = Message(role='user', content='word ' * 30, created_at=STAMP)
        for row in render_message(message, 20, False):
            assert sum(len(text) for _, text in row) <= 20


class TestHighlightCode:
    def test_one_row_per_line(self):
        rows = highlight_code(["def f():", "    return 1", ""], "python")
        assert len(rows) == 3
        assert row_texts(rows)[:2] == ["def f():", "    return 1"]

    def test_keywords_get_a_color(self):
        rows = highlight_code(["def f(): pass"], "python")
        styles = {text: style for style, text in rows[0]}
        assert styles["def"] == TOKEN_COLORS[Token.Keyword]

    @pytest.mark.parametrize("language", [None, "no-such-language"])
    def test_unknown_language_falls_back_to_plain_text(self, language):
        assert row_texts(highlight_code(["a <b> c"], language)) == ["a <b> c"]


def test_render_conversation_tags_lines_with_message_index():
    messages = [
        Message(role='user', content='one', created_at=STAMP),
        Message(role='assistant', content='two', created_at=STAMP),
    ]
    lines = render_conversation(messages, 80, False)
    assert [line.message_index for line in lines] == [0, 0, 0, 1, 1, 1]
    assert lines[4].text == "  two"
