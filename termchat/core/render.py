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

"""Turn messages into styled display lines for the message area.

Lines are lists of prompt_toolkit (style, text) fragments, wrapped to the
area width so that one DisplayLine is exactly one terminal row.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence

from prompt_toolkit.utils import get_cwidth
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.token import Token
from pygments.util import ClassNotFound

from .conversations import Message
from .response import (
    BlankLine, CodeBlock, Heading, ListItem, Paragraph, Span, SpanKind, Table, parse_blocks,
)

Fragment = tuple[str, str]

ROLE_HEADERS = {
    'user': ('👤 You', 'class:role.user'),
    'assistant': ('🤖 AI', 'class:role.assistant'),
    'system': ('⚙️ System', 'class:role.system'),
}

BODY_INDENT = "  "
REASONING_RULE = "  ════════════════════"
REASONING_HIDDEN = "[Thinking hidden - press 't' to show]"

SPAN_STYLES = {
    SpanKind.TEXT: '',
    SpanKind.BOLD: 'bold',
    SpanKind.ITALIC: 'italic',
    SpanKind.CODE: 'class:md.code',
    SpanKind.LINK: 'class:md.link',
}

# One Dark inspired token colors; the most specific match wins
TOKEN_COLORS = {
    Token.Keyword: "#c678dd",
    Token.Keyword.Type: "#e5c07b",
    Token.Name.Function: "#61afef",
    Token.Name.Class: "#e5c07b",
    Token.Name.Builtin: "#56b6c2",
    Token.Name.Decorator: "#e5c07b",
    Token.String: "#98c379",
    Token.Number: "#d19a66",
    Token.Operator: "#56b6c2",
    Token.Comment: "#5c6370 italic",
    Token.Punctuation: "#abb2bf",
    Token.Name.Variable: "#e06c75",
}
DEFAULT_CODE_COLOR = "#abb2bf"


@dataclass(frozen=True)
class DisplayLine:
    """One terminal row, tagged with the message it came from."""
    fragments: tuple[Fragment, ...]
    message_index: Optional[int] = None

    @property
    def text(self) -> str:
        return ''.join(text for _, text in self.fragments)


def _join_style(base: str, extra: str) -> str:
    return f"{base} {extra}".strip()


def _merge(cells: list[tuple[str, str]]) -> tuple[Fragment, ...]:
    fragments: list[Fragment] = []
    for style, char in cells:
        if fragments and fragments[-1][0] == style:
            fragments[-1] = (style, fragments[-1][1] + char)
        else:
            fragments.append((style, char))
    return tuple(fragments)


def _break_index(cells: list[tuple[str, str]]) -> int:
    """Position just after the last space that follows some non-space text."""
    seen_text = False
    index = 0
    for i, (_, char) in enumerate(cells):
        if char == ' ':
            if seen_text:
                index = i + 1
        else:
            seen_text = True
    return index


def wrap_fragments(fragments: Sequence[Fragment], width: int) -> list[tuple[Fragment, ...]]:
    """Word-wrap one logical line into rows no wider than width cells.

    Words longer than the width are broken mid-word.
    """
    if width <= 0:
        return [tuple(fragments)]

    rows: list[tuple[Fragment, ...]] = []
    current: list[tuple[str, str]] = []
    current_width = 0
    for style, text in fragments:
        for char in text:
            char_width = get_cwidth(char)
            if current and current_width + char_width > width:
                if char == ' ':
                    # Break on the overflowing space itself and drop it
                    rows.append(_merge(current))
                    current = []
                    current_width = 0
                    continue
                split = _break_index(current)
                if split:
                    rows.append(_merge(current[:split]))
                    current = current[split:]
                else:
                    rows.append(_merge(current))
                    current = []
                current_width = sum(get_cwidth(c) for _, c in current)
            current.append((style, char))
            current_width += char_width
    rows.append(_merge(current))
    return rows


def _token_style(token_type) -> str:
    while token_type is not None:
        if token_type in TOKEN_COLORS:
            return TOKEN_COLORS[token_type]
        token_type = token_type.parent
    return DEFAULT_CODE_COLOR


def highlight_code(lines: Sequence[str], language: Optional[str]) -> list[list[Fragment]]:
    """Syntax highlight code lines with pygments, one fragment list per line."""
    try:
        lexer = get_lexer_by_name(language, stripnl=False) if language else TextLexer(stripnl=False)
    except ClassNotFound:
        lexer = TextLexer(stripnl=False)

    rows: list[list[Fragment]] = [[]]
    for token_type, value in lexer.get_tokens('\n'.join(lines)):
        style = _token_style(token_type)
        for n, part in enumerate(value.split('\n')):
            if n:
                rows.append([])
            if part:
                rows[-1].append((style, part))

    rows = rows[:len(lines)]
    while len(rows) < len(lines):
        rows.append([])
    return rows


def _span_fragments(spans: Sequence[Span], base: str) -> list[Fragment]:
    fragments = []
    for span in spans:
        fragments.append((_join_style(base, SPAN_STYLES[span.kind]), span.text))
        if span.kind is SpanKind.LINK and span.url:
            fragments.append(('class:md.url', f" <{span.url}>"))
    return fragments


def _code_lines(block: CodeBlock) -> list[list[Fragment]]:
    label = f"╭─ {block.language}" if block.language else "╭─"
    lines = [[('class:code.border', label)]]
    number_width = len(str(len(block.lines)))
    for number, row in enumerate(highlight_code(block.lines, block.language), start=1):
        lines.append([
            ('class:code.border', "│ "),
            ('class:code.lineno', f"{number:>{number_width}} "),
        ] + row)
    lines.append([('class:code.border', "╰─")])
    return lines


def _table_lines(block: Table, base: str) -> list[list[Fragment]]:
    column_count = max(len(row) for row in block.rows)
    widths = [0] * column_count
    for row in block.rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], get_cwidth(cell))

    lines = []
    for row_index, row in enumerate(block.rows):
        cells = []
        for i in range(column_count):
            cell = row[i] if i < len(row) else ""
            cells.append(cell + ' ' * (widths[i] - get_cwidth(cell)))
        style = _join_style(base, 'bold') if row_index < block.header_rows else base
        lines.append([(style, ' | '.join(cells).rstrip())])
        if row_index == block.header_rows - 1:
            lines.append([('class:md.rule', '-+-'.join('-' * w for w in widths))])
    return lines


def render_blocks(blocks, base: str = '') -> list[list[Fragment]]:
    """Render parsed blocks to unwrapped logical lines."""
    lines: list[list[Fragment]] = []
    for block in blocks:
        if isinstance(block, Heading):
            style = _join_style(base, 'class:md.heading')
            lines.append([(style, '#' * block.level + ' ')] + _span_fragments(block.spans, style))
        elif isinstance(block, ListItem):
            prefix = "  " * block.depth + block.marker + " "
            lines.append([(_join_style(base, 'class:md.bullet'), prefix)] + _span_fragments(block.spans, base))
        elif isinstance(block, CodeBlock):
            lines.extend(_code_lines(block))
        elif isinstance(block, Table):
            lines.extend(_table_lines(block, base))
        elif isinstance(block, BlankLine):
            lines.append([])
        elif isinstance(block, Paragraph):
            lines.append(_span_fragments(block.spans, base))
    return lines


def _reasoning_lines(reasoning: str, show: bool) -> list[list[Fragment]]:
    if not show:
        return [[('class:reasoning', "  🤔 "), ('class:reasoning italic', REASONING_HIDDEN)]]
    lines = [[('class:reasoning', "  🤔 "), ('class:reasoning bold', "[Thinking Process]")]]
    for line in reasoning.splitlines():
        lines.append([('', "    "), ('class:reasoning italic', line)])
    lines.append([('class:reasoning.rule', REASONING_RULE)])
    return lines


@lru_cache(maxsize=1024)
def render_message(message: Message, width: int, show_reasoning: bool) -> tuple[tuple[Fragment, ...], ...]:
    """Render one message (header, body, trailing blank) to wrapped rows."""
    label, role_style = ROLE_HEADERS.get(message.role, (message.role, ''))
    header = [
        (_join_style(role_style, 'bold'), label),
        ('class:timestamp', f" [{message.created_at.strftime('%H:%M:%S')}]"),
        (_join_style(role_style, 'bold'), ":"),
    ]
    base = f"class:message.{message.role}"

    logical: list[list[Fragment]] = [header]
    if message.role == 'assistant':
        if message.reasoning:
            logical.extend(_reasoning_lines(message.reasoning, show_reasoning))
        body = render_blocks(parse_blocks(message.content), base)
    else:
        body = [[(base, line)] for line in message.content.splitlines()] or [[]]
    logical.extend([('', BODY_INDENT)] + line if line else [] for line in body)
    logical.append([])

    rows: list[tuple[Fragment, ...]] = []
    for line in logical:
        rows.extend(wrap_fragments(line, width))
    return tuple(rows)


def render_conversation(messages: Sequence[Message], width: int, show_reasoning: bool) -> list[DisplayLine]:
    """Flatten all messages into display lines tagged with their message index."""
    lines = []
    for index, message in enumerate(messages):
        for row in render_message(message, width, show_reasoning):
            lines.append(DisplayLine(row, index))
    return lines
