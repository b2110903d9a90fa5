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


"""Split raw model output into reasoning and structured markdown blocks.

Everything here is pure: the same input always yields the same result, and
malformed markup falls back to literal text instead of raising. Block and
inline structure comes from markdown-it's CommonMark parser with GFM tables
switched on.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Union

from markdown_it import MarkdownIt

# Tried in this order; the first pattern that matches anywhere wins.
REASONING_PATTERNS = (
    ('tag', re.compile(r'<thinking>(.*?)</thinking>', re.DOTALL)),
    ('bracket', re.compile(r'\[THINKING\](.*?)\[/THINKING\]', re.DOTALL)),
    # A single line; the answer starts on the next one
    ('emoji', re.compile(r'🤔[ \t]*Thinking:[ \t]*([^\n]*)')),
)

INDENT_WIDTH = 2

# Indented code is off so that list indentation never turns into a code box
_MD = MarkdownIt('commonmark').enable('table').disable('code')


class SpanKind(Enum):
    TEXT = "text"
    BOLD = "bold"
    ITALIC = "italic"
    CODE = "code"
    LINK = "link"


@dataclass(frozen=True)
class Span:
    kind: SpanKind
    text: str
    url: Optional[str] = None


@dataclass(frozen=True)
class Heading:
    level: int
    spans: tuple[Span, ...]


@dataclass(frozen=True)
class Paragraph:
    spans: tuple[Span, ...]
    literal: bool = False  # Raw text from degraded markup


@dataclass(frozen=True)
class ListItem:
    depth: int
    marker: str
    spans: tuple[Span, ...]


@dataclass(frozen=True)
class CodeBlock:
    lines: tuple[str, ...]
    language: Optional[str] = None


@dataclass(frozen=True)
class Table:
    rows: tuple[tuple[str, ...], ...]
    header_rows: int = 1


@dataclass(frozen=True)
class BlankLine:
    pass


Block = Union[Heading, Paragraph, ListItem, CodeBlock, Table, BlankLine]


@dataclass(frozen=True)
class ParsedResponse:
    reasoning: Optional[str]
    body: str
    blocks: tuple[Block, ...]


def extract_reasoning(text: str) -> tuple[Optional[str], str]:
    """Pull the first reasoning segment out of text.

    Returns:
        (reasoning, remaining_text); reasoning is None when no marker matched
        or the marked segment is blank. A reply that is nothing but a
        reasoning segment comes back unchanged, with reasoning None.
    """
    for _name, pattern in REASONING_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        body = (text[:match.start()] + text[match.end():]).strip()
        if not body:
            return None, text
        reasoning = match.group(1).strip()
        return (reasoning or None), body
    return None, text


def _spans(tokens) -> tuple[Span, ...]:
    spans: list[Span] = []
    strong = emphasis = 0
    link_url = None

    for token in tokens:
        kind = SpanKind.TEXT
        if token.type == 'strong_open':
            strong += 1
            continue
        if token.type == 'strong_close':
            strong -= 1
            continue
        if token.type == 'em_open':
            emphasis += 1
            continue
        if token.type == 'em_close':
            emphasis -= 1
            continue
        if token.type == 'link_open':
            link_url = token.attrGet('href')
            continue
        if token.type == 'link_close':
            link_url = None
            continue

        if token.type in ('softbreak', 'hardbreak'):
            text = ' '
        else:
            # text, text_special, html_inline, image alt text
            text = token.content
        if not text:
            continue

        url = None
        if token.type == 'code_inline':
            kind = SpanKind.CODE
        elif link_url is not None:
            kind, url = SpanKind.LINK, link_url
        elif strong:
            kind = SpanKind.BOLD
        elif emphasis:
            kind = SpanKind.ITALIC

        if spans and spans[-1].kind is kind and kind is not SpanKind.CODE and spans[-1].url == url:
            spans[-1] = Span(kind, spans[-1].text + text, url)
        else:
            spans.append(Span(kind, text, url))
    return tuple(spans)


def parse_inline(text: str) -> tuple[Span, ...]:
    """Split a line into styled spans. Unmatched markers stay literal."""
    tokens = _MD.parseInline(text)
    if not tokens:
        return ()
    return _spans(tokens[0].children or [])


def _literal(lines) -> list[Paragraph]:
    lines = list(lines)
    while lines and not lines[-1].strip():
        lines.pop()
    return [Paragraph((Span(SpanKind.TEXT, raw),), literal=True) for raw in lines]


def _content_end(lines: list[str], start: int, end: int) -> int:
    while end > start + 1 and not lines[end - 1].strip():
        end -= 1
    return end


def _fence_closed(lines: list[str], token) -> bool:
    start, end = token.map
    if end - 1 <= start:
        return False
    closing = lines[end - 1].strip()
    return closing.startswith(token.markup) and not closing.strip(token.markup[0])


def _list_marker(token) -> str:
    if token.info:
        return token.info + token.markup
    return '•'


def parse_blocks(text: str) -> tuple[Block, ...]:
    """Segment markdown text into blocks.

    Blank lines between top-level blocks collapse into one BlankLine. List
    depth comes from the item's own indentation, INDENT_WIDTH columns per
    level. A fence that never closes is kept as literal lines.
    """
    source = text.replace('\r\n', '\n').replace('\r', '\n')
    lines = source.split('\n')
    blocks: list[Block] = []

    prev_end = None
    heading_level = None
    pending_item = None
    table_rows = None
    row = None
    in_head = False
    header_rows = 0

    def flush_item():
        nonlocal pending_item
        if pending_item is not None:
            blocks.append(ListItem(pending_item[0], pending_item[1], ()))
            pending_item = None

    for token in _MD.parse(source):
        if token.level == 0 and token.nesting >= 0 and token.map:
            start, end = token.map
            if prev_end is not None and start > prev_end:
                blocks.append(BlankLine())
            prev_end = _content_end(lines, start, end)

        kind = token.type
        if kind == 'heading_open':
            heading_level = int(token.tag[1:])
        elif kind == 'heading_close':
            heading_level = None
        elif kind == 'list_item_open':
            flush_item()
            indent = len(re.match(r'[ \t]*', lines[token.map[0]]).group(0).expandtabs(4))
            pending_item = (indent // INDENT_WIDTH, _list_marker(token))
        elif kind == 'list_item_close':
            flush_item()
        elif kind == 'inline':
            spans = _spans(token.children or [])
            if row is not None:
                row.append(''.join(span.text for span in spans))
            elif heading_level is not None:
                blocks.append(Heading(heading_level, spans))
            elif pending_item is not None:
                blocks.append(ListItem(pending_item[0], pending_item[1], spans))
                pending_item = None
            else:
                blocks.append(Paragraph(spans))
        elif kind == 'fence':
            flush_item()
            if _fence_closed(lines, token):
                info = token.info.split()
                blocks.append(CodeBlock(tuple(token.content.split('\n')[:-1]), info[0] if info else None))
            else:
                start, end = token.map
                blocks.extend(_literal(lines[start:end]))
        elif kind in ('html_block', 'code_block'):
            flush_item()
            blocks.extend(_literal(token.content.split('\n')))
        elif kind == 'hr':
            flush_item()
            blocks.extend(_literal([lines[token.map[0]].strip()]))
        elif kind == 'table_open':
            table_rows, header_rows = [], 0
        elif kind == 'thead_open':
            in_head = True
        elif kind == 'thead_close':
            in_head = False
        elif kind == 'tr_open':
            row = []
        elif kind == 'tr_close':
            table_rows.append(tuple(row))
            if in_head:
                header_rows += 1
            row = None
        elif kind == 'table_close':
            blocks.append(Table(tuple(table_rows), header_rows=header_rows))
            table_rows = None

    flush_item()
    while blocks and isinstance(blocks[-1], BlankLine):
        blocks.pop()
    return tuple(blocks)


@lru_cache(maxsize=256)
def transform_response(text: str) -> ParsedResponse:
    """Turn raw model output into reasoning plus renderable blocks."""
    reasoning, body = extract_reasoning(text)
    return ParsedResponse(reasoning=reasoning, body=body, blocks=parse_blocks(body))
