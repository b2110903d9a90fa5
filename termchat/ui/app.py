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

"""Full-screen terminal UI for TermChat using prompt_toolkit."""

import logging

from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import ConditionalContainer, Float, FloatContainer, HSplit, Layout, Window
from prompt_toolkit.layout.containers import WindowAlign
from prompt_toolkit.layout.controls import FormattedTextControl, UIContent, UIControl
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

from ..core.commands import format_help_lines
from ..core.event_loop import EventLoop
from ..core.events import UIEventType
from ..core.session import ChatSession
from .controller import InputController, InputMode

logger = logging.getLogger(__name__)

APP_STYLE = Style.from_dict({
    'header': 'bg:ansiblue fg:ansiwhite bold',
    'header.model': 'bg:ansiblue fg:ansiyellow',
    'separator': 'fg:ansigray',
    # Message area
    'role.user': 'fg:ansigreen',
    'role.assistant': 'fg:ansiblue',
    'role.system': 'fg:ansigray',
    'timestamp': 'fg:ansibrightblack',
    'message.user': 'fg:ansigreen',
    'message.assistant': '',
    'message.system': 'fg:ansigray',
    'md.heading': 'fg:ansicyan bold',
    'md.code': 'fg:ansiyellow',
    'md.link': 'fg:ansiblue underline',
    'md.url': 'fg:ansibrightblack',
    'md.bullet': 'fg:ansicyan',
    'md.rule': 'fg:ansibrightblack',
    'code.border': 'fg:ansibrightblack',
    'code.lineno': 'fg:ansibrightblack',
    'reasoning': 'fg:ansimagenta',
    'reasoning.rule': 'fg:ansibrightblack',
    # Status line
    'status.info': 'fg:ansiwhite',
    'status.success': 'fg:ansigreen',
    'status.warning': 'fg:ansiyellow',
    'status.error': 'fg:ansired bold',
    # Input box
    'input.title': 'fg:ansigray',
    'input.title.editing': 'fg:ansigreen bold',
    'input.text': 'fg:ansigreen',
    'input.placeholder': 'fg:ansibrightblack italic',
    'input.cursor': 'reverse',
    # Overlays
    'help': 'bg:ansiblack fg:ansiwhite',
    'help frame.border': 'fg:ansicyan',
    'loading': 'bg:ansiblack fg:ansiyellow bold',
    'loading frame.border': 'fg:ansiyellow',
})

# prompt_toolkit key -> controller key name
KEY_NAMES = {
    'enter': 'enter',
    'c-j': 'ctrl-j',
    'escape': 'escape',
    'backspace': 'backspace',
    'up': 'up',
    'down': 'down',
    'left': 'left',
    'right': 'right',
    'home': 'home',
    'end': 'end',
    'pageup': 'page-up',
    'pagedown': 'page-down',
    'c-s': 'ctrl-s',
}

INPUT_MAX_HEIGHT = 10


class MessageAreaControl(UIControl):
    """Draws exactly the visible slice computed by the session viewport."""

    def __init__(self, session: ChatSession):
        self.session = session

    def is_focusable(self) -> bool:
        return False

    def create_content(self, width: int, height: int) -> UIContent:
        view = self.session.render_view(width, height)
        lines = [list(line.fragments) for line in view.lines]

        def get_line(i: int):
            return lines[i]

        return UIContent(get_line=get_line, line_count=len(lines), show_cursor=False)


class TermChatUI:
    """Terminal UI: header, message area, status line, input box and overlays."""

    def __init__(self, session: ChatSession, input=None, output=None):
        self.session = session
        self.controller = InputController(session)
        self.loop = EventLoop(session, self.controller, session.config.tick_interval)
        self._custom_input = input
        self._custom_output = output

        self.layout = self._create_layout()
        self.kb = self._create_key_bindings()

        app_kwargs = {
            'layout': self.layout,
            'key_bindings': self.kb,
            'style': APP_STYLE,
            'full_screen': True,
            'mouse_support': False,
        }
        if self._custom_input is not None:
            app_kwargs['input'] = self._custom_input
        if self._custom_output is not None:
            app_kwargs['output'] = self._custom_output

        self.app = Application(**app_kwargs)
        # Lone Escape must not wait long for a possible Alt+Enter
        self.app.timeoutlen = 0.25
        self.app.ttimeoutlen = 0.05
        self.loop.redraw = self.app.invalidate

    def _get_header(self):
        config = self.session.config
        return [
            ('class:header', ' TermChat '),
            ('class:header', '│ '),
            ('class:header.model', f'{config.model} '),
            ('class:header', f'@ {config.api_url} '),
        ]

    def _get_area_footer(self):
        indicator = self.session.indicator()
        label = f"─ Messages {indicator} " if indicator else "─ Messages "
        return [('class:separator', label)]

    def _get_status(self):
        status = self.session.status
        return [(f'class:status.{status.severity.value}', f' {status.text}')]

    def _get_input_title(self):
        style = 'class:input.title.editing' if self.controller.mode is InputMode.EDITING else 'class:input.title'
        return [(style, self.controller.title)]

    def _get_input_text(self):
        if self.controller.mode is InputMode.NORMAL:
            return [('class:input.placeholder', " Press 'i' to type, 'h' for help, 'q' to quit")]
        buf = self.controller.buffer
        before, after = buf.text[:buf.cursor], buf.text[buf.cursor:]
        # Cursor sits on the next character, or a blank cell at a line end
        if after and after[0] != '\n':
            cursor, rest = after[0], after[1:]
        else:
            cursor, rest = ' ', after
        return [
            ('class:input.text', before),
            ('class:input.cursor', cursor),
            ('class:input.text', rest),
        ]

    def _input_height(self) -> int:
        if self.controller.mode is InputMode.NORMAL:
            return 1
        return max(1, min(INPUT_MAX_HEIGHT, self.controller.buffer.text.count('\n') + 1))

    def _get_loading_text(self):
        loading = self.session.loading
        elapsed = self.session.orchestrator.elapsed()
        return [('class:loading', f"{loading.spinner} Loading response... ({elapsed:.0f}s)")]

    def _create_layout(self) -> Layout:  # pragma: no cover - UI layout wiring
        """Create the application layout."""
        header_window = Window(content=FormattedTextControl(self._get_header), height=1, style='class:header')
        self.message_window = Window(content=MessageAreaControl(self.session))
        footer_window = Window(content=FormattedTextControl(self._get_area_footer), height=1, char='─', style='class:separator')
        status_window = Window(content=FormattedTextControl(self._get_status), height=1)
        input_title_window = Window(content=FormattedTextControl(self._get_input_title), height=1, char='─', style='class:separator')
        input_window = Window(
            content=FormattedTextControl(self._get_input_text),
            height=self._input_height,
            wrap_lines=True,
        )

        root_container = HSplit([
            header_window,
            self.message_window,
            footer_window,
            status_window,
            input_title_window,
            input_window,
        ])

        help_body = Window(
            content=FormattedTextControl(lambda: '\n'.join(format_help_lines())),
            style='class:help',
        )
        help_float = ConditionalContainer(
            Frame(help_body, title=" Help ", style='class:help', width=72),
            filter=Condition(lambda: self.session.show_help),
        )
        loading_float = ConditionalContainer(
            Frame(
                Window(content=FormattedTextControl(self._get_loading_text), height=1, align=WindowAlign.CENTER),
                title=" AI is thinking... ",
                style='class:loading',
                width=44,
            ),
            filter=Condition(lambda: self.session.busy and not self.session.show_help),
        )

        float_container = FloatContainer(
            content=root_container,
            floats=[
                Float(content=help_float),
                Float(content=loading_float),
            ]
        )
        return Layout(float_container)

    def _dispatch(self, event, key: str) -> None:
        self.controller.handle_key(key)
        if self.session.quit_requested:
            event.app.exit()

    def _create_key_bindings(self) -> KeyBindings:  # pragma: no cover - interactive key handling
        """Map terminal keys onto controller key names."""
        kb = KeyBindings()

        for pt_key, name in KEY_NAMES.items():
            kb.add(pt_key)(lambda event, name=name: self._dispatch(event, name))

        @kb.add('escape', 'enter')  # Alt+Enter (escape sequence)
        def handle_alt_enter(event):
            self._dispatch(event, 'alt-enter')

        @kb.add('c-c')
        @kb.add('c-d')
        def handle_exit(event):
            self.session.request_quit()
            event.app.exit()

        @kb.add(Keys.BracketedPaste)
        def handle_paste(event):
            if self.controller.mode is InputMode.EDITING:
                self.controller.insert(event.data.replace('\r\n', '\n').replace('\r', '\n'))

        @kb.add('<any>')
        def handle_any(event):
            data = event.data
            if len(data) == 1 and data.isprintable():
                self._dispatch(event, data)

        return kb

    def _start_ticking(self) -> None:
        self.app.create_background_task(self.loop.run_async())

    def run(self) -> None:
        """Run the application until quit."""
        self.session.events.emit(
            UIEventType.APP_STARTED,
            model=self.session.config.model,
            api_url=self.session.config.api_url,
        )
        try:
            self.app.run(pre_run=self._start_ticking)
        finally:
            self.session.events.emit(UIEventType.APP_STOPPED, messages=len(self.session.store))

    async def run_async(self) -> None:
        """Run inside an existing asyncio loop (headless tests)."""
        self.session.events.emit(UIEventType.APP_STARTED, model=self.session.config.model)
        try:
            await self.app.run_async(pre_run=self._start_ticking)
        finally:
            self.session.events.emit(UIEventType.APP_STOPPED, messages=len(self.session.store))


def run_ui(session: ChatSession, input=None, output=None):  # pragma: no cover - interactive UI loop
    """Run the terminal UI.

    Args:
        session: Session to drive
        input: Optional prompt_toolkit input (for headless runs)
        output: Optional prompt_toolkit output (for headless runs)
    """
    ui = TermChatUI(session, input=input, output=output)
    ui.run()
