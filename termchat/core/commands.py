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

"""Command parsing and handling for TermChat."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .conversations import DEFAULT_SAVE_NAME, ConversationStats
from .errors import PersistenceError
from .status import Severity

if TYPE_CHECKING:
    from .session import ChatSession

logger = logging.getLogger(__name__)

COMMAND_SIGIL = '/'
SAVE_BUSY_WARNING = "Cannot save while waiting for a response"

# Command registry with metadata for the help overlay
COMMAND_REGISTRY = {
    "help": {
        "aliases": ["h"],
        "usage": "/help, /h",
        "description": "Toggle help",
    },
    "clear": {
        "aliases": ["c"],
        "usage": "/clear, /c",
        "description": "Clear conversation",
    },
    "stats": {
        "aliases": ["s"],
        "usage": "/stats, /s",
        "description": "Show statistics & token estimate",
    },
    "save": {
        "aliases": [],
        "usage": "/save [file]",
        "description": f"Save conversation (default: {DEFAULT_SAVE_NAME})",
    },
    "load": {
        "aliases": [],
        "usage": "/load [file]",
        "description": f"Load conversation (default: {DEFAULT_SAVE_NAME})",
    },
}

COMMAND_ALIASES = {
    alias: name
    for name, info in COMMAND_REGISTRY.items()
    for alias in [name] + info["aliases"]
}

KEYBOARD_SHORTCUTS = [
    ("i", "Enter input mode"),
    ("Esc", "Exit input mode (discards input)"),
    ("Enter", "Send message"),
    ("Shift+Enter", "New line in message (Alt+Enter, Ctrl+J)"),
    ("↑/↓", "Scroll messages up/down"),
    ("PageUp/PageDn", "Scroll 10 lines up/down"),
    ("Home/End", "Jump to top/bottom"),
    ("h", "Toggle this help"),
    ("t", "Toggle thinking visibility"),
    ("Ctrl+S", "Quick save"),
    ("q", "Quit application"),
]


@dataclass
class CommandResult:
    """Result of a command execution."""
    message: Optional[str] = None
    severity: Severity = Severity.INFO
    command_type: Optional[str] = None


def resolve_command(name: str) -> Optional[str]:
    """Map a command name or alias to its canonical name."""
    return COMMAND_ALIASES.get(name.lower())


def format_help_lines() -> list[str]:
    """Help overlay contents: key bindings, then commands."""
    lines = ["📖 Help & Commands", "", "🎮 Navigation:"]
    for key, description in KEYBOARD_SHORTCUTS:
        lines.append(f"  {key:<14} - {description}")
    lines.extend(["", "💬 Commands (type in input):"])
    for info in COMMAND_REGISTRY.values():
        lines.append(f"  {info['usage']:<14} - {info['description']}")
    lines.extend(["", "  //text         - Send a message starting with /"])
    return lines


def format_stats(stats: ConversationStats) -> str:
    return (
        f"Messages: {stats.total} (U:{stats.user} A:{stats.assistant}) | "
        f"{stats.characters} chars | ~{stats.estimated_tokens} tokens"
    )


def handle_command(line: str, session: 'ChatSession') -> CommandResult:
    """Parse and handle a command.

    Args:
        line: Command line (starting with /)
        session: Session to act on

    Returns:
        CommandResult with the status to show
    """
    line = line.strip()
    if not line.startswith(COMMAND_SIGIL):
        return CommandResult("Commands must start with /", Severity.WARNING)

    parts = line[1:].split(maxsplit=1)
    if not parts:
        return CommandResult("Empty command", Severity.WARNING)

    command = resolve_command(parts[0])
    arg = parts[1].strip() if len(parts) > 1 else ""
    if command is None:
        return CommandResult(f"Unknown command: /{parts[0]}", Severity.WARNING)

    logger.debug("Executing command /%s", command)

    if command == 'help':
        session.toggle_help()
        return CommandResult("Help toggled", Severity.INFO, command)

    elif command == 'stats':
        return CommandResult(format_stats(session.store.stats()), Severity.INFO, command)

    elif command == 'clear':
        if session.busy:
            return CommandResult("Cannot clear while waiting for a response", Severity.WARNING, command)
        session.store.clear()
        session.viewport.follow()
        return CommandResult("Conversation cleared", Severity.SUCCESS, command)

    elif command == 'save':
        if session.busy:
            return CommandResult(SAVE_BUSY_WARNING, Severity.WARNING, command)
        try:
            path = session.persistence.save(session.store.messages, arg or None)
        except PersistenceError as e:
            logger.warning("Save failed: %s", e)
            return CommandResult(f"Failed to save: {e}", Severity.ERROR, command)
        return CommandResult(f"Saved conversation to {path}", Severity.SUCCESS, command)

    elif command == 'load':
        if session.busy:
            return CommandResult("Cannot load while waiting for a response", Severity.WARNING, command)
        name = arg or DEFAULT_SAVE_NAME
        try:
            messages = session.persistence.load(name)
        except PersistenceError as e:
            logger.warning("Load failed: %s", e)
            return CommandResult(f"Failed to load: {e}", Severity.ERROR, command)
        session.store.replace(messages)
        session.viewport.follow()
        return CommandResult(f"Loaded conversation from {name}", Severity.SUCCESS, command)

    return CommandResult(f"Unknown command: /{parts[0]}", Severity.WARNING)
