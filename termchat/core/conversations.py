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

"""Conversation store and on-disk persistence for TermChat."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)

ROLES = ('system', 'user', 'assistant')
DEFAULT_SAVE_NAME = "conversation.json"


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: str  # "system", "user", or "assistant"
    content: str
    reasoning: Optional[str] = None  # Reasoning segment extracted from assistant output
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class ConversationStats:
    """Counts reported by /stats."""
    total: int
    user: int
    assistant: int
    characters: int

    @property
    def estimated_tokens(self) -> int:
        return self.characters // 4


class ConversationStore:
    """Ordered message history.

    Insertion order is display order. A user message appended with
    append_provisional() stays provisional until it is committed or rolled
    back, and only one can be pending at a time.
    """

    def __init__(self, messages: Optional[list[Message]] = None):
        self._messages: list[Message] = list(messages or [])
        self._provisional: Optional[Message] = None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index):
        return self._messages[index]

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def has_provisional(self) -> bool:
        return self._provisional is not None

    def append(self, message: Message) -> None:
        if message.role not in ROLES:
            raise ValueError(f"Unknown role: {message.role}")
        self._messages.append(message)

    def append_provisional(self, content: str) -> Message:
        """Append a user message whose request has not resolved yet."""
        if self._provisional is not None:
            raise RuntimeError("A provisional message is already pending")
        message = Message(role='user', content=content)
        self._messages.append(message)
        self._provisional = message
        return message

    def commit_provisional(self) -> None:
        self._provisional = None

    def rollback_provisional(self) -> bool:
        """Remove the pending user message.

        Returns:
            True if a message was removed
        """
        pending = self._provisional
        self._provisional = None
        if pending is None:
            return False
        return self.remove_last_if(role='user', message=pending)

    def remove_last_if(self, role: str, message: Optional[Message] = None) -> bool:
        """Pop the last message if it has the given role (and identity, if given)."""
        if not self._messages:
            return False
        last = self._messages[-1]
        if last.role != role or (message is not None and last is not message):
            return False
        self._messages.pop()
        return True

    def clear(self) -> None:
        self._messages.clear()
        self._provisional = None

    def replace(self, messages: list[Message]) -> None:
        """Swap the whole history, e.g. after loading from disk."""
        if self._provisional is not None:
            raise RuntimeError("Cannot replace history while a request is pending")
        self._messages = list(messages)

    def context_window(self, max_messages: int) -> tuple[Message, ...]:
        """Return the most recent messages to send as request context.

        A leading system message is always kept, even when older messages are
        dropped to fit max_messages.
        """
        messages = self._messages
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if len(messages) <= max_messages:
            return tuple(messages)

        if messages[0].role == 'system':
            start = max(1, len(messages) - (max_messages - 1))
            return (messages[0],) + tuple(messages[start:])
        return tuple(messages[len(messages) - max_messages:])

    def stats(self) -> ConversationStats:
        user = sum(1 for m in self._messages if m.role == 'user')
        assistant = sum(1 for m in self._messages if m.role == 'assistant')
        characters = sum(len(m.content) + len(m.reasoning or "") for m in self._messages)
        return ConversationStats(
            total=len(self._messages),
            user=user,
            assistant=assistant,
            characters=characters,
        )


def message_to_dict(message: Message) -> dict:
    data = {
        'role': message.role,
        'content': message.content,
        'created_at': message.created_at.isoformat(),
    }
    if message.reasoning:
        data['reasoning'] = message.reasoning
    return data


def message_from_dict(data: dict) -> Message:
    """Build a Message from its saved form.

    Raises:
        ValueError: If a required field is missing or invalid
    """
    if not isinstance(data, dict):
        raise ValueError("Message entry must be an object")
    role = data.get('role')
    content = data.get('content')
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role!r}")
    if not isinstance(content, str):
        raise ValueError("Message content must be a string")
    created_raw = data.get('created_at')
    created_at = datetime.fromisoformat(created_raw) if created_raw else datetime.now()
    return Message(
        role=role,
        content=content,
        reasoning=data.get('reasoning') or None,
        created_at=created_at,
    )


def save_conversation(path: Path, messages) -> Path:
    """Write messages to a JSON file.

    Args:
        path: Target file
        messages: Iterable of Message

    Returns:
        The path written

    Raises:
        PersistenceError: If the file cannot be written
    """
    payload = [message_to_dict(m) for m in messages]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise PersistenceError(f"{path}: {e.strerror or e}") from e
    logger.info("Saved %d messages to %s", len(payload), path)
    return path


def load_conversation(path: Path) -> list[Message]:
    """Read messages from a JSON file written by save_conversation.

    Raises:
        PersistenceError: If the file is missing, unreadable or malformed
    """
    if not path.exists():
        raise PersistenceError(f"File not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"{path}: invalid JSON ({e.msg})") from e
    except OSError as e:
        raise PersistenceError(f"{path}: {e.strerror or e}") from e

    if not isinstance(data, list):
        raise PersistenceError(f"{path}: expected a list of messages")
    try:
        messages = [message_from_dict(entry) for entry in data]
    except ValueError as e:
        raise PersistenceError(f"{path}: {e}") from e
    logger.info("Loaded %d messages from %s", len(messages), path)
    return messages


class ConversationFileStore:
    """Save/load contract backed by JSON files under a root directory."""

    def __init__(self, root: Path):
        self.root = root

    def resolve(self, name: Optional[str] = None) -> Path:
        """Turn a user-supplied name into a file path.

        Relative names live under root; a .json suffix is added when the
        name has no suffix.
        """
        name = (name or "").strip() or DEFAULT_SAVE_NAME
        path = Path(name).expanduser()
        if not path.suffix:
            path = path.with_suffix('.json')
        if not path.is_absolute():
            path = self.root.expanduser() / path
        return path

    def save(self, messages, name: Optional[str] = None) -> Path:
        return save_conversation(self.resolve(name), messages)

    def load(self, name: Optional[str] = None) -> list[Message]:
        return load_conversation(self.resolve(name))
