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

"""Error kinds and status text for TermChat."""

import re
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of everything that can go wrong in a session."""
    CONNECTION = "connection"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    EMPTY_INPUT = "empty_input"
    PERSISTENCE = "persistence"
    PARSE_DEGRADATION = "parse_degradation"  # never raised, markup falls back to literal text
    API = "api"


class ChatError(Exception):
    """Base class for errors surfaced to the user as a status line."""

    kind = ErrorKind.API

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class CompletionError(ChatError):
    """Raised by a completion client when a request fails."""

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, status_code: Optional[int] = None):
        super().__init__(message, kind or classify_error(message))
        self.status_code = status_code


class PersistenceError(ChatError):
    """Raised when saving or loading a conversation fails."""

    kind = ErrorKind.PERSISTENCE


class EmptyInputError(ChatError):
    """Raised when the user confirms an empty input buffer."""

    kind = ErrorKind.EMPTY_INPUT


_STATUS_KINDS = {
    401: ErrorKind.AUTH,
    403: ErrorKind.AUTH,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMIT,
}

_CONNECTION_WORDS = ("connection", "refused", "timed out", "timeout", "unreachable")


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    return _STATUS_KINDS.get(status_code, ErrorKind.API)


def classify_error(description: str) -> ErrorKind:
    """Classify a free-form error description.

    Status codes win over keywords, so "HTTP error 404: connection reset"
    is still NOT_FOUND.
    """
    text = (description or "").lower()
    for match in re.finditer(r'\b(\d{3})\b', text):
        kind = _STATUS_KINDS.get(int(match.group(1)))
        if kind is not None:
            return kind
    if any(word in text for word in _CONNECTION_WORDS):
        return ErrorKind.CONNECTION
    return ErrorKind.API


def describe_error(kind: ErrorKind, detail: str = "") -> str:
    """Build the one-line status text for a failed request."""
    if kind is ErrorKind.NOT_FOUND:
        return "Error 404: API endpoint not found. Check the base URL and model name."
    if kind is ErrorKind.AUTH:
        return "Error 401: Invalid API key. Please check your token."
    if kind is ErrorKind.RATE_LIMIT:
        return "Error 429: Rate limit exceeded. Please wait and try again."
    if kind is ErrorKind.CONNECTION:
        if "timed out" in detail.lower():
            return f"Connection Error: {detail}"
        return "Connection Error: Cannot reach API. Check if the service is running and the base URL is correct."
    if kind is ErrorKind.EMPTY_INPUT:
        return "Cannot send empty message"
    if kind is ErrorKind.PERSISTENCE:
        return f"Persistence Error: {detail}"
    return f"API Error: {detail}"
