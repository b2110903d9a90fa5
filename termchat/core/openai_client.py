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

"""OpenAI-compatible chat completion client."""

import logging
import re
from typing import Optional, Sequence

import requests

from .config import Config
from .conversations import Message
from .errors import CompletionError, ErrorKind, kind_for_status

logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """Blocking client for OpenAI-compatible /chat/completions endpoints.

    complete() is called from the request worker thread, never from the UI
    thread, so it is free to block for up to config.timeout seconds.
    """

    # Common stop tokens that may leak through from various models
    STOP_TOKENS = [
        "<|im_end|>",
        "<|endoftext|>",
        "<|im_start|>",
        "<|end|>",
        "</s>",
        "<|eot_id|>",
    ]

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self.session.headers.update(headers)

    def _strip_stop_tokens(self, content: str) -> str:
        """Strip common stop tokens from the end of model output."""
        if not content:
            return content
        for token in self.STOP_TOKENS:
            if content.endswith(token):
                content = content[:-len(token)].rstrip()
        return content

    def _build_url(self, endpoint: str) -> str:
        """Join api_url and endpoint without doubling a version prefix like /v1."""
        base = self.config.api_url.rstrip('/')
        version_match = re.search(r'/v\d+$', base)
        if version_match:
            base_version = version_match.group()
            if endpoint.startswith(base_version):
                endpoint = endpoint[len(base_version):]
        return f"{base}{endpoint}"

    def _build_payload(self, history: Sequence[Message]) -> dict:
        return {
            "model": self.config.model,
            "messages": [{"role": m.role, "content": m.content} for m in history],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

    def complete(self, history: Sequence[Message]) -> str:
        """Send history and return the raw reply text.

        A separate reasoning field in the reply is folded back into the text
        as a <thinking> block so it is extracted like inline reasoning.

        Raises:
            CompletionError: On transport failure, HTTP error or empty reply
        """
        url = self._build_url("/v1/chat/completions")
        payload = self._build_payload(history)
        resp = self._post_with_temperature_retry(url, payload)

        try:
            data = resp.json()
        except ValueError as e:
            raise CompletionError(f"Invalid JSON in response: {e}", ErrorKind.API) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise CompletionError("No response received", ErrorKind.API)

        message = choices[0].get("message") or {}
        content = self._strip_stop_tokens(message.get("content") or "")
        reasoning = message.get("reasoning_content") or message.get("reasoning")
        self._log_response_metadata(resp, data)

        if not content.strip():
            logger.warning("Empty content in response. Message keys: %s", list(message.keys()))
            raise CompletionError("No content received", ErrorKind.API)

        if reasoning:
            logger.debug("Captured %d chars of reasoning content", len(reasoning))
            content = f"<thinking>{reasoning}</thinking>\n\n{content}"
        return content

    def _http_error_with_body(self, resp, exc: requests.HTTPError) -> CompletionError:
        detail_msg = None
        try:
            err = resp.json().get("error", {})
            if isinstance(err, dict):
                detail_msg = err.get("message")
            elif err:
                detail_msg = str(err)
        except (ValueError, AttributeError):
            pass

        msg_parts = [f"HTTP error {resp.status_code}: {resp.reason}"]
        if detail_msg:
            msg_parts.append(f"Message: {detail_msg}")

        error = CompletionError(
            "; ".join(msg_parts),
            kind_for_status(resp.status_code),
            status_code=resp.status_code,
        )
        error.__cause__ = exc
        return error

    def _log_response_metadata(self, resp: requests.Response, data: dict) -> None:
        """Log response metadata without message content."""
        headers = getattr(resp, 'headers', None) or {}
        interesting_headers = {
            k: v for k, v in headers.items()
            if any(x in k.lower() for x in ['x-request', 'x-ratelimit', 'openai', 'cf-ray'])
        }
        metadata = {
            "status": getattr(resp, 'status_code', None),
            "model": data.get("model"),
            "id": data.get("id"),
            "usage": data.get("usage"),
            "headers": interesting_headers,
        }
        metadata = {k: v for k, v in metadata.items() if v}
        logger.debug("Response metadata: %s", metadata)

    def _post(self, url: str, payload: dict) -> requests.Response:
        timeout = self.config.timeout
        logger.debug(
            "POST %s model=%s messages=%s temp=%s",
            url,
            payload.get("model"),
            len(payload.get("messages", [])),
            payload.get("temperature"),
        )
        try:
            resp = self.session.post(url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise CompletionError(
                f"Request timed out after {timeout} seconds",
                ErrorKind.CONNECTION,
            ) from e
        except requests.ConnectionError as e:
            raise CompletionError(
                f"Failed to connect to {self.config.api_url}",
                ErrorKind.CONNECTION,
            ) from e
        return resp

    def _post_with_temperature_retry(self, url: str, payload: dict) -> requests.Response:
        """Post chat payload; retry once without temperature if the model rejects it."""
        resp = self._post(url, payload)
        try:
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            if not self._is_temperature_error(resp):
                raise self._http_error_with_body(resp, e)

        payload_no_temp = dict(payload)
        payload_no_temp.pop("temperature", None)
        logger.info("Retrying without temperature for model %s due to temperature error", payload.get("model"))
        resp = self._post(url, payload_no_temp)
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise self._http_error_with_body(resp, e)
        return resp

    def _is_temperature_error(self, resp: requests.Response) -> bool:
        try:
            err = resp.json().get("error", {})
            return isinstance(err, dict) and err.get("param") == "temperature"
        except (ValueError, AttributeError):
            return False
