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

"""Configuration loading and management for TermChat."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import toml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:11434/v1"
DEFAULT_MODEL = "llama3.2"
LOCAL_HOSTS = ("localhost", "127.0.0.1")
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class Config:
    """Application configuration."""
    api_url: str
    api_key: str
    model: str
    max_tokens: int = 500
    temperature: float = 0.7
    system_prompt: Optional[str] = None
    max_context_messages: int = 20
    timeout: int = 120  # API request timeout in seconds
    tick_interval: float = 0.1  # Event loop tick in seconds
    conversations_dir: Path = Path.home() / ".termchat" / "conversations"
    log_level: str = "INFO"  # Logging level: DEBUG, INFO, WARNING, ERROR
    log_file: Optional[Path] = Path.home() / ".termchat" / "termchat.log"  # None = stderr

    @property
    def is_local(self) -> bool:
        return any(host in self.api_url for host in LOCAL_HOSTS)


def default_config_path() -> Path:
    return Path.home() / ".termchat" / "config.toml"


def _setup_logging(config: Config) -> None:
    """Configure the root logger from config settings.

    Args:
        config: Configuration object with logging settings
    """
    numeric_level = getattr(logging, config.log_level, logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.log_file)
    else:
        handler = logging.StreamHandler()

    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.info(f"Logging initialized: level={config.log_level}, file={config.log_file}")


def _coerce(key: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for '{key}': {value!r}")


def _read_toml(config_path: Path) -> dict:
    with open(config_path, 'r') as f:
        try:
            return toml.load(f)
        except toml.TomlDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}")


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict] = None,
    configure_logging: bool = True,
) -> Config:
    """Load configuration from .env, the TOML file and the environment.

    Later sources win: TOML values, then HF_BASE_URL / HUGGINGFACE_TOKEN /
    HF_MODEL / SYSTEM_PROMPT from the environment, then explicit overrides
    (command line flags).

    Args:
        config_path: TOML file to read; defaults to ~/.termchat/config.toml,
            which may be absent
        overrides: Field values that take precedence over everything else
        configure_logging: Install the root log handler

    Returns:
        Config object with loaded or default values

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        ValueError: If configuration is invalid
    """
    load_dotenv()

    if config_path is not None:
        config_path = Path(config_path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found at {config_path}")
        data = _read_toml(config_path)
    elif default_config_path().exists():
        data = _read_toml(default_config_path())
    else:
        data = {}

    general = data.get('general', {})
    api = data.get('api', {})
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    api_url = overrides.get('api_url') or os.environ.get('HF_BASE_URL') or api.get('base_url')
    warn_default_url = not api_url
    api_url = (api_url or DEFAULT_API_URL).rstrip('/')

    model = overrides.get('model') or os.environ.get('HF_MODEL') or api.get('model') or DEFAULT_MODEL
    api_key = os.environ.get('HUGGINGFACE_TOKEN') or api.get('api_key') or ""
    system_prompt = os.environ.get('SYSTEM_PROMPT') or general.get('system_prompt') or None

    max_tokens = _coerce('max_tokens', api.get('max_tokens', 500), int)
    temperature = _coerce('temperature', api.get('temperature', 0.7), float)
    timeout = _coerce('timeout', api.get('timeout', 120), int)
    max_context = _coerce('max_context_messages', general.get('max_context_messages', 20), int)
    tick_interval = _coerce('tick_interval', general.get('tick_interval', 0.1), float)

    if max_tokens < 1:
        raise ValueError("Invalid value for 'max_tokens': must be at least 1")
    if not 0.0 <= temperature <= 2.0:
        raise ValueError("Invalid value for 'temperature': must be between 0.0 and 2.0")
    if timeout < 1:
        raise ValueError("Invalid value for 'timeout': must be at least 1 second")
    if max_context < 1:
        raise ValueError("Invalid value for 'max_context_messages': must be at least 1")
    if tick_interval <= 0:
        raise ValueError("Invalid value for 'tick_interval': must be positive")

    log_level = str(overrides.get('log_level') or general.get('log_level', 'INFO')).upper()
    if log_level not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid value for 'log_level': {log_level!r}")

    default_log = Path.home() / ".termchat" / "termchat.log"
    log_file_raw = general.get('log_file', str(default_log))
    log_file = Path(log_file_raw).expanduser() if log_file_raw else None

    conversations_dir = Path(
        general.get('conversations_dir', Path.home() / ".termchat" / "conversations")
    ).expanduser()

    config = Config(
        api_url=api_url,
        api_key=api_key,
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system_prompt=system_prompt,
        max_context_messages=max_context,
        timeout=timeout,
        tick_interval=tick_interval,
        conversations_dir=conversations_dir,
        log_level=log_level,
        log_file=log_file,
    )

    if not config.api_key:
        config.api_key = "unused" if config.is_local else "missing-token"

    if configure_logging:
        _setup_logging(config)

    if warn_default_url:
        logger.warning("No HF_BASE_URL set, using local endpoint %s", DEFAULT_API_URL)
    if config.api_key == "missing-token":
        logger.warning("HUGGINGFACE_TOKEN not set but using remote API %s", config.api_url)

    return config
