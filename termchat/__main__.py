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

"""Main entry point for TermChat."""

import argparse
import logging
import sys
import traceback
from pathlib import Path

from .core.config import load_config
from .core.conversations import ConversationFileStore
from .core.events import UIEventEmitter
from .core.openai_client import OpenAIChatClient
from .core.session import ChatSession
from .ui.app import run_ui

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TermChat: a terminal chat client for OpenAI-compatible endpoints",
        prog="python -m termchat"
    )
    parser.add_argument(
        '--config',
        metavar='PATH',
        type=Path,
        help='TOML configuration file (default: ~/.termchat/config.toml if present)'
    )
    parser.add_argument('--model', help='Model name (overrides HF_MODEL)')
    parser.add_argument('--base-url', dest='api_url', metavar='URL', help='API base URL (overrides HF_BASE_URL)')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Logging level'
    )
    parser.add_argument(
        '--log-ui-events',
        action='store_true',
        help='Write UI events to the log as UI_EVENT lines'
    )
    return parser


def main(argv=None):  # pragma: no cover - interactive entrypoint not exercised in unit tests
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        # Load configuration (this also initializes logging)
        config = load_config(
            args.config,
            overrides={'model': args.model, 'api_url': args.api_url, 'log_level': args.log_level},
        )

        logger.info("=== TermChat starting ===")
        logger.info(f"Configuration loaded: api_url={config.api_url}, model={config.model}")

        if config.log_file:
            print(f"Logging to: {config.log_file} (level: {config.log_level})")
        else:
            print(f"Logging to stderr (level: {config.log_level})")

        client = OpenAIChatClient(config)
        persistence = ConversationFileStore(config.conversations_dir)
        session = ChatSession(
            config,
            client,
            persistence,
            events=UIEventEmitter(log_events=args.log_ui_events),
        )

        run_ui(session)
        print("Goodbye!")

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        print("\nExiting TermChat...")
        logger.info("Application terminated by user (Ctrl+C)")
        sys.exit(0)

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        traceback.print_exc()
        logger.exception(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
