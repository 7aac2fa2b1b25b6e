#!/usr/bin/env python3

"""
ore-chat: a terminal chat client for a tool-using LLM agent.

The agent can look up the current time, search the web and read pages.
Its answers, reasoning and function calls are shown in a scrolling
full-screen transcript above an input box.
"""

import argparse
import asyncio
import logging
import sys

import litellm

from orechat import startup_checks
from orechat.app_state import AppState
from orechat.chat_view import ChatView
from orechat.config_utils import (
    configure_logging,
    get_config_value,
    load_configuration as load_app_configuration,
    update_runtime_override,
)
from orechat.llm_interaction import Agent
from orechat.ui_display import display_fatal_error

__version__ = "0.1.0"

# Suppress LiteLLM debug info
litellm.suppress_debug_info = True

logger = logging.getLogger("ore_chat")

# CLI flag -> config parameter
CLI_OVERRIDES = {
    "model": "model",
    "api_base": "api_base",
    "reasoning_effort": "reasoning_effort",
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="ore-chat: chat with a tool-using LLM agent in your terminal.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--model', metavar='MODEL_NAME', type=str, help='litellm model name (overrides LITELLM_MODEL and config.toml).')
    parser.add_argument('--api-base', metavar='URL', type=str, help='API base URL for the model provider.')
    parser.add_argument('--reasoning-effort', choices=["low", "medium", "high"], help='Reasoning effort requested from the model.')
    parser.add_argument('--debug', action='store_true', help='Log request parameters and raw stream chunks at DEBUG level.')
    return parser.parse_args(argv)


def apply_cli_overrides(args: argparse.Namespace, app_state: AppState) -> bool:
    for arg_name, param_name in CLI_OVERRIDES.items():
        value = getattr(args, arg_name)
        if value is not None and not update_runtime_override(param_name, value, app_state.RUNTIME_OVERRIDES, app_state.console):
            return False
    app_state.DEBUG_LLM_INTERACTIONS = args.debug
    return True


async def run_chat(app_state: AppState) -> str:
    agent = Agent(app_state)
    view = ChatView(agent, app_state)
    return await view.run()


def main(argv=None):
    args = parse_args(argv)
    app_state = AppState()

    # Load .env, config.toml
    load_app_configuration(app_state.console)
    if not apply_cli_overrides(args, app_state):
        sys.exit(2)

    log_path = configure_logging(app_state.RUNTIME_OVERRIDES, app_state.console, debug=args.debug)
    startup_checks.perform_terminal_check()

    logger.info(f"Starting ore-chat {__version__} with model {get_config_value('model', app_state.RUNTIME_OVERRIDES)}")
    try:
        final_input = asyncio.run(run_chat(app_state))
    except KeyboardInterrupt:
        final_input = ""
    except Exception as e:
        logger.exception("ore-chat terminated by an unexpected error")
        display_fatal_error(app_state.console, f"{type(e).__name__}: {e}", log_path)
        sys.exit(1)

    logger.info("ore-chat exited")
    # The input box content at quit time is the last line on stdout
    print(final_input if final_input is not None else "")


if __name__ == "__main__":
    main()
