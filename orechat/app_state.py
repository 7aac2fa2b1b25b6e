# orechat/app_state.py
from rich.console import Console
from typing import Dict, Any


class AppState:
    """Process-wide settings and handles, built once in main() and passed to the agent and the view."""

    def __init__(self):
        # Used before the full-screen UI starts and after it exits; stderr keeps stdout for the quit line.
        self.console = Console(stderr=True)
        self.RUNTIME_OVERRIDES: Dict[str, Any] = {}
        self.DEBUG_LLM_INTERACTIONS: bool = False
