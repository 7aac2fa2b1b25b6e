# orechat/startup_checks.py
import sys

from rich.console import Console
from rich.panel import Panel


def perform_terminal_check():
    """
    Checks that stdin and stdout are attached to a terminal.
    The full-screen UI cannot run on pipes or redirected files, so this prints an error and exits.
    """
    if sys.stdin.isatty() and sys.stdout.isatty():
        return

    redirected = [name for name, stream in (("stdin", sys.stdin), ("stdout", sys.stdout)) if not stream.isatty()]
    message = (
        f"ERROR: {' and '.join(redirected)} {'is' if len(redirected) == 1 else 'are'} not a terminal.\n\n"
        "ore-chat is an interactive full-screen program. Run it directly in a terminal,\n"
        "without piping its input or redirecting its output.\n\n"
        "Exiting."
    )
    console = Console(stderr=True)
    console.print(Panel(message, title="[bold red]Terminal Check Failed[/bold red]", border_style="red", expand=False))
    sys.exit(1)
