# orechat/ui_display.py
import io
from typing import Dict, Sequence, Tuple

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from orechat.data_models import Role, TranscriptEntry

# Badge label and style per role. Never mutated.
ROLE_STYLES: Dict[Role, Tuple[str, str]] = {
    Role.USER: ("You:", "black on magenta"),
    Role.ANSWER: ("Agent", "black on green"),
    Role.REASONING: ("Reasoning", "black on green"),
    Role.FUNCTION_CALL: ("Function Call", "black on green"),
    Role.ERROR: ("Error", "white on red"),
}

SEPARATOR_STYLE = "dim"


def render_entry(entry: TranscriptEntry) -> Text:
    label, badge_style = ROLE_STYLES[entry.role]
    rendered = Text()
    rendered.append(f" {label} ", style=badge_style)
    rendered.append("\n")
    rendered.append(entry.text)
    return rendered


def render_transcript(entries: Sequence[TranscriptEntry], width: int) -> str:
    """
    Renders the transcript as ANSI text wrapped to width.

    A fresh console is used on every call, so the output depends only on
    (entries, width): rendering twice gives identical text, and no wrapping
    state survives from an earlier width.
    """
    if not entries:
        return ""

    buffer = io.StringIO()
    console = Console(
        file=buffer,
        width=max(1, width),
        force_terminal=True,
        color_system="standard",
        highlight=False,
        emoji=False,
        markup=False,
        legacy_windows=False,
    )
    for index, entry in enumerate(entries):
        if index:
            console.print(Rule(style=SEPARATOR_STYLE))
        console.print(render_entry(entry), overflow="fold")
    return buffer.getvalue().rstrip("\n")


def display_fatal_error(console: Console, message: str, log_path=None):
    """Startup/shutdown failures, printed once the terminal is back in normal mode."""
    details = escape(message)
    if log_path:
        details += f"\n\n[dim]Details were written to {log_path}[/dim]"
    console.print(Panel(
        details,
        title="[bold red]ore-chat stopped[/bold red]",
        border_style="red",
        expand=False,
    ))
