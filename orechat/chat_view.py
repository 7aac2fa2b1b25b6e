# orechat/chat_view.py
import asyncio
import logging
from typing import List, Optional, Set

from prompt_toolkit.application import Application
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.data_structures import Point
from prompt_toolkit.document import Document
from prompt_toolkit.filters import Condition
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout.containers import HSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.layout import Layout
from prompt_toolkit.layout.processors import AfterInput, ConditionalProcessor
from prompt_toolkit.styles import Style as PromptStyle
from prompt_toolkit.widgets import TextArea

from orechat.app_state import AppState
from orechat.config_utils import get_config_value
from orechat.data_models import EVENT_ROLES, DispatchError, Role, TranscriptEntry
from orechat.prompts import INPUT_PLACEHOLDER, INPUT_PROMPT, WELCOME_TEXT
from orechat.tool_defs import describe_error
from orechat.ui_display import render_transcript

logger = logging.getLogger(__name__)

INPUT_HEIGHT = 3
GAP_HEIGHT = 1
# Geometry until the first real terminal size is known
INITIAL_WIDTH = 30
INITIAL_VIEWPORT_HEIGHT = 5


class ChatView:
    """
    Full-screen chat window: scrolling transcript on top, input box below.

    All state here is touched only from the event loop. Each submitted
    question gets its own task that iterates the agent's results and puts
    them on self.events; process_events() applies them in arrival order.
    """

    def __init__(self, agent, app_state: AppState):
        self.agent = agent
        self.app_state = app_state
        self.char_limit: int = get_config_value("char_limit", app_state.RUNTIME_OVERRIDES, app_state.console)

        self.transcript: List[TranscriptEntry] = []
        self.events: asyncio.Queue = asyncio.Queue()
        self._dispatch_tasks: Set[asyncio.Task] = set()

        self.terminal_size = None
        self.viewport_width = INITIAL_WIDTH
        self.viewport_height = INITIAL_VIEWPORT_HEIGHT
        self.input_width = INITIAL_WIDTH
        # First transcript line shown in the viewport
        self.scroll_top = 0
        self.display_text = WELCOME_TEXT
        self._display_fragments = ANSI(WELCOME_TEXT)
        self.line_count = WELCOME_TEXT.count("\n") + 1

        self.input_area = TextArea(
            height=INPUT_HEIGHT,
            prompt=INPUT_PROMPT,
            multiline=True,
            wrap_lines=True,
            line_numbers=False,
            complete_while_typing=False,
            input_processors=[
                ConditionalProcessor(
                    AfterInput(INPUT_PLACEHOLDER, style="class:placeholder"),
                    filter=Condition(lambda: not self.input_area.text),
                )
            ],
        )
        self.input_area.buffer.on_text_changed += self._enforce_char_limit

        self.app: Optional[Application] = None

    # --- Transcript ---

    @property
    def awaiting_response(self) -> bool:
        return bool(self._dispatch_tasks)

    def render(self) -> str:
        return render_transcript(self.transcript, self.viewport_width)

    def refresh(self):
        """Re-renders the transcript into the viewport's display buffer."""
        self.display_text = self.render() if self.transcript else WELCOME_TEXT
        self._display_fragments = ANSI(self.display_text)
        self.line_count = self.display_text.count("\n") + 1
        self.scroll_top = min(self.scroll_top, self.max_scroll_top)

    @property
    def max_scroll_top(self) -> int:
        return max(0, self.line_count - self.viewport_height)

    def goto_bottom(self):
        self.scroll_top = self.max_scroll_top

    def scroll_page(self, pages: int):
        self.scroll_top = max(0, min(self.max_scroll_top, self.scroll_top + pages * self.viewport_height))

    def invalidate(self):
        if self.app is not None:
            self.app.invalidate()

    def _append(self, role: Role, text: str):
        self.transcript.append(TranscriptEntry(role=role, text=text))
        self.refresh()
        self.goto_bottom()
        self.invalidate()

    # --- Operations ---

    def submit(self, text: str):
        """Records the question, clears the input box and dispatches it without waiting."""
        self._append(Role.USER, text)
        self.input_area.text = ""
        self.dispatch(text)

    def dispatch(self, question: str):
        task = asyncio.get_running_loop().create_task(self._forward_results(question))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _forward_results(self, question: str):
        # Only enqueues; the transcript is changed by process_events().
        try:
            async for event in self.agent.ask(question):
                await self.events.put(event)
        except Exception as e:
            logger.exception("Question dispatch failed")
            await self.events.put(DispatchError(message=describe_error(e)))

    def on_agent_result(self, event):
        self._append(EVENT_ROLES[type(event)], str(event))

    def _apply_event(self, event):
        # The pump outlives a bad event
        try:
            self.on_agent_result(event)
        except Exception:
            logger.exception(f"Could not display {type(event).__name__}")
        finally:
            self.events.task_done()

    def apply_pending_events(self) -> int:
        """Applies every event already queued, without waiting. Returns how many were applied."""
        applied = 0
        while True:
            try:
                event = self.events.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            self._apply_event(event)
            applied += 1

    async def process_events(self):
        while True:
            event = await self.events.get()
            self._apply_event(event)
            self.apply_pending_events()

    def on_resize(self, width: int, height: int):
        self.terminal_size = (width, height)
        self.viewport_width = max(1, width)
        self.viewport_height = max(1, height - INPUT_HEIGHT - GAP_HEIGHT)
        self.input_width = max(1, width)
        if self.transcript:
            # Wrap content to the new width before showing it
            self.refresh()
        self.goto_bottom()

    def quit(self, app: Application):
        app.exit(result=self.input_area.text)

    # --- prompt_toolkit wiring ---

    def _enforce_char_limit(self, buffer: Buffer):
        if len(buffer.text) > self.char_limit:
            buffer.document = Document(
                buffer.text[:self.char_limit],
                cursor_position=min(buffer.cursor_position, self.char_limit),
            )

    def _sync_geometry(self, app: Application):
        size = app.output.get_size()
        if (size.columns, size.rows) != self.terminal_size:
            self.on_resize(size.columns, size.rows)

    def _key_bindings(self) -> KeyBindings:
        bindings = KeyBindings()

        @bindings.add("enter")
        def _(event):
            self.submit(self.input_area.text)

        @bindings.add("c-j")
        def _(event):
            self.input_area.buffer.insert_text("\n")

        # Not eager: Alt chords arrive as escape + key and must reach the editing bindings.
        @bindings.add("escape")
        @bindings.add("c-c")
        def _(event):
            self.quit(event.app)

        @bindings.add("pageup")
        def _(event):
            self.scroll_page(-1)

        @bindings.add("pagedown")
        def _(event):
            self.scroll_page(1)

        return bindings

    def transcript_window(self) -> Window:
        return Window(
            content=FormattedTextControl(
                lambda: self._display_fragments,
                focusable=False,
                show_cursor=False,
                # Window scrolling also keeps the cursor row visible, so pin it to the top line
                get_cursor_position=lambda: Point(x=0, y=self.scroll_top),
            ),
            get_vertical_scroll=lambda window: self.scroll_top,
            wrap_lines=False,
            always_hide_cursor=True,
        )

    def create_application(self, **kwargs) -> Application:
        layout = Layout(
            HSplit([
                self.transcript_window(),
                Window(height=GAP_HEIGHT),
                self.input_area,
            ]),
            focused_element=self.input_area,
        )
        self.app = Application(
            layout=layout,
            key_bindings=self._key_bindings(),
            style=PromptStyle.from_dict({
                'placeholder': '#888888 italic',
            }),
            full_screen=True,
            mouse_support=False,
            before_render=self._sync_geometry,
            **kwargs,
        )
        return self.app

    async def run(self, **kwargs) -> str:
        """Runs until the user quits. Returns the input box text at quit time."""
        app = self.create_application(**kwargs)
        pump = asyncio.ensure_future(self.process_events())
        try:
            return await app.run_async()
        finally:
            pump.cancel()
