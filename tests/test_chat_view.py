# tests/test_chat_view.py
import asyncio
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from prompt_toolkit.data_structures import Size
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.layout.mouse_handlers import MouseHandlers
from prompt_toolkit.layout.screen import Screen, WritePosition
from prompt_toolkit.output import DummyOutput

from orechat.app_state import AppState
from orechat.chat_view import GAP_HEIGHT, INPUT_HEIGHT, ChatView
from orechat.data_models import (
    FunctionCallResult,
    MessageResult,
    ReasoningResult,
    Role,
    Tool,
    TranscriptEntry,
)
from orechat.llm_interaction import Agent
from orechat.prompts import WELCOME_TEXT
from orechat.ui_display import render_transcript


class ScriptedAgent:
    """Agent double: yields the scripted events for each question, pausing between them."""

    def __init__(self, scripts, fail_with=None):
        self.scripts = scripts
        self.fail_with = fail_with
        self.questions = []

    async def ask(self, question):
        self.questions.append(question)
        if self.fail_with is not None:
            raise self.fail_with
        for event in self.scripts.get(question, []):
            await asyncio.sleep(0)
            yield event


@pytest.fixture
def app_state(monkeypatch):
    monkeypatch.delenv("ORECHAT_CHAR_LIMIT", raising=False)
    return AppState()


def run(coro):
    return asyncio.run(coro)


async def settle(view):
    """Lets every dispatched question finish, then applies what they queued."""
    while view._dispatch_tasks:
        await asyncio.gather(*list(view._dispatch_tasks))
    view.apply_pending_events()


def test_initial_view_shows_welcome(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    assert view.transcript == []
    assert view.display_text == WELCOME_TEXT
    assert not view.awaiting_response


def test_submit_hi_while_idle(app_state):
    async def scenario():
        view = ChatView(ScriptedAgent({}), app_state)
        view.input_area.text = "hi"
        view.submit(view.input_area.text)

        assert view.transcript[0].role == Role.USER
        assert view.transcript[0].text == "hi"
        assert len(view.transcript) == 1
        assert view.input_area.text == ""
        assert view.awaiting_response
        await settle(view)
        assert not view.awaiting_response
        return view

    view = run(scenario())
    assert view.agent.questions == ["hi"]


def test_empty_submission_is_allowed(app_state):
    async def scenario():
        view = ChatView(ScriptedAgent({}), app_state)
        view.submit("")
        await settle(view)
        return view

    view = run(scenario())
    assert [(e.role, e.text) for e in view.transcript] == [(Role.USER, "")]
    assert view.agent.questions == [""]


def test_agent_events_become_entries_with_roles(app_state):
    script = {
        "time?": [
            ReasoningResult(text="need the clock"),
            FunctionCallResult(name="currentTime", arguments="{}"),
            MessageResult(text="It is noon."),
        ]
    }

    async def scenario():
        view = ChatView(ScriptedAgent(script), app_state)
        view.submit("time?")
        await settle(view)
        return view

    view = run(scenario())
    assert [(e.role, e.text) for e in view.transcript] == [
        (Role.USER, "time?"),
        (Role.REASONING, "need the clock"),
        (Role.FUNCTION_CALL, "currentTime({})"),
        (Role.ANSWER, "It is noon."),
    ]
    assert view.display_text == view.render()
    assert view.scroll_top == view.max_scroll_top


def test_transcript_length_is_submissions_plus_events(app_state):
    script = {
        "a": [MessageResult(text="a1"), MessageResult(text="a2")],
        "b": [ReasoningResult(text="b1")],
        "c": [],
    }

    async def scenario():
        view = ChatView(ScriptedAgent(script), app_state)
        for question in ("a", "b", "c"):
            view.submit(question)
        await settle(view)
        return view

    view = run(scenario())
    assert len(view.transcript) == 3 + 3
    assert sum(1 for e in view.transcript if e.role == Role.USER) == 3


def test_concurrent_questions_keep_their_own_order(app_state):
    first = [MessageResult(text=f"first-{i}") for i in range(4)]
    second = [MessageResult(text=f"second-{i}") for i in range(4)]

    async def scenario():
        view = ChatView(ScriptedAgent({"one": first, "two": second}), app_state)
        view.submit("one")
        view.submit("two")
        pump = asyncio.ensure_future(view.process_events())
        await settle(view)
        await view.events.join()
        pump.cancel()
        return view

    view = run(scenario())
    texts = [e.text for e in view.transcript if e.role == Role.ANSWER]
    assert [t for t in texts if t.startswith("first")] == [f"first-{i}" for i in range(4)]
    assert [t for t in texts if t.startswith("second")] == [f"second-{i}" for i in range(4)]
    assert len(texts) == 8


def test_dispatch_failure_is_shown_as_error_entry(app_state):
    async def scenario():
        view = ChatView(ScriptedAgent({}, fail_with=RuntimeError("provider down")), app_state)
        view.submit("hello?")
        await settle(view)
        return view

    view = run(scenario())
    assert [(e.role, e.text) for e in view.transcript] == [
        (Role.USER, "hello?"),
        (Role.ERROR, "RuntimeError: provider down"),
    ]


def test_on_resize_rewraps_transcript(app_state):
    async def scenario():
        view = ChatView(ScriptedAgent({"q": [MessageResult(text="lorem ipsum dolor sit amet " * 6)]}), app_state)
        view.submit("q")
        await settle(view)
        return view

    view = run(scenario())
    view.on_resize(100, 40)
    assert view.viewport_width == 100
    assert view.viewport_height == 40 - INPUT_HEIGHT - GAP_HEIGHT
    assert view.display_text == render_transcript(view.transcript, 100)
    wide_lines = view.line_count

    view.on_resize(20, 40)
    assert view.display_text == render_transcript(view.transcript, 20)
    assert view.line_count > wide_lines
    assert view.scroll_top == view.max_scroll_top


def test_on_resize_keeps_welcome_when_empty(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.on_resize(120, 30)
    assert view.display_text == WELCOME_TEXT
    assert view.terminal_size == (120, 30)


def shown_top_line(view, window):
    """Draws the transcript window like the renderer does and returns its first visible line."""
    window.write_to_screen(
        Screen(),
        MouseHandlers(),
        WritePosition(xpos=0, ypos=0, width=view.viewport_width, height=view.viewport_height),
        parent_style="",
        erase_bg=False,
        z_index=None,
    )
    return window.vertical_scroll


def test_page_keys_move_the_window_by_a_full_page(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.on_resize(20, INPUT_HEIGHT + GAP_HEIGHT + 5)
    view.on_agent_result(MessageResult(text="\n".join(str(i) for i in range(40))))
    window = view.transcript_window()

    bottom = shown_top_line(view, window)
    assert bottom == view.line_count - view.viewport_height == 36

    view.scroll_page(-1)
    assert shown_top_line(view, window) == bottom - 5
    view.scroll_page(-1)
    assert shown_top_line(view, window) == bottom - 10
    view.scroll_page(1)
    assert shown_top_line(view, window) == bottom - 5


def test_page_scrolling_is_clamped(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.on_resize(20, INPUT_HEIGHT + GAP_HEIGHT + 2)
    view.on_agent_result(MessageResult(text="\n".join(str(i) for i in range(30))))
    window = view.transcript_window()
    bottom = view.scroll_top

    view.scroll_page(-100)
    assert view.scroll_top == 0
    assert shown_top_line(view, window) == 0
    view.scroll_page(100)
    assert view.scroll_top == bottom
    assert shown_top_line(view, window) == bottom


def test_new_entry_returns_to_bottom(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.on_resize(20, INPUT_HEIGHT + GAP_HEIGHT + 5)
    view.on_agent_result(MessageResult(text="\n".join(str(i) for i in range(40))))
    view.scroll_page(-3)
    view.on_agent_result(MessageResult(text="latest"))
    assert view.scroll_top == view.max_scroll_top


def test_input_box_respects_char_limit(app_state):
    app_state.RUNTIME_OVERRIDES["char_limit"] = 10
    view = ChatView(ScriptedAgent({}), app_state)
    view.input_area.text = "x" * 25
    assert view.input_area.text == "x" * 10


def test_quit_returns_input_text():
    view = ChatView(ScriptedAgent({}), AppState())
    view.input_area.text = "half-typed"
    app = MagicMock()
    view.quit(app)
    app.exit.assert_called_once_with(result="half-typed")


def test_mutations_invalidate_running_application(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.app = MagicMock()
    view.on_agent_result(MessageResult(text="ping"))
    view.app.invalidate.assert_called()


def test_sync_geometry_resizes_only_on_change(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    app = MagicMock()
    app.output.get_size.return_value = Size(rows=30, columns=90)

    view._sync_geometry(app)
    assert view.terminal_size == (90, 30)
    assert view.viewport_width == 90
    assert view.viewport_height == 30 - INPUT_HEIGHT - GAP_HEIGHT

    with patch.object(view, "on_resize") as mock_on_resize:
        view._sync_geometry(app)
    mock_on_resize.assert_not_called()


def test_bad_event_does_not_stop_later_ones(app_state):
    async def scenario():
        view = ChatView(ScriptedAgent({}), app_state)
        pump = asyncio.ensure_future(view.process_events())
        await view.events.put(object())
        await view.events.put(MessageResult(text="still here"))
        await view.events.join()
        assert not pump.done()
        pump.cancel()
        return view

    view = run(scenario())
    assert [(e.role, e.text) for e in view.transcript] == [(Role.ANSWER, "still here")]


def test_apply_pending_events_counts_bad_events(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    view.events.put_nowait(object())
    view.events.put_nowait(MessageResult(text="after"))
    assert view.apply_pending_events() == 2
    assert view.transcript[-1].text == "after"


# --- Keyboard, driven through a real Application ---


def run_with_keys(view, keys):
    """Runs the full-screen application on a pipe, feeding it keys as raw terminal input."""
    async def session():
        with create_pipe_input() as pipe_input:
            pipe_input.send_text(keys)
            return await view.run(input=pipe_input, output=DummyOutput())
    return run(session())


def test_enter_submits_and_ctrl_c_returns_draft(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    result = run_with_keys(view, "hi\rdraft\x03")

    assert result == "draft"
    assert view.transcript[0] == TranscriptEntry(role=Role.USER, text="hi")
    assert view.agent.questions == ["hi"]
    # DummyOutput reports an 80x40 terminal
    assert view.terminal_size == (80, 40)


def test_ctrl_j_inserts_newline_without_submitting(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    assert run_with_keys(view, "line one\nline two\x03") == "line one\nline two"
    assert view.transcript == []
    assert view.agent.questions == []


def test_escape_quits(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    assert run_with_keys(view, "unsent\x1b") == "unsent"


def test_alt_chords_edit_instead_of_quitting(app_state):
    view = ChatView(ScriptedAgent({}), app_state)
    # Alt-b moves back one word, then X is typed there
    assert run_with_keys(view, "abc def\x1bbX\x03") == "abc Xdef"


# --- Quitting with work in flight ---


def test_quitting_does_not_wait_for_running_tool(app_state):
    started = threading.Event()
    release = threading.Event()

    def slow_tool(_arguments):
        started.set()
        release.wait(10)
        return "too late"

    async def fake_acompletion(**params):
        async def stream():
            call = SimpleNamespace(index=0, id="call_1", function=SimpleNamespace(name="slow", arguments="{}"))
            delta = SimpleNamespace(content=None, reasoning_content=None, tool_calls=[call])
            yield SimpleNamespace(choices=[SimpleNamespace(delta=delta)])
        return stream()

    async def session():
        agent = Agent(app_state, tools=[Tool(name="slow", description="Blocks", handler=slow_tool)])
        view = ChatView(agent, app_state)
        view.submit("take your time")
        while not started.is_set():
            await asyncio.sleep(0.01)
        return "quit"

    began = time.monotonic()
    try:
        with patch("orechat.llm_interaction.acompletion", fake_acompletion):
            assert run(session()) == "quit"
        assert time.monotonic() - began < 2
    finally:
        release.set()
