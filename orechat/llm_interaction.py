# orechat/llm_interaction.py
import asyncio
import copy
import json
import logging
import threading
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from litellm import acompletion

from orechat.app_state import AppState
from orechat.config_utils import get_config_value
from orechat.data_models import (
    FunctionCallResult,
    MessageResult,
    ReasoningResult,
    ResultEvent,
    Tool,
)
from orechat.prompts import system_PROMPT
from orechat.tool_defs import TOOLS, execute_tool, tools_for_litellm

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 30


def trim_conversation_history(conversation_history: list):
    """
    Keeps the most recent MAX_HISTORY_MESSAGES messages.
    The kept window never starts with a tool result whose assistant call was cut off.
    """
    if len(conversation_history) <= MAX_HISTORY_MESSAGES:
        return

    kept = conversation_history[-MAX_HISTORY_MESSAGES:]
    while kept and kept[0]["role"] == "tool":
        kept = kept[1:]

    conversation_history.clear()
    conversation_history.extend(kept)


def accumulate_tool_call_deltas(tool_calls: List[Dict[str, Any]], tool_call_deltas) -> None:
    """Merges streamed tool-call fragments into tool_calls, indexed by their position."""
    for tool_call_delta in tool_call_deltas:
        if tool_call_delta.index is None:
            continue
        while len(tool_calls) <= tool_call_delta.index:
            tool_calls.append({"id": "", "type": "function", "function": {"name": "", "arguments": ""}})
        entry = tool_calls[tool_call_delta.index]
        if tool_call_delta.id:
            entry["id"] = tool_call_delta.id
        if tool_call_delta.function:
            if tool_call_delta.function.name:
                entry["function"]["name"] += tool_call_delta.function.name
            if tool_call_delta.function.arguments:
                entry["function"]["arguments"] += tool_call_delta.function.arguments


def format_tool_calls(tool_calls: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drops nameless fragments and fills in ids the provider did not send."""
    formatted_tool_calls = []
    for i, tc in enumerate(tool_calls):
        if not tc["function"]["name"]:
            continue
        tool_id = tc["id"] if tc["id"] else f"call_{i}_{int(time.time() * 1000)}"
        formatted_tool_calls.append({
            "id": tool_id,
            "type": "function",
            "function": {"name": tc["function"]["name"], "arguments": tc["function"]["arguments"] or "{}"}
        })
    return formatted_tool_calls


async def run_detached(func, *args):
    """
    Runs func(*args) in a daemon thread and awaits its result.
    Nothing joins the thread at shutdown, unlike asyncio.to_thread, so quitting never waits for a slow tool.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def deliver(setter, value):
        if not future.done():
            setter(value)

    def worker():
        try:
            outcome = (future.set_result, func(*args))
        except Exception as e:
            outcome = (future.set_exception, e)
        try:
            loop.call_soon_threadsafe(deliver, *outcome)
        except RuntimeError:
            # Loop already closed: nobody is waiting any more
            logger.debug(f"Dropped result of {getattr(func, '__name__', func)} after shutdown")

    threading.Thread(target=worker, name="orechat-tool", daemon=True).start()
    return await future


class Agent:
    """
    Question-in, events-out wrapper around litellm streaming completions.

    ask() yields whole results: the reasoning of a model round, its answer,
    and one notice per function call it requested. Tools from the registry
    run between rounds until the model answers without calling any.
    """

    def __init__(self, app_state: AppState, tools: Sequence[Tool] = TOOLS, system_prompt: str = system_PROMPT):
        self.app_state = app_state
        self.tools = tuple(tools)
        self.tools_by_name = {tool.name: tool for tool in self.tools}
        self.system_prompt = system_prompt
        # Committed user/assistant/tool turns; the system prompt is prepended per request.
        self.conversation_history: List[Dict[str, Any]] = []

    def _completion_params(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        overrides = self.app_state.RUNTIME_OVERRIDES
        completion_params: Dict[str, Any] = {
            "model": get_config_value("model", overrides),
            "messages": messages,
            "tools": tools_for_litellm(self.tools),
            "max_tokens": get_config_value("max_tokens", overrides),
            "stream": True,
        }
        optional_params = {
            "api_base": get_config_value("api_base", overrides),
            "temperature": get_config_value("temperature", overrides),
            "reasoning_effort": get_config_value("reasoning_effort", overrides),
        }
        completion_params.update({k: v for k, v in optional_params.items() if v is not None})

        # LM Studio accepts any key but litellm insists on one
        if str(completion_params["model"]).startswith("lm_studio/"):
            completion_params["api_key"] = "dummy"
        return completion_params

    async def _stream_round(self, messages: List[Dict[str, Any]]):
        """One streamed model call. Returns (content, reasoning, raw tool calls)."""
        completion_params = self._completion_params(messages)
        if self.app_state.DEBUG_LLM_INTERACTIONS:
            debug_params_log = {k: v for k, v in completion_params.items() if k not in ("messages", "tools")}
            logger.debug(f"Request params: {json.dumps(debug_params_log, default=str)}; {len(messages)} messages")

        final_content = ""
        reasoning_content_accumulated = ""
        tool_calls: List[Dict[str, Any]] = []

        stream = await acompletion(**completion_params)
        async for chunk in stream:
            if self.app_state.DEBUG_LLM_INTERACTIONS:
                logger.debug(f"Raw chunk: {chunk}")
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            reasoning_chunk_content = getattr(delta, "reasoning_content", None)
            if reasoning_chunk_content:
                reasoning_content_accumulated += reasoning_chunk_content
            if delta.content:
                final_content += delta.content
            if getattr(delta, "tool_calls", None):
                accumulate_tool_call_deltas(tool_calls, delta.tool_calls)

        return final_content, reasoning_content_accumulated, tool_calls

    async def ask(self, question: str) -> AsyncIterator[ResultEvent]:
        """
        Sends question (plus the committed history) to the model and yields its results.
        Raises whatever litellm raises; nothing is committed to the history in that case.
        """
        max_tool_rounds = get_config_value("max_tool_rounds", self.app_state.RUNTIME_OVERRIDES)
        history_snapshot = copy.deepcopy(self.conversation_history)
        turn: List[Dict[str, Any]] = [{"role": "user", "content": question}]
        logger.info(f"Question dispatched ({len(question)} chars)")

        for round_number in range(1, max_tool_rounds + 1):
            messages = [{"role": "system", "content": self.system_prompt}] + history_snapshot + turn
            final_content, reasoning, raw_tool_calls = await self._stream_round(messages)

            if reasoning.strip():
                yield ReasoningResult(text=reasoning.strip())

            assistant_message: Dict[str, Any] = {"role": "assistant", "content": final_content if final_content else None}
            formatted_tool_calls = format_tool_calls(raw_tool_calls)
            if formatted_tool_calls:
                assistant_message["tool_calls"] = formatted_tool_calls
            turn.append(assistant_message)

            if final_content.strip():
                yield MessageResult(text=final_content.strip())

            if not formatted_tool_calls:
                break

            for tool_call in formatted_tool_calls:
                tool_name = tool_call["function"]["name"]
                arguments = tool_call["function"]["arguments"]
                yield FunctionCallResult(name=tool_name, arguments=arguments)
                logger.info(f"Executing tool {tool_name} (round {round_number})")
                result = await run_detached(execute_tool, tool_name, arguments, self.tools_by_name)
                turn.append({"role": "tool", "tool_call_id": tool_call["id"], "content": result})
        else:
            logger.warning(f"Stopped after {max_tool_rounds} tool rounds without a final answer")

        self.conversation_history.extend(turn)
        trim_conversation_history(self.conversation_history)
