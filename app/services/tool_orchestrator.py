"""Tool-calling orchestrator: the bounded model/tool round trip.

Drives "send message -> inspect response for function calls -> execute
tools -> send sanitized results back" until the model stops requesting
tools, a tool reports an error, or the round cap is reached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from google.genai import types

from app.services import data_tools
from app.services import llm_service

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 5
FALLBACK_TEXT = (
    "I ran the requested tools but could not produce a written answer. "
    "Please try rephrasing your question."
)

ToolExecutor = Callable[[str, dict], Awaitable[dict]]


class LoopState(enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"


@dataclass
class ToolLoopResult:
    """Accumulated outcome of one tool-calling turn."""

    text: str = ""
    charts: list[dict] = field(default_factory=list)
    tool_calls: list[dict] = field(default_factory=list)
    rounds: int = 0


def compose_message(message: str, headers: list[str] | None) -> str:
    """Append an available-columns hint to *message* when headers are known."""
    if not headers:
        return message
    return f"{message}\n\n[Available columns: {', '.join(headers)}]"


async def run_tool_loop(
    history: list[dict],
    message: str,
    images: list[dict] | None,
    execute: ToolExecutor,
    headers: list[str] | None = None,
) -> ToolLoopResult:
    """Run one tool-enabled turn against the model.

    Args:
        history: Prior ``{role, content}`` turns (text only).
        message: The composed user prompt for this turn.
        images: Optional ``{data, mimeType}`` attachments.
        execute: Async ``(tool_name, args) -> result`` bound to the dataset.
        headers: Dataset headers, appended to the message as a hint.

    Returns:
        ToolLoopResult with the joined answer text, chart payloads, the
        sanitized tool-call log and the number of model calls made.

    Model API errors propagate to the caller.
    """
    result = ToolLoopResult()
    instruction = await llm_service.system_instruction.get()
    contents = llm_service.build_history(history, instruction)
    contents.append(
        llm_service.build_user_content(compose_message(message, headers), images)
    )

    texts: list[str] = []
    state = LoopState.AWAITING_MODEL
    response = None
    calls: list[types.FunctionCall] = []

    while state is not LoopState.DONE:
        if state is LoopState.AWAITING_MODEL:
            response = await llm_service.generate_with_tools(contents)
            result.rounds += 1
            text = llm_service.extract_text(response)
            if text:
                texts.append(text)
            calls = llm_service.extract_function_calls(response)
            if not calls:
                state = LoopState.DONE
            elif result.rounds >= MAX_TOOL_ROUNDS:
                logger.info(
                    "Tool loop hit %d rounds with %d call(s) pending",
                    MAX_TOOL_ROUNDS,
                    len(calls),
                )
                state = LoopState.DONE
            else:
                state = LoopState.EXECUTING_TOOL
            continue

        # EXECUTING_TOOL
        logger.info(
            "Round %d: executing %s", result.rounds, [fc.name for fc in calls]
        )
        contents.append(llm_service.response_content(response))
        response_parts: list[types.Part] = []
        had_error = False
        for fc in calls:
            args = dict(fc.args) if fc.args else {}
            tool_result = await execute(fc.name, args)
            sanitized = data_tools.sanitize_for_model(tool_result)
            result.tool_calls.append({"name": fc.name, "args": args, "result": sanitized})
            chart = data_tools.chart_payload(tool_result)
            if chart is not None:
                result.charts.append(chart)
            if "error" in sanitized:
                had_error = True
            response_parts.append(
                types.Part(
                    function_response=types.FunctionResponse(
                        id=getattr(fc, "id", None),
                        name=fc.name,
                        response=sanitized,
                    )
                )
            )
        contents.append(types.Content(role="user", parts=response_parts))

        if had_error:
            # Let the model explain the failure, then stop
            response = await llm_service.generate_with_tools(contents)
            result.rounds += 1
            text = llm_service.extract_text(response)
            if text:
                texts.append(text)
            logger.info("Tool loop ended early after a tool error (round %d)", result.rounds)
            state = LoopState.DONE
        else:
            state = LoopState.AWAITING_MODEL

    result.text = "\n\n".join(texts) if texts else FALLBACK_TEXT
    return result
