"""Reassembly of model output into assistant text plus a tool-call batch.

A model turn is consumed as a sequence of Fragments. Each fragment carries a
(possibly empty) piece of assistant text and, optionally, a complete batch of
tool calls. Streaming and non-streaming backend responses are both adapted
into this shape, so the rest of the agent only ever sees fragments.
"""

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from .conversation import ToolCall, new_call_id
from .errors import AgentError

logger = logging.getLogger(__name__)


@dataclass
class Fragment:
    content: str = ""
    tool_calls: list[ToolCall] | None = None


@dataclass
class ModelTurn:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


def collect(
    fragments: Iterable[Fragment],
    on_text: Callable[[str], None] | None = None,
) -> ModelTurn:
    """Drain fragments into a ModelTurn.

    Text deltas are concatenated in arrival order and each one is handed to
    on_text as soon as it arrives. The last non-empty tool-call batch wins.
    """
    parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for fragment in fragments:
        if fragment.content:
            parts.append(fragment.content)
            if on_text is not None:
                on_text(fragment.content)
        if fragment.tool_calls:
            tool_calls = list(fragment.tool_calls)
    return ModelTurn(text="".join(parts), tool_calls=tool_calls)


def _decode_arguments(raw) -> dict | str:
    """Turn wire-format arguments into a dict, keeping undecodable text as-is."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw
    if not isinstance(parsed, dict):
        return raw
    return parsed


def _tool_call_from_message(tc) -> ToolCall:
    fn = tc.function
    return ToolCall(
        name=fn.name or "",
        arguments=_decode_arguments(fn.arguments),
        id=getattr(tc, "id", None) or new_call_id(),
    )


def fragments_from_stream(chunks: Iterable) -> Iterator[Fragment]:
    """Adapt litellm streaming chunks into fragments.

    OpenAI-style backends send tool calls as per-index deltas (id and name
    first, then argument text in pieces). Those are accumulated and emitted as
    one complete batch in a terminal fragment once the stream ends.
    """
    pending: dict[int, dict] = {}
    try:
        for chunk in chunks:
            choices = getattr(chunk, "choices", None)
            if not choices:
                continue
            delta = choices[0].delta
            if delta is None:
                continue

            for tc_delta in getattr(delta, "tool_calls", None) or []:
                idx = getattr(tc_delta, "index", None)
                if idx is None:
                    idx = len(pending)
                slot = pending.setdefault(idx, {"id": None, "name": "", "arguments": ""})
                if getattr(tc_delta, "id", None):
                    slot["id"] = tc_delta.id
                fn = getattr(tc_delta, "function", None)
                if fn is None:
                    continue
                if fn.name:
                    slot["name"] = fn.name
                if isinstance(fn.arguments, dict):
                    slot["arguments"] = fn.arguments
                elif fn.arguments:
                    slot["arguments"] += fn.arguments

            if delta.content:
                yield Fragment(content=delta.content)
    except AgentError:
        raise
    except Exception as e:
        raise AgentError(f"LLM stream failed: {e}") from e

    if pending:
        batch = [
            ToolCall(
                name=slot["name"],
                arguments=_decode_arguments(slot["arguments"]),
                id=slot["id"] or new_call_id(),
            )
            for _, slot in sorted(pending.items())
        ]
        logger.debug("stream closed with %d tool call(s)", len(batch))
        yield Fragment(tool_calls=batch)


def fragments_from_response(response) -> Iterator[Fragment]:
    """Adapt a non-streaming litellm response into a single fragment."""
    try:
        message = response.choices[0].message
        tool_calls = [_tool_call_from_message(tc) for tc in message.tool_calls or []]
    except (AttributeError, IndexError, TypeError) as e:
        raise AgentError(f"unexpected LLM response: {e}") from e
    yield Fragment(content=message.content or "", tool_calls=tool_calls or None)
