"""Conversation state: the ordered message history of one chat session."""

import copy
import json
import uuid
from dataclasses import dataclass, field
from typing import Any


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    `arguments` is normally a dict. When the backend sent arguments that do not
    decode as a JSON object, the raw text is kept so the failure can be
    reported back to the model as a tool result.
    """

    name: str
    arguments: dict[str, Any] | str = field(default_factory=dict)
    id: str = field(default_factory=new_call_id)

    def arguments_json(self) -> str:
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


class Conversation:
    """Owns the message list for one session.

    Messages are dicts in the litellm chat format and are only ever appended.
    Callers that need to hand the history to something else (the backend)
    use snapshot(), never the live list.
    """

    def __init__(self, system_prompt: str | None = None):
        self.messages: list[dict] = []
        self._pending: list[ToolCall] = []
        if system_prompt:
            self.messages.append({"role": "system", "content": system_prompt})

    def __len__(self) -> int:
        return len(self.messages)

    def add_user(self, text: str) -> None:
        if self._pending:
            ids = ", ".join(tc.id for tc in self._pending)
            raise ValueError(f"tool calls still unanswered: {ids}")
        self.messages.append({"role": "user", "content": text})

    def add_assistant(self, text: str, tool_calls: list[ToolCall] | None = None) -> None:
        msg: dict = {"role": "assistant", "content": text}
        if tool_calls:
            msg["tool_calls"] = [tc.to_dict() for tc in tool_calls]
        self.messages.append(msg)
        self._pending = list(tool_calls or [])

    def add_tool_result(self, call: ToolCall, content: str) -> None:
        """Append a tool result answering `call` from the latest assistant batch."""
        match = next((tc for tc in self._pending if tc.id == call.id), None)
        if match is None:
            raise ValueError(
                f"tool result for {call.name!r} ({call.id}) does not answer "
                "a call from the latest assistant message"
            )
        self._pending.remove(match)
        self.messages.append(
            {
                "role": "tool",
                "tool_call_id": call.id,
                "name": call.name,
                "content": content,
            }
        )

    def close_pending(self, content: str) -> int:
        """Answer every still-unanswered call of the latest batch with `content`.

        Used when a turn is abandoned halfway through its tool batch. Returns
        the number of tool results appended.
        """
        closed = list(self._pending)
        for call in closed:
            self.add_tool_result(call, content)
        return len(closed)

    def snapshot(self) -> list[dict]:
        return copy.deepcopy(self.messages)
