"""ANSI-formatted terminal output using Rich.

Conversation output (labels, streamed assistant text, tool traces) goes to
stdout; diagnostics go to stderr.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_out = Console()
_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False, debug: bool = False) -> None:
    """Reconfigure the module-level consoles and logging from CLI flags.

    Call once at startup, before any output.
    """
    global _out, _console
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _out = Console(**kwargs)
    _console = Console(stderr=True, **kwargs)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=_console, show_path=False)],
        force=True,
    )


# -- Conversation ------------------------------------------------------------


def user_label() -> list[tuple[str, str]]:
    """prompt_toolkit style tuples for the input prompt."""
    return [("bold fg:ansibrightblue", "You"), ("", ": ")]


def agent_label() -> None:
    _out.print(Text("Agent", style="bold bright_yellow"), end="")
    _out.print(": ", end="", highlight=False)


def stream_text(delta: str) -> None:
    _out.print(delta, end="", markup=False, highlight=False, soft_wrap=True)


def end_stream() -> None:
    _out.print()


def tool_call(name: str, args_json: str) -> None:
    _out.print(
        Text(f"[Tool Call: {name}] inputs: {args_json}", style="dim"),
        soft_wrap=True,
    )


# -- Diagnostics -------------------------------------------------------------


def llm_timing(elapsed: float, tool_calls: int) -> None:
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style="green")
    if tool_calls:
        text.append(f"  tool_calls={tool_calls}", style="yellow")
    _console.print(text)


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(model: str) -> None:
    _console.print(
        Text(
            f"Chatting with {model}. Press Ctrl-D or Ctrl-C to quit.",
            style="dim",
        )
    )
