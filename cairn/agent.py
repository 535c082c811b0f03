import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

from importlib import metadata

from . import fmt
from .config import _UNSET, apply_config_to_args, load_config
from .conversation import Conversation, ToolCall
from .errors import AgentError, ConfigError
from .stream import ModelTurn, collect, fragments_from_response, fragments_from_stream
from .tools import ToolRegistry, build_registry

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
DEFAULT_OLLAMA_MODEL = "ministral-3:8b"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_LMSTUDIO_URL = "http://127.0.0.1:1234"
MAX_ARG_LOG = 1000
INTERRUPTED_RESULT = "error: interrupted by user"


def resolve_provider(
    provider: str,
    model: str | None,
    api_key: str | None = None,
    base_url: str | None = None,
) -> tuple[str, dict]:
    """Map a provider name to a LiteLLM model string and completion kwargs."""
    if provider == "ollama":
        bare_id = (model or DEFAULT_OLLAMA_MODEL).removeprefix("ollama_chat/")
        bare_id = bare_id.removeprefix("ollama/")
        api_base = (base_url or DEFAULT_OLLAMA_URL).rstrip("/")
        return f"ollama_chat/{bare_id}", {"api_base": api_base}

    if provider == "lmstudio":
        if not model:
            raise ConfigError("--model is required when --provider is lmstudio")
        api_base = (base_url or DEFAULT_LMSTUDIO_URL).rstrip("/")
        return f"openai/{model}", {"api_base": f"{api_base}/v1", "api_key": "lm-studio"}

    if provider == "openrouter":
        if not model:
            raise ConfigError("--model is required when --provider is openrouter")
        key = api_key or os.environ.get("OPENROUTER_API_KEY")
        if not key:
            raise ConfigError(
                "--api-key or OPENROUTER_API_KEY env var required for openrouter provider"
            )
        # Only strip a LiteLLM prefix the user typed themselves; "openrouter/free"
        # is a real model id.
        bare_id = (
            model[len("openrouter/") :]
            if model.startswith("openrouter/openrouter/")
            else model
        )
        kwargs = {"api_key": key}
        if base_url:
            kwargs["api_base"] = base_url
        return f"openrouter/{bare_id}", kwargs

    raise ConfigError(f"unknown provider {provider!r}")


def call_llm(
    model_str: str,
    messages: list,
    tools: list,
    *,
    stream: bool = True,
    temperature: float | None = None,
    llm_kwargs: dict | None = None,
):
    """Issue one chat completion and return an iterator of Fragments.

    Any backend failure, at call time or while the stream is consumed, is
    raised as AgentError.
    """
    import litellm

    litellm.suppress_debug_info = True

    completion_kwargs = dict(
        model=model_str,
        messages=messages,
        stream=stream,
        **(llm_kwargs or {}),
    )
    if tools:
        completion_kwargs["tools"] = tools
        completion_kwargs["tool_choice"] = "auto"
    if temperature is not None:
        completion_kwargs["temperature"] = temperature

    logger.debug(
        "completion model=%s messages=%d tools=%d stream=%s",
        model_str,
        len(messages),
        len(tools),
        stream,
    )
    try:
        response = litellm.completion(**completion_kwargs)
    except Exception as e:
        raise AgentError(f"LLM call failed: {e}") from e

    if stream:
        return fragments_from_stream(response)
    return fragments_from_response(response)


def run_model_turn(
    conversation: Conversation,
    tools: list,
    *,
    model_str: str,
    stream: bool,
    temperature: float | None,
    llm_kwargs: dict,
    verbose: bool,
) -> ModelTurn:
    """Run one model turn, echoing text live, and record the assistant message."""
    fmt.agent_label()
    t0 = time.monotonic()
    try:
        fragments = call_llm(
            model_str,
            conversation.snapshot(),
            tools,
            stream=stream,
            temperature=temperature,
            llm_kwargs=llm_kwargs,
        )
        turn = collect(fragments, on_text=fmt.stream_text)
    finally:
        fmt.end_stream()
    elapsed = time.monotonic() - t0

    conversation.add_assistant(turn.text, turn.tool_calls)
    if verbose:
        fmt.llm_timing(elapsed, len(turn.tool_calls))
    return turn


def handle_tool_call(call: ToolCall, registry: ToolRegistry, verbose: bool) -> str:
    """Trace and execute a single tool call, returning its text result."""
    args_json = call.arguments_json()
    if len(args_json) > MAX_ARG_LOG:
        args_json = args_json[:MAX_ARG_LOG] + "... (truncated)"
    fmt.tool_call(call.name, args_json)

    args = call.arguments
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError as e:
            args = None
            result = f"error: invalid JSON in tool arguments: {e}"
        else:
            if not isinstance(args, dict):
                args = None
                result = "error: tool arguments must be a JSON object"

    if args is not None:
        result = registry.invoke(call.name, args)

    if verbose and result.startswith("error:"):
        fmt.tool_error(call.name, result.split("\n", 1)[0])
    return result


def run_agent_loop(
    conversation: Conversation,
    registry: ToolRegistry,
    *,
    model_str: str,
    stream: bool,
    temperature: float | None,
    llm_kwargs: dict,
    verbose: bool,
    max_turns: int | None = None,
) -> str:
    """Run model turns until one comes back without tool calls.

    Every tool call of a turn is executed in the order the model listed it and
    answered with a tool message before the next model turn is requested.
    Mutates `conversation` in place and returns the final assistant text.
    """
    tools = registry.describe()
    turns = 0
    while True:
        turns += 1
        turn = run_model_turn(
            conversation,
            tools,
            model_str=model_str,
            stream=stream,
            temperature=temperature,
            llm_kwargs=llm_kwargs,
            verbose=verbose,
        )
        if not turn.tool_calls:
            return turn.text

        for call in turn.tool_calls:
            result = handle_tool_call(call, registry, verbose)
            conversation.add_tool_result(call, result)

        if max_turns is not None and turns >= max_turns:
            fmt.warning(f"max turns ({max_turns}) reached, waiting for input.")
            return turn.text


def repl_loop(
    conversation: Conversation,
    registry: ToolRegistry,
    *,
    model_str: str,
    stream: bool,
    temperature: float | None,
    llm_kwargs: dict,
    verbose: bool,
    max_turns: int | None = None,
) -> None:
    """Interactive read-eval-print loop.

    Each input line, empty or not, becomes a user message verbatim.
    """
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText

    session = PromptSession()
    prompt_text = FormattedText(fmt.user_label())

    if verbose:
        fmt.repl_banner(model_str)

    while True:
        try:
            line = session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        conversation.add_user(line)
        try:
            run_agent_loop(
                conversation,
                registry,
                model_str=model_str,
                stream=stream,
                temperature=temperature,
                llm_kwargs=llm_kwargs,
                verbose=verbose,
                max_turns=max_turns,
            )
        except KeyboardInterrupt:
            conversation.close_pending(INTERRUPTED_RESULT)
            fmt.warning("interrupted, turn aborted.")


def build_parser():
    """Build and return the argument parser.

    Options that may also come from config files default to _UNSET so that
    apply_config_to_args() can tell them apart from explicit CLI values.
    """
    parser = argparse.ArgumentParser(
        prog="cairn",
        usage="%(prog)s [options] [question]",
        description="An interactive CLI coding agent that lets a language model search, read and edit files.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Optional first message; the interactive session starts after it is answered.",
    )
    parser.add_argument(
        "--provider",
        choices=["ollama", "lmstudio", "openrouter"],
        default=_UNSET,
        help="LLM provider: ollama (local, default), lmstudio (local), openrouter (API).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help=f"Model identifier (default for ollama: {DEFAULT_OLLAMA_MODEL}).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help=f"Server base URL (default: {DEFAULT_OLLAMA_URL} for ollama, {DEFAULT_LMSTUDIO_URL} for lmstudio).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help="Stop a chain of tool-calling turns after N model turns (default: unlimited).",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Directory relative tool paths resolve against (default: current directory).",
    )

    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="System prompt to use instead of the built-in one.",
    )
    prompt_group.add_argument(
        "--no-system-prompt",
        action="store_true",
        default=_UNSET,
        help="Omit the system message entirely.",
    )

    parser.add_argument(
        "--no-stream",
        action="store_true",
        default=_UNSET,
        help="Request complete responses instead of streaming them.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color.",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics on stderr.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log debug information to stderr.",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("cairn")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    try:
        apply_config_to_args(args, load_config(args.base_dir))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    if args.system_prompt and args.no_system_prompt:
        parser.error("--system-prompt and --no-system-prompt are mutually exclusive")
    if args.max_turns is not None and args.max_turns < 1:
        parser.error("--max-turns must be at least 1")

    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color, debug=args.debug)

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    if not Path(args.base_dir).is_dir():
        raise AgentError(f"--base-dir is not a directory: {args.base_dir}")

    model_str, llm_kwargs = resolve_provider(
        args.provider, args.model, args.api_key, args.base_url
    )
    stream = not args.no_stream
    if args.verbose:
        mode = "streaming" if stream else "non-streaming"
        fmt.model_info(f"Using model {model_str} ({mode})")

    if args.no_system_prompt:
        system_content = None
    elif args.system_prompt:
        system_content = args.system_prompt
    else:
        system_content = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")

    conversation = Conversation(system_content)
    registry = build_registry(args.base_dir)
    loop_kwargs = dict(
        model_str=model_str,
        stream=stream,
        temperature=args.temperature,
        llm_kwargs=llm_kwargs,
        verbose=args.verbose,
        max_turns=args.max_turns,
    )

    if args.question:
        conversation.add_user(args.question)
        try:
            run_agent_loop(conversation, registry, **loop_kwargs)
        except KeyboardInterrupt:
            conversation.close_pending(INTERRUPTED_RESULT)
            fmt.warning("interrupted, question aborted.")

    repl_loop(conversation, registry, **loop_kwargs)


if __name__ == "__main__":
    main()
