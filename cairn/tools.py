"""Tool definitions, implementations and the registry exposed to the model."""

import fnmatch
import json
import logging
import os
import subprocess
from collections.abc import Callable
from functools import partial
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

FIND_FILES_TOOL = {
    "type": "function",
    "function": {
        "name": "findFiles",
        "description": "Find files in the project matching a pattern",
        "parameters": {
            "type": "object",
            "required": ["pattern"],
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": 'The glob pattern to search for (e.g. "**/*.js")',
                },
            },
        },
    },
}

SEARCH_FILE_CONTENTS_TOOL = {
    "type": "function",
    "function": {
        "name": "searchFileContents",
        "description": "Search for text patterns within files",
        "parameters": {
            "type": "object",
            "required": ["pattern"],
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "The text or regex pattern to search for",
                },
                "searchPath": {
                    "type": "string",
                    "description": 'The directory to search in (default: ".")',
                },
                "globPattern": {
                    "type": "string",
                    "description": 'File pattern to include (e.g. "*.js")',
                },
                "caseInsensitive": {
                    "type": "boolean",
                    "description": "Whether to ignore case",
                },
            },
        },
    },
}

READ_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "readFile",
        "description": "Read the contents of a file",
        "parameters": {
            "type": "object",
            "required": ["filePath"],
            "properties": {
                "filePath": {
                    "type": "string",
                    "description": "The path to the file",
                },
                "offset": {
                    "type": "integer",
                    "description": "Line number to start reading from (default: 1)",
                },
                "limit": {
                    "type": "integer",
                    "description": "Number of lines to read (default: 2000)",
                },
            },
        },
    },
}

CREATE_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "createFile",
        "description": "Create a new file with content",
        "parameters": {
            "type": "object",
            "required": ["filePath", "content"],
            "properties": {
                "filePath": {
                    "type": "string",
                    "description": "The path for the new file",
                },
                "content": {
                    "type": "string",
                    "description": "The content to write to the file",
                },
            },
        },
    },
}

EDIT_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "editFile",
        "description": "Edit a file by replacing text",
        "parameters": {
            "type": "object",
            "required": ["filePath", "oldString", "newString"],
            "properties": {
                "filePath": {
                    "type": "string",
                    "description": "The path to the file",
                },
                "oldString": {
                    "type": "string",
                    "description": "The existing text to be replaced",
                },
                "newString": {
                    "type": "string",
                    "description": "The new text to replace with",
                },
                "replaceAll": {
                    "type": "boolean",
                    "description": "Whether to replace all occurrences",
                },
            },
        },
    },
}

TOOLS = [
    FIND_FILES_TOOL,
    SEARCH_FILE_CONTENTS_TOOL,
    READ_FILE_TOOL,
    CREATE_FILE_TOOL,
    EDIT_FILE_TOOL,
]

EXCLUDED_DIRS = frozenset({"node_modules", ".git", ".venv", "venv", "__pycache__"})
DEFAULT_READ_LIMIT = 2000


def _resolve(file_path: str, base_dir: str) -> Path:
    """Resolve file_path against base_dir unless it is already absolute."""
    p = Path(file_path).expanduser()
    if p.is_absolute():
        return p
    return Path(base_dir) / p


def _match_parts(parts: tuple[str, ...], pattern: tuple[str, ...]) -> bool:
    """Glob-match path segments; a `**` segment spans zero or more directories."""
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        return any(_match_parts(parts[i:], pattern[1:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatch.fnmatchcase(parts[0], head) and _match_parts(parts[1:], pattern[1:])


def expand_braces(pattern: str) -> list[str]:
    """Expand `{a,b}` alternatives, nested or repeated, into plain glob patterns.

    A brace group without a top-level comma is left as literal text.
    """
    depth = 0
    start = None
    for i, c in enumerate(pattern):
        if c == "{":
            if depth == 0:
                start = i
            depth += 1
        elif c == "}" and depth:
            depth -= 1
            if depth == 0:
                options = _split_top_level(pattern[start + 1 : i])
                if len(options) < 2:
                    continue
                prefix, suffix = pattern[:start], pattern[i + 1 :]
                return [
                    expanded
                    for option in options
                    for expanded in expand_braces(prefix + option + suffix)
                ]
    return [pattern]


def _split_top_level(body: str) -> list[str]:
    parts, depth, current = [], 0, ""
    for c in body:
        if c == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
        current += c
    parts.append(current)
    return parts


def glob_match(rel_path: str, pattern: str) -> bool:
    parts = PurePosixPath(rel_path).parts
    return any(
        _match_parts(parts, PurePosixPath(p).parts) for p in expand_braces(pattern)
    )


def _split_absolute_glob(pattern: str) -> tuple[str, str]:
    """Split an absolute glob into (directory_root, relative_pattern).

    The root ends before the first component holding a glob metacharacter:
    "/opt/lib/**/*.{c,h}" -> ("/opt/lib", "**/*.{c,h}").
    """
    parts = PurePosixPath(pattern).parts
    glob_start = len(parts)
    for i, part in enumerate(parts):
        if any(c in part for c in "*?[]{}"):
            glob_start = i
            break
    if len(parts) == 1:
        return parts[0], "*"
    if glob_start == len(parts):
        # A plain absolute file path: look for that name in its directory.
        glob_start -= 1
    return str(PurePosixPath(*parts[:glob_start])), str(PurePosixPath(*parts[glob_start:]))


def find_files(pattern: str, base_dir: str = ".") -> str:
    """Return absolute paths matching a glob pattern as a JSON array string.

    Absolute patterns search from their own fixed leading directories
    instead of base_dir.
    """
    try:
        expanded = os.path.expanduser(pattern)
        if os.path.isabs(expanded):
            root_dir, pattern = _split_absolute_glob(expanded)
        else:
            root_dir = base_dir
        root = Path(root_dir).resolve()
        matched: list[str] = []
        for dirpath, dirs, files in os.walk(root):
            dirs[:] = sorted(d for d in dirs if d not in EXCLUDED_DIRS)
            for filename in files:
                filepath = Path(dirpath) / filename
                rel = filepath.relative_to(root).as_posix()
                if glob_match(rel, pattern):
                    matched.append(str(filepath))
        matched.sort()
        return json.dumps(matched)
    except Exception as e:
        return f"error: finding files: {e}"


def search_file_contents(
    pattern: str,
    search_path: str = ".",
    glob_pattern: str | None = None,
    case_insensitive: bool = False,
    base_dir: str = ".",
) -> str:
    """Recursive line-numbered text search backed by grep.

    grep exits non-zero both for "no matches" and for unreadable files, so the
    exit status is ignored: any output is a result, no output means no matches.
    """
    flags = "-rn"
    if case_insensitive:
        flags += "i"
    command = ["grep", flags]
    if glob_pattern:
        command += ["--include", glob_pattern]
    command += ["-e", pattern, search_path]

    logger.debug("running %s in %s", command, base_dir)
    try:
        proc = subprocess.run(
            command,
            cwd=base_dir,
            capture_output=True,
            text=True,
            errors="replace",
            stdin=subprocess.DEVNULL,
        )
    except OSError as e:
        return f"error: failed to run grep: {e}"

    if not proc.stdout:
        return "No matches found."
    return proc.stdout.strip()


def read_file(
    file_path: str,
    offset: int = 1,
    limit: int = DEFAULT_READ_LIMIT,
    base_dir: str = ".",
) -> str:
    """Return up to `limit` lines from 1-based `offset`, each prefixed `<n> | `.

    Only "\\n" ends a line, so the numbers agree with grep -n.
    """
    try:
        offset = int(offset)
        limit = int(limit)
        with open(_resolve(file_path, base_dir), encoding="utf-8", newline="") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError, TypeError, ValueError) as e:
        return f"error: reading file: {e}"

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    start = max(offset, 1) - 1
    selected = [line.removesuffix("\r") for line in lines[start : start + max(limit, 0)]]
    return "\n".join(f"{n} | {line}" for n, line in enumerate(selected, start=start + 1))


def create_file(file_path: str, content: str, base_dir: str = ".") -> str:
    """Create or overwrite a file, creating parent directories as needed."""
    try:
        resolved = _resolve(file_path, base_dir)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding="utf-8")
    except (OSError, TypeError) as e:
        return f"error: creating file: {e}"
    return f"File created successfully at {file_path}"


def edit_file(
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    base_dir: str = ".",
) -> str:
    """Replace old_string with new_string in an existing file."""
    from .edit import replace

    try:
        resolved = _resolve(file_path, base_dir)
        content = resolved.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return f"error: editing file: {e}"

    try:
        new_content, count = replace(
            content, old_string, new_string, replace_all=bool(replace_all)
        )
    except ValueError as e:
        if str(e) == "not found":
            return (
                "error: oldString not found in file. "
                "Please ensure exact matching including indentation."
            )
        return f"error: {e}"

    try:
        resolved.write_text(new_content, encoding="utf-8")
    except OSError as e:
        return f"error: editing file: {e}"
    noun = "occurrence" if count == 1 else "occurrences"
    return f"File edited successfully at {file_path} ({count} {noun} replaced)"


class ToolRegistry:
    """Maps tool names to descriptors (sent to the model) and implementations.

    Implementations take the model's argument dict and return text. invoke()
    never raises: unknown names and failing implementations produce an
    `error:` string that goes back to the model as an ordinary tool result.
    """

    def __init__(self):
        self._descriptors: list[dict] = []
        self._impls: dict[str, Callable[[dict], str]] = {}

    def register(self, descriptor: dict, implementation: Callable[[dict], str]) -> None:
        name = descriptor["function"]["name"]
        if name in self._impls:
            raise ValueError(f"tool {name!r} is already registered")
        self._descriptors.append(descriptor)
        self._impls[name] = implementation

    def describe(self) -> list[dict]:
        return list(self._descriptors)

    def invoke(self, name: str, arguments: dict) -> str:
        impl = self._impls.get(name)
        if impl is None:
            return f"error: Tool {name} not found."
        try:
            return impl(dict(arguments))
        except KeyError as e:
            return f"error: missing required argument {e} for {name}"
        except Exception as e:
            logger.debug("tool %s raised", name, exc_info=True)
            return f"error: executing {name}: {e}"


def _find_files_tool(args: dict, base_dir: str) -> str:
    return find_files(args["pattern"], base_dir=base_dir)


def _search_file_contents_tool(args: dict, base_dir: str) -> str:
    return search_file_contents(
        args["pattern"],
        search_path=args.get("searchPath") or ".",
        glob_pattern=args.get("globPattern"),
        case_insensitive=bool(args.get("caseInsensitive", False)),
        base_dir=base_dir,
    )


def _read_file_tool(args: dict, base_dir: str) -> str:
    return read_file(
        args["filePath"],
        offset=args.get("offset", 1),
        limit=args.get("limit", DEFAULT_READ_LIMIT),
        base_dir=base_dir,
    )


def _create_file_tool(args: dict, base_dir: str) -> str:
    return create_file(args["filePath"], args["content"], base_dir=base_dir)


def _edit_file_tool(args: dict, base_dir: str) -> str:
    return edit_file(
        args["filePath"],
        args["oldString"],
        args["newString"],
        replace_all=args.get("replaceAll", False),
        base_dir=base_dir,
    )


def build_registry(base_dir: str = ".") -> ToolRegistry:
    """Register the built-in tools, resolving relative paths against base_dir."""
    registry = ToolRegistry()
    for descriptor, impl in [
        (FIND_FILES_TOOL, _find_files_tool),
        (SEARCH_FILE_CONTENTS_TOOL, _search_file_contents_tool),
        (READ_FILE_TOOL, _read_file_tool),
        (CREATE_FILE_TOOL, _create_file_tool),
        (EDIT_FILE_TOOL, _edit_file_tool),
    ]:
        registry.register(descriptor, partial(impl, base_dir=base_dir))
    return registry
