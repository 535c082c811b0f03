"""String replacement engine for the editFile tool.

Provides a single public function `replace()` that swaps verbatim occurrences
of a substring. Matching is exact: whitespace, indentation and Unicode
punctuation must agree byte for byte.
"""

from __future__ import annotations


def replace(
    content: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> tuple[str, int]:
    """Replace old_string with new_string in content.

    Returns (new_content, replacements). With replace_all=False only the
    first occurrence is replaced, even when more exist.

    Raises ValueError:
      - "old_string must not be empty" if old_string is ""
      - "not found" if old_string does not occur verbatim
    """
    if not old_string:
        raise ValueError("old_string must not be empty")

    count = content.count(old_string)
    if count == 0:
        raise ValueError("not found")

    if replace_all:
        return content.replace(old_string, new_string), count
    return content.replace(old_string, new_string, 1), 1
