"""Literal (non-regex) token substitution."""

from __future__ import annotations

from typing import List, Mapping


def substitute_tokens(template: str, replacements: Mapping[str, str]) -> str:
    """Replace every occurrence of each literal token in a single pass.

    Text produced by a replacement is never scanned again, so a value that
    itself contains ``{value}`` or ``{name}`` stays as it is. When two tokens
    start at the same position the longer one wins.
    """
    tokens = sorted((t for t in replacements if t), key=len, reverse=True)
    if not tokens or not template:
        return template

    out: List[str] = []
    i = 0
    n = len(template)
    while i < n:
        for token in tokens:
            if template.startswith(token, i):
                out.append(str(replacements[token]))
                i += len(token)
                break
        else:
            out.append(template[i])
            i += 1
    return "".join(out)


__all__ = ["substitute_tokens"]
