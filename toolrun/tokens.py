from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field

LAST_TOKEN_RE = re.compile(r"^\$LAST(?:[-~](\d+))?$", re.IGNORECASE)


def parse_last_token(token: str) -> int | None:
    """Return the history offset named by ``$LAST``/``$LAST-n``/``$LAST~n``."""
    match = LAST_TOKEN_RE.match(token.strip())
    if not match:
        return None
    return int(match.group(1)) if match.group(1) else 0


def unwrap_link(token: str) -> str:
    # Discord wraps links in <> to suppress embeds
    if token.startswith("<") and token.endswith(">") and len(token) > 2:
        return token[1:-1]
    return token


@dataclass(slots=True)
class InputToken:
    raw: str
    url: str | None = None
    last_offset: int | None = None


@dataclass(slots=True)
class Invocation:
    inputs: list[InputToken] = field(default_factory=list)
    arguments: list[str] = field(default_factory=list)
    has_arguments: bool = False


def tokenize(text: str) -> list[str]:
    try:
        return shlex.split(text)
    except ValueError:
        # unbalanced quotes; fall back to plain whitespace splitting
        return text.split()


def split_invocation(tokens: list[str]) -> Invocation:
    """Split command tokens into inputs and tool arguments.

    Everything up to the first token starting with ``-`` is an input (a link
    or a ``$LAST`` reference); that token and everything after it is passed to
    the tool untouched.
    """
    invocation = Invocation()
    for index, token in enumerate(tokens):
        if token.startswith("-"):
            invocation.arguments = list(tokens[index:])
            invocation.has_arguments = True
            break
        offset = parse_last_token(token)
        if offset is not None:
            invocation.inputs.append(InputToken(raw=token, last_offset=offset))
        else:
            invocation.inputs.append(InputToken(raw=token, url=unwrap_link(token)))
    return invocation
