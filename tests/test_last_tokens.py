import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolrun.tokens import parse_last_token, split_invocation, tokenize, unwrap_link  # noqa: E402


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("$LAST", 0),
        ("$last", 0),
        ("$LAST-3", 3),
        ("$Last~12", 12),
        ("$LAST-", None),
        ("$LASTS", None),
        ("LAST", None),
        ("$LAST-x", None),
        ("https://cdn.example/a.png", None),
    ],
)
def test_parse_last_token(token: str, expected: int | None) -> None:
    assert parse_last_token(token) == expected


def test_unwrap_link_strips_angle_brackets() -> None:
    assert unwrap_link("<https://cdn.example/a.png>") == "https://cdn.example/a.png"
    assert unwrap_link("https://cdn.example/a.png") == "https://cdn.example/a.png"
    assert unwrap_link("<>") == "<>"


def test_split_invocation_separates_inputs_from_tool_arguments() -> None:
    tokens = tokenize('<https://cdn.example/a.png> $LAST-1 -hp 0 "tol:1" $LAST')
    invocation = split_invocation(tokens)

    assert invocation.has_arguments
    assert [t.url for t in invocation.inputs] == ["https://cdn.example/a.png", None]
    assert [t.last_offset for t in invocation.inputs] == [None, 1]
    assert invocation.arguments == ["-hp", "0", "tol:1", "$LAST"]


def test_split_invocation_without_arguments() -> None:
    invocation = split_invocation(tokenize("$LAST https://cdn.example/a.png"))

    assert not invocation.has_arguments
    assert invocation.arguments == []
    assert len(invocation.inputs) == 2


def test_tokenize_tolerates_unbalanced_quotes() -> None:
    assert tokenize('-text "unterminated') == ["-text", '"unterminated']
