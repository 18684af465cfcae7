"""
The expression mini-language used by `expression` parameters.

Two shapes are supported and nothing else:

* placeholders of the form ``{command.column[row]}``, replaced by the string
  form of a stored cell;
* an outer ``CONCAT(a, b, ...)`` wrapper, applied after substitution, that
  joins its (optionally single-quoted) arguments without a separator.

Text is tokenized explicitly instead of being rewritten with regular
expressions, so substituted values are never rescanned for placeholders.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

CONCAT_PREFIX = "CONCAT("
CONCAT_ARG_SEPARATOR = ", "


@dataclass(frozen=True)
class LiteralText:
    text: str


@dataclass(frozen=True)
class Placeholder:
    command: str
    column: str
    row: int

    def __str__(self) -> str:
        return f"{{{self.command}.{self.column}[{self.row}]}}"


Token = Union[LiteralText, Placeholder]


def _match_placeholder(text: str, start: int) -> Tuple[Optional[Placeholder], int]:
    """
    Tries to read a placeholder whose opening brace is at `start`.

    The command name runs up to the first '.', the column name up to the
    first '[' after it, and the row index must be decimal digits followed
    by ']}'.
    """
    dot = text.find(".", start + 1)
    if dot <= start + 1:
        return None, start
    bracket = text.find("[", dot + 1)
    if bracket <= dot + 1:
        return None, start
    close = text.find("]", bracket + 1)
    if close == -1:
        return None, start
    digits = text[bracket + 1 : close]
    if not digits.isdecimal() or text[close + 1 : close + 2] != "}":
        return None, start
    placeholder = Placeholder(
        command=text[start + 1 : dot],
        column=text[dot + 1 : bracket],
        row=int(digits),
    )
    return placeholder, close + 2


def tokenize(text: str) -> List[Token]:
    """Splits expression text into literal runs and placeholders, left to right."""
    tokens: List[Token] = []
    literal_start = 0
    pos = 0
    while True:
        brace = text.find("{", pos)
        if brace == -1:
            break
        placeholder, end = _match_placeholder(text, brace)
        if placeholder is None:
            pos = brace + 1
            continue
        if brace > literal_start:
            tokens.append(LiteralText(text[literal_start:brace]))
        tokens.append(placeholder)
        literal_start = pos = end
    if literal_start < len(text):
        tokens.append(LiteralText(text[literal_start:]))
    return tokens


def substitute(tokens: List[Token], lookup: Callable[[Placeholder], Any]) -> str:
    """Renders tokens back to text, replacing each placeholder with `lookup(placeholder)`."""
    parts = []
    for token in tokens:
        if isinstance(token, Placeholder):
            value = lookup(token)
            parts.append("" if value is None else str(value))
        else:
            parts.append(token.text)
    return "".join(parts)


def apply_concat(text: str) -> str:
    """
    Evaluates an outer CONCAT(...) call. Text that does not start with
    CONCAT( is returned unchanged, even if a CONCAT call appears later on.
    The call must close on its first line; anything after that closing
    parenthesis is dropped.
    """
    if text[: len(CONCAT_PREFIX)].upper() != CONCAT_PREFIX:
        return text
    first_line = text.split("\n", 1)[0]
    close = first_line.rfind(")")
    if close == -1:
        return text
    inner = text[len(CONCAT_PREFIX) : close]
    return "".join(arg.strip(" '") for arg in inner.split(CONCAT_ARG_SEPARATOR))


def evaluate(text: str, lookup: Callable[[Placeholder], Any]) -> str:
    """Substitutes every placeholder in `text`, then applies an outer CONCAT."""
    return apply_concat(substitute(tokenize(text), lookup))
