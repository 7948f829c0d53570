"""Parser for the filter query string accepted by list endpoints.

The query string is a boolean expression over conditions::

    full_name=Jane*&(username=jdoe|!username)
    name~*ops*|type!=email

Conditions have the form ``column<op>value`` with one of the operators
``=``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``~`` (like) and ``!~``
(unlike). A bare ``column`` is an existence check. ``&`` binds tighter
than ``|``, ``!`` negates the following condition or group and
parentheses group sub-expressions. Column names and values are
percent-decoded after the structure has been parsed, so encoded
``&``, ``|`` or parentheses inside a value are taken literally.

Usage:
    from app.filters import parse

    tree = parse("name=ops&type=email")
    # Chain(kind="AND", children=(Condition("name", "=", "ops"),
    #                             Condition("type", "=", "email")))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union
from urllib.parse import unquote

AND = "AND"
OR = "OR"
NONE = "NONE"

OPERATORS = ("!=", "!~", "<=", ">=", "=", "<", ">", "~")

_COLUMN_END = set("=<>!~&|()")
_VALUE_END = set("&|()")


class FilterParseError(ValueError):
    """Raised for a malformed filter string."""

    def __init__(self, fragment: str, reason: str = "cannot parse"):
        super().__init__(f"Invalid filter string: {reason} at '{fragment}'")
        self.fragment = fragment
        self.reason = reason


@dataclass(frozen=True)
class Condition:
    """A single ``column operator value`` test.

    ``value`` is ``True`` for a bare column (existence check).
    """

    column: str
    operator: str
    value: Union[str, bool]


@dataclass(frozen=True)
class Chain:
    """Boolean combination of filter nodes.

    ``AND`` matches when all children match, ``OR`` when any does and
    ``NONE`` when none of them does.
    """

    kind: str
    children: tuple = field(default_factory=tuple)


FilterNode = Union[Condition, Chain]


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, reason: str) -> FilterParseError:
        return FilterParseError(self.text[self.pos:] or self.text, reason)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def parse(self) -> FilterNode:
        node = self.parse_or()
        if self.pos < len(self.text):
            raise self.error(f"unexpected '{self.peek()}'")
        return node

    def parse_or(self) -> FilterNode:
        children = [self.parse_and()]
        while self.peek() == "|":
            self.pos += 1
            children.append(self.parse_and())
        if len(children) == 1:
            return children[0]
        return Chain(OR, tuple(children))

    def parse_and(self) -> FilterNode:
        children = [self.parse_unary()]
        while self.peek() == "&":
            self.pos += 1
            children.append(self.parse_unary())
        if len(children) == 1:
            return children[0]
        return Chain(AND, tuple(children))

    def parse_unary(self) -> FilterNode:
        if self.peek() == "!" and self.text[self.pos + 1:self.pos + 2] not in ("=", "~"):
            self.pos += 1
            operand = self.parse_unary()
            if isinstance(operand, Chain) and operand.kind == OR:
                return Chain(NONE, operand.children)
            return Chain(NONE, (operand,))
        return self.parse_primary()

    def parse_primary(self) -> FilterNode:
        if self.peek() == "(":
            self.pos += 1
            if self.peek() == ")":
                raise self.error("empty group")
            node = self.parse_or()
            if self.peek() != ")":
                raise self.error("missing ')'")
            self.pos += 1
            return node
        return self.parse_condition()

    def parse_condition(self) -> Condition:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in _COLUMN_END:
            self.pos += 1
        column = unquote(self.text[start:self.pos]).strip()
        if not column:
            raise self.error("missing column")

        operator = next(
            (op for op in OPERATORS if self.text.startswith(op, self.pos)), None
        )
        if operator is None:
            if self.peek() in ("", "&", "|", ")"):
                return Condition(column, "=", True)
            raise self.error(f"unexpected '{self.peek()}'")
        self.pos += len(operator)

        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in _VALUE_END:
            self.pos += 1
        if self.peek() == "(":
            raise self.error("unexpected '('")
        return Condition(column, operator, unquote(self.text[start:self.pos]))


def parse(raw_query: str | None) -> Chain:
    """Parse a raw query string into a filter tree.

    Args:
        raw_query: Query string as received, without the leading ``?``.

    Returns:
        Chain: The top level ``AND`` chain. An empty query yields an
        empty chain, which matches everything.

    Raises:
        FilterParseError: If the string is not a valid filter expression.
    """
    if not raw_query:
        return Chain(AND, ())

    node = _Parser(raw_query).parse()
    if isinstance(node, Chain) and node.kind == AND:
        return node
    return Chain(AND, (node,))
