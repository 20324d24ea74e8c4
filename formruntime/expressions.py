"""Conditional-rule and arithmetic expression evaluation.

Two jobs live here:

- Conditional rules compare another field's current value against a literal
  and combine with AND/OR. They drive conditional display and skip rules.
- Calculated fields evaluate arithmetic over field values. Expressions are
  parsed by a restricted recursive-descent parser that only knows numeric
  literals, ``+ - * /``, unary signs, parentheses and field identifiers.
  Nothing is ever handed to ``eval``.

Evaluation failures raise ExpressionError; ``calculate`` and the rule
helpers recover to 0 / False so that a broken expression never reaches the
user as an exception.

Usage:
    >>> values = {"qty": "3", "price": "2.5"}
    >>> calculate("qty * price", values.get)
    7.5
    >>> format_calculated_value(7.5, CalculatedFormat.CURRENCY, 2)
    '$7.50'
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Union

from formruntime.errors import ExpressionError
from formruntime.schema import ConditionalRule
from formruntime.types import CalculatedFormat, ConditionalOperator, LogicOperator

logger = logging.getLogger(__name__)

ValueLookup = Callable[[str], Any]
"""Resolves a field identifier to its current value (None when unknown)."""


def to_display_string(value: Any) -> str:
    """String representation used by equals/contains comparisons.

    None renders as the empty string, booleans as "true"/"false", integral
    floats without a trailing ".0" and lists comma-joined.

    Examples:
        >>> to_display_string(3.0), to_display_string(True), to_display_string(["a", "b"])
        ('3', 'true', 'a,b')
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_display_string(v) for v in value)
    return str(value)


def parse_number(value: Any) -> Optional[float]:
    """Parse a value as a finite float, returning None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def evaluate_rule(rule: ConditionalRule, lookup: ValueLookup) -> bool:
    """Evaluate a single conditional rule against current values.

    Examples:
        >>> rule = ConditionalRule(field="a", operator=ConditionalOperator.EQUALS, value="x")
        >>> evaluate_rule(rule, {"a": "x"}.get)
        True
    """
    actual = lookup(rule.field)
    expected = rule.value
    operator = rule.operator

    if operator == ConditionalOperator.EQUALS:
        return to_display_string(actual) == to_display_string(expected)
    if operator == ConditionalOperator.NOT_EQUALS:
        return to_display_string(actual) != to_display_string(expected)
    if operator in (ConditionalOperator.GREATER_THAN, ConditionalOperator.LESS_THAN):
        left = parse_number(actual)
        right = parse_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionalOperator.GREATER_THAN else left < right
    if operator == ConditionalOperator.CONTAINS:
        return to_display_string(expected) in to_display_string(actual)
    if operator == ConditionalOperator.NOT_CONTAINS:
        return to_display_string(expected) not in to_display_string(actual)
    return False


def evaluate_rules(
    rules: Iterable[ConditionalRule],
    lookup: ValueLookup,
    logic: Union[LogicOperator, str] = LogicOperator.AND,
) -> bool:
    """Combine rule results; an empty rule set is vacuously true."""
    results = [evaluate_rule(rule, lookup) for rule in rules]
    if not results:
        return True
    if LogicOperator(logic) == LogicOperator.OR:
        return any(results)
    return all(results)


# Identifiers may carry repeatable-instance namespacing: items[0].price
_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+(?:\.\d*)?|\.\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\[\d+\])?(?:\.[A-Za-z_][A-Za-z0-9_]*)*)"
    r"|(?P<op>[-+*/()])"
    r")"
)


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str


def tokenize(expression: str) -> List[_Token]:
    """Split an arithmetic expression into number, name and operator tokens.

    Raises:
        ExpressionError: On any character outside the grammar
    """
    tokens: List[_Token] = []
    position = 0
    length = len(expression)
    while position < length:
        if expression[position:].strip() == "":
            break
        match = _TOKEN_RE.match(expression, position)
        if match is None or match.end() == position:
            raise ExpressionError(f"Unexpected character at position {position} in {expression!r}")
        kind = match.lastgroup
        tokens.append(_Token(kind=kind, text=match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    """Recursive descent over the grammar:

        expr   := term (('+' | '-') term)*
        term   := factor (('*' | '/') factor)*
        factor := ('+' | '-') factor | number | name | '(' expr ')'
    """

    def __init__(self, tokens: List[_Token], lookup: ValueLookup):
        self.tokens = tokens
        self.lookup = lookup
        self.index = 0

    def parse(self) -> float:
        if not self.tokens:
            raise ExpressionError("Empty expression")
        value = self._expr()
        if self.index != len(self.tokens):
            raise ExpressionError(f"Unexpected token {self.tokens[self.index].text!r}")
        return value

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _take(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self.index += 1
        return token

    def _expr(self) -> float:
        value = self._term()
        while True:
            token = self._peek()
            if token is None or token.text not in ("+", "-"):
                return value
            self._take()
            right = self._term()
            value = value + right if token.text == "+" else value - right

    def _term(self) -> float:
        value = self._factor()
        while True:
            token = self._peek()
            if token is None or token.text not in ("*", "/"):
                return value
            self._take()
            right = self._factor()
            if token.text == "*":
                value = value * right
            else:
                if right == 0:
                    raise ExpressionError("Division by zero")
                value = value / right

    def _factor(self) -> float:
        token = self._take()
        if token.kind == "op":
            if token.text == "-":
                return -self._factor()
            if token.text == "+":
                return self._factor()
            if token.text == "(":
                value = self._expr()
                closing = self._take()
                if closing.text != ")":
                    raise ExpressionError(f"Expected ')' but found {closing.text!r}")
                return value
            raise ExpressionError(f"Unexpected operator {token.text!r}")
        if token.kind == "number":
            return float(token.text)
        number = parse_number(self.lookup(token.text))
        if number is None:
            raise ExpressionError(f"Field '{token.text}' has no numeric value")
        return number


def evaluate_expression(expression: str, lookup: ValueLookup) -> float:
    """Evaluate an arithmetic expression, substituting field identifiers.

    Raises:
        ExpressionError: On syntax errors, division by zero, or identifiers
            whose value is missing or non-numeric
    """
    value = _Parser(tokenize(expression), lookup).parse()
    if math.isnan(value) or math.isinf(value):
        raise ExpressionError(f"Expression {expression!r} did not produce a finite number")
    return value


def calculate(expression: str, lookup: ValueLookup) -> float:
    """Evaluate an expression for display, recovering any failure to 0."""
    try:
        return evaluate_expression(expression, lookup)
    except ExpressionError as exc:
        logger.debug("Expression %r fell back to 0: %s", expression, exc)
        return 0.0


def format_calculated_value(
    value: Any,
    fmt: Union[CalculatedFormat, str] = CalculatedFormat.NUMBER,
    decimal_places: int = 2,
) -> str:
    """Format a calculated value for display.

    Examples:
        >>> format_calculated_value(12.345, CalculatedFormat.PERCENTAGE, 1)
        '12.3%'
        >>> format_calculated_value("oops")
        '0'
    """
    number = parse_number(value)
    if number is None:
        return "0"
    fixed = f"{number:.{decimal_places}f}"
    fmt = CalculatedFormat(fmt)
    if fmt == CalculatedFormat.CURRENCY:
        return f"${fixed}"
    if fmt == CalculatedFormat.PERCENTAGE:
        return f"{fixed}%"
    return fixed


def referenced_fields(expression: str) -> List[str]:
    """Identifiers an expression depends on, in order of first appearance."""
    try:
        tokens = tokenize(expression)
    except ExpressionError:
        return []
    names: List[str] = []
    for token in tokens:
        if token.kind == "name" and token.text not in names:
            names.append(token.text)
    return names


__all__ = [
    "ValueLookup",
    "to_display_string",
    "parse_number",
    "evaluate_rule",
    "evaluate_rules",
    "tokenize",
    "evaluate_expression",
    "calculate",
    "format_calculated_value",
    "referenced_fields",
]
