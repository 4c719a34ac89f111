"""
conditions.py - Restricted interpreter for `when` and include `condition` expressions.

Expressions are tokenized and parsed by a small recursive-descent parser into a
tuple-based syntax tree, then evaluated against a variable mapping. Nothing is
ever handed to the host interpreter.

Grammar (lowest to highest precedence):

    expr       := or_expr
    or_expr    := and_expr (("||" | "or") and_expr)*
    and_expr   := not_expr (("&&" | "and") not_expr)*
    not_expr   := ("!" | "not") not_expr | comparison
    comparison := operand (CMP_OP operand)?
    operand    := STRING | ["-"] NUMBER | "true" | "false" | "null" | "undefined"
                | IDENT ("." IDENT)* | "(" expr ")"

CMP_OP is one of == === != !== < <= > >= in.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from .errors import ConditionSyntaxError

logger = logging.getLogger(__name__)

_KEYWORD_LITERALS = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

_COMPARISON_OPS = ("===", "!==", "==", "!=", "<=", ">=", "<", ">")
_PUNCTUATION = ("&&", "||", "!", "(", ")", ".", "-")

_IDENT_START = re.compile(r"[A-Za-z_$]")
_IDENT_BODY = re.compile(r"[A-Za-z0-9_$]*")
_NUMBER = re.compile(r"\d+(\.\d+)?")

# Shapes that are syntactically legal but almost certainly a mistake
_DEGENERATE_PATTERNS = (
    re.compile(r"^[{}()\[\].,;]*$"),
    re.compile(r"^\d+$"),
    re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$"),
)


@dataclass(frozen=True)
class Token:
    kind: str  # "str" | "num" | "ident" | "op" | "end"
    value: Any
    position: int


# =============================================================================
# Tokenizer
# =============================================================================


def tokenize(expression: str) -> List[Token]:
    """Split an expression into tokens.

    Raises:
        ConditionSyntaxError: On an unterminated string or unknown character.
    """
    tokens: List[Token] = []
    i = 0
    length = len(expression)

    while i < length:
        ch = expression[i]

        if ch.isspace():
            i += 1
            continue

        if ch in ("'", '"'):
            start = i
            i += 1
            chars: List[str] = []
            while i < length and expression[i] != ch:
                if expression[i] == "\\" and i + 1 < length:
                    i += 1
                chars.append(expression[i])
                i += 1
            if i >= length:
                raise ConditionSyntaxError(expression, "unterminated string", start)
            tokens.append(Token("str", "".join(chars), start))
            i += 1
            continue

        number = _NUMBER.match(expression, i)
        if number:
            text = number.group(0)
            value: Any = float(text) if "." in text else int(text)
            tokens.append(Token("num", value, i))
            i = number.end()
            continue

        if _IDENT_START.match(ch):
            body = _IDENT_BODY.match(expression, i + 1)
            end = body.end() if body else i + 1
            tokens.append(Token("ident", expression[i:end], i))
            i = end
            continue

        for op in _COMPARISON_OPS + _PUNCTUATION:
            if expression.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise ConditionSyntaxError(expression, f"unexpected character '{ch}'", i)

    tokens.append(Token("end", None, length))
    return tokens


# =============================================================================
# Parser
# =============================================================================


class _Parser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _at_op(self, *ops: str) -> bool:
        return self.current.kind == "op" and self.current.value in ops

    def _at_word(self, *words: str) -> bool:
        return self.current.kind == "ident" and self.current.value in words

    def _fail(self, message: str) -> ConditionSyntaxError:
        return ConditionSyntaxError(self.expression, message, self.current.position)

    def parse(self) -> Tuple:
        if self.current.kind == "end":
            raise self._fail("empty expression")
        node = self._or()
        if self.current.kind != "end":
            raise self._fail(f"unexpected token '{self.current.value}'")
        return node

    def _or(self) -> Tuple:
        node = self._and()
        while self._at_op("||") or self._at_word("or"):
            self._advance()
            node = ("or", node, self._and())
        return node

    def _and(self) -> Tuple:
        node = self._not()
        while self._at_op("&&") or self._at_word("and"):
            self._advance()
            node = ("and", node, self._not())
        return node

    def _not(self) -> Tuple:
        if self._at_op("!") or self._at_word("not"):
            self._advance()
            return ("not", self._not())
        return self._comparison()

    def _comparison(self) -> Tuple:
        left = self._operand()
        if self._at_op(*_COMPARISON_OPS) or self._at_word("in"):
            op = self._advance().value
            right = self._operand()
            return ("cmp", op, left, right)
        return left

    def _operand(self) -> Tuple:
        token = self.current

        if token.kind in ("str", "num"):
            self._advance()
            return ("lit", token.value)

        if self._at_op("-"):
            self._advance()
            if self.current.kind != "num":
                raise self._fail("expected number after '-'")
            return ("lit", -self._advance().value)

        if token.kind == "ident":
            if token.value in _KEYWORD_LITERALS:
                self._advance()
                return ("lit", _KEYWORD_LITERALS[token.value])
            if token.value in ("and", "or", "not", "in"):
                raise self._fail(f"unexpected keyword '{token.value}'")
            self._advance()
            path = [token.value]
            while self._at_op("."):
                self._advance()
                if self.current.kind != "ident":
                    raise self._fail("expected identifier after '.'")
                path.append(self._advance().value)
            return ("var", tuple(path))

        if self._at_op("("):
            self._advance()
            node = self._or()
            if not self._at_op(")"):
                raise self._fail("expected ')'")
            self._advance()
            return node

        if token.kind == "end":
            raise self._fail("unexpected end of expression")
        raise self._fail(f"unexpected token '{token.value}'")


def parse_condition(expression: str) -> Tuple:
    """Parse an expression into its syntax tree.

    Raises:
        ConditionSyntaxError: If the expression is not valid.
    """
    return _Parser(expression).parse()


# =============================================================================
# Evaluation
# =============================================================================


def _lookup(path: Tuple[str, ...], variables: Mapping[str, Any]) -> Any:
    value: Any = variables
    for part in path:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return None
    return value


def _compare(op: str, left: Any, right: Any) -> bool:
    if op in ("==", "==="):
        return left == right
    if op in ("!=", "!=="):
        return left != right
    if op == "in":
        if right is None:
            return False
        try:
            return left in right
        except TypeError:
            return False
    if left is None or right is None:
        return False
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError:
        return False
    raise ValueError(f"Unknown comparison operator: {op}")


def _evaluate(node: Tuple, variables: Mapping[str, Any]) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "var":
        return _lookup(node[1], variables)
    if kind == "not":
        return not _evaluate(node[1], variables)
    if kind == "and":
        return bool(_evaluate(node[1], variables)) and bool(_evaluate(node[2], variables))
    if kind == "or":
        return bool(_evaluate(node[1], variables)) or bool(_evaluate(node[2], variables))
    if kind == "cmp":
        return _compare(node[1], _evaluate(node[2], variables), _evaluate(node[3], variables))
    raise ValueError(f"Unknown node kind: {kind}")


def evaluate_condition(expression: Optional[str], variables: Mapping[str, Any]) -> bool:
    """Evaluate a condition against a variable mapping.

    An empty or missing expression is true. Identifiers that are not in
    `variables` evaluate to None.

    Raises:
        ConditionSyntaxError: If the expression is not valid.
    """
    if expression is None or not expression.strip():
        return True
    tree = parse_condition(expression)
    result = bool(_evaluate(tree, variables))
    logger.debug("Condition %r evaluated to %s", expression, result)
    return result


def is_degenerate_condition(expression: str) -> bool:
    """Return True if an expression looks like a mistake rather than a condition.

    Empty text, pure punctuation, a bare number and a single identifier all
    qualify. This is a heuristic only.
    """
    text = expression.strip()
    if not text:
        return True
    return any(p.match(text) for p in _DEGENERATE_PATTERNS)
