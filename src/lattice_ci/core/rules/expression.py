# src/lattice_ci/core/rules/expression.py
"""
Linguagem de condições `if` das rules do Lattice CI.

Este módulo implementa o tokenizer, o parser (descida recursiva) e o
avaliador das expressões usadas em `rules:if` e `workflow:rules:if`.

Gramática (v1):
    expr     := and_expr ( "||" and_expr )*
    and_expr := term ( "&&" term )*
    term     := "(" expr ")" | operand ( op operand )?
    op       := "==" | "!=" | "=~" | "!~"
    operand  := $VAR | ${VAR} | "string" | 'string' | /regex/flags | null

Semântica:
    - `$VAR` isolado é verdadeiro quando definido e não vazio
    - variável indefinida vale `null`; `$VAR == null` é verdadeiro nesse caso
    - `==` / `!=` comparam strings (ou null)
    - `=~` / `!~` aplicam busca parcial (`re.search`) do padrão à esquerda;
      o operando direito pode ser um literal `/regex/` ou uma variável cujo
      valor tem a forma `/regex/`
    - `&&` tem precedência sobre `||`; parênteses agrupam

Flags de regex suportadas: `i` (IGNORECASE), `m` (MULTILINE), `s` (DOTALL).

Decisões arquiteturais:
    - Expressões são compiladas uma única vez e cacheadas por texto
    - Erros de sintaxe levantam `ExpressionSyntaxError` (convertido em
      RuleEvaluationError pelo chamador, com o nome do Job)
    - A avaliação é pura e determinística para o mesmo mapa de variáveis

Limites explícitos:
    - Não acessa variáveis de ambiente do processo
    - Não suporta negação unária (`!`) nem comparação numérica
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Mapping, Optional, Tuple, Union


class ExpressionSyntaxError(ValueError):
    """Expressão `if` malformada."""


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

_VARIABLE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")
_OPERATORS = ("==", "!=", "=~", "!~", "&&", "||")
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@dataclass(frozen=True)
class Token:
    kind: str  # var | str | regex | null | op | lparen | rparen
    value: str
    pos: int
    flags: str = ""


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == "(":
            tokens.append(Token("lparen", ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token("rparen", ch, i))
            i += 1
            continue
        two = text[i:i + 2]
        if two in _OPERATORS:
            tokens.append(Token("op", two, i))
            i += 2
            continue
        if ch == "$":
            m = _VARIABLE.match(text, i)
            if not m:
                raise ExpressionSyntaxError(f"invalid variable reference at position {i}")
            tokens.append(Token("var", m.group(1) or m.group(2), i))
            i = m.end()
            continue
        if ch in ("'", '"'):
            value, i = _read_delimited(text, i, ch)
            tokens.append(Token("str", value, i))
            continue
        if ch == "/":
            start = i
            pattern, i = _read_delimited(text, i, "/", keep_escapes=True)
            flags_start = i
            while i < n and text[i].isalpha():
                i += 1
            flags = text[flags_start:i]
            for flag in flags:
                if flag not in _REGEX_FLAGS:
                    raise ExpressionSyntaxError(f"unsupported regex flag '{flag}' at position {flags_start}")
            tokens.append(Token("regex", pattern, start, flags))
            continue
        if text.startswith("null", i) and (i + 4 == n or not (text[i + 4].isalnum() or text[i + 4] == "_")):
            tokens.append(Token("null", "null", i))
            i += 4
            continue
        raise ExpressionSyntaxError(f"unexpected character '{ch}' at position {i}")
    return tokens


def _read_delimited(text: str, start: int, delim: str, keep_escapes: bool = False) -> Tuple[str, int]:
    i = start + 1
    out: List[str] = []
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if keep_escapes and nxt != delim:
                out.append(ch)
            out.append(nxt)
            i += 2
            continue
        if ch == delim:
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    raise ExpressionSyntaxError(f"unterminated literal starting at position {start}")


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Literal:
    value: Optional[str]


@dataclass(frozen=True)
class Pattern:
    source: str
    flags: str = ""

    def compile(self) -> "re.Pattern[str]":
        flags = 0
        for flag in self.flags:
            flags |= _REGEX_FLAGS[flag]
        return re.compile(self.source, flags)


Operand = Union[Variable, Literal, Pattern]


@dataclass(frozen=True)
class Compare:
    op: str
    left: Operand
    right: Operand


@dataclass(frozen=True)
class Truthy:
    operand: Operand


@dataclass(frozen=True)
class BoolOp:
    op: str  # && | ||
    left: "Node"
    right: "Node"


Node = Union[Compare, Truthy, BoolOp]


class _Parser:
    def __init__(self, tokens: List[Token], text: str):
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise ExpressionSyntaxError(f"unexpected end of expression: {self.text!r}")
        self.pos += 1
        return tok

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionSyntaxError("empty expression")
        node = self._expr()
        extra = self._peek()
        if extra is not None:
            raise ExpressionSyntaxError(f"unexpected token '{extra.value}' at position {extra.pos}")
        return node

    def _expr(self) -> Node:
        node = self._and()
        while self._is_op("||"):
            self._next()
            node = BoolOp("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._term()
        while self._is_op("&&"):
            self._next()
            node = BoolOp("&&", node, self._term())
        return node

    def _term(self) -> Node:
        tok = self._peek()
        if tok is not None and tok.kind == "lparen":
            self._next()
            node = self._expr()
            closing = self._next()
            if closing.kind != "rparen":
                raise ExpressionSyntaxError(f"expected ')' at position {closing.pos}")
            return node
        left = self._operand()
        nxt = self._peek()
        if nxt is not None and nxt.kind == "op" and nxt.value in ("==", "!=", "=~", "!~"):
            self._next()
            right = self._operand()
            if nxt.value in ("=~", "!~") and isinstance(right, Literal):
                raise ExpressionSyntaxError(
                    f"right side of '{nxt.value}' must be a /regex/ or a variable (position {nxt.pos})"
                )
            return Compare(nxt.value, left, right)
        return Truthy(left)

    def _operand(self) -> Operand:
        tok = self._next()
        if tok.kind == "var":
            return Variable(tok.value)
        if tok.kind == "str":
            return Literal(tok.value)
        if tok.kind == "null":
            return Literal(None)
        if tok.kind == "regex":
            return Pattern(tok.value, tok.flags)
        raise ExpressionSyntaxError(f"unexpected token '{tok.value}' at position {tok.pos}")

    def _is_op(self, value: str) -> bool:
        tok = self._peek()
        return tok is not None and tok.kind == "op" and tok.value == value


@lru_cache(maxsize=512)
def compile_expression(text: str) -> Node:
    """Compila (e cacheia) uma expressão `if`."""
    if not isinstance(text, str):
        raise ExpressionSyntaxError(f"expression must be a string, got {type(text).__name__}")
    node = _Parser(tokenize(text), text).parse()
    _validate_patterns(node)
    return node


def _validate_patterns(node: Node) -> None:
    if isinstance(node, BoolOp):
        _validate_patterns(node.left)
        _validate_patterns(node.right)
        return
    operands = [node.left, node.right] if isinstance(node, Compare) else [node.operand]
    for operand in operands:
        if isinstance(operand, Pattern):
            try:
                operand.compile()
            except re.error as e:
                raise ExpressionSyntaxError(f"invalid regex /{operand.source}/: {e}") from e


# ---------------------------------------------------------------------------
# Avaliação
# ---------------------------------------------------------------------------

_REGEX_VALUE = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL)


def _value(operand: Operand, variables: Mapping[str, str]) -> Optional[str]:
    if isinstance(operand, Variable):
        value = variables.get(operand.name)
        return None if value is None else str(value)
    if isinstance(operand, Literal):
        return operand.value
    return f"/{operand.source}/{operand.flags}"


def _as_pattern(operand: Operand, variables: Mapping[str, str]) -> Optional[Pattern]:
    if isinstance(operand, Pattern):
        return operand
    raw = _value(operand, variables)
    if raw is None:
        return None
    m = _REGEX_VALUE.match(raw)
    if not m or any(f not in _REGEX_FLAGS for f in m.group(2)):
        raise ExpressionSyntaxError(f"variable value {raw!r} is not a /regex/ pattern")
    return Pattern(m.group(1), m.group(2))


def _evaluate(node: Node, variables: Mapping[str, str]) -> bool:
    if isinstance(node, BoolOp):
        if node.op == "&&":
            return _evaluate(node.left, variables) and _evaluate(node.right, variables)
        return _evaluate(node.left, variables) or _evaluate(node.right, variables)

    if isinstance(node, Truthy):
        value = _value(node.operand, variables)
        return bool(value)

    if node.op in ("==", "!="):
        equal = _value(node.left, variables) == _value(node.right, variables)
        return equal if node.op == "==" else not equal

    subject = _value(node.left, variables)
    pattern = _as_pattern(node.right, variables)
    if subject is None or pattern is None:
        matched = False
    else:
        try:
            matched = pattern.compile().search(subject) is not None
        except re.error as e:
            raise ExpressionSyntaxError(f"invalid regex /{pattern.source}/: {e}") from e
    return matched if node.op == "=~" else not matched


def evaluate_expression(text: str, variables: Mapping[str, str]) -> bool:
    """
    Avalia uma expressão `if` contra um mapa de variáveis.

    Args:
        text: expressão `if`.
        variables: variáveis visíveis (predefinidas, globais, Job, trigger).

    Returns:
        bool: resultado da expressão.

    Raises:
        ExpressionSyntaxError: se a expressão (ou um padrão vindo de variável)
            for inválida.
    """
    return _evaluate(compile_expression(text), variables)
