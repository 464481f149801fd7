"""
Rule expression model.

Rules are written in a small R-flavoured expression language owned by
rulebook. This module tokenizes and parses rule text into an immutable AST,
renders it back to text, and answers static questions about it (free
variables, substitution).

Grammar (lowest to highest precedence)::

    entry       := NAME ':=' expr | expr
    expr        := or_expr (('->' | '~') or_expr)?
    or_expr     := and_expr (('|' | '||') and_expr)*
    and_expr    := not_expr (('&' | '&&') not_expr)*
    not_expr    := '!' not_expr | comparison
    comparison  := additive (CMP additive)?
    additive    := multiplicative (('+' | '-') multiplicative)*
    multiplicative := special (('*' | '/') special)*
    special     := unary (('%in%' | '%vin%') unary)*
    unary       := ('-' | '+') unary | power
    power       := postfix ('^' unary)?
    postfix     := primary ('$' NAME)*
    primary     := NUMBER | STRING | TRUE | FALSE | NA | Inf | '.' | NAME
                 | NAME '(' args ')' | '(' expr ')' | 'if' '(' expr ')' expr
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Iterable, List, Mapping, NoReturn, Optional, Tuple, Union

from rulebook.exceptions import RuleSyntaxError

# =============================================================================
# AST nodes (frozen for immutability and structural equality)
# =============================================================================


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class String:
    value: str


@dataclass(frozen=True)
class Logical:
    value: bool


@dataclass(frozen=True)
class Missing:
    """The NA literal."""


@dataclass(frozen=True)
class Name:
    id: str


@dataclass(frozen=True)
class Dot:
    """Whole-dataset reference."""


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    func: str
    args: Tuple["Node", ...] = ()
    keywords: Tuple[Tuple[str, "Node"], ...] = ()


@dataclass(frozen=True)
class Conditional:
    """``if (condition) consequent``, read as ``!condition | consequent``."""

    condition: "Node"
    consequent: "Node"


Node = Union[Number, String, Logical, Missing, Name, Dot, Unary, Binary, Call, Conditional]

COMPARISONS = ("<", "<=", "==", "!=", ">=", ">")
LOGICAL_OPERATORS = ("&", "&&", "|", "||")
MEMBERSHIP_OPERATORS = ("%in%", "%vin%")
DEPENDENCY_OPERATORS = ("->", "~")


@dataclass(frozen=True)
class Expression:
    """A parsed rule body.

    Equality is structural: two expressions are equal when their trees are,
    whatever text they were parsed from.
    """

    node: Node
    text: str = field(default="", compare=False)

    @property
    def variables(self) -> Tuple[str, ...]:
        return free_variables(self)

    def __str__(self) -> str:
        return deparse(self.node)


@dataclass(frozen=True)
class Assignment:
    """A local assignment ``name := expr`` from a declaration stream."""

    name: str
    expression: Expression


# =============================================================================
# Tokenizer
# =============================================================================


class TokenKind(Enum):
    NUMBER = auto()
    STRING = auto()
    NAME = auto()
    OP = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    pos: int


_TOKEN_PATTERNS = [
    (r"\s+", None),
    (r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?L?", TokenKind.NUMBER),
    (r"[A-Za-z_.][A-Za-z0-9_.]*", TokenKind.NAME),
    (r"%[^%\s]*%", TokenKind.OP),
    (r":=|->|==|!=|<=|>=|&&|\|\||[<>&|!+\-*/^~$=]", TokenKind.OP),
    (r"\(", TokenKind.LPAREN),
    (r"\)", TokenKind.RPAREN),
    (r",", TokenKind.COMMA),
]

_COMPILED_PATTERNS = [(re.compile(p), k) for p, k in _TOKEN_PATTERNS]

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'"}


def _read_quoted(s: str, pos: int, quote: str) -> Tuple[str, int]:
    chars: List[str] = []
    i = pos + 1
    while i < len(s):
        ch = s[i]
        if ch == "\\" and i + 1 < len(s):
            chars.append(_ESCAPES.get(s[i + 1], s[i + 1]))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    what = "name" if quote == "`" else "string literal"
    raise RuleSyntaxError(f"unterminated {what}", text=s, position=pos)


def tokenize(s: str) -> List[Token]:
    """Tokenize rule text."""
    tokens: List[Token] = []
    pos = 0
    while pos < len(s):
        ch = s[pos]
        if ch in "\"'`":
            value, end = _read_quoted(s, pos, ch)
            kind = TokenKind.NAME if ch == "`" else TokenKind.STRING
            # backquoted names never collide with keywords
            tokens.append(Token(kind, value if kind is TokenKind.STRING else "`" + value, pos))
            pos = end
            continue
        for pattern, kind in _COMPILED_PATTERNS:
            m = pattern.match(s, pos)
            if m:
                if kind is not None:
                    tokens.append(Token(kind, m.group(), pos))
                pos = m.end()
                break
        else:
            raise RuleSyntaxError(f"unexpected character {ch!r}", text=s, position=pos)
    tokens.append(Token(TokenKind.EOF, "", pos))
    return tokens


# =============================================================================
# Recursive descent parser
# =============================================================================

_KEYWORD_LITERALS = {
    "TRUE": Logical(True),
    "FALSE": Logical(False),
    "NA": Missing(),
    "Inf": Number(float("inf")),
}


class Parser:
    """Recursive descent parser for rule expressions."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self) -> Token:
        return self.tokens[min(self.pos + 1, len(self.tokens) - 1)]

    def at_op(self, *ops: str) -> bool:
        tok = self.current()
        return tok.kind is TokenKind.OP and tok.value in ops

    def advance(self) -> Token:
        tok = self.current()
        self.pos += 1
        return tok

    def expect(self, kind: TokenKind, what: str) -> Token:
        tok = self.current()
        if tok.kind is not kind:
            self.fail(f"expected {what}", tok)
        return self.advance()

    def fail(self, message: str, tok: Optional[Token] = None) -> NoReturn:
        tok = tok or self.current()
        found = "end of input" if tok.kind is TokenKind.EOF else repr(tok.value)
        raise RuleSyntaxError(f"{message}, found {found}", text=self.text, position=tok.pos)

    def parse_entry(self) -> Union[Expression, Assignment]:
        tok = self.current()
        nxt = self.peek()
        if tok.kind is TokenKind.NAME and nxt.kind is TokenKind.OP and nxt.value == ":=":
            self.pos += 2
            value = self.parse_expression_text()
            return Assignment(name=_name_id(tok.value), expression=value)
        return self.parse_expression_text()

    def parse_expression_text(self) -> Expression:
        start = self.current().pos
        node = self.parse_expr()
        if self.current().kind is not TokenKind.EOF:
            if self.current().kind is TokenKind.RPAREN:
                self.fail("unbalanced ')'")
            self.fail("unexpected token")
        return Expression(node=node, text=self.text[start:].strip())

    def parse_expr(self) -> Node:
        left = self.parse_or()
        if self.at_op(*DEPENDENCY_OPERATORS):
            op = self.advance().value
            right = self.parse_or()
            left = Binary(op, left, right)
            if self.at_op(*DEPENDENCY_OPERATORS):
                self.fail("dependency arrows cannot be chained")
        return left

    def parse_or(self) -> Node:
        left = self.parse_and()
        while self.at_op("|", "||"):
            op = self.advance().value
            left = Binary(op, left, self.parse_and())
        return left

    def parse_and(self) -> Node:
        left = self.parse_not()
        while self.at_op("&", "&&"):
            op = self.advance().value
            left = Binary(op, left, self.parse_not())
        return left

    def parse_not(self) -> Node:
        if self.at_op("!"):
            self.advance()
            return Unary("!", self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> Node:
        left = self.parse_additive()
        if self.at_op(*COMPARISONS):
            op = self.advance().value
            left = Binary(op, left, self.parse_additive())
            if self.at_op(*COMPARISONS):
                self.fail("comparisons cannot be chained")
        return left

    def parse_additive(self) -> Node:
        left = self.parse_multiplicative()
        while self.at_op("+", "-"):
            op = self.advance().value
            left = Binary(op, left, self.parse_multiplicative())
        return left

    def parse_multiplicative(self) -> Node:
        left = self.parse_special()
        while self.at_op("*", "/"):
            op = self.advance().value
            left = Binary(op, left, self.parse_special())
        return left

    def parse_special(self) -> Node:
        left = self.parse_unary()
        while self.current().kind is TokenKind.OP and self.current().value.startswith("%"):
            tok = self.advance()
            if tok.value not in MEMBERSHIP_OPERATORS:
                self.fail(f"unknown operator {tok.value}", tok)
            left = Binary(tok.value, left, self.parse_unary())
        return left

    def parse_unary(self) -> Node:
        if self.at_op("-", "+"):
            op = self.advance().value
            return Unary(op, self.parse_unary())
        return self.parse_power()

    def parse_power(self) -> Node:
        base = self.parse_postfix()
        if self.at_op("^"):
            self.advance()
            return Binary("^", base, self.parse_unary())
        return base

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while self.at_op("$"):
            self.advance()
            tok = self.expect(TokenKind.NAME, "a name after '$'")
            node = Binary("$", node, Name(_name_id(tok.value)))
        return node

    def parse_primary(self) -> Node:
        tok = self.current()
        if tok.kind is TokenKind.NUMBER:
            self.advance()
            return Number(_number(tok.value))
        if tok.kind is TokenKind.STRING:
            self.advance()
            return String(tok.value)
        if tok.kind is TokenKind.LPAREN:
            self.advance()
            node = self.parse_expr()
            if self.current().kind is not TokenKind.RPAREN:
                self.fail("unbalanced '(': expected ')'")
            self.advance()
            return node
        if tok.kind is TokenKind.NAME:
            self.advance()
            raw = tok.value
            if raw == "if":
                return self.parse_conditional()
            if raw in _KEYWORD_LITERALS:
                return _KEYWORD_LITERALS[raw]
            if raw == ".":
                return Dot()
            if self.current().kind is TokenKind.LPAREN:
                return self.parse_call(_name_id(raw))
            return Name(_name_id(raw))
        if tok.kind is TokenKind.OP:
            self.fail(f"unexpected operator {tok.value}")
        self.fail("expected an expression")

    def parse_conditional(self) -> Node:
        if self.current().kind is not TokenKind.LPAREN:
            self.fail("expected '(' after 'if'")
        self.advance()
        condition = self.parse_expr()
        if self.current().kind is not TokenKind.RPAREN:
            self.fail("unbalanced '(': expected ')'")
        self.advance()
        return Conditional(condition, self.parse_expr())

    def parse_call(self, func: str) -> Node:
        self.advance()  # '('
        args: List[Node] = []
        keywords: List[Tuple[str, Node]] = []
        if self.current().kind is not TokenKind.RPAREN:
            while True:
                tok = self.current()
                nxt = self.peek()
                if tok.kind is TokenKind.NAME and nxt.kind is TokenKind.OP and nxt.value == "=":
                    self.pos += 2
                    keywords.append((_name_id(tok.value), self.parse_expr()))
                else:
                    if keywords:
                        self.fail("positional argument after keyword argument")
                    args.append(self.parse_expr())
                if self.current().kind is TokenKind.COMMA:
                    self.advance()
                    continue
                break
        if self.current().kind is not TokenKind.RPAREN:
            self.fail(f"unbalanced '(' in call to {func}(): expected ')'")
        self.advance()
        return Call(func, tuple(args), tuple(keywords))


def _name_id(raw: str) -> str:
    return raw[1:] if raw.startswith("`") else raw


def _number(raw: str) -> float:
    if raw.endswith("L"):
        return int(float(raw[:-1]))
    if re.fullmatch(r"\d+", raw):
        return int(raw)
    return float(raw)


def parse(text: str) -> Expression:
    """Parse a rule expression. Raises RuleSyntaxError on malformed input."""
    parser = Parser(text)
    if parser.current().kind is TokenKind.EOF:
        raise RuleSyntaxError("empty expression", text=text, position=0)
    return parser.parse_expression_text()


def parse_entry(text: str) -> Union[Expression, Assignment]:
    """Parse one declaration: either ``name := expr`` or an expression."""
    parser = Parser(text)
    if parser.current().kind is TokenKind.EOF:
        raise RuleSyntaxError("empty declaration", text=text, position=0)
    return parser.parse_entry()


# =============================================================================
# Static analysis
# =============================================================================


def children(node: Node) -> Tuple[Node, ...]:
    if isinstance(node, Unary):
        return (node.operand,)
    if isinstance(node, Binary):
        if node.op == "$":
            return (node.left,)
        return (node.left, node.right)
    if isinstance(node, Call):
        return node.args + tuple(value for _, value in node.keywords)
    if isinstance(node, Conditional):
        return (node.condition, node.consequent)
    return ()


def walk(node: Node) -> Iterable[Node]:
    """Pre-order, left-to-right traversal."""
    yield node
    for child in children(node):
        yield from walk(child)


def free_variables(expression: Union[Expression, Node], bound: Iterable[str] = ()) -> Tuple[str, ...]:
    """Names referenced by an expression, in order of first occurrence.

    The whole-dataset reference, function names, keyword names, the member
    side of ``$`` and every name in ``bound`` are excluded.
    """
    node = expression.node if isinstance(expression, Expression) else expression
    excluded = set(bound)
    seen: dict[str, None] = {}
    for item in walk(node):
        if isinstance(item, Name) and item.id not in excluded:
            seen.setdefault(item.id, None)
    return tuple(seen)


def function_names(node: Node) -> Tuple[str, ...]:
    seen: dict[str, None] = {}
    for item in walk(node):
        if isinstance(item, Call):
            seen.setdefault(item.func, None)
    return tuple(seen)


def rewrite(node: Node, fn: Callable[[Node], Node]) -> Node:
    """Rebuild ``node`` bottom-up, applying ``fn`` to every rebuilt node."""
    if isinstance(node, Unary):
        node = Unary(node.op, rewrite(node.operand, fn))
    elif isinstance(node, Binary):
        right = node.right if node.op == "$" else rewrite(node.right, fn)
        node = Binary(node.op, rewrite(node.left, fn), right)
    elif isinstance(node, Call):
        node = Call(
            node.func,
            tuple(rewrite(arg, fn) for arg in node.args),
            tuple((key, rewrite(value, fn)) for key, value in node.keywords),
        )
    elif isinstance(node, Conditional):
        node = Conditional(rewrite(node.condition, fn), rewrite(node.consequent, fn))
    return fn(node)


def substitute(node: Node, mapping: Mapping[str, Node]) -> Node:
    """Replace every free ``Name`` found in ``mapping`` by its node."""
    if not mapping:
        return node
    return rewrite(node, lambda n: mapping.get(n.id, n) if isinstance(n, Name) else n)


# =============================================================================
# Deparsing
# =============================================================================

_PRECEDENCE = {
    "->": 1,
    "~": 1,
    "|": 2,
    "||": 2,
    "&": 3,
    "&&": 3,
    "!": 4,
    **{op: 5 for op in COMPARISONS},
    "+": 6,
    "-": 6,
    "*": 7,
    "/": 7,
    "%in%": 8,
    "%vin%": 8,
    "unary": 9,
    "^": 10,
    "$": 11,
}
_ATOM = 12
_NAME_RE = re.compile(r"[A-Za-z.][A-Za-z0-9_.]*")


def _precedence(node: Node) -> int:
    if isinstance(node, Binary):
        return _PRECEDENCE[node.op]
    if isinstance(node, Unary):
        return _PRECEDENCE["!"] if node.op == "!" else _PRECEDENCE["unary"]
    if isinstance(node, Conditional):
        return 0
    return _ATOM


def _wrap(node: Node, minimum: int) -> str:
    text = deparse(node)
    return f"({text})" if _precedence(node) < minimum else text


def _format_name(name: str) -> str:
    if _NAME_RE.fullmatch(name) and name not in _KEYWORD_LITERALS and name != "if":
        return name
    return f"`{name}`"


def _format_number(value: float) -> str:
    return "Inf" if value == float("inf") else repr(value)


def deparse(node: Node) -> str:
    """Render a node as rule text with minimal parentheses."""
    if isinstance(node, Number):
        return _format_number(node.value)
    if isinstance(node, String):
        escaped = node.value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(node, Logical):
        return "TRUE" if node.value else "FALSE"
    if isinstance(node, Missing):
        return "NA"
    if isinstance(node, Name):
        return _format_name(node.id)
    if isinstance(node, Dot):
        return "."
    if isinstance(node, Unary):
        prec = _precedence(node)
        return f"{node.op}{_wrap(node.operand, prec)}"
    if isinstance(node, Binary):
        prec = _PRECEDENCE[node.op]
        if node.op == "$":
            return f"{_wrap(node.left, prec)}${_format_name(node.right.id)}"
        if node.op == "^":
            # right-associative
            return f"{_wrap(node.left, prec + 1)}^{_wrap(node.right, _PRECEDENCE['unary'])}"
        # comparisons and dependency arrows do not chain
        left_min = prec + 1 if node.op in COMPARISONS + DEPENDENCY_OPERATORS else prec
        return f"{_wrap(node.left, left_min)} {node.op} {_wrap(node.right, prec + 1)}"
    if isinstance(node, Call):
        parts = [deparse(arg) for arg in node.args]
        parts += [f"{_format_name(key)} = {deparse(value)}" for key, value in node.keywords]
        return f"{_format_name(node.func)}({', '.join(parts)})"
    if isinstance(node, Conditional):
        return f"if ({deparse(node.condition)}) {deparse(node.consequent)}"
    raise TypeError(f"not an expression node: {node!r}")
