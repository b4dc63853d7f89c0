from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .xq_ast import (
    ArrayLiteral,
    AsBinding,
    BinaryOp,
    Break,
    Field,
    Foreach,
    FunctionCall,
    FunctionDef,
    Identity,
    IfElse,
    Index,
    IndexAll,
    JQNode,
    Label,
    Literal,
    ObjectLiteral,
    OptionalMarker,
    Pipe,
    Reduce,
    Sequence,
    Slice,
    TryCatch,
    UnaryOp,
    VarRef,
)
from .xq_value import is_number, normalize_number

# Order matters: multi-char operators first
_TOKEN_REGEX = re.compile(
    r"""
    (?P<WS>\s+)
  | (?P<COMMENT>\#[^\n]*)
  | (?P<COALESCE_ASSIGN>//=)
  | (?P<COALESCE>//)
  | (?P<EQEQ>==)
  | (?P<NEQ>!=)
  | (?P<GTE>>=)
  | (?P<LTE><=)
  | (?P<PIPE_ASSIGN>\|=)
  | (?P<PIPE>\|)
  | (?P<DOTDOT>\.\.)
  | (?P<FIELD>\.[A-Za-z_][A-Za-z0-9_]*)
  | (?P<DOT>\.)
  | (?P<LBRACKET>\[)
  | (?P<RBRACKET>\])
  | (?P<LPAREN>\()
  | (?P<RPAREN>\))
  | (?P<COMMA>,)
  | (?P<VAR>\$[A-Za-z_][A-Za-z0-9_]*)
  | (?P<PLUS_ASSIGN>\+=)
  | (?P<PLUS>\+)
  | (?P<MINUS_ASSIGN>-=)
  | (?P<MINUS>-)
  | (?P<STAR_ASSIGN>\*=)
  | (?P<STAR>\*)
  | (?P<SLASH_ASSIGN>/=)
  | (?P<SLASH>/)
  | (?P<PERCENT_ASSIGN>%=)
  | (?P<PERCENT>%)
  | (?P<ASSIGN>=)
  | (?P<GT>>)
  | (?P<LT><)
  | (?P<QUESTION>\?)
  | (?P<NUMBER>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?)
  | (?P<STRING>"(?:\\.|[^"\\])*")
  | (?P<IDENT>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<LBRACE>\{)
  | (?P<RBRACE>\})
  | (?P<COLON>:)
  | (?P<SEMICOLON>;)
    """,
    re.VERBOSE,
)

_LITERALS = {"true": True, "false": False, "null": None}

_KEYWORDS = {
    "def",
    "if",
    "then",
    "elif",
    "else",
    "end",
    "as",
    "reduce",
    "foreach",
    "try",
    "catch",
    "label",
    "and",
    "or",
    "import",
    "include",
}

_ASSIGNMENTS = {
    "ASSIGN",
    "PIPE_ASSIGN",
    "PLUS_ASSIGN",
    "MINUS_ASSIGN",
    "STAR_ASSIGN",
    "SLASH_ASSIGN",
    "PERCENT_ASSIGN",
    "COALESCE_ASSIGN",
}

# A backslash-paren preceded by an even run of backslashes
_INTERPOLATION = re.compile(r"(?<!\\)(?:\\\\)*\\\(")

_COMPARISONS = {"EQEQ": "==", "NEQ": "!=", "GT": ">", "GTE": ">=", "LT": "<", "LTE": "<="}
_ADDITIVE = {"PLUS": "+", "MINUS": "-"}
_MULTIPLICATIVE = {"STAR": "*", "SLASH": "/", "PERCENT": "%"}


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    position: int


class XQSyntaxError(ValueError):
    pass


@dataclass(frozen=True)
class FunctionDefinition:
    name: str
    params: Tuple[str, ...]
    body: JQNode


def _tokenize(source: str) -> List[Token]:
    pos = 0
    tokens: List[Token] = []
    length = len(source)
    while pos < length:
        match = _TOKEN_REGEX.match(source, pos)
        if not match:
            raise XQSyntaxError(f"Unexpected character at position {pos}: {source[pos]!r}")
        kind = match.lastgroup
        text = match.group()
        pos = match.end()
        if kind in ("WS", "COMMENT"):
            continue
        tokens.append(Token(kind, text, match.start()))
    tokens.append(Token("EOF", "", pos))
    return tokens


class XQParser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.index = 0

    @classmethod
    def parse(cls, source: str) -> JQNode:
        parser = cls(_tokenize(source))
        if parser._current().type == "EOF":
            return Identity()
        expr = parser._parse_pipe()
        parser._expect("EOF")
        return expr

    @classmethod
    def parse_definitions(cls, source: str) -> List[FunctionDefinition]:
        parser = cls(_tokenize(source))
        definitions = []
        while parser._current_is_keyword("def"):
            definitions.append(parser._parse_definition())
        parser._expect("EOF")
        return definitions

    # Parsing helpers -------------------------------------------------
    def _current(self) -> Token:
        return self.tokens[self.index]

    def _peek(self, offset: int = 1) -> Token:
        idx = self.index + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[idx]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _match(self, *types: str) -> Optional[Token]:
        if self._current().type in types:
            return self._advance()
        return None

    def _expect(self, type_: str) -> Token:
        token = self._current()
        if token.type != type_:
            raise XQSyntaxError(f"Expected {type_} at position {token.position}, got {token.type}")
        return self._advance()

    def _expect_keyword(self, keyword: str) -> Token:
        token = self._current()
        if token.type != "IDENT" or token.value != keyword:
            raise XQSyntaxError(
                f"Expected keyword '{keyword}' at position {token.position}, got {token.value!r}"
            )
        return self._advance()

    def _current_is_keyword(self, keyword: str) -> bool:
        token = self._current()
        return token.type == "IDENT" and token.value == keyword

    # Grammar ---------------------------------------------------------
    # Precedence (low -> high): '|', ',', '//', 'or', 'and', comparisons,
    # '+' '-', '*' '/' '%', unary minus, postfix.
    def _parse_pipe(self) -> JQNode:
        if self._current_is_keyword("def"):
            definition = self._parse_definition()
            rest = self._parse_pipe()
            return FunctionDef(definition.name, definition.params, definition.body, rest)
        if self._current_is_keyword("label"):
            self._advance()
            name = self._expect("VAR").value[1:]
            self._expect("PIPE")
            return Label(name, self._parse_pipe())

        first: Optional[JQNode] = None
        if self._current().type != "MINUS":
            first = self._parse_postfix()
            if self._current_is_keyword("as"):
                self._advance()
                name = self._expect("VAR").value[1:]
                self._expect("PIPE")
                return AsBinding(first, name, self._parse_pipe())

        node = self._parse_comma(first)
        if self._match("PIPE"):
            return Pipe(node, self._parse_pipe())
        return node

    def _parse_comma(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_alternative(first)
        expressions = [node]
        while self._match("COMMA"):
            expressions.append(self._parse_alternative())
        if len(expressions) == 1:
            return node
        return Sequence(tuple(expressions))

    def _parse_alternative(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_or(first)
        token = self._current()
        if token.type in _ASSIGNMENTS:
            raise XQSyntaxError(
                f"Assignment operator {token.value!r} at position {token.position} is not supported"
            )
        if self._match("COALESCE"):
            # right-associative
            return BinaryOp("//", node, self._parse_alternative())
        return node

    def _parse_or(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_and(first)
        while self._current_is_keyword("or"):
            self._advance()
            node = BinaryOp("or", node, self._parse_and())
        return node

    def _parse_and(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_comparison(first)
        while self._current_is_keyword("and"):
            self._advance()
            node = BinaryOp("and", node, self._parse_comparison())
        return node

    def _parse_comparison(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_additive(first)
        if self._current().type in _COMPARISONS:
            op = _COMPARISONS[self._advance().type]
            node = BinaryOp(op, node, self._parse_additive())
            token = self._current()
            if token.type in _COMPARISONS:
                raise XQSyntaxError(
                    f"Comparison operators are non-associative (position {token.position})"
                )
        return node

    def _parse_additive(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_multiplicative(first)
        while self._current().type in _ADDITIVE:
            op = _ADDITIVE[self._advance().type]
            node = BinaryOp(op, node, self._parse_multiplicative())
        return node

    def _parse_multiplicative(self, first: Optional[JQNode] = None) -> JQNode:
        node = self._parse_unary(first)
        while self._current().type in _MULTIPLICATIVE:
            op = _MULTIPLICATIVE[self._advance().type]
            node = BinaryOp(op, node, self._parse_unary())
        return node

    def _parse_unary(self, first: Optional[JQNode] = None) -> JQNode:
        if first is not None:
            return first
        if self._match("MINUS"):
            operand = self._parse_unary()
            if isinstance(operand, Literal) and is_number(operand.value):
                return Literal(-operand.value)
            return UnaryOp("-", operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> JQNode:
        node = self._parse_primary()
        while True:
            token = self._current()
            if token.type == "FIELD":
                self._advance()
                node = Field(token.value[1:], node)
                continue
            if token.type == "DOT" and self._peek().type == "STRING":
                self._advance()
                node = Field(self._parse_string(self._advance()), node)
                continue
            if token.type == "DOT" and self._peek().type == "LBRACKET":
                self._advance()
                continue
            if token.type == "LBRACKET":
                node = self._parse_bracket_suffix(node)
                continue
            if token.type == "QUESTION":
                self._advance()
                node = OptionalMarker(node)
                continue
            break
        return node

    def _parse_bracket_suffix(self, node: JQNode) -> JQNode:
        self._expect("LBRACKET")
        # Empty [] means IndexAll
        if self._match("RBRACKET"):
            return IndexAll(node)
        # Slice form with leading ':' => [:end]
        if self._match("COLON"):
            end_expr = self._parse_pipe()
            self._expect("RBRACKET")
            return Slice(node, None, end_expr)
        first_expr = self._parse_pipe()
        if self._match("RBRACKET"):
            return Index(node, first_expr)
        # Otherwise must be a slice: expr : expr? ]
        self._expect("COLON")
        end_expr = None
        if self._current().type != "RBRACKET":
            end_expr = self._parse_pipe()
        self._expect("RBRACKET")
        return Slice(node, first_expr, end_expr)

    def _parse_primary(self) -> JQNode:
        token = self._current()
        if token.type == "DOT":
            self._advance()
            if self._current().type == "STRING":
                return Field(self._parse_string(self._advance()), Identity())
            return Identity()
        if token.type == "DOTDOT":
            self._advance()
            return FunctionCall("recurse", ())
        if token.type == "FIELD":
            self._advance()
            return Field(token.value[1:], Identity())
        if token.type == "VAR":
            self._advance()
            return VarRef(token.value[1:])
        if token.type in {"NUMBER", "STRING"}:
            return Literal(self._parse_literal_value(self._advance()))
        if token.type == "LPAREN":
            self._advance()
            expr = self._parse_pipe()
            self._expect("RPAREN")
            return expr
        if token.type == "LBRACKET":
            self._advance()
            if self._match("RBRACKET"):
                return ArrayLiteral(None)
            body = self._parse_pipe()
            self._expect("RBRACKET")
            return ArrayLiteral(body)
        if token.type == "LBRACE":
            return self._parse_object_literal()
        if token.type == "IDENT":
            if token.value in _LITERALS:
                self._advance()
                return Literal(_LITERALS[token.value])
            if token.value == "if":
                return self._parse_if()
            if token.value == "try":
                return self._parse_try()
            if token.value == "reduce":
                return self._parse_reduce()
            if token.value == "foreach":
                return self._parse_foreach()
            if token.value == "break":
                self._advance()
                return Break(self._expect("VAR").value[1:])
            if token.value in _KEYWORDS:
                raise XQSyntaxError(f"Unexpected keyword '{token.value}' at position {token.position}")
            return self._parse_call()
        raise XQSyntaxError(f"Unexpected token {token.type} at position {token.position}")

    def _parse_call(self) -> JQNode:
        name = self._expect("IDENT").value
        args: List[JQNode] = []
        if self._match("LPAREN"):
            while True:
                args.append(self._parse_pipe())
                if not self._match("SEMICOLON"):
                    break
            self._expect("RPAREN")
        return FunctionCall(name, tuple(args))

    def _parse_definition(self) -> FunctionDefinition:
        self._expect_keyword("def")
        name_token = self._expect("IDENT")
        if name_token.value in _KEYWORDS or name_token.value in _LITERALS:
            raise XQSyntaxError(f"Cannot define a function named '{name_token.value}'")
        params: List[str] = []
        if self._match("LPAREN"):
            while True:
                param = self._match("VAR", "IDENT")
                if param is None:
                    token = self._current()
                    raise XQSyntaxError(f"Expected parameter at position {token.position}")
                params.append(param.value)
                if not self._match("SEMICOLON"):
                    break
            self._expect("RPAREN")
        self._expect("COLON")
        body = self._parse_pipe()
        self._expect("SEMICOLON")
        return FunctionDefinition(name_token.value, tuple(params), body)

    def _parse_if(self) -> JQNode:
        self._expect_keyword("if")
        return self._parse_if_chain()

    def _parse_if_chain(self) -> JQNode:
        condition = self._parse_pipe()
        self._expect_keyword("then")
        then_branch = self._parse_pipe()
        else_branch: Optional[JQNode] = None
        if self._current_is_keyword("elif"):
            self._advance()
            else_branch = self._parse_if_chain()
            return IfElse(condition, then_branch, else_branch)
        if self._current_is_keyword("else"):
            self._advance()
            else_branch = self._parse_pipe()
        self._expect_keyword("end")
        return IfElse(condition, then_branch, else_branch)

    def _parse_try(self) -> JQNode:
        self._expect_keyword("try")
        expr = self._parse_postfix()
        catch_expr = None
        if self._current_is_keyword("catch"):
            self._advance()
            catch_expr = self._parse_postfix()
        return TryCatch(expr, catch_expr)

    def _parse_reduce(self) -> JQNode:
        self._expect_keyword("reduce")
        source = self._parse_postfix()
        self._expect_keyword("as")
        var_tok = self._expect("VAR")
        self._expect("LPAREN")
        init_expr = self._parse_pipe()
        self._expect("SEMICOLON")
        update_expr = self._parse_pipe()
        self._expect("RPAREN")
        return Reduce(source, var_tok.value[1:], init_expr, update_expr)

    def _parse_foreach(self) -> JQNode:
        self._expect_keyword("foreach")
        source = self._parse_postfix()
        self._expect_keyword("as")
        var_tok = self._expect("VAR")
        self._expect("LPAREN")
        init_expr = self._parse_pipe()
        self._expect("SEMICOLON")
        update_expr = self._parse_pipe()
        extract_expr = None
        if self._match("SEMICOLON"):
            extract_expr = self._parse_pipe()
        self._expect("RPAREN")
        return Foreach(source, var_tok.value[1:], init_expr, update_expr, extract_expr)

    def _parse_object_literal(self) -> JQNode:
        entries = []
        self._expect("LBRACE")
        if self._current().type != "RBRACE":
            while True:
                entries.append(self._parse_object_entry())
                if not self._match("COMMA"):
                    break
        self._expect("RBRACE")
        return ObjectLiteral(tuple(entries))

    def _parse_object_entry(self) -> Tuple[JQNode, JQNode]:
        token = self._current()
        if token.type == "VAR":
            self._advance()
            name = token.value[1:]
            return Literal(name), VarRef(name)
        if token.type == "LPAREN":
            self._advance()
            key_expr = self._parse_pipe()
            self._expect("RPAREN")
            self._expect("COLON")
            return key_expr, self._parse_object_value()
        if token.type == "IDENT":
            key = self._advance().value
        elif token.type == "STRING":
            key = self._parse_string(self._advance())
        else:
            raise XQSyntaxError(f"Invalid object key at position {token.position}")
        if self._match("COLON"):
            return Literal(key), self._parse_object_value()
        # {a} is shorthand for {a: .a}
        return Literal(key), Field(key, Identity())

    def _parse_object_value(self) -> JQNode:
        node = self._parse_alternative()
        while self._match("PIPE"):
            node = Pipe(node, self._parse_alternative())
        return node

    def _parse_string(self, token: Token) -> str:
        if _INTERPOLATION.search(token.value):
            raise XQSyntaxError(f"String interpolation at position {token.position} is not supported")
        try:
            return json.loads(token.value)
        except json.JSONDecodeError as exc:
            raise XQSyntaxError(f"Invalid string literal {token.value!r}") from exc

    def _parse_literal_value(self, token: Token):
        if token.type == "STRING":
            return self._parse_string(token)
        if token.type == "NUMBER":
            if token.value.isdigit():
                return int(token.value)
            return normalize_number(float(token.value))
        raise XQSyntaxError(f"Unsupported literal token {token.value!r}")


def parse_jq_program(source: str) -> JQNode:
    """Parse a jq expression into an AST."""
    return XQParser.parse(source)


def parse_definitions(source: str) -> List[FunctionDefinition]:
    """Parse a sequence of ``def`` statements, such as the builtin prelude."""
    return XQParser.parse_definitions(source)


__all__ = ["parse_jq_program", "parse_definitions", "FunctionDefinition", "XQParser", "XQSyntaxError"]
