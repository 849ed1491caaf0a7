"""
Kaleidoscope - Recursive Descent Parser
Builds the AST from a token stream with one token of lookahead. Binary
expressions use precedence climbing over a mutable OperatorTable, so
operators declared by `binary`/`unary` prototypes are usable right away.
"""

from typing import List, Optional, Union
from .lexer import Lexer, Token, TokenType, parse_number
from .operators import (
    OperatorTable, BUILTIN_PRECEDENCE, DEFAULT_BINARY_PRECEDENCE, MAX_PRECEDENCE
)
from .ast_nodes import (
    ProgramNode, NumberNode, VariableNode, CallNode, PrototypeNode,
    FunctionNode, IfNode, ForNode, UnaryNode, BinaryNode, VarInNode, ASTNode
)

ANON_EXPR_NAME = "__anon_expr"

# Characters that can never name a user-defined operator.
_RESERVED_CHARS = {'(', ')', ',', ';'}

# Built-in binary operators cannot be redeclared; '-' stays free as a unary.
_RESERVED_BINARY_CHARS = set(BUILTIN_PRECEDENCE)
_RESERVED_UNARY_CHARS = {'='}


class ParseError(Exception):
    def __init__(self, message: str, line: int, expected: str = "", found: str = ""):
        super().__init__(f"[ParseError] Line {line}: {message}")
        self.line = line
        self.expected = expected
        self.found = found


class Parser:
    def __init__(
        self,
        source: Union[str, Lexer],
        operators: Optional[OperatorTable] = None,
        anon_count: int = 0,
    ):
        self._lexer = Lexer(source) if isinstance(source, str) else source
        self.operators = operators if operators is not None else OperatorTable()
        self.anon_count = anon_count
        self._current = self._lexer.next_token()

    # ------------------------------------------------------------------ helpers

    def _peek(self) -> Token:
        return self._current

    def _advance(self) -> Token:
        tok = self._current
        self._current = self._lexer.next_token()
        return tok

    def _match(self, ttype: TokenType) -> bool:
        return self._current.type == ttype

    def _match_char(self, char: str) -> bool:
        return self._current.type == TokenType.CHAR and self._current.value == char

    def _error(self, expected: str, context: str = "") -> ParseError:
        tok = self._current
        message = f"Expected {expected} but got {tok.describe()}"
        if context:
            message += f" {context}"
        return ParseError(message, tok.line, expected=expected, found=tok.describe())

    def _expect(self, ttype: TokenType, context: str = "") -> Token:
        if not self._match(ttype):
            raise self._error(_describe_type(ttype), context)
        return self._advance()

    def _expect_char(self, char: str, context: str = "") -> Token:
        if not self._match_char(char):
            raise self._error(repr(char), context)
        return self._advance()

    def _next_anon_name(self) -> str:
        name = ANON_EXPR_NAME if self.anon_count == 0 else f"{ANON_EXPR_NAME}.{self.anon_count}"
        self.anon_count += 1
        return name

    # ------------------------------------------------------------------ public

    def parse(self) -> ProgramNode:
        units = []
        while True:
            unit = self.parse_toplevel()
            if unit is None:
                break
            units.append(unit)
        return ProgramNode(units=units, line=1)

    def parse_toplevel(self) -> Optional[ASTNode]:
        """
        Parse one definition, extern or top-level expression.

        Returns None at end of input. Operator registrations made while the
        unit is parsed are rolled back if the unit fails.
        """
        while self._match_char(';'):
            self._advance()
        if self._match(TokenType.EOF):
            return None

        with self.operators.transaction():
            if self._match(TokenType.DEF):
                unit = self._parse_definition()
            elif self._match(TokenType.EXTERN):
                unit = self._parse_extern()
            else:
                unit = self._parse_top_expression()
            self._check_unit_end(unit)
            return unit

    def _check_unit_end(self, unit: ASTNode) -> None:
        """
        A unit ends at ';', end of input, or the first token of the next
        unit. Any other character is an operator nobody declared, and it
        fails the unit it trails instead of the one after it.
        """
        tok = self._peek()
        if tok.type != TokenType.CHAR or tok.value in (';', '('):
            return
        if self.operators.is_unary(tok.value):
            return
        if isinstance(unit, PrototypeNode):
            raise self._error("';' or a new definition", "after extern")
        raise ParseError(
            f"Unknown binary operator {tok.describe()}",
            tok.line, expected="binary operator", found=tok.describe()
        )

    # ------------------------------------------------------------------ top level

    def _parse_definition(self) -> FunctionNode:
        def_tok = self._advance()  # consume 'def'
        proto = self._parse_prototype()
        body = self._parse_expression()
        return FunctionNode(proto=proto, body=body, line=def_tok.line)

    def _parse_extern(self) -> PrototypeNode:
        self._advance()  # consume 'extern'
        return self._parse_prototype()

    def _parse_top_expression(self) -> FunctionNode:
        line = self._peek().line
        body = self._parse_expression()
        proto = PrototypeNode(name=self._next_anon_name(), params=[], line=line)
        return FunctionNode(proto=proto, body=body, line=line)

    def _parse_prototype(self) -> PrototypeNode:
        tok = self._peek()
        precedence = 0

        if tok.type == TokenType.IDENTIFIER:
            self._advance()
            name = tok.value
            operands = 0
        elif tok.type in (TokenType.UNARY, TokenType.BINARY):
            self._advance()
            op_tok = self._peek()
            if op_tok.type != TokenType.CHAR or op_tok.value in _RESERVED_CHARS:
                raise self._error("operator character", f"after '{tok.value}'")
            reserved = _RESERVED_BINARY_CHARS if tok.type == TokenType.BINARY else _RESERVED_UNARY_CHARS
            if op_tok.value in reserved:
                raise ParseError(
                    f"Built-in operator {op_tok.value!r} cannot be redefined as {tok.value}",
                    op_tok.line, expected="operator character", found=op_tok.describe()
                )
            self._advance()
            name = tok.value + op_tok.value
            operands = 1 if tok.type == TokenType.UNARY else 2

            if tok.type == TokenType.BINARY:
                precedence = DEFAULT_BINARY_PRECEDENCE
                if self._match(TokenType.NUMBER):
                    num_tok = self._advance()
                    value = num_tok.number
                    if value < 1 or value > MAX_PRECEDENCE:
                        raise ParseError(
                            f"Invalid precedence {num_tok.value}: must be 1..{MAX_PRECEDENCE}",
                            num_tok.line, expected=f"1..{MAX_PRECEDENCE}", found=num_tok.value
                        )
                    precedence = int(value)
        else:
            raise self._error("function name", "in prototype")

        self._expect_char('(', "in prototype")
        params: List[str] = []
        while self._match(TokenType.IDENTIFIER):
            params.append(self._advance().value)
        self._expect_char(')', "in prototype")

        if operands and len(params) != operands:
            raise ParseError(
                f"Invalid number of operands for operator '{name}': "
                f"expected {operands}, got {len(params)}",
                tok.line, expected=str(operands), found=str(len(params))
            )

        proto = PrototypeNode(
            name=name, params=params, is_operator=operands > 0,
            precedence=precedence, line=tok.line
        )

        # Visible to the rest of this unit, including the operator's own body.
        if proto.is_binary:
            self.operators.add_binary(proto.operator_name, proto.precedence)
        elif proto.is_unary:
            self.operators.add_unary(proto.operator_name)

        return proto

    # ------------------------------------------------------------------ expressions

    def _parse_expression(self) -> ASTNode:
        lhs = self._parse_unary()
        return self._parse_binop_rhs(0, lhs)

    def _get_precedence(self) -> int:
        tok = self._peek()
        if tok.type != TokenType.CHAR:
            return -1
        return self.operators.precedence(tok.value)

    def _parse_binop_rhs(self, min_prec: int, lhs: ASTNode) -> ASTNode:
        while True:
            tok_prec = self._get_precedence()
            if tok_prec < min_prec:
                return lhs

            op_tok = self._advance()
            rhs = self._parse_unary()

            # Only a strictly tighter operator takes rhs as its own lhs.
            if tok_prec < self._get_precedence():
                rhs = self._parse_binop_rhs(tok_prec + 1, rhs)

            lhs = BinaryNode(op=op_tok.value, left=lhs, right=rhs, line=op_tok.line)

    def _parse_unary(self) -> ASTNode:
        tok = self._peek()
        if tok.type == TokenType.CHAR and self.operators.is_unary(tok.value):
            self._advance()
            operand = self._parse_unary()
            return UnaryNode(op=tok.value, operand=operand, line=tok.line)
        return self._parse_primary()

    def _parse_primary(self) -> ASTNode:
        tok = self._peek()

        if tok.type == TokenType.NUMBER:
            self._advance()
            value = parse_number(tok.value, tok.line, strict=self._lexer.strict_numbers)
            return NumberNode(value=value, line=tok.line)

        if tok.type == TokenType.IDENTIFIER:
            return self._parse_identifier()

        if self._match_char('('):
            self._advance()
            expr = self._parse_expression()
            self._expect_char(')', "to close parenthesised expression")
            return expr

        if tok.type == TokenType.IF:
            return self._parse_if()

        if tok.type == TokenType.FOR:
            return self._parse_for()

        if tok.type == TokenType.VAR:
            return self._parse_var()

        raise self._error("expression")

    def _parse_identifier(self) -> ASTNode:
        id_tok = self._advance()

        if not self._match_char('('):
            return VariableNode(name=id_tok.value, line=id_tok.line)

        self._advance()  # consume '('
        args = []
        if not self._match_char(')'):
            while True:
                args.append(self._parse_expression())
                if self._match_char(')'):
                    break
                self._expect_char(',', "in argument list")
        self._advance()  # consume ')'
        return CallNode(callee=id_tok.value, args=args, line=id_tok.line)

    def _parse_if(self) -> IfNode:
        if_tok = self._advance()  # consume 'if'
        cond = self._parse_expression()
        self._expect(TokenType.THEN, "in if expression")
        then = self._parse_expression()
        self._expect(TokenType.ELSE, "in if expression")
        else_ = self._parse_expression()
        return IfNode(cond=cond, then=then, else_=else_, line=if_tok.line)

    def _parse_for(self) -> ForNode:
        for_tok = self._advance()  # consume 'for'
        name_tok = self._expect(TokenType.IDENTIFIER, "after 'for'")
        self._expect_char('=', "after for loop variable")
        start = self._parse_expression()
        self._expect_char(',', "after for start value")
        end = self._parse_expression()

        if self._match_char(','):
            self._advance()
            step = self._parse_expression()
        else:
            step = NumberNode(value=1.0, line=for_tok.line)

        self._expect(TokenType.IN, "after for")
        body = self._parse_expression()
        return ForNode(
            var_name=name_tok.value, start=start, end=end, step=step,
            body=body, line=for_tok.line
        )

    def _parse_var(self) -> VarInNode:
        var_tok = self._advance()  # consume 'var'
        bindings = []

        while True:
            name_tok = self._expect(TokenType.IDENTIFIER, "in var binding list")
            if self._match_char('='):
                self._advance()
                init = self._parse_expression()
            else:
                init = NumberNode(value=0.0, line=name_tok.line)
            bindings.append((name_tok.value, init))

            if not self._match_char(','):
                break
            self._advance()

        self._expect(TokenType.IN, "after var bindings")
        body = self._parse_expression()
        return VarInNode(bindings=bindings, body=body, line=var_tok.line)


def _describe_type(ttype: TokenType) -> str:
    if ttype == TokenType.IDENTIFIER:
        return "identifier"
    return f"'{ttype.name.lower()}'"
