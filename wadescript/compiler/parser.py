"""WadeScript Parser: recursive descent with precedence climbing.

Grammar notes:
  - Blocks are brace-delimited; statements end at a newline, ';' or '}'.
  - A statement starting with ``IDENT :`` is a variable declaration. The
    parser consumes the identifier, looks for the colon and rewinds to its
    saved mark when there is none (the only backtracking in the grammar).
  - Expression precedence, lowest to highest: assignment, or, and, equality,
    comparison, term, factor, unary, power (right-assoc), postfix, primary.
  - f-string interpolations are parsed by a fresh Lexer/Parser pair.
"""

from __future__ import annotations

from typing import Optional

from wadescript.compiler.lexer import Lexer, Token, TokenType
from wadescript.compiler.ast_nodes import (
    Program, Statement, Parameter,
    VarDecl, FunctionDef, ClassDef, IfStmt, WhileStmt, ForStmt, ReturnStmt,
    BreakStmt, ContinueStmt, AssertStmt, ExprStmt, PassStmt, ImportStmt,
    TryStmt, ExceptClause, RaiseStmt,
    Expr, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral, NoneLiteral,
    Identifier, BinaryOp, UnaryOp, Call, MemberAccess, Index, Assignment,
    IndexAssignment, MethodCall, ListLiteral, DictLiteral, FString,
)
from wadescript.compiler.types import (
    WadeType, ArrayType, ListType, DictType, CustomType, OptionalType,
    INT, FLOAT, BOOL, STR, VOID,
)
from wadescript.errors import SourceLocation, parse_error, CompileError


_PRIMITIVE_TYPE_TOKENS: dict[TokenType, WadeType] = {
    TokenType.INT_TYPE: INT,
    TokenType.FLOAT_TYPE: FLOAT,
    TokenType.BOOL_TYPE: BOOL,
    TokenType.STR_TYPE: STR,
    TokenType.VOID_TYPE: VOID,
}

_COMPOUND_ASSIGN_OPS: dict[TokenType, str] = {
    TokenType.PLUS_ASSIGN: "+",
    TokenType.MINUS_ASSIGN: "-",
    TokenType.STAR_ASSIGN: "*",
    TokenType.SLASH_ASSIGN: "/",
}

_STATEMENT_END = (TokenType.NEWLINE, TokenType.SEMICOLON)


class Parser:
    """Recursive-descent parser for WadeScript."""

    def __init__(self, tokens: list[Token], filename: str = "<stdin>"):
        self.tokens = tokens
        self.pos = 0
        self.filename = filename

    def _current(self) -> Token:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return self.tokens[-1]  # EOF

    def _peek(self) -> TokenType:
        return self._current().type

    def _peek_value(self) -> str:
        return self._current().value

    def _loc(self) -> SourceLocation:
        return self._current().location

    def _advance(self) -> Token:
        tok = self._current()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def _mark(self) -> int:
        return self.pos

    def _reset(self, mark: int) -> None:
        self.pos = mark

    def _error(self, expected: str) -> CompileError:
        tok = self._current()
        return CompileError(parse_error(
            f"Expected {expected}, got {tok.type.name} ('{tok.value}')",
            tok.location,
            found=tok.type.name,
        ))

    def _expect(self, tt: TokenType, expected: Optional[str] = None) -> Token:
        if self._peek() != tt:
            raise self._error(expected or tt.name)
        return self._advance()

    def _match(self, *types: TokenType) -> Optional[Token]:
        if self._peek() in types:
            return self._advance()
        return None

    def _skip_newlines(self) -> None:
        while self._peek() in _STATEMENT_END:
            self._advance()

    def _skip_line_breaks(self) -> None:
        while self._peek() == TokenType.NEWLINE:
            self._advance()

    def _end_statement(self) -> None:
        if self._peek() in _STATEMENT_END:
            self._advance()
        elif self._peek() not in (TokenType.RBRACE, TokenType.EOF):
            raise self._error("end of statement")

    # -------------------------------------------------------------------
    # Top-level
    # -------------------------------------------------------------------

    def parse(self) -> Program:
        statements: list[Statement] = []
        self._skip_newlines()
        while self._peek() != TokenType.EOF:
            statements.append(self._parse_statement())
            self._skip_newlines()
        return Program(statements=statements, filename=self.filename)

    def _parse_block(self) -> list[Statement]:
        self._expect(TokenType.LBRACE, "'{'")
        body: list[Statement] = []
        self._skip_newlines()
        while self._peek() != TokenType.RBRACE:
            if self._peek() == TokenType.EOF:
                raise self._error("'}'")
            body.append(self._parse_statement())
            self._skip_newlines()
        self._expect(TokenType.RBRACE, "'}'")
        return body

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _parse_statement(self) -> Statement:
        tt = self._peek()
        if tt == TokenType.DEF:
            return self._parse_function_def()
        if tt == TokenType.CLASS:
            return self._parse_class_def()
        if tt == TokenType.IF:
            return self._parse_if()
        if tt == TokenType.WHILE:
            return self._parse_while()
        if tt == TokenType.FOR:
            return self._parse_for()
        if tt == TokenType.TRY:
            return self._parse_try()

        if tt == TokenType.RETURN:
            stmt = self._parse_return()
        elif tt == TokenType.BREAK:
            stmt = BreakStmt(location=self._advance().location)
        elif tt == TokenType.CONTINUE:
            stmt = ContinueStmt(location=self._advance().location)
        elif tt == TokenType.PASS:
            stmt = PassStmt(location=self._advance().location)
        elif tt == TokenType.ASSERT:
            stmt = self._parse_assert()
        elif tt == TokenType.RAISE:
            stmt = self._parse_raise()
        elif tt == TokenType.IMPORT:
            stmt = self._parse_import()
        elif tt == TokenType.IDENT:
            stmt = self._parse_identifier_statement()
        else:
            loc = self._loc()
            stmt = ExprStmt(expr=self._parse_expression(), location=loc)
        self._end_statement()
        return stmt

    def _parse_identifier_statement(self) -> Statement:
        """Variable declaration, ``x++``/``x--``, or an expression statement."""
        mark = self._mark()
        name_tok = self._advance()
        loc = name_tok.location

        if self._match(TokenType.COLON):
            var_type = self._parse_type()
            value = None
            if self._match(TokenType.ASSIGN):
                value = self._parse_expression()
            return VarDecl(name=name_tok.value, type=var_type, value=value, location=loc)

        step = self._match(TokenType.PLUS_PLUS, TokenType.MINUS_MINUS)
        if step:
            op = "+" if step.type == TokenType.PLUS_PLUS else "-"
            target = Identifier(name=name_tok.value, location=loc)
            update = BinaryOp(op=op, left=Identifier(name=name_tok.value, location=loc),
                              right=IntLiteral(value=1, location=loc), location=loc)
            return ExprStmt(expr=Assignment(target=target, value=update, location=loc), location=loc)

        self._reset(mark)
        return ExprStmt(expr=self._parse_expression(), location=loc)

    def _parse_function_def(self, class_name: Optional[str] = None) -> FunctionDef:
        loc = self._loc()
        self._expect(TokenType.DEF)
        name = self._expect(TokenType.IDENT, "function name").value
        self._expect(TokenType.LPAREN, "'('")
        params: list[Parameter] = []
        self._skip_line_breaks()
        while self._peek() != TokenType.RPAREN:
            params.append(self._parse_parameter(class_name, first=not params))
            self._skip_line_breaks()
            if not self._match(TokenType.COMMA):
                break
            self._skip_line_breaks()
        self._expect(TokenType.RPAREN, "')'")
        return_type: WadeType = VOID
        if self._match(TokenType.ARROW):
            return_type = self._parse_type()
        body = self._parse_block()
        return FunctionDef(name=name, params=params, return_type=return_type, body=body, location=loc)

    def _parse_parameter(self, class_name: Optional[str], first: bool) -> Parameter:
        name = self._expect(TokenType.IDENT, "parameter name").value
        if class_name and first and name == "self" and self._peek() != TokenType.COLON:
            return Parameter(name=name, type=CustomType(class_name))
        self._expect(TokenType.COLON, "':' after parameter name")
        return Parameter(name=name, type=self._parse_type())

    def _parse_class_def(self) -> ClassDef:
        loc = self._loc()
        self._expect(TokenType.CLASS)
        name = self._expect(TokenType.IDENT, "class name").value
        base = None
        if self._match(TokenType.LPAREN):
            base = self._expect(TokenType.IDENT, "base class name").value
            self._expect(TokenType.RPAREN, "')'")
        self._expect(TokenType.LBRACE, "'{'")

        cls = ClassDef(name=name, base=base, location=loc)
        self._skip_newlines()
        while self._peek() != TokenType.RBRACE:
            if self._peek() == TokenType.DEF:
                cls.methods.append(self._parse_function_def(class_name=name))
            elif self._peek() == TokenType.IDENT:
                if cls.methods:
                    raise CompileError(parse_error(
                        f"Field '{self._peek_value()}' declared after methods in class '{name}'; "
                        "fields must come before methods",
                        self._loc(),
                    ))
                field_name = self._advance().value
                self._expect(TokenType.COLON, "':' after field name")
                cls.fields.append(Parameter(name=field_name, type=self._parse_type()))
                self._end_statement()
            else:
                raise self._error("field declaration or 'def' in class body")
            self._skip_newlines()
        self._expect(TokenType.RBRACE, "'}'")
        return cls

    def _parse_if(self) -> IfStmt:
        loc = self._loc()
        self._expect(TokenType.IF)
        condition = self._parse_expression()
        then_body = self._parse_block()
        stmt = IfStmt(condition=condition, then_body=then_body, location=loc)

        while True:
            mark = self._mark()
            self._skip_line_breaks()
            if self._match(TokenType.ELIF):
                elif_cond = self._parse_expression()
                stmt.elif_clauses.append((elif_cond, self._parse_block()))
            elif self._match(TokenType.ELSE):
                stmt.else_body = self._parse_block()
                break
            else:
                self._reset(mark)
                break
        return stmt

    def _parse_while(self) -> WhileStmt:
        loc = self._loc()
        self._expect(TokenType.WHILE)
        condition = self._parse_expression()
        return WhileStmt(condition=condition, body=self._parse_block(), location=loc)

    def _parse_for(self) -> ForStmt:
        loc = self._loc()
        self._expect(TokenType.FOR)
        variable = self._expect(TokenType.IDENT, "loop variable").value
        self._expect(TokenType.IN, "'in'")
        iterable = self._parse_expression()
        return ForStmt(variable=variable, iterable=iterable, body=self._parse_block(), location=loc)

    def _parse_try(self) -> TryStmt:
        loc = self._loc()
        self._expect(TokenType.TRY)
        stmt = TryStmt(body=self._parse_block(), location=loc)

        while True:
            mark = self._mark()
            self._skip_line_breaks()
            if self._match(TokenType.EXCEPT):
                clause = ExceptClause()
                if self._peek() == TokenType.IDENT:
                    clause.exception_type = self._advance().value
                if self._match(TokenType.AS):
                    clause.name = self._expect(TokenType.IDENT, "name after 'as'").value
                clause.body = self._parse_block()
                stmt.handlers.append(clause)
            elif self._match(TokenType.FINALLY):
                stmt.finally_body = self._parse_block()
                break
            else:
                self._reset(mark)
                break

        if not stmt.handlers and stmt.finally_body is None:
            raise self._error("'except' or 'finally' after try block")
        return stmt

    def _parse_raise(self) -> RaiseStmt:
        loc = self._loc()
        self._expect(TokenType.RAISE)
        exception_type = self._expect(TokenType.IDENT, "exception type after 'raise'").value
        self._expect(TokenType.LPAREN, "'(' after exception type")
        message = self._parse_expression()
        self._expect(TokenType.RPAREN, "')' after exception message")
        return RaiseStmt(exception_type=exception_type, message=message, location=loc)

    def _parse_return(self) -> ReturnStmt:
        loc = self._loc()
        self._expect(TokenType.RETURN)
        if self._peek() in (TokenType.NEWLINE, TokenType.SEMICOLON, TokenType.RBRACE, TokenType.EOF):
            return ReturnStmt(location=loc)
        return ReturnStmt(value=self._parse_expression(), location=loc)

    def _parse_assert(self) -> AssertStmt:
        loc = self._loc()
        self._expect(TokenType.ASSERT)
        condition = self._parse_expression()
        message = None
        if self._match(TokenType.COMMA):
            message = self._expect(TokenType.STRING_LIT, "string literal assertion message").value
        return AssertStmt(condition=condition, message=message, location=loc)

    def _parse_import(self) -> ImportStmt:
        loc = self._loc()
        self._expect(TokenType.IMPORT)
        path = self._expect(TokenType.STRING_LIT, "module path string").value
        return ImportStmt(path=path, location=loc)

    # -------------------------------------------------------------------
    # Types
    # -------------------------------------------------------------------

    def _parse_type(self) -> WadeType:
        tok = self._current()
        if tok.type in _PRIMITIVE_TYPE_TOKENS:
            self._advance()
            base: WadeType = _PRIMITIVE_TYPE_TOKENS[tok.type]
        elif tok.type == TokenType.LIST_TYPE:
            self._advance()
            self._expect(TokenType.LBRACKET, "'[' after 'list'")
            element = self._parse_type()
            self._expect(TokenType.RBRACKET, "']'")
            base = ListType(element)
        elif tok.type == TokenType.DICT_TYPE:
            self._advance()
            self._expect(TokenType.LBRACKET, "'[' after 'dict'")
            key = self._parse_type()
            self._expect(TokenType.COMMA, "',' between dict key and value types")
            value = self._parse_type()
            self._expect(TokenType.RBRACKET, "']'")
            base = DictType(key, value)
        elif tok.type == TokenType.OPTIONAL_TYPE:
            self._advance()
            self._expect(TokenType.LBRACKET, "'[' after 'Optional'")
            inner = self._parse_type()
            self._expect(TokenType.RBRACKET, "']'")
            return OptionalType(inner)
        elif tok.type == TokenType.IDENT:
            self._advance()
            base = CustomType(tok.value)
        else:
            raise self._error("type")

        # Fixed-size array suffix: T[N]
        while self._peek() == TokenType.LBRACKET:
            self._advance()
            size = int(self._expect(TokenType.INT_LIT, "array size").value)
            self._expect(TokenType.RBRACKET, "']'")
            base = ArrayType(base, size)
        if self._match(TokenType.QUESTION):
            return OptionalType(base)
        return base

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _parse_expression(self) -> Expr:
        return self._parse_assignment()

    def _parse_assignment(self) -> Expr:
        expr = self._parse_or()
        loc = self._loc()

        if self._match(TokenType.ASSIGN):
            value = self._parse_assignment()
            return self._make_assignment(expr, value, loc)

        compound = self._match(*_COMPOUND_ASSIGN_OPS)
        if compound:
            rhs = self._parse_assignment()
            value = BinaryOp(op=_COMPOUND_ASSIGN_OPS[compound.type], left=expr, right=rhs, location=loc)
            return self._make_assignment(expr, value, loc)

        return expr

    def _make_assignment(self, target: Expr, value: Expr, loc: SourceLocation) -> Expr:
        if isinstance(target, (Identifier, MemberAccess)):
            return Assignment(target=target, value=value, location=loc)
        if isinstance(target, Index) and isinstance(target.object, Identifier):
            return IndexAssignment(object=target.object, index=target.index, value=value, location=loc)
        raise CompileError(parse_error("Invalid assignment target", loc))

    def _parse_binary(self, operand, operators: dict[TokenType, str]) -> Expr:
        left = operand()
        while self._peek() in operators:
            tok = self._advance()
            right = operand()
            left = BinaryOp(op=operators[tok.type], left=left, right=right, location=tok.location)
        return left

    def _parse_or(self) -> Expr:
        return self._parse_binary(self._parse_and, {TokenType.OR: "or"})

    def _parse_and(self) -> Expr:
        return self._parse_binary(self._parse_equality, {TokenType.AND: "and"})

    def _parse_equality(self) -> Expr:
        return self._parse_binary(self._parse_comparison, {TokenType.EQ: "==", TokenType.NEQ: "!="})

    def _parse_comparison(self) -> Expr:
        return self._parse_binary(self._parse_term, {
            TokenType.LT: "<", TokenType.GT: ">", TokenType.LTE: "<=", TokenType.GTE: ">=",
        })

    def _parse_term(self) -> Expr:
        return self._parse_binary(self._parse_factor, {TokenType.PLUS: "+", TokenType.MINUS: "-"})

    def _parse_factor(self) -> Expr:
        return self._parse_binary(self._parse_unary, {
            TokenType.STAR: "*", TokenType.SLASH: "/",
            TokenType.PERCENT: "%", TokenType.DOUBLE_SLASH: "//",
        })

    def _parse_unary(self) -> Expr:
        loc = self._loc()
        if self._match(TokenType.NOT):
            return UnaryOp(op="not", operand=self._parse_unary(), location=loc)
        if self._match(TokenType.MINUS):
            return UnaryOp(op="-", operand=self._parse_unary(), location=loc)
        return self._parse_power()

    def _parse_power(self) -> Expr:
        base = self._parse_postfix()
        if self._peek() == TokenType.DOUBLE_STAR:
            loc = self._advance().location
            exponent = self._parse_unary()
            return BinaryOp(op="**", left=base, right=exponent, location=loc)
        return base

    def _parse_postfix(self) -> Expr:
        expr = self._parse_primary()
        while True:
            loc = self._loc()
            if self._peek() == TokenType.LPAREN:
                if not isinstance(expr, Identifier):
                    raise CompileError(parse_error("Only named functions can be called", loc))
                expr = Call(name=expr.name, args=self._parse_arguments(), location=expr.location)
            elif self._match(TokenType.DOT):
                member = self._expect(TokenType.IDENT, "member name after '.'").value
                if self._peek() == TokenType.LPAREN:
                    expr = MethodCall(object=expr, method=member, args=self._parse_arguments(), location=loc)
                else:
                    expr = MemberAccess(object=expr, member=member, location=loc)
            elif self._match(TokenType.LBRACKET):
                self._skip_line_breaks()
                index = self._parse_expression()
                self._skip_line_breaks()
                self._expect(TokenType.RBRACKET, "']'")
                expr = Index(object=expr, index=index, location=loc)
            else:
                return expr

    def _parse_arguments(self) -> list[Expr]:
        self._expect(TokenType.LPAREN, "'('")
        args: list[Expr] = []
        self._skip_line_breaks()
        while self._peek() != TokenType.RPAREN:
            args.append(self._parse_expression())
            self._skip_line_breaks()
            if not self._match(TokenType.COMMA):
                break
            self._skip_line_breaks()
        self._expect(TokenType.RPAREN, "')' after arguments")
        return args

    def _parse_primary(self) -> Expr:
        tok = self._current()
        loc = tok.location
        tt = tok.type

        if tt == TokenType.INT_LIT:
            self._advance()
            return IntLiteral(value=int(tok.value), location=loc)
        if tt == TokenType.FLOAT_LIT:
            self._advance()
            return FloatLiteral(value=float(tok.value), location=loc)
        if tt == TokenType.STRING_LIT:
            self._advance()
            return StringLiteral(value=tok.value, location=loc)
        if tt == TokenType.FSTRING_LIT:
            self._advance()
            return self._parse_fstring(tok.value, loc)
        if tt in (TokenType.TRUE, TokenType.FALSE):
            self._advance()
            return BoolLiteral(value=tt == TokenType.TRUE, location=loc)
        if tt == TokenType.NONE:
            self._advance()
            return NoneLiteral(location=loc)
        if tt == TokenType.IDENT:
            self._advance()
            return Identifier(name=tok.value, location=loc)
        if tt == TokenType.LPAREN:
            self._advance()
            self._skip_line_breaks()
            expr = self._parse_expression()
            self._skip_line_breaks()
            self._expect(TokenType.RPAREN, "')'")
            return expr
        if tt == TokenType.LBRACKET:
            return self._parse_list_literal()
        if tt == TokenType.LBRACE:
            return self._parse_dict_literal()

        raise self._error("expression")

    def _parse_list_literal(self) -> ListLiteral:
        loc = self._expect(TokenType.LBRACKET).location
        elements: list[Expr] = []
        self._skip_line_breaks()
        while self._peek() != TokenType.RBRACKET:
            elements.append(self._parse_expression())
            self._skip_line_breaks()
            if not self._match(TokenType.COMMA):
                break
            self._skip_line_breaks()
        self._expect(TokenType.RBRACKET, "']' after list elements")
        return ListLiteral(elements=elements, location=loc)

    def _parse_dict_literal(self) -> DictLiteral:
        loc = self._expect(TokenType.LBRACE).location
        pairs: list[tuple[Expr, Expr]] = []
        self._skip_line_breaks()
        while self._peek() != TokenType.RBRACE:
            key = self._parse_expression()
            self._expect(TokenType.COLON, "':' after dict key")
            self._skip_line_breaks()
            value = self._parse_expression()
            pairs.append((key, value))
            self._skip_line_breaks()
            if not self._match(TokenType.COMMA):
                break
            self._skip_line_breaks()
        self._expect(TokenType.RBRACE, "'}' after dict entries")
        return DictLiteral(pairs=pairs, location=loc)

    # -------------------------------------------------------------------
    # f-strings
    # -------------------------------------------------------------------

    def _parse_fstring(self, raw: str, loc: SourceLocation) -> FString:
        parts: list[str] = []
        expressions: list[Expr] = []
        current = ""
        i = 0
        while i < len(raw):
            ch = raw[i]
            nxt = raw[i + 1] if i + 1 < len(raw) else ""
            if ch == "{" and nxt == "{":
                current += "{"
                i += 2
            elif ch == "}" and nxt == "}":
                current += "}"
                i += 2
            elif ch == "}":
                raise CompileError(parse_error("Single '}' is not allowed in f-string", loc))
            elif ch == "{":
                depth = 1
                j = i + 1
                while j < len(raw) and depth:
                    if raw[j] == "{":
                        depth += 1
                    elif raw[j] == "}":
                        depth -= 1
                    j += 1
                if depth:
                    raise CompileError(parse_error("Unclosed '{' in f-string", loc))
                inner = raw[i + 1:j - 1]
                if not inner.strip():
                    raise CompileError(parse_error("Empty expression in f-string", loc))
                parts.append(current)
                current = ""
                expressions.append(self._parse_embedded_expression(inner, loc))
                i = j
            else:
                current += ch
                i += 1
        parts.append(current)
        return FString(parts=parts, expressions=expressions, location=loc)

    def _parse_embedded_expression(self, text: str, loc: SourceLocation) -> Expr:
        sub = Parser(Lexer(text, self.filename).tokenize(), self.filename)
        sub._skip_line_breaks()
        expr = sub._parse_expression()
        sub._skip_line_breaks()
        if sub._peek() != TokenType.EOF:
            raise CompileError(parse_error(
                f"Unexpected '{sub._peek_value()}' in f-string expression '{text}'", loc,
            ))
        return expr


def parse(source: str, filename: str = "<stdin>") -> Program:
    """Convenience function: tokenize and parse source string."""
    tokens = Lexer(source, filename).tokenize()
    return Parser(tokens, filename).parse()
