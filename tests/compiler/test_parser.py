"""WadeScript Parser Tests — PARSE-001 through PARSE-009."""

import pytest

from wadescript.compiler.parser import parse
from wadescript.compiler.ast_nodes import (
    VarDecl, FunctionDef, ClassDef, IfStmt, WhileStmt, ForStmt, ReturnStmt,
    AssertStmt, ExprStmt, ImportStmt, IntLiteral, StringLiteral, Identifier,
    BinaryOp, UnaryOp, Call, MemberAccess, Index, Assignment, IndexAssignment,
    MethodCall, ListLiteral, DictLiteral, FString, TryStmt, RaiseStmt,
)
from wadescript.compiler.types import (
    INT, STR, VOID, ArrayType, ListType, DictType, CustomType, OptionalType,
)
from wadescript.errors import CompileError, ErrorKind


def _expr(source):
    stmt = parse(source).statements[0]
    assert isinstance(stmt, ExprStmt)
    return stmt.expr


class TestPARSE001:
    """PARSE-001: Variable declarations and the single rewind point.
    Priority: P0
    """

    def test_var_decl_with_value(self):
        """priority_p0: 'x: int = 5' is a VarDecl."""
        stmt = parse("x: int = 5").statements[0]
        assert isinstance(stmt, VarDecl)
        assert stmt.name == "x"
        assert stmt.type == INT
        assert stmt.value == IntLiteral(5)

    def test_identifier_without_colon_rewinds_to_expression(self):
        """priority_p0: 'x = 5' rewinds and parses as an assignment."""
        expr = _expr("x = 5")
        assert isinstance(expr, Assignment)
        assert expr.target == Identifier("x")

    def test_container_and_array_types(self):
        """priority_p0: list[T], dict[K, V] and T[N] annotations."""
        program = parse("a: list[int]\nb: dict[str, float]\nc: int[3]\nd: Point")
        types = [s.type for s in program.statements]
        assert types[0] == ListType(INT)
        assert types[1] == DictType(STR, types[1].value_type)
        assert types[2] == ArrayType(INT, 3)
        assert types[3] == CustomType("Point")

    def test_increment_desugars(self):
        """priority_p1: 'i++' becomes 'i = i + 1'."""
        expr = _expr("i++")
        assert isinstance(expr, Assignment)
        assert expr.value == BinaryOp("+", Identifier("i"), IntLiteral(1))

    def test_compound_assignment_desugars(self):
        """priority_p1: 'x -= 2' becomes 'x = x - 2'."""
        expr = _expr("x -= 2")
        assert expr.value == BinaryOp("-", Identifier("x"), IntLiteral(2))


class TestPARSE002:
    """PARSE-002: Operator precedence and associativity.
    Priority: P0
    """

    def test_factor_binds_tighter_than_term(self):
        """priority_p0: 1 + 2 * 3 parses as 1 + (2 * 3)."""
        expr = _expr("1 + 2 * 3")
        assert expr == BinaryOp("+", IntLiteral(1), BinaryOp("*", IntLiteral(2), IntLiteral(3)))

    def test_left_associative_subtraction(self):
        """priority_p0: 1 - 2 - 3 parses as (1 - 2) - 3."""
        expr = _expr("1 - 2 - 3")
        assert expr == BinaryOp("-", BinaryOp("-", IntLiteral(1), IntLiteral(2)), IntLiteral(3))

    def test_power_is_right_associative(self):
        """priority_p1: 2 ** 3 ** 2 parses as 2 ** (3 ** 2)."""
        expr = _expr("2 ** 3 ** 2")
        assert expr == BinaryOp("**", IntLiteral(2), BinaryOp("**", IntLiteral(3), IntLiteral(2)))

    def test_and_binds_tighter_than_or(self):
        """priority_p1: a or b and c parses as a or (b and c)."""
        expr = _expr("a or b and c")
        assert expr.op == "or"
        assert expr.right.op == "and"

    def test_unary_not_and_minus(self):
        """priority_p1: Prefix operators nest."""
        expr = _expr("not -x")
        assert expr == UnaryOp("not", UnaryOp("-", Identifier("x")))

    def test_assignment_is_right_associative(self):
        """priority_p2: a = b = 1 assigns b first."""
        expr = _expr("a = b = 1")
        assert isinstance(expr.value, Assignment)


class TestPARSE003:
    """PARSE-003: Postfix forms.
    Priority: P0
    """

    def test_call_member_method_index(self):
        """priority_p0: Calls, members, method calls and indexing."""
        assert isinstance(_expr("f(1, 2)"), Call)
        assert isinstance(_expr("p.x"), MemberAccess)
        call = _expr("xs.push(3)")
        assert isinstance(call, MethodCall)
        assert call.method == "push" and call.args == [IntLiteral(3)]
        assert isinstance(_expr("xs[0]"), Index)

    def test_index_assignment(self):
        """priority_p0: 'xs[0] = 1' becomes IndexAssignment."""
        expr = _expr("xs[0] = 1")
        assert isinstance(expr, IndexAssignment)
        assert expr.object == Identifier("xs")

    def test_member_assignment(self):
        """priority_p1: 'p.x = 1' assigns to a field."""
        expr = _expr("p.x = 1")
        assert isinstance(expr, Assignment)
        assert isinstance(expr.target, MemberAccess)

    def test_only_named_functions_callable(self):
        """priority_p1: Calling a non-identifier is a parse error."""
        with pytest.raises(CompileError) as exc:
            parse("xs[0](1)")
        assert "Only named functions" in exc.value.error.message

    def test_invalid_assignment_target(self):
        """priority_p1: '1 = x' is rejected."""
        with pytest.raises(CompileError) as exc:
            parse("1 = x")
        assert exc.value.error.message == "Invalid assignment target"

    def test_literals(self):
        """priority_p0: List and dict literals, spanning lines."""
        assert _expr("[1, 2,\n 3]") == ListLiteral([IntLiteral(1), IntLiteral(2), IntLiteral(3)])
        assert _expr('{\n"a": 1\n}') == DictLiteral([(StringLiteral("a"), IntLiteral(1))])


class TestPARSE004:
    """PARSE-004: Functions and control flow.
    Priority: P0
    """

    def test_function_definition(self):
        """priority_p0: Parameters, return type and body."""
        fn = parse("def add(a: int, b: int) -> int {\n  return a + b\n}").statements[0]
        assert isinstance(fn, FunctionDef)
        assert [p.name for p in fn.params] == ["a", "b"]
        assert fn.return_type == INT
        assert isinstance(fn.body[0], ReturnStmt)

    def test_missing_return_type_is_void(self):
        """priority_p0: Omitted '-> T' means void."""
        fn = parse("def hello() {\n  print_str(\"hi\")\n}").statements[0]
        assert fn.return_type == VOID

    def test_if_elif_else_across_lines(self):
        """priority_p0: elif/else may start on the line after '}'."""
        source = "if a {\n  x = 1\n}\nelif b {\n  x = 2\n}\nelse {\n  x = 3\n}"
        stmt = parse(source).statements[0]
        assert isinstance(stmt, IfStmt)
        assert len(stmt.elif_clauses) == 1
        assert stmt.else_body is not None

    def test_if_followed_by_statement(self):
        """priority_p1: Lookahead past newlines rewinds when no elif/else follows."""
        program = parse("if a {\n  pass\n}\nx = 1")
        assert isinstance(program.statements[0], IfStmt)
        assert isinstance(program.statements[1], ExprStmt)

    def test_loops(self):
        """priority_p0: while and for-in."""
        program = parse("while x < 3 {\n  x += 1\n}\nfor i in range(3) {\n  print_int(i)\n}")
        assert isinstance(program.statements[0], WhileStmt)
        loop = program.statements[1]
        assert isinstance(loop, ForStmt)
        assert loop.variable == "i"
        assert loop.iterable == Call("range", [IntLiteral(3)])

    def test_bare_return(self):
        """priority_p1: 'return' before '}' has no value."""
        fn = parse("def f() {\n  return\n}").statements[0]
        assert fn.body[0].value is None

    def test_assert_and_import(self):
        """priority_p1: assert with message; import with string path."""
        program = parse('import "math"\nassert x > 0, "positive"')
        assert program.statements[0] == ImportStmt("math")
        stmt = program.statements[1]
        assert isinstance(stmt, AssertStmt)
        assert stmt.message == "positive"

    def test_semicolons_separate_statements(self):
        """priority_p2: ';' ends a statement like a newline."""
        assert len(parse("x: int = 1; y: int = 2").statements) == 2


class TestPARSE005:
    """PARSE-005: Classes.
    Priority: P0
    """

    def test_fields_then_methods(self):
        """priority_p0: Fields before methods; 'self' needs no annotation."""
        source = """
class Point {
  x: int
  y: int
  def sum(self) -> int {
    return self.x + self.y
  }
}
"""
        cls = parse(source).statements[0]
        assert isinstance(cls, ClassDef)
        assert [f.name for f in cls.fields] == ["x", "y"]
        assert cls.methods[0].params[0].type == CustomType("Point")

    def test_field_after_method_rejected(self):
        """priority_p0: A field after a method is a parse error naming the field."""
        source = "class C {\n  def m(self) {\n    pass\n  }\n  x: int\n}"
        with pytest.raises(CompileError) as exc:
            parse(source)
        assert exc.value.kind == ErrorKind.PARSE_ERROR
        assert "Field 'x' declared after methods" in exc.value.error.message

    def test_base_class_recorded(self):
        """priority_p2: 'class B(A)' records the base name."""
        assert parse("class B(A) {\n}").statements[0].base == "A"


class TestPARSE006:
    """PARSE-006: f-string splitting.
    Priority: P0
    """

    def test_parts_and_expressions(self):
        """priority_p0: Literal parts interleave with parsed expressions."""
        fs = _expr('f"sum={a + b}!"')
        assert isinstance(fs, FString)
        assert fs.parts == ["sum=", "!"]
        assert fs.expressions == [BinaryOp("+", Identifier("a"), Identifier("b"))]

    def test_doubled_braces_are_literal(self):
        """priority_p1: '{{' and '}}' produce literal braces."""
        fs = _expr('f"{{x}}"')
        assert fs.parts == ["{x}"]
        assert fs.expressions == []

    def test_nested_braces_in_expression(self):
        """priority_p1: Brace depth is tracked inside an interpolation."""
        fs = _expr('f"{d[\\"k\\"]}"')
        assert isinstance(fs.expressions[0], Index)

    @pytest.mark.parametrize("source,message", [
        ('f"a}"', "Single '}'"),
        ('f"{a"', "Unclosed '{'"),
        ('f"{ }"', "Empty expression"),
    ])
    def test_malformed_fstrings(self, source, message):
        """priority_p1: Malformed interpolations are parse errors."""
        with pytest.raises(CompileError) as exc:
            parse(source)
        assert message in exc.value.error.message


class TestPARSE007:
    """PARSE-007: Error reporting.
    Priority: P1
    """

    def test_error_names_expected_and_found(self):
        """priority_p1: Messages say what was expected and what was found."""
        with pytest.raises(CompileError) as exc:
            parse("def f( {\n}")
        err = exc.value.error
        assert err.kind == ErrorKind.PARSE_ERROR
        assert err.message.startswith("Expected parameter name, got LBRACE")
        assert err.details["found"] == "LBRACE"

    def test_missing_closing_brace(self):
        """priority_p1: EOF inside a block is reported."""
        with pytest.raises(CompileError):
            parse("def f() {\n  return")

    def test_error_location(self):
        """priority_p1: Errors carry file:line:col."""
        with pytest.raises(CompileError) as exc:
            parse("x: int = 1\ny: = 2", )
        assert exc.value.error.location.line == 2


class TestPARSE008:
    """PARSE-008: Whole programs.
    Priority: P2
    """

    def test_blank_lines_and_comments(self):
        """priority_p2: Blank lines and comments between statements are ignored."""
        source = "\n\n# header\nx: int = 1\n\n\n# trailer\n"
        program = parse(source, filename="prog.ws")
        assert len(program.statements) == 1
        assert program.filename == "prog.ws"


class TestPARSE009:
    """PARSE-009: try/except/finally, raise and optional types.
    Priority: P1
    """

    def test_try_with_clauses(self):
        """priority_p0: Typed, named and bare except clauses, then finally."""
        source = (
            "try {\n  f()\n} except ValueError as e {\n  pass\n}\n"
            "except KeyError {\n  pass\n} except {\n  pass\n} finally {\n  g()\n}\nx = 1"
        )
        program = parse(source)
        stmt = program.statements[0]
        assert isinstance(stmt, TryStmt)
        assert [(h.exception_type, h.name) for h in stmt.handlers] == [
            ("ValueError", "e"), ("KeyError", None), (None, None),
        ]
        assert len(stmt.finally_body) == 1
        assert isinstance(program.statements[1], ExprStmt)

    def test_try_finally_only(self):
        """priority_p1: A try may have just a finally block."""
        stmt = parse("try {\n  pass\n} finally {\n  pass\n}").statements[0]
        assert stmt.handlers == []
        assert stmt.finally_body is not None

    def test_try_needs_a_clause(self):
        """priority_p1: A bare try block is a parse error."""
        with pytest.raises(CompileError) as exc:
            parse("try {\n  pass\n}\nx = 1")
        assert "'except' or 'finally' after try block" in exc.value.error.message

    def test_raise(self):
        """priority_p0: raise Type(message)."""
        stmt = parse('raise ValueError("bad " + s)').statements[0]
        assert isinstance(stmt, RaiseStmt)
        assert stmt.exception_type == "ValueError"
        assert isinstance(stmt.message, BinaryOp)

    def test_optional_type_spellings(self):
        """priority_p1: 'T?' and 'Optional[T]' are the same type."""
        program = parse("a: str?\nb: Optional[str]\nc: list[int]?\nd: Point?")
        types = [s.type for s in program.statements]
        assert types[0] == types[1] == OptionalType(STR)
        assert types[2] == OptionalType(ListType(INT))
        assert types[3] == OptionalType(CustomType("Point"))
