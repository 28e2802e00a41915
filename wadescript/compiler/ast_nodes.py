"""WadeScript AST node definitions.

Expressions and statements are plain dataclasses. Type annotations are stored
as resolved ``WadeType`` values since the type grammar has no forward
references that need a second pass (class names become ``CustomType``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from wadescript.errors import SourceLocation
from wadescript.compiler.types import WadeType


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass
class Expr:
    """Base class for expressions."""
    location: Optional[SourceLocation] = field(default=None, kw_only=True, repr=False, compare=False)


@dataclass
class IntLiteral(Expr):
    value: int = 0


@dataclass
class FloatLiteral(Expr):
    value: float = 0.0


@dataclass
class StringLiteral(Expr):
    value: str = ""


@dataclass
class BoolLiteral(Expr):
    value: bool = False


@dataclass
class NoneLiteral(Expr):
    pass


@dataclass
class Identifier(Expr):
    name: str = ""


@dataclass
class BinaryOp(Expr):
    op: str = ""
    left: Expr = field(default_factory=Expr)
    right: Expr = field(default_factory=Expr)


@dataclass
class UnaryOp(Expr):
    op: str = ""  # "-" or "not"
    operand: Expr = field(default_factory=Expr)


@dataclass
class Call(Expr):
    name: str = ""
    args: list[Expr] = field(default_factory=list)


@dataclass
class MemberAccess(Expr):
    object: Expr = field(default_factory=Expr)
    member: str = ""


@dataclass
class Index(Expr):
    object: Expr = field(default_factory=Expr)
    index: Expr = field(default_factory=Expr)


@dataclass
class Assignment(Expr):
    """``target = value`` where target is a variable or a field of a variable."""
    target: Expr = field(default_factory=Expr)
    value: Expr = field(default_factory=Expr)


@dataclass
class IndexAssignment(Expr):
    """``name[index] = value``."""
    object: Expr = field(default_factory=Expr)
    index: Expr = field(default_factory=Expr)
    value: Expr = field(default_factory=Expr)


@dataclass
class MethodCall(Expr):
    object: Expr = field(default_factory=Expr)
    method: str = ""
    args: list[Expr] = field(default_factory=list)


@dataclass
class ListLiteral(Expr):
    elements: list[Expr] = field(default_factory=list)


@dataclass
class DictLiteral(Expr):
    pairs: list[tuple[Expr, Expr]] = field(default_factory=list)


@dataclass
class FString(Expr):
    """Interpolated string: ``parts`` always has one more entry than ``expressions``."""
    parts: list[str] = field(default_factory=list)
    expressions: list[Expr] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass
class Statement:
    """Base class for statements."""
    location: Optional[SourceLocation] = field(default=None, kw_only=True, repr=False, compare=False)


@dataclass
class Parameter:
    name: str
    type: WadeType


@dataclass
class VarDecl(Statement):
    name: str = ""
    type: WadeType = field(default_factory=WadeType)
    value: Optional[Expr] = None


@dataclass
class FunctionDef(Statement):
    name: str = ""
    params: list[Parameter] = field(default_factory=list)
    return_type: WadeType = field(default_factory=WadeType)
    body: list[Statement] = field(default_factory=list)


@dataclass
class ClassDef(Statement):
    name: str = ""
    base: Optional[str] = None
    fields: list[Parameter] = field(default_factory=list)
    methods: list[FunctionDef] = field(default_factory=list)


@dataclass
class IfStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    then_body: list[Statement] = field(default_factory=list)
    elif_clauses: list[tuple[Expr, list[Statement]]] = field(default_factory=list)
    else_body: Optional[list[Statement]] = None


@dataclass
class WhileStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    body: list[Statement] = field(default_factory=list)


@dataclass
class ForStmt(Statement):
    variable: str = ""
    iterable: Expr = field(default_factory=Expr)
    body: list[Statement] = field(default_factory=list)


@dataclass
class ReturnStmt(Statement):
    value: Optional[Expr] = None


@dataclass
class BreakStmt(Statement):
    pass


@dataclass
class ContinueStmt(Statement):
    pass


@dataclass
class AssertStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    message: Optional[str] = None


@dataclass
class ExceptClause:
    """``except [Type] [as name] { body }``; no type catches everything."""
    exception_type: Optional[str] = None
    name: Optional[str] = None
    body: list[Statement] = field(default_factory=list)


@dataclass
class TryStmt(Statement):
    body: list[Statement] = field(default_factory=list)
    handlers: list[ExceptClause] = field(default_factory=list)
    finally_body: Optional[list[Statement]] = None


@dataclass
class RaiseStmt(Statement):
    """``raise Type(message)``."""
    exception_type: str = ""
    message: Expr = field(default_factory=Expr)


@dataclass
class ExprStmt(Statement):
    expr: Expr = field(default_factory=Expr)


@dataclass
class PassStmt(Statement):
    pass


@dataclass
class ImportStmt(Statement):
    path: str = ""


# ---------------------------------------------------------------------------
# Program
# ---------------------------------------------------------------------------

@dataclass
class Program:
    statements: list[Statement] = field(default_factory=list)
    # module name -> exported function names (filled by the loader)
    modules: dict[str, list[str]] = field(default_factory=dict)
    filename: str = "<stdin>"
