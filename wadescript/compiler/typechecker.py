"""WadeScript type checker.

Single pass over the AST with a stack of lexical scopes. Functions are
registered when their definition is reached (before the body is checked, so
recursion works); classes register their field layout and every method
signature (as ``Class::method``) before any method body is checked.

Checking is fail-fast: the first violated rule raises a ``CompileError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from wadescript.compiler.ast_nodes import (
    Program, Statement,
    VarDecl, FunctionDef, ClassDef, IfStmt, WhileStmt, ForStmt, ReturnStmt,
    BreakStmt, ContinueStmt, AssertStmt, ExprStmt, PassStmt, ImportStmt,
    TryStmt, RaiseStmt,
    Expr, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral, NoneLiteral,
    Identifier, BinaryOp, UnaryOp, Call, MemberAccess, Index, Assignment,
    IndexAssignment, MethodCall, ListLiteral, DictLiteral, FString,
)
from wadescript.compiler.types import (
    WadeType, ArrayType, ListType, DictType, CustomType, OptionalType,
    INT, FLOAT, BOOL, STR, VOID, EXCEPTION, is_compatible, is_numeric, unwrap_optional,
)
from wadescript.compiler.runtime import BUILTIN_FUNCTIONS
from wadescript.errors import WadeError, SourceLocation, CompileError, type_error

logger = logging.getLogger(__name__)

_ARITHMETIC_OPS = ("+", "-", "*", "/", "**")
_INTEGER_OPS = ("%", "//")
_COMPARISON_OPS = ("==", "!=", "<", ">", "<=", ">=")
_LOGICAL_OPS = ("and", "or")
_INTERPOLATABLE = (INT, FLOAT, STR, BOOL)


@dataclass
class FunctionSignature:
    params: list[WadeType]
    return_type: WadeType


@dataclass
class ClassInfo:
    name: str
    fields: list[tuple[str, WadeType]] = field(default_factory=list)
    field_map: dict[str, WadeType] = field(default_factory=dict)
    base: Optional[str] = None

    def add_field(self, name: str, typ: WadeType) -> None:
        self.fields.append((name, typ))
        self.field_map[name] = typ


class TypeChecker:
    """Validates a Program; raises CompileError on the first type violation."""

    def __init__(self):
        self.scopes: list[dict[str, WadeType]] = [{}]
        self.functions: dict[str, FunctionSignature] = {
            name: FunctionSignature(list(params), ret)
            for name, (params, ret) in BUILTIN_FUNCTIONS.items()
        }
        self.classes: dict[str, ClassInfo] = {}
        self.modules: dict[str, list[str]] = {}
        self._current_return_type: Optional[WadeType] = None
        self._loop_depth = 0
        self._location: Optional[SourceLocation] = None

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _fail(self, message: str, node=None, expected=None, actual=None) -> CompileError:
        loc = getattr(node, "location", None) or self._location
        return CompileError(type_error(message, loc, expected=expected, actual=actual))

    def _push_scope(self) -> None:
        self.scopes.append({})

    def _pop_scope(self) -> None:
        self.scopes.pop()

    def _define(self, name: str, typ: WadeType) -> None:
        self.scopes[-1][name] = typ

    def _lookup(self, name: str) -> Optional[WadeType]:
        for scope in reversed(self.scopes):
            if name in scope:
                return scope[name]
        return None

    def _resolve_type(self, typ: WadeType, node) -> WadeType:
        """Reject annotations naming a class that has not been defined."""
        if isinstance(typ, CustomType) and typ.name not in self.classes:
            raise self._fail(f"Unknown type '{typ.name}'", node)
        if isinstance(typ, OptionalType):
            # None is a null handle, so only pointer-backed types can be optional.
            if not (typ.inner == STR or isinstance(typ.inner, (ListType, DictType, CustomType))):
                raise self._fail(f"Optional types must wrap str, list, dict or a class, got {typ}", node)
            self._resolve_type(typ.inner, node)
        elif isinstance(typ, (ArrayType, ListType)):
            self._resolve_type(typ.element_type, node)
        elif isinstance(typ, DictType):
            self._resolve_type(typ.key_type, node)
            self._resolve_type(typ.value_type, node)
        return typ

    def _is_module(self, expr: Expr) -> bool:
        return (isinstance(expr, Identifier) and expr.name in self.modules
                and self._lookup(expr.name) is None)

    # -------------------------------------------------------------------
    # Program / statements
    # -------------------------------------------------------------------

    def check_program(self, program: Program) -> None:
        self.modules = dict(program.modules)
        for stmt in program.statements:
            self.check_statement(stmt)
        logger.debug("type checked %d statements, %d functions, %d classes",
                     len(program.statements), len(self.functions), len(self.classes))

    def check_statement(self, stmt: Statement) -> None:
        if stmt.location is not None:
            self._location = stmt.location

        if isinstance(stmt, VarDecl):
            self._check_var_decl(stmt)
        elif isinstance(stmt, FunctionDef):
            self._check_function_def(stmt)
        elif isinstance(stmt, ClassDef):
            self._check_class_def(stmt)
        elif isinstance(stmt, IfStmt):
            self._require_bool(stmt.condition, "If condition")
            self._check_block(stmt.then_body)
            for cond, body in stmt.elif_clauses:
                self._require_bool(cond, "Elif condition")
                self._check_block(body)
            if stmt.else_body is not None:
                self._check_block(stmt.else_body)
        elif isinstance(stmt, WhileStmt):
            self._require_bool(stmt.condition, "While condition")
            self._loop_depth += 1
            self._check_block(stmt.body)
            self._loop_depth -= 1
        elif isinstance(stmt, ForStmt):
            self._check_for(stmt)
        elif isinstance(stmt, ReturnStmt):
            self._check_return(stmt)
        elif isinstance(stmt, (BreakStmt, ContinueStmt)):
            if self._loop_depth == 0:
                keyword = "break" if isinstance(stmt, BreakStmt) else "continue"
                raise self._fail(f"'{keyword}' outside of loop", stmt)
        elif isinstance(stmt, AssertStmt):
            self._require_bool(stmt.condition, "Assert condition")
        elif isinstance(stmt, TryStmt):
            self._check_try(stmt)
        elif isinstance(stmt, RaiseStmt):
            actual = self.check_expression(stmt.message)
            if actual != STR:
                raise self._fail(f"Exception message must be str, got {actual}", stmt.message,
                                 expected=STR, actual=actual)
        elif isinstance(stmt, ExprStmt):
            self.check_expression(stmt.expr)
        elif isinstance(stmt, (PassStmt, ImportStmt)):
            pass
        else:
            raise self._fail(f"Unsupported statement {type(stmt).__name__}", stmt)

    def _check_block(self, body: list[Statement]) -> None:
        self._push_scope()
        for stmt in body:
            self.check_statement(stmt)
        self._pop_scope()

    def _require_bool(self, expr: Expr, what: str) -> None:
        actual = self.check_expression(expr)
        if actual != BOOL:
            raise self._fail(f"{what} must be bool, got {actual}", expr, expected=BOOL, actual=actual)

    def _check_var_decl(self, stmt: VarDecl) -> None:
        declared = self._resolve_type(stmt.type, stmt)
        if declared == VOID:
            raise self._fail(f"Variable '{stmt.name}' cannot have type void", stmt)
        if stmt.value is not None:
            actual = self._check_against(stmt.value, declared)
            if not is_compatible(declared, actual):
                raise self._fail(
                    f"Type mismatch in variable '{stmt.name}': expected {declared}, got {actual}",
                    stmt, expected=declared, actual=actual,
                )
        self._define(stmt.name, declared)

    def _check_function_def(self, stmt: FunctionDef, qualified_name: Optional[str] = None) -> None:
        if self._current_return_type is not None:
            raise self._fail(f"Nested function definitions are not supported ('{stmt.name}')", stmt)
        name = qualified_name or stmt.name
        params = [self._resolve_type(p.type, stmt) for p in stmt.params]
        return_type = self._resolve_type(stmt.return_type, stmt)
        if qualified_name is None:
            self.functions[name] = FunctionSignature(params, return_type)
            logger.debug("registered function %s(%s) -> %s",
                         name, ", ".join(str(p) for p in params), return_type)
        self._check_function_body(stmt, return_type)

    def _check_function_body(self, stmt: FunctionDef, return_type: WadeType) -> None:
        outer_loop_depth = self._loop_depth
        self._current_return_type = return_type
        self._loop_depth = 0
        self._push_scope()
        for param in stmt.params:
            self._define(param.name, param.type)
        for body_stmt in stmt.body:
            self.check_statement(body_stmt)
        self._pop_scope()
        self._current_return_type = None
        self._loop_depth = outer_loop_depth

    def _check_class_def(self, stmt: ClassDef) -> None:
        if stmt.name in self.classes:
            raise self._fail(f"Class '{stmt.name}' is already defined", stmt)
        info = ClassInfo(name=stmt.name, base=stmt.base)
        self.classes[stmt.name] = info
        for fld in stmt.fields:
            if fld.name in info.field_map:
                raise self._fail(f"Duplicate field '{fld.name}' in class '{stmt.name}'", stmt)
            info.add_field(fld.name, self._resolve_type(fld.type, stmt))

        # Register all methods first so they may call each other.
        for method in stmt.methods:
            params = [self._resolve_type(p.type, method) for p in method.params]
            if not method.params or method.params[0].name != "self":
                raise self._fail(f"Method '{stmt.name}.{method.name}' must take 'self' as its first parameter", method)
            if method.name == "init":
                # The constructor takes the fields positionally and then calls init(self).
                if len(method.params) != 1:
                    raise self._fail(f"Method '{stmt.name}.init' must take only 'self'", method)
                if method.return_type != VOID:
                    raise self._fail(f"Method '{stmt.name}.init' must return void", method,
                                     expected=VOID, actual=method.return_type)
            self.functions[f"{stmt.name}::{method.name}"] = FunctionSignature(
                params, self._resolve_type(method.return_type, method),
            )

        for method in stmt.methods:
            self._location = method.location
            self._check_function_def(method, qualified_name=f"{stmt.name}::{method.name}")

    def _check_for(self, stmt: ForStmt) -> None:
        iterable = self.check_expression(stmt.iterable)
        if isinstance(iterable, (ListType, ArrayType)):
            element = iterable.element_type
        elif isinstance(iterable, DictType):
            element = iterable.key_type
        elif iterable == STR:
            element = STR
        else:
            raise self._fail(f"Cannot iterate over type {iterable}", stmt.iterable, actual=iterable)

        self._push_scope()
        self._define(stmt.variable, element)
        self._loop_depth += 1
        self._check_block(stmt.body)
        self._loop_depth -= 1
        self._pop_scope()

    def _check_try(self, stmt: TryStmt) -> None:
        self._check_block(stmt.body)
        for handler in stmt.handlers:
            self._push_scope()
            if handler.name is not None:
                self._define(handler.name, EXCEPTION)
            for body_stmt in handler.body:
                self.check_statement(body_stmt)
            self._pop_scope()
        if stmt.finally_body is not None:
            self._check_block(stmt.finally_body)

    def _check_return(self, stmt: ReturnStmt) -> None:
        expected = self._current_return_type
        if expected is None:
            raise self._fail("Return statement outside of function", stmt)
        actual = VOID if stmt.value is None else self._check_against(stmt.value, expected)
        if not is_compatible(expected, actual):
            raise self._fail(
                f"Return type mismatch: expected {expected}, got {actual}",
                stmt, expected=expected, actual=actual,
            )

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _check_against(self, expr: Expr, expected: WadeType) -> WadeType:
        """Type of ``expr`` where ``expected`` can supply a type for empty or array literals."""
        if isinstance(expected, OptionalType) and isinstance(expr, (ListLiteral, DictLiteral)):
            return self._check_against(expr, expected.inner)
        if isinstance(expr, ListLiteral):
            if isinstance(expected, ArrayType):
                return self._check_array_elements(expr.elements, expected, expr)
            if isinstance(expected, ListType):
                for element in expr.elements:
                    self._check_slot(element, expected.element_type, "list")
                return expected
        if isinstance(expr, DictLiteral) and isinstance(expected, DictType):
            for key, value in expr.pairs:
                self._check_slot(key, expected.key_type, "dict")
                self._check_slot(value, expected.value_type, "dict")
            return expected
        return self.check_expression(expr)

    def _check_slot(self, element: Expr, expected: WadeType, kind: str) -> None:
        actual = self._check_against(element, expected)
        if not is_compatible(expected, actual):
            raise self._fail(
                f"Inconsistent types in {kind} literal: expected {expected}, got {actual}",
                element, expected=expected, actual=actual,
            )

    def _check_array_elements(self, elements: list[Expr], expected: ArrayType, node: Expr) -> WadeType:
        if len(elements) != expected.size:
            raise self._fail(
                f"Array literal has {len(elements)} elements, expected {expected.size}",
                node, expected=expected,
            )
        for element in elements:
            self._check_slot(element, expected.element_type, "array")
        return expected

    def check_expression(self, expr: Expr) -> WadeType:
        """Return the static type of ``expr`` in the current scope."""
        if isinstance(expr, IntLiteral):
            return INT
        if isinstance(expr, FloatLiteral):
            return FLOAT
        if isinstance(expr, StringLiteral):
            return STR
        if isinstance(expr, BoolLiteral):
            return BOOL
        if isinstance(expr, NoneLiteral):
            return VOID
        if isinstance(expr, FString):
            for sub in expr.expressions:
                sub_type = self.check_expression(sub)
                if sub_type not in _INTERPOLATABLE and sub_type != OptionalType(STR):
                    raise self._fail(f"Cannot interpolate value of type {sub_type} in f-string", sub, actual=sub_type)
            return STR
        if isinstance(expr, Identifier):
            typ = self._lookup(expr.name)
            if typ is None:
                raise self._fail(f"Undefined variable '{expr.name}'", expr)
            return typ
        if isinstance(expr, BinaryOp):
            return self._check_binary(expr)
        if isinstance(expr, UnaryOp):
            return self._check_unary(expr)
        if isinstance(expr, Call):
            return self._check_call(expr)
        if isinstance(expr, MemberAccess):
            return self._check_member_access(expr)
        if isinstance(expr, Index):
            return self._check_index(expr)
        if isinstance(expr, Assignment):
            return self._check_assignment(expr)
        if isinstance(expr, IndexAssignment):
            return self._check_index_assignment(expr)
        if isinstance(expr, MethodCall):
            return self._check_method_call(expr)
        if isinstance(expr, ListLiteral):
            return ListType(self._check_elements(expr.elements, "list", expr))
        if isinstance(expr, DictLiteral):
            return self._check_dict_literal(expr)
        raise self._fail(f"Unsupported expression {type(expr).__name__}", expr)

    def _check_binary(self, expr: BinaryOp) -> WadeType:
        left = self.check_expression(expr.left)
        right = self.check_expression(expr.right)
        op = expr.op

        if op in _ARITHMETIC_OPS:
            if is_numeric(left) and is_numeric(right):
                return FLOAT if FLOAT in (left, right) else INT
            if op == "+" and left == STR and right == STR:
                return STR
            raise self._fail(f"Invalid operands for '{op}': {left} and {right}", expr)
        if op in _INTEGER_OPS:
            if left == INT and right == INT:
                return INT
            raise self._fail(f"Operator '{op}' requires int operands, got {left} and {right}", expr)
        if op in _COMPARISON_OPS:
            if is_compatible(left, right) or is_compatible(right, left):
                return BOOL
            raise self._fail(f"Cannot compare {left} and {right}", expr)
        if op in _LOGICAL_OPS:
            if left == BOOL and right == BOOL:
                return BOOL
            raise self._fail(f"Logical operators require bool operands, got {left} and {right}", expr)
        raise self._fail(f"Unknown operator '{op}'", expr)

    def _check_unary(self, expr: UnaryOp) -> WadeType:
        operand = self.check_expression(expr.operand)
        if expr.op == "not":
            if operand != BOOL:
                raise self._fail(f"Operator 'not' requires a bool operand, got {operand}", expr)
            return BOOL
        if not is_numeric(operand):
            raise self._fail(f"Unary '-' requires a numeric operand, got {operand}", expr)
        return operand

    def _check_arguments(self, what: str, params: list[WadeType], args: list[Expr], node: Expr) -> None:
        if len(args) != len(params):
            raise self._fail(f"{what} expects {len(params)} arguments, got {len(args)}", node)
        for i, (param, arg) in enumerate(zip(params, args), start=1):
            actual = self._check_against(arg, param)
            if not is_compatible(param, actual):
                raise self._fail(
                    f"Argument {i} of {what[0].lower()}{what[1:]}: expected {param}, got {actual}",
                    arg, expected=param, actual=actual,
                )

    def _check_call(self, expr: Call) -> WadeType:
        if expr.name in self.classes:
            info = self.classes[expr.name]
            self._check_arguments(f"Constructor for '{expr.name}'", [t for _, t in info.fields], expr.args, expr)
            return CustomType(expr.name)
        sig = self.functions.get(expr.name)
        if sig is None:
            raise self._fail(f"Undefined function '{expr.name}'", expr)
        self._check_arguments(f"Function '{expr.name}'", sig.params, expr.args, expr)
        return sig.return_type

    def _field_type(self, info: ClassInfo, member: str, node: Expr) -> WadeType:
        if member.startswith("_"):
            raise self._fail(f"Cannot access private field '{member}' of class '{info.name}'", node)
        if member not in info.field_map:
            raise self._fail(f"Class '{info.name}' has no field '{member}'", node)
        return info.field_map[member]

    def _check_member_access(self, expr: MemberAccess) -> WadeType:
        if self._is_module(expr.object):
            raise self._fail(f"Module attributes must be called: '{expr.object.name}.{expr.member}'", expr)
        obj = unwrap_optional(self.check_expression(expr.object))
        if obj == EXCEPTION:
            if expr.member in ("type", "message"):
                return STR
            raise self._fail(f"Exception has no member '{expr.member}'", expr)
        if isinstance(obj, CustomType):
            return self._field_type(self.classes[obj.name], expr.member, expr)
        if expr.member == "length" and (isinstance(obj, (ArrayType, ListType, DictType)) or obj == STR):
            return INT
        raise self._fail(f"Type {obj} has no member '{expr.member}'", expr)

    def _check_index(self, expr: Index) -> WadeType:
        obj = unwrap_optional(self.check_expression(expr.object))
        index = self.check_expression(expr.index)
        if isinstance(obj, (ListType, ArrayType)) or obj == STR:
            if index != INT:
                raise self._fail(f"Index must be int, got {index}", expr.index, expected=INT, actual=index)
            return STR if obj == STR else obj.element_type
        if isinstance(obj, DictType):
            if not is_compatible(obj.key_type, index):
                raise self._fail(
                    f"Dictionary key must be {obj.key_type}, got {index}",
                    expr.index, expected=obj.key_type, actual=index,
                )
            return obj.value_type
        raise self._fail(f"Cannot index into type {obj}", expr)

    def _check_assignment(self, expr: Assignment) -> WadeType:
        if isinstance(expr.target, Identifier):
            target = self._lookup(expr.target.name)
            if target is None:
                raise self._fail(f"Undefined variable '{expr.target.name}'", expr.target)
            name = expr.target.name
        else:
            target = self.check_expression(expr.target)
            name = expr.target.member
        actual = self._check_against(expr.value, target)
        if not is_compatible(target, actual):
            raise self._fail(
                f"Type mismatch in assignment to '{name}': expected {target}, got {actual}",
                expr, expected=target, actual=actual,
            )
        return target

    def _check_index_assignment(self, expr: IndexAssignment) -> WadeType:
        obj = unwrap_optional(self.check_expression(expr.object))
        index = self.check_expression(expr.index)
        if isinstance(obj, (ListType, ArrayType)):
            if index != INT:
                raise self._fail(f"Index must be int, got {index}", expr.index, expected=INT, actual=index)
            slot = obj.element_type
        elif isinstance(obj, DictType):
            if not is_compatible(obj.key_type, index):
                raise self._fail(
                    f"Dictionary key must be {obj.key_type}, got {index}",
                    expr.index, expected=obj.key_type, actual=index,
                )
            slot = obj.value_type
        else:
            raise self._fail(f"Cannot assign by index into type {obj}", expr)
        actual = self._check_against(expr.value, slot)
        if not is_compatible(slot, actual):
            raise self._fail(
                f"Type mismatch in index assignment: expected {slot}, got {actual}",
                expr, expected=slot, actual=actual,
            )
        return slot

    def _check_method_call(self, expr: MethodCall) -> WadeType:
        if self._is_module(expr.object):
            module = expr.object.name
            if expr.method not in self.modules[module]:
                raise self._fail(f"Module '{module}' has no function '{expr.method}'", expr)
            sig = self.functions.get(expr.method)
            if sig is None:
                raise self._fail(f"Undefined function '{expr.method}'", expr)
            self._check_arguments(f"Function '{module}.{expr.method}'", sig.params, expr.args, expr)
            return sig.return_type

        obj = unwrap_optional(self.check_expression(expr.object))
        method = expr.method

        if isinstance(obj, ListType):
            elem = obj.element_type
            builtin = {"push": ([elem], VOID), "pop": ([], elem), "get": ([INT], elem)}
        elif obj == STR:
            builtin = {"upper": ([], STR), "lower": ([], STR), "contains": ([STR], BOOL)}
        elif isinstance(obj, DictType):
            builtin = {"has": ([obj.key_type], BOOL)}
        elif isinstance(obj, CustomType):
            info = self.classes[obj.name]
            if method.startswith("_"):
                raise self._fail(f"Cannot access private method '{method}' of class '{info.name}'", expr)
            sig = self.functions.get(f"{info.name}::{method}")
            if sig is None:
                raise self._fail(f"Class '{info.name}' has no method '{method}'", expr)
            self._check_arguments(f"Method '{info.name}.{method}'", sig.params[1:], expr.args, expr)
            return sig.return_type
        else:
            raise self._fail(f"Type {obj} has no method '{method}'", expr)

        if method not in builtin:
            raise self._fail(f"Type {obj} has no method '{method}'", expr)
        params, ret = builtin[method]
        self._check_arguments(f"Method '{obj}.{method}'", params, expr.args, expr)
        return ret

    def _check_elements(self, elements: list[Expr], kind: str, node: Expr) -> WadeType:
        if not elements:
            raise self._fail(f"Cannot infer type of empty {kind} literal", node)
        first = self.check_expression(elements[0])
        for element in elements[1:]:
            actual = self.check_expression(element)
            if not is_compatible(first, actual):
                raise self._fail(
                    f"Inconsistent types in {kind} literal: expected {first}, got {actual}",
                    element, expected=first, actual=actual,
                )
        return first

    def _check_dict_literal(self, expr: DictLiteral) -> WadeType:
        if not expr.pairs:
            raise self._fail("Cannot infer type of empty dict literal", expr)
        key_type = self.check_expression(expr.pairs[0][0])
        value_type = self.check_expression(expr.pairs[0][1])
        for key, value in expr.pairs[1:]:
            k = self.check_expression(key)
            v = self.check_expression(value)
            if not is_compatible(key_type, k) or not is_compatible(value_type, v):
                raise self._fail(
                    f"Inconsistent types in dict literal: expected {key_type}: {value_type}, got {k}: {v}",
                    key,
                )
        return DictType(key_type, value_type)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def check(program: Program) -> list[WadeError]:
    """Type check a program. Returns [] on success or the single first error."""
    checker = TypeChecker()
    try:
        checker.check_program(program)
    except CompileError as e:
        return e.errors
    return []
