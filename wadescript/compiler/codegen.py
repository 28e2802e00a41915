"""WadeScript code generation: AST -> LLVM IR via llvmlite.

Lowering model:
  - every variable and parameter lives in its own stack slot (alloca in the
    entry block); top-level variables become module globals so functions can
    read them;
  - control flow is built from basic blocks: if/elif/else re-join at one merge
    block, loops keep (continue, break) targets on a stack, for-loops are
    desugared into an index-counted loop here;
  - classes become identified structs with a synthesized constructor;
  - containers, strings and files are calls into the runtime contract
    (``wadescript.compiler.runtime``); runtime list/dict slots are i64 words.

Every value produced while lowering an expression carries its static
WadeType, so instruction selection dispatches on the source types rather
than re-inspecting LLVM types.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from llvmlite import ir as llvm_ir
from llvmlite import binding as llvm_binding

from wadescript.compiler.ast_nodes import (
    Program, Statement,
    VarDecl, FunctionDef, ClassDef, IfStmt, WhileStmt, ForStmt, ReturnStmt,
    BreakStmt, ContinueStmt, AssertStmt, ExprStmt, PassStmt, ImportStmt,
    TryStmt, ExceptClause, RaiseStmt,
    Expr, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral, NoneLiteral,
    Identifier, BinaryOp, UnaryOp, Call, MemberAccess, Index, Assignment,
    IndexAssignment, MethodCall, ListLiteral, DictLiteral, FString,
)
from wadescript.compiler.types import (
    WadeType, ArrayType, ListType, DictType, CustomType, OptionalType,
    INT, FLOAT, BOOL, STR, VOID, EXCEPTION, is_reference, is_pointer, unwrap_optional,
)
from wadescript.compiler import runtime
from wadescript.errors import SourceLocation, CompileError, codegen_error

logger = logging.getLogger(__name__)

I1 = llvm_ir.IntType(1)
I8 = llvm_ir.IntType(8)
I32 = llvm_ir.IntType(32)
I64 = llvm_ir.IntType(64)
DOUBLE = llvm_ir.DoubleType()
VOID_T = llvm_ir.VoidType()
I8_PTR = I8.as_pointer()

# Longest %lld or %g rendering plus the terminator.
FORMAT_BUFFER_SIZE = 32

_INT_COMPARE = {"==": "==", "!=": "!=", "<": "<", ">": ">", "<=": "<=", ">=": ">="}
_PRINT_FORMATS = {"print_int": "%lld\n", "print_float": "%f\n", "print_str": "%s\n"}

Typed = tuple[Optional[llvm_ir.Value], WadeType]


@dataclass
class ClassLayout:
    name: str
    struct: llvm_ir.IdentifiedStructType
    fields: list[tuple[str, WadeType]] = field(default_factory=list)

    def index_of(self, member: str) -> int:
        for i, (name, _) in enumerate(self.fields):
            if name == member:
                return i
        return -1


@dataclass
class FunctionInfo:
    function: llvm_ir.Function
    params: list[WadeType]
    return_type: WadeType


@dataclass(eq=False)
class TryFrame:
    """A try statement whose body or handlers are being lowered."""
    dispatch: llvm_ir.Block
    finally_body: Optional[list[Statement]]
    loop_depth: int
    outer: list["TryFrame"]
    in_body: bool = True


def _widens(actual: WadeType, expected: WadeType) -> bool:
    """True when a value of ``actual`` needs int -> float conversion somewhere inside to become ``expected``."""
    actual, expected = unwrap_optional(actual), unwrap_optional(expected)
    if actual == INT and expected == FLOAT:
        return True
    if isinstance(actual, (ListType, ArrayType)) and type(expected) is type(actual):
        return _widens(actual.element_type, expected.element_type)
    if isinstance(actual, DictType) and isinstance(expected, DictType):
        return _widens(actual.key_type, expected.key_type) or _widens(actual.value_type, expected.value_type)
    return False


def _contains_try(statements: list[Statement]) -> bool:
    for stmt in statements:
        if isinstance(stmt, TryStmt):
            return True
        if isinstance(stmt, (FunctionDef, WhileStmt, ForStmt)):
            bodies = [stmt.body]
        elif isinstance(stmt, IfStmt):
            bodies = [stmt.then_body] + [body for _, body in stmt.elif_clauses]
            if stmt.else_body is not None:
                bodies.append(stmt.else_body)
        elif isinstance(stmt, ClassDef):
            bodies = [method.body for method in stmt.methods]
        else:
            continue
        if any(_contains_try(body) for body in bodies):
            return True
    return False


class CodeGen:
    """Lowers a type-checked Program to an llvmlite module."""

    def __init__(self, module_name: str = "wadescript", track_call_stack: bool = True,
                 reference_counting: bool = False):
        self.module = llvm_ir.Module(name=module_name)
        self.module.triple = llvm_binding.get_default_triple()
        self.track_call_stack = track_call_stack
        self.reference_counting = reference_counting

        self._builder: Optional[llvm_ir.IRBuilder] = None
        self._func: Optional[llvm_ir.Function] = None
        self._return_type: WadeType = VOID
        self._scopes: list[dict[str, tuple[llvm_ir.Value, WadeType]]] = [{}]
        self._functions: dict[str, FunctionInfo] = {}
        self._classes: dict[str, ClassLayout] = {}
        self._modules: dict[str, list[str]] = {}
        self._loops: list[tuple[llvm_ir.Block, llvm_ir.Block]] = []
        self._try_frames: list[TryFrame] = []
        self._checks_exceptions = False
        self._global_slots: dict[int, tuple[llvm_ir.GlobalVariable, WadeType]] = {}
        self._strings: dict[str, llvm_ir.GlobalVariable] = {}
        self._location: Optional[SourceLocation] = None

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _fail(self, message: str, node=None) -> CompileError:
        loc = getattr(node, "location", None) or self._location
        return CompileError(codegen_error(message, loc))

    def _llvm_type(self, typ: WadeType) -> llvm_ir.Type:
        if typ == INT:
            return I64
        if typ == FLOAT:
            return DOUBLE
        if typ == BOOL:
            return I1
        if typ == STR or typ == EXCEPTION:
            return I8_PTR
        if typ == VOID:
            return VOID_T
        if isinstance(typ, (ListType, DictType)):
            return I8_PTR
        if isinstance(typ, CustomType):
            return self.module.context.get_identified_type(typ.name).as_pointer()
        if isinstance(typ, ArrayType):
            return llvm_ir.ArrayType(self._llvm_type(typ.element_type), typ.size)
        if isinstance(typ, OptionalType):
            return self._llvm_type(typ.inner)
        raise self._fail(f"Cannot lower type {typ}")

    def _runtime(self, name: str) -> llvm_ir.Function:
        return runtime.declare(self.module, name)

    def _call(self, name: str, args: list) -> llvm_ir.Value:
        return self._builder.call(self._runtime(name), args)

    def _cstring(self, text: str) -> llvm_ir.Constant:
        """Pointer to a private, null-terminated global holding ``text``."""
        gv = self._strings.get(text)
        if gv is None:
            data = bytearray(text.encode("utf-8") + b"\0")
            arr_t = llvm_ir.ArrayType(I8, len(data))
            gv = llvm_ir.GlobalVariable(self.module, arr_t, name=f".str.{len(self._strings)}")
            gv.linkage = "private"
            gv.global_constant = True
            gv.unnamed_addr = True
            gv.initializer = llvm_ir.Constant(arr_t, data)
            self._strings[text] = gv
        zero = llvm_ir.Constant(I32, 0)
        return gv.gep([zero, zero])

    def _alloca(self, typ: llvm_ir.Type, name: str = "") -> llvm_ir.AllocaInstr:
        """Stack slot placed at the start of the current function's entry block."""
        builder = llvm_ir.IRBuilder()
        builder.position_at_start(self._func.entry_basic_block)
        return builder.alloca(typ, name=name)

    def _define(self, name: str, slot: llvm_ir.Value, typ: WadeType) -> None:
        self._scopes[-1][name] = (slot, typ)

    def _lookup(self, name: str) -> Optional[tuple[llvm_ir.Value, WadeType]]:
        for scope in reversed(self._scopes):
            if name in scope:
                return scope[name]
        return None

    def _terminated(self) -> bool:
        return self._builder.block.is_terminated

    def _coerce(self, value: llvm_ir.Value, actual: WadeType, expected: WadeType) -> llvm_ir.Value:
        """Apply the int -> float widening.

        Containers whose elements widen are copied with converted elements,
        since an int word and a float word differ bit for bit. Every other
        compatible pair shares a representation.
        """
        if actual == INT and expected == FLOAT:
            return self._builder.sitofp(value, DOUBLE)
        if actual == VOID and expected != VOID:
            return llvm_ir.Constant(self._llvm_type(expected), None)
        if _widens(actual, expected):
            return self._convert(value, actual, expected)
        return value

    def _convert(self, value: llvm_ir.Value, actual: WadeType, expected: WadeType) -> llvm_ir.Value:
        builder = self._builder
        expected = unwrap_optional(expected)
        if isinstance(actual, OptionalType):
            # None stays None; only a live handle is copied
            start = builder.block
            convert_block = self._func.append_basic_block("convert.copy")
            merge = self._func.append_basic_block("convert.end")
            is_null = builder.icmp_unsigned("==", value, llvm_ir.Constant(value.type, None))
            builder.cbranch(is_null, merge, convert_block)
            builder.position_at_end(convert_block)
            converted = self._convert(value, actual.inner, expected)
            converted_end = builder.block
            builder.branch(merge)
            builder.position_at_end(merge)
            result = builder.phi(converted.type)
            result.add_incoming(llvm_ir.Constant(converted.type, None), start)
            result.add_incoming(converted, converted_end)
            return result

        if isinstance(actual, ArrayType):
            result = llvm_ir.Constant(self._llvm_type(expected), None)
            for i in range(actual.size):
                element = builder.extract_value(value, i)
                result = builder.insert_value(
                    result, self._coerce(element, actual.element_type, expected.element_type), i,
                )
            return result

        if isinstance(actual, DictType):
            raise self._fail(
                f"Cannot convert {actual} to {expected}: the runtime has no key iteration"
            )

        length = self._call("list_length", [value])
        result = self._call("list_create_i64", [])
        counter = self._alloca(I64, name="convert.i")
        builder.store(llvm_ir.Constant(I64, 0), counter)

        cond_block = self._func.append_basic_block("convert.cond")
        body_block = self._func.append_basic_block("convert.body")
        end_block = self._func.append_basic_block("convert.done")
        builder.branch(cond_block)

        builder.position_at_end(cond_block)
        i = builder.load(counter)
        builder.cbranch(builder.icmp_signed("<", i, length), body_block, end_block)

        builder.position_at_end(body_block)
        i = builder.load(counter)
        element = self._from_word(self._call("list_get_i64", [value, i]), actual.element_type)
        element = self._coerce(element, actual.element_type, expected.element_type)
        self._call("list_push_i64", [result, self._to_word(element, expected.element_type)])
        builder.store(builder.add(i, llvm_ir.Constant(I64, 1)), counter)
        builder.branch(cond_block)

        builder.position_at_end(end_block)
        return result

    def _to_word(self, value: llvm_ir.Value, typ: WadeType) -> llvm_ir.Value:
        """Pack a value into the i64 word stored by runtime lists and dicts."""
        if typ == INT:
            return value
        if typ == BOOL:
            return self._builder.zext(value, I64)
        if typ == FLOAT:
            return self._builder.bitcast(value, I64)
        if is_pointer(typ):
            return self._builder.ptrtoint(value, I64)
        raise self._fail(f"Values of type {typ} cannot be stored in a runtime container")

    def _from_word(self, word: llvm_ir.Value, typ: WadeType) -> llvm_ir.Value:
        if typ == INT:
            return word
        if typ == BOOL:
            return self._builder.icmp_unsigned("!=", word, llvm_ir.Constant(I64, 0))
        if typ == FLOAT:
            return self._builder.bitcast(word, DOUBLE)
        if is_pointer(typ):
            return self._builder.inttoptr(word, self._llvm_type(typ))
        raise self._fail(f"Values of type {typ} cannot be read from a runtime container")

    def _as_i8_ptr(self, value: llvm_ir.Value) -> llvm_ir.Value:
        if value.type == I8_PTR:
            return value
        return self._builder.bitcast(value, I8_PTR)

    # -------------------------------------------------------------------
    # Program
    # -------------------------------------------------------------------

    def lower(self, program: Program) -> llvm_ir.Module:
        self._modules = dict(program.modules)
        self._checks_exceptions = _contains_try(program.statements)
        entry_statements: list[Statement] = []
        has_main = any(isinstance(s, FunctionDef) and s.name == "main" for s in program.statements)

        for stmt in program.statements:
            self._location = stmt.location
            if isinstance(stmt, FunctionDef):
                self._emit_function_def(stmt)
            elif isinstance(stmt, ClassDef):
                self._emit_class(stmt)
            elif isinstance(stmt, (ImportStmt, PassStmt)):
                continue
            elif isinstance(stmt, VarDecl):
                self._declare_global(stmt)
                if stmt.value is not None or not has_main:
                    entry_statements.append(stmt)
            else:
                entry_statements.append(stmt)

        if has_main:
            if entry_statements:
                raise self._fail(
                    "Top-level statements are not allowed when the program defines 'main'",
                    entry_statements[0],
                )
        else:
            self._emit_entry_point(entry_statements)

        logger.debug("lowered %d functions, %d classes into module %s",
                     len(self._functions), len(self._classes), self.module.name)
        return self.module

    def _declare_global(self, stmt: VarDecl) -> None:
        """Give each top-level declaration its own global; a redeclaration shadows the earlier one."""
        llvm_t = self._llvm_type(stmt.type)
        name = self.module.get_unique_name(f"global.{stmt.name}")
        gv = llvm_ir.GlobalVariable(self.module, llvm_t, name=name)
        gv.linkage = "internal"
        gv.initializer = llvm_ir.Constant(llvm_t, None)
        self._scopes[0][stmt.name] = (gv, stmt.type)
        self._global_slots[id(stmt)] = (gv, stmt.type)

    def _emit_entry_point(self, statements: list[Statement]) -> None:
        """Synthesize ``main`` from the program's top-level statements."""
        fn = llvm_ir.Function(self.module, llvm_ir.FunctionType(I32, []), name="main")
        self._begin_function(fn, "main", VOID)
        for stmt in statements:
            if self._terminated():
                break
            self._location = stmt.location
            if isinstance(stmt, VarDecl):
                slot, typ = self._global_slots[id(stmt)]
                value = None
                if stmt.value is not None:
                    value = self._emit_expr_as(stmt.value, typ)
                    self._retain(value, typ)
                # the initializer still sees the previous declaration
                self._scopes[0][stmt.name] = (slot, typ)
                if value is not None:
                    self._builder.store(value, slot)
            else:
                self._emit_statement(stmt)
        if not self._terminated():
            self._pop_call_stack()
            self._builder.ret(llvm_ir.Constant(I32, 0))
        self._end_function()

    # -------------------------------------------------------------------
    # Functions and classes
    # -------------------------------------------------------------------

    def _check_name_available(self, name: str, node) -> None:
        if name in runtime.RUNTIME_FUNCTIONS or name in runtime.BUILTIN_FUNCTIONS:
            raise self._fail(f"'{name}' is reserved by the runtime", node)
        if name in self._functions:
            raise self._fail(f"Function '{name}' is already defined", node)

    def _declare_function(self, name: str, params: list[WadeType], return_type: WadeType) -> FunctionInfo:
        fn_type = llvm_ir.FunctionType(
            self._llvm_type(return_type),
            [self._llvm_type(p) for p in params],
        )
        info = FunctionInfo(llvm_ir.Function(self.module, fn_type, name=name), list(params), return_type)
        self._functions[name] = info
        return info

    def _begin_function(self, fn: llvm_ir.Function, name: str, return_type: WadeType) -> None:
        self._func = fn
        self._builder = llvm_ir.IRBuilder(fn.append_basic_block("entry"))
        self._return_type = return_type
        self._scopes.append({})
        self._loops = []
        self._try_frames = []
        if self.track_call_stack:
            self._call("push_call_stack", [self._cstring(name)])

    def _end_function(self) -> None:
        self._scopes.pop()
        self._builder = None
        self._func = None
        self._return_type = VOID

    def _pop_call_stack(self) -> None:
        if self.track_call_stack:
            self._call("pop_call_stack", [])

    def _emit_function_def(self, stmt: FunctionDef) -> None:
        self._check_name_available(stmt.name, stmt)
        info = self._declare_function(stmt.name, [p.type for p in stmt.params], stmt.return_type)
        self._emit_function_body(info, stmt, stmt.name)

    def _emit_function_body(self, info: FunctionInfo, stmt: FunctionDef, name: str) -> None:
        if self._func is not None:
            raise self._fail(f"Nested function definitions are not supported ('{stmt.name}')", stmt)
        self._begin_function(info.function, name, info.return_type)

        for arg, param in zip(info.function.args, stmt.params):
            arg.name = param.name
            slot = self._alloca(arg.type, name=param.name)
            self._builder.store(arg, slot)
            self._define(param.name, slot, param.type)

        for body_stmt in stmt.body:
            if self._terminated():
                break
            self._emit_statement(body_stmt)

        if not self._terminated():
            self._pop_call_stack()
            if info.return_type == VOID:
                self._builder.ret_void()
            else:
                self._builder.ret(llvm_ir.Constant(self._llvm_type(info.return_type), None))
        self._end_function()
        logger.debug("lowered function %s", name)

    def _emit_class(self, stmt: ClassDef) -> None:
        self._check_name_available(stmt.name, stmt)
        struct = self.module.context.get_identified_type(stmt.name)
        layout = ClassLayout(stmt.name, struct, [(f.name, f.type) for f in stmt.fields])
        struct.set_body(*[self._llvm_type(t) for _, t in layout.fields])
        self._classes[stmt.name] = layout

        ctor = self._declare_function(stmt.name, [t for _, t in layout.fields], CustomType(stmt.name))
        methods = []
        for method in stmt.methods:
            qualified = f"{stmt.name}::{method.name}"
            methods.append((self._declare_function(
                qualified, [p.type for p in method.params], method.return_type,
            ), method, qualified))

        for info, method, qualified in methods:
            self._emit_function_body(info, method, qualified)
        self._emit_constructor(layout, ctor, has_init=any(m.name == "init" for m in stmt.methods))

    def _emit_constructor(self, layout: ClassLayout, info: FunctionInfo, has_init: bool) -> None:
        self._begin_function(info.function, layout.name, info.return_type)
        builder = self._builder
        struct_ptr = layout.struct.as_pointer()

        # sizeof via the null-GEP idiom
        end = builder.gep(llvm_ir.Constant(struct_ptr, None), [llvm_ir.Constant(I32, 1)])
        size = builder.ptrtoint(end, I64)
        allocator = "rc_alloc" if self.reference_counting else "malloc"
        raw = self._call(allocator, [size])
        obj = builder.bitcast(raw, struct_ptr, name="self")

        for i, arg in enumerate(info.function.args):
            arg.name = layout.fields[i][0]
            slot = builder.gep(obj, [llvm_ir.Constant(I32, 0), llvm_ir.Constant(I32, i)], inbounds=True)
            builder.store(arg, slot)

        if has_init:
            builder.call(self._functions[f"{layout.name}::init"].function, [obj])
            self._check_pending()

        self._pop_call_stack()
        self._builder.ret(obj)
        self._end_function()

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _emit_body(self, body: list[Statement]) -> None:
        self._scopes.append({})
        for stmt in body:
            if self._terminated():
                break
            self._emit_statement(stmt)
        self._scopes.pop()

    def _emit_statement(self, stmt: Statement) -> None:
        if stmt.location is not None:
            self._location = stmt.location

        if isinstance(stmt, VarDecl):
            self._emit_var_decl(stmt)
        elif isinstance(stmt, IfStmt):
            self._emit_if(stmt)
        elif isinstance(stmt, WhileStmt):
            self._emit_while(stmt)
        elif isinstance(stmt, ForStmt):
            self._emit_for(stmt)
        elif isinstance(stmt, ReturnStmt):
            self._emit_return(stmt)
        elif isinstance(stmt, (BreakStmt, ContinueStmt)):
            if not self._loops:
                raise self._fail("'break' or 'continue' outside of loop", stmt)
            continue_block, break_block = self._loops[-1]
            self._unwind([f for f in self._try_frames if f.loop_depth >= len(self._loops)])
            if not self._terminated():
                self._builder.branch(break_block if isinstance(stmt, BreakStmt) else continue_block)
        elif isinstance(stmt, TryStmt):
            self._emit_try(stmt)
        elif isinstance(stmt, RaiseStmt):
            self._emit_raise(stmt)
        elif isinstance(stmt, AssertStmt):
            self._emit_assert(stmt)
        elif isinstance(stmt, ExprStmt):
            self._emit_expr(stmt.expr)
        elif isinstance(stmt, (PassStmt, ImportStmt)):
            pass
        elif isinstance(stmt, (FunctionDef, ClassDef)):
            raise self._fail("Definitions are only allowed at the top level", stmt)
        else:
            raise self._fail(f"Unsupported statement {type(stmt).__name__}", stmt)

    def _emit_var_decl(self, stmt: VarDecl) -> None:
        llvm_t = self._llvm_type(stmt.type)
        slot = self._alloca(llvm_t, name=stmt.name)
        if stmt.value is not None:
            value = self._emit_expr_as(stmt.value, stmt.type)
            self._retain(value, stmt.type)
        else:
            value = llvm_ir.Constant(llvm_t, None)
        self._builder.store(value, slot)
        self._define(stmt.name, slot, stmt.type)

    def _emit_if(self, stmt: IfStmt) -> None:
        merge = self._func.append_basic_block("if.end")
        clauses = [(stmt.condition, stmt.then_body)] + list(stmt.elif_clauses)

        for i, (condition, body) in enumerate(clauses):
            cond_value, _ = self._emit_expr(condition)
            then_block = self._func.append_basic_block("if.then")
            if i < len(clauses) - 1:
                next_block = self._func.append_basic_block("if.elif")
            elif stmt.else_body is not None:
                next_block = self._func.append_basic_block("if.else")
            else:
                next_block = merge
            self._builder.cbranch(cond_value, then_block, next_block)

            self._builder.position_at_end(then_block)
            self._emit_body(body)
            if not self._terminated():
                self._builder.branch(merge)
            if next_block is not merge:
                self._builder.position_at_end(next_block)

        if stmt.else_body is not None:
            self._emit_body(stmt.else_body)
            if not self._terminated():
                self._builder.branch(merge)
        self._builder.position_at_end(merge)

    def _emit_while(self, stmt: WhileStmt) -> None:
        cond_block = self._func.append_basic_block("while.cond")
        body_block = self._func.append_basic_block("while.body")
        end_block = self._func.append_basic_block("while.end")
        self._builder.branch(cond_block)

        self._builder.position_at_end(cond_block)
        cond_value, _ = self._emit_expr(stmt.condition)
        self._builder.cbranch(cond_value, body_block, end_block)

        self._builder.position_at_end(body_block)
        self._loops.append((cond_block, end_block))
        self._emit_body(stmt.body)
        self._loops.pop()
        if not self._terminated():
            self._builder.branch(cond_block)
        self._builder.position_at_end(end_block)

    def _emit_for(self, stmt: ForStmt) -> None:
        """Desugar ``for x in xs`` into an index-counted loop over the spilled iterable."""
        builder = self._builder
        iterable, iter_type = self._emit_expr(stmt.iterable)
        if isinstance(iter_type, DictType):
            raise self._fail("Iterating over a dict is not supported: the runtime has no key iteration", stmt)

        iter_slot = self._alloca(iterable.type, name="for.iter")
        builder.store(iterable, iter_slot)
        if isinstance(iter_type, ListType):
            element_type = iter_type.element_type
            length = self._call("list_length", [iterable])
        elif iter_type == STR:
            element_type = STR
            length = self._call("str_length", [iterable])
        elif isinstance(iter_type, ArrayType):
            element_type = iter_type.element_type
            length = llvm_ir.Constant(I64, iter_type.size)
        else:
            raise self._fail(f"Cannot iterate over type {iter_type}", stmt)

        index_slot = self._alloca(I64, name=f"{stmt.variable}_idx")
        builder.store(llvm_ir.Constant(I64, 0), index_slot)

        cond_block = self._func.append_basic_block("for.cond")
        body_block = self._func.append_basic_block("for.body")
        incr_block = self._func.append_basic_block("for.incr")
        end_block = self._func.append_basic_block("for.end")
        builder.branch(cond_block)

        builder.position_at_end(cond_block)
        index = builder.load(index_slot)
        builder.cbranch(builder.icmp_signed("<", index, length), body_block, end_block)

        builder.position_at_end(body_block)
        index = builder.load(index_slot)
        if isinstance(iter_type, ListType):
            word = self._call("list_get_i64", [builder.load(iter_slot), index])
            element = self._from_word(word, element_type)
        elif iter_type == STR:
            element = self._call("str_char_at", [builder.load(iter_slot), index])
        else:
            element = builder.load(builder.gep(iter_slot, [llvm_ir.Constant(I32, 0), index], inbounds=True))

        self._scopes.append({})
        var_slot = self._alloca(self._llvm_type(element_type), name=stmt.variable)
        builder.store(element, var_slot)
        self._define(stmt.variable, var_slot, element_type)
        self._loops.append((incr_block, end_block))
        self._emit_body(stmt.body)
        self._loops.pop()
        self._scopes.pop()
        if not self._terminated():
            builder.branch(incr_block)

        builder.position_at_end(incr_block)
        next_index = builder.add(builder.load(index_slot), llvm_ir.Constant(I64, 1))
        builder.store(next_index, index_slot)
        builder.branch(cond_block)

        builder.position_at_end(end_block)

    def _emit_return(self, stmt: ReturnStmt) -> None:
        value = None
        if stmt.value is not None:
            if self._return_type == VOID:
                self._emit_expr(stmt.value)
            else:
                value = self._emit_expr_as(stmt.value, self._return_type)
        self._unwind(self._try_frames)
        if self._terminated():
            return
        self._pop_call_stack()
        if value is not None:
            self._builder.ret(value)
        else:
            self._emit_default_return()

    def _emit_default_return(self, status: int = 0) -> None:
        """Return with no value: ``status`` from main, a zero value from anything else."""
        return_type = self._func.ftype.return_type
        if return_type == I32:
            self._builder.ret(llvm_ir.Constant(I32, status))
        elif return_type == VOID_T:
            self._builder.ret_void()
        else:
            self._builder.ret(llvm_ir.Constant(return_type, None))

    def _emit_assert(self, stmt: AssertStmt) -> None:
        cond_value, _ = self._emit_expr(stmt.condition)
        fail_block = self._func.append_basic_block("assert.fail")
        ok_block = self._func.append_basic_block("assert.ok")
        self._builder.cbranch(cond_value, ok_block, fail_block)

        self._builder.position_at_end(fail_block)
        if stmt.message is not None:
            self._call("printf", [self._cstring("Assertion failed: %s\n"), self._cstring(stmt.message)])
        else:
            self._call("printf", [self._cstring("Assertion failed\n")])
        self._call("exit", [llvm_ir.Constant(I32, 1)])
        self._builder.unreachable()

        self._builder.position_at_end(ok_block)

    # -------------------------------------------------------------------
    # Exceptions
    # -------------------------------------------------------------------
    #
    # A raise records the exception with the runtime and then transfers
    # control itself: to the dispatch block of the innermost try whose body
    # encloses it, or out of the function with a zero value. When the
    # program contains a try, every call to a user function is followed by a
    # check of the current exception, so a raise in a callee reaches the
    # caller's handlers.

    def _emit_try(self, stmt: TryStmt) -> None:
        builder = self._builder
        self._call("exception_push_handler", [self._cstring(self._func.name)])
        dispatch = self._func.append_basic_block("try.dispatch")
        end = self._func.append_basic_block("try.end")
        frame = TryFrame(dispatch, stmt.finally_body, len(self._loops), list(self._try_frames))

        self._try_frames.append(frame)
        self._emit_body(stmt.body)
        frame.in_body = False
        if not self._terminated():
            self._call("exception_pop_handler", [])
            self._emit_finally(frame)
            if not self._terminated():
                builder.branch(end)

        builder.position_at_end(dispatch)
        self._call("exception_pop_handler", [])
        current = self._call("exception_get_current", [])
        for handler in stmt.handlers:
            body_block = self._func.append_basic_block("except.body")
            next_block = self._func.append_basic_block("except.next")
            if handler.exception_type is None:
                builder.branch(body_block)
            else:
                matches = self._call("exception_matches", [current, self._cstring(handler.exception_type)])
                builder.cbranch(builder.icmp_signed("!=", matches, llvm_ir.Constant(I32, 0)),
                                body_block, next_block)
            builder.position_at_end(body_block)
            self._emit_handler(frame, handler, current, end)
            builder.position_at_end(next_block)

        # no clause matched: run finally, then hand the exception outwards
        self._try_frames.pop()
        self._emit_finally_pending(frame)
        if not self._terminated():
            kind = self._call("exception_get_type", [current])
            message = self._call("exception_get_message", [current])
            self._call("exception_clear", [])
            self._raise(kind, message, stmt)
        builder.position_at_end(end)

    def _emit_handler(self, frame: TryFrame, handler: ExceptClause,
                      current: llvm_ir.Value, end: llvm_ir.Block) -> None:
        builder = self._builder
        self._call("exception_set_current", [llvm_ir.Constant(I8_PTR, None)])
        self._scopes.append({})
        if handler.name is not None:
            slot = self._alloca(I8_PTR, name=handler.name)
            builder.store(current, slot)
            self._define(handler.name, slot, EXCEPTION)
        for stmt in handler.body:
            if self._terminated():
                break
            self._emit_statement(stmt)
        self._scopes.pop()
        if self._terminated():
            return
        # the handled exception is released before leaving the clause
        self._call("exception_set_current", [current])
        self._call("exception_clear", [])
        self._emit_finally(frame)
        if not self._terminated():
            builder.branch(end)

    def _emit_raise(self, stmt: RaiseStmt) -> None:
        message = self._emit_expr_as(stmt.message, STR)
        self._raise(self._cstring(stmt.exception_type), message, stmt)

    def _raise(self, kind: llvm_ir.Value, message: llvm_ir.Value, node) -> None:
        loc = node.location or self._location
        self._call("exception_raise", [
            kind,
            message,
            self._cstring(loc.file if loc else self.module.name),
            llvm_ir.Constant(I64, loc.line if loc else 0),
        ])
        self._propagate()

    def _propagate(self) -> None:
        """Leave the current block with an exception pending."""
        for frame in reversed(list(self._try_frames)):
            if frame.in_body:
                self._builder.branch(frame.dispatch)
                return
            self._emit_finally_pending(frame)
            if self._terminated():
                return
        self._pop_call_stack()
        self._emit_default_return(status=1)

    def _check_pending(self) -> None:
        if not self._checks_exceptions:
            return
        builder = self._builder
        current = self._call("exception_get_current", [])
        raised = builder.icmp_unsigned("!=", current, llvm_ir.Constant(I8_PTR, None))
        raised_block = self._func.append_basic_block("call.raised")
        ok_block = self._func.append_basic_block("call.ok")
        builder.cbranch(raised, raised_block, ok_block)
        builder.position_at_end(raised_block)
        self._propagate()
        builder.position_at_end(ok_block)

    def _emit_finally(self, frame: TryFrame) -> None:
        """Inline ``frame``'s finally body with only its enclosing try statements active."""
        if frame.finally_body is None:
            return
        saved = self._try_frames
        self._try_frames = list(frame.outer)
        self._emit_body(frame.finally_body)
        self._try_frames = saved

    def _emit_finally_pending(self, frame: TryFrame) -> None:
        """Run a finally body while an exception waits to propagate."""
        if frame.finally_body is None:
            return
        pending = self._call("exception_get_current", [])
        self._call("exception_set_current", [llvm_ir.Constant(I8_PTR, None)])
        self._emit_finally(frame)
        if not self._terminated():
            self._call("exception_set_current", [pending])

    def _unwind(self, frames: list[TryFrame]) -> None:
        """Leave ``frames`` (outermost first) for a return, break or continue."""
        for frame in reversed(list(frames)):
            if frame.in_body:
                self._call("exception_pop_handler", [])
            self._emit_finally(frame)
            if self._terminated():
                return

    # -------------------------------------------------------------------
    # Reference counting
    # -------------------------------------------------------------------

    def _retain(self, value: llvm_ir.Value, typ: WadeType) -> None:
        if self.reference_counting and is_reference(typ):
            self._call("rc_retain", [self._as_i8_ptr(value)])

    def _release(self, value: llvm_ir.Value, typ: WadeType) -> None:
        # rc_release ignores null handles
        if self.reference_counting and is_reference(typ):
            self._call("rc_release", [self._as_i8_ptr(value)])

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _emit_expr_as(self, expr: Expr, expected: WadeType) -> llvm_ir.Value:
        """Lower ``expr`` where a value of type ``expected`` is required."""
        if isinstance(expected, OptionalType) and isinstance(expr, (ListLiteral, DictLiteral)):
            return self._emit_expr_as(expr, expected.inner)
        if isinstance(expr, ListLiteral):
            if isinstance(expected, ArrayType):
                return self._emit_array_literal(expr.elements, expected)
            if isinstance(expected, ListType):
                return self._fill_list(expr.elements, expected.element_type)
        if isinstance(expr, DictLiteral) and isinstance(expected, DictType):
            return self._fill_dict(expr.pairs, expected)
        value, actual = self._emit_expr(expr)
        return self._coerce(value, actual, expected)

    def _emit_expr(self, expr: Expr) -> Typed:
        builder = self._builder
        if isinstance(expr, IntLiteral):
            return llvm_ir.Constant(I64, expr.value), INT
        if isinstance(expr, FloatLiteral):
            return llvm_ir.Constant(DOUBLE, expr.value), FLOAT
        if isinstance(expr, BoolLiteral):
            return llvm_ir.Constant(I1, int(expr.value)), BOOL
        if isinstance(expr, StringLiteral):
            return self._cstring(expr.value), STR
        if isinstance(expr, NoneLiteral):
            return llvm_ir.Constant(I8_PTR, None), VOID
        if isinstance(expr, Identifier):
            entry = self._lookup(expr.name)
            if entry is None:
                raise self._fail(f"Undefined variable '{expr.name}'", expr)
            slot, typ = entry
            return builder.load(slot, name=expr.name), typ
        if isinstance(expr, BinaryOp):
            return self._emit_binary(expr)
        if isinstance(expr, UnaryOp):
            return self._emit_unary(expr)
        if isinstance(expr, Call):
            return self._emit_call(expr)
        if isinstance(expr, MethodCall):
            return self._emit_method_call(expr)
        if isinstance(expr, MemberAccess):
            return self._emit_member_access(expr)
        if isinstance(expr, Index):
            return self._emit_index(expr)
        if isinstance(expr, Assignment):
            return self._emit_assignment(expr)
        if isinstance(expr, IndexAssignment):
            return self._emit_index_assignment(expr)
        if isinstance(expr, ListLiteral):
            return self._emit_list_literal(expr)
        if isinstance(expr, DictLiteral):
            return self._emit_dict_literal(expr)
        if isinstance(expr, FString):
            return self._emit_fstring(expr), STR
        raise self._fail(f"Unsupported expression {type(expr).__name__}", expr)

    def _emit_binary(self, expr: BinaryOp) -> Typed:
        op = expr.op
        if op == "**":
            raise self._fail("Power operator not yet implemented", expr)

        builder = self._builder
        left, left_type = self._emit_expr(expr.left)
        right, right_type = self._emit_expr(expr.right)

        if op == "and":
            return builder.and_(left, right), BOOL
        if op == "or":
            return builder.or_(left, right), BOOL

        if VOID in (left_type, right_type) and op in _INT_COMPARE:
            # None against a handle: compare the pointer with null
            return builder.icmp_unsigned(op, self._as_i8_ptr(left), self._as_i8_ptr(right)), BOOL

        if unwrap_optional(left_type) == STR and unwrap_optional(right_type) == STR:
            if op == "+":
                return self._concat(left, right), STR
            if op in _INT_COMPARE:
                cmp = self._call("strcmp", [left, right])
                return builder.icmp_signed(op, cmp, llvm_ir.Constant(I32, 0)), BOOL
            raise self._fail(f"Invalid operands for '{op}': str and str", expr)

        if FLOAT in (left_type, right_type):
            left = self._coerce(left, left_type, FLOAT)
            right = self._coerce(right, right_type, FLOAT)
            if op in _INT_COMPARE:
                return builder.fcmp_ordered(op, left, right), BOOL
            if op == "+":
                return builder.fadd(left, right), FLOAT
            if op == "-":
                return builder.fsub(left, right), FLOAT
            if op == "*":
                return builder.fmul(left, right), FLOAT
            if op == "/":
                return builder.fdiv(left, right), FLOAT
            raise self._fail(f"Invalid operands for '{op}': {left_type} and {right_type}", expr)

        if op in _INT_COMPARE:
            # bools order False < True, so only ints compare signed
            if left_type == INT:
                return builder.icmp_signed(op, left, right), BOOL
            return builder.icmp_unsigned(op, left, right), BOOL
        if op == "+":
            return builder.add(left, right), INT
        if op == "-":
            return builder.sub(left, right), INT
        if op == "*":
            return builder.mul(left, right), INT
        if op in ("/", "//"):
            return builder.sdiv(left, right), INT
        if op == "%":
            return builder.srem(left, right), INT
        raise self._fail(f"Unknown operator '{op}'", expr)

    def _emit_unary(self, expr: UnaryOp) -> Typed:
        value, typ = self._emit_expr(expr.operand)
        if expr.op == "not":
            return self._builder.xor(value, llvm_ir.Constant(I1, 1)), BOOL
        if typ == FLOAT:
            return self._builder.fneg(value), FLOAT
        return self._builder.neg(value), INT

    def _concat(self, left: llvm_ir.Value, right: llvm_ir.Value) -> llvm_ir.Value:
        builder = self._builder
        left_len = self._call("strlen", [left])
        right_len = self._call("strlen", [right])
        total = builder.add(builder.add(left_len, right_len), llvm_ir.Constant(I64, 1))
        buffer = self._call("malloc", [total])
        self._call("strcpy", [buffer, left])
        self._call("strcat", [buffer, right])
        return buffer

    # -- calls ----------------------------------------------------------

    def _emit_arguments(self, args: list[Expr], params: list[WadeType]) -> list[llvm_ir.Value]:
        return [self._emit_expr_as(arg, param) for arg, param in zip(args, params)]

    def _emit_call(self, expr: Call) -> Typed:
        name = expr.name
        if name in runtime.SYNTHESIZED_BUILTINS:
            params, _ = runtime.BUILTIN_FUNCTIONS[name]
            self._builder.call(self._print_builtin(name), self._emit_arguments(expr.args, params))
            return None, VOID
        if name == "range":
            return self._emit_range(expr), ListType(INT)
        if name in runtime.BUILTIN_FUNCTIONS:
            params, ret = runtime.BUILTIN_FUNCTIONS[name]
            result = self._call(name, self._emit_arguments(expr.args, params))
            return (None, VOID) if ret == VOID else (result, ret)

        info = self._functions.get(name)
        if info is None:
            raise self._fail(f"Undefined function '{name}'", expr)
        return self._call_function(info, self._emit_arguments(expr.args, info.params))

    def _call_function(self, info: FunctionInfo, args: list[llvm_ir.Value]) -> Typed:
        result = self._builder.call(info.function, args)
        self._check_pending()
        if info.return_type == VOID:
            return None, VOID
        return result, info.return_type

    def _print_builtin(self, name: str) -> llvm_ir.Function:
        """Emit (once) the printf-based body of a print_* built-in."""
        existing = self.module.globals.get(name)
        if isinstance(existing, llvm_ir.Function):
            return existing
        params, _ = runtime.BUILTIN_FUNCTIONS[name]
        fn = llvm_ir.Function(self.module, llvm_ir.FunctionType(VOID_T, [self._llvm_type(params[0])]), name=name)
        fn.linkage = "internal"
        builder = llvm_ir.IRBuilder(fn.append_basic_block("entry"))
        printf = self._runtime("printf")
        arg = fn.args[0]
        if name == "print_bool":
            text = builder.select(arg, self._cstring("True\n"), self._cstring("False\n"))
            builder.call(printf, [text])
        else:
            builder.call(printf, [self._cstring(_PRINT_FORMATS[name]), arg])
        builder.ret_void()
        return fn

    def _emit_range(self, expr: Call) -> llvm_ir.Value:
        builder = self._builder
        limit = self._emit_expr_as(expr.args[0], INT)
        result = self._call("list_create_i64", [])
        counter = self._alloca(I64, name="range.i")
        builder.store(llvm_ir.Constant(I64, 0), counter)

        cond_block = self._func.append_basic_block("range.cond")
        body_block = self._func.append_basic_block("range.body")
        end_block = self._func.append_basic_block("range.end")
        builder.branch(cond_block)

        builder.position_at_end(cond_block)
        i = builder.load(counter)
        builder.cbranch(builder.icmp_signed("<", i, limit), body_block, end_block)

        builder.position_at_end(body_block)
        i = builder.load(counter)
        self._call("list_push_i64", [result, i])
        builder.store(builder.add(i, llvm_ir.Constant(I64, 1)), counter)
        builder.branch(cond_block)

        builder.position_at_end(end_block)
        return result

    def _is_module(self, expr: Expr) -> bool:
        return isinstance(expr, Identifier) and expr.name in self._modules and self._lookup(expr.name) is None

    def _emit_method_call(self, expr: MethodCall) -> Typed:
        if self._is_module(expr.object):
            info = self._functions.get(expr.method)
            if info is None or expr.method not in self._modules[expr.object.name]:
                raise self._fail(f"Module '{expr.object.name}' has no function '{expr.method}'", expr)
            return self._call_function(info, self._emit_arguments(expr.args, info.params))

        builder = self._builder
        obj, obj_type = self._emit_expr(expr.object)
        obj_type = unwrap_optional(obj_type)
        method = expr.method

        if isinstance(obj_type, ListType):
            element = obj_type.element_type
            if method == "push":
                value = self._emit_expr_as(expr.args[0], element)
                self._call("list_push_i64", [obj, self._to_word(value, element)])
                return None, VOID
            if method == "pop":
                return self._from_word(self._call("list_pop_i64", [obj]), element), element
            if method == "get":
                index = self._emit_expr_as(expr.args[0], INT)
                return self._from_word(self._call("list_get_i64", [obj, index]), element), element
        elif obj_type == STR:
            if method in ("upper", "lower"):
                return self._call(f"str_{method}", [obj]), STR
            if method == "contains":
                needle = self._emit_expr_as(expr.args[0], STR)
                found = self._call("str_contains", [obj, needle])
                return builder.icmp_signed("!=", found, llvm_ir.Constant(I32, 0)), BOOL
        elif isinstance(obj_type, DictType):
            if method == "has":
                key = self._emit_dict_key(expr.args[0], obj_type)
                found = self._call("dict_has", [obj, key])
                return builder.icmp_signed("!=", found, llvm_ir.Constant(I32, 0)), BOOL
        elif isinstance(obj_type, CustomType):
            info = self._functions.get(f"{obj_type.name}::{method}")
            if info is None:
                raise self._fail(f"Class '{obj_type.name}' has no method '{method}'", expr)
            args = [obj] + self._emit_arguments(expr.args, info.params[1:])
            return self._call_function(info, args)

        raise self._fail(f"Type {obj_type} has no method '{method}'", expr)

    # -- members, indexing, assignment ----------------------------------

    def _field_slot(self, obj: llvm_ir.Value, obj_type: WadeType, member: str, node) -> tuple[llvm_ir.Value, WadeType]:
        layout = self._classes.get(obj_type.name)
        index = layout.index_of(member) if layout else -1
        if index < 0:
            raise self._fail(f"Class '{obj_type.name}' has no field '{member}'", node)
        slot = self._builder.gep(obj, [llvm_ir.Constant(I32, 0), llvm_ir.Constant(I32, index)], inbounds=True)
        return slot, layout.fields[index][1]

    def _emit_member_access(self, expr: MemberAccess) -> Typed:
        obj, obj_type = self._emit_expr(expr.object)
        obj_type = unwrap_optional(obj_type)
        if obj_type == EXCEPTION and expr.member in ("type", "message"):
            return self._call(f"exception_get_{expr.member}", [obj]), STR
        if isinstance(obj_type, CustomType):
            slot, field_type = self._field_slot(obj, obj_type, expr.member, expr)
            return self._builder.load(slot, name=expr.member), field_type
        if expr.member == "length":
            if isinstance(obj_type, ListType):
                return self._call("list_length", [obj]), INT
            if isinstance(obj_type, DictType):
                return self._call("dict_length", [obj]), INT
            if obj_type == STR:
                return self._call("str_length", [obj]), INT
            if isinstance(obj_type, ArrayType):
                return llvm_ir.Constant(I64, obj_type.size), INT
        raise self._fail(f"Type {obj_type} has no member '{expr.member}'", expr)

    def _emit_dict_key(self, key_expr: Expr, dict_type: DictType) -> llvm_ir.Value:
        if dict_type.key_type != STR:
            raise self._fail(f"Dictionary keys must be str, got {dict_type.key_type}", key_expr)
        return self._emit_expr_as(key_expr, STR)

    def _array_slot(self, expr: Expr, array_type: ArrayType, value: llvm_ir.Value) -> llvm_ir.Value:
        """Address of an array: its variable slot when named, else a spilled temporary."""
        if isinstance(expr, Identifier):
            entry = self._lookup(expr.name)
            if entry is not None:
                return entry[0]
        slot = self._alloca(value.type, name="array.tmp")
        self._builder.store(value, slot)
        return slot

    def _emit_index(self, expr: Index) -> Typed:
        obj, obj_type = self._emit_expr(expr.object)
        obj_type = unwrap_optional(obj_type)
        if isinstance(obj_type, DictType):
            key = self._emit_dict_key(expr.index, obj_type)
            word = self._call("dict_get", [obj, key])
            return self._from_word(word, obj_type.value_type), obj_type.value_type

        index = self._emit_expr_as(expr.index, INT)
        if isinstance(obj_type, ListType):
            word = self._call("list_get_i64", [obj, index])
            return self._from_word(word, obj_type.element_type), obj_type.element_type
        if obj_type == STR:
            return self._call("str_char_at", [obj, index]), STR
        if isinstance(obj_type, ArrayType):
            slot = self._array_slot(expr.object, obj_type, obj)
            element_ptr = self._builder.gep(slot, [llvm_ir.Constant(I32, 0), index], inbounds=True)
            return self._builder.load(element_ptr), obj_type.element_type
        raise self._fail(f"Cannot index into type {obj_type}", expr)

    def _emit_assignment(self, expr: Assignment) -> Typed:
        target = expr.target
        if isinstance(target, Identifier):
            entry = self._lookup(target.name)
            if entry is None:
                raise self._fail(f"Undefined variable '{target.name}'", target)
            slot, typ = entry
        elif isinstance(target, MemberAccess):
            obj, obj_type = self._emit_expr(target.object)
            obj_type = unwrap_optional(obj_type)
            if not isinstance(obj_type, CustomType):
                raise self._fail(f"Cannot assign to member '{target.member}' of type {obj_type}", target)
            slot, typ = self._field_slot(obj, obj_type, target.member, target)
        else:
            raise self._fail("Invalid assignment target", expr)

        value = self._emit_expr_as(expr.value, typ)
        if self.reference_counting and is_reference(typ):
            previous = self._builder.load(slot)
            self._retain(value, typ)
            self._release(previous, typ)
        self._builder.store(value, slot)
        return value, typ

    def _emit_index_assignment(self, expr: IndexAssignment) -> Typed:
        obj, obj_type = self._emit_expr(expr.object)
        obj_type = unwrap_optional(obj_type)
        if isinstance(obj_type, DictType):
            key = self._emit_dict_key(expr.index, obj_type)
            value = self._emit_expr_as(expr.value, obj_type.value_type)
            self._call("dict_set", [obj, key, self._to_word(value, obj_type.value_type)])
            return value, obj_type.value_type

        index = self._emit_expr_as(expr.index, INT)
        if isinstance(obj_type, ListType):
            value = self._emit_expr_as(expr.value, obj_type.element_type)
            self._call("list_set_i64", [obj, index, self._to_word(value, obj_type.element_type)])
            return value, obj_type.element_type
        if isinstance(obj_type, ArrayType):
            value = self._emit_expr_as(expr.value, obj_type.element_type)
            slot = self._array_slot(expr.object, obj_type, obj)
            element_ptr = self._builder.gep(slot, [llvm_ir.Constant(I32, 0), index], inbounds=True)
            self._builder.store(value, element_ptr)
            return value, obj_type.element_type
        raise self._fail(f"Cannot assign by index into type {obj_type}", expr)

    # -- literals -------------------------------------------------------

    def _fill_list(self, elements: list[Expr], element_type: WadeType) -> llvm_ir.Value:
        handle = self._call("list_create_i64", [])
        for element in elements:
            value = self._emit_expr_as(element, element_type)
            self._call("list_push_i64", [handle, self._to_word(value, element_type)])
        return handle

    def _fill_dict(self, pairs: list[tuple[Expr, Expr]], dict_type: DictType) -> llvm_ir.Value:
        if dict_type.key_type != STR:
            raise self._fail(f"Dictionary keys must be str, got {dict_type.key_type}")
        handle = self._call("dict_create", [])
        for key_expr, value_expr in pairs:
            key = self._emit_expr_as(key_expr, STR)
            value = self._emit_expr_as(value_expr, dict_type.value_type)
            self._call("dict_set", [handle, key, self._to_word(value, dict_type.value_type)])
        return handle

    def _emit_list_literal(self, expr: ListLiteral) -> Typed:
        if not expr.elements:
            raise self._fail("Cannot infer type of empty list literal", expr)
        handle = self._call("list_create_i64", [])
        element_type: Optional[WadeType] = None
        for element in expr.elements:
            if element_type is None:
                value, element_type = self._emit_expr(element)
            else:
                value = self._emit_expr_as(element, element_type)
            self._call("list_push_i64", [handle, self._to_word(value, element_type)])
        return handle, ListType(element_type)

    def _emit_array_literal(self, elements: list[Expr], array_type: ArrayType) -> llvm_ir.Value:
        aggregate = llvm_ir.Constant(self._llvm_type(array_type), None)
        for i, element in enumerate(elements):
            value = self._emit_expr_as(element, array_type.element_type)
            aggregate = self._builder.insert_value(aggregate, value, i)
        return aggregate

    def _emit_dict_literal(self, expr: DictLiteral) -> Typed:
        if not expr.pairs:
            raise self._fail("Cannot infer type of empty dict literal", expr)
        handle = self._call("dict_create", [])
        dict_type: Optional[DictType] = None
        for key_expr, value_expr in expr.pairs:
            key, key_type = self._emit_expr(key_expr)
            if key_type != STR:
                raise self._fail(f"Dictionary keys must be str, got {key_type}", key_expr)
            if dict_type is None:
                value, value_type = self._emit_expr(value_expr)
                dict_type = DictType(STR, value_type)
            else:
                value = self._emit_expr_as(value_expr, dict_type.value_type)
            self._call("dict_set", [handle, key, self._to_word(value, dict_type.value_type)])
        return handle, dict_type

    def _emit_fstring(self, expr: FString) -> llvm_ir.Value:
        """Render each piece, then copy them into one buffer sized from their lengths."""
        builder = self._builder
        # (text, byte length when known at compile time)
        pieces: list[tuple[llvm_ir.Value, Optional[int]]] = []
        scratch: list[llvm_ir.Value] = []

        for i, part in enumerate(expr.parts):
            if part:
                pieces.append((self._cstring(part), len(part.encode("utf-8"))))
            if i >= len(expr.expressions):
                continue
            value, typ = self._emit_expr(expr.expressions[i])
            if unwrap_optional(typ) == STR:
                text = value
                if isinstance(typ, OptionalType):
                    is_null = builder.icmp_unsigned("==", value, llvm_ir.Constant(I8_PTR, None))
                    text = builder.select(is_null, self._cstring("None"), value)
            elif typ == BOOL:
                text = builder.select(value, self._cstring("True"), self._cstring("False"))
            elif typ in (INT, FLOAT):
                size = llvm_ir.Constant(I64, FORMAT_BUFFER_SIZE)
                text = self._call("malloc", [size])
                fmt = "%lld" if typ == INT else "%g"
                self._call("snprintf", [text, size, self._cstring(fmt), value])
                scratch.append(text)
            else:
                raise self._fail(f"Cannot interpolate value of type {typ} in f-string", expr.expressions[i])
            pieces.append((text, None))

        total = llvm_ir.Constant(I64, 1 + sum(size for _, size in pieces if size is not None))
        for text, size in pieces:
            if size is None:
                total = builder.add(total, self._call("strlen", [text]))
        buffer = self._call("malloc", [total])
        builder.store(llvm_ir.Constant(I8, 0), buffer)
        for text, _ in pieces:
            self._call("strcat", [buffer, text])
        for text in scratch:
            self._call("free", [text])
        return buffer


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def lower(program: Program, config=None) -> llvm_ir.Module:
    """Lower a type-checked program to an LLVM module.

    ``config`` is a ``CompilerConfig`` (or None for defaults); only its
    code generation switches are consulted here.
    """
    codegen = CodeGen(
        module_name=program.filename,
        track_call_stack=getattr(config, "track_call_stack", True),
        reference_counting=getattr(config, "reference_counting", False),
    )
    return codegen.lower(program)
