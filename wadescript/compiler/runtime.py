"""Runtime call contract.

The code generator never implements containers, strings, reference counting,
exceptions or file I/O itself; it emits calls against the fixed signatures
below. A native build links them from the runtime library, a JIT session
registers them with ``llvmlite.binding.add_symbol``.

Runtime values cross the boundary as 64-bit words (``i64``) or opaque
pointers (``ptr``, lowered as ``i8*``). Contract guarantees the code generator
relies on:
  - ``dict_get`` on a missing key returns 0;
  - ``list_get_i64`` outside the list bounds returns 0;
  - ``str_*`` results are freshly allocated, null-terminated strings;
  - ``rc_retain`` and ``rc_release`` ignore null handles;
  - ``exception_raise`` records the exception as current and returns when a
    handler pushed by ``exception_push_handler`` is active, leaving that
    handler on the stack; with no active handler it reports the exception
    and exits the process;
  - ``exception_matches`` compares type names exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from llvmlite import ir as llvm_ir

from wadescript.compiler.types import WadeType, ListType, INT, FLOAT, BOOL, STR, VOID
from wadescript.errors import CompileError, codegen_error


@dataclass(frozen=True)
class RuntimeFunction:
    name: str
    returns: str
    params: tuple[str, ...] = ()
    group: str = ""
    var_arg: bool = False


def _group(group: str, *entries: tuple) -> list[RuntimeFunction]:
    out = []
    for entry in entries:
        name, returns, params = entry[:3]
        var_arg = entry[3] if len(entry) > 3 else False
        out.append(RuntimeFunction(name, returns, tuple(params), group, var_arg))
    return out


_CONTRACT: list[RuntimeFunction] = [
    *_group(
        "list",
        ("list_create_i64", "ptr", []),
        ("list_push_i64", "void", ["ptr", "i64"]),
        ("list_get_i64", "i64", ["ptr", "i64"]),
        ("list_set_i64", "void", ["ptr", "i64", "i64"]),
        ("list_pop_i64", "i64", ["ptr"]),
        ("list_length", "i64", ["ptr"]),
    ),
    *_group(
        "dict",
        ("dict_create", "ptr", []),
        ("dict_set", "void", ["ptr", "ptr", "i64"]),
        ("dict_get", "i64", ["ptr", "ptr"]),
        ("dict_has", "i32", ["ptr", "ptr"]),
        ("dict_length", "i64", ["ptr"]),
    ),
    *_group(
        "string",
        ("str_length", "i64", ["ptr"]),
        ("str_upper", "ptr", ["ptr"]),
        ("str_lower", "ptr", ["ptr"]),
        ("str_contains", "i32", ["ptr", "ptr"]),
        ("str_char_at", "ptr", ["ptr", "i64"]),
    ),
    *_group(
        "rc",
        ("rc_alloc", "ptr", ["i64"]),
        ("rc_retain", "void", ["ptr"]),
        ("rc_release", "void", ["ptr"]),
        ("rc_get_count", "i64", ["ptr"]),
        ("rc_is_valid", "i32", ["ptr"]),
    ),
    *_group(
        "file",
        ("file_open", "i64", ["ptr", "ptr"]),
        ("file_read", "ptr", ["i64"]),
        ("file_read_line", "ptr", ["i64"]),
        ("file_write", "void", ["i64", "ptr"]),
        ("file_close", "void", ["i64"]),
        ("file_exists", "i64", ["ptr"]),
    ),
    *_group(
        "exception",
        ("exception_create", "ptr", ["ptr", "ptr", "ptr", "i64"]),
        ("exception_raise", "void", ["ptr", "ptr", "ptr", "i64"]),
        ("exception_get_current", "ptr", []),
        ("exception_set_current", "void", ["ptr"]),
        ("exception_clear", "void", []),
        ("exception_get_type", "ptr", ["ptr"]),
        ("exception_get_message", "ptr", ["ptr"]),
        ("exception_matches", "i32", ["ptr", "ptr"]),
        ("exception_push_handler", "void", ["ptr"]),
        ("exception_pop_handler", "void", []),
    ),
    *_group(
        "call_stack",
        ("push_call_stack", "void", ["ptr"]),
        ("pop_call_stack", "void", []),
    ),
    *_group(
        "libc",
        ("printf", "i32", ["ptr"], True),
        ("snprintf", "i32", ["ptr", "i64", "ptr"], True),
        ("malloc", "ptr", ["i64"]),
        ("free", "void", ["ptr"]),
        ("strlen", "i64", ["ptr"]),
        ("strcpy", "ptr", ["ptr", "ptr"]),
        ("strcat", "ptr", ["ptr", "ptr"]),
        ("strcmp", "i32", ["ptr", "ptr"]),
        ("exit", "void", ["i32"]),
    ),
]

RUNTIME_FUNCTIONS: dict[str, RuntimeFunction] = {fn.name: fn for fn in _CONTRACT}


def runtime_functions(group: Optional[str] = None) -> list[RuntimeFunction]:
    """The contract functions in declaration order, optionally restricted to one group."""
    return [fn for fn in _CONTRACT if group is None or fn.group == group]


def _llvm_kind(kind: str) -> llvm_ir.Type:
    if kind == "ptr":
        return llvm_ir.IntType(8).as_pointer()
    if kind == "void":
        return llvm_ir.VoidType()
    if kind == "double":
        return llvm_ir.DoubleType()
    return llvm_ir.IntType(int(kind[1:]))


def declare(module: llvm_ir.Module, name: str) -> llvm_ir.Function:
    """Return the declaration of runtime function ``name`` in ``module``, adding it on first use."""
    existing = module.globals.get(name)
    if isinstance(existing, llvm_ir.Function):
        return existing
    entry = RUNTIME_FUNCTIONS.get(name)
    if entry is None:
        raise CompileError(codegen_error(f"'{name}' is not part of the runtime contract"))
    fn_type = llvm_ir.FunctionType(
        _llvm_kind(entry.returns),
        [_llvm_kind(p) for p in entry.params],
        var_arg=entry.var_arg,
    )
    return llvm_ir.Function(module, fn_type, name=name)


# ---------------------------------------------------------------------------
# Built-in functions visible to WadeScript programs
# ---------------------------------------------------------------------------

BUILTIN_FUNCTIONS: dict[str, tuple[list[WadeType], WadeType]] = {
    "print_int": ([INT], VOID),
    "print_float": ([FLOAT], VOID),
    "print_str": ([STR], VOID),
    "print_bool": ([BOOL], VOID),
    "range": ([INT], ListType(INT)),
    "file_open": ([STR, STR], INT),
    "file_read": ([INT], STR),
    "file_read_line": ([INT], STR),
    "file_write": ([INT, STR], VOID),
    "file_close": ([INT], VOID),
    "file_exists": ([STR], INT),
}

# Built-ins whose bodies the code generator emits into the module itself.
SYNTHESIZED_BUILTINS = ("print_int", "print_float", "print_str", "print_bool")
