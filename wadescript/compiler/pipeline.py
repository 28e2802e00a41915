"""WadeScript compilation pipeline: lex -> parse -> check -> lower.

Each stage raises ``CompileError`` on its first failure; no stage runs on the
output of a failed one.
"""

from __future__ import annotations

import logging
from typing import Optional

from llvmlite import ir as llvm_ir

from wadescript.compiler.ast_nodes import Program
from wadescript.compiler.parser import parse
from wadescript.compiler.typechecker import check
from wadescript.compiler.codegen import lower
from wadescript.errors import CompileError, WadeError

logger = logging.getLogger(__name__)


def check_program(program: Program) -> None:
    errors = check(program)
    if errors:
        raise CompileError(errors)


def compile_program(program: Program, config=None) -> llvm_ir.Module:
    """Type check and lower an already-parsed (and import-resolved) program."""
    check_program(program)
    module = lower(program, config)
    logger.debug("compiled %s", program.filename)
    return module


def compile_source(source: str, filename: str = "<stdin>", config=None) -> llvm_ir.Module:
    """Compile WadeScript source text to an LLVM module. Imports are not resolved."""
    return compile_program(parse(source, filename), config)


def check_source(source: str, filename: str = "<stdin>") -> list[WadeError]:
    """Parse and type check source text. Returns [] or the single first error."""
    try:
        program = parse(source, filename)
    except CompileError as e:
        return e.errors
    return check(program)


def compile_file(path: str, config=None) -> llvm_ir.Module:
    """Compile a source file, resolving its imports through the loader."""
    from wadescript.loader import load_program

    std_path: Optional[str] = getattr(config, "std_path", "") or None
    return compile_program(load_program(path, std_path=std_path), config)
