"""WadeScript CLI — Command-line interface for the WadeScript compiler.

Commands:
  wadescript compile <file.ws>       — Compile to an executable (or --emit llvm|asm|obj)
  wadescript check <file.ws>         — Parse and type check only
  wadescript ir <file.ws>            — Print the generated LLVM IR
  wadescript tokens <file.ws>        — Print the token stream (JSON)
  wadescript runtime                 — List the runtime call contract (JSON)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from wadescript import __version__
from wadescript.config import CompilerConfig, EMIT_KINDS, load_config
from wadescript.compiler.lexer import tokenize
from wadescript.compiler.pipeline import compile_file
from wadescript.compiler.runtime import runtime_functions
from wadescript.compiler import backend
from wadescript.loader import load_program
from wadescript.compiler.typechecker import check
from wadescript.errors import CompileError

logger = logging.getLogger(__name__)


def _configure_logging(args: argparse.Namespace, config: Optional[CompilerConfig] = None) -> None:
    level = "DEBUG" if getattr(args, "verbose", False) else (config.log_level if config else "WARNING")
    logging.basicConfig(stream=sys.stderr, level=getattr(logging, level.upper(), logging.WARNING),
                        format="%(levelname)s %(name)s: %(message)s")


def _file_missing(path: str) -> bool:
    if os.path.exists(path) or os.path.exists(path + ".ws"):
        return False
    print(json.dumps({"error": f"File not found: {path}"}))
    return True


def _build_config(args: argparse.Namespace) -> CompilerConfig:
    """Config file values, overridden by explicit command-line flags."""
    config = load_config(getattr(args, "config", None), start_dir=os.path.dirname(os.path.abspath(args.file)))
    if getattr(args, "emit", None):
        config.emit = args.emit
    if getattr(args, "output", None):
        config.output = args.output
    if getattr(args, "opt_level", None) is not None:
        config.opt_level = args.opt_level
    if getattr(args, "no_call_stack", False):
        config.track_call_stack = False
    if getattr(args, "refcount", False):
        config.reference_counting = True
    if getattr(args, "runtime_lib", None):
        config.runtime_library = args.runtime_lib
    return config


def cmd_compile(args: argparse.Namespace) -> int:
    """Compile a WadeScript source file."""
    if _file_missing(args.file):
        return 1
    try:
        config = _build_config(args)
        _configure_logging(args, config)
        module = compile_file(args.file, config)
        llvm_ir_str = str(module)

        stem = os.path.splitext(args.file)[0]
        if config.emit == "llvm":
            output = config.output or stem + ".ll"
            with open(output, "w") as f:
                f.write(llvm_ir_str)
        elif config.emit == "asm":
            output = config.output or stem + ".s"
            with open(output, "w") as f:
                f.write(backend.compile_to_assembly(llvm_ir_str, config.opt_level))
        elif config.emit == "obj":
            output = config.output or stem + ".o"
            with open(output, "wb") as f:
                f.write(backend.compile_to_object(llvm_ir_str, config.opt_level))
        else:
            output = backend.build_executable(
                llvm_ir_str, config.output or stem, config.opt_level,
                config.runtime_library, config.linker,
            )
    except CompileError as e:
        print(e.to_json())
        return 1

    logger.debug("wrote %s", output)
    print(json.dumps({"status": "compiled", "emit": config.emit, "path": output}))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Parse, resolve imports and type check; prints [] on success."""
    _configure_logging(args)
    if _file_missing(args.file):
        return 1
    try:
        errors = check(load_program(args.file))
    except CompileError as e:
        errors = e.errors
    print(json.dumps([e.to_dict() for e in errors], indent=2))
    return 1 if errors else 0


def cmd_ir(args: argparse.Namespace) -> int:
    """Print the LLVM IR for a source file."""
    if _file_missing(args.file):
        return 1
    try:
        config = _build_config(args)
        _configure_logging(args, config)
        module = compile_file(args.file, config)
    except CompileError as e:
        print(e.to_json())
        return 1
    print(str(module))
    return 0


def cmd_tokens(args: argparse.Namespace) -> int:
    """Print the token stream as JSON."""
    _configure_logging(args)
    if _file_missing(args.file):
        return 1
    path = args.file if os.path.exists(args.file) else args.file + ".ws"
    with open(path, "r") as f:
        source = f.read()
    try:
        tokens = tokenize(source, filename=args.file)
    except CompileError as e:
        print(e.to_json())
        return 1
    print(json.dumps([
        {"type": t.type.name, "value": t.value, "line": t.location.line, "column": t.location.column}
        for t in tokens
    ], indent=2))
    return 0


def cmd_runtime(args: argparse.Namespace) -> int:
    """List the runtime functions generated code may call."""
    _configure_logging(args)
    entries = [
        {"name": fn.name, "group": fn.group, "returns": fn.returns,
         "params": list(fn.params), "var_arg": fn.var_arg}
        for fn in runtime_functions(args.group or None)
    ]
    print(json.dumps(entries, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="wadescript",
        description="WadeScript — statically typed, Python-flavored language compiled via LLVM",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # compile
    p_compile = subparsers.add_parser("compile", help="Compile WadeScript source")
    p_compile.add_argument("file", help="WadeScript source file (.ws)")
    p_compile.add_argument("-o", "--output", help="Output path")
    p_compile.add_argument("--emit", choices=EMIT_KINDS, help="Output kind (default: exe)")
    p_compile.add_argument("-O", type=int, choices=[0, 1, 2, 3], dest="opt_level", help="Optimization level")
    p_compile.add_argument("--no-call-stack", action="store_true", dest="no_call_stack",
                           help="Do not emit push_call_stack/pop_call_stack calls")
    p_compile.add_argument("--refcount", action="store_true", help="Emit rc_retain/rc_release on reference assignments")
    p_compile.add_argument("--runtime-lib", dest="runtime_lib", help="Runtime library to link against")
    p_compile.add_argument("--config", help="Config file (default: nearest .wadescriptrc.yml)")
    p_compile.set_defaults(func=cmd_compile)

    # check
    p_check = subparsers.add_parser("check", help="Type check a source file")
    p_check.add_argument("file", help="WadeScript source file (.ws)")
    p_check.set_defaults(func=cmd_check)

    # ir
    p_ir = subparsers.add_parser("ir", help="Print generated LLVM IR")
    p_ir.add_argument("file", help="WadeScript source file (.ws)")
    p_ir.add_argument("--no-call-stack", action="store_true", dest="no_call_stack",
                      help="Do not emit push_call_stack/pop_call_stack calls")
    p_ir.add_argument("--refcount", action="store_true", help="Emit rc_retain/rc_release on reference assignments")
    p_ir.add_argument("--config", help="Config file (default: nearest .wadescriptrc.yml)")
    p_ir.set_defaults(func=cmd_ir)

    # tokens
    p_tokens = subparsers.add_parser("tokens", help="Print the token stream")
    p_tokens.add_argument("file", help="WadeScript source file (.ws)")
    p_tokens.set_defaults(func=cmd_tokens)

    # runtime
    p_runtime = subparsers.add_parser("runtime", help="List the runtime call contract")
    p_runtime.add_argument("--group", help="Only list one group (list, dict, string, rc, file, ...)")
    p_runtime.set_defaults(func=cmd_runtime)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
