"""Native backend: verification, object/assembly emission, linking and JIT.

Thin wrapper over ``llvmlite.binding`` and the system C compiler. Everything
here takes LLVM IR text, so a module produced by ``CodeGen`` is passed as
``str(module)``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile

from llvmlite import binding as llvm_binding

from wadescript.errors import CompileError, backend_error

logger = logging.getLogger(__name__)

_initialized = False


def _initialize_llvm() -> None:
    """Initialize LLVM target machinery (once per process)."""
    global _initialized
    if _initialized:
        return
    llvm_binding.initialize_native_target()
    llvm_binding.initialize_native_asmprinter()
    _initialized = True


def _target_machine(opt_level: int = 0) -> llvm_binding.TargetMachine:
    target = llvm_binding.Target.from_default_triple()
    return target.create_target_machine(opt=opt_level)


def verify(llvm_ir_str: str) -> llvm_binding.ModuleRef:
    """Parse and verify LLVM IR; returns the parsed module."""
    _initialize_llvm()
    try:
        mod = llvm_binding.parse_assembly(llvm_ir_str)
        mod.verify()
    except RuntimeError as e:
        raise CompileError(backend_error(f"Invalid LLVM IR: {e}"))
    return mod


def _optimize(mod: llvm_binding.ModuleRef, target_machine, opt_level: int) -> None:
    if opt_level <= 0:
        return
    pto = llvm_binding.create_pipeline_tuning_options(speed_level=opt_level, size_level=0)
    pass_builder = llvm_binding.create_pass_builder(target_machine, pto)
    pass_builder.getModulePassManager().run(mod, pass_builder)


def compile_to_object(llvm_ir_str: str, opt_level: int = 0) -> bytes:
    """Compile LLVM IR string to native object code."""
    mod = verify(llvm_ir_str)
    target_machine = _target_machine(opt_level)
    _optimize(mod, target_machine, opt_level)
    return target_machine.emit_object(mod)


def compile_to_assembly(llvm_ir_str: str, opt_level: int = 0) -> str:
    """Compile LLVM IR string to native assembly."""
    mod = verify(llvm_ir_str)
    target_machine = _target_machine(opt_level)
    _optimize(mod, target_machine, opt_level)
    return target_machine.emit_assembly(mod)


def link(object_path: str, output: str, runtime_library: str = "", linker: str = "cc") -> str:
    """Link an object file (plus the runtime library, if any) into an executable."""
    cmd = [linker, object_path, "-o", output]
    if runtime_library:
        cmd.append(runtime_library)
    logger.debug("linking: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise CompileError(backend_error(f"Could not run linker '{linker}': {e}"))
    if result.returncode != 0:
        raise CompileError(backend_error(
            f"Linking failed with exit code {result.returncode}: {result.stderr.strip()}"
        ))
    return output


def build_executable(llvm_ir_str: str, output: str, opt_level: int = 0,
                     runtime_library: str = "", linker: str = "cc") -> str:
    """Compile to a temporary object file and link it into ``output``."""
    obj_code = compile_to_object(llvm_ir_str, opt_level)
    fd, obj_path = tempfile.mkstemp(suffix=".o")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(obj_code)
        return link(obj_path, output, runtime_library, linker)
    finally:
        os.unlink(obj_path)


class JITSession:
    """In-process execution of lowered modules through MCJIT.

    Runtime functions are supplied by the host with ``add_symbol`` before a
    module referencing them is loaded.
    """

    def __init__(self, opt_level: int = 0):
        _initialize_llvm()
        self._target_machine = _target_machine(opt_level)
        backing = llvm_binding.parse_assembly("")
        self._engine = llvm_binding.create_mcjit_compiler(backing, self._target_machine)
        self._modules: list[llvm_binding.ModuleRef] = []

    @staticmethod
    def add_symbol(name: str, address: int) -> None:
        llvm_binding.add_symbol(name, address)

    def load(self, llvm_ir_str: str) -> None:
        mod = verify(llvm_ir_str)
        self._engine.add_module(mod)
        self._engine.finalize_object()
        self._engine.run_static_constructors()
        self._modules.append(mod)

    def function_address(self, name: str) -> int:
        address = self._engine.get_function_address(name)
        if not address:
            raise CompileError(backend_error(f"Function '{name}' not found in JIT session"))
        return address

