"""WadeScript Compiler Tests — COMP-001 through COMP-006.

End-to-end pipeline tests: source text (or a file) through lexing,
parsing, type checking and lowering, then through the native backend.

P0 tests must pass before any code ships.
P1 tests must pass before any external demo.
P2 tests must pass before public launch.
"""

import json
from pathlib import Path

import pytest

from wadescript.compiler import compile_source, check_source, compile_file
from wadescript.compiler.backend import compile_to_object, compile_to_assembly, verify
from wadescript.config import CompilerConfig
from wadescript.errors import CompileError, ErrorKind

EXAMPLES_DIR = Path(__file__).resolve().parents[2] / "examples"


PROGRAM = """
# Counts the even numbers in a list and prints a summary.
class Stats {
  evens: int
  odds: int
  def total(self) -> int {
    return self.evens + self.odds
  }
}

def tally(xs: list[int]) -> Stats {
  s: Stats = Stats(0, 0)
  for x in xs {
    if x % 2 == 0 {
      s.evens += 1
    } else {
      s.odds += 1
    }
  }
  return s
}

numbers: list[int] = range(10)
numbers.push(42)
stats: Stats = tally(numbers)
print_str(f"evens={stats.evens} total={stats.total()}")
"""


# ===================================================================
# P0 — Ship-blocking tests
# ===================================================================


class TestCOMP001:
    """COMP-001: A complete program compiles to valid LLVM IR.
    Priority: P0
    """

    def test_program_lowers(self):
        """priority_p0: Classes, loops, lists and f-strings in one module."""
        ir_text = str(compile_source(PROGRAM, filename="stats.ws"))
        verify(ir_text)
        for name in ('@"tally"', '@"Stats::total"', '@"Stats"', '@"main"'):
            assert name in ir_text

    def test_module_named_after_file(self):
        """priority_p2: The LLVM module carries the source filename."""
        module = compile_source("x: int = 1", filename="one.ws")
        assert module.name == "one.ws"


class TestCOMP002:
    """COMP-002: Fail-fast error reporting.
    Priority: P0
    """

    @pytest.mark.parametrize("source,kind", [
        ("x = $", ErrorKind.LEX_ERROR),
        ("def f( {", ErrorKind.PARSE_ERROR),
        ("x: int = 1.5", ErrorKind.TYPE_ERROR),
        ("x: int = 2 ** 2", ErrorKind.CODEGEN_ERROR),
    ])
    def test_stage_of_failure(self, source, kind):
        """priority_p0: Each stage reports its own error kind."""
        with pytest.raises(CompileError) as exc:
            compile_source(source)
        assert exc.value.kind == kind
        assert len(exc.value.errors) == 1

    def test_first_error_only(self):
        """priority_p0: Only the first of several type errors is reported."""
        errors = check_source('a: int = "x"\nb: str = 1\n')
        assert len(errors) == 1
        assert errors[0].location.line == 1

    def test_error_json_shape(self):
        """priority_p1: Errors serialize with kind, message and location."""
        errors = check_source("y: float = True", filename="f.ws")
        payload = json.loads(errors[0].to_json())
        assert payload["kind"] == "type_error"
        assert payload["location"] == {"file": "f.ws", "line": 1, "column": 1}
        assert payload["details"] == {"expected_type": "float", "actual_type": "bool"}

    def test_check_source_clean(self):
        """priority_p0: A valid program has no errors."""
        assert check_source(PROGRAM) == []


# ===================================================================
# P1 — Demo-blocking tests
# ===================================================================


class TestCOMP003:
    """COMP-003: Native backend.
    Priority: P1
    """

    def test_object_code(self):
        """priority_p1: IR compiles to a non-empty object file."""
        obj = compile_to_object(str(compile_source(PROGRAM)))
        assert isinstance(obj, bytes)
        assert len(obj) > 0

    @pytest.mark.parametrize("opt_level", [0, 2, 3])
    def test_optimization_levels(self, opt_level):
        """priority_p1: Every optimization level produces assembly."""
        asm = compile_to_assembly(str(compile_source(PROGRAM)), opt_level=opt_level)
        assert "tally" in asm

    def test_invalid_ir_is_backend_error(self):
        """priority_p1: Malformed IR is reported, not raised from LLVM."""
        with pytest.raises(CompileError) as exc:
            verify("define i32 @broken( {")
        assert exc.value.kind == ErrorKind.BACKEND_ERROR
        assert exc.value.error.message.startswith("Invalid LLVM IR")


class TestCOMP004:
    """COMP-004: Configuration reaches code generation.
    Priority: P1
    """

    def test_reference_counting_switch(self):
        """priority_p1: reference_counting swaps malloc for rc_alloc."""
        plain = str(compile_source(PROGRAM))
        counted = str(compile_source(PROGRAM, config=CompilerConfig(reference_counting=True)))
        assert "rc_alloc" not in plain
        assert "rc_alloc" in counted
        verify(counted)


class TestCOMP005:
    """COMP-005: Files with imports.
    Priority: P1
    """

    def test_compile_file_with_import(self, tmp_path):
        """priority_p1: Module-qualified calls resolve to the merged functions."""
        (tmp_path / "geometry.ws").write_text(
            "def area(w: int, h: int) -> int {\n  return w * h\n}\n"
        )
        main = tmp_path / "main.ws"
        main.write_text('import "geometry"\nprint_int(geometry.area(3, 4))\n')
        ir_text = str(compile_file(str(main)))
        verify(ir_text)
        assert 'call i64 @"area"' in ir_text

    def test_unknown_module_function(self, tmp_path):
        """priority_p1: Calling a function the module lacks is a type error."""
        (tmp_path / "geometry.ws").write_text("def area(w: int, h: int) -> int {\n  return w * h\n}\n")
        main = tmp_path / "main.ws"
        main.write_text('import "geometry"\nprint_int(geometry.volume(3))\n')
        with pytest.raises(CompileError) as exc:
            compile_file(str(main))
        assert "Module 'geometry' has no function 'volume'" in exc.value.error.message

    def test_configured_std_path(self, tmp_path):
        """priority_p2: CompilerConfig.std_path is searched for bare imports."""
        std = tmp_path / "lib"
        std.mkdir()
        (std / "strings.ws").write_text('def shout(s: str) -> str {\n  return s + "!"\n}\n')
        main = tmp_path / "app" / "main.ws"
        main.parent.mkdir()
        main.write_text('import "strings"\nprint_str(strings.shout("hi"))\n')
        ir_text = str(compile_file(str(main), CompilerConfig(std_path=str(std))))
        assert '@"shout"' in ir_text


# ===================================================================
# P2 — Launch-blocking tests
# ===================================================================


class TestCOMP006:
    """COMP-006: Bundled example programs compile.
    Priority: P2
    """

    @pytest.mark.parametrize("name", ["hello", "lists", "classes", "dicts", "exceptions"])
    def test_examples(self, name):
        """priority_p2: Every examples/*.ws program lowers to valid IR."""
        path = EXAMPLES_DIR / f"{name}.ws"
        verify(str(compile_file(str(path))))
