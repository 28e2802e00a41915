"""WadeScript Import Resolution Tests — LOAD-001 through LOAD-004."""

import os

import pytest

from wadescript.compiler.ast_nodes import FunctionDef, ImportStmt
from wadescript.loader import Loader, load_program
from wadescript.errors import CompileError, ErrorKind


def _write(directory, name, source):
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(source)
    return str(path)


MATH = "def square(x: int) -> int {\n  return x * x\n}\n"


class TestLOAD001:
    """LOAD-001: Relative imports are spliced in.
    Priority: P0
    """

    def test_import_merges_statements_and_registers_module(self, tmp_path):
        """priority_p0: Imported definitions precede the importer's statements."""
        _write(tmp_path, "mathx.ws", MATH)
        main = _write(tmp_path, "main.ws", 'import "mathx"\nprint_int(mathx.square(4))\n')
        program = load_program(main)
        assert isinstance(program.statements[0], FunctionDef)
        assert not any(isinstance(s, ImportStmt) for s in program.statements)
        assert program.modules == {"mathx": ["square"]}

    def test_suffix_is_optional(self, tmp_path):
        """priority_p1: Paths may omit '.ws'."""
        _write(tmp_path, "lib/util.ws", MATH)
        main = _write(tmp_path, "main.ws", 'import "./lib/util.ws"\n')
        program = load_program(main[:-len(".ws")])
        assert program.modules == {"util": ["square"]}

    def test_nested_imports_bubble_up(self, tmp_path):
        """priority_p1: Transitive modules are registered on the root program."""
        _write(tmp_path, "inner.ws", MATH)
        _write(tmp_path, "outer.ws", 'import "inner"\ndef cube(x: int) -> int {\n  return x * inner.square(x)\n}\n')
        main = _write(tmp_path, "main.ws", 'import "outer"\n')
        program = load_program(main)
        assert set(program.modules) == {"inner", "outer"}
        assert "cube" in program.modules["outer"]


class TestLOAD002:
    """LOAD-002: Each file is merged once.
    Priority: P1
    """

    def test_diamond_import(self, tmp_path):
        """priority_p1: A file imported by two siblings is merged once."""
        _write(tmp_path, "base.ws", MATH)
        _write(tmp_path, "left.ws", 'import "base"\n')
        _write(tmp_path, "right.ws", 'import "base"\n')
        main = _write(tmp_path, "main.ws", 'import "left"\nimport "right"\n')
        program = load_program(main)
        squares = [s for s in program.statements if isinstance(s, FunctionDef) and s.name == "square"]
        assert len(squares) == 1

    def test_circular_import(self, tmp_path):
        """priority_p0: A cycle names the whole chain."""
        _write(tmp_path, "a.ws", 'import "b"\n')
        _write(tmp_path, "b.ws", 'import "a"\n')
        with pytest.raises(CompileError) as exc:
            load_program(str(tmp_path / "a.ws"))
        err = exc.value.error
        assert err.kind == ErrorKind.IMPORT_ERROR
        assert err.message == "Circular import detected: a.ws -> b.ws -> a.ws"


class TestLOAD003:
    """LOAD-003: Standard library lookup.
    Priority: P1
    """

    def test_bare_name_prefers_std(self, tmp_path):
        """priority_p1: 'import "mathx"' resolves in the std directory."""
        std = tmp_path / "std"
        _write(std, "mathx.ws", MATH)
        _write(tmp_path, "app/mathx.ws", "def other() -> int {\n  return 0\n}\n")
        main = _write(tmp_path, "app/main.ws", 'import "mathx"\n')
        program = Loader(str(std)).load(main)
        assert program.modules == {"mathx": ["square"]}

    def test_relative_path_skips_std(self, tmp_path):
        """priority_p2: './name' always resolves next to the importer."""
        std = tmp_path / "std"
        _write(std, "mathx.ws", MATH)
        _write(tmp_path, "app/mathx.ws", "def other() -> int {\n  return 0\n}\n")
        main = _write(tmp_path, "app/main.ws", 'import "./mathx"\n')
        program = Loader(str(std)).load(main)
        assert program.modules == {"mathx": ["other"]}

    def test_default_std_is_cwd_std(self, tmp_path, monkeypatch):
        """priority_p2: Without a configured path, ./std is used."""
        _write(tmp_path, "std/mathx.ws", MATH)
        main = _write(tmp_path, "proj/main.ws", 'import "mathx"\n')
        monkeypatch.chdir(tmp_path)
        assert load_program(main).modules == {"mathx": ["square"]}


class TestLOAD004:
    """LOAD-004: Errors.
    Priority: P1
    """

    def test_missing_import(self, tmp_path):
        """priority_p1: An unreadable import is an import_error at the import."""
        main = _write(tmp_path, "main.ws", 'x: int = 1\nimport "nowhere"\n')
        with pytest.raises(CompileError) as exc:
            load_program(main)
        err = exc.value.error
        assert err.kind == ErrorKind.IMPORT_ERROR
        assert err.message.startswith("Cannot read")
        assert "nowhere.ws" in err.message
        assert err.location.line == 2
        assert err.details["path"] == os.path.join(str(tmp_path), "nowhere.ws")

    def test_parse_error_in_import_propagates(self, tmp_path):
        """priority_p1: Errors inside an imported file keep their own filename."""
        _write(tmp_path, "broken.ws", "def f( {\n}\n")
        main = _write(tmp_path, "main.ws", 'import "broken"\n')
        with pytest.raises(CompileError) as exc:
            load_program(main)
        assert exc.value.kind == ErrorKind.PARSE_ERROR
        assert exc.value.error.location.file.endswith("broken.ws")
