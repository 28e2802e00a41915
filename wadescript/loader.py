"""Import resolution: splice ``import "x"`` targets into one Program.

Bare names (no path separator, no leading dot) are looked up in the standard
library directory first; everything else resolves relative to the importing
file. Each imported file is merged once, ahead of the statements that follow
its import, and registered as ``modules[stem] = [function names]``.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from wadescript.compiler.ast_nodes import Program, ImportStmt, FunctionDef
from wadescript.compiler.parser import parse
from wadescript.errors import CompileError, import_error

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".ws"


def _with_suffix(path: str) -> str:
    return path if path.endswith(SOURCE_SUFFIX) else path + SOURCE_SUFFIX


def default_std_path() -> Optional[str]:
    """``./std`` when it exists in the working directory."""
    candidate = os.path.abspath("std")
    return candidate if os.path.isdir(candidate) else None


def _is_std_import(path: str, std_path: Optional[str]) -> bool:
    if not std_path or "/" in path or "\\" in path or path.startswith("."):
        return False
    return os.path.isfile(os.path.join(std_path, _with_suffix(path)))


class Loader:
    def __init__(self, std_path: Optional[str] = None):
        self.std_path = std_path
        self._loading: list[str] = []
        self._loaded: set[str] = set()

    def _resolve(self, import_path: str, importer: str) -> str:
        if _is_std_import(import_path, self.std_path):
            return os.path.join(self.std_path, _with_suffix(import_path))
        return os.path.join(os.path.dirname(importer), _with_suffix(import_path))

    def load(self, path: str, location=None) -> Program:
        source_path = os.path.abspath(_with_suffix(path))
        if source_path in self._loading:
            chain = " -> ".join(os.path.basename(p) for p in self._loading + [source_path])
            raise CompileError(import_error(f"Circular import detected: {chain}", source_path, location))

        try:
            with open(source_path, "r") as f:
                source = f.read()
        except (IOError, OSError) as e:
            raise CompileError(import_error(f"Cannot read '{_with_suffix(path)}': {e.strerror}", source_path, location))

        self._loading.append(source_path)
        self._loaded.add(source_path)
        try:
            parsed = parse(source, filename=_with_suffix(path))
            result = Program(filename=parsed.filename)
            for stmt in parsed.statements:
                if not isinstance(stmt, ImportStmt):
                    result.statements.append(stmt)
                    continue
                self._merge_import(result, stmt, source_path)
        finally:
            self._loading.pop()
        return result

    def _merge_import(self, result: Program, stmt: ImportStmt, importer: str) -> None:
        target = os.path.abspath(self._resolve(stmt.path, importer))
        module_name = os.path.splitext(os.path.basename(stmt.path))[0]
        if target in self._loaded and target not in self._loading:
            logger.debug("import %s already merged, skipping", stmt.path)
            return

        imported = self.load(target, stmt.location)
        result.modules[module_name] = [
            s.name for s in imported.statements if isinstance(s, FunctionDef)
        ]
        result.statements.extend(imported.statements)
        result.modules.update(imported.modules)
        logger.debug("resolved import %r -> %s", stmt.path, target)


def load_program(path: str, std_path: Optional[str] = None) -> Program:
    """Load a source file and everything it imports into a single Program."""
    return Loader(std_path or default_std_path()).load(path)
