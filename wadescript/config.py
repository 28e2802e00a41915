"""WadeScript Configuration: project-level .wadescriptrc.yml support.

Loads configuration from .wadescriptrc.yml (or .wadescriptrc.yaml,
.wadescriptrc.json) found in the working directory or one of its parents.

Example .wadescriptrc.yml:
    opt_level: 2
    emit: exe
    track_call_stack: true
    reference_counting: false
    runtime_library: build/libwadescript_runtime.a
    linker: cc
    std_path: std
    log_level: INFO
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, fields
from typing import Optional, Dict, Any

import yaml

from wadescript.errors import CompileError, config_error

EMIT_KINDS = ("llvm", "asm", "obj", "exe")


@dataclass
class CompilerConfig:
    """Compiler options; CLI flags override values loaded from a config file."""
    opt_level: int = 0
    # "llvm", "asm", "obj" or "exe"
    emit: str = "exe"
    output: str = ""
    # Runtime hooks emitted by code generation
    track_call_stack: bool = True
    reference_counting: bool = False
    # Native build
    runtime_library: str = ""
    linker: str = "cc"
    std_path: str = ""
    log_level: str = "WARNING"


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".wadescriptrc.yml",
    ".wadescriptrc.yaml",
    ".wadescriptrc.json",
    "wadescript.config.yml",
    "wadescript.config.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> CompilerConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, returns defaults.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return CompilerConfig()

    try:
        with open(path, "r") as f:
            content = f.read()
    except (IOError, OSError) as e:
        raise CompileError(config_error(f"Cannot read config file: {e}", path))

    try:
        if path.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CompileError(config_error(f"Malformed config file: {e}", path))

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CompileError(config_error("Config file must contain a mapping", path))
    return _dict_to_config(data, path)


def _dict_to_config(data: Dict[str, Any], path: str = "") -> CompilerConfig:
    """Convert a parsed dict to CompilerConfig, rejecting wrongly typed values."""
    config = CompilerConfig()
    known = {f.name: type(getattr(config, f.name)) for f in fields(config)}

    for key, value in data.items():
        expected = known.get(key)
        if expected is None:
            raise CompileError(config_error(f"Unknown config key '{key}'", path))
        # bool is an int subclass; keep them apart
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise CompileError(config_error(
                f"Config key '{key}' must be {expected.__name__}, got {type(value).__name__}", path,
            ))
        setattr(config, key, value)

    if config.emit not in EMIT_KINDS:
        raise CompileError(config_error(
            f"Config key 'emit' must be one of {', '.join(EMIT_KINDS)}, got '{config.emit}'", path,
        ))
    if config.opt_level not in (0, 1, 2, 3):
        raise CompileError(config_error(f"Config key 'opt_level' must be 0-3, got {config.opt_level}", path))
    return config
