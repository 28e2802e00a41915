"""WadeScript compiler pipeline: lexer, parser, type checker and LLVM code generation."""

from .lexer import Lexer, Token, TokenType, tokenize
from .parser import Parser, parse
from .ast_nodes import *
from .types import *
from .typechecker import TypeChecker, check
from .codegen import CodeGen, lower
from .pipeline import compile_source, compile_program, check_source, compile_file
