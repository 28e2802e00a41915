"""WadeScript Lexer: tokenizer with line/column tracking.

Produces tokens one at a time (``Lexer.next_token``) or as a full list ending
in EOF (``tokenize``). Newlines are significant statement separators and are
emitted as NEWLINE tokens; blocks are brace-delimited, so indentation is not.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from wadescript.errors import SourceLocation, lex_error, CompileError

INT64_MAX = 2 ** 63 - 1


class TokenType(Enum):
    # Keywords
    DEF = auto()
    CLASS = auto()
    IMPORT = auto()
    IF = auto()
    ELIF = auto()
    ELSE = auto()
    WHILE = auto()
    FOR = auto()
    IN = auto()
    RETURN = auto()
    PASS = auto()
    BREAK = auto()
    CONTINUE = auto()
    ASSERT = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    TRUE = auto()
    FALSE = auto()
    NONE = auto()
    TRY = auto()
    EXCEPT = auto()
    FINALLY = auto()
    RAISE = auto()
    AS = auto()

    # Type keywords
    INT_TYPE = auto()
    FLOAT_TYPE = auto()
    BOOL_TYPE = auto()
    STR_TYPE = auto()
    VOID_TYPE = auto()
    LIST_TYPE = auto()
    DICT_TYPE = auto()
    OPTIONAL_TYPE = auto()

    # Literals
    INT_LIT = auto()
    FLOAT_LIT = auto()
    STRING_LIT = auto()
    FSTRING_LIT = auto()

    # Identifier
    IDENT = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    DOUBLE_SLASH = auto()
    DOUBLE_STAR = auto()
    EQ = auto()
    NEQ = auto()
    LT = auto()
    GT = auto()
    LTE = auto()
    GTE = auto()
    ASSIGN = auto()
    PLUS_ASSIGN = auto()
    MINUS_ASSIGN = auto()
    STAR_ASSIGN = auto()
    SLASH_ASSIGN = auto()
    PLUS_PLUS = auto()
    MINUS_MINUS = auto()
    ARROW = auto()
    DOT = auto()
    QUESTION = auto()

    # Delimiters
    LPAREN = auto()
    RPAREN = auto()
    LBRACE = auto()
    RBRACE = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    COMMA = auto()
    COLON = auto()
    SEMICOLON = auto()

    # Special
    NEWLINE = auto()
    EOF = auto()


KEYWORDS: dict[str, TokenType] = {
    "def": TokenType.DEF,
    "class": TokenType.CLASS,
    "import": TokenType.IMPORT,
    "if": TokenType.IF,
    "elif": TokenType.ELIF,
    "else": TokenType.ELSE,
    "while": TokenType.WHILE,
    "for": TokenType.FOR,
    "in": TokenType.IN,
    "return": TokenType.RETURN,
    "pass": TokenType.PASS,
    "break": TokenType.BREAK,
    "continue": TokenType.CONTINUE,
    "assert": TokenType.ASSERT,
    "and": TokenType.AND,
    "or": TokenType.OR,
    "not": TokenType.NOT,
    "True": TokenType.TRUE,
    "False": TokenType.FALSE,
    "None": TokenType.NONE,
    "try": TokenType.TRY,
    "except": TokenType.EXCEPT,
    "finally": TokenType.FINALLY,
    "raise": TokenType.RAISE,
    "as": TokenType.AS,
    "int": TokenType.INT_TYPE,
    "float": TokenType.FLOAT_TYPE,
    "bool": TokenType.BOOL_TYPE,
    "str": TokenType.STR_TYPE,
    "void": TokenType.VOID_TYPE,
    "list": TokenType.LIST_TYPE,
    "dict": TokenType.DICT_TYPE,
    "Optional": TokenType.OPTIONAL_TYPE,
}

# Checked before the single-character table.
TWO_CHAR_OPERATORS: dict[str, TokenType] = {
    "->": TokenType.ARROW,
    "==": TokenType.EQ,
    "!=": TokenType.NEQ,
    "<=": TokenType.LTE,
    ">=": TokenType.GTE,
    "//": TokenType.DOUBLE_SLASH,
    "**": TokenType.DOUBLE_STAR,
    "+=": TokenType.PLUS_ASSIGN,
    "-=": TokenType.MINUS_ASSIGN,
    "*=": TokenType.STAR_ASSIGN,
    "/=": TokenType.SLASH_ASSIGN,
    "++": TokenType.PLUS_PLUS,
    "--": TokenType.MINUS_MINUS,
}

SINGLE_CHAR_TOKENS: dict[str, TokenType] = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "%": TokenType.PERCENT,
    "=": TokenType.ASSIGN,
    "<": TokenType.LT,
    ">": TokenType.GT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ",": TokenType.COMMA,
    ":": TokenType.COLON,
    ";": TokenType.SEMICOLON,
    ".": TokenType.DOT,
    "?": TokenType.QUESTION,
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}
_FSTRING_ESCAPES = {**_ESCAPES, "{": "{", "}": "}"}


@dataclass
class Token:
    type: TokenType
    value: str
    location: SourceLocation

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.location})"


class Lexer:
    """Tokenizer for WadeScript source code."""

    def __init__(self, source: str, filename: str = "<stdin>"):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = 1
        self.column = 1

    def _loc(self) -> SourceLocation:
        return SourceLocation(self.line, self.column, self.filename)

    def _peek(self) -> Optional[str]:
        if self.pos < len(self.source):
            return self.source[self.pos]
        return None

    def _peek_ahead(self, offset: int = 1) -> Optional[str]:
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return None

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _skip_whitespace_and_comments(self) -> None:
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch in (" ", "\t", "\r"):
                self._advance()
            elif ch == "#":
                while self.pos < len(self.source) and self.source[self.pos] != "\n":
                    self._advance()
            else:
                break

    def _read_quoted(self, quote: str, escapes: dict[str, str], loc: SourceLocation) -> str:
        self._advance()  # opening quote
        value = ""
        while self.pos < len(self.source):
            ch = self._advance()
            if ch == quote:
                return value
            if ch == "\\":
                if self.pos >= len(self.source):
                    break
                next_ch = self._advance()
                value += escapes.get(next_ch, next_ch)
            else:
                value += ch
        raise CompileError(lex_error("Unterminated string literal", loc))

    def _read_string(self) -> Token:
        loc = self._loc()
        value = self._read_quoted(self.source[self.pos], _ESCAPES, loc)
        return Token(TokenType.STRING_LIT, value, loc)

    def _read_fstring(self) -> Token:
        loc = self._loc()
        self._advance()  # 'f'
        value = self._read_quoted(self.source[self.pos], _FSTRING_ESCAPES, loc)
        return Token(TokenType.FSTRING_LIT, value, loc)

    def _read_number(self) -> Token:
        loc = self._loc()
        value = ""
        is_float = False
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch.isdigit():
                value += self._advance()
            elif ch == "." and not is_float and (self._peek_ahead() or "").isdigit():
                is_float = True
                value += self._advance()
            else:
                break
        if is_float:
            return Token(TokenType.FLOAT_LIT, value, loc)
        if int(value) > INT64_MAX:
            raise CompileError(lex_error(f"Integer literal '{value}' does not fit in 64 bits", loc))
        return Token(TokenType.INT_LIT, value, loc)

    def _read_identifier(self) -> Token:
        loc = self._loc()
        value = ""
        while self.pos < len(self.source) and (self.source[self.pos].isalnum() or self.source[self.pos] == "_"):
            value += self._advance()
        return Token(KEYWORDS.get(value, TokenType.IDENT), value, loc)

    def next_token(self) -> Token:
        """Scan and return the next token; returns EOF repeatedly at end of input."""
        self._skip_whitespace_and_comments()
        loc = self._loc()
        ch = self._peek()

        if ch is None:
            return Token(TokenType.EOF, "", loc)
        if ch == "\n":
            self._advance()
            return Token(TokenType.NEWLINE, "\\n", loc)
        if ch.isdigit():
            return self._read_number()
        if ch == "f" and self._peek_ahead() in ('"', "'"):
            return self._read_fstring()
        if ch.isalpha() or ch == "_":
            return self._read_identifier()
        if ch in ('"', "'"):
            return self._read_string()

        pair = ch + (self._peek_ahead() or "")
        if pair in TWO_CHAR_OPERATORS:
            self._advance()
            self._advance()
            return Token(TWO_CHAR_OPERATORS[pair], pair, loc)
        if ch in SINGLE_CHAR_TOKENS:
            self._advance()
            return Token(SINGLE_CHAR_TOKENS[ch], ch, loc)

        self._advance()
        if ch == "!":
            raise CompileError(lex_error("Unexpected character '!' (did you mean '!=' or 'not'?)", loc))
        raise CompileError(lex_error(f"Unexpected character '{ch}'", loc))

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while True:
            tok = self.next_token()
            tokens.append(tok)
            if tok.type == TokenType.EOF:
                return tokens


def tokenize(source: str, filename: str = "<stdin>") -> list[Token]:
    """Convenience function: tokenize source string."""
    return Lexer(source, filename).tokenize()
