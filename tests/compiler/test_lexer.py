"""WadeScript Lexer Tests — LEX-001 through LEX-006."""

import pytest

from wadescript.compiler.lexer import Lexer, TokenType, tokenize
from wadescript.errors import CompileError, ErrorKind


def _types(source):
    return [t.type for t in tokenize(source)]


class TestLEX001:
    """LEX-001: Keywords, identifiers and type keywords.
    Priority: P0
    """

    def test_function_header(self):
        """priority_p0: A function header tokenizes in order."""
        assert _types("def add(a: int) -> int") == [
            TokenType.DEF, TokenType.IDENT, TokenType.LPAREN, TokenType.IDENT,
            TokenType.COLON, TokenType.INT_TYPE, TokenType.RPAREN, TokenType.ARROW,
            TokenType.INT_TYPE, TokenType.EOF,
        ]

    def test_boolean_and_none_keywords(self):
        """priority_p0: True/False/None are keywords, not identifiers."""
        assert _types("True False None") == [TokenType.TRUE, TokenType.FALSE, TokenType.NONE, TokenType.EOF]

    def test_identifier_with_underscore_and_digits(self):
        """priority_p1: Identifiers may contain underscores and digits."""
        tokens = tokenize("_count2")
        assert tokens[0].type == TokenType.IDENT
        assert tokens[0].value == "_count2"

    def test_exception_keywords(self):
        """priority_p0: try/except/finally/raise/as are keywords."""
        assert _types("try except finally raise as") == [
            TokenType.TRY, TokenType.EXCEPT, TokenType.FINALLY, TokenType.RAISE, TokenType.AS,
            TokenType.EOF,
        ]

    def test_optional_type_tokens(self):
        """priority_p1: 'Optional' is a type keyword and '?' a single-char token."""
        assert _types("Optional[str] str?") == [
            TokenType.OPTIONAL_TYPE, TokenType.LBRACKET, TokenType.STR_TYPE, TokenType.RBRACKET,
            TokenType.STR_TYPE, TokenType.QUESTION, TokenType.EOF,
        ]


class TestLEX002:
    """LEX-002: Numeric literals.
    Priority: P0
    """

    def test_int_and_float(self):
        """priority_p0: '42' is INT_LIT, '3.14' is FLOAT_LIT."""
        tokens = tokenize("42 3.14")
        assert (tokens[0].type, tokens[0].value) == (TokenType.INT_LIT, "42")
        assert (tokens[1].type, tokens[1].value) == (TokenType.FLOAT_LIT, "3.14")

    def test_trailing_dot_is_member_access(self):
        """priority_p1: '1.' followed by a non-digit is INT then DOT."""
        assert _types("1.x")[:3] == [TokenType.INT_LIT, TokenType.DOT, TokenType.IDENT]

    def test_integer_overflow_rejected(self):
        """priority_p1: Integer literals beyond 64 bits are a lex error."""
        with pytest.raises(CompileError) as exc:
            tokenize("99999999999999999999")
        assert exc.value.kind == ErrorKind.LEX_ERROR


class TestLEX003:
    """LEX-003: Strings and f-strings.
    Priority: P0
    """

    def test_string_escapes(self):
        """priority_p0: Escape sequences are decoded."""
        tokens = tokenize(r'"a\nb\t\"c\""')
        assert tokens[0].type == TokenType.STRING_LIT
        assert tokens[0].value == 'a\nb\t"c"'

    def test_single_quoted_string(self):
        """priority_p1: Single quotes delimit strings too."""
        assert tokenize("'hi'")[0].value == "hi"

    def test_fstring_token_keeps_raw_body(self):
        """priority_p0: f-strings produce FSTRING_LIT with the unparsed body."""
        tokens = tokenize('f"sum={a + b}"')
        assert tokens[0].type == TokenType.FSTRING_LIT
        assert tokens[0].value == "sum={a + b}"

    def test_f_identifier_is_not_fstring(self):
        """priority_p1: An identifier named f is still an identifier."""
        assert _types("f(1)")[:2] == [TokenType.IDENT, TokenType.LPAREN]

    def test_unterminated_string(self):
        """priority_p0: Missing closing quote is a lex error."""
        with pytest.raises(CompileError) as exc:
            tokenize('"abc')
        assert exc.value.kind == ErrorKind.LEX_ERROR
        assert "Unterminated" in exc.value.error.message


class TestLEX004:
    """LEX-004: Operators, longest match first.
    Priority: P0
    """

    def test_two_char_operators(self):
        """priority_p0: Two-character operators win over their prefixes."""
        assert _types("== != <= >= // ** += -= *= /= ++ -- ->")[:-1] == [
            TokenType.EQ, TokenType.NEQ, TokenType.LTE, TokenType.GTE,
            TokenType.DOUBLE_SLASH, TokenType.DOUBLE_STAR, TokenType.PLUS_ASSIGN,
            TokenType.MINUS_ASSIGN, TokenType.STAR_ASSIGN, TokenType.SLASH_ASSIGN,
            TokenType.PLUS_PLUS, TokenType.MINUS_MINUS, TokenType.ARROW,
        ]

    def test_bang_alone_is_an_error(self):
        """priority_p1: '!' without '=' points the user at '!=' or 'not'."""
        with pytest.raises(CompileError) as exc:
            tokenize("!x")
        assert "did you mean" in exc.value.error.message

    def test_unknown_character(self):
        """priority_p1: Unknown characters report their location."""
        with pytest.raises(CompileError) as exc:
            tokenize("x = 1\ny = $")
        loc = exc.value.error.location
        assert (loc.line, loc.column) == (2, 5)


class TestLEX005:
    """LEX-005: Newlines and comments.
    Priority: P0
    """

    def test_newline_tokens(self):
        """priority_p0: Newlines are emitted as NEWLINE tokens."""
        assert _types("a\nb") == [TokenType.IDENT, TokenType.NEWLINE, TokenType.IDENT, TokenType.EOF]

    def test_comment_skipped_newline_kept(self):
        """priority_p0: Comments run to end of line; the newline survives."""
        assert _types("x # comment\ny") == [TokenType.IDENT, TokenType.NEWLINE, TokenType.IDENT, TokenType.EOF]

    def test_locations_are_one_based(self):
        """priority_p1: Line and column numbering starts at 1."""
        tokens = tokenize("a\n  b", filename="t.ws")
        assert str(tokens[2].location) == "t.ws:2:3"


class TestLEX006:
    """LEX-006: Incremental scanning.
    Priority: P2
    """

    def test_next_token_repeats_eof(self):
        """priority_p2: next_token keeps returning EOF at end of input."""
        lexer = Lexer("x")
        assert lexer.next_token().type == TokenType.IDENT
        assert lexer.next_token().type == TokenType.EOF
        assert lexer.next_token().type == TokenType.EOF
