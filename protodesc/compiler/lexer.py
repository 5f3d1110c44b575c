"""Tokenizer for the schema language, built on the Lark grammar terminals."""

import os
from dataclasses import dataclass
from enum import StrEnum, auto

from lark import Lark
from lark.exceptions import UnexpectedCharacters

from .diagnostics import LexicalError

_g_parser: Lark | None = None


def get_lark() -> Lark:
    """Return the shared Lark instance, loading the grammar on first use."""
    global _g_parser

    if not _g_parser:
        with open(f"{os.path.dirname(__file__)}/protolang.lark", encoding="utf-8") as f:
            grammar = f.read()

        # The contextual lexer lets keywords double as field and value names.
        _g_parser = Lark(grammar, parser="lalr", lexer="contextual")

    return _g_parser


class TokenKind(StrEnum):
    KEYWORD = auto()
    IDENTIFIER = auto()
    INTEGER = auto()
    FLOAT = auto()
    STRING = auto()
    SYMBOL = auto()
    EOF = auto()


_TERMINAL_KINDS = {
    "NAME": TokenKind.IDENTIFIER,
    "INT": TokenKind.INTEGER,
    "FLOAT": TokenKind.FLOAT,
    "STRING": TokenKind.STRING,
}


@dataclass(frozen=True)
class ProtoToken:
    """A token with its 1-based source position."""

    kind: TokenKind
    value: str
    line: int
    column: int


def lexical_error(exc: UnexpectedCharacters, filename: str | None) -> LexicalError:
    """Convert a Lark character error into a LexicalError."""
    if exc.char in "\"'":
        message = "Unterminated string literal"
    else:
        message = f"Illegal character {exc.char!r}"
    return LexicalError(message, filename, exc.line, exc.column)


def tokenize(text: str, filename: str | None = None) -> list[ProtoToken]:
    """Split schema text into tokens, ending with an EOF token.

    Raises:
        LexicalError: on an illegal character or unterminated string.
    """
    tokens: list[ProtoToken] = []
    try:
        for tok in get_lark().lex(text):
            kind = _TERMINAL_KINDS.get(tok.type)
            if kind is None:
                kind = TokenKind.KEYWORD if tok.value.isidentifier() else TokenKind.SYMBOL
            tokens.append(ProtoToken(kind, str(tok.value), tok.line, tok.column))
    except UnexpectedCharacters as exc:
        raise lexical_error(exc, filename) from exc

    lines = text.split("\n")
    tokens.append(ProtoToken(TokenKind.EOF, "", len(lines), len(lines[-1]) + 1))
    return tokens


_SIMPLE_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "n": 0x0A,
    "r": 0x0D,
    "t": 0x09,
    "v": 0x0B,
    "\\": 0x5C,
    "'": 0x27,
    '"': 0x22,
    "?": 0x3F,
}

_HEX_DIGITS = "0123456789abcdefABCDEF"
_OCT_DIGITS = "01234567"


def _take(body: str, start: int, alphabet: str, limit: int) -> str:
    end = start
    while end < len(body) and end - start < limit and body[end] in alphabet:
        end += 1
    return body[start:end]


def unescape(literal: str) -> bytes:
    """Decode a quoted string literal, escapes included, into raw bytes.

    Raises:
        ValueError: on a malformed escape sequence.
    """
    body = literal[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.extend(ch.encode("utf-8"))
            i += 1
            continue

        esc = body[i + 1]
        i += 2
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
        elif esc in "xX":
            digits = _take(body, i, _HEX_DIGITS, 2)
            if not digits:
                raise ValueError("\\x must be followed by hex digits")
            out.append(int(digits, 16))
            i += len(digits)
        elif esc in _OCT_DIGITS:
            digits = esc + _take(body, i, _OCT_DIGITS, 2)
            out.append(int(digits, 8) & 0xFF)
            i += len(digits) - 1
        elif esc in "uU":
            width = 4 if esc == "u" else 8
            digits = _take(body, i, _HEX_DIGITS, width)
            if len(digits) != width:
                raise ValueError(f"\\{esc} must be followed by {width} hex digits")
            code = int(digits, 16)
            if code > 0x10FFFF:
                raise ValueError(f"\\{esc}{digits} is not a valid code point")
            out.extend(chr(code).encode("utf-8", "surrogatepass"))
            i += width
        else:
            raise ValueError(f"Invalid escape sequence \\{esc}")

    return bytes(out)


def parse_int(text: str) -> int:
    """Parse a decimal, hex (0x) or octal (leading 0) integer literal."""
    if text[:2] in ("0x", "0X"):
        return int(text[2:], 16)
    if len(text) > 1 and text[0] == "0":
        return int(text[1:], 8)
    return int(text)
