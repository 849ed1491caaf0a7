"""
Kaleidoscope - Lexer
Turns Kaleidoscope source text into tokens, one token per call.
"""

import re
from dataclasses import dataclass
from typing import List
from enum import Enum, auto


class TokenType(Enum):
    # Sentinel
    EOF        = auto()
    # Literals
    IDENTIFIER = auto()
    NUMBER     = auto()
    # Keywords
    DEF        = auto()
    EXTERN     = auto()
    IF         = auto()
    THEN       = auto()
    ELSE       = auto()
    FOR        = auto()
    IN         = auto()
    UNARY      = auto()
    BINARY     = auto()
    VAR        = auto()
    # Any other single character: ( ) , ; = and operator symbols
    CHAR       = auto()


KEYWORDS = {
    "def":    TokenType.DEF,
    "extern": TokenType.EXTERN,
    "if":     TokenType.IF,
    "then":   TokenType.THEN,
    "else":   TokenType.ELSE,
    "for":    TokenType.FOR,
    "in":     TokenType.IN,
    "unary":  TokenType.UNARY,
    "binary": TokenType.BINARY,
    "var":    TokenType.VAR,
}


@dataclass
class Token:
    type: TokenType
    value: str
    line: int

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, line={self.line})"

    @property
    def number(self) -> float:
        """Permissive numeric value of a NUMBER token."""
        if self.type != TokenType.NUMBER:
            raise ValueError(f"{self.type.name} token has no numeric value")
        return parse_number(self.value, self.line)

    def describe(self) -> str:
        """Human readable form used in diagnostics."""
        if self.type == TokenType.EOF:
            return "end of input"
        if self.type == TokenType.CHAR:
            return repr(self.value)
        return f"{self.type.name.lower()} {self.value!r}"


class LexerError(Exception):
    def __init__(self, message: str, line: int):
        super().__init__(f"[LexerError] Line {line}: {message}")
        self.line = line


_WHITESPACE_RE = re.compile(r'[ \t\r\f\v]+')
_COMMENT_RE    = re.compile(r'#[^\n\r]*')
_NEWLINE_RE    = re.compile(r'\n')
_IDENT_RE      = re.compile(r'[A-Za-z][A-Za-z0-9]*')
_NUMBER_RE     = re.compile(r'[0-9.]+')

# Longest valid leading decimal, and the only shape accepted in strict mode.
_NUMBER_PREFIX_RE = re.compile(r'\d*\.?\d*')
_STRICT_NUMBER_RE = re.compile(r'\d+\.?\d*|\.\d+')


def parse_number(text: str, line: int = 0, strict: bool = False) -> float:
    """
    Convert the raw text of a NUMBER token to a float.

    Permissive by default: only the longest valid leading decimal is used and
    text with no valid prefix yields 0.0 ("1.2.3" -> 1.2, "." -> 0.0).
    In strict mode anything but a single well-formed decimal raises LexerError.
    """
    if strict:
        if not _STRICT_NUMBER_RE.fullmatch(text):
            raise LexerError(f"Malformed number literal: {text!r}", line)
        return float(text)

    prefix = _NUMBER_PREFIX_RE.match(text).group(0)
    if not prefix or prefix == '.':
        return 0.0
    return float(prefix)


class Lexer:
    """
    Pull-based tokenizer. Each call to next_token() consumes just enough
    characters for one token; once the input is exhausted every call
    returns an EOF token.
    """

    def __init__(self, source: str, strict_numbers: bool = False):
        self._source = source
        self._pos = 0
        self._line = 1
        self.strict_numbers = strict_numbers

    @property
    def line(self) -> int:
        return self._line

    def next_token(self) -> Token:
        source = self._source

        while self._pos < len(source):
            m = _WHITESPACE_RE.match(source, self._pos)
            if m:
                self._pos = m.end()
                continue

            m = _COMMENT_RE.match(source, self._pos)
            if m:
                self._pos = m.end()
                continue

            m = _NEWLINE_RE.match(source, self._pos)
            if m:
                self._line += 1
                self._pos = m.end()
                continue

            break
        else:
            return Token(TokenType.EOF, '', self._line)

        m = _IDENT_RE.match(source, self._pos)
        if m:
            self._pos = m.end()
            word = m.group(0)
            return Token(KEYWORDS.get(word, TokenType.IDENTIFIER), word, self._line)

        m = _NUMBER_RE.match(source, self._pos)
        if m:
            self._pos = m.end()
            text = m.group(0)
            if self.strict_numbers:
                parse_number(text, self._line, strict=True)
            return Token(TokenType.NUMBER, text, self._line)

        char = source[self._pos]
        self._pos += 1
        return Token(TokenType.CHAR, char, self._line)

    def __iter__(self):
        while True:
            tok = self.next_token()
            yield tok
            if tok.type == TokenType.EOF:
                return


def tokenize(source: str, strict_numbers: bool = False) -> List[Token]:
    """
    Convert Kaleidoscope source into a list of Tokens ending with EOF.
    Raises LexerError only for malformed numbers in strict mode.
    """
    return list(Lexer(source, strict_numbers=strict_numbers))
