#!/usr/bin/env python3
"""
c_tokenizer.py - Tokenizer for the C initializer syntax written by the project exporter.

Tokens:
  - EOF, STRING, CHAR, NUMBER, IDENT, PUNCT, PREPROCESSOR
  - NUMBER is an unsigned 64-bit value; '0x' hex, '0b' binary, leading '0' octal
  - PREPROCESSOR is the whole '#...' line, uninterpreted

Usage:
  tok = Tokenizer(text)
  while not (t := tok.read()).is_eof():
      ...
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

U64_MASK = (1 << 64) - 1

STRING_ESCAPES = {
    "\\": "\\",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    '"': '"',
    "'": "'",
}


class ProjectReadError(Exception):
    def __init__(self, message: str, line: int, path: Optional[str] = None):
        super().__init__(f"line {line}: {message}")
        self.message = message
        self.line = line
        self.path = path


class TokenizeError(ProjectReadError):
    pass


class TokenKind(enum.Enum):
    EOF = "eof"
    STRING = "string"
    CHAR = "char"
    NUMBER = "number"
    IDENT = "ident"
    PUNCT = "punct"
    PREPROCESSOR = "preprocessor"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Union[str, int, None]
    line: int

    def __str__(self) -> str:
        if self.kind == TokenKind.EOF:
            return "EOF"
        if self.kind == TokenKind.STRING:
            return f'"{self.value}"'
        if self.kind == TokenKind.CHAR:
            return f"'{self.value}'"
        return str(self.value)

    def is_eof(self) -> bool:
        return self.kind == TokenKind.EOF

    def is_any_ident(self) -> bool:
        return self.kind == TokenKind.IDENT

    def is_any_punct(self) -> bool:
        return self.kind == TokenKind.PUNCT

    def is_ident(self, ident: str) -> bool:
        return self.kind == TokenKind.IDENT and self.value == ident

    def is_punct(self, ch: str) -> bool:
        return self.kind == TokenKind.PUNCT and self.value == ch

    def get_ident(self) -> Optional[str]:
        return self.value if self.kind == TokenKind.IDENT else None

    def get_number(self) -> Optional[int]:
        return self.value if self.kind == TokenKind.NUMBER else None

    def get_preprocessor(self) -> Optional[str]:
        return self.value if self.kind == TokenKind.PREPROCESSOR else None


def _digit_value(ch: str) -> Optional[int]:
    if "0" <= ch <= "9":
        return ord(ch) - ord("0")
    if "A" <= ch <= "Z":
        return ord(ch) - ord("A") + 10
    if "a" <= ch <= "z":
        return ord(ch) - ord("a") + 10
    return None


class Tokenizer:
    def __init__(self, data: str):
        self._data = data
        self._pos = 0
        self.line = 1

    def _next_char(self) -> str:
        if self._pos >= len(self._data):
            return ""
        ch = self._data[self._pos]
        self._pos += 1
        return ch

    def _unget_char(self) -> None:
        self._pos -= 1

    def read(self) -> Token:
        while True:
            ch = self._next_char()
            if ch == "":
                return Token(TokenKind.EOF, None, self.line)
            if ch in " \t\r":
                continue
            if ch == "\n":
                self.line += 1
                continue

            if ch == "/":
                nxt = self._next_char()
                if nxt == "":
                    return Token(TokenKind.PUNCT, ch, self.line)
                if nxt == "/":
                    if self._skip_line_comment():
                        continue
                    return Token(TokenKind.EOF, None, self.line)
                if nxt == "*":
                    self._skip_block_comment()
                    continue
                self._unget_char()

            if ch == "#":
                return self._read_preprocessor()
            if ch in "\"'":
                return self._read_quoted(ch)
            if ch.isascii() and ch.isdigit():
                return self._read_number(ch)
            if (ch.isascii() and ch.isalpha()) or ch == "_":
                return self._read_ident(ch)

            return Token(TokenKind.PUNCT, ch, self.line)

    def _skip_line_comment(self) -> bool:
        while True:
            ch = self._next_char()
            if ch == "":
                return False
            if ch == "\n":
                self.line += 1
                return True

    def _skip_block_comment(self) -> None:
        start_line = self.line
        got_star = False
        while True:
            ch = self._next_char()
            if ch == "":
                raise TokenizeError("unterminated comment", start_line)
            if ch == "*":
                got_star = True
            elif ch == "/" and got_star:
                return
            else:
                if ch == "\n":
                    self.line += 1
                got_star = False

    def _read_preprocessor(self) -> Token:
        start_line = self.line
        chars = ["#"]
        while True:
            ch = self._next_char()
            if ch == "":
                break
            if ch == "\n":
                self.line += 1
                break
            chars.append(ch)
        return Token(TokenKind.PREPROCESSOR, "".join(chars), start_line)

    def _read_quoted(self, delim: str) -> Token:
        start_line = self.line
        chars = []
        while True:
            ch = self._next_char()
            if ch == "" or ch == "\n":
                raise TokenizeError("unterminated string", start_line)
            if ch == delim:
                break
            if ch != "\\":
                chars.append(ch)
                continue

            esc = self._next_char()
            if esc == "":
                raise TokenizeError("unterminated string", start_line)
            if esc in STRING_ESCAPES:
                chars.append(STRING_ESCAPES[esc])
            elif esc == "\n":
                self.line += 1
            elif esc == "\r":
                after = self._next_char()
                if after == "":
                    raise TokenizeError("unterminated string", start_line)
                if after != "\n":
                    raise TokenizeError(f"invalid character following '\\r': {after}", self.line)
                self.line += 1
            else:
                chars.append("\\")
                chars.append(esc)

        kind = TokenKind.STRING if delim == '"' else TokenKind.CHAR
        return Token(kind, "".join(chars), start_line)

    def _read_number(self, first: str) -> Token:
        if first == "0":
            nxt = self._next_char()
            if nxt == "":
                return Token(TokenKind.NUMBER, 0, self.line)
            if nxt == "x":
                base = 16
            elif nxt == "b":
                base = 2
            else:
                self._unget_char()
                base = 8
        else:
            base = 10

        num = _digit_value(first)
        while True:
            ch = self._next_char()
            if ch == "":
                break
            digit = _digit_value(ch) if ch.isascii() else None
            if digit is None:
                self._unget_char()
                break
            if digit >= base:
                raise TokenizeError(f"invalid digit in number: '{ch}'", self.line)
            # wraps like the exporter's u64 arithmetic
            num = (num * base + digit) & U64_MASK
        return Token(TokenKind.NUMBER, num, self.line)

    def _read_ident(self, first: str) -> Token:
        chars = [first]
        while True:
            ch = self._next_char()
            if ch == "":
                break
            if (ch.isascii() and ch.isalnum()) or ch == "_":
                chars.append(ch)
                continue
            self._unget_char()
            break
        return Token(TokenKind.IDENT, "".join(chars), self.line)


def parse_number(source: str) -> Optional[int]:
    """Lex a single number from `source`, or None if it doesn't start with one."""
    try:
        return Tokenizer(source).read().get_number()
    except TokenizeError:
        return None
