"""Parser for the free-text ``q`` parameter.

Grammar (lenient, never raises)::

    expr  := term_and ("OR" term_and)*
    term_and := atom (["AND"] atom)*
    atom  := "(" expr [")"] | WORD | "\\"" PHRASE "\\""

Stray ``)`` and dangling operators are ignored, a missing ``)`` closes at the
end of input.
"""

from __future__ import annotations

import re

from elepy.services.expressions import And, Expression, Or, Search

_TOKEN_RE = re.compile(r'"([^"]*)"?|(\()|(\))|([^\s()"]+)')

_AND = "AND"
_OR = "OR"
_LPAREN = "("
_RPAREN = ")"


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    for match in _TOKEN_RE.finditer(text):
        phrase, lparen, rparen, word = match.groups()
        if phrase is not None:
            if phrase.strip():
                tokens.append(("term", phrase.strip()))
        elif lparen:
            tokens.append(("op", _LPAREN))
        elif rparen:
            tokens.append(("op", _RPAREN))
        elif word in {_AND, _OR}:
            tokens.append(("op", word))
        else:
            tokens.append(("term", word))
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def parse(self) -> Expression | None:
        result = None
        while self.pos < len(self.tokens):
            expr = self._parse_or()
            if expr is not None:
                result = expr if result is None else And((result, expr))
            # Only a stray ")" at top level stops _parse_or early.
            if self._peek() == ("op", _RPAREN):
                self.pos += 1
        return result

    def _parse_or(self) -> Expression | None:
        branches: list[Expression] = []
        while True:
            branch = self._parse_and()
            if branch is not None:
                branches.append(branch)
            token = self._peek()
            if token == ("op", _OR):
                self.pos += 1
                continue
            break
        if not branches:
            return None
        return branches[0] if len(branches) == 1 else Or(tuple(branches))

    def _parse_and(self) -> Expression | None:
        parts: list[Expression] = []
        while True:
            token = self._peek()
            if token is None or token == ("op", _OR) or token == ("op", _RPAREN):
                break
            if token == ("op", _AND):
                self.pos += 1
                continue
            atom = self._parse_atom()
            if atom is not None:
                parts.append(atom)
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else And(tuple(parts))

    def _parse_atom(self) -> Expression | None:
        kind, value = self.tokens[self.pos]
        self.pos += 1
        if kind == "term":
            return Search(value)
        # Opening parenthesis.
        inner = self._parse_or()
        if self._peek() == ("op", _RPAREN):
            self.pos += 1
        return inner


def parse_search(text: str | None) -> Expression:
    """Parse a free-text search string into an expression tree.

    Blank input gives ``Search("")`` which ``purge`` later removes.
    """
    tokens = _tokenize(str(text or ""))
    if not tokens:
        return Search("")
    result = _Parser(tokens).parse()
    return result if result is not None else Search("")
