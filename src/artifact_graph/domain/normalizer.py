"""Cypher clause normalizer for match-by-id queries with relation results.

Object mappers load an entity together with its relations using one query
whose RETURN embeds a list of pattern comprehensions::

    MATCH (n:`L`) WHERE n.`uuid` = { id } WITH n
    RETURN n, [ [ (n)-[r1:`E`]->(a1:`T`) | [ r1, a1 ] ], ... ]

Executors that cannot evaluate nested pattern comprehensions run the
equivalent chained form instead::

    MATCH (n:`L`) WHERE n.`uuid` = '123' WITH n
    MATCH (n)-[r1:`E`]->(a1:`T`) WITH n, r1, a1
    ...
    RETURN n, r1, a1, ...

The input is tokenized by a small scanner that keeps backtick identifiers
and string literals opaque. Clause keywords are only recognised as whole
words at bracket depth zero. The relation list is then parsed by recursive
descent over the grammar::

    relation_list := "[" element ("," element)* "]"
    element       := "[" pattern "|" "[" binding ("," binding)* "]" "]"

Anything that does not have the match-by-id shape is returned unchanged; a
relation list that does not follow the grammar raises
``MalformedRelationPatternError`` and nothing is returned.

Pure Python — ZERO framework imports.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import NoReturn

from artifact_graph.errors import MalformedRelationPatternError

MATCH = "MATCH"
WHERE = "WHERE"
WITH = "WITH"
RETURN = "RETURN"

ID_PLACEHOLDER = "{ id }"

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = frozenset(_OPENERS.values())


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class _Kind(enum.Enum):
    SPACE = "space"
    WORD = "word"
    QUOTED = "quoted"
    OPEN = "open"
    CLOSE = "close"
    COMMA = "comma"
    PIPE = "pipe"
    OTHER = "other"


@dataclass(frozen=True)
class _Token:
    kind: _Kind
    text: str
    start: int
    closed: bool = True

    @property
    def end(self) -> int:
        return self.start + len(self.text)


def _quoted_end(text: str, start: int) -> int | None:
    """Offset just past the literal opening at ``start``, ``None`` if unterminated."""
    quote = text[start]
    i = start + 1
    while i < len(text):
        ch = text[i]
        if quote != "`" and ch == "\\":
            i += 2
            continue
        if ch == quote:
            # `` inside a backtick identifier is an escaped backtick
            if quote == "`" and text.startswith("`", i + 1):
                i += 2
                continue
            return i + 1
        i += 1
    return None


def _scan(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            j = i
            while j < len(text) and text[j].isspace():
                j += 1
            tokens.append(_Token(_Kind.SPACE, text[i:j], i))
        elif ch in "`'\"":
            end = _quoted_end(text, i)
            j = len(text) if end is None else end
            tokens.append(_Token(_Kind.QUOTED, text[i:j], i, closed=end is not None))
        elif ch.isalnum() or ch == "_":
            j = i
            while j < len(text) and (text[j].isalnum() or text[j] == "_"):
                j += 1
            tokens.append(_Token(_Kind.WORD, text[i:j], i))
        else:
            j = i + 1
            if ch in _OPENERS:
                kind = _Kind.OPEN
            elif ch in _CLOSERS:
                kind = _Kind.CLOSE
            elif ch == ",":
                kind = _Kind.COMMA
            elif ch == "|":
                kind = _Kind.PIPE
            else:
                kind = _Kind.OTHER
            tokens.append(_Token(kind, ch, i))
        i = j
    return tokens


def _top_level_keywords(tokens: list[_Token]) -> dict[str, int]:
    """Token index of the first depth-zero occurrence of each clause keyword."""
    found: dict[str, int] = {}
    depth = 0
    for index, token in enumerate(tokens):
        if token.kind is _Kind.OPEN:
            depth += 1
        elif token.kind is _Kind.CLOSE:
            depth = max(depth - 1, 0)
        elif token.kind is _Kind.WORD and depth == 0:
            keyword = token.text.upper()
            if keyword in (MATCH, WHERE, WITH, RETURN):
                found.setdefault(keyword, index)
    return found


def _span(text: str, tokens: list[_Token]) -> str:
    if not tokens:
        return ""
    return text[tokens[0].start : tokens[-1].end].strip()


# ---------------------------------------------------------------------------
# Relation list parser
# ---------------------------------------------------------------------------


class _RelationListParser:
    """Recursive-descent parser for the bracketed relation list."""

    def __init__(self, text: str, tokens: list[_Token]) -> None:
        self._text = text
        self._source = _span(text, tokens)
        self._tokens = [t for t in tokens if t.kind is not _Kind.SPACE]
        self._pos = 0

    def _fail(self, message: str) -> NoReturn:
        raise MalformedRelationPatternError(self._source, message)

    def _peek(self) -> _Token | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _expect(self, text: str, context: str) -> None:
        token = self._peek()
        if token is None:
            self._fail(f"expected {text!r} {context}, reached end of query")
        elif token.text != text:
            self._fail(f"expected {text!r} {context}, found {token.text!r}")
        self._pos += 1

    def parse(self) -> dict[str, str]:
        bindings: dict[str, str] = {}
        self._expect("[", "to open the relation list")
        while True:
            binding_text, pattern = self._element()
            bindings[binding_text] = pattern
            token = self._peek()
            if token is None or token.kind is not _Kind.COMMA:
                break
            self._pos += 1
        self._expect("]", "to close the relation list")
        trailing = self._peek()
        if trailing is not None:
            self._fail(f"unexpected {trailing.text!r} after the relation list")
        return bindings

    def _element(self) -> tuple[str, str]:
        self._expect("[", "to open a relation element")
        pattern = _span(self._text, self._balanced(stop_at_pipe=True))
        if not pattern:
            self._fail("relation element has an empty pattern")
        token = self._peek()
        if token is None or token.kind is not _Kind.PIPE:
            self._fail("relation element has no '|' separator")
        self._pos += 1
        self._expect("[", "to open the binding list")
        binding_tokens = self._balanced(stop_at_pipe=False)
        self._expect("]", "to close the binding list")
        token = self._peek()
        if token is not None and token.kind is _Kind.PIPE:
            self._fail("relation element has more than one '|' separator")
        self._expect("]", "to close a relation element")

        binding_text = _span(self._text, binding_tokens)
        aliases = split_bindings(binding_text)
        if not aliases or not all(aliases):
            self._fail(f"invalid binding list {binding_text!r}")
        return binding_text, pattern

    def _balanced(self, *, stop_at_pipe: bool) -> list[_Token]:
        """Consume tokens up to a depth-zero closer (or pipe); brackets must nest."""
        consumed: list[_Token] = []
        stack: list[str] = []
        while True:
            token = self._peek()
            if token is None:
                self._fail("unbalanced brackets")
            if not token.closed:
                self._fail(f"unterminated literal {token.text!r}")
            if not stack:
                if token.kind is _Kind.CLOSE:
                    return consumed
                if stop_at_pipe and token.kind is _Kind.PIPE:
                    return consumed
            if token.kind is _Kind.OPEN:
                stack.append(_OPENERS[token.text])
            elif token.kind is _Kind.CLOSE:
                if stack.pop() != token.text:
                    self._fail(f"mismatched {token.text!r}")
            consumed.append(token)
            self._pos += 1


def split_bindings(binding_text: str) -> list[str]:
    """``"r1, a1"`` -> ``["r1", "a1"]``."""
    return [alias.strip() for alias in binding_text.split(",")]


# ---------------------------------------------------------------------------
# Clause set
# ---------------------------------------------------------------------------


def _quote(identifier: str) -> str:
    escaped = identifier.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass
class QueryClauseSet:
    """A match-by-id query split into clauses, with its relation list parsed."""

    match_clause: str
    where_clause: str
    with_clause: str
    return_clause: str
    return_tokens: list[str] = field(default_factory=list)
    relation_bindings: dict[str, str] = field(default_factory=dict)

    def chained_clauses(self) -> tuple[list[str], list[str]]:
        """One ``MATCH ... WITH ...`` per relation, plus the final alias list."""
        aliases = list(self.return_tokens)
        clauses: list[str] = []
        for binding_text, pattern in self.relation_bindings.items():
            aliases.extend(split_bindings(binding_text))
            clauses.append(f"{MATCH} {pattern} {WITH} {', '.join(aliases)}")
        return clauses, aliases

    def render(self, identifier: str) -> str:
        clauses, aliases = self.chained_clauses()
        statement = " ".join(
            [
                self.match_clause,
                self.where_clause,
                self.with_clause,
                *clauses,
                f"{RETURN} {', '.join(aliases)}",
            ]
        )
        return statement.replace(ID_PLACEHOLDER, _quote(identifier))


def parse_query_clauses(query: str) -> QueryClauseSet | None:
    """Split a match-by-id query; ``None`` when it has no relation list to flatten."""
    tokens = _scan(query)
    if not tokens or tokens[0].kind is not _Kind.WORD or tokens[0].text.upper() != MATCH:
        return None

    keywords = _top_level_keywords(tokens)
    where_at = keywords.get(WHERE)
    with_at = keywords.get(WITH)
    return_at = keywords.get(RETURN)
    if where_at is None or with_at is None or return_at is None:
        return None
    if not where_at < with_at < return_at:
        return None

    return_body = tokens[return_at + 1 :]
    aliases: list[str] = []
    segment: list[_Token] = []
    depth = 0
    for index, token in enumerate(return_body):
        if token.kind is _Kind.SPACE and not segment:
            continue
        if depth == 0 and not segment and token.kind is _Kind.OPEN and token.text == "[":
            relation_tokens = return_body[index:]
            break
        if token.kind is _Kind.OPEN:
            depth += 1
        elif token.kind is _Kind.CLOSE:
            depth = max(depth - 1, 0)
        if depth == 0 and token.kind is _Kind.COMMA:
            aliases.append(_span(query, segment))
            segment = []
            continue
        segment.append(token)
    else:
        return None

    if not aliases or not all(aliases):
        return None

    bindings = _RelationListParser(query, relation_tokens).parse()
    return QueryClauseSet(
        match_clause=_span(query, tokens[:where_at]),
        where_clause=_span(query, tokens[where_at:with_at]),
        with_clause=_span(query, tokens[with_at:return_at]),
        return_clause=_span(query, tokens[return_at:]),
        return_tokens=aliases,
        relation_bindings=bindings,
    )


def normalize_match_by_id_with_relation_result(query: str, identifier: str) -> str:
    """Rewrite nested relation results into chained ``MATCH ... WITH`` clauses.

    Returns ``query`` unchanged when it is not a match-by-id query with a
    trailing relation list. Raises ``MalformedRelationPatternError`` when
    the relation list is present but does not follow the expected grammar.
    """
    clauses = parse_query_clauses(query)
    if clauses is None:
        return query
    return clauses.render(identifier)
