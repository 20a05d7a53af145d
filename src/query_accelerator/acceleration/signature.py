"""
Signature Normalizer
Canonical fingerprint of a query's text, used to match requests to catalog entries.
"""

import hashlib
import re
from collections.abc import Iterator

# Scanned left to right, so a quote inside a comment or a comment marker
# inside a literal never starts the other kind of lexeme
_LEXEME = re.compile(
    r"""(?P<quoted>'(?:[^']|'')*'|"(?:[^"]|"")*")|(?P<comment>/\*.*?\*/|--[^\n]*)""",
    re.DOTALL,
)
_WHITESPACE = re.compile(r"\s+")
_PUNCT_SPACING = re.compile(r"\s*([(),;=<>+/-])\s*")


def _split_literals(sql: str) -> Iterator[tuple[str, bool]]:
    """Yield (text, is_literal) pieces with comments replaced by a space."""
    plain = []
    pos = 0
    for match in _LEXEME.finditer(sql):
        plain.append(sql[pos:match.start()])
        pos = match.end()
        if match.group("comment") is not None:
            plain.append(" ")
            continue
        yield "".join(plain), False
        plain = []
        yield match.group("quoted"), True
    plain.append(sql[pos:])
    yield "".join(plain), False


def _normalize_fragment(fragment: str) -> str:
    fragment = _WHITESPACE.sub(" ", fragment)
    fragment = _PUNCT_SPACING.sub(r"\1", fragment)
    return fragment.lower()


def normalize_sql(sql: str) -> str:
    """
    Canonical text of a statement.

    Lowercases everything outside quotes, drops comments (engine hints
    included), collapses whitespace and strips trailing semicolons.
    Quoted literals and identifiers keep their case and inner whitespace.
    """
    normalized = "".join(
        text if is_literal else _normalize_fragment(text)
        for text, is_literal in _split_literals(sql)
    )
    return normalized.strip().rstrip(";").strip()


def signature(sql: str) -> str:
    """Stable sha1 fingerprint of the normalized statement."""
    return hashlib.sha1(normalize_sql(sql).encode("utf-8")).hexdigest()


def sql_hash(sql: str) -> str:
    """Hash of the raw statement text, as stored with query samples."""
    return hashlib.sha1(sql.encode("utf-8")).hexdigest()
