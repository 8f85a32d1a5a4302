"""Lexical canonicalisation of SQL module text for comparison.

This is deliberately not a parser: ``--`` inside a string literal is treated
as a comment start like anywhere else.
"""
from __future__ import annotations

import re


_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_line_endings(text: str) -> str:
    return (text or "").replace("\r\n", "\n")


def strip_sql_comments(text: str) -> str:
    """Remove block comments first, then line comments up to end of line.

    Repeated until nothing changes, since removing one comment can join the
    halves of another (``//**/*x*/``).
    """
    while True:
        without_block = _BLOCK_COMMENT_RE.sub("", text)
        stripped = _LINE_COMMENT_RE.sub("", without_block)
        if stripped == text:
            return stripped
        text = stripped


def mask_sql_comments(text: str) -> str:
    """Blank out comment spans, keeping every other character at its offset."""

    def blank(match: re.Match) -> str:
        return re.sub(r"[^\n]", " ", match.group(0))

    masked = _BLOCK_COMMENT_RE.sub(blank, text)
    return _LINE_COMMENT_RE.sub(blank, masked)


def normalize_definition(text: str, ignore_whitespace: bool = False, strip_comments: bool = False) -> str:
    """Canonicalise a definition so equal code compares equal.

    Args:
        text: Raw module/constraint definition.
        ignore_whitespace: Collapse every whitespace run to a single space.
        strip_comments: Drop ``/* ... */`` and ``-- ...`` comments.

    Returns:
        The normalised text. Idempotent for a fixed pair of flags.
    """
    d = normalize_line_endings(text)
    if strip_comments:
        d = strip_sql_comments(d)
    d = d.strip()
    if ignore_whitespace:
        d = _WHITESPACE_RE.sub(" ", d)
    return d
