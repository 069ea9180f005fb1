from __future__ import annotations

"""
Text normalization utilities shared by the encoder and the explanation
builder.

Two very different consumers live here.  The query template feeds the
embedding model and therefore has to reproduce, character for
character, the text the offline corpus builder embedded.  The lexical
tokens only drive the human-readable explanation and can be as lenient
as we like.
"""

import re
import unicodedata
from typing import Iterable, List

from .config import MAX_INPUT_CHARS, QUERY_LOWERCASE, QUERY_PREFIX


# ---------------------------
# Basic helpers
# ---------------------------

def clamp_text_length(text: str, max_chars: int = MAX_INPUT_CHARS) -> str:
    """
    Hard cap on input size so we don't accidentally feed huge strings
    into models.
    """
    if not isinstance(text, str):
        text = str(text)
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


def normalize_unicode(text: str) -> str:
    """
    Normalize weird unicode (fancy quotes, etc.) into a more stable
    form.  Using NFC keeps things mostly intact but canonicalized.
    """
    if not text:
        return ""
    return unicodedata.normalize("NFC", text)


def normalize_whitespace(text: str) -> str:
    """
    Collapse all whitespace runs into a single space and strip edges.
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def basic_clean(text: str) -> str:
    """
    Cleaning applied to every raw query before anything else:

    - clamp length
    - normalize unicode
    - normalize whitespace
    """
    if text is None:
        return ""
    text = clamp_text_length(str(text))
    text = normalize_unicode(text)
    text = normalize_whitespace(text)
    return text


# ---------------------------
# Query template
# ---------------------------

def wrap_query(
    text: str,
    prefix: str = QUERY_PREFIX,
    lowercase: bool = QUERY_LOWERCASE,
) -> str:
    """
    Wrap a cleaned query in the template the corpus was embedded with,
    e.g. ``"Ingredients: tomato, basil"``.
    """
    body = text.lower() if lowercase else text
    return f"{prefix}{body}"


# ---------------------------
# Lexical tokens
# ---------------------------

def _word_runs(text: str) -> List[str]:
    """
    Runs of letters (Unicode L*) in any script.  Combining marks (M*)
    continue a word, so vowel signs in Devanagari and similar scripts
    stay attached.  Digits, underscores and punctuation split.
    """
    runs: List[str] = []
    current: List[str] = []
    for ch in text:
        cat = unicodedata.category(ch)
        if cat[0] == "L" or (cat[0] == "M" and current):
            current.append(ch)
        elif current:
            runs.append("".join(current))
            current = []
    if current:
        runs.append("".join(current))
    return runs


def lexical_tokens(text: str, min_len: int = 2) -> List[str]:
    """
    Lowercase alphabetic tokens of at least ``min_len`` characters, in
    order of appearance.  Tolerant of punctuation and non-Latin scripts
    (``"Свёкла, tomato!"`` -> ``["свёкла", "tomato"]``).
    """
    if not text:
        return []
    text = normalize_unicode(str(text)).lower()
    return [t for t in _word_runs(text) if len(t) >= min_len]


def unique_in_order(tokens: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for tok in tokens:
        if tok not in seen:
            seen.add(tok)
            out.append(tok)
    return out
