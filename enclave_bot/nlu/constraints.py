"""Deterministic extraction of verbatim text and lock/include directives.

Runs before any model call. Priority for verbatim text:
1. quoted spans (double quotes preferred over single quotes)
2. colon patterns ("say this: ...", "with this exact text: ...")
3. explicit keywords ("exact", "verbatim", "word for word")
"""
import re
from typing import List

from ..schemas.session_models import VerbatimConstraint

DOUBLE_QUOTED = re.compile(r"[\"“”]([^\"“”]+)[\"“”]")
# single quotes only count when they aren't apostrophes inside a word
SINGLE_QUOTED = re.compile(r"(?<!\w)['‘’]([^'‘’]+)['‘’](?!\w)")

INCLUDE_ALL = ["include all", "both"]

COLON_PATTERN = re.compile(
    r"(?:with\s+this\s+exact\s+(?:text|wording|message)"
    r"|use\s+this\s+exact|send\s+this\s+exact"
    r"|say\s+this|send\s+this|verbatim"
    r"|exact\s+(?:text|wording|message))\s*:\s*(.+)$",
    re.IGNORECASE | re.DOTALL,
)

KEYWORD_WORDS = re.compile(r"\b(exact|exactly|verbatim)\b", re.IGNORECASE)
KEYWORD_PHRASES = ["exact text", "exact wording", "exact message", "my exact", "word for word"]

COMMAND_PREFIXES = [
    re.compile(
        r"^(?:no,?\s+)?(?:with\s+this\s+exact\s+(?:text|wording|message)|use\s+my\s+exact\s+wording"
        r"|say\s+exactly|use\s+this\s+exact|word\s+for\s+word)\s*:?\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(?:no,?\s+)?(?:edit\s+it\s+to\s+this\s+exactly|make\s+it\s+say\s+exactly"
        r"|change\s+it\s+to\s+exactly|send\s+exactly)\s*:?\s*",
        re.IGNORECASE,
    ),
]

MIN_KEYWORD_TEXT = 6

MUST_INCLUDE_PATTERNS = [
    re.compile(r"make\s+sure\s+(?:to\s+)?(?:say|mention|include)\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
    re.compile(r"don'?t\s+forget\s+(?:to\s+)?(?:say|mention|include)\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
    re.compile(r"be\s+sure\s+to\s+(?:say|mention|include)\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
]

MUST_NOT_CHANGE_PATTERNS = [
    re.compile(r"don'?t\s+change\s+(?:the\s+)?(time|location|place|date|where|when)", re.IGNORECASE),
    re.compile(r"keep\s+(?:the\s+)?(time|location|place|date|where|when)\s+(?:the\s+)?same", re.IGNORECASE),
    re.compile(r"(time|location|place|date)\s+stays?\s+(?:the\s+)?same", re.IGNORECASE),
]

FIELD_SYNONYMS = {
    "time": "time",
    "when": "time",
    "location": "location",
    "place": "location",
    "where": "location",
    "date": "date",
}


def extract_quotes(text: str) -> List[str]:
    """Return quoted spans, double-quoted ones if any exist, else single-quoted."""
    spans = [m.group(1) for m in DOUBLE_QUOTED.finditer(text) if m.group(1).strip()]
    if spans:
        return spans
    return [m.group(1) for m in SINGLE_QUOTED.finditer(text) if m.group(1).strip()]


def strip_quotes(text: str) -> str:
    """Remove quoted spans so punctuation inside them doesn't leak into routing."""
    text = DOUBLE_QUOTED.sub(" ", text)
    return SINGLE_QUOTED.sub(" ", text)


def has_verbatim_keywords(text: str) -> bool:
    lower = text.lower()
    if KEYWORD_WORDS.search(lower):
        return True
    return any(p in lower for p in KEYWORD_PHRASES)


def _colon_text(text: str):
    m = COLON_PATTERN.search(text)
    if not m:
        return None
    content = m.group(1).strip()
    return content or None


def parse_verbatim(text: str) -> VerbatimConstraint:
    quotes = extract_quotes(text)
    if quotes:
        lower = text.lower()
        if len(quotes) > 1 and any(sig in lower for sig in INCLUDE_ALL):
            return VerbatimConstraint(is_verbatim=True, text=" ".join(quotes), provenance="quoted")
        return VerbatimConstraint(is_verbatim=True, text=quotes[0], provenance="quoted")

    colon = _colon_text(text)
    if colon:
        return VerbatimConstraint(is_verbatim=True, text=colon, provenance="colon_pattern")

    if has_verbatim_keywords(text):
        remainder = text
        for prefix in COMMAND_PREFIXES:
            remainder = prefix.sub("", remainder)
        remainder = remainder.strip()
        if len(remainder) >= MIN_KEYWORD_TEXT and len(remainder) < len(text.strip()):
            return VerbatimConstraint(is_verbatim=True, text=remainder, provenance="explicit_keyword")

    return VerbatimConstraint()


def parse_must_include(text: str) -> List[str]:
    phrases: List[str] = []
    for pattern in MUST_INCLUDE_PATTERNS:
        for m in pattern.finditer(text):
            phrase = m.group(1).strip().rstrip(".!,;")
            if phrase and phrase not in phrases:
                phrases.append(phrase)
    return phrases


def parse_must_not_change(text: str) -> List[str]:
    fields: List[str] = []
    for pattern in MUST_NOT_CHANGE_PATTERNS:
        for m in pattern.finditer(text):
            canonical = FIELD_SYNONYMS.get(m.group(1).lower())
            if canonical and canonical not in fields:
                fields.append(canonical)
    return fields
