"""Rule-based router: ordered pattern rules, first match wins.

Rules never look at session state; the reducer decides what an intent is
allowed to do. Only when no rule fires is the fallback classifier consulted.
"""
import re
from typing import List, Optional, Sequence

from ..schemas.session_models import Intent, IntentKind, Mode
from ..utils.logger import get_logger
from .constraints import parse_must_include, parse_must_not_change, parse_verbatim, strip_quotes
from .entity_extractor import extract_location, extract_time

logger = get_logger()

SEND    = ["send it", "send now", "yes", "yep", "yeah", "y", "ship it", "confirm", "go ahead", "broadcast"]
CANCEL  = ["cancel", "stop", "never mind", "nevermind", "forget it", "discard"]
EDIT    = ["no", "nope", "edit", "change", "update"]
CONFIRM = ["preview", "review", "show draft", "show me the draft", "show it"]
OPT_OUT = ["stop", "stopall", "unsubscribe", "end", "quit"]
OPT_IN  = ["start", "unstop", "subscribe"]
HELP    = ["help", "info"]
SMALLTALK = ["hi", "hey", "hello", "sup", "what's up", "whats up", "yo", "thanks", "thank you", "thx", "ty",
             "ok", "okay", "k", "sure", "alright", "got it", "cool", "nice", "sweet", "bet", "lol"]

QUESTION_WORDS = re.compile(
    r"^(what|when|where|who|whom|whose|which|how|why|is|are|was|were|do|does|did|will|would|can|could|should)\b",
    re.IGNORECASE,
)
ANNOUNCEMENT = re.compile(r"\b(?:send|broadcast|blast)(?:\s+out)?(?:\s+an?)?\s+(?:message|announcement)\b", re.IGNORECASE)
ANNOUNCEMENT_COLON = re.compile(r"\b(?:broadcast|blast)\s*:", re.IGNORECASE)
POLL = re.compile(r"\b(?:make|create|send|start)(?:\s+out)?(?:\s+an?)?\s+(?:poll|survey)\b", re.IGNORECASE)
TRAILING_CONTENT = re.compile(r":\s*(.+)$", re.DOTALL)
TIME_EDIT_SIGNAL = re.compile(r"\b(?:make\s+it|change\s+it\s+to|at)\b", re.IGNORECASE)
LOCATION_EDIT_SIGNAL = re.compile(r"\b(?:make\s+it|change\s+it\s+to|at|in)\b", re.IGNORECASE)


def _phrase_pattern(phrases: List[str]):
    alts = "|".join(r"\s+".join(re.escape(w) for w in p.split()) for p in phrases)
    return re.compile(rf"^(?:{alts})$", re.IGNORECASE)


SEND_PATTERN = _phrase_pattern(SEND)
CANCEL_PATTERN = _phrase_pattern(CANCEL)
EDIT_PATTERN = _phrase_pattern(EDIT)
CONFIRM_PATTERN = _phrase_pattern(CONFIRM)
OPT_OUT_PATTERN = _phrase_pattern(OPT_OUT)
OPT_IN_PATTERN = _phrase_pattern(OPT_IN)
HELP_PATTERN = _phrase_pattern(HELP)
SMALLTALK_PATTERN = _phrase_pattern(SMALLTALK)


def _normalize(text: str) -> str:
    return re.sub(r"[\s.!,]+$", "", (text or "").strip())


def detect_control_command(text: str) -> Optional[Mode]:
    t = _normalize(text)
    if SEND_PATTERN.match(t):
        return Mode.sending
    if CANCEL_PATTERN.match(t):
        return Mode.idle
    if EDIT_PATTERN.match(t):
        return Mode.editing
    if CONFIRM_PATTERN.match(t):
        return Mode.confirming
    return None


def detect_membership_keyword(text: str) -> Optional[str]:
    """Carrier-style keywords: 'opt_out', 'opt_in' or 'help' for a whole-message match."""
    t = _normalize(text)
    if OPT_OUT_PATTERN.match(t):
        return "opt_out"
    if OPT_IN_PATTERN.match(t):
        return "opt_in"
    if HELP_PATTERN.match(t):
        return "help"
    return None


def is_question(text: str) -> bool:
    t = (text or "").strip()
    return bool(QUESTION_WORDS.match(t)) or "?" in strip_quotes(t)


def _trailing_content(text: str) -> Optional[str]:
    m = TRAILING_CONTENT.search(text)
    if not m:
        return None
    return m.group(1).strip() or None


def route_with_rules(text: str) -> Optional[Intent]:
    """Return the intent of the first rule that fires, or None."""
    verbatim = parse_verbatim(text)
    must_include = parse_must_include(text)
    locked = parse_must_not_change(text)

    control = detect_control_command(text)
    if control is not None:
        return Intent(kind=IntentKind.system, is_control_command=True, mode_transition=control)

    if is_question(text):
        return Intent(kind=IntentKind.query)

    if ANNOUNCEMENT.search(text) or ANNOUNCEMENT_COLON.search(text):
        intent = Intent(kind=IntentKind.announcement, mode_transition=Mode.drafting,
                        must_include=must_include, fields_locked=locked)
        content = _trailing_content(text)
        if content:
            intent.fields_changed = {"body": content}
        if verbatim.is_verbatim:
            intent.quoted_text = verbatim.text
        return intent

    if POLL.search(text):
        intent = Intent(kind=IntentKind.poll, mode_transition=Mode.drafting,
                        must_include=must_include, fields_locked=locked)
        if verbatim.is_verbatim:
            intent.quoted_text = verbatim.text
        else:
            content = _trailing_content(text)
            if content:
                intent.fields_changed = {"question": content}
        return intent

    if verbatim.is_verbatim:
        return Intent(kind=IntentKind.announcement, mode_transition=Mode.editing,
                      quoted_text=verbatim.text, fields_locked=["body"] + [f for f in locked if f != "body"],
                      must_include=must_include)

    time = extract_time(text)
    if time and TIME_EDIT_SIGNAL.search(text):
        return Intent(kind=IntentKind.announcement, mode_transition=Mode.editing,
                      fields_changed={"time": time}, fields_locked=locked, must_include=must_include)

    location = extract_location(text)
    if location and LOCATION_EDIT_SIGNAL.search(text):
        return Intent(kind=IntentKind.announcement, mode_transition=Mode.editing,
                      fields_changed={"location": location}, fields_locked=locked, must_include=must_include)

    # bare lock/include directives ("don't change the time")
    if locked or must_include:
        return Intent(kind=IntentKind.announcement, mode_transition=Mode.editing,
                      fields_locked=locked, must_include=must_include)

    if SMALLTALK_PATTERN.match(_normalize(text).lower()):
        return Intent(kind=IntentKind.smalltalk)

    return None


class Router:
    """Rules first; the injected fallback classifier only sees unmatched text."""

    def __init__(self, fallback=None):
        self.fallback = fallback

    async def route(self, text: str, history_window: Sequence[str] = ()) -> Intent:
        intent = route_with_rules(text)
        if intent is not None:
            return intent
        if self.fallback is None:
            return Intent(kind=IntentKind.smalltalk)
        try:
            return await self.fallback.classify(text, list(history_window))
        except Exception as e:
            logger.warning(f"[ROUTER] fallback classifier failed, defaulting to smalltalk: {e}")
            return Intent(kind=IntentKind.smalltalk)
