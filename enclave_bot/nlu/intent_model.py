"""Simple rule-based classifier for side-chat messages."""
import re

from ..schemas.session_models import QueryKind

ABUSIVE = re.compile(r"\b(fuck\w*|shit\w*|bitch\w*|asshole|stfu|idiot|stupid bot|dumb bot)\b", re.IGNORECASE)
POLL_ANSWER = re.compile(r"^(?:\d{1,2}|yes|no|maybe|y|n|[a-d])[.!]*$", re.IGNORECASE)


class QueryClassifier:
    def __init__(self):
        # keyword lists checked in order
        self.smalltalk = ["hi", "hey", "hello", "sup", "yo", "thanks", "thank you", "thx", "ty",
                          "ok", "okay", "cool", "nice", "lol", "good morning", "good night"]
        self.enclave = ["enclave", "what do you do", "how do you work", "what are you", "who are you",
                        "how do i send", "how do i make a poll", "how do i create", "how do i use"]

    def looks_like_poll_answer(self, text: str) -> bool:
        t = text.strip()
        return bool(POLL_ANSWER.match(t))

    def predict(self, text: str) -> QueryKind:
        t = (text or "").strip().lower()
        if ABUSIVE.search(t):
            return QueryKind.abusive
        if re.sub(r"[\s.!,]+$", "", t) in self.smalltalk:
            return QueryKind.smalltalk
        for kw in self.enclave:
            if re.search(rf"\b{re.escape(kw)}\b", t):
                return QueryKind.enclave_help
        if self.looks_like_poll_answer(t):
            return QueryKind.action_request
        return QueryKind.content_query
