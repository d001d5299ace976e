#!/usr/bin/env python3
"""
Retrieval combiner for side-chat questions.

Merges the four retrieval layers into one Decision. Below the clarify
threshold the user gets a follow-up question instead of a low-confidence
snippet presented as fact.
"""

from typing import List, Sequence

from ..schemas.session_models import (
    AnswerDecision,
    ClarifyDecision,
    Decision,
    ExecuteActionDecision,
    QueryKind,
    RetrievalItem,
    Source,
)

CLARIFY_THRESHOLD = 0.35
CONTENT_AGREEMENT = 0.6
ENCLAVE_AGREEMENT = 0.4
AGREEMENT_BONUS = 0.15
ACTION_CONFIDENCE = 0.7

SMALLTALK_REPLY = "Happy to help! Ask me about upcoming events, or say \"send a message\" to start an announcement."
ABUSIVE_REPLY = "I'm here to help. Try asking something like \"when is study hall?\""
ENCLAVE_CLARIFY = "Sure, what would you like to know about Enclave?"
CONTENT_MISS = "I couldn't find that in your org's docs. Could you be more specific?"
CONTENT_CLARIFY = "What exactly are you looking for?"
GENERIC_CLARIFY = "What do you need exactly?"


def _top(items: Sequence[RetrievalItem]) -> float:
    return items[0].score if items else 0.0


def calibrate(content: Sequence[RetrievalItem], enclave: Sequence[RetrievalItem]) -> float:
    content_top = _top(content)
    enclave_top = _top(enclave)
    bonus = AGREEMENT_BONUS if content_top > CONTENT_AGREEMENT and enclave_top > ENCLAVE_AGREEMENT else 0.0
    return max(0.0, min(1.0, max(content_top, enclave_top) + bonus))


def _rank(items: Sequence[RetrievalItem]) -> List[RetrievalItem]:
    return sorted(items, key=lambda i: i.score, reverse=True)


def combine(
    intent: QueryKind,
    content: Sequence[RetrievalItem],
    convo: Sequence[RetrievalItem],
    enclave: Sequence[RetrievalItem],
    action: Sequence[RetrievalItem],
) -> Decision:
    """Pick clarify / answer / execute_action for one side-chat message."""
    content, enclave = _rank(content), _rank(enclave)
    proposals = [a for a in _rank(action) if a.proposal is not None]
    score = calibrate(content, enclave)

    if intent == QueryKind.action_request and proposals:
        return ExecuteActionDecision(action=proposals[0].proposal, confidence=ACTION_CONFIDENCE)

    if intent == QueryKind.enclave_help and enclave:
        if score < CLARIFY_THRESHOLD:
            return ClarifyDecision(message=ENCLAVE_CLARIFY, confidence=score)
        top = enclave[0]
        return AnswerDecision(message=top.snippet, confidence=score,
                              sources=[Source(layer="enclave", title=top.title)])

    if intent == QueryKind.content_query:
        if not content:
            return ClarifyDecision(message=CONTENT_MISS, confidence=0.2)
        if score < CLARIFY_THRESHOLD:
            return ClarifyDecision(message=CONTENT_CLARIFY, confidence=score)
        top = content[0]
        return AnswerDecision(message=top.snippet, confidence=score,
                              sources=[Source(layer=top.layer, title=top.title)])

    if intent == QueryKind.smalltalk:
        return AnswerDecision(message=SMALLTALK_REPLY, confidence=0.5)

    if intent == QueryKind.abusive:
        return AnswerDecision(message=ABUSIVE_REPLY, confidence=0.4)

    return ClarifyDecision(message=GENERIC_CLARIFY, confidence=0.3)
