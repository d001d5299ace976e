"""LLM-based router fallback.

Only consulted when no deterministic rule matched. The classifier is
swappable: anything with an async ``classify(text, history)`` returning an
``Intent`` can be handed to the Router. Any failure, timeout or unparsable
output becomes a smalltalk intent.
"""
import json
import re
from typing import List, Optional, Protocol

from pydantic import ValidationError

from ..app.prompt_builder import PromptBuilder
from ..schemas.session_models import Intent, IntentKind, Mode
from ..utils.errors import LanguageModelTimeout
from ..utils.logger import get_logger

logger = get_logger()

ALLOWED_KINDS = {IntentKind.announcement, IntentKind.poll, IntentKind.query, IntentKind.smalltalk}
ALLOWED_TRANSITIONS = {None, Mode.drafting, Mode.editing}
JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


class IntentClassifier(Protocol):
    async def classify(self, text: str, history: List[str]) -> Intent:
        ...


def parse_intent(raw: str) -> Optional[Intent]:
    """Validate model output into an Intent; None when it isn't usable."""
    m = JSON_BLOCK.search(raw or "")
    if not m:
        return None
    try:
        data = json.loads(m.group(0))
        intent = Intent.model_validate({
            "kind": data.get("kind"),
            "mode_transition": data.get("mode_transition"),
            "fields_changed": data.get("fields_changed") or {},
        })
    except (ValueError, ValidationError, AttributeError):
        return None
    if intent.kind not in ALLOWED_KINDS or intent.mode_transition not in ALLOWED_TRANSITIONS:
        return None
    if intent.kind in (IntentKind.query, IntentKind.smalltalk):
        # side-chat never carries a transition
        intent.mode_transition = None
        intent.fields_changed = {}
    return intent


class LLMIntentClassifier:
    def __init__(self, llm_service, prompt_builder: Optional[PromptBuilder] = None):
        self.llm = llm_service
        self.prompts = prompt_builder or PromptBuilder()

    async def classify(self, text: str, history: List[str]) -> Intent:
        try:
            raw = await self.llm.complete(self.prompts.build_router_prompt(text, history))
        except LanguageModelTimeout as e:
            logger.warning(f"[ROUTER] LLM fallback timed out: {e}")
            return Intent(kind=IntentKind.smalltalk)
        except Exception as e:
            logger.warning(f"[ROUTER] LLM fallback failed: {e}")
            return Intent(kind=IntentKind.smalltalk)
        intent = parse_intent(raw)
        if intent is None:
            logger.info("[ROUTER] LLM fallback output unusable, defaulting to smalltalk")
            return Intent(kind=IntentKind.smalltalk)
        return intent
