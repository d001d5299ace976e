#!/usr/bin/env python3
"""
Prompt builder module for the Enclave SMS backend.

Builds the prompt the fallback classifier sends to the language model when
no deterministic rule matched the incoming text.
"""

from typing import Sequence


class PromptBuilder:
    """Builds intent-classification prompts with recent conversation history."""

    def __init__(self):
        """Initialize the prompt builder."""
        self.router_prompt = """You are a strict intent router for an SMS assistant that helps a group organizer
answer questions and compose announcements and polls for their members.

Classify the latest user message. Return ONLY a JSON object with these keys:
- kind: one of "announcement", "poll", "query", "smalltalk"
- mode_transition: "drafting" when the user starts a new announcement or poll,
  "editing" when they change an existing draft, otherwise null
- fields_changed: object with any of "title", "body", "time", "date", "location", "audience", "question"
  (time as HH:MM:SS in 24h form)

Do not invent fields the user did not mention.

{conversation_history}

User: "{query}"
JSON:"""

    def format_history(self, history: Sequence[str]) -> str:
        lines = [h for h in history if h]
        if not lines:
            return "Conversation so far: (none)"
        return "Conversation so far:\n" + "\n".join(lines)

    def build_router_prompt(self, query: str, history: Sequence[str] = ()) -> str:
        """
        Build the classification prompt.

        Args:
            query: Raw user message
            history: Recent "user: ... / assistant: ..." lines, oldest first

        Returns:
            Formatted prompt string
        """
        return self.router_prompt.format(
            conversation_history=self.format_history(history),
            query=query.replace('"', "'"),
        )
