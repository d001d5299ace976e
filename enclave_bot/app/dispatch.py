#!/usr/bin/env python3
"""
Dispatch of approved drafts to the member list.
"""

import asyncio
from typing import Optional

from ..dialog.preview import DEFAULT_POLL_OPTIONS, render_preview
from ..schemas.session_models import Draft, DraftKind
from ..utils.errors import DeliveryFailure
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .config import Config
from .outbound import split_message

logger = get_logger()

POLL_FOOTER = "\n\nReply with the number of your answer."


class Dispatcher:
    """Sends a draft to every opted-in member and records what went out."""

    def __init__(self, repository, transport, max_chunk: Optional[int] = None):
        self.repository = repository
        self.transport = transport
        self.max_chunk = max_chunk or Config.SMS_MAX_CHUNK

    async def _deliver(self, recipient: str, text: str) -> bool:
        try:
            for chunk in split_message(text, self.max_chunk):
                await asyncio.to_thread(self.transport.send, recipient, chunk)
            return True
        except DeliveryFailure as e:
            logger.warning(f"[DISPATCH] {mask_pii(str(e))}")
            return False

    async def dispatch(self, sender: str, draft: Draft) -> int:
        """Broadcast the draft; returns how many members it reached."""
        recipients = await asyncio.to_thread(self.repository.list_recipients, sender)
        text = render_preview(draft)

        if draft.kind == DraftKind.poll:
            question = draft.verbatim_text or draft.slots.question or text
            options = draft.slots.options or DEFAULT_POLL_OPTIONS
            await asyncio.to_thread(self.repository.record_poll, draft.id, sender, question, options, recipients)
            text += POLL_FOOTER

        delivered = 0
        for recipient in recipients:
            if await self._deliver(recipient, text):
                delivered += 1

        if draft.kind == DraftKind.announcement:
            await asyncio.to_thread(self.repository.record_announcement, draft.id, sender, text, delivered)

        logger.info(f"[DISPATCH] {draft.kind.value} {draft.id} reached {delivered}/{len(recipients)} members")
        return delivered
