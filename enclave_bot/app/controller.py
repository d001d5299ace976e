"""Session handler: runs one inbound SMS turn end to end.

load state -> route -> reduce -> branch on mode -> persist (CAS) -> side
effects -> history -> chunked reply. The reply is always some text and the
persisted state is always valid, whatever fails along the way.
"""
import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..dialog.preview import SEND_HINT, render_confirmation, render_diff, render_preview
from ..dialog.reducer import initial_state, is_allowed_transition, reduce
from ..nlu.rules import detect_control_command, detect_membership_keyword
from ..schemas.io_models import TurnResult
from ..schemas.session_models import (
    ActionProposal,
    Decision,
    DraftKind,
    ExecuteActionDecision,
    IntentKind,
    Mode,
    RetrievalItem,
    SessionState,
    utcnow,
)
from ..utils.errors import RetrievalLayerFailure, SessionLoadFailure, StateConflict
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .combiner import combine
from .config import Config
from .outbound import normalize_e164, split_message

logger = get_logger()

NO_DRAFT = 'There\'s no draft open right now. Text "send a message" or "make a poll" to start one.'
DISCARDED = "Draft discarded."
NOTHING_TO_CANCEL = "Nothing to cancel."
DRAFT_OPEN = 'You have a draft open. Reply "send it", "edit", or "cancel" before starting something new.'
EDIT_PROMPT = "What would you like to change?"
NOT_UNDERSTOOD = "Sorry, I didn't understand that. You can ask a question, or text \"send a message\" to start an announcement."
APOLOGY = "Sorry, something went wrong on our end. Please try again."
SEND_FAILED = "Something went wrong sending your draft. Please try again."
VOTE_CLOSED = "Looks like that poll already has your answer."
ORGANIZERS_ONLY = "Only organizers can send announcements and polls. You can still ask me anything."
OPTED_OUT = "You have been unsubscribed from Enclave notifications. Text START to resubscribe."
OPTED_IN = "You have been re-subscribed. Ask me anything about your org!"
HELP_TEXT = (
    "Enclave SMS help:\n\n"
    "- Ask a question about your org\n"
    "- Reply with the number of your answer to vote in a poll\n"
    "- Text STOP to opt out, START to opt back in"
)

SIDE_CHAT = (IntentKind.query, IntentKind.smalltalk)
LAYERS = ("content", "convo", "enclave", "action")

Effect = Callable[[], Awaitable[str]]


@dataclass
class TurnPlan:
    state: SessionState
    reply: str = ""
    effect: Optional[Effect] = None


class SessionHandler:
    def __init__(self, store, history, router, query_classifier, retrievers: Sequence = (),
                 dispatcher=None, repository=None, history_window: Optional[int] = None,
                 max_chunk: Optional[int] = None, admins: Optional[Iterable[str]] = None, clock=utcnow):
        self.store = store
        self.history = history
        self.router = router
        self.query_classifier = query_classifier
        self.retrievers = list(retrievers)
        self.dispatcher = dispatcher
        self.repository = repository
        self.history_window = history_window or Config.HISTORY_WINDOW
        self.max_chunk = max_chunk or Config.SMS_MAX_CHUNK
        numbers = Config.ADMIN_NUMBERS if admins is None else admins
        self.admins = {normalize_e164(n) for n in numbers}
        self.clock = clock

    async def _load(self, sender: str) -> Tuple[SessionState, Optional[int]]:
        """Return the state and the version a CAS write must match (None: unknown)."""
        try:
            state = await self.store.get(sender)
        except SessionLoadFailure as e:
            logger.warning(f"[WORKFLOW] session load failed for {mask_pii(sender)}, starting fresh: {e}")
            return initial_state(self.clock()), None
        if state is None:
            return initial_state(self.clock()), 0
        return state, state.version

    async def _history_lines(self, sender: str) -> List[str]:
        try:
            entries = await self.history.recent(sender, self.history_window)
        except Exception as e:
            logger.warning(f"[WORKFLOW] history unavailable: {e}")
            return []
        lines = []
        for entry in entries:
            lines.append(f"user: {entry.user_message}")
            lines.append(f"assistant: {entry.bot_response}")
        return lines

    async def _safe_retrieve(self, retriever, query: str, sender: str) -> List[RetrievalItem]:
        try:
            return await retriever.retrieve(query, sender)
        except Exception as e:
            logger.warning(f"[RETRIEVAL] {RetrievalLayerFailure(retriever.name, e)}")
            return []

    async def _side_chat(self, sender: str, text: str) -> Decision:
        kind = self.query_classifier.predict(text)
        results = await asyncio.gather(*(self._safe_retrieve(r, text, sender) for r in self.retrievers))
        layers: Dict[str, List[RetrievalItem]] = {name: [] for name in LAYERS}
        for retriever, items in zip(self.retrievers, results):
            layers[retriever.name] = items
        logger.info(f"[WORKFLOW] 4. side chat kind={kind.value} "
                    + " ".join(f"{k}={len(v)}" for k, v in layers.items()))
        return combine(kind, layers["content"], layers["convo"], layers["enclave"], layers["action"])

    async def _poll_answer(self, sender: str, text: str) -> Optional[ActionProposal]:
        """Pending-vote proposal for a bare reply like "yes", if the sender owes one."""
        for retriever in self.retrievers:
            if retriever.name != "action":
                continue
            items = await self._safe_retrieve(retriever, text, sender)
            for item in items:
                if item.proposal is not None:
                    return item.proposal
        return None

    def _vote_effect(self, sender: str, proposal: ActionProposal) -> Effect:
        async def run() -> str:
            answer = await asyncio.to_thread(
                self.repository.record_vote, proposal.payload["poll_id"], sender, proposal.payload.get("answer", "")
            )
            if answer is None:
                return VOTE_CLOSED
            logger.info(f"[WORKFLOW] recorded vote from {mask_pii(sender)} on poll {proposal.payload['poll_id']}")
            return f"Got it, your vote for \"{answer}\" is in."
        return run

    async def _register(self, sender: str) -> None:
        """Every texter is registered as a member; configured numbers become organizers."""
        if self.repository is None:
            return
        try:
            await asyncio.to_thread(self.repository.upsert_member, sender, None, sender in self.admins)
        except Exception as e:
            logger.warning(f"[WORKFLOW] could not register {mask_pii(sender)}: {e}")

    async def _can_organize(self, sender: str) -> bool:
        if sender in self.admins:
            return True
        if self.repository is None:
            return not self.admins
        return await asyncio.to_thread(self.repository.is_admin, sender)

    def _subscription_effect(self, sender: str, opted_in: bool) -> Effect:
        async def run() -> str:
            if self.repository is not None:
                await asyncio.to_thread(self.repository.set_opt_in, sender, opted_in)
            logger.info(f"[WORKFLOW] {mask_pii(sender)} opted {'in' if opted_in else 'out'}")
            return OPTED_IN if opted_in else OPTED_OUT
        return run

    def _send_effect(self, sender: str, draft) -> Effect:
        async def run() -> str:
            if self.dispatcher is None:
                return SEND_FAILED
            try:
                count = await self.dispatcher.dispatch(sender, draft)
            except Exception as e:
                logger.exception(f"[WORKFLOW] dispatch of {draft.id} failed: {e}")
                return SEND_FAILED
            noun = "person" if count == 1 else "people"
            what = "Poll" if draft.kind == DraftKind.poll else "Announcement"
            return f"{what} sent to {count} {noun}."
        return run

    async def _plan(self, sender: str, text: str, state: SessionState) -> TurnPlan:
        keyword = detect_membership_keyword(text)
        # "stop" with a draft open is a cancel
        if keyword is not None and not (state.draft is not None and detect_control_command(text) is not None):
            touched = state.model_copy(update={"last_updated_at": self.clock()})
            if keyword == "help":
                return TurnPlan(state=touched, reply=HELP_TEXT)
            return TurnPlan(state=touched, effect=self._subscription_effect(sender, keyword == "opt_in"))

        history_lines = await self._history_lines(sender)
        intent = await self.router.route(text, history_lines)
        logger.info(f"[WORKFLOW] 2. intent={intent.kind.value} transition="
                    f"{intent.mode_transition.value if intent.mode_transition else None} "
                    f"control={intent.is_control_command}")

        now = self.clock()
        next_state = reduce(state, intent, text, now)
        logger.info(f"[WORKFLOW] 3. mode {state.mode.value} -> {next_state.mode.value}")
        draft = next_state.draft

        starts_draft = state.draft is None and draft is not None
        if (starts_draft or next_state.mode == Mode.sending) and not await self._can_organize(sender):
            logger.info(f"[WORKFLOW] {mask_pii(sender)} is not an organizer, draft refused")
            return TurnPlan(state=state.model_copy(update={"last_updated_at": now}), reply=ORGANIZERS_ONLY)

        if next_state.mode == Mode.sending and draft is not None:
            # state is reset to idle before dispatch runs
            reset = next_state.model_copy(update={"mode": Mode.idle, "draft": None, "last_updated_at": now})
            return TurnPlan(state=reset, effect=self._send_effect(sender, draft))

        if intent.is_control_command and intent.mode_transition == Mode.idle:
            return TurnPlan(state=next_state, reply=DISCARDED if state.draft is not None else NOTHING_TO_CANCEL)

        if intent.is_control_command and state.draft is None:
            proposal = await self._poll_answer(sender, text)
            if proposal is not None and self.repository is not None:
                return TurnPlan(state=next_state, effect=self._vote_effect(sender, proposal))
            return TurnPlan(state=next_state, reply=NO_DRAFT)

        if intent.kind in SIDE_CHAT and next_state.mode == state.mode:
            decision = await self._side_chat(sender, text)
            if isinstance(decision, ExecuteActionDecision) and self.repository is not None:
                return TurnPlan(state=next_state, effect=self._vote_effect(sender, decision.action))
            if isinstance(decision, ExecuteActionDecision):
                return TurnPlan(state=next_state, reply=decision.action.preview_text)
            return TurnPlan(state=next_state, reply=decision.message)

        if not is_allowed_transition(state.mode, intent):
            return TurnPlan(state=next_state, reply=f"{DRAFT_OPEN}\n\n{render_preview(state.draft)}")

        if next_state.mode == Mode.confirming and draft is not None:
            return TurnPlan(state=next_state, reply=render_confirmation(draft))

        if next_state.mode == Mode.editing and draft is not None:
            if intent.is_control_command:
                return TurnPlan(state=next_state, reply=f"{EDIT_PROMPT}\n\n{render_preview(draft)}")
            diff = render_diff(state.draft, draft)
            return TurnPlan(state=next_state, reply=f"{diff}\n\n{render_preview(draft)}\n\n{SEND_HINT}")

        if next_state.mode == Mode.drafting and draft is not None:
            label = "poll" if draft.kind == DraftKind.poll else "draft"
            return TurnPlan(state=next_state, reply=f"Here's your {label}:\n\n{render_preview(draft)}\n\n{SEND_HINT}")

        if intent.mode_transition == Mode.editing and state.draft is None:
            return TurnPlan(state=next_state, reply=NO_DRAFT)

        return TurnPlan(state=next_state, reply=NOT_UNDERSTOOD)

    def _with_history_id(self, state: SessionState, entry_id: str) -> SessionState:
        window = [entry_id] + [i for i in state.history_window_ids if i != entry_id]
        return state.model_copy(update={"history_window_ids": window[: self.history_window]})

    async def _persist(self, sender: str, state: SessionState, expected: Optional[int]) -> SessionState:
        return await self.store.upsert(sender, state, expected_version=expected)

    async def _persist_last_write(self, sender: str, state: SessionState) -> Optional[SessionState]:
        try:
            return await self.store.upsert(sender, state)
        except Exception as e:
            logger.error(f"[WORKFLOW] could not persist session for {mask_pii(sender)}: {e}")
            return None

    async def handle_turn(self, sender: str, text: str) -> TurnResult:
        text = text or ""
        logger.info("=" * 50)
        logger.info(f"[WORKFLOW] 1. turn from {mask_pii(sender)}: {mask_pii(text)[:120]!r}")
        entry_id = f"msg_{uuid.uuid4().hex[:12]}"
        plan: Optional[TurnPlan] = None
        await self._register(sender)

        for attempt in range(2):
            state, expected = await self._load(sender)
            try:
                plan = await self._plan(sender, text, state)
            except Exception as e:
                logger.exception(f"[WORKFLOW] turn failed, replying with apology: {e}")
                plan = TurnPlan(state=state.model_copy(update={"last_updated_at": self.clock()}), reply=APOLOGY)

            to_store = self._with_history_id(plan.state, entry_id)
            try:
                stored = await self._persist(sender, to_store, expected)
                plan.state = stored
                break
            except StateConflict as e:
                if attempt == 0:
                    logger.info(f"[WORKFLOW] state conflict, re-running turn: {e}")
                    continue
                logger.warning(f"[WORKFLOW] second conflict, falling back to last write wins: {e}")
                stored = await self._persist_last_write(sender, to_store)
                plan.state = stored or to_store
            except Exception as e:
                logger.error(f"[WORKFLOW] persist failed: {e}")
                stored = await self._persist_last_write(sender, to_store)
                plan.state = stored or to_store
                break

        reply = plan.reply
        if plan.effect is not None:
            try:
                reply = await plan.effect()
            except Exception as e:
                logger.exception(f"[WORKFLOW] side effect failed: {e}")
                reply = APOLOGY
        reply = reply or NOT_UNDERSTOOD

        try:
            await self.history.append(sender, text, reply, entry_id=entry_id)
        except Exception as e:
            logger.warning(f"[WORKFLOW] history append failed: {e}")

        logger.info(f"[WORKFLOW] 5. reply ({len(reply)} chars), mode={plan.state.mode.value}")
        return TurnResult(messages=split_message(reply, self.max_chunk), mode=plan.state.mode)
