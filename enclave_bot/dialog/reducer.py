"""State machine reducer with guardrails.

``reduce`` is pure: it never touches storage or the network. The session
state is the source of truth, so an intent can only move an active draft
through an explicit control command or an edit/confirm transition.

    idle -> drafting -> editing <-> confirming -> sending -> idle
    (cancel from any mode -> idle)
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..schemas.session_models import (
    ACTIVE_MODES,
    SLOT_FIELDS,
    Draft,
    DraftConstraints,
    DraftKind,
    DraftSlots,
    Intent,
    IntentKind,
    Mode,
    SessionState,
    utcnow,
)
from ..utils.logger import get_logger

logger = get_logger()

SIDE_CHAT = (IntentKind.query, IntentKind.smalltalk)


def initial_state(now: Optional[datetime] = None) -> SessionState:
    return SessionState(last_updated_at=now or utcnow())


def _union(existing: Iterable[str], new: Iterable[str]) -> List[str]:
    out = list(existing)
    for item in new:
        if item not in out:
            out.append(item)
    return out


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in (fields or {}).items() if k in SLOT_FIELDS}


def is_allowed_transition(mode: Mode, intent: Intent) -> bool:
    """Guardrail check: False means the intent must not touch mode or draft."""
    if intent.is_control_command:
        return True
    if mode not in ACTIVE_MODES:
        return True
    if intent.kind in SIDE_CHAT:
        return False
    return intent.mode_transition in (Mode.editing, Mode.confirming)


def create_draft(intent: Intent, now: datetime) -> Draft:
    kind = DraftKind.poll if intent.kind == IntentKind.poll else DraftKind.announcement
    slots = DraftSlots(**_clean_fields(intent.fields_changed))
    constraints = DraftConstraints(
        must_include=_union([], intent.must_include),
        must_not_change=_union([], intent.fields_locked),
    )
    verbatim = intent.quoted_text
    if verbatim:
        slots.body = verbatim
        constraints.verbatim_only = True
        constraints.must_not_change = _union(constraints.must_not_change, ["body"])
    return Draft(
        id=f"draft_{uuid.uuid4().hex[:12]}",
        kind=kind,
        verbatim_text=verbatim,
        slots=slots,
        constraints=constraints,
        created_at=now,
        updated_at=now,
    )


def apply_edit(draft: Draft, intent: Intent, now: datetime) -> Draft:
    """Apply field changes; locked fields keep their prior values."""
    locked = list(draft.constraints.must_not_change)
    slots = draft.slots.model_copy()
    constraints = draft.constraints.model_copy(deep=True)
    verbatim = draft.verbatim_text

    for key, value in _clean_fields(intent.fields_changed).items():
        if key in locked:
            logger.info(f"[STATE] ignored edit to locked field '{key}'")
            continue
        setattr(slots, key, value)

    if intent.quoted_text:
        verbatim = intent.quoted_text
        slots.body = intent.quoted_text
        constraints.verbatim_only = True
        constraints.must_not_change = _union(constraints.must_not_change, ["body"])

    constraints.must_not_change = _union(constraints.must_not_change, intent.fields_locked)
    constraints.must_include = _union(constraints.must_include, intent.must_include)

    return draft.model_copy(update={
        "verbatim_text": verbatim,
        "slots": slots,
        "constraints": constraints,
        "updated_at": now,
    })


def reduce(state: SessionState, intent: Intent, raw_text: str, now: Optional[datetime] = None) -> SessionState:
    """Return the next session state for one routed message."""
    now = now or utcnow()

    if not is_allowed_transition(state.mode, intent):
        logger.info(f"[STATE] blocked {intent.kind.value} intent while {state.mode.value}")
        return state.model_copy(update={"last_updated_at": now})

    if intent.is_control_command:
        if intent.mode_transition == Mode.idle:
            if state.mode == Mode.idle and state.draft is None:
                return state
            return state.model_copy(update={"mode": Mode.idle, "draft": None, "last_updated_at": now})
        if state.draft is None:
            # nothing to send or edit
            return state
        if intent.mode_transition == Mode.sending:
            return state.model_copy(update={"mode": Mode.sending, "last_updated_at": now})
        if intent.mode_transition == Mode.editing:
            return state.model_copy(update={"mode": Mode.editing, "last_updated_at": now})
        if intent.mode_transition == Mode.confirming:
            return state.model_copy(update={"mode": Mode.confirming, "last_updated_at": now})
        return state

    if intent.mode_transition == Mode.drafting and intent.kind not in SIDE_CHAT:
        return state.model_copy(update={
            "mode": Mode.drafting,
            "draft": create_draft(intent, now),
            "last_updated_at": now,
        })

    if intent.mode_transition == Mode.editing:
        if state.draft is not None:
            return state.model_copy(update={
                "mode": Mode.editing,
                "draft": apply_edit(state.draft, intent, now),
                "last_updated_at": now,
            })
        if intent.quoted_text:
            # dictated text with no draft open starts an announcement
            return state.model_copy(update={
                "mode": Mode.drafting,
                "draft": create_draft(intent, now),
                "last_updated_at": now,
            })
        return state.model_copy(update={"last_updated_at": now})

    if intent.mode_transition == Mode.confirming and state.draft is not None:
        return state.model_copy(update={"mode": Mode.confirming, "last_updated_at": now})

    return state.model_copy(update={"last_updated_at": now})
