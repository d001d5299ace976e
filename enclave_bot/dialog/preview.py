"""Render drafts back to the organizer as SMS text."""
from typing import List, Optional

from ..schemas.session_models import Draft, DraftKind

SEND_HINT = 'Reply "send it" to broadcast or "edit" to change'
DEFAULT_POLL_OPTIONS = ["Yes", "No"]


def format_time(value: Optional[str]) -> Optional[str]:
    """'21:00:00' -> '9pm', '21:30:00' -> '9:30pm'; unparsable values pass through."""
    if not value:
        return None
    try:
        hours, minutes = value.split(":")[:2]
        hour = int(hours)
        int(minutes)
    except ValueError:
        return value
    ampm = "pm" if hour >= 12 else "am"
    hour12 = hour % 12 or 12
    return f"{hour12}{'' if minutes == '00' else ':' + minutes}{ampm}"


def _announcement(draft: Draft) -> str:
    s = draft.slots
    parts: List[str] = []
    if s.title:
        parts.append(s.title)
    if s.body:
        parts.append(s.body)
    if s.time:
        parts.append(f"at {format_time(s.time)}")
    if s.date:
        parts.append(f"on {s.date}")
    if s.location:
        parts.append(f"at {s.location}")
    if s.audience:
        parts.append(f"for {s.audience}")
    return " ".join(parts).strip() or "[empty draft]"


def _poll(draft: Draft) -> str:
    question = draft.verbatim_text or draft.slots.question or "[no question set]"
    options = draft.slots.options or DEFAULT_POLL_OPTIONS
    lines = [question, ""]
    lines.extend(f"{i}) {opt}" for i, opt in enumerate(options, 1))
    return "\n".join(lines)


def render_preview(draft: Draft) -> str:
    if draft.kind == DraftKind.poll:
        return _poll(draft)
    if draft.verbatim_text:
        return draft.verbatim_text
    return _announcement(draft)


def _describe(field: str, value) -> str:
    if field == "time":
        return format_time(value)
    if field == "options":
        return ", ".join(value)
    return f'"{value}"' if field in ("body", "question", "title") else str(value)


def render_diff(old: Optional[Draft], new: Draft) -> str:
    """Narrate only what changed between two versions of a draft."""
    if old is None:
        return "Started a new draft."
    notes: List[str] = []
    old_slots = old.slots.model_dump()
    for field, value in new.slots.model_dump().items():
        before = old_slots.get(field)
        if value == before:
            continue
        if value is None:
            notes.append(f"Removed the {field}.")
        else:
            notes.append(f"Changed the {field} to {_describe(field, value)}.")
    if new.constraints.verbatim_only and not old.constraints.verbatim_only:
        notes.append("Using your exact wording.")
    newly_locked = [f for f in new.constraints.must_not_change if f not in old.constraints.must_not_change]
    if newly_locked:
        notes.append(f"Locked: {', '.join(newly_locked)}.")
    new_includes = [p for p in new.constraints.must_include if p not in old.constraints.must_include]
    if new_includes:
        notes.append(f"Will include: {', '.join(new_includes)}.")
    return " ".join(notes) if notes else "No changes."


def render_confirmation(draft: Draft) -> str:
    note = " (verbatim)" if draft.constraints.verbatim_only else ""
    return f"Ready to send{note}:\n\n{render_preview(draft)}\n\n{SEND_HINT}"
