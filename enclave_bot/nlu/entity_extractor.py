"""Very small rule-based entity extractor for draft edits (times and places)."""
import re
from typing import Optional

TIME_PATTERN = re.compile(r"\b(\d{1,2})(?::?(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)

# case-sensitive: a place is a capitalized phrase ("SAC", "Sigma House")
LOCATION_PATTERN = re.compile(r"\b(?:at|in)\s+(?:the\s+)?((?:[A-Z][\w'&-]*)(?:\s+[A-Z][\w'&-]*)*)")


def extract_time(text: str) -> Optional[str]:
    """Return the first 12h time token as a 24h ``HH:MM:00`` string."""
    m = TIME_PATTERN.search(text)
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2)) if m.group(2) else 0
    if hour < 1 or hour > 12 or minute > 59:
        return None
    ampm = m.group(3).lower()
    if ampm == "pm" and hour != 12:
        hour += 12
    if ampm == "am" and hour == 12:
        hour = 0
    return f"{hour:02d}:{minute:02d}:00"


def extract_location(text: str) -> Optional[str]:
    m = LOCATION_PATTERN.search(text)
    if not m:
        return None
    return m.group(1).strip()
