"""
tracker/activity.py -- Phrase resolution and time formatting for quick logging.

Voice assistants send loose phrases ("ounces", "poop", "napping") and the
Kindle page shows relative times. Both kiosk surfaces share the helpers here
so the same words mean the same thing everywhere.

Pure functions only. No I/O, no store access.
"""

from datetime import datetime
from typing import Optional

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_UNIT_ALIASES = {
    "OZ": ("oz", "ounce", "ounces"),
    "ML": ("ml", "milliliter", "milliliters"),
    "TBSP": ("tbsp", "tablespoon", "tablespoons"),
    "G": ("g", "gram", "grams"),
}

_SIDE_ALIASES = {
    "LEFT": ("left", "l"),
    "RIGHT": ("right", "r"),
    "BOTH": ("both", "b"),
}

_DIAPER_ALIASES = {
    "WET": ("wet", "pee"),
    "DIRTY": ("dirty", "poop", "soiled", "bm"),
    "BOTH": ("both", "mixed"),
    "DRY": ("dry", "clean"),
}

_SLEEP_ALIASES = {
    "NAP": ("nap", "napping"),
    "NIGHT_SLEEP": ("night", "night_sleep", "night-sleep", "bedtime", "sleep"),
}

# Canonical voice action -> spoken variants.
ACTION_ALIASES = {
    "bottle": ("bottle",),
    "breast": ("breast", "nursing"),
    "diaper": ("diaper",),
    "sleep-start": ("sleep-start", "sleep_start", "nap", "sleep"),
    "sleep-end": ("sleep-end", "sleep_end", "wake", "woke", "awake"),
    "medicine": ("medicine", "medication", "med", "meds"),
}


def _lookup(aliases: dict, phrase: Optional[str]) -> Optional[str]:
    if not phrase:
        return None
    needle = phrase.strip().lower()
    for canonical, words in aliases.items():
        if needle in words:
            return canonical
    return None


def resolve_action(action: Optional[str]) -> Optional[str]:
    """Map a spoken action to its canonical name, or None if unsupported."""
    return _lookup(ACTION_ALIASES, action)


def resolve_unit(unit: Optional[str], default: str) -> str:
    """Map a unit phrase to OZ/ML/TBSP/G. Unknown or missing -> default."""
    return _lookup(_UNIT_ALIASES, unit) or default


def resolve_side(side: Optional[str]) -> Optional[str]:
    """Map a breast side phrase to LEFT/RIGHT/BOTH, or None if unknown."""
    return _lookup(_SIDE_ALIASES, side)


def resolve_diaper_type(diaper_type: Optional[str]) -> str:
    """Map a diaper phrase to WET/DIRTY/BOTH/DRY. Defaults to WET."""
    return _lookup(_DIAPER_ALIASES, diaper_type) or "WET"


def resolve_sleep_type(sleep_type: Optional[str]) -> str:
    """Map a sleep phrase to NAP/NIGHT_SLEEP. Defaults to NAP.

    The voice route passes the action itself when no sleepType is given, so
    "sleep" on its own means night sleep and "nap" or "sleep-start" a nap.
    """
    return _lookup(_SLEEP_ALIASES, sleep_type) or "NAP"


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


def time_ago(now: datetime, then: datetime) -> str:
    """Compact relative time: "just now", "5m ago", "2h 10m ago", "2h ago", "3d ago"."""
    minutes = int((now - then).total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours, rem = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {rem}m ago" if rem else f"{hours}h ago"
    return f"{hours // 24}d ago"


def format_duration(minutes: int) -> str:
    """Sleep length for spoken replies: "1h 5m" or "12 minutes"."""
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins} minutes"


def format_clock(value: datetime) -> str:
    """12-hour clock time, e.g. "9:05 PM"."""
    hour = value.hour % 12 or 12
    suffix = "PM" if value.hour >= 12 else "AM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_amount(amount: float) -> str:
    """Drop a trailing .0 so 4.0 reads as "4"."""
    return f"{amount:g}"
