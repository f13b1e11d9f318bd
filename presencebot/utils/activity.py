from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

import discord

# (type, name, details, state, application_id)
ActivitySignature = Tuple[Any, Any, Any, Any, Any]


def _type_of(activity: Any) -> Any:
    return getattr(activity, "type", None)


def is_custom_status(activity: Any) -> bool:
    return _type_of(activity) == discord.ActivityType.custom


def activity_signature(activity: Any) -> ActivitySignature:
    """
    Identity of an ongoing activity. Any differing field makes it a
    different activity: a changed detail is one stop plus one start.
    """
    return (
        _type_of(activity),
        getattr(activity, "name", None),
        getattr(activity, "details", None),
        getattr(activity, "state", None),
        getattr(activity, "application_id", None),
    )


def _by_signature(activities: Optional[Iterable[Any]]) -> Dict[ActivitySignature, Any]:
    out: Dict[ActivitySignature, Any] = {}
    for activity in activities or ():
        if activity is None or is_custom_status(activity):
            continue
        out.setdefault(activity_signature(activity), activity)
    return out


def diff_activities(
    old: Optional[Iterable[Any]], new: Optional[Iterable[Any]]
) -> Tuple[List[Any], List[Any]]:
    """Return (started, stopped) between two activity snapshots, custom status excluded."""
    old_map = _by_signature(old)
    new_map = _by_signature(new)
    started = [a for sig, a in new_map.items() if sig not in old_map]
    stopped = [a for sig, a in old_map.items() if sig not in new_map]
    return started, stopped


def _emoji_text(emoji: Any) -> str:
    if not emoji:
        return ""
    emoji_id = getattr(emoji, "id", None)
    name = getattr(emoji, "name", None) or ""
    if emoji_id:
        prefix = "a" if getattr(emoji, "animated", False) else ""
        return f"<{prefix}:{name}:{emoji_id}>"
    return name


def custom_status_text(activities: Optional[Iterable[Any]]) -> Optional[str]:
    """Emoji + text of the custom status activity, or None when unset."""
    custom = next((a for a in activities or () if a is not None and is_custom_status(a)), None)
    if custom is None:
        return None
    emoji = _emoji_text(getattr(custom, "emoji", None))
    state = (getattr(custom, "state", None) or "").strip()
    combined = " ".join(part for part in (emoji, state) if part).strip()
    return combined or emoji or None


def custom_status_change(
    previous_seen: Optional[str], last_known: Optional[str], current: Optional[str]
) -> Optional[Tuple[Optional[str], Optional[str]]]:
    """
    Single-value comparison for the custom status. When the previous snapshot
    has none (e.g. first event after a restart) the persisted last known
    value stands in. Returns (old, new) on change, None otherwise.
    """
    previous = previous_seen if previous_seen is not None else last_known
    if previous == current:
        return None
    return previous, current


__all__ = [
    "ActivitySignature",
    "activity_signature",
    "custom_status_change",
    "custom_status_text",
    "diff_activities",
    "is_custom_status",
]
