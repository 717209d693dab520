"""Trigger matching - event names against rule trigger patterns

Event names are dotted and case-insensitive. A rule trigger is either an exact
event name, a ``prefix.*`` wildcard covering every event under that prefix,
or ``*`` for every event.
"""
from typing import List


WILDCARD = "*"


def normalize_event(event_name: str) -> str:
    """Lower-case and trim an event name"""
    return (event_name or "").strip().lower()


def trigger_patterns(event_name: str) -> List[str]:
    """
    All trigger values that match an event
    
    Example: "ticket.status.changed" ->
        ["ticket.status.changed", "ticket.status.*", "ticket.*", "*"]
    """
    event = normalize_event(event_name)
    if not event:
        return []
    
    patterns = [event]
    parts = event.split(".")
    for i in range(len(parts) - 1, 0, -1):
        patterns.append(".".join(parts[:i]) + ".*")
    patterns.append(WILDCARD)
    return patterns


def matches_trigger(trigger: str, event_name: str) -> bool:
    """Check a single trigger pattern against an event"""
    return normalize_event(trigger) in trigger_patterns(event_name)
