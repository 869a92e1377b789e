"""Read-time consolidation of stored facts into display sections.

Display only: nothing here writes to the store, and every display item keeps
the ids of the facts it stands for so edits and deletes resolve to them.

Passes, in order:
    1. normalize categories, values and keys for comparison
    2. deduplicate facts describing the same thing
    3. splice ages/years from nearby Timeline facts into event facts
    4. fold "deceased" + "time since passing" into one item
then group by category and sort.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from ..logging import EventLog
from .models import DisplayMemory, DisplaySection, Fact

TIMELINE = "Timeline"
HEALTH = "Health"
LOSS_AND_GRIEF = "Loss & Grief"
GENERAL = "General"

NEARBY_WINDOW = timedelta(minutes=10)

CATEGORY_ALIASES = {
    "health": HEALTH,
    "history": HEALTH,
    "medical": HEALTH,
    "medical history": HEALTH,
    "timeline": TIMELINE,
    "age": TIMELINE,
    "age reference": TIMELINE,
    "year": TIMELINE,
    "year reference": TIMELINE,
    "date": TIMELINE,
    "time since passing": TIMELINE,
    "time since event": TIMELINE,
    "loss & grief": LOSS_AND_GRIEF,
    "loss grief": LOSS_AND_GRIEF,
    "loss and grief": LOSS_AND_GRIEF,
    "deceased": LOSS_AND_GRIEF,
    "relationship": "Relationships",
    "relationships": "Relationships",
    "work career": "Work & Career",
    "interests hobbies": "Interests & Hobbies",
    "general": GENERAL,
    "context": GENERAL,
}

_AGE = re.compile(r"(?:age|aged)\s*(\d+)|(\d+)\s*years?\s*old", re.IGNORECASE)
_YEAR = re.compile(r"\b(\d{4})\b")


def normalize_category(category: str) -> str:
    """Fold category synonyms into one display label."""
    folded = " ".join(category.replace("_", " ").lower().split())
    if not folded:
        return GENERAL
    return CATEGORY_ALIASES.get(folded, folded.title())


def normalize_value(value: str) -> str:
    return " ".join(value.lower().split())


def normalize_key(key: str) -> str:
    return "_".join(key.lower().split())


def extract_age_info(value: str) -> str | None:
    """Pull "Age N" or a four-digit year out of a timeline value."""
    match = _AGE.search(value)
    if match:
        return f"Age {match.group(1) or match.group(2)}"
    match = _YEAR.search(value)
    if match:
        return match.group(1)
    return None


def parse_time(value: str | None) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _epoch(value: str | None) -> float:
    parsed = parse_time(value)
    return parsed.timestamp() if parsed else 0.0


@dataclass(frozen=True)
class _Entry:
    fact: Fact
    category: str
    value: str
    key: str

    @property
    def is_timeline(self) -> bool:
        return self.category == TIMELINE

    @property
    def is_time_since_passing(self) -> bool:
        return self.is_timeline and "time_since_passing" in self.key


def _normalize(fact: Fact) -> _Entry:
    return _Entry(
        fact=fact,
        category=normalize_category(fact.category),
        value=normalize_value(fact.value),
        key=normalize_key(fact.key),
    )


def _should_replace(new: _Entry, existing: _Entry) -> bool:
    """Priority: Timeline category, newest update, importance, confidence."""
    if new.is_timeline != existing.is_timeline:
        return new.is_timeline

    new_time, old_time = _epoch(new.fact.updated_at), _epoch(existing.fact.updated_at)
    if new_time != old_time:
        return new_time > old_time

    if new.fact.importance != existing.fact.importance:
        return new.fact.importance > existing.fact.importance

    return new.fact.confidence > existing.fact.confidence


def deduplicate(entries: list[_Entry]) -> list[_Entry]:
    """Keep one entry per (subject, category, value).

    A non-Timeline entry whose value matches a Timeline entry of the same
    subject competes with it, and the Timeline entry wins.
    """
    timeline_values = {(e.fact.subject, e.value) for e in entries if e.is_timeline}
    kept: dict[tuple[str, str, str], _Entry] = {}
    for entry in entries:
        category = TIMELINE if (entry.fact.subject, entry.value) in timeline_values else entry.category
        dedup_key = (entry.fact.subject, category, entry.value)
        existing = kept.get(dedup_key)
        if existing is None or _should_replace(entry, existing):
            kept[dedup_key] = entry
    return list(kept.values())


def _is_nearby(a: Fact, b: Fact) -> bool:
    if a.subject != b.subject:
        return False
    a_time, b_time = parse_time(a.created_at), parse_time(b.created_at)
    if a_time is None or b_time is None:
        return False
    return abs(a_time - b_time) <= NEARBY_WINDOW


def _to_display(entry: _Entry) -> DisplayMemory:
    fact = entry.fact
    return DisplayMemory(
        id=fact.id,
        subject=fact.subject,
        category=entry.category,
        key=fact.key,
        value=fact.value,
        importance=fact.importance,
        confidence=fact.confidence,
        created_at=fact.created_at,
        updated_at=fact.updated_at,
        last_mentioned_at=fact.last_mentioned_at,
        source_fact_ids=[fact.id],
    )


def merge_nearby(entries: list[_Entry]) -> list[DisplayMemory]:
    """Attach ages/years from Timeline facts created near an event fact.

    Absorbed Timeline facts are not shown on their own. Time-since-passing
    facts are left for the deceased special case.
    """
    events = [e for e in entries if not e.is_timeline]
    timelines = [e for e in entries if e.is_timeline]
    ages = {id(t): extract_age_info(t.fact.value) for t in timelines}
    consumed: set[int] = set()

    displays = []
    for event in events:
        nearby = [
            t for t in timelines
            if id(t) not in consumed
            and not t.is_time_since_passing
            and ages[id(t)] is not None
            and _is_nearby(event.fact, t.fact)
        ]
        display = _to_display(event)
        if nearby:
            consumed.update(id(t) for t in nearby)
            merged_ages = [ages[id(t)] for t in nearby]
            display.value = f"{event.fact.value} — {', '.join(merged_ages)}"
            display.source_fact_ids += [t.fact.id for t in nearby]
            display.is_merged = True
            display.merged_ages = merged_ages
        displays.append(display)

    displays.extend(_to_display(t) for t in timelines if id(t) not in consumed)
    return displays


def merge_deceased(memories: list[DisplayMemory]) -> list[DisplayMemory]:
    """Fold a deceased item and a time-since-passing item per subject."""
    deceased: dict[str, DisplayMemory] = {}
    passing: dict[str, DisplayMemory] = {}
    result = []

    for memory in memories:
        key = normalize_key(memory.key)
        if (
            memory.category == LOSS_AND_GRIEF
            and "deceased" in key
            and memory.subject not in deceased
        ):
            deceased[memory.subject] = memory
        elif (
            memory.category == TIMELINE
            and "time_since_passing" in key
            and memory.subject not in passing
        ):
            passing[memory.subject] = memory
        else:
            result.append(memory)

    for subject, memory in deceased.items():
        since = passing.pop(subject, None)
        if since is None:
            result.append(memory)
            continue
        result.append(
            replace(
                memory,
                value=f"Passed away • {since.value}",
                source_fact_ids=memory.source_fact_ids + since.source_fact_ids,
                is_merged=True,
            )
        )

    result.extend(passing.values())
    return result


def _sort_key(memory: DisplayMemory) -> tuple[float, int, float, float]:
    mentioned = parse_time(memory.last_mentioned_at)
    return (
        -memory.importance,
        0 if mentioned else 1,
        -(mentioned.timestamp() if mentioned else 0.0),
        -_epoch(memory.updated_at),
    )


def group(memories: list[DisplayMemory], last: Iterable[str] = ()) -> list[DisplaySection]:
    """Group by category, sort items, and sort sections by name.

    Args:
        memories: Display items.
        last: Categories to place after all others (e.g. "General").
    """
    trailing = {c.casefold() for c in last}
    sections: dict[str, DisplaySection] = {}
    for memory in memories:
        sections.setdefault(memory.category, DisplaySection(memory.category)).memories.append(memory)

    for section in sections.values():
        section.memories.sort(key=_sort_key)

    return sorted(
        sections.values(),
        key=lambda s: (s.category.casefold() in trailing, s.category.casefold()),
    )


def consolidate(
    raw_facts: list[Fact],
    last: Iterable[str] = (),
    log: EventLog | None = None,
) -> list[DisplaySection]:
    """Turn stored facts into grouped, merged, deduplicated display sections.

    The input list and its facts are left untouched.
    """
    if not raw_facts:
        return []

    entries = [_normalize(fact) for fact in raw_facts]
    unique = deduplicate(entries)
    merged = merge_deceased(merge_nearby(unique))
    sections = group(merged, last)

    if log is not None:
        log.detail(
            "consolidated", count=len(raw_facts), unique=len(unique),
            items=len(merged), sections=len(sections),
        )
    return sections


def underlying_ids(memory: DisplayMemory) -> list[int | None]:
    """Ids of every stored fact a display item stands for."""
    return list(memory.source_fact_ids)


def primary_id(memory: DisplayMemory) -> int | None:
    """Default edit target of a display item."""
    return memory.id
