"""Rule-based fact extraction that works without the remote service."""

from __future__ import annotations

import re
import string

from ..logging import EventLog
from .models import FactCandidate
from .rules import MIN_TEXT_LENGTH, RULES, SKIP_PATTERNS, Rule

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_FORMATTER = string.Formatter()


def slugify(text: str, max_length: int = 50) -> str:
    """Turn free text into a snake_case key fragment."""
    slug = _SLUG_STRIP.sub("_", text.strip().lower()).strip("_")
    return slug[:max_length].rstrip("_")


def _fill(template: str, fields: dict[str, str], slug: bool) -> str | None:
    """Fill a rule template, or None if a placeholder has no value."""
    values = {}
    for _, name, _, _ in _FORMATTER.parse(template):
        if name is None:
            continue
        raw = fields.get(name)
        if raw is None or not raw.strip():
            return None
        values[name] = slugify(raw) if slug else " ".join(raw.split())
    return template.format(**values)


class LocalExtractor:
    """Converts one utterance into candidate facts using the rule table.

    Pure and deterministic: no I/O and never raises for any string input.
    """

    def __init__(
        self,
        rules: tuple[Rule, ...] = RULES,
        log: EventLog | None = None,
    ) -> None:
        self.rules = rules
        self.log = log or EventLog()

    def is_low_content(self, text: str) -> bool:
        """True for inputs too short or too phatic to carry a fact."""
        stripped = text.strip()
        if len(stripped) < MIN_TEXT_LENGTH:
            return True
        return any(pattern.match(stripped) for pattern in SKIP_PATTERNS)

    def extract(self, text: str, subject_name: str = "") -> list[FactCandidate]:
        """Extract candidate facts from a single user utterance.

        Args:
            text: The user's message.
            subject_name: Name of the person being discussed.

        Returns:
            Candidates in rule order. Each key appears at most once.
        """
        if not text or self.is_low_content(text):
            return []

        facts: list[FactCandidate] = []
        seen_keys: set[str] = set()

        for rule in self.rules:
            fact = self._apply(rule, text, subject_name)
            if fact is None or fact.key in seen_keys:
                continue
            seen_keys.add(fact.key)
            facts.append(fact)
            self.log.detail("local_rule_hit", rule=rule.name, key=fact.key)

        return facts

    def _apply(self, rule: Rule, text: str, subject_name: str) -> FactCandidate | None:
        for pattern in rule.patterns:
            match = pattern.search(text)
            if match is None:
                continue

            fields = {k: v for k, v in match.groupdict().items() if v is not None}
            fields["match"] = match.group(0)
            fields["subject"] = subject_name

            key = _fill(rule.key, fields, slug=True)
            value = _fill(rule.value, fields, slug=False)
            if not key or not value:
                continue

            return FactCandidate(
                category=rule.category,
                key=key,
                value=value,
                importance=rule.importance,
                confidence=rule.confidence,
            )
        return None
