from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from dayplan import errors
from dayplan.models import PRIORITY_WEIGHTS, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MIN = 30

_NAME_DURATION_RE = re.compile(r"(\d+)\s*(min|minute|minutes|hour|hours|hr)", re.IGNORECASE)
_ISO_DURATION_RE = re.compile(r"^pt(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$", re.IGNORECASE)
_UNIT_DURATION_RE = re.compile(
    r"^(\d+(?:\.\d+)?)\s*(h|hr|hrs|hour|hours|m|min|mins|minute|minutes|s|sec|secs|second|seconds)?$"
)
_CONSTRAINT_RE = re.compile(r"^(start|end|duration)\s*([<>!=]+)\s*(.+)$", re.IGNORECASE)

# keyword -> (category, preferred time of day), first match wins
_CATEGORY_RULES = (
    (("workout", "exercise", "gym"), "fitness", "morning"),
    (("work", "code", "study"), "work", "morning"),
    (("meeting", "call"), "meeting", "business_hours"),
    (("dinner", "eat"), "meal", "evening"),
)


@dataclass
class ScheduleConstraints:
    start_exact: Optional[datetime] = None
    earliest_start: Optional[datetime] = None
    latest_start: Optional[datetime] = None
    end_exact: Optional[datetime] = None
    latest_end: Optional[datetime] = None
    duration_min: Optional[int] = None


@dataclass
class TaskAnalysis:
    item: WorkItem
    duration_min: int
    category: str
    preferred_time_of_day: str
    priority: str = "medium"
    constraints: ScheduleConstraints = field(default_factory=ScheduleConstraints)

    @property
    def effective_duration_min(self) -> int:
        return self.constraints.duration_min or self.duration_min


def parse_duration_to_minutes(value: Any) -> Optional[int]:
    """Minutes from a number, ``PT1H30M``, ``45m``, ``1.5h`` or ``90``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return round(value)

    raw = str(value).strip().lower().replace('"', "")
    if not raw:
        return None

    iso = _ISO_DURATION_RE.match(raw)
    if iso:
        h, m, s = (int(g or 0) for g in iso.groups())
        minutes = h * 60 + m + round(s / 60)
        return minutes if minutes > 0 else None

    unit_match = _UNIT_DURATION_RE.match(raw)
    if unit_match:
        amount = float(unit_match.group(1))
        unit = unit_match.group(2) or "m"
        if unit.startswith("h"):
            return round(amount * 60)
        if unit.startswith("s"):
            return max(1, round(amount / 60))
        return round(amount)

    try:
        return int(raw)
    except ValueError:
        return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value or "").strip().strip('"')
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def extract_constraints(hints: dict) -> ScheduleConstraints:
    """Read ``start|end|duration <op> value`` rules out of the item hints."""
    result = ScheduleConstraints()

    rules = hints.get("constraints") or []
    if isinstance(rules, str):
        try:
            rules = json.loads(rules)
        except ValueError:
            rules = [rules]
    if not isinstance(rules, list):
        return result

    for raw in rules:
        if not isinstance(raw, str):
            continue
        match = _CONSTRAINT_RE.match(raw.strip())
        if not match:
            continue

        key = match.group(1).lower()
        operator = match.group(2).replace(" ", "")
        value = match.group(3).strip()

        if key == "duration":
            minutes = parse_duration_to_minutes(value)
            if minutes:
                result.duration_min = minutes
            continue

        moment = parse_datetime(value)
        if moment is None:
            logger.debug(f"Ignoring constraint with unparseable time: {raw}")
            continue

        if key == "start":
            if operator in {"=", "=="}:
                result.start_exact = moment
            elif ">" in operator:
                result.earliest_start = moment
            elif "<" in operator:
                result.latest_start = moment
        elif key == "end":
            if operator in {"=", "=="}:
                result.end_exact = moment
            elif "<" in operator:
                result.latest_end = moment

    return result


class TaskAnalyzer:
    """Analyze stage: derive duration, category and timing preference from a work item."""

    def analyze(self, item: WorkItem) -> TaskAnalysis:
        name = (item.name or "").strip()
        if not name:
            raise errors.ValidationError(f"Work item {item.id} has a blank name")

        hints = item.hints or {}
        duration_min = self._duration(name, hints)
        if duration_min is None or duration_min <= 0:
            raise errors.ValidationError(
                f"Work item {item.id} has an invalid duration: {hints.get('duration')!r}"
            )

        category, preferred = self._categorize(name)
        if hints.get("category"):
            category = str(hints["category"])

        priority = str(hints.get("priority") or "medium").lower()
        if priority not in PRIORITY_WEIGHTS:
            priority = "medium"

        constraints = extract_constraints(hints)
        if constraints.duration_min is not None and constraints.duration_min <= 0:
            raise errors.ValidationError(f"Work item {item.id} has a non-positive duration rule")

        analysis = TaskAnalysis(
            item=item,
            duration_min=duration_min,
            category=category,
            preferred_time_of_day=preferred,
            priority=priority,
            constraints=constraints,
        )
        logger.info(
            f"Analyzed {item.id}: {analysis.effective_duration_min}min {category} "
            f"({preferred}, {priority})"
        )
        return analysis

    def _duration(self, name: str, hints: dict) -> Optional[int]:
        if "duration" in hints and hints["duration"] is not None:
            return parse_duration_to_minutes(hints["duration"])

        match = _NAME_DURATION_RE.search(name)
        if match:
            amount = int(match.group(1))
            return amount * 60 if match.group(2).lower().startswith("h") else amount
        return DEFAULT_DURATION_MIN

    def _categorize(self, name: str) -> tuple:
        lowered = name.lower()
        for keywords, category, preferred in _CATEGORY_RULES:
            if any(k in lowered for k in keywords):
                return category, preferred
        return "general", "any"
