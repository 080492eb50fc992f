from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict

from dayplan.models import PromptItem

DEFAULT_DURATION_MIN = 30

_DURATION_RE = re.compile(r"(\d+)\s*(minutes?|mins?|hours?|hrs?)", re.IGNORECASE)
_LEADING_VERB_RE = re.compile(r"^(do|perform|complete|finish|work on|start)\s+", re.IGNORECASE)
_TRAILING_FILLER_RE = re.compile(r"\s+(for|during)\s*$", re.IGNORECASE)


@dataclass
class ExtractedTask:
    name: str
    duration_min: int
    hints: Dict[str, Any] = field(default_factory=dict)


def _duration_suffix(duration_min: int) -> str:
    if duration_min >= 60:
        hours, mins = divmod(duration_min, 60)
        if mins:
            return f" for {hours}h {mins}m"
        return f" for {hours} hour{'s' if hours > 1 else ''}"
    return f" for {duration_min} minutes"


class PromptExtractor:
    """Turns a free-text prompt ("gym 45 minutes") into a named task with hints."""

    def extract(self, prompt: PromptItem) -> ExtractedTask:
        text = prompt.text or ""

        duration_min = DEFAULT_DURATION_MIN
        match = _DURATION_RE.search(text)
        if match:
            value = int(match.group(1))
            unit = match.group(2).lower()
            duration_min = value * 60 if unit.startswith("h") else value

        name = _DURATION_RE.sub("", text).strip()
        name = _LEADING_VERB_RE.sub("", name).strip()
        name = _TRAILING_FILLER_RE.sub("", name).strip()
        name = name[:1].upper() + name[1:] if name else "Task from prompt"

        if "minute" not in name and "hour" not in name:
            name += _duration_suffix(duration_min)

        return ExtractedTask(
            name=name,
            duration_min=duration_min,
            hints={
                "duration": duration_min,
                "original_prompt": text,
                "created_from_prompt": True,
                "prompt_id": prompt.id,
            },
        )
