"""
Notification payload published on branch channels.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Event:
    """
    One notification.

    ``entity`` is the document view of the affected record (order,
    purchase, ledger entry). ``actor`` names who triggered it, when known.
    ``ts`` defaults to the serialization time.
    """

    type: str
    branch: str
    entity: dict[str, Any] = field(default_factory=dict)
    actor: dict[str, Any] = field(default_factory=dict)
    ts: str | None = None
    v: int = 1

    def __post_init__(self) -> None:
        for name in ("type", "branch"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Event {name} must be a non-empty string")
        self.entity = self.entity or {}
        self.actor = self.actor or {}
        if not isinstance(self.entity, dict) or not isinstance(self.actor, dict):
            raise ValueError("Event entity and actor must be objects")

    def to_json(self) -> str:
        body = asdict(self)
        body["ts"] = self.ts or datetime.now(timezone.utc).isoformat()
        return json.dumps(body, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, raw: str) -> Event:
        return cls(**json.loads(raw))
