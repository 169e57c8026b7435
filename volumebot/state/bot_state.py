"""
Cycle-progress checkpoint for resume-after-stop.

A single file slot holds at most one BotState. Absence of the file means there
is no resumable run.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from volumebot.utils import now_iso

log = logging.getLogger("volumebot")


@dataclass
class BotState:
    current_cycle: int
    total_cycles: int
    started_at: str
    last_updated: str
    token_address: str

    @classmethod
    def fresh(cls, token_address: str, total_cycles: int) -> "BotState":
        now = now_iso()
        return cls(
            current_cycle=1,
            total_cycles=total_cycles,
            started_at=now,
            last_updated=now,
            token_address=token_address,
        )

    def matches_token(self, token_address: str) -> bool:
        return self.token_address.lower() == token_address.lower()

    @property
    def is_finished(self) -> bool:
        return self.total_cycles > 0 and self.current_cycle > self.total_cycles

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentCycle": self.current_cycle,
            "totalCycles": self.total_cycles,
            "startedAt": self.started_at,
            "lastUpdated": self.last_updated,
            "tokenAddress": self.token_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotState":
        return cls(
            current_cycle=int(data["currentCycle"]),
            total_cycles=int(data.get("totalCycles", 0)),
            started_at=str(data.get("startedAt", "")),
            last_updated=str(data.get("lastUpdated", "")),
            token_address=str(data["tokenAddress"]),
        )


class BotStateStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.tmp = self.path.with_name(self.path.name + ".tmp")

    def load(self) -> Optional[BotState]:
        if not self.path.exists():
            return None
        try:
            return BotState.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError, KeyError) as exc:
            log.error(json.dumps({"event": "bot_state_load_error", "path": str(self.path), "err": str(exc)}))
            return None

    def save(self, state: BotState) -> None:
        state.last_updated = now_iso()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.tmp.write_text(json.dumps(state.to_dict(), indent=2), encoding="utf-8")
        self.tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
