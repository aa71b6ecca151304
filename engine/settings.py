from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

class SettlementMode(str, Enum):
    IMMEDIATE = "immediate"  # buy/sell settle inside the request
    DEFERRED = "deferred"  # orders wait PENDING for execute_pending()

@dataclass(frozen=True)
class EngineSettings:
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def settlement(self) -> SettlementMode:
        value = str(self.raw.get("settlement", SettlementMode.IMMEDIATE.value)).strip().lower()
        try:
            return SettlementMode(value)
        except ValueError:
            raise ValueError(f"engine.settlement must be 'immediate' or 'deferred', got {value!r}") from None

    @property
    def strict_cancel(self) -> bool:
        return bool(self.raw.get("strict_cancel", False))
