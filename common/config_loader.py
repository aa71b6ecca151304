from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import yaml

def load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}

@dataclass(frozen=True)
class LoadedConfig:
    exchange: Dict[str, Any]
    accounts: Dict[str, Any]

    def section(self, name: str) -> Dict[str, Any]:
        """One mapping section of the exchange config; missing sections are empty."""
        value = self.exchange.get(name) or {}
        if not isinstance(value, dict):
            raise ValueError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
        return value

    def seed_accounts(self) -> List[Dict[str, Any]]:
        """Seed account entries, each with at least an ``id``."""
        entries = self.accounts.get("accounts") or []
        if not isinstance(entries, list):
            raise ValueError("'accounts' must be a list")
        seen = set()
        for i, a in enumerate(entries):
            if not isinstance(a, dict) or not a.get("id"):
                raise ValueError(f"Seed account #{i} needs an 'id'")
            if a["id"] in seen:
                raise ValueError(f"Duplicate seed account id: {a['id']}")
            seen.add(a["id"])
        return entries

def load_all(
    exchange_path: str = "config/exchange.yaml",
    accounts_path: str = "config/accounts.yaml",
) -> LoadedConfig:
    return LoadedConfig(
        exchange=load_yaml(exchange_path),
        accounts=load_yaml(accounts_path),
    )
