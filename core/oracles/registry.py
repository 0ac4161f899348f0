"""Oracle registry for CLI/API backend resolution."""

from __future__ import annotations

import os
from collections.abc import Callable

from core.config.models import FillSettings
from core.oracles.base import Oracle
from core.oracles.offline import OfflineOracle
from core.oracles.openai_oracle import OpenAIOracle

OracleFactory = Callable[[FillSettings], Oracle]

_SUPPORTED_ORACLES: dict[str, OracleFactory] = {
    "offline": lambda settings: OfflineOracle(),
    "openai": lambda settings: OpenAIOracle(settings=settings),
}


def create_oracle(name: str, settings: FillSettings | None = None) -> Oracle:
    """Instantiate a supported oracle backend by name."""

    try:
        factory = _SUPPORTED_ORACLES[name]
    except KeyError as exc:
        raise ValueError(f"Unsupported oracle: {name}") from exc
    return factory(settings or FillSettings())


def list_supported_oracles() -> list[str]:
    """Return supported oracle names in stable order."""

    return sorted(_SUPPORTED_ORACLES)


def default_oracle_name() -> str:
    """Pick ``BLANKFILL_ORACLE`` when set, else ``openai`` only if an API key is configured."""

    configured = os.getenv("BLANKFILL_ORACLE", "").strip().lower()
    if configured:
        return configured
    return "openai" if os.getenv("OPENAI_API_KEY") else "offline"
