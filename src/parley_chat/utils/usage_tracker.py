"""Track responder token usage and cost.

Cumulative usage is kept in a JSON file (``.parley_usage.json`` unless
``PARLEY_USAGE_FILE`` says otherwise), one record per model.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import MutableMapping


_log = logging.getLogger(__name__)

# USD per 1K tokens (prompt, completion).  Unknown models are recorded at zero cost.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "gpt-4o-mini": (0.00015, 0.00060),
    "gpt-4o": (0.0025, 0.0100),
    "gpt-4.1-mini": (0.0004, 0.0016),
    "gpt-4.1": (0.002, 0.008),
    "gpt-4.1-nano": (0.0001, 0.0004),
}

_FILE_PATH = Path(os.getenv("PARLEY_USAGE_FILE", ".parley_usage.json"))
_LOCK = threading.Lock()


def _load() -> MutableMapping[str, dict]:
    if _FILE_PATH.is_file():
        try:
            with _FILE_PATH.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    return data
        except (OSError, ValueError) as exc:
            _log.warning("Failed to read usage file: %s", exc)
    return {}


def _save(data: MutableMapping[str, dict]) -> None:
    try:
        with _FILE_PATH.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as exc:
        _log.warning("Failed to write usage file: %s", exc)


def record_usage(model: str, prompt_tokens: int, completion_tokens: int) -> None:
    """Add the given token counts to the running totals for *model*."""
    with _LOCK:
        data = _load()
        rec = data.setdefault(model, {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "cost_usd": 0.0,
            "requests": 0,
            "last_used": None,
        })

        rec["prompt_tokens"] += prompt_tokens
        rec["completion_tokens"] += completion_tokens
        rec["requests"] += 1
        rec["last_used"] = datetime.now().isoformat()

        price = MODEL_PRICING.get(model)
        if price:
            p_cost, c_cost = price
            rec["cost_usd"] += (prompt_tokens / 1000) * p_cost + (completion_tokens / 1000) * c_cost

        _save(data)


def load_usage() -> dict[str, dict]:
    """Return the cumulative usage structure, keyed by model."""
    return dict(_load())


def reset_usage() -> None:
    """Forget all recorded usage."""
    with _LOCK:
        _save({})
        _log.info("Usage data reset")
