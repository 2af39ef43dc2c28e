"""
Policy file loading and validation.

The file is a YAML mapping of agent id to policy:

    research-bot:
      name: research-standard
      budget:
        max_per_transaction: 0.50
        max_per_hour: 5
        max_per_day: 20
      allowed_resources:
        - https://api.weather.com
      on_violation: block_and_alert

Malformed input raises PolicyLoadError; nothing is silently defaulted.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import PolicyLoadError
from .policy import Budget, OnViolation, Policy, PolicyTable, freeze_policies


logger = logging.getLogger(__name__)

_BUDGET_FIELDS = ("max_per_transaction", "max_per_hour", "max_per_day")


def load_policies(path: Path | str) -> PolicyTable:
    """Load and validate a YAML policy file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise PolicyLoadError(f"cannot read policy file: {e}", path=str(path)) from e
    except yaml.YAMLError as e:
        raise PolicyLoadError(f"invalid YAML: {e}", path=str(path)) from e

    try:
        policies = parse_policies(raw)
    except PolicyLoadError as e:
        raise PolicyLoadError(str(e), path=str(path)) from e

    logger.info("Loaded %d policies from %s", len(policies), path)
    return policies


def parse_policies(raw: Any) -> PolicyTable:
    """Validate an already-parsed document (mapping of agent id -> policy)."""
    if raw is None:
        return freeze_policies({})
    if not isinstance(raw, Mapping):
        raise PolicyLoadError(
            f"policy file must be a mapping of agent id to policy, got {type(raw).__name__}"
        )

    policies: dict[str, Policy] = {}
    for agent_id, entry in raw.items():
        if not isinstance(agent_id, str) or not agent_id:
            raise PolicyLoadError(f"agent id must be a non-empty string, got {agent_id!r}")
        policies[agent_id] = parse_policy(agent_id, entry)
    return freeze_policies(policies)


def parse_policy(agent_id: str, entry: Any) -> Policy:
    if not isinstance(entry, Mapping):
        raise PolicyLoadError(f"{agent_id}: policy must be a mapping")

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise PolicyLoadError(f"{agent_id}.name: required non-empty string")

    budget_raw = entry.get("budget")
    if not isinstance(budget_raw, Mapping):
        raise PolicyLoadError(f"{agent_id}.budget: required mapping")
    limits = {
        key: _parse_limit(budget_raw.get(key), f"{agent_id}.budget.{key}")
        for key in _BUDGET_FIELDS
    }

    resources = entry.get("allowed_resources")
    if not isinstance(resources, list) or not all(isinstance(r, str) for r in resources):
        raise PolicyLoadError(f"{agent_id}.allowed_resources: required list of strings")

    violation_raw = entry.get("on_violation")
    try:
        on_violation = OnViolation(violation_raw)
    except ValueError:
        allowed = ", ".join(v.value for v in OnViolation)
        raise PolicyLoadError(
            f"{agent_id}.on_violation: expected one of {allowed}, got {violation_raw!r}"
        ) from None

    return Policy(
        name=name,
        budget=Budget(**limits),
        allowed_resources=tuple(dict.fromkeys(resources)),
        on_violation=on_violation,
    )


def _parse_limit(value: Any, field_name: str) -> float:
    # bool is an int subclass; `max_per_day: yes` is a typo, not a limit.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PolicyLoadError(f"{field_name}: required number, got {value!r}")
    if not math.isfinite(value) or value < 0:
        raise PolicyLoadError(f"{field_name}: must be a finite non-negative number")
    return float(value)
