"""
Configuration Loader (``crm_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses its ``opportunity`` section
into a typed ``OpportunityConfig``.  Runtime callers go through
``crm_config.get_active_config()`` rather than calling this directly.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the opportunity
module's config dataclass; no dependency on services or the database.

Invariants enforced
-------------------
* Numeric settings are parsed as ``Decimal`` from their string form,
  never through float.
* Unknown keys in the ``opportunity`` section raise ``ValueError`` so a
  typo cannot silently fall back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from ``OpportunityConfig.__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from crm_modules.opportunity.config import OpportunityConfig

_DECIMAL_FIELDS = frozenset({
    "applied_money_tolerance",
    "reconciliation_variance_tolerance",
    "split_sum_tolerance",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Preconditions:
        - ``path`` must point to an existing, readable YAML file.
    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def parse_opportunity_config(data: dict[str, Any]) -> OpportunityConfig:
    """Build an ``OpportunityConfig`` from the ``opportunity`` mapping."""
    known = {f.name for f in fields(OpportunityConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown opportunity config keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key in _DECIMAL_FIELDS:
            kwargs[key] = Decimal(str(value))
        elif key == "stage_gates":
            kwargs[key] = tuple(value or ())
        elif key == "schedule_number_floor":
            kwargs[key] = int(value)
        else:
            kwargs[key] = value
    return OpportunityConfig(**kwargs)


def load_opportunity_config(path: Path) -> OpportunityConfig:
    """Load a YAML file and parse its ``opportunity`` section."""
    data = load_yaml_file(path)
    return parse_opportunity_config(data.get("opportunity") or {})


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
