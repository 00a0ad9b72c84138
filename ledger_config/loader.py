"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into the frozen dataclasses
of ``ledger_config.schema``.  The single public entry point for runtime
configuration is ``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every rule's ``conditions`` is parsed against the supported rule kinds
  at load time, so an unsupported kind fails the load
  (``UnsupportedRuleKindError`` / ``InvalidRuleConditionError``).
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import OrganizationConfig, RuleDefinition
from ledger_kernel.domain.rule_kinds import parse_rule_condition
from ledger_kernel.domain.types import EntryType, RuleCategory, Severity


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a Decimal from YAML.  Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name} must be a number, got {value!r}") from None


def parse_rule(data: dict[str, Any]) -> RuleDefinition:
    """
    Parse a ``RuleDefinition`` from a dict.

    Raises:
        KeyError: if code, name, category, severity or conditions is missing.
        ValueError: if category, severity or applies_to has an unknown value.
        ConfigurationError: if conditions is not a supported rule kind.
    """
    conditions = dict(data["conditions"])
    parse_rule_condition(conditions)
    return RuleDefinition(
        code=data["code"],
        name=data["name"],
        category=RuleCategory(data["category"]),
        severity=Severity(data["severity"]),
        conditions=conditions,
        applies_to=tuple(EntryType(t) for t in data.get("applies_to") or ()),
        description=data.get("description"),
        error_message=data.get("error_message"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_config(data: dict[str, Any]) -> OrganizationConfig:
    """Parse a full configuration set."""
    base_currency = str(data["base_currency"]).upper()
    if len(base_currency) != 3:
        raise ValueError(f"base_currency must be an ISO 4217 code, got {base_currency!r}")

    tolerance = parse_decimal(data.get("balance_tolerance", "0.01"), "balance_tolerance")
    if tolerance < 0:
        raise ValueError("balance_tolerance must be non-negative")

    rules = tuple(parse_rule(r) for r in data.get("rules") or ())
    codes = [r.code for r in rules]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise ValueError(f"Duplicate rule codes: {', '.join(duplicates)}")

    return OrganizationConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        base_currency=base_currency,
        balance_tolerance=tolerance,
        rules=rules,
        checksum=compute_checksum(data),
        metadata=dict(data.get("metadata") or {}),
    )


def load_config_file(path: Path) -> OrganizationConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of the raw configuration."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
