"""
Organization configuration schema.

Defines the human-authored configuration of one organization's ledger:
base currency, balance tolerance and the default validation rule set.
YAML configuration sets are parsed into these types by the loader; the
runtime derives a ``LedgerContext`` from them via ``build_context``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ledger_kernel.domain.types import EntryType, RuleCategory, Severity


@dataclass(frozen=True)
class RuleDefinition:
    """A default validation rule, declarative data only.

    ``conditions`` is a tagged rule-kind payload (``{"kind": ...}``) that has
    already been checked against the supported rule kinds.
    """

    code: str
    name: str
    category: RuleCategory
    severity: Severity
    conditions: Mapping[str, Any]
    applies_to: tuple[EntryType, ...] = ()
    description: str | None = None
    error_message: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class OrganizationConfig:
    """One configuration set."""

    config_id: str
    version: int
    base_currency: str
    balance_tolerance: Decimal
    rules: tuple[RuleDefinition, ...] = ()
    checksum: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def rule(self, code: str) -> RuleDefinition | None:
        for rule in self.rules:
            if rule.code == code:
                return rule
        return None
