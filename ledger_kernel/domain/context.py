"""
LedgerContext -- request-scoped organization configuration.

Responsibility:
    Carries the organization scope, acting user and the per-organization
    settings every component needs (base currency, balance tolerance).
    It is passed explicitly into each call; the kernel keeps no global
    mutable configuration.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Built by ``ledger_config.build_context``
    or directly by callers and tests.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID, uuid4

DEFAULT_BALANCE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class LedgerContext:
    """
    Immutable per-request context.

    Contract:
        The caller has already authenticated ``actor_id`` and authorized it
        for ``organization_id``.

    Guarantees:
        - ``base_currency`` is an upper-case ISO 4217 code.
        - ``balance_tolerance`` is a non-negative Decimal.
    """

    organization_id: UUID
    actor_id: UUID
    base_currency: str = "PLN"
    balance_tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE
    correlation_id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        if len(self.base_currency) != 3 or not self.base_currency.isupper():
            raise ValueError(f"Invalid base currency: {self.base_currency!r}")
        if self.balance_tolerance < 0:
            raise ValueError("balance_tolerance must be non-negative")

    def log_fields(self) -> dict[str, str]:
        """Fields bound into LogContext for the duration of a call."""
        return {
            "organization_id": str(self.organization_id),
            "actor_id": str(self.actor_id),
            "correlation_id": self.correlation_id,
        }
