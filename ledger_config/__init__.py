"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain organization configuration at runtime
    through ``get_active_config()``, and turns it into the request-scoped
    ``LedgerContext`` via ``build_context()``.  No other component reads
    configuration files directly.

Architecture position:
    Configuration -- YAML configuration sets, validated at load time.
    Sits above ``ledger_kernel``.  The kernel MUST NEVER import from
    ``ledger_config``; it receives configuration as an explicit
    ``LedgerContext`` argument and default rules through
    ``ValidationService.seed_default_rules``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Load-time validation: every rule payload is a supported rule kind.
    - Deterministic identity: the same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` / ``KeyError`` -- schema violations.
    - ``ConfigurationError`` -- unsupported or malformed rule payload.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from ledger_config.loader import load_config_file
from ledger_config.schema import OrganizationConfig, RuleDefinition
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(name: str = "default", config_dir: Path | None = None) -> OrganizationConfig:
    """The ONLY public configuration entrypoint.

    Args:
        name: Configuration set name (``<name>.yaml`` in the sets directory).
        config_dir: Override path to the configuration sets directory.

    Raises:
        FileNotFoundError: If no such configuration set exists.
        ValueError: If the configuration fails schema validation.
        ConfigurationError: If a rule payload is not a supported rule kind.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config_file(path)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "base_currency": config.base_currency,
            "rule_count": len(config.rules),
        },
    )
    return config


def build_context(
    config: OrganizationConfig,
    organization_id: UUID,
    actor_id: UUID,
    correlation_id: str | None = None,
) -> LedgerContext:
    """Request-scoped context for one organization and actor."""
    kwargs = {}
    if correlation_id is not None:
        kwargs["correlation_id"] = correlation_id
    return LedgerContext(
        organization_id=organization_id,
        actor_id=actor_id,
        base_currency=config.base_currency,
        balance_tolerance=config.balance_tolerance,
        **kwargs,
    )


__all__ = [
    "OrganizationConfig",
    "RuleDefinition",
    "build_context",
    "get_active_config",
]
