"""Configuration sets: loading, validation, checksum and context building."""

from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from ledger_config import build_context, get_active_config
from ledger_config.loader import compute_checksum, parse_config, parse_decimal, parse_rule
from ledger_kernel.domain.types import EntryType, RuleCategory, Severity
from ledger_kernel.exceptions import InvalidRuleConditionError, UnsupportedRuleKindError


def _config_data(**overrides):
    data = {
        "config_id": "acme",
        "version": 3,
        "base_currency": "eur",
        "balance_tolerance": "0.05",
        "rules": [
            {
                "code": "CUR_EUR_ONLY",
                "name": "Euro only",
                "category": "currency",
                "severity": "error",
                "conditions": {"kind": "allowed_currencies", "currencies": ["EUR"]},
            },
        ],
    }
    data.update(overrides)
    return data


class TestDefaultConfig:

    def test_default_set(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.version == 1
        assert config.base_currency == "PLN"
        assert config.balance_tolerance == Decimal("0.01")
        assert [rule.code for rule in config.rules] == ["BUS_VAT_WITH_EXPENSE", "BUS_LARGE_AMOUNT"]

    def test_rule_lookup(self):
        config = get_active_config()

        vat = config.rule("BUS_VAT_WITH_EXPENSE")
        assert vat.category == RuleCategory.BUSINESS
        assert vat.severity == Severity.WARNING
        assert vat.applies_to == (EntryType.STANDARD,)
        assert vat.conditions["vat_account_prefix"] == "22"
        assert config.rule("MISSING") is None

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_load_is_traced(self, captured_logs):
        config = get_active_config()

        trace = next(r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE")
        assert trace["config_set_id"] == "default"
        assert trace["checksum"] == config.checksum
        assert trace["rule_count"] == 2

    def test_unknown_set(self):
        with pytest.raises(FileNotFoundError):
            get_active_config("does-not-exist")


class TestCustomConfigDir:

    def test_load_from_directory(self, tmp_path):
        (tmp_path / "acme.yaml").write_text(yaml.safe_dump(_config_data()))

        config = get_active_config("acme", config_dir=tmp_path)

        assert config.base_currency == "EUR"
        assert config.balance_tolerance == Decimal("0.05")
        assert config.rule("CUR_EUR_ONLY").applies_to == ()

    def test_invalid_rule_kind_in_file(self, tmp_path):
        data = _config_data(rules=[{
            "code": "SCRIPTED",
            "name": "Scripted",
            "category": "custom",
            "severity": "error",
            "conditions": {"kind": "python", "source": "return True"},
        }])
        (tmp_path / "bad.yaml").write_text(yaml.safe_dump(data))

        with pytest.raises(UnsupportedRuleKindError):
            get_active_config("bad", config_dir=tmp_path)


class TestParsing:

    def test_checksum_ignores_key_order(self):
        data = _config_data()
        reordered = dict(reversed(list(data.items())))
        assert compute_checksum(data) == compute_checksum(reordered)
        assert compute_checksum(data) != compute_checksum(_config_data(version=4))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_currency": "euro"},
            {"balance_tolerance": "-0.01"},
            {"balance_tolerance": "lots"},
        ],
    )
    def test_invalid_header_fields(self, overrides):
        with pytest.raises(ValueError):
            parse_config(_config_data(**overrides))

    def test_duplicate_rule_codes(self):
        rule = _config_data()["rules"][0]
        with pytest.raises(ValueError, match="CUR_EUR_ONLY"):
            parse_config(_config_data(rules=[rule, dict(rule)]))

    def test_rule_missing_key(self):
        with pytest.raises(KeyError):
            parse_rule({"code": "X", "name": "X", "category": "custom", "severity": "info"})

    def test_rule_unknown_severity(self):
        with pytest.raises(ValueError):
            parse_rule({
                "code": "X",
                "name": "X",
                "category": "custom",
                "severity": "fatal",
                "conditions": {"kind": "large_amount", "threshold": "1"},
            })

    def test_rule_malformed_conditions(self):
        with pytest.raises(InvalidRuleConditionError):
            parse_rule({
                "code": "X",
                "name": "X",
                "category": "custom",
                "severity": "info",
                "conditions": {"kind": "large_amount"},
            })

    def test_parse_decimal(self):
        assert parse_decimal(0.1, "amount") == Decimal("0.1")
        assert parse_decimal("12.50", "amount") == Decimal("12.50")
        with pytest.raises(ValueError):
            parse_decimal(True, "amount")


class TestBuildContext:

    def test_context_from_config(self):
        config = parse_config(_config_data())
        organization_id, actor_id = uuid4(), uuid4()

        context = build_context(config, organization_id, actor_id, correlation_id="req-42")

        assert context.organization_id == organization_id
        assert context.actor_id == actor_id
        assert context.base_currency == "EUR"
        assert context.balance_tolerance == Decimal("0.05")
        assert context.correlation_id == "req-42"

    def test_correlation_id_generated(self):
        context = build_context(get_active_config(), uuid4(), uuid4())
        assert context.correlation_id
