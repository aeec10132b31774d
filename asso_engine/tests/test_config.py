# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for environment configuration.
"""

from decimal import Decimal

import pytest

from asso_engine.config import EngineConfig, load_engine_config


ENV_VARS = (
    'ASSO_VERY_LATE_AFTER_DAYS',
    'ASSO_STATUS_WINDOW_MONTHS',
    'ASSO_INSTALLMENT_PERIOD_DAYS',
    'ASSO_DEFAULT_APPROVAL_CEILING',
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadEngineConfig:
    """Test configuration loading from environment variables."""

    def test_defaults(self, clean_env):
        config = load_engine_config()

        assert config.environment == 'test'
        assert config.very_late_after_days == 30
        assert config.status_window_months == 12
        assert config.installment_period_days == 30
        assert config.default_approval_ceiling is None
        assert config.otel_enabled is False

    def test_overrides(self, clean_env):
        clean_env.setenv('ASSO_VERY_LATE_AFTER_DAYS', '45')
        clean_env.setenv('ASSO_STATUS_WINDOW_MONTHS', '6')
        clean_env.setenv('ASSO_INSTALLMENT_PERIOD_DAYS', '31')
        clean_env.setenv('ASSO_DEFAULT_APPROVAL_CEILING', ' 2500.00 ')
        clean_env.setenv('OTEL_ENABLED', 'TRUE')

        config = load_engine_config()

        assert config.very_late_after_days == 45
        assert config.status_window_months == 6
        assert config.installment_period_days == 31
        assert config.default_approval_ceiling == Decimal("2500.00")
        assert config.otel_enabled is True

    def test_blank_ceiling_means_none(self, clean_env):
        clean_env.setenv('ASSO_DEFAULT_APPROVAL_CEILING', '  ')
        assert load_engine_config().default_approval_ceiling is None

    def test_invalid_ceiling(self, clean_env):
        clean_env.setenv('ASSO_DEFAULT_APPROVAL_CEILING', 'beaucoup')
        with pytest.raises(ValueError, match="not a number"):
            load_engine_config()

    def test_invalid_integer(self, clean_env):
        clean_env.setenv('ASSO_STATUS_WINDOW_MONTHS', 'douze')
        with pytest.raises(ValueError):
            load_engine_config()


class TestEngineConfig:
    """Test EngineConfig bounds."""

    @pytest.mark.parametrize("kwargs", [
        {"very_late_after_days": -1},
        {"status_window_months": 0},
        {"installment_period_days": 0},
        {"default_approval_ceiling": Decimal("0")},
    ])
    def test_rejects_out_of_range(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_zero_grace_for_very_late_is_allowed(self):
        assert EngineConfig(very_late_after_days=0).very_late_after_days == 0
