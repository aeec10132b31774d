# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for tracing and logging bootstrap.
"""

import logging
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider

from asso_engine.config import EngineConfig
from asso_engine.observability import setup_observability, setup_structured_logging


@pytest.fixture
def set_provider():
    with patch('asso_engine.observability.config.trace.set_tracer_provider') as mock_set:
        yield mock_set


class TestSetupObservability:
    """Test tracer provider installation per environment."""

    def test_disabled(self, monkeypatch, set_provider):
        monkeypatch.setenv('OTEL_ENABLED', 'false')

        assert setup_observability('test') is None
        set_provider.assert_not_called()

    @pytest.mark.parametrize("environment,ratio", [
        ('production', 0.1),
        ('staging', 0.5),
        ('test', 1.0),
    ])
    def test_sampling_per_environment(self, monkeypatch, set_provider, environment, ratio):
        monkeypatch.setenv('OTEL_ENABLED', 'true')
        monkeypatch.delenv('OTEL_EXPORTER_OTLP_ENDPOINT', raising=False)

        provider = setup_observability(environment)

        assert isinstance(provider, TracerProvider)
        assert provider.sampler.rate == ratio
        set_provider.assert_called_once_with(provider)

    def test_resource_attributes(self, monkeypatch, set_provider):
        monkeypatch.setenv('OTEL_ENABLED', 'true')
        monkeypatch.setenv('SERVICE_VERSION', '2.1.0')

        provider = setup_observability('test')
        attributes = provider.resource.attributes

        assert attributes["service.name"] == "asso-engine"
        assert attributes["service.version"] == "2.1.0"
        assert attributes["deployment.environment"] == "test"

    def test_environment_from_variable(self, monkeypatch, set_provider):
        monkeypatch.setenv('OTEL_ENABLED', 'true')
        monkeypatch.setenv('ENVIRONMENT', 'staging')

        provider = setup_observability()

        assert provider.resource.attributes["deployment.environment"] == "staging"

    def test_engine_config_disables_tracing(self, monkeypatch, set_provider):
        monkeypatch.setenv('OTEL_ENABLED', 'true')

        assert setup_observability(config=EngineConfig(environment='test', otel_enabled=False)) is None
        set_provider.assert_not_called()

    def test_engine_config_environment(self, monkeypatch, set_provider):
        monkeypatch.setenv('OTEL_ENABLED', 'false')
        monkeypatch.setenv('ENVIRONMENT', 'test')

        provider = setup_observability(config=EngineConfig(environment='production', otel_enabled=True))

        assert provider.sampler.rate == 0.1
        assert provider.resource.attributes["deployment.environment"] == "production"


def test_production_logging_levels():
    otel_logger = logging.getLogger('opentelemetry')
    previous = otel_logger.level
    try:
        setup_structured_logging('production')
        assert otel_logger.level == logging.ERROR
        assert logging.getLogger('asso_engine.services').level == logging.INFO
    finally:
        otel_logger.setLevel(previous)
