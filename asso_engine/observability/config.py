"""
OpenTelemetry Configuration

Sets up tracing and logging for the governance engine. Hosts call
setup_observability() once at start-up; the engine itself only asks for
tracers and loggers.
"""

import os
import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

from ..config import EngineConfig, load_engine_config


SERVICE_NAME = 'asso-engine'

SAMPLING_RATIOS = {
    'production': 0.1,
    'staging': 0.5,
}


def setup_observability(environment: Optional[str] = None,
                        config: Optional[EngineConfig] = None) -> Optional[TracerProvider]:
    """
    Initialize OpenTelemetry tracing based on the engine configuration.

    Args:
        environment: Overrides the configured environment
        config: Engine configuration, loaded from the environment when omitted

    Returns:
        The installed TracerProvider, or None when tracing is disabled
    """
    config = config or load_engine_config()
    environment = environment or config.environment
    service_version = os.getenv('SERVICE_VERSION', '1.0.0')

    setup_structured_logging(environment)

    if not config.otel_enabled:
        return None

    sampler = TraceIdRatioBased(SAMPLING_RATIOS.get(environment, 1.0))

    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(
        sampler=sampler,
        resource=resource
    )

    otlp_endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')
    if environment in ('production', 'staging'):
        # Export to the OTLP collector only when one is configured
        if otlp_endpoint:
            otlp_exporter = OTLPSpanExporter(
                endpoint=otlp_endpoint,
                headers={"Authorization": f"Bearer {os.getenv('OTEL_API_KEY', '')}"}
            )
            tracer_provider.add_span_processor(
                BatchSpanProcessor(otlp_exporter, max_export_batch_size=512)
            )
    else:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        if otlp_endpoint:
            tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def setup_structured_logging(environment: str):
    """Configure logging levels per environment."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.INFO
    }.get(environment, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if environment == 'production':
        # Business events only
        logging.getLogger('asso_engine.services').setLevel(logging.INFO)
        logging.getLogger('opentelemetry').setLevel(logging.ERROR)

    elif environment == 'development':
        logging.getLogger('asso_engine').setLevel(logging.DEBUG)
