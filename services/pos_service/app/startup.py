from __future__ import annotations

from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.startup import wait_for_db

from .alembic_helper import run_alembic_migrations
from .services.intent_issuer import session_result_sink
from .settings import pos_settings
from .terminal import ExternalTerminal, SimulatedTerminal, TerminalGateway


def setup_logging() -> None:
    """Configure Loguru for consistent, structured service logs."""
    logger.remove()
    logger.add(
        sink=lambda msg: print(msg, end=""),
        level=pos_settings().log_level.upper(),
        backtrace=False,
        diagnose=False,
        colorize=False,
        serialize=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level>",
    )


def setup_instrumentation(app: FastAPI) -> None:
    settings = pos_settings()
    if not settings.otel_endpoint:
        return
    if trace.get_tracer_provider() and not isinstance(trace.get_tracer_provider(), trace.NoOpTracerProvider):
        return
    resource = Resource(attributes={SERVICE_NAME: settings.service_name})
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_endpoint)))
    trace.set_tracer_provider(tracer_provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
    app.state.tracer_provider = tracer_provider
    logger.info("📈 OpenTelemetry instrumentation configured for POS Service.")


def build_terminal(session_factory: async_sessionmaker[AsyncSession]) -> TerminalGateway:
    settings = pos_settings()
    if settings.terminal_mode == "simulated":
        logger.warning(
            "Simulated terminal enabled: every intent resolves as '{}' after {}s",
            settings.simulated_terminal_outcome,
            settings.simulated_terminal_delay_seconds,
        )
        return SimulatedTerminal(
            deliver=session_result_sink(session_factory),
            outcome=settings.simulated_terminal_outcome,
            delay_seconds=settings.simulated_terminal_delay_seconds,
        )
    return ExternalTerminal()


async def init_service_startup(app: FastAPI) -> None:
    settings = pos_settings()
    logger.info(f"🚀 Initializing {settings.service_name} ({settings.environment})...")
    for key, value in settings.safe_dict().items():
        logger.info(f"    {key}: {value}")
    try:
        await wait_for_db(settings.async_db_url, retries=5, delay=2)
        await run_alembic_migrations(settings.sync_db_url)
    except Exception as e:
        # Keep the service up even if migrations fail locally
        logger.error(f"❌ Database startup steps failed: {e}")


async def shutdown_instrumentation(app: FastAPI) -> None:
    tracer_provider = getattr(app.state, "tracer_provider", None)
    if tracer_provider:
        tracer_provider.shutdown()
        logger.info("🧹 OpenTelemetry instrumentation shut down gracefully.")
