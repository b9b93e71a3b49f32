from __future__ import annotations
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel

from jirasql.client.errors import JiraConnectionError
from jirasql.client.jira_client import JiraClient, connect
from jirasql.connection.models import ConnectionConfig
from jirasql.connection.registry import ConnectionRegistry
from jirasql.engine.query_engine import QueryEngine
from jirasql.tables.plugin import plugin_tables

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

DEMO_CONNECTION_ID = "demo"

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------
QUERY_COUNT = Counter(
    "jirasql_queries_total",
    "Total SQL queries processed",
    ["status", "connection_id"],
)
QUERY_LATENCY = Histogram(
    "jirasql_query_latency_seconds",
    "Query execution latency",
    ["connection_id"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
ROW_ERRORS = Counter(
    "jirasql_row_errors_total",
    "Rows dropped because a hydrate call failed",
    ["connection_id"],
)

# ---------------------------------------------------------------------------
# Shared process-level resources (populated in lifespan)
# ---------------------------------------------------------------------------
_registry: Optional[ConnectionRegistry] = None
_clients: Dict[str, JiraClient] = {}
_engines: Dict[str, QueryEngine] = {}
_connection_errors: Dict[str, str] = {}


def _demo_connection() -> ConnectionConfig:
    """Mock-mode connection so the gateway answers without any YAML config."""
    return ConnectionConfig(
        connection_id=DEMO_CONNECTION_ID,
        base_url="mock",
        display_name="Demo Jira site (in-memory)",
    )


def _build_engines(registry: ConnectionRegistry) -> None:
    tables = plugin_tables()
    for connection_id in registry.all_connection_ids():
        cfg = registry.get(connection_id)
        try:
            client = connect(cfg)
        except JiraConnectionError as exc:
            _connection_errors[connection_id] = str(exc)
            continue
        _clients[connection_id] = client
        _engines[connection_id] = QueryEngine(client, tables)


def _span_processor():
    """OTLP/HTTP exporter when OTEL_EXPORTER_OTLP_ENDPOINT is set, console otherwise."""
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT set but the OTLP exporter is not installed")
        else:
            logger.info("tracing: exporting spans to %s", endpoint)
            return BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
    return SimpleSpanProcessor(ConsoleSpanExporter())


def _init_tracing() -> None:
    """Install an SDK tracer provider; tracing problems never stop the gateway."""
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider(
            resource=Resource.create({"service.name": "jirasql-gateway", "service.version": "0.1.0"})
        )
        provider.add_span_processor(_span_processor())
        trace.set_tracer_provider(provider)
    except Exception as exc:
        logger.warning("tracing disabled: %s", exc)


# ---------------------------------------------------------------------------
# App lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _registry

    _init_tracing()

    config_dir = os.environ.get("CONNECTION_CONFIG_DIR", "configs/connections")
    _registry = ConnectionRegistry(config_dir=config_dir)
    try:
        _registry.load_all()
    except FileNotFoundError:
        logger.warning("Connection config dir not found: %s; demo connection only", config_dir)
    _registry.register(_demo_connection())

    _build_engines(_registry)
    logger.info(
        "jirasql gateway started. Connections: %s (failed: %s)",
        sorted(_engines), sorted(_connection_errors),
    )

    yield

    for client in _clients.values():
        await client.close()
    _clients.clear()
    _engines.clear()
    _connection_errors.clear()
    logger.info("jirasql gateway shut down.")


app = FastAPI(title="jirasql gateway", version="0.1.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class QueryRequest(BaseModel):
    sql: str
    metadata: Optional[Dict[str, Any]] = {}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.post("/v1/query")
async def execute_query(
    request: QueryRequest,
    x_connection_id: str = Header(DEMO_CONNECTION_ID, description="Connection to query"),
):
    """
    Execute SQL against the Jira tables of one connection.

    Returns 400 for bad SQL / unknown tables, 404 for an unknown connection,
    502 when Jira fails, 503 when the connection could not be established.
    """
    trace_id = (request.metadata or {}).get("trace_id", str(uuid.uuid4()))

    if x_connection_id in _connection_errors:
        QUERY_COUNT.labels(status="503", connection_id=x_connection_id).inc()
        raise HTTPException(status_code=503, detail=_connection_errors[x_connection_id])
    engine = _engines.get(x_connection_id)
    if engine is None:
        QUERY_COUNT.labels(status="404", connection_id=x_connection_id).inc()
        raise HTTPException(status_code=404, detail=f"Unknown connection: {x_connection_id}")

    start_time = time.time()
    result = await engine.execute_query(request.sql)
    duration = time.time() - start_time

    if "error" in result:
        status_code = result.get("status_code", 500)
        QUERY_COUNT.labels(status=str(status_code), connection_id=x_connection_id).inc()
        return JSONResponse(
            status_code=status_code,
            content={"error": result["error"], "trace_id": trace_id},
        )

    QUERY_LATENCY.labels(connection_id=x_connection_id).observe(duration)
    QUERY_COUNT.labels(status="200", connection_id=x_connection_id).inc()
    if result["row_errors"]:
        ROW_ERRORS.labels(connection_id=x_connection_id).inc(len(result["row_errors"]))

    result["trace_id"] = trace_id
    return result


@app.get("/v1/tables")
async def list_tables():
    """Schema of every table the plugin serves."""
    return {
        name: {
            "description": table.description,
            "get_key_columns": table.get_config.key_columns if table.get_config else [],
            "columns": [
                {"name": c.name, "type": c.type.value, "description": c.description}
                for c in table.columns
            ],
        }
        for name, table in plugin_tables().items()
    }


@app.get("/health")
async def health():
    """Liveness/readiness probe."""
    checks = {
        "connections": str(len(_engines)),
        "failed_connections": str(len(_connection_errors)),
    }
    ok = len(_engines) > 0
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"status": "ok" if ok else "degraded", "checks": checks},
    )


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8002)
