"""HTTP API: quotes, transaction status, analytics and the event stream"""

import time
from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request, Response, Security, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
import structlog

from swaprouter.cache.store import AnalyticsStore
from swaprouter.chains.connector import ChainConnector
from swaprouter.chains.tokens import TokenRegistry
from swaprouter.config.models import Settings
from swaprouter.execution.quote_estimator import QuoteEstimator
from swaprouter.monitoring import metrics
from swaprouter.monitoring.alerts import AlertManager
from swaprouter.monitoring.collector import MetricsCollector
from swaprouter.monitoring.trading import TradingAnalytics
from swaprouter.monitors.transaction_monitor import TransactionMonitor

logger = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass
class ApiServices:
    """Components the HTTP layer reads from"""

    chain: ChainConnector
    tokens: TokenRegistry
    estimator: QuoteEstimator
    monitor: TransactionMonitor
    trading: TradingAnalytics
    collector: MetricsCollector
    alerts: AlertManager
    store: Optional[AnalyticsStore] = None


class APIKeyAuth:
    """Checks the X-API-Key header against the configured key set"""

    def __init__(self, api_keys: List[str]):
        self.api_keys = set(api_keys)
        self._logger = logger.bind(component="api_auth")

    def _reject(self, reason: str, detail: str) -> HTTPException:
        self._logger.warning("request_unauthorized", reason=reason)
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)

    async def __call__(self, api_key: Optional[str] = Security(api_key_header)) -> str:
        if not api_key:
            raise self._reject("missing_key", "Missing API key. Send it in the X-API-Key header.")
        if api_key not in self.api_keys:
            raise self._reject("unknown_key", "Invalid API key")
        return api_key


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def create_app(settings: Settings, services: ApiServices) -> FastAPI:
    """
    Build the HTTP and WebSocket application around already constructed services.

    Routes resolve their components through app.state.services, so tests can
    hand in fakes without touching the network.
    """
    app = FastAPI(
        title="Swap Router API",
        description="Quotes, transaction tracking and trading analytics for multi-hop DEX swaps",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            metrics.api_errors.labels(endpoint=request.url.path, error_type=type(e).__name__).inc()
            raise

        endpoint = _route_template(request)
        metrics.api_request_latency.labels(endpoint=endpoint, method=request.method).observe(
            time.perf_counter() - started
        )
        metrics.api_requests_total.labels(
            endpoint=endpoint, method=request.method, status=response.status_code
        ).inc()
        return response

    from swaprouter.api.websocket import WebSocketManager, websocket_endpoint

    ws_manager = WebSocketManager(
        max_connections=settings.max_websocket_connections,
        tokens=services.tokens,
    )

    app.state.settings = settings
    app.state.services = services
    app.state.api_key_auth = APIKeyAuth(settings.get_api_keys_list())
    app.state.ws_manager = ws_manager

    from swaprouter.api.routes import alerts, analytics, health, quotes, transactions

    for module in (health, quotes, transactions, analytics, alerts):
        app.include_router(module.router)

    from swaprouter.monitoring.metrics import get_content_type, get_metrics

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics():
        return Response(content=get_metrics(), media_type=get_content_type())

    @app.websocket("/ws/v1/events")
    async def event_stream(websocket: WebSocket):
        await websocket_endpoint(websocket, ws_manager)

    logger.info("api_app_created", version=app.version, max_ws_connections=ws_manager.max_connections)

    return app


def get_services(request: Request) -> ApiServices:
    """Route dependency returning the shared service bundle"""
    return request.app.state.services


async def verify_api_key(request: Request) -> str:
    """Route dependency enforcing X-API-Key"""
    return await request.app.state.api_key_auth(request.headers.get("X-API-Key"))
