"""Main application entry point for the swap router"""

import asyncio
import signal
import sys
from typing import Optional

import structlog
import uvicorn
from dotenv import load_dotenv

from swaprouter.advisory.client import AdvisoryClient
from swaprouter.api.app import ApiServices, create_app
from swaprouter.cache.store import AnalyticsStore
from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.chains.connector import ChainConnector
from swaprouter.chains.tokens import TokenRegistry
from swaprouter.config.models import RouterConfig, Settings
from swaprouter.execution.engine import ExecutionEngine
from swaprouter.execution.quote_estimator import QuoteEstimator
from swaprouter.monitoring.alerts import AlertManager
from swaprouter.monitoring.collector import MetricsCollector
from swaprouter.monitoring.metrics import start_metrics_server
from swaprouter.monitoring.price_watcher import PriceWatcher
from swaprouter.monitoring.trading import TradingAnalytics
from swaprouter.monitors.transaction_monitor import TransactionMonitor
from swaprouter.routing.path_finder import PathFinder
from swaprouter.routing.pool_registry import FactoryPoolSource, PoolRegistry, StaticPoolSource
from swaprouter.utils.logging import setup_logging

load_dotenv()

logger = structlog.get_logger()


class Application:
    """Builds every component once and wires them together"""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.router_config: Optional[RouterConfig] = None

        self.cache: Optional[TTLCache] = None
        self.store: Optional[AnalyticsStore] = None
        self.chain: Optional[ChainConnector] = None
        self.tokens: Optional[TokenRegistry] = None

        self.pool_registry: Optional[PoolRegistry] = None
        self.path_finder: Optional[PathFinder] = None
        self.estimator: Optional[QuoteEstimator] = None
        self.monitor: Optional[TransactionMonitor] = None
        self.engine: Optional[ExecutionEngine] = None

        self.alerts: Optional[AlertManager] = None
        self.collector: Optional[MetricsCollector] = None
        self.trading: Optional[TradingAnalytics] = None
        self.price_watcher: Optional[PriceWatcher] = None
        self.advisory: Optional[AdvisoryClient] = None

        self.app = None
        self._shutdown_event = asyncio.Event()

        self._logger = logger.bind(component="application")

    async def initialize(self) -> None:
        """Load settings and build every component, wiring their event channels"""
        self._logger.info("app_initializing")

        try:
            self.settings = Settings()
            setup_logging(self.settings.log_level)
            self.router_config = self.settings.get_router_config()
            chain_config = self.settings.get_chain_config()
            policy = self.router_config

            self._logger.info(
                "settings_loaded",
                chain=chain_config.name,
                chain_id=chain_config.chain_id,
                rpc_endpoints=len(chain_config.rpc_urls),
                log_level=self.settings.log_level,
            )

            self.cache = TTLCache()

            # Redis mirror is optional
            if self.settings.redis_url:
                try:
                    self.store = AnalyticsStore(self.settings.redis_url)
                    await self.store.connect()
                except Exception as e:
                    self._logger.warning(
                        "analytics_store_initialization_failed",
                        error=str(e),
                        message="Continuing without Redis",
                    )
                    self.store = None

            self.chain = ChainConnector(chain_config)
            self.tokens = TokenRegistry()

            if chain_config.factory_address:
                source = FactoryPoolSource(
                    self.chain,
                    chain_config.factory_address,
                    extra_addresses=chain_config.pool_addresses,
                )
            else:
                source = StaticPoolSource(chain_config.pool_addresses)

            self.pool_registry = PoolRegistry(
                self.chain,
                source,
                self.cache,
                pool_ttl=policy.pool_cache_ttl,
                graph_ttl=policy.graph_cache_ttl,
            )
            self.path_finder = PathFinder(self.pool_registry, default_max_hops=policy.default_max_hops)
            self.estimator = QuoteEstimator(
                self.path_finder,
                max_slippage=policy.max_slippage,
                base_gas_cost=policy.base_gas_cost,
                per_hop_gas_cost=policy.per_hop_gas_cost,
                gas_buffer_percent=policy.gas_buffer_percent,
            )
            self.monitor = TransactionMonitor(
                self.chain,
                self.cache,
                store=self.store,
                poll_interval=policy.poll_interval,
                timeout=policy.transaction_timeout,
                max_poll_errors=policy.max_poll_errors,
                analytics_ttl=policy.analytics_ttl,
            )
            self.engine = ExecutionEngine(self.estimator, self.chain, self.monitor)

            self.alerts = AlertManager()
            self.collector = MetricsCollector(
                self.chain,
                self.cache,
                self.monitor,
                alerts=self.alerts,
                store=self.store,
                interval=policy.metrics_interval,
            )
            self.collector.attach(self.cache.events, self.monitor.events)
            self.trading = TradingAnalytics(self.monitor)

            self.price_watcher = PriceWatcher(
                self.path_finder,
                self.tokens,
                self.alerts,
                watched=self.settings.get_watched_tokens(),
                quote_token=self.settings.price_quote_token,
                interval=policy.price_watch_interval,
            )

            self.advisory = AdvisoryClient(
                self.settings.advisory_api_url,
                api_key=self.settings.advisory_api_key,
                model=self.settings.advisory_model,
            )

            self.app = create_app(
                settings=self.settings,
                services=ApiServices(
                    chain=self.chain,
                    tokens=self.tokens,
                    estimator=self.estimator,
                    monitor=self.monitor,
                    trading=self.trading,
                    collector=self.collector,
                    alerts=self.alerts,
                    store=self.store,
                ),
            )
            self.app.state.ws_manager.attach(
                self.engine.events,
                self.monitor.events,
                self.collector.events,
                self.alerts.events,
            )

            self._logger.info("app_initialized", watched_tokens=len(self.price_watcher.watched))

        except Exception as e:
            self._logger.error(
                "initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def start(self) -> None:
        """Start the event stream, background loops and the Prometheus exporter"""
        try:
            await self.app.state.ws_manager.start_background_tasks()
            for component in (self.monitor, self.collector, self.price_watcher):
                await component.start()
            start_metrics_server(port=self.settings.prometheus_port)
        except Exception as e:
            self._logger.error("startup_failed", error=str(e), error_type=type(e).__name__)
            raise

        self._logger.info("app_started", metrics_port=self.settings.prometheus_port)

    async def stop(self) -> None:
        """Stop loops in reverse start order and release connections"""
        self._logger.info("app_stopping")

        steps = []
        if self.price_watcher:
            steps.append(("price_watcher", self.price_watcher.stop))
        if self.collector:
            steps.append(("collector", self.collector.stop))
        if self.monitor and self.monitor.is_running:
            steps.append(("transaction_monitor", self.monitor.stop))
        if self.app:
            steps.append(("websocket", self.app.state.ws_manager.stop_background_tasks))
        if self.advisory:
            steps.append(("advisory", self.advisory.close))
        if self.store:
            steps.append(("analytics_store", self.store.disconnect))

        for name, step in steps:
            try:
                await step()
            except Exception as e:
                self._logger.error("component_stop_failed", target=name, error=str(e), error_type=type(e).__name__)

        self._logger.info("app_stopped")

    def install_signal_handlers(self) -> None:
        """SIGINT and SIGTERM request a graceful shutdown"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_shutdown, sig)

    def _request_shutdown(self, sig: signal.Signals) -> None:
        self._logger.info("shutdown_requested", signal=sig.name)
        self._shutdown_event.set()

    async def serve(self) -> None:
        """Run the API server until a shutdown is requested or the server exits"""
        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level=self.settings.log_level.lower(),
            )
        )
        server_task = asyncio.create_task(server.serve())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        self._logger.info("api_listening", host=self.settings.api_host, port=self.settings.api_port)

        await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        server.should_exit = True
        shutdown_task.cancel()
        await asyncio.gather(server_task, shutdown_task, return_exceptions=True)


async def main() -> None:
    app = Application()
    try:
        await app.initialize()
        app.install_signal_handlers()
        await app.start()
        await app.serve()
    except Exception as e:
        logger.error("app_crashed", error=str(e), error_type=type(e).__name__)
        await app.stop()
        sys.exit(1)

    await app.stop()
    logger.info("shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("interrupted")
