"""Prometheus metrics for routing, execution and system health"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST, start_http_server

# Chain RPC Metrics
chain_rpc_latency = Histogram(
    'chain_rpc_latency_seconds',
    'RPC call latency in seconds',
    ['chain', 'method'],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
)

chain_rpc_errors = Counter(
    'chain_rpc_errors_total',
    'Total number of RPC errors',
    ['chain', 'error_type']
)

# Cache Metrics
cache_requests = Counter(
    'cache_requests_total',
    'Total number of TTL cache lookups',
    ['result']
)

# Routing Metrics
path_search_latency = Histogram(
    'path_search_latency_seconds',
    'Best path search latency in seconds',
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0)
)

paths_not_found = Counter(
    'paths_not_found_total',
    'Total number of route searches without a usable path'
)

graph_pools = Gauge(
    'liquidity_graph_pools',
    'Number of pools in the last built liquidity graph'
)

pool_fetch_errors = Counter(
    'pool_fetch_errors_total',
    'Total number of pool reads that failed during a graph rebuild'
)

# Execution Metrics
swaps_total = Counter(
    'swaps_total',
    'Total number of swap executions',
    ['status']
)

transactions_active = Gauge(
    'transactions_active',
    'Number of transactions still pending confirmation'
)

transactions_terminal = Counter(
    'transactions_terminal_total',
    'Total number of transactions that reached a terminal state',
    ['outcome']
)

# Alerting Metrics
alerts_triggered = Counter(
    'alerts_triggered_total',
    'Total number of alerts triggered',
    ['kind']
)

# System Snapshot Metrics
system_cache_hit_rate = Gauge(
    'system_cache_hit_rate_percent',
    'Cache hit rate at the last metrics snapshot'
)

system_api_latency = Gauge(
    'system_api_latency_ms',
    'Block number probe latency in milliseconds at the last snapshot'
)

system_error_rate = Gauge(
    'system_error_rate_percent',
    'Error rate at the last metrics snapshot'
)

# API Performance Metrics
api_requests_total = Counter(
    'api_requests_total',
    'Total number of API requests',
    ['endpoint', 'method', 'status']
)

api_request_latency = Histogram(
    'api_request_latency_seconds',
    'API request latency in seconds',
    ['endpoint', 'method'],
    buckets=(0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0)
)

api_errors = Counter(
    'api_errors_total',
    'Total number of API errors',
    ['endpoint', 'error_type']
)

# WebSocket Metrics
websocket_connections_active = Gauge(
    'websocket_connections_active',
    'Number of active WebSocket connections'
)

websocket_messages_sent = Counter(
    'websocket_messages_sent_total',
    'Total number of WebSocket messages sent',
    ['message_type']
)


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest()


def get_content_type() -> str:
    """Content type for the Prometheus exposition format"""
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default 9090)
    """
    start_http_server(port)
