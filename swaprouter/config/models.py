"""Configuration models for chain access, routing policy and application settings"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Uniswap V2 deployment on Ethereum mainnet
UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
UNISWAP_V2_FACTORY = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"


class TokenConfig(BaseModel):
    """Token known to the router"""

    symbol: str
    address: str
    decimals: int
    name: str = ""

    model_config = ConfigDict(frozen=True)


DEFAULT_TOKENS: List[TokenConfig] = [
    TokenConfig(
        symbol="ETH",
        address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        decimals=18,
        name="Wrapped Ether",
    ),
    TokenConfig(
        symbol="USDC",
        address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        decimals=6,
        name="USD Coin",
    ),
    TokenConfig(
        symbol="DAI",
        address="0x6B175474E89094C44Da98b954EedeAC495271d0F",
        decimals=18,
        name="Dai Stablecoin",
    ),
    TokenConfig(
        symbol="USDT",
        address="0xdAC17F958D2ee523a2206206994597C13D831ec7",
        decimals=6,
        name="Tether USD",
    ),
]


class ChainConfig(BaseSettings):
    """Configuration for the EVM network the router trades on"""

    name: str
    chain_id: int
    rpc_urls: List[str]
    router_address: str
    factory_address: Optional[str] = None
    pool_addresses: List[str] = Field(default_factory=list)
    pool_fee: Decimal = Decimal("0.003")
    rpc_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(frozen=True)


class RouterConfig(BaseModel):
    """Routing, execution and monitoring policy"""

    max_slippage: Decimal = Field(default=Decimal("0.05"), ge=0, lt=1)
    default_max_hops: int = 3
    base_gas_cost: int = 100000
    per_hop_gas_cost: int = 50000
    gas_buffer_percent: int = 110
    pool_cache_ttl: float = 60.0
    graph_cache_ttl: float = 30.0
    poll_interval: float = 5.0
    transaction_timeout: float = 3600.0
    max_poll_errors: int = 5
    metrics_interval: float = 60.0
    analytics_ttl: float = 86400.0
    price_watch_interval: float = 30.0

    model_config = ConfigDict(frozen=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Chain
    chain_name: str = Field(default="Ethereum", alias="CHAIN_NAME")
    chain_id: int = Field(default=1, alias="CHAIN_ID")
    rpc_urls: str = Field(alias="RPC_URLS")
    rpc_timeout_seconds: float = Field(default=10.0, alias="RPC_TIMEOUT_SECONDS")
    router_address: str = Field(default=UNISWAP_V2_ROUTER, alias="ROUTER_ADDRESS")
    factory_address: Optional[str] = Field(default=None, alias="FACTORY_ADDRESS")
    pool_addresses: str = Field(default="", alias="POOL_ADDRESSES")

    # Routing policy
    max_slippage: Decimal = Field(default=Decimal("0.05"), ge=0, lt=1, alias="MAX_SLIPPAGE")
    default_max_hops: int = Field(default=3, alias="MAX_HOPS")
    poll_interval: float = Field(default=5.0, alias="POLL_INTERVAL_SECONDS")
    transaction_timeout: float = Field(default=3600.0, alias="TRANSACTION_TIMEOUT_SECONDS")
    metrics_interval: float = Field(default=60.0, alias="METRICS_INTERVAL_SECONDS")
    watched_tokens: str = Field(default="", alias="WATCHED_TOKENS")
    price_quote_token: str = Field(default="USDC", alias="PRICE_QUOTE_TOKEN")

    # Redis
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    # Advisory service
    advisory_api_url: str = Field(
        default="https://api.openai.com/v1/chat/completions", alias="ADVISORY_API_URL"
    )
    advisory_api_key: Optional[str] = Field(default=None, alias="ADVISORY_API_KEY")
    advisory_model: str = Field(default="gpt-4", alias="ADVISORY_MODEL")

    # API Configuration
    api_keys: str = Field(default="", alias="API_KEYS")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    max_websocket_connections: int = Field(default=100, alias="MAX_WEBSOCKET_CONNECTIONS")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8080", alias="CORS_ORIGINS"
    )

    # Monitoring
    prometheus_port: int = Field(default=9090, alias="PROMETHEUS_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _split(value: str) -> List[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    def get_api_keys_list(self) -> List[str]:
        """Parse comma-separated API keys into list"""
        return self._split(self.api_keys)

    def get_cors_origins_list(self) -> List[str]:
        return self._split(self.cors_origins)

    def get_watched_tokens(self) -> List[str]:
        """Parse comma-separated token symbols to watch for price alerts"""
        return self._split(self.watched_tokens)

    def get_chain_config(self) -> ChainConfig:
        """Get chain configuration"""
        return ChainConfig(
            name=self.chain_name,
            chain_id=self.chain_id,
            rpc_urls=self._split(self.rpc_urls),
            router_address=self.router_address,
            factory_address=self.factory_address,
            pool_addresses=self._split(self.pool_addresses),
            rpc_timeout_seconds=self.rpc_timeout_seconds,
        )

    def get_router_config(self) -> RouterConfig:
        """Get routing and monitoring policy"""
        return RouterConfig(
            max_slippage=self.max_slippage,
            default_max_hops=self.default_max_hops,
            poll_interval=self.poll_interval,
            transaction_timeout=self.transaction_timeout,
            metrics_interval=self.metrics_interval,
        )
