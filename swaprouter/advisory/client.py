"""Client for the external advisory text service"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from swaprouter.errors import AdvisoryError
from swaprouter.execution.models import TradeAnalytics
from swaprouter.monitoring.models import TradingMetrics
from swaprouter.utils.retry import RetryOptions, retry

logger = structlog.get_logger()

RETRYABLE_STATUS = (429, 500, 502, 503, 504)

TRADE_INSTRUCTION = (
    "You review executed token swaps. Reply with a JSON object containing a "
    "'summary' string and a 'recommendations' list of strings."
)
STRATEGY_INSTRUCTION = (
    "You advise on swap routing strategy from aggregate trading metrics. Reply "
    "with a JSON object containing a 'recommendations' list of strings."
)
PORTFOLIO_INSTRUCTION = (
    "You assess token portfolios for concentration and risk. Reply with a JSON "
    "object containing 'riskScore', 'diversityScore' and a 'recommendations' "
    "list of strings."
)


class RetryableAdvisoryError(AdvisoryError):
    """Transient HTTP failure from the advisory service"""


def parse_advice(text: str) -> Dict[str, Any]:
    """
    Interpret service output as JSON.

    Output that is not a JSON object is wrapped as a single recommendation.
    """
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.debug("advisory_response_not_json", length=len(text or ""))
        return {"recommendations": [text]}

    if not isinstance(parsed, dict):
        return {"recommendations": [text]}
    return parsed


class AdvisoryClient:
    """
    Chat-completion style HTTP client.

    The service is treated as a black box that returns unstructured text;
    every helper falls back to wrapping raw text when it is not JSON.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4",
        timeout_seconds: float = 30.0,
        retry_options: Optional[RetryOptions] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.retry_options = retry_options or RetryOptions(
            max_attempts=3,
            initial_delay=1.0,
            max_delay=8.0,
            should_retry=lambda e: isinstance(e, (RetryableAdvisoryError, aiohttp.ClientError, asyncio.TimeoutError)),
        )
        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = logger.bind(component="advisory_client", model=model)

    async def __aenter__(self) -> "AdvisoryClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers=headers,
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _build_request(self, payload: Any, instruction: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": instruction},
                {"role": "user", "content": json.dumps(payload, default=str)},
            ],
            "temperature": 0.2,
        }

    async def _post(self, body: Dict[str, Any]) -> str:
        session = await self._ensure_session()
        async with session.post(self.api_url, json=body) as response:
            text = await response.text()
            if response.status in RETRYABLE_STATUS:
                raise RetryableAdvisoryError(f"HTTP {response.status}: {text[:200]}")
            if response.status != 200:
                raise AdvisoryError(f"HTTP {response.status}: {text[:200]}")

        try:
            data = json.loads(text)
            return data["choices"][0]["message"]["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise AdvisoryError(f"Unexpected advisory response: {e}") from e

    async def complete(self, payload: Any, instruction: str) -> str:
        """
        Send a payload with an instruction and return the reply text.

        Raises:
            AdvisoryError: The service could not be reached or replied with an
                unusable envelope
        """
        body = self._build_request(payload, instruction)
        try:
            text = await retry(lambda: self._post(body), self.retry_options, "advisory_complete")
        except AdvisoryError:
            raise
        except Exception as e:
            self._logger.error("advisory_request_failed", error=str(e), error_type=type(e).__name__)
            raise AdvisoryError(f"Advisory request failed: {e}") from e

        self._logger.debug("advisory_reply_received", length=len(text))
        return text

    async def advise(self, payload: Any, instruction: str) -> Dict[str, Any]:
        """complete() followed by JSON-or-text parsing"""
        return parse_advice(await self.complete(payload, instruction))

    async def analyze_trade(self, analytics: TradeAnalytics) -> Dict[str, Any]:
        return await self.advise(analytics.to_dict(), TRADE_INSTRUCTION)

    async def recommend_strategy(self, metrics: TradingMetrics) -> Dict[str, Any]:
        return await self.advise(metrics.to_dict(), STRATEGY_INSTRUCTION)

    async def analyze_portfolio(self, balances: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Portfolio assessment; recommendations always come back as a list.

        Args:
            balances: [{"token": symbol, "balance": human amount}, ...]
        """
        result = await self.advise({"tokens": balances}, PORTFOLIO_INSTRUCTION)
        recommendations = result.get("recommendations")
        if not isinstance(recommendations, list):
            result["recommendations"] = [] if recommendations is None else [str(recommendations)]
        return result
