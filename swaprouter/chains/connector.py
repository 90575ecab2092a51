"""Chain connector with RPC endpoint rotation and circuit breaker"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from swaprouter.chains.abis import ERC20_ABI, FACTORY_ABI, PAIR_ABI, ROUTER_ABI
from swaprouter.chains.models import ReceiptStatus, TransactionReceiptStatus
from swaprouter.config.models import ChainConfig
from swaprouter.monitoring import metrics
from swaprouter.routing.models import PoolInfo
from swaprouter.utils.retry import RetryOptions, retry

logger = structlog.get_logger()

# requests raises OSError subclasses, asyncio.TimeoutError is distinct from TimeoutError before 3.11
RPC_FAILURES = (Web3Exception, OSError, asyncio.TimeoutError)

DEFAULT_REVERT_REASON = "execution reverted"


def is_rpc_failure(error: BaseException) -> bool:
    """Transport-level failure that another endpoint might not have"""
    return isinstance(error, RPC_FAILURES) and not isinstance(error, ContractLogicError)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """
    Per-endpoint failure gate.

    Opens after failure_threshold consecutive failures and stays open for
    timeout_seconds. After that calls go through half-open: the next success
    closes the breaker and the next failure opens it again.
    """

    failure_threshold: int = 5
    timeout_seconds: int = 60
    failure_count: int = 0
    state: CircuitState = CircuitState.CLOSED
    last_failure_time: float = 0.0

    def _move_to(self, state: CircuitState) -> None:
        previous, self.state = self.state, state
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            "endpoint_breaker_transition",
            from_state=previous.value,
            to_state=state.value,
            failure_count=self.failure_count,
        )

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self._move_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        probe_failed = self.state == CircuitState.HALF_OPEN
        threshold_hit = self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold
        if probe_failed or threshold_hit:
            self._move_to(CircuitState.OPEN)

    def can_attempt(self) -> bool:
        """False while open and still cooling down"""
        if self.state != CircuitState.OPEN:
            return True
        if time.time() - self.last_failure_time < self.timeout_seconds:
            return False
        self._move_to(CircuitState.HALF_OPEN)
        return True


class ChainConnector:
    """
    web3 client for a single EVM chain.

    Every read is executed on a worker thread, raced against a fixed timeout,
    and retried on the next healthy endpoint when it fails. Results are
    returned as the router's own types (PoolInfo, TransactionReceiptStatus).
    """

    def __init__(
        self,
        config: ChainConfig,
        retry_options: Optional[RetryOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not config.rpc_urls:
            raise ValueError("At least one RPC URL is required")

        self.config = config
        self.chain_name = config.name
        self.chain_id = config.chain_id
        self.rpc_urls = list(config.rpc_urls)
        self.current_rpc_index = 0
        self.timeout_seconds = config.rpc_timeout_seconds
        self._clock = clock

        self._web3: Dict[str, Web3] = {}
        self._circuit_breakers: Dict[str, CircuitBreaker] = {
            url: CircuitBreaker() for url in self.rpc_urls
        }

        base = retry_options or RetryOptions(
            max_attempts=max(3, len(self.rpc_urls)),
            initial_delay=0.5,
            max_delay=5.0,
        )
        self._retry_options = RetryOptions(
            max_attempts=base.max_attempts,
            initial_delay=base.initial_delay,
            max_delay=base.max_delay,
            backoff_factor=base.backoff_factor,
            should_retry=is_rpc_failure,
            on_retry=lambda attempt, error: self._failover(),
        )

        self._logger = logger.bind(
            component="chain_connector",
            chain=self.chain_name,
            chain_id=self.chain_id,
        )

    @property
    def current_rpc_url(self) -> str:
        return self.rpc_urls[self.current_rpc_index]

    def _web3_for(self, rpc_url: str) -> Web3:
        """Lazily create one HTTP client per endpoint"""
        w3 = self._web3.get(rpc_url)
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": self.timeout_seconds}))
            self._web3[rpc_url] = w3
        return w3

    def _failover(self) -> bool:
        """
        Advance to the next endpoint whose circuit allows a call.

        Returns:
            False if every endpoint's circuit is open; the index still moves
            forward by one so the next attempt lands elsewhere.
        """
        original_index = self.current_rpc_index
        count = len(self.rpc_urls)

        for step in range(1, count + 1):
            candidate = (original_index + step) % count
            rpc_url = self.rpc_urls[candidate]
            if self._circuit_breakers[rpc_url].can_attempt():
                self.current_rpc_index = candidate
                self._logger.info(
                    "rpc_failover",
                    from_index=original_index,
                    to_index=candidate,
                    rpc_url=rpc_url,
                )
                return True

        self.current_rpc_index = (original_index + 1) % count
        self._logger.error("rpc_failover_exhausted", attempted_endpoints=count)
        return False

    async def _execute(self, operation: str, func: Callable[[Web3], Any]) -> Any:
        """Run one attempt against the current endpoint"""
        rpc_url = self.current_rpc_url
        circuit_breaker = self._circuit_breakers[rpc_url]

        if not circuit_breaker.can_attempt():
            self._logger.debug("rpc_circuit_breaker_blocking", operation=operation, rpc_url=rpc_url)
            raise ConnectionError(f"Circuit open for {rpc_url}")

        w3 = self._web3_for(rpc_url)
        start_time = time.time()
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(func, w3), timeout=self.timeout_seconds
            )
        except RPC_FAILURES as e:
            if is_rpc_failure(e):
                circuit_breaker.record_failure()
                metrics.chain_rpc_errors.labels(
                    chain=self.chain_name,
                    error_type=type(e).__name__,
                ).inc()
                self._logger.warning(
                    "rpc_operation_failed",
                    operation=operation,
                    rpc_url=rpc_url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            raise

        metrics.chain_rpc_latency.labels(
            chain=self.chain_name,
            method=operation,
        ).observe(time.time() - start_time)
        circuit_breaker.record_success()
        return result

    async def _call(self, operation: str, func: Callable[[Web3], Any]) -> Any:
        """Run a read with timeout, retry and endpoint rotation"""
        return await retry(
            lambda: self._execute(operation, func),
            self._retry_options,
            operation_name=operation,
        )

    async def get_block_number(self) -> int:
        """Get latest block number from chain"""
        return await self._call("get_block_number", lambda w3: w3.eth.block_number)

    async def get_pool_info(self, address: str) -> PoolInfo:
        """Read tokens and reserves of a constant-product pair"""
        pool_address = Web3.to_checksum_address(address)

        def read(w3: Web3) -> PoolInfo:
            pair = w3.eth.contract(address=pool_address, abi=PAIR_ABI)
            token0 = pair.functions.token0().call()
            token1 = pair.functions.token1().call()
            reserve0, reserve1, _ = pair.functions.getReserves().call()
            return PoolInfo(
                address=pool_address,
                token0=Web3.to_checksum_address(token0),
                token1=Web3.to_checksum_address(token1),
                reserve0=int(reserve0),
                reserve1=int(reserve1),
                fee=Decimal(self.config.pool_fee),
                last_update_time=self._clock(),
            )

        return await self._call("get_pool_info", read)

    async def balance_of(self, token: str, owner: str) -> int:
        """ERC20 balance in raw units"""
        def read(w3: Web3) -> int:
            contract = w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
            return int(contract.functions.balanceOf(Web3.to_checksum_address(owner)).call())

        return await self._call("balance_of", read)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        """ERC20 allowance in raw units"""
        def read(w3: Web3) -> int:
            contract = w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
            return int(
                contract.functions.allowance(
                    Web3.to_checksum_address(owner),
                    Web3.to_checksum_address(spender),
                ).call()
            )

        return await self._call("allowance", read)

    async def list_factory_pools(self, factory: str, limit: Optional[int] = None) -> List[str]:
        """
        Enumerate pair addresses created by a V2 factory.

        Args:
            factory: Factory contract address
            limit: Read at most this many pairs (in creation order)
        """
        def read(w3: Web3) -> List[str]:
            contract = w3.eth.contract(address=Web3.to_checksum_address(factory), abi=FACTORY_ABI)
            total = int(contract.functions.allPairsLength().call())
            if limit is not None:
                total = min(total, limit)
            return [
                Web3.to_checksum_address(contract.functions.allPairs(i).call())
                for i in range(total)
            ]

        return await self._call("list_factory_pools", read)

    async def submit_swap(
        self,
        account: LocalAccount,
        token_in: str,
        token_out: str,
        amount_in: int,
        minimum_output: int,
        route: Sequence[str],
        deadline: int,
    ) -> str:
        """
        Sign and broadcast swapExactTokensForTokens on the configured router.

        Submission is attempted once on the current endpoint; on a transport
        failure the connector rotates so the caller's retry lands elsewhere.

        Args:
            account: Signing account, also the recipient
            route: Token addresses from token_in to token_out
            deadline: Seconds from now after which the router rejects the swap

        Returns:
            Transaction hash as 0x-prefixed hex
        """
        path = [Web3.to_checksum_address(token) for token in route]
        if len(path) < 2:
            raise ValueError("Route must contain at least two tokens")
        if path[0] != Web3.to_checksum_address(token_in) or path[-1] != Web3.to_checksum_address(token_out):
            raise ValueError("Route must start with token_in and end with token_out")

        router_address = Web3.to_checksum_address(self.config.router_address)
        deadline_timestamp = int(self._clock()) + int(deadline)

        def send(w3: Web3) -> str:
            router = w3.eth.contract(address=router_address, abi=ROUTER_ABI)
            tx = router.functions.swapExactTokensForTokens(
                amount_in,
                minimum_output,
                path,
                account.address,
                deadline_timestamp,
            ).build_transaction(
                {
                    "from": account.address,
                    "nonce": w3.eth.get_transaction_count(account.address, "pending"),
                    "chainId": self.chain_id,
                }
            )
            signed = account.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            return Web3.to_hex(tx_hash)

        try:
            tx_hash = await self._execute("submit_swap", send)
        except Exception as e:
            if is_rpc_failure(e):
                self._failover()
            raise

        self._logger.info(
            "swap_submitted",
            tx_hash=tx_hash,
            hops=len(path) - 1,
            amount_in=str(amount_in),
            minimum_output=str(minimum_output),
        )
        return tx_hash

    async def get_transaction_status(self, tx_hash: str) -> TransactionReceiptStatus:
        """Look up a receipt; an unknown or unmined hash reads as PENDING"""
        def read(w3: Web3) -> TransactionReceiptStatus:
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return TransactionReceiptStatus(status=ReceiptStatus.PENDING)

            block_number = receipt.get("blockNumber")
            gas_used = receipt.get("gasUsed")
            if receipt.get("status") == 1:
                return TransactionReceiptStatus(
                    status=ReceiptStatus.ACCEPTED,
                    block_number=block_number,
                    gas_used=gas_used,
                )

            return TransactionReceiptStatus(
                status=ReceiptStatus.REJECTED,
                block_number=block_number,
                gas_used=gas_used,
                revert_reason=self._replay_revert_reason(w3, tx_hash, block_number),
            )

        return await self._call("get_transaction_status", read)

    def _replay_revert_reason(self, w3: Web3, tx_hash: str, block_number: Optional[int]) -> str:
        """Re-run a reverted transaction as a call to recover its reason string"""
        try:
            tx = w3.eth.get_transaction(tx_hash)
            w3.eth.call(
                {
                    "from": tx["from"],
                    "to": tx["to"],
                    "data": tx["input"],
                    "value": tx.get("value", 0),
                },
                block_identifier=block_number,
            )
        except ContractLogicError as e:
            return e.message or DEFAULT_REVERT_REASON
        except Exception as e:
            self._logger.debug("revert_reason_unavailable", tx_hash=tx_hash, error=str(e))
        return DEFAULT_REVERT_REASON
