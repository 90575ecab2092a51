"""Tests for the chain connector"""

import time
from unittest.mock import MagicMock, Mock, patch

import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from swaprouter.chains.connector import (
    ChainConnector,
    CircuitBreaker,
    CircuitState,
    is_rpc_failure,
)
from swaprouter.chains.models import ReceiptStatus
from swaprouter.config.models import DEFAULT_TOKENS, UNISWAP_V2_ROUTER, ChainConfig
from swaprouter.utils.retry import RetryOptions

WETH = DEFAULT_TOKENS[0].address
USDC = DEFAULT_TOKENS[1].address
NO_DELAY = RetryOptions(max_attempts=3, initial_delay=0, max_delay=0)


class FailingEth:
    """eth namespace whose reads fail at the transport level"""

    @property
    def block_number(self):
        raise ConnectionError("connection refused")


class HangingEth:
    """eth namespace whose reads block for a fixed delay"""

    def __init__(self, delay: float):
        self.delay = delay

    @property
    def block_number(self):
        time.sleep(self.delay)
        return 1


@pytest.fixture
def chain_config():
    """Ethereum configuration with three endpoints"""
    return ChainConfig(
        name="Ethereum",
        chain_id=1,
        rpc_urls=["https://rpc-a.example", "https://rpc-b.example", "https://rpc-c.example"],
        router_address=UNISWAP_V2_ROUTER,
    )


@pytest.fixture
def connector(chain_config, clock):
    return ChainConnector(chain_config, retry_options=NO_DELAY, clock=clock)


def healthy_web3(**eth_attrs):
    w3 = MagicMock()
    for name, value in eth_attrs.items():
        setattr(w3.eth, name, value)
    return w3


class TestCircuitBreaker:
    """Test circuit breaker functionality"""

    def test_circuit_breaker_initial_state(self):
        """Test circuit breaker starts in CLOSED state"""
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.can_attempt() is True

    def test_circuit_breaker_opens_after_threshold(self):
        """Test circuit breaker opens after failure threshold"""
        cb = CircuitBreaker(failure_threshold=3)

        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.can_attempt() is False

    def test_circuit_breaker_half_open_after_timeout(self):
        """Test circuit breaker transitions to HALF_OPEN after timeout"""
        cb = CircuitBreaker(failure_threshold=1, timeout_seconds=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61

        assert cb.can_attempt() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self):
        cb = CircuitBreaker(state=CircuitState.HALF_OPEN, failure_count=5)

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    def test_half_open_failure_reopens(self):
        cb = CircuitBreaker(state=CircuitState.HALF_OPEN)

        cb.record_failure()

        assert cb.state == CircuitState.OPEN


class TestFailover:
    """Test endpoint rotation"""

    def test_requires_an_endpoint(self, chain_config):
        config = chain_config.model_copy(update={"rpc_urls": []})
        with pytest.raises(ValueError):
            ChainConnector(config)

    def test_failover_skips_open_circuits(self, connector):
        connector._circuit_breakers["https://rpc-b.example"].state = CircuitState.OPEN
        connector._circuit_breakers["https://rpc-b.example"].last_failure_time = time.time()

        assert connector._failover() is True
        assert connector.current_rpc_url == "https://rpc-c.example"

    def test_failover_wraps_around(self, connector):
        connector.current_rpc_index = 2

        assert connector._failover() is True
        assert connector.current_rpc_index == 0

    def test_all_open_still_advances(self, connector):
        for breaker in connector._circuit_breakers.values():
            breaker.state = CircuitState.OPEN
            breaker.last_failure_time = time.time()

        assert connector._failover() is False
        assert connector.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_read_retries_on_next_endpoint(self, connector):
        """Test a transport failure moves the read to the next healthy endpoint"""
        failing = Mock()
        failing.eth = FailingEth()
        clients = {
            "https://rpc-a.example": failing,
            "https://rpc-b.example": healthy_web3(block_number=19_000_000),
        }

        with patch.object(connector, "_web3_for", side_effect=lambda url: clients[url]):
            assert await connector.get_block_number() == 19_000_000

        assert connector.current_rpc_url == "https://rpc-b.example"
        assert connector._circuit_breakers["https://rpc-a.example"].failure_count == 1

    @pytest.mark.asyncio
    async def test_hung_endpoint_times_out_and_rotates(self, chain_config, clock):
        """Test a call that outlives the per-attempt timeout moves to the next endpoint"""
        config = chain_config.model_copy(update={"rpc_timeout_seconds": 0.2})
        connector = ChainConnector(config, retry_options=NO_DELAY, clock=clock)
        hung = Mock()
        hung.eth = HangingEth(0.5)
        clients = {
            "https://rpc-a.example": hung,
            "https://rpc-b.example": healthy_web3(block_number=42),
        }

        with patch.object(connector, "_web3_for", side_effect=lambda url: clients[url]):
            assert await connector.get_block_number() == 42

        assert connector.current_rpc_url == "https://rpc-b.example"
        assert connector._circuit_breakers["https://rpc-a.example"].failure_count == 1

    def test_rpc_failure_classification(self):
        assert is_rpc_failure(ConnectionError()) is True
        assert is_rpc_failure(Web3Exception("x")) is True
        assert is_rpc_failure(ContractLogicError("execution reverted")) is False
        assert is_rpc_failure(ValueError()) is False


class TestReads:
    """Test normalized read results"""

    @pytest.mark.asyncio
    async def test_get_pool_info(self, connector, clock):
        w3 = MagicMock()
        pair = w3.eth.contract.return_value
        pair.functions.token0.return_value.call.return_value = WETH.lower()
        pair.functions.token1.return_value.call.return_value = USDC
        pair.functions.getReserves.return_value.call.return_value = (10**21, 2 * 10**12, 0)

        with patch.object(connector, "_web3_for", return_value=w3):
            pool = await connector.get_pool_info("0xb4e16d0168e52d35cacd2c6185b44281ec28c9dc")

        assert pool.address == "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc"
        assert pool.token0 == WETH
        assert pool.reserve0 == 10**21
        assert pool.reserve1 == 2 * 10**12
        assert str(pool.fee) == "0.003"
        assert pool.last_update_time == clock.now

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_pending(self, connector):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")

        with patch.object(connector, "_web3_for", return_value=w3):
            status = await connector.get_transaction_status("0xabc")

        assert status.status == ReceiptStatus.PENDING
        assert status.is_final is False

    @pytest.mark.asyncio
    async def test_successful_receipt_is_accepted(self, connector):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 5, "gasUsed": 120_000}

        with patch.object(connector, "_web3_for", return_value=w3):
            status = await connector.get_transaction_status("0xabc")

        assert status.status == ReceiptStatus.ACCEPTED
        assert status.block_number == 5
        assert status.gas_used == 120_000

    @pytest.mark.asyncio
    async def test_reverted_receipt_carries_reason(self, connector):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 5, "gasUsed": 50_000}
        w3.eth.get_transaction.return_value = {"from": WETH, "to": UNISWAP_V2_ROUTER, "input": "0x"}
        w3.eth.call.side_effect = ContractLogicError("execution reverted: UniswapV2Router: EXPIRED")

        with patch.object(connector, "_web3_for", return_value=w3):
            status = await connector.get_transaction_status("0xabc")

        assert status.status == ReceiptStatus.REJECTED
        assert "EXPIRED" in status.revert_reason


class TestSubmitSwap:
    """Test swap submission"""

    @pytest.mark.asyncio
    async def test_submit_returns_hex_hash(self, connector, clock):
        w3 = MagicMock()
        w3.eth.get_transaction_count.return_value = 7
        w3.eth.send_raw_transaction.return_value = b"\x12" * 32
        router = w3.eth.contract.return_value
        router.functions.swapExactTokensForTokens.return_value.build_transaction.return_value = {"nonce": 7}
        account = Mock()
        account.address = "0x" + "11" * 20

        with patch.object(connector, "_web3_for", return_value=w3):
            tx_hash = await connector.submit_swap(
                account, WETH, USDC, 10**18, 1990 * 10**6, [WETH, USDC], 300
            )

        assert tx_hash == "0x" + "12" * 32
        args = router.functions.swapExactTokensForTokens.call_args.args
        assert args[0] == 10**18
        assert args[1] == 1990 * 10**6
        assert args[2] == [WETH, USDC]
        assert args[4] == int(clock.now) + 300
        account.sign_transaction.assert_called_once_with({"nonce": 7})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("route", [[WETH], [USDC, WETH]])
    async def test_invalid_route_rejected(self, connector, route):
        with pytest.raises(ValueError):
            await connector.submit_swap(Mock(), WETH, USDC, 1, 1, route, 300)
