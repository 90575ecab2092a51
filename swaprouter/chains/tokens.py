"""Token registry: symbol lookup and raw/human amount conversion"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Dict, Iterable, List, Optional, Union

import structlog
from web3 import Web3

from swaprouter.config.models import DEFAULT_TOKENS, TokenConfig

logger = structlog.get_logger()

# uint256 needs 78 significant digits
AMOUNT_PRECISION = 100
MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata"""

    symbol: str
    address: str
    decimals: int
    name: str = ""


class TokenRegistry:
    """
    Resolves token symbols and addresses.

    Addresses are stored checksummed; lookups accept any casing.
    """

    def __init__(self, tokens: Optional[Iterable[TokenConfig]] = None):
        self._by_symbol: Dict[str, TokenInfo] = {}
        self._by_address: Dict[str, TokenInfo] = {}
        for token in tokens if tokens is not None else DEFAULT_TOKENS:
            self.register(
                TokenInfo(
                    symbol=token.symbol,
                    address=token.address,
                    decimals=token.decimals,
                    name=token.name,
                )
            )

    def register(self, token: TokenInfo) -> TokenInfo:
        """Add or replace a token"""
        if token.decimals < 0:
            raise ValueError(f"Token decimals must be non-negative: {token.decimals}")

        normalized = TokenInfo(
            symbol=token.symbol.upper(),
            address=Web3.to_checksum_address(token.address),
            decimals=token.decimals,
            name=token.name,
        )
        self._by_symbol[normalized.symbol] = normalized
        self._by_address[normalized.address.lower()] = normalized
        logger.debug("token_registered", symbol=normalized.symbol, address=normalized.address)
        return normalized

    def get(self, symbol_or_address: str) -> TokenInfo:
        """
        Look up a token by symbol or address.

        Raises:
            KeyError: If the token is unknown
        """
        token = self._by_symbol.get(symbol_or_address.upper())
        if token is None:
            token = self._by_address.get(symbol_or_address.lower())
        if token is None:
            raise KeyError(f"Unknown token: {symbol_or_address}")
        return token

    def resolve_address(self, symbol_or_address: str) -> str:
        """Return the checksummed address for a symbol, or pass an address through"""
        try:
            return self.get(symbol_or_address).address
        except KeyError:
            if Web3.is_address(symbol_or_address):
                return Web3.to_checksum_address(symbol_or_address)
            raise

    def symbol_for(self, address: str) -> str:
        """Symbol for a known address, or the address itself"""
        token = self._by_address.get(address.lower())
        return token.symbol if token else address

    def all(self) -> List[TokenInfo]:
        return list(self._by_symbol.values())

    def __contains__(self, symbol_or_address: str) -> bool:
        try:
            self.get(symbol_or_address)
            return True
        except KeyError:
            return False

    def parse_amount(self, symbol_or_address: str, amount: Union[str, Decimal, int]) -> int:
        """
        Convert a human amount ("1.5") to raw base units.

        Digits beyond the token's precision are truncated.

        Raises:
            ValueError: If the amount is malformed or negative
        """
        token = self.get(symbol_or_address)
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {amount!r}") from e

        if not value.is_finite() or value < 0:
            raise ValueError(f"Amount must be a non-negative number: {amount!r}")

        with localcontext() as ctx:
            ctx.prec = AMOUNT_PRECISION
            try:
                scaled = (value * (Decimal(10) ** token.decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
            except InvalidOperation as e:
                raise ValueError(f"Amount too large: {amount!r}") from e

        raw = int(scaled)
        if raw > MAX_UINT256:
            raise ValueError(f"Amount too large: {amount!r}")
        return raw

    def format_amount(self, symbol_or_address: str, raw_amount: int) -> str:
        """Convert raw base units to a human-readable decimal string"""
        token = self.get(symbol_or_address)
        with localcontext() as ctx:
            ctx.prec = AMOUNT_PRECISION
            value = Decimal(raw_amount).scaleb(-token.decimals)
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
