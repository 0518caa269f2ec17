"""
Payment collaborators: card/UPI signature checks, the Razorpay order API,
on-chain transfer verification and the ETH price feed.

The chain verifier is picked once at startup (build_chain_verifier) and
handed to handlers through app.state, so the mock can never be reached in
production by accident.
"""
import asyncio
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional

import httpx

from config import Settings
from errors import ErrorKind, StoreError

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float = 30.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def create_order(self, amount_paise: int, receipt: str, currency: str = "INR") -> dict:
        payload = {"amount": amount_paise, "currency": currency, "receipt": receipt}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                res = await client.post(f"{self.base_url}/orders", json=payload, auth=(self.key_id, self.key_secret))
            except httpx.RequestError as e:
                logger.error(f"Razorpay network error: {e}")
                raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Payment provider unreachable")
        if res.status_code >= 400:
            try:
                description = res.json().get("error", {}).get("description", "Transaction failed")
            except ValueError:
                description = "Transaction failed"
            raise StoreError(ErrorKind.BAD_REQUEST, f"Payment error: {description}")
        return res.json()


@dataclass
class ChainVerification:
    verified: bool
    message: str
    transaction_hash: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[str] = None
    block_number: Optional[int] = None
    confirmations: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ChainVerifier(ABC):
    name = "abstract"

    @abstractmethod
    async def verify(self, tx_hash: str, recipient: str) -> ChainVerification:
        ...


class MockChainVerifier(ChainVerifier):
    """Accepts every transaction after a short pause. Development only."""

    name = "mock"

    def __init__(self, delay: float = 0.5):
        self.delay = delay

    async def verify(self, tx_hash: str, recipient: str) -> ChainVerification:
        logger.warning("Mock chain verification for %s", tx_hash)
        await asyncio.sleep(self.delay)
        return ChainVerification(
            verified=True,
            message="Mock verification (development mode)",
            transaction_hash=tx_hash,
        )


class RpcChainVerifier(ChainVerifier):
    """Checks an Ethereum transfer over JSON-RPC: mined, successful, sent to our wallet."""

    name = "rpc"

    def __init__(self, rpc_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.transport = transport

    async def _call(self, client: httpx.AsyncClient, method: str, *params):
        body = {"jsonrpc": "2.0", "id": 1, "method": method, "params": list(params)}
        try:
            res = await client.post(self.rpc_url, json=body)
            res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Ethereum RPC error on {method}: {e}")
            raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Network error while connecting to blockchain", status_code=503)
        data = res.json()
        if data.get("error"):
            raise StoreError(ErrorKind.UPSTREAM_FAILURE, data["error"].get("message", "Blockchain RPC error"), status_code=503)
        return data.get("result")

    async def verify(self, tx_hash: str, recipient: str) -> ChainVerification:
        if not recipient:
            raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Payment wallet address not configured", status_code=503)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            receipt = await self._call(client, "eth_getTransactionReceipt", tx_hash)
            if not receipt:
                return ChainVerification(False, "Transaction not found on blockchain", tx_hash)
            if int(receipt.get("status", "0x0"), 16) != 1:
                return ChainVerification(False, "Transaction failed on blockchain", tx_hash)

            tx = await self._call(client, "eth_getTransactionByHash", tx_hash)
            if not tx:
                return ChainVerification(False, "Transaction details not found", tx_hash)

            expected = recipient.lower()
            actual = (tx.get("to") or "").lower()
            if actual != expected:
                return ChainVerification(
                    False,
                    f"Transaction sent to wrong address. Expected: {expected}, Got: {actual or None}",
                    tx_hash,
                )

            latest = int(await self._call(client, "eth_blockNumber"), 16)

        block_number = int(receipt["blockNumber"], 16)
        amount = Decimal(int(tx.get("value", "0x0"), 16)) / WEI_PER_ETH
        return ChainVerification(
            verified=True,
            message="Transaction verified successfully",
            transaction_hash=tx_hash,
            from_address=tx.get("from"),
            to_address=tx.get("to"),
            amount=format(amount.normalize(), "f"),
            block_number=block_number,
            confirmations=latest - block_number + 1,
        )


def build_chain_verifier(settings: Settings) -> ChainVerifier:
    if settings.CHAIN_VERIFIER == "mock":
        if settings.is_production:
            raise RuntimeError("CHAIN_VERIFIER=mock is not allowed when ENVIRONMENT=production")
        return MockChainVerifier()
    if settings.CHAIN_VERIFIER == "rpc":
        if not settings.ETH_RPC_URL:
            raise RuntimeError("CHAIN_VERIFIER=rpc needs ETH_RPC_URL")
        return RpcChainVerifier(settings.ETH_RPC_URL, timeout=settings.HTTP_TIMEOUT)
    raise RuntimeError(f"Unknown CHAIN_VERIFIER {settings.CHAIN_VERIFIER!r}")


class PriceFeed:
    """ETH/INR market price from the CoinGecko simple-price endpoint."""

    def __init__(self, url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def eth_price_in_inr(self) -> float:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                res = await client.get(self.url)
                res.raise_for_status()
                price = res.json()["ethereum"]["inr"]
            except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Exchange rate API error: {e}")
                raise StoreError(ErrorKind.INTERNAL, "Error fetching real-time crypto rate.")
        if not price:
            raise StoreError(ErrorKind.INTERNAL, "Failed to fetch ETH price")
        return float(price)
