"""
Esplora HTTP client for the Taproot HTLC SDK.

Works against any Esplora-compatible API (blockstream.info, mempool.space,
a self-hosted electrs). Only the handful of endpoints settlement needs:

    GET  {base}/address/{address}/utxo
    GET  {base}/blocks/tip/height
    GET  {base}/v1/fees/recommended
    GET  {base}/tx/{txid}
    GET  {base}/tx/{txid}/outspend/{vout}
    POST {base}/tx
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

import httpx

from ..core import Deposit
from ..errors import HttpRequestError, HttpStatusError, BroadcastError, ParseError

log = logging.getLogger(__name__)


TXID_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass
class EsploraConfig:
    """Esplora endpoint configuration."""
    base_url: str = "https://mempool.space/testnet/api"
    timeout: float = 10.0


@dataclass
class RecommendedFees:
    """Fee rates in sat/vB."""
    fastest_fee: int
    half_hour_fee: int
    hour_fee: int
    economy_fee: int
    minimum_fee: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecommendedFees":
        def pick(snake: str, camel: str) -> int:
            value = data.get(snake, data.get(camel))
            if value is None:
                raise KeyError(camel)
            return int(value)

        return cls(
            fastest_fee=pick("fastest_fee", "fastestFee"),
            half_hour_fee=pick("half_hour_fee", "halfHourFee"),
            hour_fee=pick("hour_fee", "hourFee"),
            economy_fee=pick("economy_fee", "economyFee"),
            minimum_fee=pick("minimum_fee", "minimumFee"),
        )

    def for_priority(self, priority: str) -> int:
        """Fee rate for "fastest", "half_hour", "hour", "economy" or "minimum"."""
        try:
            return getattr(self, f"{priority}_fee")
        except AttributeError:
            raise ValueError(f"Unknown fee priority: {priority!r}")


class EsploraClient:
    """
    Async Esplora client.

    The underlying httpx.AsyncClient is created lazily and reused; call
    aclose() (or use `async with`) on shutdown.
    """

    def __init__(self, config: Optional[EsploraConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or EsploraConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout,
                                             transport=self._transport)
        return self._client

    async def aclose(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "EsploraClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.error(f"Esplora request failed: {method} {url} -> {e}")
            raise HttpRequestError(f"{method} {url} failed: {e}") from e

    async def _get(self, path: str) -> httpx.Response:
        response = await self._request("GET", path)
        if response.is_error:
            log.error(f"Esplora error: GET {path} -> {response.status_code} {response.text}")
            raise HttpStatusError(response.status_code, response.text, str(response.url))
        return response

    async def _get_json(self, path: str) -> Any:
        response = await self._get(path)
        try:
            return response.json()
        except ValueError as e:
            log.error(f"Failed to parse response for {path}: {e}")
            raise ParseError(f"Invalid JSON from {path}: {e}") from e

    # =========================================================================
    # UTXOs & transactions
    # =========================================================================

    async def fetch_utxos(self, address: str) -> List[Deposit]:
        """Unspent outputs locked to `address`."""
        log.info(f"Fetching UTXOs for address: {address}")
        data = await self._get_json(f"/address/{address}/utxo")
        try:
            utxos = [Deposit.from_esplora(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            log.error(f"Failed to parse UTXO response for address {address}: {e}")
            raise ParseError(f"Invalid UTXO response for {address}: {e}") from e
        log.info(f"Fetched {len(utxos)} UTXOs for address {address}")
        return utxos

    async def fetch_transaction(self, txid: str) -> Dict[str, Any]:
        """Decoded transaction JSON (vin, vout, status)."""
        data = await self._get_json(f"/tx/{txid}")
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected transaction response for {txid}")
        return data

    async def fetch_output(self, txid: str, vout: int) -> Dict[str, Any]:
        """
        A single output of a transaction, tagged with the confirmation
        status of the transaction that created it.

        Returns:
            {"scriptpubkey": hex, "value": sats, "status": {...}, ...}
        """
        tx = await self.fetch_transaction(txid)
        try:
            return dict(tx["vout"][vout], status=tx.get("status"))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ParseError(f"Output {txid}:{vout} not found: {e}") from e

    async def fetch_outspend(self, txid: str, vout: int) -> Dict[str, Any]:
        """Spending status of an output: {"spent": bool, "txid": ..., "vin": ...}."""
        data = await self._get_json(f"/tx/{txid}/outspend/{vout}")
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected outspend response for {txid}:{vout}")
        return data

    # =========================================================================
    # Blockchain info
    # =========================================================================

    async def fetch_tip_height(self) -> int:
        log.info(f"Fetching tip block height from: {self.base_url}")
        response = await self._get("/blocks/tip/height")
        text = response.text.strip()
        try:
            height = int(text)
        except ValueError as e:
            log.error(f"Failed to parse block height '{text}': {e}")
            raise ParseError(f"Invalid block height: {text!r}") from e
        log.info(f"Fetched tip block height: {height}")
        return height

    async def fetch_recommended_fees(self) -> RecommendedFees:
        log.info(f"Fetching recommended fee rate from: {self.base_url}")
        data = await self._get_json("/v1/fees/recommended")
        try:
            fees = RecommendedFees.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            log.error(f"Failed to parse recommended fee rate response: {e}")
            raise ParseError(f"Invalid fee response: {e}") from e
        log.info(f"Fetched recommended fee rate: {fees}")
        return fees

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def broadcast(self, tx_hex: str) -> str:
        """
        Broadcast a raw transaction.

        Returns:
            Transaction id reported by the server

        Raises:
            BroadcastError: non-success status (body carries the node's reason)
            ParseError: success status but the body is not a 64-char hex txid
        """
        log.info(f"Broadcasting transaction ({len(tx_hex) // 2} bytes)")
        response = await self._request(
            "POST", "/tx", content=tx_hex, headers={"Content-Type": "text/plain"}
        )
        if response.is_error:
            log.error(f"Broadcast failed with status {response.status_code}: {response.text}")
            raise BroadcastError(response.status_code, response.text)

        txid = response.text.strip()
        if not TXID_RE.match(txid):
            log.error(f"Invalid transaction ID: '{txid}'")
            raise ParseError(f"Invalid transaction ID: '{txid}'")
        log.info(f"Successfully broadcast transaction, txid: {txid}")
        return txid
