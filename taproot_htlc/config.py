"""
Runtime configuration for the Taproot HTLC SDK.

Values come from the environment so the same code runs against testnet,
signet or mainnet without edits:

    TAPROOT_HTLC_NETWORK            mainnet | testnet | signet | regtest
    TAPROOT_HTLC_ESPLORA_URL        Esplora base URL
    TAPROOT_HTLC_FEE_PRIORITY       fastest | half_hour | hour | economy | minimum
    TAPROOT_HTLC_FEE_RATE           fixed sat/vB (overrides the priority lookup)
    TAPROOT_HTLC_MIN_CONFIRMATIONS  deposits with fewer confirmations are ignored
    TAPROOT_HTLC_HTTP_TIMEOUT       seconds
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Mapping

from .core import Network
from .chains.esplora import EsploraConfig


DEFAULT_ESPLORA_URLS = {
    Network.MAINNET: "https://mempool.space/api",
    Network.TESTNET: "https://mempool.space/testnet/api",
    Network.SIGNET: "https://mempool.space/signet/api",
    Network.REGTEST: "http://127.0.0.1:3002",
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class HTLCConfig:
    """Settlement configuration."""
    network: Network = Network.TESTNET
    esplora_url: str = ""               # Empty = public endpoint for the network
    fee_priority: str = "half_hour"
    default_fee_rate: Optional[int] = None
    min_confirmations: int = 1
    http_timeout: float = 10.0

    def __post_init__(self):
        self.network = Network.parse(self.network)
        if not self.esplora_url:
            self.esplora_url = DEFAULT_ESPLORA_URLS[self.network]
        if self.min_confirmations < 0:
            raise ValueError(f"min_confirmations must be >= 0, got {self.min_confirmations}")
        if self.default_fee_rate is not None and self.default_fee_rate < 0:
            raise ValueError(f"default_fee_rate must be >= 0, got {self.default_fee_rate}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HTLCConfig":
        env = os.environ if environ is None else environ
        fee_rate = env.get("TAPROOT_HTLC_FEE_RATE")
        return cls(
            network=Network.parse(env.get("TAPROOT_HTLC_NETWORK", "testnet")),
            esplora_url=env.get("TAPROOT_HTLC_ESPLORA_URL", ""),
            fee_priority=env.get("TAPROOT_HTLC_FEE_PRIORITY", "half_hour"),
            default_fee_rate=int(fee_rate) if fee_rate else None,
            min_confirmations=int(env.get("TAPROOT_HTLC_MIN_CONFIRMATIONS", 1)),
            http_timeout=float(env.get("TAPROOT_HTLC_HTTP_TIMEOUT", 10.0)),
        )

    def esplora_config(self) -> EsploraConfig:
        return EsploraConfig(base_url=self.esplora_url, timeout=self.http_timeout)


def configure_logging(level: int = logging.INFO):
    """Console logging in the SDK's standard format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
