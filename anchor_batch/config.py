"""Configuration for the batch engine agent."""

import os
from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class Config:
    """Agent configuration."""

    # Storage (empty = in-memory only)
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", ""))

    # Prices
    price_source: str = field(default_factory=lambda: os.getenv("PRICE_SOURCE", "static"))  # static | pyth
    pyth_url: str = field(
        default_factory=lambda: os.getenv(
            "PYTH_URL", "https://hermes.pyth.network/v2/updates/price/latest"
        )
    )
    price_timeout: float = 5.0  # seconds

    # Batching parameters
    min_batch_size: int = field(default_factory=lambda: int(os.getenv("MIN_BATCH_SIZE", "2")))
    batch_check_interval: int = 5
    dust_threshold: Decimal = Decimal("0.01")

    # Settlement (left empty to skip on-chain hand-off)
    rpc_url: str = field(default_factory=lambda: os.getenv("RPC_URL", "http://127.0.0.1:8545"))
    settlement_address: str = field(default_factory=lambda: os.getenv("SETTLEMENT_ADDRESS", ""))
    agent_private_key: str = field(default_factory=lambda: os.getenv("PRIVATE_KEY", ""))
    settlement_gas: int = 500_000

    # API
    api_host: str = "0.0.0.0"
    api_port: int = field(default_factory=lambda: int(os.getenv("PORT", "3001")))

    # Chain (11155111 = Sepolia, 31337 = Anvil)
    chain_id: int = field(default_factory=lambda: int(os.getenv("CHAIN_ID", "11155111")))

    @property
    def settlement_enabled(self) -> bool:
        return bool(self.settlement_address and self.agent_private_key)
