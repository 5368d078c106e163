"""Main agent: API server plus a scheduler that triggers batch cycles."""

import argparse
import json
import logging
import threading
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from web3 import Web3

from .api import create_app
from .config import Config
from .errors import NettingFailure
from .executor import SettlementSubmitter
from .netting import NettingEngine
from .orchestrator import BatchOrchestrator
from .prices import PriceProvider, PythPriceProvider, StaticPriceProvider
from .store import BatchStore, IntentStore
from .types import BatchResult

logger = logging.getLogger(__name__)


def build_price_provider(config: Config) -> PriceProvider:
    if config.price_source == "pyth":
        return PythPriceProvider(url=config.pyth_url, timeout=config.price_timeout)
    if config.price_source == "static":
        return StaticPriceProvider()
    raise ValueError(f"Unknown price source: {config.price_source}")


class BatchAgent:
    """Main agent orchestrator."""

    def __init__(self, config: Config):
        self.config = config
        self.orchestrator = BatchOrchestrator(
            store=IntentStore(config.data_dir or None),
            price_provider=build_price_provider(config),
            engine=NettingEngine(config.dust_threshold),
            batches=BatchStore(config.data_dir or None),
        )
        self.app = create_app(self.orchestrator, config=config)
        self._stop = threading.Event()

        # Web3 connection (lazy)
        self._w3 = None
        self._submitter = None

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.config.rpc_url))
        return self._w3

    @property
    def submitter(self) -> SettlementSubmitter:
        if self._submitter is None:
            self._submitter = SettlementSubmitter(
                self.w3,
                self.config.settlement_address,
                self.config.agent_private_key,
                gas=self.config.settlement_gas,
            )
        return self._submitter

    def tick(self) -> BatchResult | None:
        """Process a batch if enough intents are pending.

        Failures are logged and left for the next tick.
        """
        pending = self.orchestrator.store.stats()["pending"]
        if pending < self.config.min_batch_size:
            return None

        logger.info(f"Auto-batch triggered: {pending} pending intents")
        try:
            result = self.orchestrator.process_batch()
        except NettingFailure as e:
            logger.error(f"Batch processing failed, retrying next cycle: {e}")
            return None

        if result is not None and self.config.settlement_enabled:
            self.settle(result)
        return result

    def settle(self, result: BatchResult):
        """Hand a committed batch to the settlement contract (no retry)."""
        try:
            tx_hash = self.submitter.settle_batch(result.summary)
        except Exception as e:
            logger.error(f"On-chain settlement of {result.batch_id} failed: {e}")
            return
        if tx_hash is not None:
            self.orchestrator.mark_settled(result.batch_id, tx_hash)

    def _batch_loop(self):
        """Background loop that checks for batches."""
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Batch loop error: {e}")
            self._stop.wait(self.config.batch_check_interval)

    def start(self):
        """Start the agent (API server + batch processing loop)."""
        self._stop.clear()

        batch_thread = threading.Thread(target=self._batch_loop, daemon=True)
        batch_thread.start()

        logger.info(f"Anchor Batch Engine starting on {self.config.api_host}:{self.config.api_port}")

        # Start API server (blocks)
        uvicorn.run(
            self.app,
            host=self.config.api_host,
            port=self.config.api_port,
            log_level="info",
        )

    def stop(self):
        """Stop the agent."""
        self._stop.set()


def main():
    """Entry point."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    load_dotenv(Path.cwd() / ".env")

    parser = argparse.ArgumentParser(description="Anchor Batch Engine")
    parser.add_argument("--once", action="store_true", help="Process one batch and exit")
    parser.add_argument("--data-dir", default=None, help="Directory for intent/batch files")
    parser.add_argument("--prices", choices=["static", "pyth"], default=None, help="Price source")
    parser.add_argument("--port", type=int, default=None, help="API port")
    args = parser.parse_args()

    config = Config()
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.prices:
        config.price_source = args.prices
    if args.port:
        config.api_port = args.port

    logger.info("Config loaded:")
    logger.info(f"  Data dir:   {config.data_dir or '(memory)'}")
    logger.info(f"  Prices:     {config.price_source}")
    logger.info(f"  Min batch:  {config.min_batch_size}")
    logger.info(f"  Settlement: {config.settlement_address or '(disabled)'}")

    agent = BatchAgent(config)
    if args.once:
        try:
            result = agent.orchestrator.process_batch()
        except NettingFailure as e:
            logger.error(str(e))
            raise SystemExit(1)
        if result is None:
            logger.info("No pending intents")
            return
        print(json.dumps(result.summary.to_dict(), indent=2))
        return

    agent.start()


if __name__ == "__main__":
    main()
