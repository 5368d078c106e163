"""Batch orchestrator: collect -> net -> commit -> finalize."""

import enum
import json
import logging
import threading
import time
import uuid

from .errors import NettingFailure
from .merkle import commit
from .netting import NettingEngine
from .prices import PriceProvider, StaticPriceProvider, load_prices
from .store import BatchStore, IntentStore
from .summary import build_summary
from .types import BatchResult, BatchSummary, IntentStatus, MerkleProof, SwapIntent

logger = logging.getLogger(__name__)


class BatchPhase(str, enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    NETTING = "netting"
    COMMITTING = "committing"
    FINALIZING = "finalizing"


class BatchOrchestrator:
    """Runs batch cycles against an intent store.

    One cycle at a time: `process_batch` holds a single-flight lock from the
    pending snapshot until the result is recorded. Submissions only take the
    store lock, so intents accepted mid-cycle wait for the next batch.
    """

    def __init__(
        self,
        store: IntentStore | None = None,
        price_provider: PriceProvider | None = None,
        engine: NettingEngine | None = None,
        batches: BatchStore | None = None,
    ):
        self.store = store if store is not None else IntentStore()
        self.price_provider = price_provider if price_provider is not None else StaticPriceProvider()
        self.engine = engine if engine is not None else NettingEngine()
        self.batches = batches if batches is not None else BatchStore()
        self.phase = BatchPhase.IDLE
        self._cycle_lock = threading.Lock()

        # A cycle interrupted by a crash leaves intents matched into a batch
        # that was never recorded.
        if self.batches.persistent:
            self.store.release_orphans(self.batches.batch_ids())

    def submit_intent(self, intent: SwapIntent) -> str:
        return self.store.submit(intent)

    def process_batch(self) -> BatchResult | None:
        """Run one batch cycle. Returns None when there is nothing pending.

        Raises NettingFailure when the cycle fails; its intents are back to
        pending by then.
        """
        with self._cycle_lock:
            try:
                return self._run_cycle()
            finally:
                self.phase = BatchPhase.IDLE

    def _run_cycle(self) -> BatchResult | None:
        self.phase = BatchPhase.COLLECTING
        pending = self.store.pending_intents()
        if not pending:
            logger.info("No pending intents to process")
            return None

        batch_id = f"batch-{uuid.uuid4()}"
        logger.info(f"Processing batch {batch_id} with {len(pending)} intents")
        prices = load_prices(self.price_provider)

        touched: list[str] = []
        try:
            self.phase = BatchPhase.NETTING
            for intent in pending:
                self.store.set_status(intent.id, IntentStatus.MATCHED, batch_id)
                touched.append(intent.id)
            netting = self.engine.process(pending, prices)

            self.phase = BatchPhase.COMMITTING
            commitment = commit(netting.swaps)
            timestamp = int(time.time() * 1000)
            summary = build_summary(batch_id, timestamp, commitment.root, netting, prices)

            self.phase = BatchPhase.FINALIZING
            raw_data = json.dumps(
                {
                    "batchId": batch_id,
                    "intents": [intent.to_dict() for intent in pending],
                    "matchedSwaps": [swap.to_dict() for swap in netting.swaps],
                    "priceData": prices.to_dict(),
                    "timestamp": timestamp,
                },
                sort_keys=True,
                separators=(",", ":"),
            )
            result = BatchResult(
                batch_id=batch_id,
                summary=summary,
                merkle_proofs=commitment.proofs,
                raw_data=raw_data,
            )
            self.batches.save(result)
        except Exception as e:
            logger.error(f"Batch {batch_id} failed in {self.phase.value} phase: {e}")
            self.store.release(touched, batch_id)
            raise NettingFailure(f"Batch {batch_id} failed: {e}", touched) from e

        logger.info(
            f"Batch {batch_id} processed: {summary.p2p_matched} p2p rows, "
            f"{summary.pool_filled} pool rows, netted {summary.netted_amount}"
        )
        return result

    def get_batch(self, batch_id: str) -> BatchResult:
        return self.batches.get(batch_id)

    def get_proofs(self, batch_id: str) -> dict[str, list[MerkleProof]]:
        return self.batches.get(batch_id).merkle_proofs

    def get_summary(self, batch_id: str) -> BatchSummary:
        return self.batches.get(batch_id).summary

    def mark_settled(self, batch_id: str, tx_hash: str | None = None) -> int:
        """Record on-chain confirmation of a committed batch."""
        self.batches.get(batch_id)
        return self.store.mark_settled(batch_id, tx_hash)
