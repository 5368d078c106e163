"""Intent store and completed batch store."""

import dataclasses
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path

from .errors import InvalidIntent, InvalidTransition, NotFound
from .types import BatchResult, IntentStatus, SwapIntent, parse_amount

logger = logging.getLogger(__name__)

# Forward moves only; FAILED is reachable from anywhere.
_ALLOWED = {
    IntentStatus.PENDING: {IntentStatus.MATCHED, IntentStatus.FAILED},
    IntentStatus.MATCHED: {IntentStatus.SETTLED, IntentStatus.FAILED},
    IntentStatus.SETTLED: {IntentStatus.FAILED},
    IntentStatus.FAILED: set(),
}

_REQUIRED_FIELDS = ("user_address", "from_token", "to_token", "from_chain", "to_chain")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_json(path: Path, data) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, path)


class IntentStore:
    """Append-only store of swap intents.

    Every read returns copies; every mutation is a single-record
    read-modify-write under the store lock. When `data_dir` is given the
    store is mirrored to `intents.json` and reloaded on construction.
    """

    FILENAME = "intents.json"

    def __init__(self, data_dir: str | Path | None = None):
        self._lock = threading.Lock()
        self._intents: dict[str, SwapIntent] = {}  # insertion ordered
        self._path: Path | None = None
        if data_dir:
            directory = Path(data_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self._path = directory / self.FILENAME
            self._load()

    def _load(self):
        if not self._path.exists():
            return
        with open(self._path) as f:
            records = json.load(f)
        for record in records:
            intent = SwapIntent.from_dict(record)
            self._intents[intent.id] = intent
        logger.info(f"Loaded {len(self._intents)} intents from {self._path}")

    def _save(self):
        if self._path is None:
            return
        _write_json(self._path, [intent.to_dict() for intent in self._intents.values()])

    def _validate(self, intent: SwapIntent):
        for name in _REQUIRED_FIELDS:
            value = getattr(intent, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidIntent(f"Missing required field: {name}")
        amount = parse_amount(intent.amount)
        if amount <= 0:
            raise InvalidIntent(f"Amount must be positive, got {amount}")
        return amount

    def submit(self, intent: SwapIntent) -> str:
        """Validate and append an intent. Returns the assigned id."""
        amount = self._validate(intent)
        stored = dataclasses.replace(
            intent,
            amount=amount,
            id=f"intent-{uuid.uuid4().hex}",
            recipient=intent.recipient or intent.user_address,
            timestamp=_now_ms(),
            status=IntentStatus.PENDING,
            batch_id=None,
            settlement_tx_hash=None,
            settled_at=None,
        )
        with self._lock:
            self._intents[stored.id] = stored
            self._save()
        logger.info(
            f"Added intent {stored.id}: {stored.amount} {stored.from_token} -> {stored.to_token} "
            f"({stored.from_chain} -> {stored.to_chain})"
        )
        return stored.id

    def get(self, intent_id: str) -> SwapIntent:
        with self._lock:
            intent = self._intents.get(intent_id)
            if intent is None:
                raise NotFound(f"Unknown intent {intent_id}")
            return dataclasses.replace(intent)

    def pending_intents(self) -> list[SwapIntent]:
        """Snapshot of pending intents in submission order."""
        with self._lock:
            return [
                dataclasses.replace(i)
                for i in self._intents.values()
                if i.status is IntentStatus.PENDING
            ]

    def all(self) -> list[SwapIntent]:
        with self._lock:
            return [dataclasses.replace(i) for i in self._intents.values()]

    def intents_for_batch(self, batch_id: str) -> list[SwapIntent]:
        with self._lock:
            return [dataclasses.replace(i) for i in self._intents.values() if i.batch_id == batch_id]

    def set_status(self, intent_id: str, status: IntentStatus, batch_id: str | None = None):
        """Move one intent forward in its lifecycle."""
        status = IntentStatus(status)
        with self._lock:
            intent = self._intents.get(intent_id)
            if intent is None:
                raise NotFound(f"Unknown intent {intent_id}")
            if batch_id is not None and intent.batch_id not in (None, batch_id):
                raise InvalidTransition(
                    f"Intent {intent_id} already belongs to batch {intent.batch_id}"
                )
            if status is intent.status:
                if batch_id is not None and intent.batch_id is None:
                    intent.batch_id = batch_id
                    self._save()
                return
            if status not in _ALLOWED[intent.status]:
                raise InvalidTransition(
                    f"Intent {intent_id} cannot move from {intent.status.value} to {status.value}"
                )
            intent.status = status
            if batch_id is not None:
                intent.batch_id = batch_id
            self._save()
        logger.debug(f"Updated intent {intent_id} status to {status.value}")

    def release(self, intent_ids, batch_id: str) -> int:
        """Return intents tentatively matched into `batch_id` to pending.

        Only intents still matched into that batch are touched. Returns the
        number of intents released.
        """
        released = 0
        with self._lock:
            for intent_id in intent_ids:
                intent = self._intents.get(intent_id)
                if intent is None or intent.batch_id != batch_id:
                    continue
                if intent.status is not IntentStatus.MATCHED:
                    continue
                intent.status = IntentStatus.PENDING
                intent.batch_id = None
                released += 1
            self._save()
        logger.info(f"Released {released} intents from batch {batch_id}")
        return released

    def release_orphans(self, known_batch_ids) -> int:
        """Move matched intents whose batch was never recorded back to pending."""
        known = set(known_batch_ids)
        released = 0
        with self._lock:
            for intent in self._intents.values():
                if intent.status is not IntentStatus.MATCHED or intent.batch_id in known:
                    continue
                logger.warning(f"Releasing intent {intent.id} from unrecorded batch {intent.batch_id}")
                intent.status = IntentStatus.PENDING
                intent.batch_id = None
                released += 1
            if released:
                self._save()
        return released

    def mark_settled(self, batch_id: str, tx_hash: str | None = None) -> int:
        """Flip every matched intent of a batch to settled."""
        settled = 0
        now = _now_ms()
        with self._lock:
            for intent in self._intents.values():
                if intent.batch_id != batch_id or intent.status is not IntentStatus.MATCHED:
                    continue
                intent.status = IntentStatus.SETTLED
                intent.settlement_tx_hash = tx_hash
                intent.settled_at = now
                settled += 1
            if settled == 0:
                raise NotFound(f"No matched intents for batch {batch_id}")
            self._save()
        logger.info(f"Marked {settled} intents of batch {batch_id} as settled")
        return settled

    def stats(self) -> dict:
        with self._lock:
            total = len(self._intents)
            pending = sum(1 for i in self._intents.values() if i.status is IntentStatus.PENDING)
        return {"total": total, "pending": pending, "processed": total - pending}

    def __len__(self):
        with self._lock:
            return len(self._intents)


class BatchStore:
    """Completed batch results keyed by batch id.

    When `data_dir` is given each result is written to
    `batches/<batch_id>.json` and all of them are reloaded on construction,
    oldest first.
    """

    def __init__(self, data_dir: str | Path | None = None):
        self._lock = threading.Lock()
        self._batches: dict[str, BatchResult] = {}
        self._dir: Path | None = None
        if data_dir:
            self._dir = Path(data_dir) / "batches"
            self._dir.mkdir(parents=True, exist_ok=True)
            self._load()

    @property
    def persistent(self) -> bool:
        return self._dir is not None

    def _load(self):
        results = []
        for path in self._dir.glob("*.json"):
            with open(path) as f:
                results.append(BatchResult.from_dict(json.load(f)))
        results.sort(key=lambda r: (r.summary.timestamp, r.batch_id))
        for result in results:
            self._batches[result.batch_id] = result
        if results:
            logger.info(f"Loaded {len(results)} batches from {self._dir}")

    def save(self, result: BatchResult):
        with self._lock:
            if result.batch_id in self._batches:
                raise ValueError(f"Batch {result.batch_id} already recorded")
            self._batches[result.batch_id] = result
        if self._dir is not None:
            _write_json(self._dir / f"{result.batch_id}.json", result.to_dict())

    def get(self, batch_id: str) -> BatchResult:
        with self._lock:
            result = self._batches.get(batch_id)
        if result is None:
            raise NotFound(f"Unknown batch {batch_id}")
        return result

    def latest(self) -> BatchResult | None:
        with self._lock:
            if not self._batches:
                return None
            return next(reversed(self._batches.values()))

    def batch_ids(self) -> list[str]:
        with self._lock:
            return list(self._batches)

    def __len__(self):
        with self._lock:
            return len(self._batches)
