"""Swap intent, matched swap and batch records."""

import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Union

from pydantic import BaseModel, field_validator

from .errors import InvalidIntent


def parse_amount(value) -> Decimal:
    """Parse a decimal amount, rejecting anything that is not a finite number."""
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidIntent(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidIntent(f"Invalid amount: {value!r}")
    return amount


def format_amount(amount: Decimal) -> str:
    """Render a Decimal as a plain decimal string (no exponent, no trailing zeros)."""
    if amount == 0:
        return "0"
    return format(amount.normalize(), "f")


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    MATCHED = "matched"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass
class SwapIntent:
    """A user's request to swap `amount` of from_token on from_chain into to_token on to_chain."""

    user_address: str
    from_token: str
    to_token: str
    from_chain: str
    to_chain: str
    amount: Decimal
    recipient: str = ""
    id: str = ""
    timestamp: int = 0  # ms since epoch
    status: IntentStatus = IntentStatus.PENDING
    batch_id: str | None = None
    settlement_tx_hash: str | None = None
    settled_at: int | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "userAddress": self.user_address,
            "fromToken": self.from_token,
            "toToken": self.to_token,
            "fromChain": self.from_chain,
            "toChain": self.to_chain,
            "amount": format_amount(self.amount),
            "recipient": self.recipient,
            "timestamp": self.timestamp,
            "status": self.status.value,
        }
        if self.batch_id is not None:
            data["batchId"] = self.batch_id
        if self.settlement_tx_hash is not None:
            data["settlementTxHash"] = self.settlement_tx_hash
        if self.settled_at is not None:
            data["settledAt"] = self.settled_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SwapIntent":
        return cls(
            id=data["id"],
            user_address=data["userAddress"],
            from_token=data["fromToken"],
            to_token=data["toToken"],
            from_chain=data["fromChain"],
            to_chain=data["toChain"],
            amount=parse_amount(data["amount"]),
            recipient=data.get("recipient", ""),
            timestamp=data.get("timestamp", 0),
            status=IntentStatus(data.get("status", IntentStatus.PENDING.value)),
            batch_id=data.get("batchId"),
            settlement_tx_hash=data.get("settlementTxHash"),
            settled_at=data.get("settledAt"),
        )


@dataclass(frozen=True)
class PeerMatch:
    """Part of an intent settled directly against an opposing intent."""

    counterparty_id: str
    amount: Decimal


@dataclass(frozen=True)
class PoolFill:
    """Part of an intent that has to be filled from the shared pool."""

    amount: Decimal


Fill = Union[PeerMatch, PoolFill]


@dataclass(frozen=True)
class MatchedSwap:
    """Netting output for (part of) one intent."""

    intent_id: str
    user_address: str
    from_token: str
    to_token: str
    from_chain: str
    to_chain: str
    amount: Decimal  # original requested amount
    recipient: str
    fill: Fill

    @classmethod
    def for_intent(cls, intent: SwapIntent, fill: Fill) -> "MatchedSwap":
        return cls(
            intent_id=intent.id,
            user_address=intent.user_address,
            from_token=intent.from_token,
            to_token=intent.to_token,
            from_chain=intent.from_chain,
            to_chain=intent.to_chain,
            amount=intent.amount,
            recipient=intent.recipient,
            fill=fill,
        )

    @property
    def matched_with(self) -> str | None:
        if isinstance(self.fill, PeerMatch):
            return self.fill.counterparty_id
        return None

    @property
    def matched_amount(self) -> Decimal:
        if isinstance(self.fill, PeerMatch):
            return self.fill.amount
        return Decimal(0)

    @property
    def net_amount(self) -> Decimal:
        """Volume that still needs pool liquidity."""
        if isinstance(self.fill, PoolFill):
            return self.fill.amount
        return Decimal(0)

    @property
    def portion(self) -> Decimal:
        """Share of the original amount this row accounts for."""
        return self.fill.amount

    def to_dict(self) -> dict:
        data = {
            "intentId": self.intent_id,
            "userAddress": self.user_address,
            "fromToken": self.from_token,
            "toToken": self.to_token,
            "fromChain": self.from_chain,
            "toChain": self.to_chain,
            "amount": format_amount(self.amount),
            "recipient": self.recipient,
            "netAmount": format_amount(self.net_amount),
            "matchedAmount": format_amount(self.matched_amount),
        }
        if self.matched_with is not None:
            data["matchedWith"] = self.matched_with
        return data


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for one leaf (hex strings, 0x-prefixed)."""

    leaf: str
    path: list[str]
    indices: list[int]  # 0 = node is the left child, 1 = right child

    def to_dict(self) -> dict:
        return {"leaf": self.leaf, "path": list(self.path), "indices": list(self.indices)}

    @classmethod
    def from_dict(cls, data: dict) -> "MerkleProof":
        return cls(leaf=data["leaf"], path=list(data["path"]), indices=list(data["indices"]))


@dataclass(frozen=True)
class PriceTable:
    """Token -> USD price snapshot for one batch cycle."""

    prices: dict[str, Decimal] = field(default_factory=dict)
    source: str = "none"
    timestamp: int = 0
    # tokens already reported as missing, so each is warned about once per table
    warned: set[str] = field(default_factory=set, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "prices": {token: format_amount(price) for token, price in sorted(self.prices.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceTable":
        return cls(
            prices={token: parse_amount(price) for token, price in data.get("prices", {}).items()},
            source=data.get("source", "none"),
            timestamp=data.get("timestamp", 0),
        )


class FlowDirection(str, enum.Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


@dataclass(frozen=True)
class TokenFlow:
    token: str
    amount: Decimal
    direction: FlowDirection

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "amount": format_amount(self.amount),
            "direction": self.direction.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TokenFlow":
        return cls(
            token=data["token"],
            amount=parse_amount(data["amount"]),
            direction=FlowDirection(data["direction"]),
        )


@dataclass(frozen=True)
class ChainSummary:
    chain_id: str
    net_inflow: Decimal  # USD
    net_outflow: Decimal  # USD
    tokens: list[TokenFlow]

    def to_dict(self) -> dict:
        return {
            "chainId": self.chain_id,
            "netInflow": format_amount(self.net_inflow),
            "netOutflow": format_amount(self.net_outflow),
            "tokens": [t.to_dict() for t in self.tokens],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChainSummary":
        return cls(
            chain_id=data["chainId"],
            net_inflow=parse_amount(data["netInflow"]),
            net_outflow=parse_amount(data["netOutflow"]),
            tokens=[TokenFlow.from_dict(t) for t in data["tokens"]],
        )


@dataclass(frozen=True)
class BatchSummary:
    """Aggregated statistics for one committed batch."""

    batch_id: str
    timestamp: int
    merkle_root: str
    total_intents: int
    p2p_matched: int
    pool_filled: int
    netted_amount: Decimal
    pool_filled_amount: Decimal
    netted_value_usd: Decimal
    netting_ratio: Decimal
    price_data: PriceTable
    price_data_hash: str
    chain_summaries: list[ChainSummary]

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "timestamp": self.timestamp,
            "merkleRoot": self.merkle_root,
            "totalIntents": self.total_intents,
            "p2pMatched": self.p2p_matched,
            "poolFilled": self.pool_filled,
            "nettedAmount": format_amount(self.netted_amount),
            "poolFilledAmount": format_amount(self.pool_filled_amount),
            "nettedValueUsd": format_amount(self.netted_value_usd),
            "nettingRatio": format_amount(self.netting_ratio),
            "priceData": self.price_data.to_dict(),
            "priceDataHash": self.price_data_hash,
            "chainSummaries": [c.to_dict() for c in self.chain_summaries],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BatchSummary":
        return cls(
            batch_id=data["batchId"],
            timestamp=data["timestamp"],
            merkle_root=data["merkleRoot"],
            total_intents=data["totalIntents"],
            p2p_matched=data["p2pMatched"],
            pool_filled=data["poolFilled"],
            netted_amount=parse_amount(data["nettedAmount"]),
            pool_filled_amount=parse_amount(data["poolFilledAmount"]),
            netted_value_usd=parse_amount(data["nettedValueUsd"]),
            netting_ratio=parse_amount(data["nettingRatio"]),
            price_data=PriceTable.from_dict(data["priceData"]),
            price_data_hash=data["priceDataHash"],
            chain_summaries=[ChainSummary.from_dict(c) for c in data["chainSummaries"]],
        )


@dataclass(frozen=True)
class BatchResult:
    """Everything produced by one batch cycle."""

    batch_id: str
    summary: BatchSummary
    merkle_proofs: dict[str, list[MerkleProof]]  # intent id -> one proof per row
    raw_data: str

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "summary": self.summary.to_dict(),
            "merkleProofs": {
                intent_id: [p.to_dict() for p in proofs]
                for intent_id, proofs in self.merkle_proofs.items()
            },
            "rawData": self.raw_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BatchResult":
        """Rebuild a result from its persisted audit record."""
        return cls(
            batch_id=data["batchId"],
            summary=BatchSummary.from_dict(data["summary"]),
            merkle_proofs={
                intent_id: [MerkleProof.from_dict(p) for p in proofs]
                for intent_id, proofs in data["merkleProofs"].items()
            },
            raw_data=data["rawData"],
        )


class IntentRequest(BaseModel):
    """API request model for submitting an intent."""

    userAddress: str
    fromToken: str
    toToken: str
    fromChain: str
    toChain: str
    amount: str
    recipient: str | None = None

    @field_validator("amount")
    @classmethod
    def _positive_amount(cls, value: str) -> str:
        if parse_amount(value) <= 0:
            raise ValueError("amount must be positive")
        return value

    def to_swap_intent(self) -> SwapIntent:
        return SwapIntent(
            user_address=self.userAddress,
            from_token=self.fromToken,
            to_token=self.toToken,
            from_chain=self.fromChain,
            to_chain=self.toChain,
            amount=parse_amount(self.amount),
            recipient=self.recipient or self.userAddress,
        )


class ProofRequest(BaseModel):
    """API request model for verifying a proof against a root."""

    leaf: str
    path: list[str]
    root: str


class QueueStats(BaseModel):
    """Current queue status."""

    total: int
    pending: int
    processed: int
    last_batch_id: str | None = None
    last_batch_root: str | None = None
    batches_processed: int = 0


# settleBatch(bytes32 batchId, bytes32 merkleRoot, uint256 timestamp, uint256 totalIntents, bytes32 priceDataHash)
SETTLEMENT_ARG_TYPES = ["bytes32", "bytes32", "uint256", "uint256", "bytes32"]

SETTLEMENT_ABI = [
    {
        "type": "function",
        "name": "settleBatch",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "batchId", "type": "bytes32"},
            {"name": "merkleRoot", "type": "bytes32"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "totalIntents", "type": "uint256"},
            {"name": "priceDataHash", "type": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "isBatchSettled",
        "stateMutability": "view",
        "inputs": [{"name": "batchId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]
