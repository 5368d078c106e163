"""Batch settlement hand-off via web3 transactions."""

import logging

from eth_abi import encode
from web3 import Web3

from .types import SETTLEMENT_ABI, SETTLEMENT_ARG_TYPES, BatchSummary

logger = logging.getLogger(__name__)


def batch_id_hash(batch_id: str) -> bytes:
    return bytes(Web3.keccak(text=batch_id))


def _bytes32(value: str) -> bytes:
    raw = bytes.fromhex(value.removeprefix("0x"))
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}: {value}")
    return raw


def settlement_args(summary: BatchSummary) -> tuple:
    """Arguments of settleBatch(batchId, merkleRoot, timestamp, totalIntents, priceDataHash)."""
    return (
        batch_id_hash(summary.batch_id),
        _bytes32(summary.merkle_root),
        summary.timestamp // 1000,
        summary.total_intents,
        _bytes32(summary.price_data_hash),
    )


def encode_settlement_args(summary: BatchSummary) -> bytes:
    """ABI-encode the settleBatch arguments for an off-line hand-off."""
    return encode(SETTLEMENT_ARG_TYPES, list(settlement_args(summary)))


class SettlementSubmitter:
    """Submits committed batches to the settlement contract."""

    def __init__(self, w3: Web3, settlement_address: str, private_key: str, gas: int = 500_000):
        self.w3 = w3
        self.private_key = private_key
        self.gas = gas
        self.account = w3.eth.account.from_key(private_key)
        self.settlement = w3.eth.contract(
            address=Web3.to_checksum_address(settlement_address), abi=SETTLEMENT_ABI
        )

    def is_settled(self, batch_id: str) -> bool:
        return self.settlement.functions.isBatchSettled(batch_id_hash(batch_id)).call()

    def build_settle_tx(self, summary: BatchSummary) -> dict:
        """Build the settleBatch transaction."""
        return self.settlement.functions.settleBatch(*settlement_args(summary)).build_transaction({
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "gas": self.gas,
            "gasPrice": self.w3.eth.gas_price,
        })

    def settle_batch(self, summary: BatchSummary) -> str | None:
        """Build, sign, and submit a settlement. Returns tx hash, None if already settled."""
        if self.is_settled(summary.batch_id):
            logger.warning(f"Batch {summary.batch_id} already settled")
            return None

        tx = self.build_settle_tx(summary)
        signed_tx = self.w3.eth.account.sign_transaction(tx, self.private_key)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)

        if receipt["status"] != 1:
            raise RuntimeError(f"Settlement transaction failed: 0x{bytes(tx_hash).hex()}")

        logger.info(f"Batch {summary.batch_id} settled: tx=0x{bytes(tx_hash).hex()}")
        return "0x" + bytes(tx_hash).hex()
