"""Tests for settlement hand-off (uses mocks since we need a chain)."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from eth_abi import decode
from web3 import Web3

from anchor_batch.executor import (
    SettlementSubmitter,
    batch_id_hash,
    encode_settlement_args,
    settlement_args,
)
from anchor_batch.orchestrator import BatchOrchestrator
from anchor_batch.types import SETTLEMENT_ARG_TYPES, SwapIntent

SETTLEMENT_ADDRESS = "0x" + "12" * 20
PRIVATE_KEY = "0x" + "01" * 32


def _make_summary():
    orchestrator = BatchOrchestrator()
    for from_token, to_token, from_chain, to_chain in (
        ("USDC", "USDT", "ethereum", "polygon"),
        ("USDT", "USDC", "polygon", "ethereum"),
        ("ETH", "USDC", "ethereum", "ethereum"),
    ):
        orchestrator.submit_intent(
            SwapIntent(
                user_address="0x" + "33" * 20,
                from_token=from_token,
                to_token=to_token,
                from_chain=from_chain,
                to_chain=to_chain,
                amount=Decimal(100),
            )
        )
    return orchestrator.process_batch().summary


def _mock_w3(settled=False, status=1):
    w3 = MagicMock()
    w3.eth.account.from_key.return_value.address = "0x" + "34" * 20
    contract = w3.eth.contract.return_value
    contract.functions.isBatchSettled.return_value.call.return_value = settled
    contract.functions.settleBatch.return_value.build_transaction.return_value = {"to": SETTLEMENT_ADDRESS}
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)
    w3.eth.wait_for_transaction_receipt.return_value = {"status": status}
    return w3


def test_settlement_args_from_summary():
    summary = _make_summary()

    batch_hash, root, timestamp, total, price_hash = settlement_args(summary)

    assert batch_hash == bytes(Web3.keccak(text=summary.batch_id))
    assert "0x" + root.hex() == summary.merkle_root
    assert timestamp == summary.timestamp // 1000
    assert total == 3
    assert "0x" + price_hash.hex() == summary.price_data_hash


def test_encoded_args_decode_back():
    summary = _make_summary()

    encoded = encode_settlement_args(summary)

    assert len(encoded) == 5 * 32
    assert decode(SETTLEMENT_ARG_TYPES, encoded) == settlement_args(summary)


def test_batch_id_hash_differs_per_batch():
    assert batch_id_hash("batch-1") != batch_id_hash("batch-2")
    assert len(batch_id_hash("batch-1")) == 32


def test_settle_batch_submits_signed_tx():
    summary = _make_summary()
    w3 = _mock_w3()
    submitter = SettlementSubmitter(w3, SETTLEMENT_ADDRESS, PRIVATE_KEY)

    tx_hash = submitter.settle_batch(summary)

    assert tx_hash == "0x" + "ab" * 32
    contract = w3.eth.contract.return_value
    contract.functions.settleBatch.assert_called_once_with(*settlement_args(summary))
    w3.eth.account.sign_transaction.assert_called_once_with({"to": SETTLEMENT_ADDRESS}, PRIVATE_KEY)
    _, kwargs = w3.eth.contract.call_args
    assert kwargs["address"] == Web3.to_checksum_address(SETTLEMENT_ADDRESS)


def test_already_settled_batch_is_skipped():
    w3 = _mock_w3(settled=True)
    submitter = SettlementSubmitter(w3, SETTLEMENT_ADDRESS, PRIVATE_KEY)

    assert submitter.settle_batch(_make_summary()) is None
    w3.eth.send_raw_transaction.assert_not_called()


def test_failed_receipt_raises():
    submitter = SettlementSubmitter(_mock_w3(status=0), SETTLEMENT_ADDRESS, PRIVATE_KEY)
    with pytest.raises(RuntimeError):
        submitter.settle_batch(_make_summary())
