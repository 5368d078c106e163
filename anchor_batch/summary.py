"""Batch summary: counts, netted volume and per-chain token flows."""

from decimal import Decimal

from .netting import NettingResult
from .prices import price_data_hash, price_of
from .types import BatchSummary, ChainSummary, FlowDirection, MatchedSwap, PriceTable, TokenFlow


def netted_amount(swaps: list[MatchedSwap]) -> Decimal:
    """Volume kept away from the pool: per intent, amount minus its pool residual."""
    amounts: dict[str, Decimal] = {}
    residual: dict[str, Decimal] = {}
    for swap in swaps:
        amounts[swap.intent_id] = swap.amount
        residual[swap.intent_id] = residual.get(swap.intent_id, Decimal(0)) + swap.net_amount
    return sum((amounts[i] - residual[i] for i in amounts), Decimal(0))


def chain_flows(swaps: list[MatchedSwap], prices: PriceTable) -> list[ChainSummary]:
    """Tally per-chain token outflows (source legs) and inflows (destination legs).

    Inflows are converted into the destination token at the batch prices.
    """
    flows: dict[str, dict[FlowDirection, dict[str, Decimal]]] = {}

    def _bucket(chain: str) -> dict[FlowDirection, dict[str, Decimal]]:
        return flows.setdefault(chain, {FlowDirection.OUTFLOW: {}, FlowDirection.INFLOW: {}})

    for swap in swaps:
        outflows = _bucket(swap.from_chain)[FlowDirection.OUTFLOW]
        inflows = _bucket(swap.to_chain)[FlowDirection.INFLOW]
        received = swap.portion * price_of(prices, swap.from_token) / price_of(prices, swap.to_token)
        outflows[swap.from_token] = outflows.get(swap.from_token, Decimal(0)) + swap.portion
        inflows[swap.to_token] = inflows.get(swap.to_token, Decimal(0)) + received

    summaries = []
    for chain_id, by_direction in flows.items():
        tokens = []
        totals = {FlowDirection.OUTFLOW: Decimal(0), FlowDirection.INFLOW: Decimal(0)}
        for direction in (FlowDirection.OUTFLOW, FlowDirection.INFLOW):
            for token, amount in by_direction[direction].items():
                tokens.append(TokenFlow(token=token, amount=amount, direction=direction))
                totals[direction] += amount * price_of(prices, token)
        summaries.append(
            ChainSummary(
                chain_id=chain_id,
                net_inflow=totals[FlowDirection.INFLOW],
                net_outflow=totals[FlowDirection.OUTFLOW],
                tokens=tokens,
            )
        )
    return summaries


def build_summary(
    batch_id: str,
    timestamp: int,
    merkle_root: str,
    netting: NettingResult,
    prices: PriceTable,
) -> BatchSummary:
    swaps = netting.swaps
    pool_rows = [s for s in swaps if s.matched_with is None]
    return BatchSummary(
        batch_id=batch_id,
        timestamp=timestamp,
        merkle_root=merkle_root,
        total_intents=len(netting.intent_ids),
        p2p_matched=len(swaps) - len(pool_rows),
        pool_filled=len(pool_rows),
        netted_amount=netted_amount(swaps),
        pool_filled_amount=sum((s.net_amount for s in pool_rows), Decimal(0)),
        netted_value_usd=netting.netted_volume_usd,
        netting_ratio=netting.netting_ratio,
        price_data=prices,
        price_data_hash=price_data_hash(prices),
        chain_summaries=chain_flows(swaps, prices),
    )
