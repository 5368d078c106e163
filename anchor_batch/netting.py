"""Greedy pairwise netting of opposing swap intents.

Intents are bucketed into two-way markets keyed by the unordered pair of
(token, chain) legs. Inside a market the forward orders (buys) are matched
against the reverse orders (sells), largest first, and whatever cannot be
matched is left for the shared pool.

This is a heuristic, not a min-cost-flow solver: each buy greedily drains
the sells in order and never revisits earlier pairings.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from .prices import price_of
from .types import MatchedSwap, PeerMatch, PoolFill, PriceTable, SwapIntent

logger = logging.getLogger(__name__)

DEFAULT_DUST_THRESHOLD = Decimal("0.01")

Leg = tuple[str, str]  # (token, chain)
MarketKey = tuple[Leg, Leg]


def market_key(intent: SwapIntent) -> MarketKey:
    """Canonical key shared by both directions of a token/chain pair."""
    source = (intent.from_token, intent.from_chain)
    target = (intent.to_token, intent.to_chain)
    return (source, target) if source <= target else (target, source)


def is_forward(intent: SwapIntent, key: MarketKey) -> bool:
    return (intent.from_token, intent.from_chain) == key[0]


@dataclass
class _Order:
    intent: SwapIntent
    position: int  # submission order, used for tie-breaks
    remaining: Decimal
    matched: bool = False


@dataclass
class NettingResult:
    """Rows produced by one netting run plus USD-valued statistics."""

    swaps: list[MatchedSwap] = field(default_factory=list)
    total_volume_usd: Decimal = Decimal(0)
    pool_volume_usd: Decimal = Decimal(0)

    @property
    def netted_volume_usd(self) -> Decimal:
        return self.total_volume_usd - self.pool_volume_usd

    @property
    def netting_ratio(self) -> Decimal:
        if self.total_volume_usd == 0:
            return Decimal(0)
        return self.netted_volume_usd / self.total_volume_usd

    @property
    def intent_ids(self) -> list[str]:
        seen = dict.fromkeys(s.intent_id for s in self.swaps)
        return list(seen)


class NettingEngine:
    """Turns a batch of pending intents into peer matches and pool fills."""

    def __init__(self, dust_threshold: Decimal = DEFAULT_DUST_THRESHOLD):
        if dust_threshold < 0:
            raise ValueError("dust_threshold must be non-negative")
        self.dust_threshold = Decimal(dust_threshold)

    def group(self, intents: list[SwapIntent]) -> dict[MarketKey, list[SwapIntent]]:
        """Bucket intents into two-way markets, preserving first-seen order."""
        groups: dict[MarketKey, list[SwapIntent]] = {}
        for intent in intents:
            groups.setdefault(market_key(intent), []).append(intent)
        return groups

    def process(self, intents: list[SwapIntent], prices: PriceTable | None = None) -> NettingResult:
        """Net a batch of intents. `intents` must be in submission order."""
        prices = prices or PriceTable()
        logger.info(f"Processing {len(intents)} intents for netting")

        positions = {intent.id: n for n, intent in enumerate(intents)}
        swaps: list[MatchedSwap] = []
        touched: set[str] = set()

        for key, members in self.group(intents).items():
            buys = [_Order(i, positions[i.id], i.amount) for i in members if is_forward(i, key)]
            sells = [_Order(i, positions[i.id], i.amount) for i in members if not is_forward(i, key)]
            if not buys or not sells:
                continue
            (token_a, chain_a), (token_b, chain_b) = key
            logger.info(
                f"Matching {len(buys)} buys / {len(sells)} sells for "
                f"{token_a}@{chain_a} <-> {token_b}@{chain_b}"
            )
            rows = self._match(buys, sells)
            swaps.extend(rows)
            touched.update(row.intent_id for row in rows)
            for order in buys + sells:
                if order.matched:
                    touched.add(order.intent.id)

        # Everything that never met a counter-order goes to the pool in full.
        for intent in intents:
            if intent.id not in touched:
                swaps.append(MatchedSwap.for_intent(intent, PoolFill(intent.amount)))

        result = NettingResult(swaps=swaps)
        self._price(result, prices)
        logger.info(
            f"Netting complete: {len(swaps)} swaps, "
            f"netted ${result.netted_volume_usd:.2f} of ${result.total_volume_usd:.2f}"
        )
        return result

    def _match(self, buys: list[_Order], sells: list[_Order]) -> list[MatchedSwap]:
        # Largest first; ties keep submission order.
        buys.sort(key=lambda o: (-o.intent.amount, o.position))
        sells.sort(key=lambda o: (-o.intent.amount, o.position))

        rows: list[MatchedSwap] = []
        residuals: list[MatchedSwap] = []
        for buy in buys:
            for sell in sells:
                if buy.remaining <= self.dust_threshold:
                    break
                if sell.remaining <= self.dust_threshold:
                    continue
                amount = min(buy.remaining, sell.remaining)
                rows.append(MatchedSwap.for_intent(buy.intent, PeerMatch(sell.intent.id, amount)))
                rows.append(MatchedSwap.for_intent(sell.intent, PeerMatch(buy.intent.id, amount)))
                buy.remaining -= amount
                sell.remaining -= amount
                buy.matched = sell.matched = True
            if buy.matched and buy.remaining > self.dust_threshold:
                residuals.append(MatchedSwap.for_intent(buy.intent, PoolFill(buy.remaining)))

        for sell in sells:
            if sell.matched and sell.remaining > self.dust_threshold:
                residuals.append(MatchedSwap.for_intent(sell.intent, PoolFill(sell.remaining)))
        return rows + residuals

    def _price(self, result: NettingResult, prices: PriceTable):
        table = {token: price_of(prices, token) for token in {s.from_token for s in result.swaps}}
        for swap in result.swaps:
            price = table[swap.from_token]
            result.total_volume_usd += swap.portion * price
            result.pool_volume_usd += swap.net_amount * price
