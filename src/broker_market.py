"""
Market data provider and sell-side pricing.

Prices and stock live in the game state; this module reads them intel-aware (an active
intel deal pins the deal market's price near its override), evolves them day by day,
and computes how much a large sale depresses the price the player receives.
"""
from __future__ import annotations

import logging
import random
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel

import broker_objects as G
from broker_register import ContentRegistry
from broker_state import GameStore

logger = logging.getLogger(__name__)

# How strongly a market's import/export modifier pulls its local price away from the galactic average
LOCAL_PRICE_MOD_STRENGTH = Decimal("0.5")


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _round(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def intel_aware_price(state: G._GameState, location_id: str, commodity_id: str) -> int:
    price = state.market.prices.get(location_id, {}).get(commodity_id, 0)
    deal = state.active_intel_deal
    if deal is not None and deal.applies_to(location_id, commodity_id) and not price:
        price = deal.override_price
    return max(1, price)


def local_baseline(average: int, location: G.Location, commodity_id: str) -> Decimal:
    # Exporters (modifier > 1) sit below the galactic average, importers above it
    offset = (Decimal(1) - Decimal(str(location.modifier_for(commodity_id)))) * Decimal(average)
    return Decimal(average) + offset * LOCAL_PRICE_MOD_STRENGTH


def seed_market(registry: ContentRegistry, rng: random.Random) -> G._MarketState:
    """Initial prices, stock and galactic averages for every market."""
    market = G._MarketState()
    for commodity in registry.commodities.values():
        market.galactic_averages[commodity.id] = commodity.galactic_baseline
    for location in registry.locations.values():
        prices = market.prices.setdefault(location.id, {})
        stock = market.stock.setdefault(location.id, {})
        for commodity in registry.commodities.values():
            avg = market.galactic_averages[commodity.id]
            prices[commodity.id] = max(1, _round(local_baseline(avg, location, commodity.id)))
            lo, hi = commodity.canonical_availability
            stock[commodity.id] = int(rng.randint(lo, hi) * location.modifier_for(commodity.id))
    return market


# ────────────────────────────────────────────────────────────────────────────
# Sell-price decay
# ────────────────────────────────────────────────────────────────────────────

class SaleDetails(BaseModel):
    total_price: int = 0
    effective_price_per_unit: Decimal = Decimal(0)
    net_profit: Decimal = Decimal(0)


def slippage_reduction(tier: int, excess_ratio: Decimal, settings: G.BrokerSettings) -> Decimal:
    """Fraction knocked off the unit price when selling `excess_ratio` of a market's stock."""
    band = settings.slippage_for(tier)
    return min(band.cap, (excess_ratio - settings.sale_impact_threshold) * band.rate)


def compute_sale_details(
    *,
    stock: int,
    tier: int,
    base_price: int,
    avg_cost: Decimal,
    quantity: int,
    profit_bonus: Decimal = Decimal(0),
    settings: Optional[G.BrokerSettings] = None,
) -> SaleDetails:
    """
    Sale proceeds for `quantity` units into a market holding `stock`.

    Sales up to the impact threshold (10% of stock) fetch the full base price. Larger
    sales lose a tier-dependent, capped share of the unit price: rare goods trade in
    thin markets and slip hardest. A positive net profit is scaled up once by the sum
    of the player's profit bonuses.
    """
    settings = settings or G.BrokerSettings()
    if stock <= 0:
        return SaleDetails()

    base = Decimal(base_price)
    qty = Decimal(quantity)
    threshold = Decimal(stock) * settings.sale_impact_threshold
    if qty <= threshold:
        effective = base
        total = floor_int(base * qty)
    else:
        excess_ratio = qty / Decimal(stock)
        reduction = slippage_reduction(tier, excess_ratio, settings)
        effective = base * (1 - reduction)
        total = floor_int(effective * qty)

    net_profit = Decimal(total) - Decimal(avg_cost) * qty
    if net_profit > 0:
        net_profit += net_profit * profit_bonus
    return SaleDetails(total_price=total, effective_price_per_unit=effective, net_profit=net_profit)


# ────────────────────────────────────────────────────────────────────────────
# Market data provider
# ────────────────────────────────────────────────────────────────────────────

class MarketData:
    def __init__(self, registry: ContentRegistry, store: GameStore):
        self.registry = registry
        self.store = store

    @property
    def settings(self) -> G.BrokerSettings:
        return self.registry.settings

    def get_galactic_average(self, commodity_id: str) -> int:
        return self.store.state.market.galactic_averages.get(commodity_id, 0)

    def get_price(self, location_id: str, commodity_id: str) -> int:
        return intel_aware_price(self.store.state, location_id, commodity_id)

    def stock_at(self, location_id: str, commodity_id: str) -> int:
        return self.store.state.market.stock.get(location_id, {}).get(commodity_id, 0)

    # ── Daily evolution ----------------------------------------------------
    def evolve_prices(self, rng: random.Random) -> None:
        """
        One day of price movement for every revealed commodity at every market.

        A price under an active intel deal fluctuates within ±override_fluctuation of the
        override. Everything else takes a random step scaled by the commodity's base price
        range plus a pull back toward the market's local baseline.
        """
        settings = self.settings
        with self.store.transaction("evolve prices") as working:
            deal = working.active_intel_deal
            for location in self.registry.locations.values():
                prices = working.market.prices.setdefault(location.id, {})
                for commodity in self.registry.commodities.values():
                    if commodity.tier > working.player.revealed_tier:
                        continue
                    if deal is not None and deal.applies_to(location.id, commodity.id):
                        spread = Decimal(deal.override_price) * settings.override_fluctuation
                        low = Decimal(deal.override_price) - spread
                        drawn = low + 2 * spread * Decimal(str(rng.random()))
                        prices[commodity.id] = max(1, _round(drawn))
                        continue

                    avg = working.market.galactic_averages.get(commodity.id, commodity.galactic_baseline)
                    price = Decimal(prices.get(commodity.id, avg))
                    lo, hi = commodity.base_price_range
                    fluctuation = Decimal(str(rng.random() - 0.5)) * (hi - lo) * settings.daily_volatility
                    reversion = (local_baseline(avg, location, commodity.id) - price) * settings.mean_reversion
                    prices[commodity.id] = max(1, _round(price + fluctuation + reversion))

    # ── Selling ------------------------------------------------------------
    def _sale_details(self, state: G._GameState, commodity_id: str, quantity: int) -> SaleDetails:
        commodity = self.registry.commodity(commodity_id)
        location_id = state.current_location_id
        held = state.player.cargo.get(commodity_id)
        return compute_sale_details(
            stock=state.market.stock.get(location_id, {}).get(commodity_id, 0),
            tier=commodity.tier,
            base_price=intel_aware_price(state, location_id, commodity_id),
            avg_cost=held.avg_cost if held else Decimal(0),
            quantity=quantity,
            profit_bonus=state.player.total_profit_bonus(),
            settings=self.settings,
        )

    def calculate_sale_details(self, commodity_id: str, quantity: int) -> SaleDetails:
        """Preview a sale at the player's current market without changing anything."""
        return self._sale_details(self.store.state, commodity_id, quantity)

    def sell_commodity(self, commodity_id: str, quantity: int) -> int:
        """Sell cargo at the current market. Returns the credits received, 0 if refused."""
        if quantity <= 0:
            return 0
        held = self.store.state.player.cargo.get(commodity_id)
        if held is None or held.quantity < quantity:
            logger.warning("Sale refused: holding %d %s, asked to sell %d",
                           held.quantity if held else 0, commodity_id, quantity)
            return 0

        with self.store.transaction(f"sell {commodity_id}") as working:
            details = self._sale_details(working, commodity_id, quantity)
            item = working.player.cargo_item(commodity_id)
            sale_value = Decimal(details.total_price)
            profit = sale_value - item.avg_cost * quantity
            if profit > 0:
                sale_value += profit * working.player.total_profit_bonus()
            received = floor_int(sale_value)

            working.player.credits += received
            item.quantity -= quantity
            if item.quantity == 0:
                item.avg_cost = Decimal(0)
            stock = working.market.stock.setdefault(working.current_location_id, {})
            stock[commodity_id] = stock.get(commodity_id, 0) + quantity
            day = working.day

        logger.info("Day %d: sold %dx %s for %d", day, quantity, commodity_id, received)
        return received

    # ── Buying -------------------------------------------------------------
    def buy_commodity(self, commodity_id: str, quantity: int) -> bool:
        """Buy from the current market at its intel-aware price."""
        if quantity <= 0:
            return False
        state = self.store.state
        if commodity_id not in state.player.unlocked_commodities:
            logger.warning("Purchase refused: %s is not unlocked", commodity_id)
            return False
        location_id = state.current_location_id
        available = self.stock_at(location_id, commodity_id)
        if quantity > available:
            logger.warning("Purchase refused: %s has only %d %s", location_id, available, commodity_id)
            return False
        total_cost = intel_aware_price(state, location_id, commodity_id) * quantity
        if state.player.credits < total_cost:
            logger.warning("Purchase refused: %d credits needed, %d held", total_cost, state.player.credits)
            return False

        with self.store.transaction(f"buy {commodity_id}") as working:
            working.market.stock[location_id][commodity_id] -= quantity
            item = working.player.cargo_item(commodity_id)
            item.avg_cost = (item.avg_cost * item.quantity + total_cost) / (item.quantity + quantity)
            item.quantity += quantity
            working.player.credits -= total_cost
            day = working.day

        logger.info("Day %d: bought %dx %s for %d", day, quantity, commodity_id, total_cost)
        return True
