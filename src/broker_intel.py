"""
Local data broker.

Each market's broker lists intel packets: time-limited tips that some commodity will
trade at a discount. `IntelService` generates the listings on refresh days, prices a
packet against the player's wallet, and runs the purchase, which locks in a discounted
price override at the deal market. Only one deal can be active at a time.
"""
from __future__ import annotations

import logging
import math
import random
import re
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Mapping, Optional, Set, Tuple

from pydantic import BaseModel

import broker_objects as G
from broker_market import MarketData, floor_int
from broker_register import ContentRegistry, PURCHASED_INTEL_TEMPLATES
from broker_state import GameStore

logger = logging.getLogger(__name__)

INTEL_CATEGORY = "INTEL"
CREDIT_SYMBOL = "⌬"

_CENT = Decimal("0.01")
_PLACEHOLDER = re.compile(
    r"\[(location name|commodity name|discount amount %|durationDays|⌬ credit price)\]"
)


# -----------------------------------
# Outcomes
# -----------------------------------

class GenerationSkipped(Exception):
    """A location's broker could not build a packet (nothing unlocked, empty catalog)."""


class PurchaseRejection(str, Enum):
    ALREADY_ACTIVE = "already_active"
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PRICE_MISMATCH = "price_mismatch"


class PurchaseRejected(Exception):
    def __init__(self, reason: PurchaseRejection, message: str):
        super().__init__(message)
        self.reason = reason


class PurchaseResult(BaseModel):
    packet: Optional[G._IntelPacket] = None
    reason: Optional[PurchaseRejection] = None

    @property
    def ok(self) -> bool:
        return self.packet is not None


class NotificationSink(ABC):
    """Where player-facing news goes (a ticker, a log panel, a test double)."""

    @abstractmethod
    def push_message(self, text: str, category: str, is_priority: bool = False) -> None:
        ...


# -----------------------------------
# Formatting
# -----------------------------------

def format_credits(amount, with_symbol: bool = True) -> str:
    """Compact credit display: 950, 4.5k, 1.25M and so on."""
    num = abs(math.floor(amount))
    sign = "-" if amount < 0 else ""
    if num >= 1_000_000_000_000:
        body = f"{num / 1_000_000_000_000:.2f}T"
    elif num >= 1_000_000_000:
        body = f"{num / 1_000_000_000:.2f}B"
    elif num >= 1_000_000:
        body = f"{num / 1_000_000:.2f}M"
    elif num >= 1_000:
        body = f"{num / 1_000:.1f}k"
    else:
        body = f"{num:,}"
    return f"{CREDIT_SYMBOL} {sign}{body}" if with_symbol else f"{sign}{body}"


def format_intel_template(
    template: str,
    packet: G._IntelPacket,
    price: Optional[int],
    *,
    commodities: Mapping[str, G.Commodity],
    locations: Mapping[str, G.Location],
) -> str:
    """
    Fill a broker template for `packet`.

    All placeholders are substituted in one pass, so text inserted for one placeholder
    (a commodity named "[location name]", say) is never substituted again. The location is
    the deal location. An unknown price renders as "???".
    """
    values = {
        "location name": locations[packet.deal_location_id].name,
        "commodity name": commodities[packet.commodity_id].name,
        "discount amount %": f"{floor_int(packet.discount_percent * 100)}%",
        "durationDays": str(packet.duration_days),
        "⌬ credit price": format_credits(price) if price is not None else "???",
    }
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


# -----------------------------------
# Broker service
# -----------------------------------

class IntelService:
    def __init__(
        self,
        store: GameStore,
        registry: ContentRegistry,
        market: MarketData,
        news: Optional[NotificationSink] = None,
        rng: Optional[random.Random] = None,
        catalog: Optional[Mapping[G.IntelMessageKey, G.IntelContent]] = None,
    ):
        self.store = store
        self.registry = registry
        self.market = market
        self.news = news
        self.random = rng or random.Random()
        self.catalog: Mapping[G.IntelMessageKey, G.IntelContent] = (
            catalog if catalog is not None else registry.intel_content
        )

    @property
    def settings(self) -> G.BrokerSettings:
        return self.registry.settings

    # ── Generation -------------------------------------------------------
    def generate_intel_refresh(self) -> None:
        """
        Replace every unpurchased listing with a fresh batch.

        Purchased packets stay listed until their deal expires. Each known market rolls
        `location_intel_chance` to get between packets_per_location packets; a market
        whose broker has nothing to offer is skipped with a warning.
        """
        settings = self.settings
        with self.store.transaction("intel refresh") as working:
            refreshed: Dict[str, list] = {
                location_id: [p for p in packets if p.is_purchased]
                for location_id, packets in working.intel_market.items()
            }
            used_ids: Set[str] = {p.id for packets in refreshed.values() for p in packets}

            for location_id in self.registry.locations:
                listing = refreshed.setdefault(location_id, [])
                if self.random.random() >= settings.location_intel_chance:
                    continue
                lo, hi = settings.packets_per_location
                for _ in range(self.random.randint(lo, hi)):
                    try:
                        packet = self._create_packet(working, location_id, used_ids)
                    except GenerationSkipped as e:
                        logger.warning("No intel generated at %s: %s", location_id, e)
                        break
                    listing.append(packet)
                    used_ids.add(packet.id)

            working.intel_market = refreshed
            day = working.day
            fresh = sum(1 for packets in refreshed.values() for p in packets if not p.is_purchased)

        logger.info("Day %d: intel refresh listed %d packets", day, fresh)

    def _create_packet(self, state: G._GameState, location_id: str, used_ids: Set[str]) -> G._IntelPacket:
        unlocked = state.player.unlocked_commodities
        if not unlocked:
            raise GenerationSkipped("no unlocked commodities")
        if not self.catalog:
            raise GenerationSkipped("intel catalog is empty")

        settings = self.settings
        rng = self.random
        commodity_id = rng.choice(unlocked)
        d_lo, d_hi = settings.discount_range
        discount = Decimal(str(rng.uniform(float(d_lo), float(d_hi)))).quantize(_CENT, rounding=ROUND_HALF_UP)
        duration = rng.randint(*settings.duration_range)
        message_key = rng.choice(sorted(self.catalog, key=lambda k: k.value))

        deal_location_id = location_id
        if settings.remote_deal_chance > 0 and rng.random() < settings.remote_deal_chance:
            others = [loc for loc in self.registry.locations if loc != location_id]
            if others:
                deal_location_id = rng.choice(others)

        prefix = f"pkt_{location_id.replace('loc_', '', 1)}_{state.day}_"
        packet_id = f"{prefix}{rng.randrange(999)}"
        while packet_id in used_ids:
            packet_id = f"{prefix}{rng.randrange(999)}"

        return G._IntelPacket(
            id=packet_id,
            offer_location_id=location_id,
            deal_location_id=deal_location_id,
            commodity_id=commodity_id,
            discount_percent=discount,
            duration_days=duration,
            value_multiplier=G.value_multiplier_for(discount, duration),
            message_key=message_key,
            price_seed=rng.getrandbits(32),
        )

    # ── Pricing ----------------------------------------------------------
    def _price_for(self, credits: int, fraction: float, multiplier: Decimal) -> int:
        rounding = self.settings.price_rounding
        base = Decimal(max(credits, 0)) * Decimal(str(fraction))
        return floor_int(base * multiplier / rounding) * rounding

    def _seeded_fraction(self, packet: G._IntelPacket) -> float:
        return random.Random(packet.price_seed).uniform(*self.settings.price_fraction_range)

    def calculate_intel_price(self, packet: G._IntelPacket) -> int:
        """
        What the broker asks for `packet` right now: a share of the player's credits,
        scaled by the packet's value multiplier and floored to a multiple of 100.
        """
        if self.settings.price_mode == G.PriceMode.SEED_AT_GENERATION:
            fraction = self._seeded_fraction(packet)
        else:
            fraction = self.random.uniform(*self.settings.price_fraction_range)
        return self._price_for(self.store.state.player.credits, fraction, packet.value_multiplier)

    def intel_price_bounds(self, packet: G._IntelPacket, credits: Optional[int] = None) -> Tuple[int, int]:
        if credits is None:
            credits = self.store.state.player.credits
        lo, hi = self.settings.price_fraction_range
        return (
            self._price_for(credits, lo, packet.value_multiplier),
            self._price_for(credits, hi, packet.value_multiplier),
        )

    def _price_matches(self, packet: G._IntelPacket, credits: int, proposed: int) -> bool:
        if proposed < 0:
            return False
        tolerance = self.settings.price_tolerance
        if self.settings.price_mode == G.PriceMode.SEED_AT_GENERATION:
            expected = self._price_for(credits, self._seeded_fraction(packet), packet.value_multiplier)
            return abs(proposed - expected) <= tolerance
        lo, hi = self.intel_price_bounds(packet, credits)
        return lo - tolerance <= proposed <= hi + tolerance

    # ── Purchase ---------------------------------------------------------
    def try_purchase_intel(self, packet_id: str, location_id: str, proposed_price: int) -> PurchaseResult:
        """
        Buy packet `packet_id` listed at `location_id` for `proposed_price`.

        Checked in order: no deal already active, packet still listed and unpurchased,
        enough credits, and (if verification is on) a price the broker could have asked.
        A failed check leaves the state untouched.
        """
        try:
            with self.store.transaction(f"purchase {packet_id}") as working:
                packet, deal = self._purchase(working, packet_id, location_id, proposed_price)
        except PurchaseRejected as rejected:
            if rejected.reason == PurchaseRejection.NOT_FOUND:
                logger.error("Intel purchase failed: %s", rejected)
            else:
                logger.warning("Intel purchase refused: %s", rejected)
            return PurchaseResult(reason=rejected.reason)

        logger.info(
            "Day %d: bought intel %s for %d; %s at %s locked at %d until day %d",
            packet.purchased_day, packet.id, proposed_price,
            deal.commodity_id, deal.deal_location_id, deal.override_price, deal.expiry_day,
        )
        self._announce_purchase(packet)
        return PurchaseResult(packet=packet.model_copy(deep=True))

    def purchase_intel(self, packet_id: str, location_id: str, proposed_price: int) -> Optional[G._IntelPacket]:
        return self.try_purchase_intel(packet_id, location_id, proposed_price).packet

    def _purchase(
        self, working: G._GameState, packet_id: str, location_id: str, proposed_price: int
    ) -> Tuple[G._IntelPacket, G._ActiveIntelDeal]:
        if working.active_intel_deal is not None:
            raise PurchaseRejected(
                PurchaseRejection.ALREADY_ACTIVE,
                f"deal on {working.active_intel_deal.commodity_id} is still active",
            )
        packet = working.find_packet(location_id, packet_id)
        if packet is None or packet.is_purchased:
            raise PurchaseRejected(PurchaseRejection.NOT_FOUND, f"no packet {packet_id} for sale at {location_id}")
        credits = working.player.credits
        if credits < proposed_price:
            raise PurchaseRejected(
                PurchaseRejection.INSUFFICIENT_FUNDS, f"{proposed_price} asked, {credits} held",
            )
        if self.settings.verify_purchase_price and not self._price_matches(packet, credits, proposed_price):
            raise PurchaseRejected(
                PurchaseRejection.PRICE_MISMATCH, f"{proposed_price} is not a price for {packet_id}",
            )

        working.player.credits -= proposed_price
        packet.mark_purchased(proposed_price, working.day)

        average = self.market.get_galactic_average(packet.commodity_id)
        override = floor_int(Decimal(average) * (1 - packet.discount_percent))
        deal = G._ActiveIntelDeal(
            deal_location_id=packet.deal_location_id,
            offer_location_id=packet.offer_location_id,
            commodity_id=packet.commodity_id,
            override_price=override,
            expiry_day=working.day + packet.duration_days,
            source_packet_id=packet.id,
        )
        working.active_intel_deal = deal
        working.market.prices.setdefault(deal.deal_location_id, {})[deal.commodity_id] = max(1, override)
        return packet, deal

    def _announce_purchase(self, packet: G._IntelPacket) -> None:
        if self.news is None:
            return
        try:
            template = self.random.choice(self.registry.templates(PURCHASED_INTEL_TEMPLATES))
            message = (
                template
                .replace("{Commodity Name}", self.registry.commodity(packet.commodity_id).name)
                .replace("{Location Name}", self.registry.location(packet.deal_location_id).name)
            )
            self.news.push_message(message, INTEL_CATEGORY, True)
        except Exception:
            logger.exception("Could not announce intel purchase %s", packet.id)

    # ── Display ----------------------------------------------------------
    def offer_text(self, packet: G._IntelPacket, price: Optional[int] = None) -> str:
        """The teaser shown while the packet is for sale."""
        return format_intel_template(
            self.catalog[packet.message_key].sample, packet, price,
            commodities=self.registry.commodities, locations=self.registry.locations,
        )

    def details_text(self, packet: G._IntelPacket) -> str:
        """The full briefing unlocked by buying the packet."""
        return format_intel_template(
            self.catalog[packet.message_key].details, packet, packet.price_paid,
            commodities=self.registry.commodities, locations=self.registry.locations,
        )
