from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

_CENT = Decimal("0.01")


class ContentError(Exception):
    """Static content is malformed or incomplete. Raised at load time."""


# ────────────────────────────────────────────────────────────────────────────
# Enumerations
# ────────────────────────────────────────────────────────────────────────────

class IntelMessageKey(str, Enum):
    """Closed set of broker message templates. Every member needs an IntelContent entry."""

    CORPORATE_LIQUIDATION = "CORPORATE_LIQUIDATION"
    SUPPLY_CHAIN_DISRUPTION = "SUPPLY_CHAIN_DISRUPTION"
    SALVAGE_AUCTION = "SALVAGE_AUCTION"
    CUSTOMS_SEIZURE = "CUSTOMS_SEIZURE"


class PriceMode(str, Enum):
    # Fresh draw on every price calculation, so a listed offer can change price between renders
    RESEED_AT_RENDER = "reseed_at_render"
    # Draw derived from the packet's price_seed; price only follows the credit balance
    SEED_AT_GENERATION = "seed_at_generation"


# ────────────────────────────────────────────────────────────────────────────
# Static content
# ────────────────────────────────────────────────────────────────────────────

class Commodity(BaseModel):
    id: str
    name: str
    # Rarity bucket. Higher tiers trade in thinner markets and slip harder on large sales
    tier: PositiveInt
    base_price_range: Tuple[int, int]
    # Typical stock range at a market with no availability modifier
    canonical_availability: Tuple[int, int] = (10, 20)

    @field_validator("base_price_range", "canonical_availability")
    def _ordered(cls, v):  # noqa: N805
        lo, hi = v
        if lo < 0 or hi < lo:
            raise ValueError(f"invalid range {v}")
        return v

    @property
    def galactic_baseline(self) -> int:
        lo, hi = self.base_price_range
        return (lo + hi) // 2


class Location(BaseModel):
    id: str
    name: str
    # Commodity id -> stock multiplier (> 1.0 exporter, < 1.0 importer)
    availability_modifier: Dict[str, float] = Field(default_factory=dict)

    def modifier_for(self, commodity_id: str) -> float:
        return self.availability_modifier.get(commodity_id, 1.0)


class IntelContent(BaseModel):
    """A {sample, details} template pair shown for an intel packet."""

    id: IntelMessageKey
    sample: str
    details: str


class NewsTemplateSet(BaseModel):
    id: str
    templates: List[str] = Field(..., min_length=1)


class SlippageTier(BaseModel):
    # Applies to commodities with tier <= max_tier; None catches every tier above the others
    max_tier: Optional[int] = None
    rate: Decimal
    cap: Decimal

    @field_validator("rate", "cap", mode="before")
    def _decimize(cls, v):  # noqa: N805
        return Decimal(str(v))


def _default_slippage_tiers() -> List[SlippageTier]:
    return [
        SlippageTier(max_tier=2, rate=Decimal("0.2"), cap=Decimal("0.10")),
        SlippageTier(max_tier=5, rate=Decimal("0.5"), cap=Decimal("0.25")),
        SlippageTier(max_tier=None, rate=Decimal("0.8"), cap=Decimal("0.40")),
    ]


class BrokerSettings(BaseModel):
    """Tuning knobs for the data broker and the sell-side market model."""

    refresh_interval_days: PositiveInt = 120
    location_intel_chance: float = Field(0.70, ge=0, le=1)
    packets_per_location: Tuple[int, int] = (1, 3)
    discount_range: Tuple[Decimal, Decimal] = (Decimal("0.15"), Decimal("0.50"))
    duration_range: Tuple[int, int] = (30, 90)
    price_fraction_range: Tuple[float, float] = (0.10, 0.20)
    price_rounding: PositiveInt = 100
    price_mode: PriceMode = PriceMode.RESEED_AT_RENDER
    verify_purchase_price: bool = True
    price_tolerance: int = Field(0, ge=0, description="Credits a proposed price may deviate from the computed one")
    remote_deal_chance: float = Field(0.0, ge=0, le=1, description="Chance a packet's deal targets another market")

    # market evolution
    override_fluctuation: Decimal = Decimal("0.03")
    daily_volatility: Decimal = Decimal("0.25")
    mean_reversion: Decimal = Decimal("0.04")

    # sell-price decay
    sale_impact_threshold: Decimal = Decimal("0.10")
    slippage_tiers: List[SlippageTier] = Field(default_factory=_default_slippage_tiers)

    news_capacity: PositiveInt = 50

    @field_validator("override_fluctuation", "daily_volatility", "mean_reversion", "sale_impact_threshold", mode="before")
    def _decimize(cls, v):  # noqa: N805
        return Decimal(str(v))

    @field_validator("discount_range", mode="before")
    def _decimize_range(cls, v):  # noqa: N805
        return tuple(Decimal(str(x)) for x in v)

    @model_validator(mode="after")
    def _check_ranges(self):
        for name in ("packets_per_location", "discount_range", "duration_range", "price_fraction_range"):
            lo, hi = getattr(self, name)
            if hi < lo:
                raise ValueError(f"{name}: upper bound below lower bound")
        lo, hi = self.discount_range
        if lo <= 0 or hi >= 1:
            raise ValueError("discount_range must lie inside (0, 1)")
        if not self.slippage_tiers:
            raise ValueError("at least one slippage tier is required")
        return self

    def slippage_for(self, tier: int) -> SlippageTier:
        bounded = sorted((t for t in self.slippage_tiers if t.max_tier is not None), key=lambda t: t.max_tier)
        for t in bounded:
            if tier <= t.max_tier:
                return t
        open_ended = [t for t in self.slippage_tiers if t.max_tier is None]
        return open_ended[0] if open_ended else bounded[-1]


# ────────────────────────────────────────────────────────────────────────────
# Intel
# ────────────────────────────────────────────────────────────────────────────

def value_multiplier_for(discount_percent: Decimal, duration_days: int) -> Decimal:
    raw = Decimal(1) + discount_percent * 2 + Decimal(duration_days) / Decimal(90)
    return raw.quantize(_CENT, rounding=ROUND_HALF_UP)


class _IntelPacket(BaseModel):
    """An offer listed by a local data broker."""

    id: str
    # Market whose broker lists the packet; key into _GameState.intel_market
    offer_location_id: str
    # Market where the discounted price applies once bought
    deal_location_id: str
    commodity_id: str
    discount_percent: Decimal = Field(..., gt=0, lt=1)
    duration_days: PositiveInt
    value_multiplier: Decimal
    message_key: IntelMessageKey
    price_seed: int = 0
    is_purchased: bool = False
    price_paid: Optional[int] = None
    purchased_day: Optional[int] = None

    @field_validator("discount_percent", "value_multiplier", mode="before")
    def _decimize(cls, v):  # noqa: N805
        return Decimal(str(v))

    def __setattr__(self, name, value):
        if name == "is_purchased" and self.is_purchased and not value:
            raise ValueError(f"packet {self.id} is already purchased")
        super().__setattr__(name, value)

    def mark_purchased(self, price: int, day: int) -> None:
        self.is_purchased = True
        self.price_paid = price
        self.purchased_day = day


class _ActiveIntelDeal(BaseModel):
    deal_location_id: str
    offer_location_id: str
    commodity_id: str
    override_price: int
    expiry_day: int
    source_packet_id: str

    def applies_to(self, location_id: str, commodity_id: str) -> bool:
        return self.deal_location_id == location_id and self.commodity_id == commodity_id

    def is_expired(self, day: int) -> bool:
        return day >= self.expiry_day


# ────────────────────────────────────────────────────────────────────────────
# Player & market
# ────────────────────────────────────────────────────────────────────────────

class _CargoItem(BaseModel):
    quantity: int = Field(0, ge=0)
    avg_cost: Decimal = Decimal(0)

    @field_validator("avg_cost", mode="before")
    def _decimize(cls, v):  # noqa: N805
        return Decimal(str(v))


class _PlayerState(BaseModel):
    credits: int = 0
    unlocked_commodities: List[str] = Field(default_factory=list)
    revealed_tier: int = 1
    cargo: Dict[str, _CargoItem] = Field(default_factory=dict)
    # Bonus id -> fraction of positive profit added on a sale (e.g. a perk, a birthday bonus)
    profit_bonuses: Dict[str, Decimal] = Field(default_factory=dict)

    @field_validator("profit_bonuses", mode="before")
    def _decimize_map(cls, v):  # noqa: N805
        return {k: Decimal(str(val)) for k, val in v.items()}

    def total_profit_bonus(self) -> Decimal:
        return sum(self.profit_bonuses.values(), Decimal(0))

    def cargo_item(self, commodity_id: str) -> _CargoItem:
        return self.cargo.setdefault(commodity_id, _CargoItem())


class _MarketState(BaseModel):
    # location id -> commodity id -> value
    prices: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    stock: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    galactic_averages: Dict[str, int] = Field(default_factory=dict)


class _GameState(BaseModel):
    day: int = 1
    current_location_id: str
    player: _PlayerState = Field(default_factory=_PlayerState)
    market: _MarketState = Field(default_factory=_MarketState)
    intel_market: Dict[str, List[_IntelPacket]] = Field(default_factory=dict)
    active_intel_deal: Optional[_ActiveIntelDeal] = None

    # ── Helper methods -----------------------------------------------------
    def find_packet(self, location_id: str, packet_id: str) -> Optional[_IntelPacket]:
        return next((p for p in self.intel_market.get(location_id, []) if p.id == packet_id), None)

    def all_packets(self) -> List[_IntelPacket]:
        return [p for packets in self.intel_market.values() for p in packets]
