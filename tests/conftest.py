import sys
from pathlib import Path
from decimal import Decimal
import random

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import broker_objects as G  # type: ignore
from broker_register import ContentRegistry  # type: ignore
from broker_sim import BrokerGame, new_game  # type: ignore


def make_registry(**settings) -> ContentRegistry:
    commodities = [
        G.Commodity(id="water_ice", name="Water Ice", tier=1, base_price_range=(15, 80), canonical_availability=(80, 150)),
        G.Commodity(id="plasteel", name="Plasteel", tier=1, base_price_range=(100, 280), canonical_availability=(80, 150)),
        G.Commodity(id="propellant", name="Refined Propellant", tier=3, base_price_range=(14000, 38000), canonical_availability=(25, 50)),
        G.Commodity(id="sentient_ai", name="Sentient AI Cores", tier=6, base_price_range=(32000000, 95000000), canonical_availability=(2, 10)),
    ]
    locations = [
        G.Location(id="loc_earth", name="Earth", availability_modifier={"plasteel": 2.0}),
        G.Location(id="loc_mars", name="Mars", availability_modifier={"water_ice": 0.5}),
        G.Location(id="loc_belt", name="The Belt"),
    ]
    intel = [
        G.IntelContent(
            id=key,
            sample=f"{key.value}: tip at [location name].",
            details="[commodity name] at [location name], [discount amount %] off for [durationDays] days. Paid [⌬ credit price].",
        )
        for key in G.IntelMessageKey
    ]
    raw = {
        "Commodity": {c.id: c for c in commodities},
        "Location": {loc.id: loc for loc in locations},
        "IntelContent": {entry.id: entry for entry in intel},
        "NewsTemplateSet": {
            "purchased_intel": G.NewsTemplateSet(id="purchased_intel", templates=["Cheap {Commodity Name} at {Location Name}!"]),
            "expired_intel": G.NewsTemplateSet(id="expired_intel", templates=["Intel on {Commodity Name} at {Location Name} has expired."]),
        },
        "BrokerSettings": [G.BrokerSettings(**settings)],
    }
    return ContentRegistry(raw)


def list_packet(game: BrokerGame, location_id: str = "loc_earth", **overrides) -> G._IntelPacket:
    """Put a hand-built packet up for sale and return the stored copy."""
    fields = dict(
        id="pkt_test_1_1",
        offer_location_id=location_id,
        deal_location_id=location_id,
        commodity_id="water_ice",
        discount_percent=Decimal("0.30"),
        duration_days=60,
        message_key=G.IntelMessageKey.CORPORATE_LIQUIDATION,
        price_seed=1234,
    )
    fields.update(overrides)
    fields.setdefault("value_multiplier", G.value_multiplier_for(Decimal(str(fields["discount_percent"])), fields["duration_days"]))
    with game.store.transaction("list test packet") as working:
        working.intel_market.setdefault(location_id, []).append(G._IntelPacket(**fields))
    return game.state.find_packet(location_id, fields["id"])


@pytest.fixture
def make_game():
    def _make(credits: int = 10_000, seed: int = 0, **settings) -> BrokerGame:
        registry = make_registry(**settings)
        state = new_game(registry, random.Random(seed), credits=credits, start_location_id="loc_earth")
        return BrokerGame(registry, state, seed=seed)
    return _make


@pytest.fixture
def game(make_game) -> BrokerGame:
    return make_game()
