import logging
from decimal import Decimal

import broker_objects as G  # type: ignore
from broker_intel import IntelService  # type: ignore
from conftest import list_packet  # type: ignore


def test_refresh_packets_within_ranges(make_game):
    game = make_game(location_intel_chance=1.0)
    game.intel.generate_intel_refresh()

    packets = game.state.all_packets()
    assert packets
    for location_id, listing in game.state.intel_market.items():
        assert 1 <= len(listing) <= 3
        for p in listing:
            assert p.offer_location_id == location_id
            assert p.deal_location_id == location_id
            assert p.id.startswith(f"pkt_{location_id[len('loc_'):]}_1_")
            assert p.commodity_id in game.state.player.unlocked_commodities
            assert Decimal("0.15") <= p.discount_percent <= Decimal("0.50")
            assert p.discount_percent == p.discount_percent.quantize(Decimal("0.01"))
            assert 30 <= p.duration_days <= 90
            assert p.value_multiplier == G.value_multiplier_for(p.discount_percent, p.duration_days)
            assert Decimal("1.63") <= p.value_multiplier <= Decimal("3.00")
            assert p.message_key in game.registry.intel_content
            assert not p.is_purchased
    assert len({p.id for p in packets}) == len(packets)


def test_refresh_keeps_purchased_and_replaces_the_rest(make_game):
    game = make_game(location_intel_chance=1.0)
    game.intel.generate_intel_refresh()
    target = game.state.intel_market["loc_mars"][0]
    price = game.intel.calculate_intel_price(target)
    assert game.intel.purchase_intel(target.id, "loc_mars", price) is not None

    with game.store.transaction() as working:
        working.day = 2
    game.intel.generate_intel_refresh()

    day_one = [p for p in game.state.all_packets() if "_1_" in p.id]
    assert [p.id for p in day_one] == [target.id]
    assert game.state.find_packet("loc_mars", target.id).is_purchased


def test_zero_chance_lists_nothing(make_game):
    game = make_game(location_intel_chance=0.0)
    list_packet(game)
    game.intel.generate_intel_refresh()
    assert game.state.all_packets() == []
    assert set(game.state.intel_market) == set(game.registry.locations)


def test_no_unlocked_commodities_warns_per_location(make_game, caplog):
    game = make_game(location_intel_chance=1.0)
    bought = list_packet(game)
    game.intel.purchase_intel(bought.id, "loc_earth", 3000)
    with game.store.transaction() as working:
        working.player.unlocked_commodities = []

    with caplog.at_level(logging.WARNING, logger="broker_intel"):
        game.intel.generate_intel_refresh()

    assert [p.id for p in game.state.all_packets()] == [bought.id]
    assert game.state.find_packet("loc_earth", bought.id).is_purchased
    skipped = [r for r in caplog.records if "No intel generated" in r.getMessage()]
    assert len(skipped) == len(game.registry.locations)


def test_empty_catalog_skips_generation(make_game, caplog):
    game = make_game(location_intel_chance=1.0)
    service = IntelService(game.store, game.registry, game.market, catalog={})

    with caplog.at_level(logging.WARNING, logger="broker_intel"):
        service.generate_intel_refresh()

    assert game.state.all_packets() == []
    assert any("catalog is empty" in r.getMessage() for r in caplog.records)


def test_same_seed_same_listings(make_game):
    g1 = make_game(seed=7, location_intel_chance=1.0)
    g2 = make_game(seed=7, location_intel_chance=1.0)
    g1.intel.generate_intel_refresh()
    g2.intel.generate_intel_refresh()
    assert g1.state.model_dump() == g2.state.model_dump()


def test_different_seeds_diverge(make_game):
    g1 = make_game(seed=1, location_intel_chance=1.0)
    g2 = make_game(seed=2, location_intel_chance=1.0)
    g1.intel.generate_intel_refresh()
    g2.intel.generate_intel_refresh()
    assert g1.state.intel_market != g2.state.intel_market


def test_remote_deals_target_another_market(make_game):
    game = make_game(location_intel_chance=1.0, remote_deal_chance=1.0)
    game.intel.generate_intel_refresh()
    for p in game.state.all_packets():
        assert p.deal_location_id != p.offer_location_id
        assert p.deal_location_id in game.registry.locations
