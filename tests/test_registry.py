import json
import logging
from decimal import Decimal

import pytest

import broker_objects as G  # type: ignore
import broker_register as R  # type: ignore


def write(folder, model, name, data):
    target = folder / model
    target.mkdir(parents=True, exist_ok=True)
    (target / f"{name}.json").write_text(json.dumps(data), encoding="utf-8")


def minimal_content(root, skip_key=None):
    write(root, "Commodity", "ice", {"id": "water_ice", "name": "Water Ice", "tier": 1, "base_price_range": [15, 80]})
    write(root, "Location", "earth", {"id": "loc_earth", "name": "Earth"})
    for key in G.IntelMessageKey:
        if key == skip_key:
            continue
        write(root, "IntelContent", key.value.lower(), {"id": key.value, "sample": "s", "details": "d"})
    write(root, "NewsTemplateSet", "purchased", {"id": "purchased_intel", "templates": ["{Commodity Name}!"]})


def test_bundled_content_is_complete():
    registry = R.load_registry([R.LOCAL_CONTENT])
    assert len(registry.commodities) == 14
    assert len(registry.locations) == 12
    assert set(registry.intel_content) == set(G.IntelMessageKey)
    assert len(registry.templates(R.PURCHASED_INTEL_TEMPLATES)) == 28
    assert registry.location("loc_luna").name == "The Moon"
    assert registry.commodity("folded_drives").tier == 7
    assert registry.settings == G.BrokerSettings()


def test_market_order_follows_file_names():
    registry = R.load_registry([R.LOCAL_CONTENT])
    assert list(registry.locations)[:3] == ["loc_venus", "loc_earth", "loc_luna"]


def test_missing_intel_template_fails_at_load(tmp_path):
    minimal_content(tmp_path, skip_key=G.IntelMessageKey.CUSTOMS_SEIZURE)
    with pytest.raises(G.ContentError, match="CUSTOMS_SEIZURE"):
        R.load_registry([tmp_path])


def test_validate_intel_catalog_lists_every_gap():
    with pytest.raises(G.ContentError) as excinfo:
        R.validate_intel_catalog({})
    for key in G.IntelMessageKey:
        assert key.value in str(excinfo.value)


def test_unknown_intel_key_is_rejected(tmp_path, caplog):
    minimal_content(tmp_path)
    write(tmp_path, "IntelContent", "bogus", {"id": "MARKET_RUMOR", "sample": "s", "details": "d"})
    with caplog.at_level(logging.WARNING, logger="broker_register"):
        registry = R.load_registry([tmp_path])
    assert len(registry.intel_content) == len(G.IntelMessageKey)
    assert any("bogus.json" in r.getMessage() for r in caplog.records)


def test_bad_files_are_skipped(tmp_path, caplog):
    minimal_content(tmp_path)
    (tmp_path / "Commodity" / "broken.json").write_text("{not json", encoding="utf-8")
    write(tmp_path, "Commodity", "inverted", {"id": "x", "name": "X", "tier": 1, "base_price_range": [90, 10]})
    with caplog.at_level(logging.WARNING, logger="broker_register"):
        registry = R.load_registry([tmp_path])
    assert list(registry.commodities) == ["water_ice"]
    assert len(caplog.records) == 2


def test_meta_and_hidden_folders_ignored(tmp_path):
    minimal_content(tmp_path)
    write(tmp_path / "meta", "Commodity", "x", {"id": "ghost", "name": "Ghost", "tier": 1, "base_price_range": [1, 2]})
    write(tmp_path, ".cache", "x", {"id": "ghost"})
    registry = R.load_registry([tmp_path])
    assert "ghost" not in registry.commodities


def test_later_sources_override(tmp_path):
    base, mod = tmp_path / "base", tmp_path / "mod"
    minimal_content(base)
    write(mod, "Location", "earth", {"id": "loc_earth", "name": "Terra"})
    write(mod, "BrokerSettings", "fast", {"refresh_interval_days": 30, "price_mode": "seed_at_generation"})
    registry = R.load_registry([base, mod])
    assert registry.location("loc_earth").name == "Terra"
    assert registry.settings.refresh_interval_days == 30
    assert registry.settings.price_mode == G.PriceMode.SEED_AT_GENERATION


def test_settings_reject_bad_ranges():
    with pytest.raises(ValueError):
        G.BrokerSettings(discount_range=(0.5, 0.2))
    with pytest.raises(ValueError):
        G.BrokerSettings(discount_range=(0.0, 0.5))


def test_slippage_band_lookup():
    settings = G.BrokerSettings()
    assert settings.slippage_for(1).cap == Decimal("0.10")
    assert settings.slippage_for(2).cap == Decimal("0.10")
    assert settings.slippage_for(5).cap == Decimal("0.25")
    assert settings.slippage_for(6).cap == Decimal("0.40")
