import asyncio
import json

import pytest
from pydantic import ValidationError

from conftest import run
from funnel_config import (
    FunnelConfig,
    FunnelConfigStore,
    STORAGE_KEY,
    analytics_summary,
    default_config,
    parse_config,
)


@pytest.fixture
def store(shared_kv):
    return FunnelConfigStore(shared_kv)


def test_first_load_returns_defaults(store):
    config = run(store.load())
    assert [p.countdown for p in config.pages] == [10, 8, 10, 12]
    assert [a.id for p in config.pages for a in p.ads] == ["ad1", "ad2", "ad3", "ad4", "ad5"]
    assert config.analytics.page_visits == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    assert config.analytics.ad_clicks == {}
    assert config.analytics.total_downloads == 0
    assert config.download_url == "https://example.com/download/software.exe"
    assert config.software_name == "Premium Software Suite v2.0"


def test_unparseable_blob_falls_back_to_defaults(store, shared_kv):
    run(shared_kv.set(STORAGE_KEY, "{not json"))
    assert run(store.load()) == default_config()


def test_page_visits_accumulate(store):
    run(store.update_page_visit(2))
    run(store.update_page_visit(2))
    run(store.update_page_visit(42))
    visits = run(store.load()).analytics.page_visits
    assert visits[2] == 2
    assert visits[42] == 1


def test_ad_clicks_accumulate(store):
    run(store.update_ad_click("ad1"))
    run(store.update_ad_click("ad1"))
    run(store.update_ad_click("nope"))
    clicks = run(store.load()).analytics.ad_clicks
    assert clicks == {"ad1": 2, "nope": 1}


def test_concurrent_counters_are_not_lost(store):
    async def hammer():
        await asyncio.gather(*(store.update_page_visit(1) for _ in range(10)))

    run(hammer())
    assert run(store.load()).analytics.page_visits[1] == 10


def test_download_count(store):
    run(store.update_download_count())
    assert run(store.load()).analytics.total_downloads == 1


def test_invalid_import_leaves_state_unchanged(store):
    run(store.update_page_visit(1))
    before = run(store.export())
    assert run(store.import_config("this is not json")) is False
    bad = json.loads(before)
    bad["pages"][0]["ads"][0]["assignedPage"] = 9
    assert run(store.import_config(json.dumps(bad))) is False
    assert run(store.export()) == before


def test_deeply_nested_import_is_rejected(store):
    before = run(store.export())
    assert run(store.import_config("[" * 200000)) is False
    assert parse_config("[" * 200000) is None
    assert run(store.export()) == before


def test_import_replaces_config(store):
    data = json.loads(run(store.export()))
    data["softwareName"] = "Tool X"
    data["pages"][1]["countdown"] = 3
    assert run(store.import_config(json.dumps(data))) is True
    config = run(store.load())
    assert config.software_name == "Tool X"
    assert config.page(2).countdown == 3


def test_export_is_indented_camel_case(store):
    text = run(store.export())
    assert text.startswith("{\n  ")
    data = json.loads(text)
    assert {"pages", "analytics", "downloadURL", "softwareName"} <= set(data)
    assert "imageURL" in data["pages"][0]["ads"][0]


def test_reset_zeroes_analytics(store):
    run(store.update_page_visit(1))
    run(store.update_ad_click("ad2"))
    run(store.reset())
    assert run(store.load()).analytics == default_config().analytics


def test_versioned_save_rejects_stale_version(store):
    config, version = run(store.load_versioned())
    assert version == 0
    assert run(store.save(config, expected_version=0)) is True
    config, version = run(store.load_versioned())
    config.software_name = "first"
    assert run(store.save(config, expected_version=version)) is True
    config.software_name = "second"
    assert run(store.save(config, expected_version=version)) is False
    assert run(store.load()).software_name == "first"


def test_add_ad_assigns_id_and_page(store):
    ad = run(store.add_ad("New", "https://img", "https://link", 3))
    assert ad.id.startswith("ad") and ad.id not in {"ad1", "ad2", "ad3", "ad4", "ad5"}
    assert ad.id in [a.id for a in run(store.load()).page(3).ads]


def test_add_ad_to_unknown_page_changes_nothing(store):
    before = run(store.export())
    with pytest.raises(ValueError):
        run(store.add_ad("New", "https://img", "https://link", 9))
    assert run(store.export()) == before


def test_update_ad_moves_between_pages(store):
    moved = run(store.update_ad("ad1", title="Moved", assigned_page=4))
    assert moved.title == "Moved"
    config = run(store.load())
    assert "ad1" not in [a.id for a in config.page(1).ads]
    assert "ad1" in [a.id for a in config.page(4).ads]
    assert run(store.update_ad("missing", title="x")) is None


def test_delete_ad(store):
    assert run(store.delete_ad("ad3")) is True
    assert run(store.delete_ad("ad3")) is False
    assert run(store.load()).find_ad("ad3") is None


def test_update_settings(store):
    config = run(store.update_settings({1: 20}, "Renamed", "https://dl.example.com/x.zip"))
    assert config.page(1).countdown == 20
    stored = run(store.load())
    assert stored.software_name == "Renamed"
    assert stored.download_url == "https://dl.example.com/x.zip"
    with pytest.raises(ValueError):
        run(store.update_settings({2: 0}))


def test_duplicate_ad_ids_are_invalid():
    data = json.loads(default_config().to_json())
    data["pages"][1]["ads"][0]["id"] = "ad1"
    with pytest.raises(ValidationError):
        FunnelConfig.model_validate(data)
    assert parse_config(json.dumps(data)) is None


def test_ad_must_sit_under_its_assigned_page():
    data = json.loads(default_config().to_json())
    misplaced = data["pages"][1]["ads"].pop()
    data["pages"][0]["ads"].append(misplaced)
    with pytest.raises(ValidationError):
        FunnelConfig.model_validate(data)


def test_page_ids_must_cover_the_funnel():
    data = json.loads(default_config().to_json())
    data["pages"][3]["id"] = 7
    data["pages"][3]["ads"][0]["assignedPage"] = 7
    with pytest.raises(ValidationError):
        FunnelConfig.model_validate(data)


def test_analytics_summary():
    config = default_config()
    assert analytics_summary(config)["conversionRate"] == "0.00"
    config.analytics.page_visits.update({1: 3, 5: 1})
    config.analytics.ad_clicks.update({"ad1": 1, "ad4": 5})
    config.analytics.total_downloads = 1
    summary = analytics_summary(config)
    assert summary["totalVisits"] == 4
    assert summary["totalClicks"] == 6
    assert summary["conversionRate"] == "25.00"
    assert summary["pageVisits"][-1] == {"page": 5, "name": "Download", "visits": 1}
    assert summary["adClicks"][0] == {"ad": "ad4", "title": "System Optimizer", "clicks": 5}
