from __future__ import annotations

from types import SimpleNamespace

import pytest

from publio.core.config.models import MarketType
from publio.core.errors import ValidationError
from publio.core.search import SavedSearchCriteria, matches_saved_search_criteria, parse_criteria


def make_tender(**overrides):
    data = {
        "title": "Renovation of the Bellevue school roof",
        "description": "Full replacement of the roof covering.",
        "canton": "VD",
        "city": "Lausanne",
        "market_type": "CONSTRUCTION",
        "budget": 50_000.0,
        "mode": "CLASSIC",
        "organization": SimpleNamespace(type="COMMUNE"),
    }
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.mark.parametrize("criteria", [None, {}, {"search": "", "canton": "  ", "budgetMin": ""}])
def test_empty_criteria_match_everything(criteria):
    assert matches_saved_search_criteria(make_tender(), criteria)
    assert matches_saved_search_criteria(make_tender(budget=None, canton=None), criteria)


def test_budget_range_scenarios():
    criteria = {"budget_min": 10_000, "budget_max": 100_000}

    assert matches_saved_search_criteria(make_tender(budget=50_000), criteria)
    assert not matches_saved_search_criteria(make_tender(budget=5_000), criteria)
    assert not matches_saved_search_criteria(make_tender(budget=150_000), criteria)
    assert not matches_saved_search_criteria(make_tender(budget=None), criteria)


def test_budget_bounds_are_inclusive():
    criteria = {"budgetMin": 50_000, "budgetMax": 50_000}

    assert matches_saved_search_criteria(make_tender(budget=50_000), criteria)


def test_tender_without_budget_fails_any_bound():
    assert not matches_saved_search_criteria(make_tender(budget=None), {"budget_max": 1_000_000})
    assert not matches_saved_search_criteria(make_tender(budget=None), {"budget_min": 0})


def test_text_search_is_case_insensitive_on_title_or_description():
    assert matches_saved_search_criteria(make_tender(), {"search": "BELLEVUE"})
    assert matches_saved_search_criteria(make_tender(), {"search": "covering"})
    assert not matches_saved_search_criteria(make_tender(), {"search": "bridge"})


def test_exact_match_fields():
    tender = make_tender()

    assert matches_saved_search_criteria(tender, {"canton": "VD", "city": "Lausanne"})
    assert not matches_saved_search_criteria(tender, {"canton": "GE"})
    assert not matches_saved_search_criteria(tender, {"city": "lausanne"})
    assert matches_saved_search_criteria(tender, {"marketType": "CONSTRUCTION"})
    assert not matches_saved_search_criteria(tender, {"market_type": "SERVICES"})
    assert not matches_saved_search_criteria(tender, {"mode": "ANONYMOUS"})


def test_organization_type_from_organization_or_flat_field():
    assert matches_saved_search_criteria(make_tender(), {"organizationType": "COMMUNE"})
    assert not matches_saved_search_criteria(make_tender(), {"organization_type": "PRIVE"})

    flat = {"title": "x", "description": "y", "organization_type": "ENTREPRISE"}
    assert matches_saved_search_criteria(flat, {"organization_type": "ENTREPRISE"})


def test_all_present_criteria_must_hold():
    criteria = {"search": "roof", "canton": "VD", "market_type": "CONSTRUCTION", "budget_max": 40_000}

    assert not matches_saved_search_criteria(make_tender(), criteria)
    assert matches_saved_search_criteria(make_tender(budget=40_000), criteria)


def test_mapping_tender_and_enum_criteria():
    tender = {"title": "IT support", "description": "", "market_type": MarketType.IT_SERVICES, "budget": 10.0}

    assert matches_saved_search_criteria(tender, SavedSearchCriteria(market_type=MarketType.IT_SERVICES))


def test_unknown_keys_are_ignored():
    assert matches_saved_search_criteria(make_tender(), {"sortBy": "deadline", "canton": "VD"})


def test_invalid_budget_is_a_validation_error():
    with pytest.raises(ValidationError):
        parse_criteria({"budget_min": "lots"})


def test_criteria_storage_drops_absent_fields():
    criteria = parse_criteria({"budgetMin": "1000", "city": "", "search": "roof"})

    assert criteria.to_storage() == {"search": "roof", "budget_min": 1000.0}
    assert not criteria.is_empty()
    assert parse_criteria({"city": " "}).is_empty()


def test_matcher_is_available_on_service(service):
    assert service.matches_saved_search_criteria(make_tender(), {"canton": "VD"})
