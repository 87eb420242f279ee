from datetime import datetime, timedelta, timezone

import pytest

from advisor_core.agents.context_assembler import ContextAssembler, recency_label
from advisor_core.domain.context import RequestContext
from advisor_core.domain.exceptions import ContextUnavailable, RequestCancelled
from advisor_core.domain.health import LabResultRecord, MealRecord, SymptomRecord

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _meal(i, hours_ago):
    return MealRecord(description=f"meal {i}", meal_type="lunch", recorded_at=NOW - timedelta(hours=hours_ago))


@pytest.mark.parametrize(
    "delta, label",
    [
        (timedelta(minutes=5), "just now"),
        (timedelta(hours=1, minutes=10), "1 hour ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(hours=30), "yesterday"),
        (timedelta(days=4, hours=2), "4 days ago"),
        (timedelta(minutes=-10), "just now"),
    ],
)
def test_recency_label(delta, label):
    assert recency_label(NOW - delta, NOW) == label


def test_caps_each_category(static_health):
    records = {"meal": [_meal(i, i) for i in range(8)]}
    provider = static_health(records)
    block = ContextAssembler(provider, cap_per_category=5, clock=lambda: NOW).build("u1", RequestContext())
    assert len(block.recent_meals) == 5
    assert [m.description for m in block.recent_meals] == [f"meal {i}" for i in range(5)]
    assert block.text.count("\n- ") == 5
    assert provider.calls == [("u1", "meal", 5), ("u1", "labResult", 5), ("u1", "symptom", 5)]


def test_renders_sections_in_fixed_order(static_health):
    records = {
        "symptom": [
            SymptomRecord(
                description="Headache", severity="mild", duration="2 hours", recorded_at=NOW - timedelta(minutes=20)
            )
        ],
        "labResult": [
            LabResultRecord(
                test_type="Lipid panel",
                results={"ldl": 130, "hdl": 50},
                notes="fasting",
                recorded_at=NOW - timedelta(days=4, hours=1),
            )
        ],
        "meal": [MealRecord(description="Oatmeal", meal_type="breakfast", recorded_at=NOW - timedelta(hours=26))],
    }
    block = ContextAssembler(static_health(records), clock=lambda: NOW).build("u1", RequestContext())
    assert block.text == (
        "Recent meals:\n"
        "- yesterday: Oatmeal (breakfast)\n\n"
        "Recent lab results:\n"
        '- 4 days ago: Lipid panel - {"hdl": 50, "ldl": 130} (notes: fasting)\n\n'
        "Recent symptoms:\n"
        "- just now: Headache (Severity: mild, Duration: 2 hours)"
    )
    assert not block.degraded


def test_empty_categories_are_omitted(static_health):
    records = {"symptom": [SymptomRecord(description="Fatigue", severity="moderate", recorded_at=NOW)]}
    block = ContextAssembler(static_health(records), clock=lambda: NOW).build("u1", RequestContext())
    assert "Recent meals" not in block.text
    assert block.text.startswith("Recent symptoms:")


def test_no_records_gives_empty_block(static_health):
    block = ContextAssembler(static_health({}), clock=lambda: NOW).build("u1", RequestContext())
    assert block.is_empty
    assert not block.degraded


def test_provider_failure_degrades_to_empty(static_health):
    provider = static_health(error=ContextUnavailable(code="HEALTH_DOWN", message="down"))
    block = ContextAssembler(provider, clock=lambda: NOW).build("u1", RequestContext())
    assert block.is_empty
    assert block.degraded
    assert block.recent_meals == []


def test_cancelled_context_stops_assembly(static_health):
    ctx = RequestContext()
    ctx.cancel()
    provider = static_health({})
    with pytest.raises(RequestCancelled):
        ContextAssembler(provider).build("u1", ctx)
    assert provider.calls == []


@pytest.mark.parametrize(
    "records",
    [
        {"meal": [{"description": "eggs"}]},
        {"symptom": [_meal(1, 2)]},
        {"meal": [MealRecord(description="eggs", meal_type="breakfast", recorded_at="this morning")]},
    ],
)
def test_unrenderable_records_degrade_to_empty(static_health, records):
    block = ContextAssembler(static_health(records), clock=lambda: NOW).build("u1", RequestContext())
    assert block.degraded
    assert block.is_empty
    assert block.text == ""
