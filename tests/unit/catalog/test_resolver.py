"""Unit tests for column reference resolution."""

import pytest

from askdash.catalog.resolver import AmbiguousColumn, ColumnNotFound, ColumnRef, resolve_column_ref


def test_qualified_reference(ads_schema):
    ref = resolve_column_ref(ads_schema, "performance_metrics.revenue", set())
    assert ref == ColumnRef("performance_metrics", "revenue")
    assert ref.qualified == "performance_metrics.revenue"


def test_bare_reference_prefers_tables_in_scope(ads_schema):
    ref = resolve_column_ref(ads_schema, "advertiser_id", {"campaigns"})
    assert ref.table == "campaigns"


def test_bare_reference_searches_schema(ads_schema):
    ref = resolve_column_ref(ads_schema, "advertiser_name", {"performance_metrics"})
    assert ref == ColumnRef("advertisers", "advertiser_name")


def test_schema_search_can_be_disabled(ads_schema):
    with pytest.raises(ColumnNotFound):
        resolve_column_ref(ads_schema, "advertiser_name", {"campaigns"}, search_schema=False)


def test_ambiguous_reference(ads_schema):
    with pytest.raises(AmbiguousColumn) as exc_info:
        resolve_column_ref(ads_schema, "campaign_id", {"campaigns", "performance_metrics"})
    assert exc_info.value.candidates == ["campaigns", "performance_metrics"]


def test_case_insensitive(ads_schema):
    ref = resolve_column_ref(ads_schema, "Performance_Metrics.Revenue", set())
    assert ref == ColumnRef("performance_metrics", "revenue")


@pytest.mark.parametrize("reference", ["nope", "advertisers.nope", "nope.revenue"])
def test_unknown_reference(ads_schema, reference):
    with pytest.raises(ColumnNotFound):
        resolve_column_ref(ads_schema, reference, {"advertisers"})
