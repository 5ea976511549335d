"""Unit tests for building catalog schemas from introspection results."""

from askdash.catalog.introspection import build_database_schema
from askdash.connectors.base import ColumnInfo, TableInfo
from askdash.models.catalog import RowSecurityRule


def _tables():
    return [
        TableInfo(
            schema="public",
            table_name="campaigns",
            columns=[
                ColumnInfo(name="campaign_id", data_type="integer", is_primary_key=True),
                ColumnInfo(
                    name="advertiser_id",
                    data_type="integer",
                    is_foreign_key=True,
                    foreign_table="advertisers",
                    foreign_column="advertiser_id",
                ),
                ColumnInfo(
                    name="owner_id",
                    data_type="integer",
                    is_foreign_key=True,
                    foreign_table="users",
                    foreign_column="user_id",
                ),
            ],
        ),
        TableInfo(
            schema="public",
            table_name="advertisers",
            columns=[
                ColumnInfo(name="advertiser_id", data_type="integer", is_primary_key=True),
                ColumnInfo(name="advertiser_name", data_type="text"),
            ],
        ),
    ]


def test_tables_and_columns():
    schema = build_database_schema(_tables())

    assert list(schema.tables) == ["advertisers", "campaigns"]
    assert schema.tables["advertisers"] == {"advertiser_id": "integer", "advertiser_name": "text"}


def test_foreign_keys_become_relationships():
    schema = build_database_schema(_tables())

    assert len(schema.relationships) == 1
    relationship = schema.relationships[0]
    assert (relationship.from_table, relationship.to_table) == ("campaigns", "advertisers")


def test_curated_metadata_carried_over():
    schema = build_database_schema(
        _tables(),
        glossary={"spend": "SUM(cost)"},
        known_values={"advertisers.advertiser_name": ["Toyota"]},
        row_security=[
            RowSecurityRule(table="advertisers", column="advertiser_id", scope="advertiser")
        ],
    )

    assert schema.glossary == {"spend": "SUM(cost)"}
    assert schema.known_values_for("advertisers", "advertiser_name") == ["Toyota"]
    assert schema.security_rules_for("advertisers")[0].scope == "advertiser"
