"""Unit tests for the static SQL inspection helpers."""

import pytest

from askdash.agents.sql_inspection import (
    count_joins,
    extract_tables,
    find_denylisted,
    inject_predicate,
    is_read_only_sql,
    main_statement_keyword,
    mask_literals,
    split_statements,
    strip_comments,
    table_qualifiers,
    top_level_limit,
)


class TestMaskLiterals:
    def test_preserves_length(self):
        sql = "SELECT 'a -- b' FROM t -- trailing\n/* block */"
        masked = mask_literals(sql)
        assert len(masked) == len(sql)
        assert "--" not in masked
        assert "block" not in masked

    def test_escaped_quote(self):
        assert "DROP" not in mask_literals("SELECT 'it''s DROP' FROM t")


class TestReadOnly:
    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT 1",
            "select * from campaigns limit 5",
            "WITH c AS (SELECT * FROM campaigns) SELECT * FROM c LIMIT 5",
            "SELECT 'DELETE' FROM campaigns LIMIT 1",
        ],
    )
    def test_read_only(self, sql):
        assert is_read_only_sql(sql)

    @pytest.mark.parametrize(
        "sql",
        [
            "UPDATE campaigns SET campaign_name = 'x'",
            "SELECT 1; SELECT 2",
            "SELECT pg_sleep(10)",
            "CREATE TABLE t (id int)",
            "",
        ],
    )
    def test_not_read_only(self, sql):
        assert not is_read_only_sql(sql)


def test_split_statements_drops_empty_pieces():
    assert split_statements("SELECT 1;;  -- done") == ["SELECT 1;"]


def test_find_denylisted_uses_word_boundaries():
    assert find_denylisted("SELECT updated_at FROM t") == []
    assert find_denylisted("SELECT 1; drop table t") == ["DROP"]


def test_main_statement_keyword_for_cte():
    assert main_statement_keyword("WITH x AS (SELECT 1) SELECT * FROM x") == "SELECT"
    assert main_statement_keyword("INSERT INTO t VALUES (1)") == "INSERT"


def test_extract_tables():
    sql = (
        "WITH recent AS (SELECT * FROM performance_metrics) "
        "SELECT * FROM ads.advertisers a JOIN campaigns c ON a.advertiser_id = c.advertiser_id "
        "JOIN recent r ON r.campaign_id = c.campaign_id LIMIT 5"
    )
    assert extract_tables(sql) == {"performance_metrics", "advertisers", "campaigns"}


class TestTopLevelLimit:
    def test_literal(self):
        assert top_level_limit("SELECT 1 FROM t LIMIT 25") == (True, 25)

    def test_missing(self):
        assert top_level_limit("SELECT 1 FROM t") == (False, None)

    def test_fetch_first(self):
        assert top_level_limit("SELECT 1 FROM t FETCH FIRST 10 ROWS ONLY") == (True, 10)

    def test_limit_in_literal_ignored(self):
        assert top_level_limit("SELECT 'LIMIT 5' FROM t") == (False, None)


def test_count_joins():
    assert count_joins("SELECT 1 FROM a JOIN b ON a.x = b.x JOIN c ON b.y = c.y") == 2
    assert count_joins("SELECT 1 FROM a, b") == 1
    assert count_joins("SELECT 1 FROM a") == 0


def test_table_qualifiers():
    assert table_qualifiers("SELECT 1 FROM advertisers a LIMIT 1", "advertisers") == ["a"]
    assert table_qualifiers("SELECT 1 FROM advertisers WHERE x = 1", "advertisers") == [
        "advertisers"
    ]
    assert table_qualifiers("SELECT 1 FROM (SELECT * FROM advertisers) s", "advertisers") == []
    assert table_qualifiers(
        "SELECT a.x, b.x FROM advertisers a JOIN ads.advertisers AS b ON a.id = b.id", "advertisers"
    ) == ["a", "b"]
    assert table_qualifiers("SELECT 1 FROM campaigns c, advertisers", "advertisers") == [
        "advertisers"
    ]
    assert table_qualifiers(
        "SELECT c.name, advertisers.name FROM campaigns c JOIN advertisers ON c.id = 1",
        "advertisers",
    ) == ["advertisers"]


class TestInjectPredicate:
    def test_and_into_existing_where(self):
        result = inject_predicate("SELECT * FROM t WHERE a = 1 LIMIT 5", "b = 2")
        assert result == "SELECT * FROM t WHERE (b = 2) AND (a = 1) LIMIT 5"

    def test_where_inserted_before_group_by(self):
        result = inject_predicate("SELECT a, COUNT(*) FROM t GROUP BY a LIMIT 5", "b = 2")
        assert result == "SELECT a, COUNT(*) FROM t WHERE b = 2 GROUP BY a LIMIT 5"

    def test_where_appended(self):
        assert inject_predicate("SELECT * FROM t;", "b = 2") == "SELECT * FROM t WHERE b = 2"


def test_strip_comments():
    stripped = strip_comments("SELECT x FROM t -- note\nWHERE y = 1 /* block */ LIMIT 5")

    assert "--" not in stripped
    assert "/*" not in stripped
    assert "WHERE y = 1" in stripped
    assert stripped.endswith("LIMIT 5")
    assert "'a -- b'" in strip_comments("SELECT 'a -- b' FROM t")
