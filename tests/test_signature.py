"""
Unit Tests for Query Signatures
"""
import hashlib

from query_accelerator.acceleration.signature import normalize_sql, signature, sql_hash


class TestNormalizeSql:

    def test_case_and_whitespace_collapse(self):
        assert normalize_sql("SELECT  a ,\n\tb FROM   T") == "select a,b from t"

    def test_trailing_semicolons_dropped(self):
        assert normalize_sql("select 1;;") == "select 1"

    def test_comments_and_hints_removed(self):
        sql = "/*+ engine=olap */ select a -- trailing note\nfrom t"
        assert normalize_sql(sql) == "select a from t"

    def test_quoted_literals_keep_case(self):
        assert normalize_sql("SELECT * FROM t WHERE name = 'Bob  Smith'") == \
            "select * from t where name='Bob  Smith'"

    def test_apostrophe_inside_comment_is_not_a_literal(self):
        assert normalize_sql("SELECT A -- it's the total\nFROM T WHERE B = 1") == "select a from t where b=1"
        assert normalize_sql("SELECT A /* don't cache */ FROM T") == "select a from t"

    def test_comment_markers_inside_literals_are_kept(self):
        assert normalize_sql("SELECT '--Keep' AS A, '/*X*/' FROM T") == "select '--Keep' as a,'/*X*/' from t"


class TestSignature:

    def test_equal_for_formatting_variants(self):
        a = "SELECT region, SUM(amount) FROM sales GROUP BY region"
        b = "select region ,sum( amount )\n  from sales\n group by region ;"
        assert signature(a) == signature(b)

    def test_hinted_query_matches_plain(self):
        assert signature("/*+ engine=olap */ select * from t") == signature("select * from t")

    def test_differs_for_different_literals(self):
        assert signature("select * from t where name = 'a'") != signature("select * from t where name = 'A'")

    def test_differs_for_different_queries(self):
        assert signature("select a from t") != signature("select b from t")

    def test_stable_sha1_hex(self):
        sig = signature("select 1")
        assert sig == signature("select 1")
        assert len(sig) == 40
        assert sig == hashlib.sha1(b"select 1").hexdigest()


def test_sql_hash_uses_raw_text():
    assert sql_hash("SELECT 1") == hashlib.sha1(b"SELECT 1").hexdigest()
    assert sql_hash("SELECT 1") != sql_hash("select 1")
