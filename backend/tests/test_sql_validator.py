"""Allow-list validation of generated SQL."""
import pytest

from medstock_ai.sql_validator import validate_sql


@pytest.mark.parametrize("sql", [
    "SELECT name, stock FROM drugs WHERE stock < 5 LIMIT 20",
    "SELECT d.name, u.name FROM drugs d JOIN users u ON d.created_by = u.id LIMIT 20",
    "SELECT o.order_no, oi.status FROM orders AS o INNER JOIN order_items oi ON oi.order_id = o.id",
    "SELECT COUNT(*) AS total FROM orders",
    "SELECT * FROM public.drugs LIMIT 20;",
    "SELECT updated_at, created_at FROM drugs ORDER BY updated_at DESC",
    "SELECT name FROM drugs WHERE name = 'DROP TABLE drugs'",
    "SELECT name FROM drugs WHERE name = $tag$x; DELETE$tag$",
    "SELECT \"name\" FROM \"drugs\" LIMIT 5",
    "SELECT name FROM drugs -- ; DROP TABLE drugs",
    "SELECT x.total FROM (SELECT COUNT(*) AS total FROM drugs) x",
    "SELECT d.stock, d.name FROM drugs d WHERE d.id = 1 LIMIT 20",
    "SELECT d.* FROM drugs d JOIN users u ON d.created_by = u.id",
    "SELECT name FROM drugs WHERE name = E'it\\'s'",
    "SELECT category, SUM(quantity_dispensed) FROM daily_dispensing_summary "
    "WHERE dispensing_date >= CURRENT_DATE - INTERVAL '7 days' GROUP BY category",
])
def test_accepts_allow_listed_selects(sql):
    result = validate_sql(sql)

    assert result.is_valid, result.reason
    assert result.invalid_tokens == []


def test_rejects_empty():
    assert validate_sql("   ").reason == "Empty query"


def test_rejects_non_select():
    result = validate_sql("DELETE FROM drugs")

    assert not result.is_valid
    assert result.reason == "Only SELECT statements are allowed"


def test_rejects_multiple_statements():
    result = validate_sql("SELECT * FROM drugs; DROP TABLE users")

    assert result.reason == "Multiple statements are not allowed"


def test_rejects_forbidden_keyword_inside_select():
    result = validate_sql("SELECT * FROM drugs WHERE id IN (SELECT id FROM drugs) OR 1 = (UPDATE drugs SET stock = 0)")

    assert not result.is_valid
    assert result.reason.startswith("Forbidden keyword: UPDATE")


def test_rejects_unknown_table():
    result = validate_sql("SELECT id FROM users WHERE 1 = 1 UNION SELECT id FROM secrets")

    assert not result.is_valid
    assert result.invalid_tokens == ["secrets"]


def test_rejects_password_column():
    result = validate_sql("SELECT email, password FROM users")

    assert not result.is_valid
    assert "password" in result.invalid_tokens


def test_rejects_unknown_qualified_column():
    result = validate_sql("SELECT d.secret FROM drugs d")

    assert result.invalid_tokens == ["d.secret"]


def test_rejects_quoted_function_name():
    result = validate_sql('SELECT "pg_sleep"(10) FROM drugs')

    assert not result.is_valid
    assert "pg_sleep" in result.invalid_tokens


def test_rejects_unknown_function():
    result = validate_sql("SELECT pg_read_file('/etc/passwd')")

    assert result.invalid_tokens == ["pg_read_file"]


def test_never_rewrites_input():
    sql = "SELECT name FROM drugs"

    validate_sql(sql)

    assert sql == "SELECT name FROM drugs"


def test_rejects_unknown_column_on_alias():
    result = validate_sql("SELECT o.order_id FROM orders o LIMIT 20")

    assert not result.is_valid
    assert result.invalid_tokens == ["o.order_id"]


def test_rejects_drop_table():
    result = validate_sql("DROP TABLE drugs")

    assert not result.is_valid
    assert result.reason == "Only SELECT statements are allowed"


def test_backslash_does_not_escape_a_standard_string():
    # 'x\' ends at the second quote; the UNION that follows is real SQL
    result = validate_sql("SELECT name FROM drugs WHERE name = 'x\\' UNION SELECT password FROM users --'")

    assert not result.is_valid
    assert "password" in result.invalid_tokens


def test_backslash_hides_nothing_after_a_standard_string():
    result = validate_sql("SELECT name FROM drugs WHERE name = 'x\\'; DROP TABLE drugs --'")

    assert not result.is_valid


@pytest.mark.parametrize("sql, token", [
    ("SELECT * FROM users", "*"),
    ("SELECT u.* FROM users u", "u.*"),
    ("SELECT d.name, u.* FROM drugs d JOIN users AS u ON d.created_by = u.id", "u.*"),
    ("SELECT * FROM drugs d JOIN users u ON d.created_by = u.id", "*"),
])
def test_rejects_wildcards_over_users(sql, token):
    result = validate_sql(sql)

    assert not result.is_valid
    assert token in result.invalid_tokens


def test_count_star_over_users_is_allowed():
    result = validate_sql("SELECT COUNT(*) AS total FROM users WHERE role = 'institute'")

    assert result.is_valid, result.reason
