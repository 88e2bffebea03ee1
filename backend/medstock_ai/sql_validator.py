"""
Allow-list check for generated SQL.

A static, schema-bound scan, not a parser. It accepts a single SELECT whose
every table, alias-qualified column and bare identifier is known. Anything
it cannot account for is reported as invalid and the caller falls back to
the predefined queries. The statement is never rewritten.

Steps:
1. strip string literals (standard and E''), dollar-quoted blocks and comments; unquote "identifiers"
2. require one statement starting with SELECT and no DML/DDL keyword
3. map FROM/JOIN table tokens (optionally schema-qualified, optionally aliased)
4. refuse * and alias.* wherever users is read (users.password is hidden)
5. check alias.column references against ALLOWED_COLUMNS
6. check remaining bare identifiers against keywords, aliases, output names
   and the column names of ALLOWED_COLUMNS
"""

import logging
import re
from typing import Dict, List, Set

from .intent_schema import SQLValidationResult

logger = logging.getLogger(__name__)

SCHEMA = {
    "users": (
        "id", "name", "email", "phone", "street", "city", "state", "postal_code", "country",
        "status", "registration_date", "license_number", "role", "created_by", "created_at", "updated_at",
    ),
    "drugs": (
        "id", "drug_type", "name", "batch_no", "description", "stock", "mfg_date", "exp_date",
        "price", "created_by", "category", "created_at", "updated_at",
    ),
    "orders": (
        "id", "order_no", "user_id", "recipient_id", "transaction_type", "notes", "total_amount",
        "created_at", "updated_at",
    ),
    "order_items": (
        "id", "order_id", "drug_id", "custom_name", "manufacturer_name", "quantity", "unit_price",
        "total_price", "source_type", "category", "batch_no", "seller_id", "status",
        "reserved_quantity", "created_at", "updated_at",
    ),
    "drug_types": ("id", "type_name", "created_at", "updated_at"),
    "drug_names": ("id", "type_id", "name", "created_at", "updated_at"),
    "daily_dispensing_summary": (
        "id", "drug_id", "quantity_dispensed", "dispensing_date", "category", "notes",
        "recorded_by", "created_at", "updated_at",
    ),
}

ALLOWED_TABLES = frozenset(SCHEMA)
ALLOWED_COLUMNS = frozenset(f"{table}.{col}" for table, cols in SCHEMA.items() for col in cols)
COLUMN_NAMES = frozenset(col for cols in SCHEMA.values() for col in cols)

FORBIDDEN_KEYWORDS = ("insert", "update", "delete", "drop", "alter", "create", "truncate")

SQL_KEYWORDS = frozenset("""
    select from where order by limit offset join left right inner outer full cross on using
    and or not group having as distinct case when then else end between in is null like ilike
    exists true false union all except intersect asc desc nulls first last any some
    interval current_date current_timestamp now
    count sum avg min max coalesce nullif lower upper trim length round floor ceil ceiling abs
    cast extract date_trunc date_part to_char age greatest least concat
    over partition filter row_number rank dense_rank
    date time timestamp integer int bigint numeric decimal text varchar char boolean float real
    day days month months year years week weeks hour hours minute minutes
""".split())

_LEXEME = re.compile(
    r"(?<!\w)[eE]'(?:''|\\.|[^'\\])*'"            # E'escape string'
    r"|'(?:''|[^'])*'"                            # 'string', backslash is literal
    r"|\$(?P<tag>(?:[A-Za-z_]\w*)?)\$.*?\$(?P=tag)\$"  # $$dollar$$ / $tag$dollar$tag$
    r"|--[^\n]*"                                # -- comment
    r"|/\*.*?\*/"                               # /* comment */
    r"|\"(?P<ident>[^\"]*)\"",                  # "quoted identifier"
    re.DOTALL,
)
_SIMPLE_IDENT = re.compile(r"^[A-Za-z_]\w*$")
_TABLE_REF = re.compile(r"\b(from|join)\s+([a-z_]\w*(?:\.[a-z_]\w*)?)(?:\s+(?:as\s+)?([a-z_]\w*))?")
_DERIVED_ALIAS = re.compile(r"\)\s*(?:as\s+)?([a-z_]\w*)")
_OUTPUT_NAME = re.compile(r"\bas\s+([a-z_]\w*)")
_QUALIFIED = re.compile(r"\b([a-z_]\w*)\.([a-z_]\w*)\b")
_IDENT = re.compile(r"\b([a-z_]\w*)\b")
# select-list wildcards; COUNT(*) is not one
_WILDCARD = re.compile(r"(?<!\()(?:\b([a-z_]\w*)\.)?\*(?!\))")


def _strip_literals(sql: str, invalid: Dict[str, None]) -> str:
    def replace(m: re.Match) -> str:
        ident = m.group("ident")
        if ident is None:
            return " "
        if _SIMPLE_IDENT.match(ident):
            return f" {ident} "
        invalid[f'"{ident}"'] = None
        return " "

    return _LEXEME.sub(replace, sql)


def _reject(reason: str, tokens: List[str] = None) -> SQLValidationResult:
    return SQLValidationResult(is_valid=False, reason=reason, invalid_tokens=tokens or [])


def validate_sql(sql: str) -> SQLValidationResult:
    """Check a generated statement against the allow-list."""
    if not sql or not sql.strip():
        return _reject("Empty query")

    invalid: Dict[str, None] = {}
    cleaned = _strip_literals(sql, invalid).strip().rstrip("; \t\r\n")
    if ";" in cleaned:
        return _reject("Multiple statements are not allowed")

    lower = cleaned.lower()
    if not re.match(r"select\b", lower):
        return _reject("Only SELECT statements are allowed")

    forbidden = [kw for kw in FORBIDDEN_KEYWORDS if re.search(rf"\b{kw}\b", lower)]
    if forbidden:
        return _reject(f"Forbidden keyword: {', '.join(k.upper() for k in forbidden)}")

    alias_map: Dict[str, str] = {}

    def take_table(m: re.Match) -> str:
        keyword, token, alias = m.group(1), m.group(2), m.group(3)
        table = token.split(".")[-1]
        if table not in ALLOWED_TABLES:
            invalid[token] = None
        alias_map[table] = table
        if alias and alias not in SQL_KEYWORDS:
            alias_map[alias] = table
            return f" {keyword} "
        return f" {keyword} {alias or ''} "

    body = _TABLE_REF.sub(take_table, lower)

    # users.password is not allow-listed, so neither is * over users
    if "users" in alias_map.values():
        for m in _WILDCARD.finditer(body):
            qualifier = m.group(1)
            if qualifier is None or alias_map.get(qualifier) == "users":
                invalid[f"{qualifier}.*" if qualifier else "*"] = None

    derived: Set[str] = {a for a in _DERIVED_ALIAS.findall(body) if a not in SQL_KEYWORDS}
    output_names: Set[str] = {a for a in _OUTPUT_NAME.findall(body) if a not in SQL_KEYWORDS}

    def check_qualified(m: re.Match) -> str:
        qualifier, column = m.group(1), m.group(2)
        table = alias_map.get(qualifier)
        if table is not None:
            ok = f"{table}.{column}" in ALLOWED_COLUMNS
        elif qualifier in derived:
            ok = column in COLUMN_NAMES or column in output_names
        else:
            ok = False
        if not ok:
            invalid[f"{qualifier}.{column}"] = None
        return " "

    body = _QUALIFIED.sub(check_qualified, body)

    for token in _IDENT.findall(body):
        if (token in SQL_KEYWORDS or token in alias_map or token in derived
                or token in output_names or token in COLUMN_NAMES):
            continue
        invalid[token] = None

    if invalid:
        tokens = list(invalid)
        logger.info(f"Generated SQL rejected, unknown identifiers: {tokens}")
        return _reject(f"Unknown tables or columns: {', '.join(tokens)}", tokens)

    return SQLValidationResult(is_valid=True)
