"""
SQL Safety

Deterministic checks and repairs applied to every generated statement,
whatever the model produced:

1. Shape: a single read-only statement (SELECT or WITH ... SELECT), no
   mutating, DDL or admin keywords, no second statement.
2. Tenant isolation: the tenant's id literal is present. A wrong or
   parameterised ``org_id`` value is rewritten in place; a missing filter
   is injected.
3. A LIMIT clause is present.
"""

import re

import sqlparse

from data_agent.models.agent import SQLSafetyError

AGENT_NAME = "SQLSafety"
DEFAULT_LIMIT = 100
TENANT_COLUMN = "org_id"

FORBIDDEN_KEYWORDS = (
    "insert",
    "update",
    "delete",
    "drop",
    "alter",
    "create",
    "truncate",
    "grant",
    "revoke",
    "execute",
    "copy",
)
FORBIDDEN_PATTERN = re.compile(rf"\b({'|'.join(FORBIDDEN_KEYWORDS)})\b", re.IGNORECASE)
READ_ONLY_TYPES = frozenset({"SELECT", "UNKNOWN"})

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")

_CODE_FENCE = re.compile(r"```(?:sql)?\s*([\s\S]*?)```", re.IGNORECASE)
_TRAILING_SEMICOLONS = re.compile(r"(\s*;)+\s*$")
_TENANT_CONDITION = re.compile(
    r"\b((?:\w+\.)?org_id)\s*=\s*('[^']*'|\$\d+|:\w+|%\(\w+\)s|%s|\?)",
    re.IGNORECASE,
)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_CLAUSE_AFTER_WHERE = re.compile(
    r"\b(GROUP\s+BY|ORDER\s+BY|LIMIT|HAVING|OFFSET|WINDOW|UNION|INTERSECT|EXCEPT)\b",
    re.IGNORECASE,
)
_CLAUSE_WITHOUT_WHERE = re.compile(r"\b(GROUP\s+BY|ORDER\s+BY|LIMIT|HAVING)\b", re.IGNORECASE)
_FROM_TABLE = re.compile(r"\bFROM\s+([A-Za-z_]\w*)(?:\s+(?:AS\s+)?([A-Za-z_]\w*))?", re.IGNORECASE)
_LIMIT = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_LIMIT_VALUE = re.compile(r"\bLIMIT\s+(\d+)", re.IGNORECASE)

_NOT_ALIASES = frozenset(
    {
        "where",
        "join",
        "inner",
        "left",
        "right",
        "full",
        "cross",
        "on",
        "group",
        "order",
        "limit",
        "having",
        "natural",
        "lateral",
        "union",
        "offset",
        "window",
    }
)


def validate_tenant_id(org_id: str) -> str:
    """
    Reject tenant ids that are not safe to embed as a SQL literal.

    Raises:
        ValueError: If the id is empty or contains anything other than
            letters, digits, hyphens and underscores
    """
    if not isinstance(org_id, str) or not TENANT_ID_PATTERN.match(org_id):
        raise ValueError(f"Invalid tenant id: {org_id!r}")
    return org_id


def extract_sql(text: str) -> str:
    """Raw SQL from a model response: code fences and trailing semicolons removed."""
    sql = text.strip()
    fence = _CODE_FENCE.search(sql)
    if fence:
        sql = fence.group(1).strip()
    return _TRAILING_SEMICOLONS.sub("", sql).strip()


def validate_sql(sql: str) -> None:
    """
    Reject anything that is not a single read-only statement.

    Raises:
        SQLSafetyError: On a wrong statement type, a forbidden keyword, or
            more than one statement
    """
    stripped = sql.strip()
    lowered = stripped.lower()
    if not (lowered.startswith("select") or lowered.startswith("with")):
        raise SQLSafetyError(
            AGENT_NAME,
            f"Generated SQL must start with SELECT or WITH. Got: {stripped[:50]}",
            context={"check": "statement_type"},
        )

    match = FORBIDDEN_PATTERN.search(stripped)
    if match:
        raise SQLSafetyError(
            AGENT_NAME,
            f"Generated SQL contains forbidden keyword: {match.group(1).upper()}",
            context={"check": "forbidden_keyword", "keyword": match.group(1).lower()},
        )

    if ";" in _TRAILING_SEMICOLONS.sub("", stripped):
        raise SQLSafetyError(
            AGENT_NAME,
            "Generated SQL contains multiple statements",
            context={"check": "multiple_statements"},
        )

    statements = [s for s in sqlparse.parse(stripped) if s.token_first(skip_cm=True)]
    if len(statements) != 1:
        raise SQLSafetyError(
            AGENT_NAME,
            "Generated SQL must be exactly one statement",
            context={"check": "multiple_statements"},
        )
    statement_type = statements[0].get_type()
    if statement_type not in READ_ONLY_TYPES:
        raise SQLSafetyError(
            AGENT_NAME,
            f"Only SELECT statements are allowed, found: {statement_type}",
            context={"check": "statement_type", "type": statement_type},
        )


def has_tenant_literal(sql: str, org_id: str) -> bool:
    """True when an ``org_id`` column is compared with exactly this tenant's literal."""
    pattern = rf"\b(?:\w+\.)?{TENANT_COLUMN}\s*=\s*'{re.escape(org_id)}'"
    return re.search(pattern, sql, re.IGNORECASE) is not None


def _top_level_positions(sql: str) -> list[bool]:
    """For each character: True when it sits outside parentheses and string literals."""
    flags: list[bool] = []
    depth = 0
    in_string = False
    for char in sql:
        if in_string:
            flags.append(False)
            if char == "'":
                in_string = False
            continue
        if char == "'":
            in_string = True
            flags.append(False)
        elif char == "(":
            depth += 1
            flags.append(False)
        elif char == ")":
            depth = max(depth - 1, 0)
            flags.append(False)
        else:
            flags.append(depth == 0)
    return flags


def _find_top_level(pattern: re.Pattern, sql: str, flags: list[bool], start: int = 0):
    for match in pattern.finditer(sql, start):
        if flags[match.start()]:
            return match
    return None


def _tenant_qualifier(sql: str, flags: list[bool]) -> str:
    """``alias.`` of the primary (first top-level FROM) table, or an empty string."""
    match = _find_top_level(_FROM_TABLE, sql, flags)
    if not match:
        return ""
    alias = match.group(2)
    if alias and alias.lower() not in _NOT_ALIASES:
        return f"{alias}."
    return f"{match.group(1)}."


def ensure_org_id_filter(sql: str, org_id: str) -> str:
    """
    Guarantee the statement compares ``org_id`` with the tenant literal.

    1. ``org_id`` already compared with a literal or a bind parameter: every
       such value is rewritten to the tenant literal, so a statement already
       scoped to this tenant comes back unchanged.
    2. Top-level WHERE: the filter is ANDed in front of the existing
       condition, which is parenthesised so OR branches stay scoped.
    3. No top-level WHERE: one is added before GROUP BY, ORDER BY, LIMIT
       or HAVING, or appended at the end.

    The id appearing anywhere else, such as inside a LIKE pattern, is not a filter.
    """
    literal = f"'{org_id}'"
    if _TENANT_CONDITION.search(sql):
        return _TENANT_CONDITION.sub(
            lambda m: m.group(0) if m.group(2) == literal else f"{m.group(1)} = {literal}", sql
        )

    flags = _top_level_positions(sql)
    condition = f"{_tenant_qualifier(sql, flags)}{TENANT_COLUMN} = {literal}"

    where = _find_top_level(_WHERE, sql, flags)
    if where:
        body_start = where.end()
        clause = _find_top_level(_CLAUSE_AFTER_WHERE, sql, flags, body_start)
        body_end = clause.start() if clause else len(sql)
        body = sql[body_start:body_end].strip()
        rest = sql[body_end:]
        rebuilt = f"{sql[:body_start]} {condition} AND ({body})"
        return f"{rebuilt} {rest.lstrip()}".rstrip() if rest.strip() else rebuilt

    clause = _find_top_level(_CLAUSE_WITHOUT_WHERE, sql, flags)
    if clause:
        return f"{sql[:clause.start()].rstrip()} WHERE {condition} {sql[clause.start():]}"

    return f"{sql.rstrip()} WHERE {condition}"


def ensure_limit(sql: str, limit: int = DEFAULT_LIMIT) -> str:
    if _LIMIT.search(sql):
        return sql
    return f"{sql.rstrip()} LIMIT {limit}"


def get_limit(sql: str) -> int | None:
    """Value of the last literal LIMIT in the statement, if any."""
    values = _LIMIT_VALUE.findall(sql)
    return int(values[-1]) if values else None


def secure_sql(sql: str, org_id: str, limit: int = DEFAULT_LIMIT) -> str:
    """Validate shape, then repair tenant isolation and the row limit."""
    validate_sql(sql)
    return ensure_limit(ensure_org_id_filter(sql, org_id), limit)
