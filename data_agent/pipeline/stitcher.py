"""
Result Stitcher

Merges the results of a decomposed plan's sub-queries into one QueryResult.
Pure code: no LLM, no database.

Strategies:
- merge_columns: left join on the stitch key; anchor columns win, unmatched
  rows simply lack the extra columns.
- nested: each anchor row gets an array of its matching child rows.
- append_rows: concatenation, each row tagged with its sub-query id.

Failed sub-queries contribute no rows but are kept in ``sub_results``.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence

from pydantic import BaseModel

from data_agent.models.plan import StitchStrategy, SubQuery
from data_agent.models.result import QueryResult
from data_agent.models.rows import Row

logger = logging.getLogger(__name__)

SOURCE_COLUMN = "_source_query"


class SubQueryResult(BaseModel):
    """The result of one executed sub-query."""

    id: str
    result: QueryResult
    sub_query: SubQuery


def nested_label(sub_query_id: str) -> str:
    """Name of the array column holding a sub-query's rows under each anchor row."""
    return f"_{sub_query_id}_data"


def stitch(
    sub_results: Sequence[SubQueryResult],
    strategy: StitchStrategy = "merge_columns",
    stitch_key: str = "id",
) -> QueryResult:
    """
    Stitch sub-query results into a single result.

    A single sub-result is returned as is (the same object). Failed
    sub-results contribute no rows but stay in ``sub_results``, each with an
    error; if every one failed, the failure carries all of their errors.

    The first sub-result is the anchor, keyed by ``stitch_key``. When it
    failed, the first successful dependent takes over, keyed by its own
    ``join_key`` since it may not have the anchor's column.
    """
    if not sub_results:
        return _failed("No sub-query results to stitch")

    if len(sub_results) == 1:
        return sub_results[0].result

    successful = [sr for sr in sub_results if sr.result.success]
    if not successful:
        errors = "; ".join(f"{sr.id}: {sr.result.error}" for sr in sub_results if sr.result.error)
        return _failed(f"All sub-queries failed: {errors}")

    anchor_key = stitch_key
    if len(successful) < len(sub_results):
        logger.warning(
            f"Stitching {len(successful)}/{len(sub_results)} successful sub-queries",
            extra={"failed": [sr.id for sr in sub_results if not sr.result.success]},
        )
        if successful[0] is not sub_results[0]:
            anchor_key = successful[0].sub_query.join_key or stitch_key
            logger.warning(
                f"Anchor {sub_results[0].id} failed, re-anchoring on {successful[0].id} "
                f"by {anchor_key}"
            )

    if strategy == "nested":
        rows = _nest(successful, stitch_key, anchor_key)
    elif strategy == "append_rows":
        rows = _append(successful)
    else:
        rows = _merge_columns(successful, stitch_key, anchor_key)

    if rows is None:
        return _empty_anchor(successful[0], sub_results, stitch_key)
    return _combined(sub_results, rows, None if strategy == "append_rows" else stitch_key)


def _merge_columns(
    sub_results: Sequence[SubQueryResult], stitch_key: str, anchor_key: str
) -> list[Row] | None:
    anchor = sub_results[0]
    if not anchor.result.data:
        return None

    lookups: list[dict[str, Row]] = []
    for sr in sub_results[1:]:
        lookup: dict[str, Row] = {}
        for row in sr.result.data:
            key = _key(row, sr.sub_query.join_key or stitch_key)
            if key:
                lookup[key] = row
        lookups.append(lookup)

    merged = []
    for anchor_row in anchor.result.data:
        key = _key(anchor_row, anchor_key)
        row = anchor_row
        for lookup in lookups:
            match = lookup.get(key)
            if match is not None:
                row = row.with_columns(match)
        merged.append(row)
    return merged


def _nest(
    sub_results: Sequence[SubQueryResult], stitch_key: str, anchor_key: str
) -> list[Row] | None:
    anchor = sub_results[0]
    if not anchor.result.data:
        return None

    children: list[tuple[str, dict[str, list[dict]]]] = []
    for sr in sub_results[1:]:
        join_key = sr.sub_query.join_key or stitch_key
        groups: dict[str, list[dict]] = defaultdict(list)
        for row in sr.result.data:
            key = _key(row, join_key)
            if key:
                groups[key].append(row.without(join_key).to_dict())
        children.append((nested_label(sr.id), groups))

    nested = []
    for anchor_row in anchor.result.data:
        key = _key(anchor_row, anchor_key)
        row = anchor_row
        for label, groups in children:
            row = row.with_value(label, list(groups.get(key, [])))
        nested.append(row)
    return nested


def _append(sub_results: Sequence[SubQueryResult]) -> list[Row]:
    return [
        row.with_value(SOURCE_COLUMN, sr.id) for sr in sub_results for row in sr.result.data
    ]


def _key(row: Row, column: str) -> str:
    value = row.get(column)
    return "" if value is None else str(value)


def _audit(sub_results: Sequence[SubQueryResult]) -> list[QueryResult]:
    """Every sub-result, failed ones guaranteed to carry an error."""
    audited = []
    for sr in sub_results:
        result = sr.result
        if not result.success and not result.error:
            result = result.model_copy(update={"error": f"Sub-query {sr.id} failed"})
        audited.append(result)
    return audited


def _combined(
    sub_results: Sequence[SubQueryResult], rows: list[Row], stitch_key: str | None
) -> QueryResult:
    sql_parts = []
    for sr in sub_results:
        header = f"-- {sr.id}" if sr.result.success else f"-- {sr.id} (failed)"
        sql_parts.append(f"{header}\n{sr.result.sql}")
    return QueryResult(
        success=True,
        sql="\n\n".join(sql_parts),
        data=rows,
        row_count=len(rows),
        execution_time_ms=sum(sr.result.execution_time_ms for sr in sub_results),
        sub_results=_audit(sub_results),
        stitch_key=stitch_key,
    )


def _empty_anchor(
    anchor: SubQueryResult, sub_results: Sequence[SubQueryResult], stitch_key: str
) -> QueryResult:
    return anchor.result.model_copy(
        update={"sub_results": _audit(sub_results), "stitch_key": stitch_key}
    )


def _failed(error: str) -> QueryResult:
    return QueryResult.failure(f"Unable to complete analysis: {error}", error=error)
