"""Product store backed by an Elasticsearch index."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from elasticsearch import Elasticsearch, helpers

from .products import SEARCH_FIELD_WEIGHTS, BatchOperation
from .store import BulkResult, PatternQuery, SkuQuery, SortOrder, StoreQuery, TextQuery, document_id

logger = logging.getLogger(__name__)

TEXT_FIELDS = [f"{field}^{weight}" for field, weight in SEARCH_FIELD_WEIGHTS.items()]
# index.max_result_window; from + size may not exceed it.
MAX_WINDOW = 10_000
TITLE_SORT = [{"title.raw": {"order": "asc", "missing": "_last"}}]


def _escape_wildcard(token: str) -> str:
    return token.replace("\\", "\\\\").replace("*", "\\*").replace("?", "\\?")


def build_text_query(query: TextQuery) -> dict:
    return {
        "multi_match": {
            "query": query.text,
            "fields": TEXT_FIELDS,
            "type": "most_fields",
            "operator": "or",
        }
    }


def build_pattern_query(query: PatternQuery) -> dict:
    # Each field must hold every token; any field may match.
    tokens = query.tokens or (query.text,)
    should = []
    for field in query.fields:
        must = [
            {"wildcard": {f"{field}.raw": {"value": f"*{_escape_wildcard(token)}*", "case_insensitive": True}}}
            for token in tokens
        ]
        should.append({"bool": {"must": must}})
    return {"bool": {"should": should, "minimum_should_match": 1}}


def build_query(query: StoreQuery) -> dict:
    if isinstance(query, SkuQuery):
        return {"term": {"sku.raw": query.sku}}
    if isinstance(query, PatternQuery):
        return build_pattern_query(query)
    return build_text_query(query)


def build_bulk_actions(index: str, operations: Iterable[BatchOperation]) -> Iterable[Dict[str, Any]]:
    for operation in operations:
        yield {
            "_op_type": "update",
            "_index": index,
            "_id": document_id(operation.filter),
            "doc": {**operation.filter, **operation.patch},
            "doc_as_upsert": True,
        }


def build_search_params(
    index: str,
    query: StoreQuery,
    *,
    skip: int = 0,
    limit: Optional[int] = None,
    sort: SortOrder = "relevance",
) -> Optional[Dict[str, Any]]:
    """Keyword arguments for ``es.search``, or ``None`` past the result window."""
    if skip >= MAX_WINDOW:
        return None
    room = MAX_WINDOW - skip
    params: Dict[str, Any] = {
        "index": index,
        "query": build_query(query),
        "from_": skip,
        "size": room if limit is None else min(limit, room),
        "track_total_hits": False,
    }
    if sort == "title":
        params["sort"] = TITLE_SORT
    return params


def _hit_to_document(hit: dict, with_score: bool) -> Dict[str, Any]:
    document = {**hit.get("_source", {}), "id": hit.get("_id")}
    if with_score:
        document["score"] = hit.get("_score")
    return document


class ElasticsearchProductStore:
    def __init__(self, es: Elasticsearch, index: str) -> None:
        self.es = es
        self.index = index

    async def find(
        self,
        query: StoreQuery,
        *,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: SortOrder = "relevance",
    ) -> List[Dict[str, Any]]:
        params = build_search_params(self.index, query, skip=skip, limit=limit, sort=sort)
        if params is None:
            return []
        response = await asyncio.to_thread(self.es.search, **params)
        hits = response.get("hits", {}).get("hits", [])
        with_score = sort == "relevance" and isinstance(query, TextQuery)
        return [_hit_to_document(hit, with_score) for hit in hits]

    async def count(self, query: StoreQuery) -> int:
        response = await asyncio.to_thread(self.es.count, index=self.index, query=build_query(query))
        return int(response.get("count", 0))

    def _bulk(self, operations: Sequence[BatchOperation]) -> BulkResult:
        upserted = modified = 0
        for ok, item in helpers.streaming_bulk(
            self.es,
            build_bulk_actions(self.index, operations),
            chunk_size=max(len(operations), 1),
            raise_on_error=True,
        ):
            result = item.get("update", {}).get("result")
            if result == "created":
                upserted += 1
            elif ok:
                modified += 1
        return BulkResult(upserted=upserted, modified=modified)

    async def bulk_upsert(self, operations: Sequence[BatchOperation]) -> BulkResult:
        result = await asyncio.to_thread(self._bulk, operations)
        logger.debug("bulk upsert index=%s ops=%s created=%s", self.index, len(operations), result.upserted)
        return result
