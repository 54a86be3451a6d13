"""Point-cost estimation and cost-bounded binning for remote queries

The remote service charges every query a point cost derived from the fields it
selects and the page sizes of its paginated connections. These estimates are
used for admission control before a request is issued, so they deliberately
round every connection up to whole pages.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar


T = TypeVar("T")


# Charges per selected field
ROOT_COST = 1
ATTRIBUTIONS_COST = 2
ALTERNATE_TITLES_COST = 1
CHILDREN_COST = 1
SOURCE_COST = 1
TEXT_CONTENT_COST = 1

# Charges per edge in a paginated connection
REVISION_EDGE_COST = 1
VOTE_EDGE_COST = 1


@dataclass(frozen=True)
class ChildCounts:
    """Known child-record cardinalities of one entity"""
    revision_count: Optional[int] = 0
    vote_count: Optional[int] = 0


@dataclass(frozen=True)
class CostOptions:
    """Field selection and page sizes of a prospective query"""
    revision_limit: int = 100
    vote_limit: int = 100
    include_attributions: bool = True
    include_alternate_titles: bool = True
    include_children: bool = False
    include_source: bool = False
    include_text_content: bool = False
    revision_edge_cost: int = REVISION_EDGE_COST
    vote_edge_cost: int = VOTE_EDGE_COST
    multiplier: float = 1


FULL_CONTENT = CostOptions(
    include_attributions=True,
    include_alternate_titles=True,
    include_source=True,
    include_text_content=True,
)


def estimate_base_cost(options: CostOptions) -> int:
    """Cost of the root object and its non-paginated fields"""
    cost = ROOT_COST
    if options.include_attributions:
        cost += ATTRIBUTIONS_COST
    if options.include_alternate_titles:
        cost += ALTERNATE_TITLES_COST
    if options.include_children:
        cost += CHILDREN_COST
    if options.include_source:
        cost += SOURCE_COST
    if options.include_text_content:
        cost += TEXT_CONTENT_COST
    return cost


def paginated_cost(count: Optional[int], limit: int, edge_cost: int) -> int:
    """
    Charge for walking a connection of `count` items in pages of `limit`.

    The last page is charged in full even when it is only partially filled.
    """
    total = max(0, count or 0)
    if total == 0 or limit <= 0:
        return 0
    return math.ceil(total / limit) * limit * edge_cost


def estimate_cost(counts: ChildCounts, options: CostOptions = CostOptions()) -> float:
    """
    Estimate the point cost of fetching one entity.

    Args:
        counts: Known revision and vote counts
        options: Requested fields, page sizes and edge charges

    Returns:
        Estimated points, scaled by options.multiplier
    """
    cost = estimate_base_cost(options)
    cost += paginated_cost(counts.revision_count, options.revision_limit, options.revision_edge_cost)
    cost += paginated_cost(counts.vote_count, options.vote_limit, options.vote_edge_cost)
    return cost * options.multiplier


def inventory_cost(counts: ChildCounts, floor: int = 20) -> float:
    """Cost of a hypothetical full fetch, as recorded by the inventory scan"""
    options = CostOptions(
        revision_limit=max(counts.revision_count or 0, floor),
        vote_limit=max(counts.vote_count or 0, floor),
    )
    return estimate_cost(counts, options)


def batch_entity_cost(revision_count: Optional[int], vote_count: Optional[int], batch_limit: int) -> int:
    """Conservative cost of one entity inside an aliased batch request"""
    return (
        estimate_base_cost(FULL_CONTENT)
        + min(max(0, revision_count or 0), batch_limit)
        + min(max(0, vote_count or 0), batch_limit)
    )


def is_complex(estimated_cost: float, threshold: int) -> bool:
    """Informational split between cheap and expensive entities"""
    return estimated_cost > threshold


def bin_by_cost(
    items: Iterable[T],
    cost: Callable[[T], float],
    soft_budget: float,
    max_items: int,
) -> list[list[T]]:
    """
    Greedily pack items into buckets.

    A bucket is closed before adding an item when it already holds max_items,
    or when it is non-empty and the item would push it past soft_budget. A
    single item costing more than the budget still gets a bucket of its own.
    """
    buckets: list[list[T]] = []
    bucket: list[T] = []
    bucket_cost = 0.0

    for item in items:
        c = cost(item)
        if (bucket and bucket_cost + c > soft_budget) or len(bucket) >= max_items:
            buckets.append(bucket)
            bucket = []
            bucket_cost = 0.0
        bucket.append(item)
        bucket_cost += c

    if bucket:
        buckets.append(bucket)
    return buckets