"""Query texts and builders for the remote GraphQL source"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union


# ============ Fragments ============

USER_FIELDS = """
  ... on WikidotUser {
    displayName
    wikidotId
  }
"""

PAGE_BASIC_FRAGMENT = """
fragment WikidotPageBasic on WikidotPage {
  url
  wikidotId
  title
  rating
  voteCount
  category
  tags
  revisionCount
  commentCount
  parent { url }
  attributions {
    type
    user {
      displayName
      ... on UserWikidotNameReference {
        wikidotUser { displayName wikidotId }
      }
    }
    date
    order
  }
  alternateTitles { title }
}
"""

PAGE_COMPLETE_FRAGMENT = """
fragment WikidotPageComplete on WikidotPage {
  ...WikidotPageBasic
  source
  textContent
}
"""

REVISION_NODE = """
node {
  wikidotId
  timestamp
  type
  comment
  user {%s}
}
""" % USER_FIELDS

VOTE_NODE = """
node {
  direction
  timestamp
  userWikidotId
  anonKey
  user {%s}
}
""" % USER_FIELDS

PAGE_INFO = "pageInfo { hasNextPage endCursor }"


def url_prefix_filter(prefix: str) -> dict:
    return {"url": {"startsWith": prefix}}


TOTAL_COUNT_QUERY = """
query TotalPages($filter: PageQueryFilter) {
  aggregatePages(filter: $filter) {
    _count
  }
}
"""

INVENTORY_QUERY = PAGE_BASIC_FRAGMENT + """
query InventoryPages($filter: PageQueryFilter, $first: Int, $after: ID) {
  pages(filter: $filter, first: $first, after: $after) {
    edges {
      node {
        url
        ... on WikidotPage {
          ...WikidotPageBasic
        }
      }
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


def inventory_variables(prefix: str, first: int, after: Optional[str] = None) -> dict:
    return {"filter": url_prefix_filter(prefix), "first": first, "after": after}


# ============ Aliased batch lookup ============

class BatchEntry(Protocol):
    url: str
    revision_count: Optional[int]
    vote_count: Optional[int]


@dataclass(frozen=True)
class AliasSlot:
    """One aliased sub-query and the page sizes it requested"""
    alias: str
    url: str
    revision_first: int
    vote_first: int


@dataclass(frozen=True)
class AliasQuery:
    query: str
    variables: dict
    slots: list[AliasSlot]


def _connection(field: str, first: int, node: str, after_var: Optional[str] = None) -> str:
    args = f"first: {first}"
    if after_var is not None:
        args += f", after: ${after_var}"
    return f"{field}({args}) {{ edges {{ {node} }} {PAGE_INFO} }}"


def build_alias_query(entries: Sequence[BatchEntry], batch_limit: int) -> AliasQuery:
    """
    Build one request looking up every entry by URL under aliases p0..pN.

    Each sub-query asks for min(count, batch_limit) revisions and votes. A
    child collection whose known count is zero is left out of the selection.

    Args:
        entries: Entities to look up, in alias order
        batch_limit: Per-entity page size ceiling

    Returns:
        AliasQuery with the query text, variable bindings and per-alias slots
    """
    parts = []
    variables = {}
    slots = []

    for idx, entry in enumerate(entries):
        alias = f"p{idx}"
        var = f"url{idx}"
        variables[var] = entry.url

        rev_first = min(max(0, entry.revision_count or 0), batch_limit)
        vote_first = min(max(0, entry.vote_count or 0), batch_limit)

        selection = ["...WikidotPageComplete"]
        if rev_first > 0:
            selection.append(_connection("revisions", rev_first, REVISION_NODE))
        if vote_first > 0:
            selection.append(_connection("fuzzyVoteRecords", vote_first, VOTE_NODE))

        parts.append(f"{alias}: wikidotPage(url: ${var}) {{\n" + "\n".join(selection) + "\n}")
        slots.append(AliasSlot(alias=alias, url=entry.url, revision_first=rev_first, vote_first=vote_first))

    declarations = ", ".join(f"${v}: URL!" for v in variables)
    query = (
        PAGE_BASIC_FRAGMENT
        + PAGE_COMPLETE_FRAGMENT
        + f"query AliasBatch({declarations}) {{\n"
        + "\n".join(parts)
        + "\n}\n"
    )
    return AliasQuery(query=query, variables=variables, slots=slots)


# ============ Exhaustive per-entity lookup ============

@dataclass(frozen=True)
class Pending:
    """More pages remain; `after` is None for the first page"""
    after: Optional[str] = None


@dataclass(frozen=True)
class Exhausted:
    """The sub-collection reported no further page"""


CursorState = Union[Pending, Exhausted]


def build_exhaustive_query(
    url: str,
    revisions: CursorState,
    votes: CursorState,
    page_size: int,
) -> tuple[str, dict]:
    """
    Build one round of the per-entity pagination loop.

    Only cursors still Pending contribute a sub-query and a variable.
    """
    declarations = ["$url: URL!"]
    variables: dict = {"url": url}
    selection = ["url"]

    if isinstance(revisions, Pending):
        declarations.append("$afterRev: ID")
        variables["afterRev"] = revisions.after
        selection.append(_connection("revisions", page_size, REVISION_NODE, after_var="afterRev"))
    if isinstance(votes, Pending):
        declarations.append("$afterVote: ID")
        variables["afterVote"] = votes.after
        selection.append(_connection("fuzzyVoteRecords", page_size, VOTE_NODE, after_var="afterVote"))

    query = (
        f"query ExhaustivePage({', '.join(declarations)}) {{\n"
        "page: wikidotPage(url: $url) {\n"
        + "\n".join(selection)
        + "\n}\n}\n"
    )
    return query, variables
