"""In-memory stand-in for the remote GraphQL source"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from wikimirror.errors import TransientRemoteError


BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)

_ALIAS_SPLIT = re.compile(r"(?=\bp\d+: wikidotPage)")
_ALIAS_HEAD = re.compile(r"^(p\d+): wikidotPage\(url: \$(url\d+)\)")
_REVISIONS_FIRST = re.compile(r"revisions\(first: (\d+)")
_VOTES_FIRST = re.compile(r"fuzzyVoteRecords\(first: (\d+)")


def iso(dt: datetime) -> str:
    return dt.isoformat() + "Z"


def revision_node(number: int, user_id: int = 1) -> dict:
    return {
        "wikidotId": number,
        "timestamp": iso(BASE_TIME + timedelta(minutes=number)),
        "type": "source",
        "comment": f"edit {number}",
        "user": {"displayName": f"user{user_id}", "wikidotId": user_id},
    }


def vote_node(number: int, direction: int = 1) -> dict:
    user_id = 1000 + number
    return {
        "direction": direction,
        "timestamp": iso(BASE_TIME + timedelta(seconds=number)),
        "userWikidotId": user_id,
        "user": {"displayName": f"voter{number}", "wikidotId": user_id},
    }


@dataclass
class FakePage:
    remote_id: int
    url: str
    title: str = "Untitled"
    rating: float = 0
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = "_default"
    comment_count: int = 0
    source: str = "source text"
    text_content: str = "text"
    alternate_title: Optional[str] = None
    attributions: list[dict] = field(default_factory=list)
    revisions: list[dict] = field(default_factory=list)
    votes: list[dict] = field(default_factory=list)

    def basic(self) -> dict:
        return {
            "url": self.url,
            "wikidotId": str(self.remote_id),
            "title": self.title,
            "rating": self.rating,
            "voteCount": len(self.votes),
            "category": self.category,
            "tags": list(self.tags),
            "revisionCount": len(self.revisions),
            "commentCount": self.comment_count,
            "parent": None,
            "attributions": list(self.attributions),
            "alternateTitles": [{"title": self.alternate_title}] if self.alternate_title else [],
        }

    def complete(self) -> dict:
        node = self.basic()
        node.update(source=self.source, textContent=self.text_content)
        return node


def page_of(items: list, first: int, after: Optional[str]) -> dict:
    offset = int(after) if after else 0
    chunk = items[offset:offset + first]
    end = offset + len(chunk)
    return {
        "edges": [{"node": item, "cursor": str(offset + i + 1)} for i, item in enumerate(chunk)],
        "pageInfo": {"hasNextPage": end < len(items), "endCursor": str(end) if chunk else None},
    }


class FakeWiki:
    """
    Scripted remote answering the inventory, alias and exhaustive queries.

    Every request is recorded as (operation, variables) with its query text
    in `queries`.
    """

    def __init__(self):
        self.pages: dict[str, FakePage] = {}
        self.calls: list[tuple[str, dict]] = []
        self.queries: list[str] = []
        self.fail_urls: set[str] = set()

    def add(self, remote_id: int, url: str, revisions: int = 0, votes: int = 0, **fields) -> FakePage:
        page = FakePage(
            remote_id=remote_id,
            url=url,
            revisions=[revision_node(i + 1) for i in range(revisions)],
            votes=[vote_node(i + 1) for i in range(votes)],
            **fields,
        )
        self.pages[url] = page
        return page

    def remove(self, url: str) -> None:
        del self.pages[url]

    def operations(self, name: str) -> list[dict]:
        return [variables for op, variables in self.calls if op == name]

    async def request(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        variables = variables or {}
        operation = re.search(r"query (\w+)", query).group(1)
        self.calls.append((operation, variables))
        self.queries.append(query)
        return getattr(self, f"_{operation}")(query, variables)

    def _TotalPages(self, query: str, variables: dict) -> dict:
        return {"aggregatePages": {"_count": len(self.pages)}}

    def _InventoryPages(self, query: str, variables: dict) -> dict:
        nodes = [p.basic() for p in self.pages.values()]
        return {"pages": page_of(nodes, variables["first"], variables.get("after"))}

    def _AliasBatch(self, query: str, variables: dict) -> dict:
        data = {}
        for part in _ALIAS_SPLIT.split(query):
            head = _ALIAS_HEAD.match(part)
            if not head:
                continue
            alias, var = head.groups()
            page = self.pages.get(variables[var])
            if page is None:
                data[alias] = None
                continue
            node = page.complete()
            rev_first = _REVISIONS_FIRST.search(part)
            if rev_first:
                node["revisions"] = page_of(page.revisions, int(rev_first.group(1)), None)
            vote_first = _VOTES_FIRST.search(part)
            if vote_first:
                node["fuzzyVoteRecords"] = page_of(page.votes, int(vote_first.group(1)), None)
            data[alias] = node
        return data

    def _ExhaustivePage(self, query: str, variables: dict) -> dict:
        url = variables["url"]
        if url in self.fail_urls:
            raise TransientRemoteError(f"injected failure for {url}")
        page = self.pages.get(url)
        if page is None:
            return {"page": None}
        node: dict = {"url": url}
        if "afterRev" in variables:
            first = int(_REVISIONS_FIRST.search(query).group(1))
            node["revisions"] = page_of(page.revisions, first, variables["afterRev"])
        if "afterVote" in variables:
            first = int(_VOTES_FIRST.search(query).group(1))
            node["fuzzyVoteRecords"] = page_of(page.votes, first, variables["afterVote"])
        return {"page": node}
