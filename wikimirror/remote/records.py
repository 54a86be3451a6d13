"""Typed views of remote query results"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Optional, TypeVar

from ..observability import get_logger


T = TypeVar("T")

logger = get_logger("remote.records")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RemoteUser:
    remote_id: Optional[int]
    display_name: Optional[str] = None


@dataclass
class RevisionRecord:
    remote_revision_id: int
    timestamp: datetime
    type: str = "unknown"
    comment: Optional[str] = None
    user: Optional[RemoteUser] = None


@dataclass
class VoteRecord:
    """One vote; exactly one of user_id / anon_key identifies the actor"""
    direction: int
    timestamp: datetime
    user_id: Optional[int] = None
    anon_key: Optional[str] = None
    user: Optional[RemoteUser] = None

    @property
    def actor_key(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"anon:{self.anon_key}"


@dataclass
class AttributionRecord:
    type: str
    order: int
    date: Optional[datetime] = None
    user_id: Optional[int] = None
    anon_key: Optional[str] = None
    user: Optional[RemoteUser] = None


@dataclass
class Connection(Generic[T]):
    """One page of a cursor-paginated sub-collection"""
    items: list[T] = field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None
    # Raw edges sent by the server, including nodes that failed to parse
    edge_count: Optional[int] = None

    @property
    def returned(self) -> int:
        return len(self.items) if self.edge_count is None else self.edge_count


@dataclass
class ScannedPage:
    """Lightweight node returned by the inventory scan"""
    remote_id: Optional[int]
    url: str
    title: Optional[str] = None
    rating: Optional[float] = None
    vote_count: Optional[int] = None
    revision_count: Optional[int] = None
    comment_count: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    parent_url: Optional[str] = None
    alternate_title: Optional[str] = None
    attributions: Optional[list[AttributionRecord]] = None
    is_deleted: bool = False


@dataclass
class PageContent(ScannedPage):
    """Full entity content returned by a batch or exhaustive lookup"""
    source: Optional[str] = None
    text_content: Optional[str] = None
    revisions: Optional[Connection[RevisionRecord]] = None
    votes: Optional[Connection[VoteRecord]] = None


# ============ Parsers ============

def parse_user(data: Optional[dict]) -> Optional[RemoteUser]:
    """Parse a user reference, unwrapping name references to their user"""
    if not data:
        return None
    if isinstance(data, str):
        return RemoteUser(remote_id=None, display_name=data)
    if data.get("wikidotUser"):
        data = data["wikidotUser"]
    remote_id = parse_int(data.get("wikidotId"))
    display_name = data.get("displayName") or data.get("username")
    if remote_id is None and not display_name:
        return None
    return RemoteUser(remote_id=remote_id, display_name=display_name)


def parse_revision(node: dict) -> Optional[RevisionRecord]:
    remote_id = parse_int(node.get("wikidotId") or node.get("revisionNumber"))
    timestamp = parse_timestamp(node.get("timestamp"))
    if remote_id is None or timestamp is None:
        logger.warning(f"Skipping revision with missing id or timestamp: {node!r}")
        return None
    return RevisionRecord(
        remote_revision_id=remote_id,
        timestamp=timestamp,
        type=node.get("type") or "unknown",
        comment=node.get("comment"),
        user=parse_user(node.get("user")),
    )


def parse_vote(node: dict) -> Optional[VoteRecord]:
    """
    Parse a vote record.

    Votes by a known user are keyed by the user's remote id, falling back to
    the bare userWikidotId for deleted accounts. Anything else is anonymous
    and keyed by the remote anonymity key, or a timestamp-derived key when the
    remote provides none.
    """
    direction = parse_int(node.get("direction"))
    timestamp = parse_timestamp(node.get("timestamp"))
    if direction is None or timestamp is None:
        logger.warning(f"Skipping vote with invalid direction or timestamp: {node!r}")
        return None

    user = parse_user(node.get("user"))
    user_id = user.remote_id if user and user.remote_id is not None else parse_int(node.get("userWikidotId"))
    if user_id is not None:
        if user is None or user.remote_id is None:
            user = RemoteUser(remote_id=user_id, display_name=f"wd:{user_id}")
        return VoteRecord(direction=direction, timestamp=timestamp, user_id=user_id, user=user)

    anon_key = node.get("anonKey") or f"anon_{int(timestamp.replace(tzinfo=timezone.utc).timestamp())}"
    return VoteRecord(direction=direction, timestamp=timestamp, anon_key=anon_key)


def parse_attribution(node: dict, index: int) -> Optional[AttributionRecord]:
    type_ = node.get("type") or "unknown"
    order = parse_int(node.get("order"))
    if order is None:
        order = index
    user = parse_user(node.get("user"))
    date = parse_timestamp(node.get("date"))

    if user is not None and user.remote_id is not None:
        return AttributionRecord(type=type_, order=order, date=date, user_id=user.remote_id, user=user)

    anon_key = node.get("anonKey")
    if anon_key is None and user is not None and user.display_name:
        anon_key = f"anon:{user.display_name}"
    if anon_key is None:
        anon_key = f"anon_{type_}_{order}"
    return AttributionRecord(type=type_, order=order, date=date, anon_key=anon_key, user=user)


def parse_connection(data: Optional[dict], parse_node: Callable[[dict], Optional[T]]) -> Optional[Connection[T]]:
    """Parse `{edges: [{node}], pageInfo}`; None when the field was not selected"""
    if data is None:
        return None
    items = []
    edges = data.get("edges") or []
    for edge in edges:
        node = edge.get("node") if isinstance(edge, dict) else None
        if node is None:
            continue
        parsed = parse_node(node)
        if parsed is not None:
            items.append(parsed)
    page_info = data.get("pageInfo") or {}
    return Connection(
        items=items,
        has_next_page=bool(page_info.get("hasNextPage")),
        end_cursor=page_info.get("endCursor"),
        edge_count=len(edges),
    )


def extract_alternate_title(node: dict) -> Optional[str]:
    """First non-blank alternate title"""
    for entry in node.get("alternateTitles") or []:
        title = entry.get("title") if isinstance(entry, dict) else None
        if isinstance(title, str) and title.strip():
            return title.strip()
    return None


def _scanned_fields(node: dict) -> dict:
    attributions = node.get("attributions")
    return dict(
        remote_id=parse_int(node.get("wikidotId")),
        url=node.get("url") or "",
        title=node.get("title"),
        rating=parse_float(node.get("rating")),
        vote_count=parse_int(node.get("voteCount")),
        revision_count=parse_int(node.get("revisionCount")),
        comment_count=parse_int(node.get("commentCount")),
        tags=list(node.get("tags") or []),
        category=node.get("category"),
        parent_url=(node.get("parent") or {}).get("url"),
        alternate_title=extract_alternate_title(node),
        attributions=(
            [a for a in (parse_attribution(n, i) for i, n in enumerate(attributions)) if a is not None]
            if isinstance(attributions, list)
            else None
        ),
        is_deleted=bool(node.get("isDeleted")),
    )


def parse_scanned_page(node: dict) -> ScannedPage:
    return ScannedPage(**_scanned_fields(node))


def parse_page_content(node: dict, remote_id: Optional[int] = None) -> PageContent:
    """Parse a full lookup result; remote_id overrides a missing wikidotId"""
    fields = _scanned_fields(node)
    if fields["remote_id"] is None:
        fields["remote_id"] = remote_id
    return PageContent(
        **fields,
        source=node.get("source"),
        text_content=node.get("textContent"),
        revisions=parse_connection(node.get("revisions"), parse_revision),
        votes=parse_connection(node.get("fuzzyVoteRecords"), parse_vote),
    )
