"""Data models for the swipe feed client."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ARTICLE_STATUSES = ("draft", "approved", "published")
PUBLISHED = "published"

REQUIRED_FIELDS = ("title", "summary", "sourceName", "originalUrl", "publishedAt", "status")


class DataShapeError(ValueError):
    """Raised when a stored document cannot be turned into an Article."""


@dataclass
class Article:
    """A published news item as shown in the feed."""

    id: str
    title: str
    summary: str
    source_name: str
    original_url: str
    published_at: datetime
    status: str = PUBLISHED
    image_url: str | None = None
    topics: list[str] = field(default_factory=list)
    region: str | None = None
    priority: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Article":
        """Build an Article from a raw store document.

        Raises:
            DataShapeError: If a required field is missing or unparseable.
        """
        if not isinstance(data, dict):
            raise DataShapeError(f"Document {doc_id} is not an object")

        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise DataShapeError(
                f"Document {doc_id} missing required fields: {', '.join(missing)}"
            )

        status = data["status"]
        if status not in ARTICLE_STATUSES:
            raise DataShapeError(f"Document {doc_id} has unknown status '{status}'")

        topics = data.get("topics") or []
        if not isinstance(topics, list):
            raise DataShapeError(f"Document {doc_id} has non-list topics")

        try:
            priority = int(data.get("priority") or 0)
        except (TypeError, ValueError):
            raise DataShapeError(f"Document {doc_id} has non-numeric priority")

        return cls(
            id=doc_id,
            title=data["title"],
            summary=data["summary"],
            source_name=data["sourceName"],
            original_url=data["originalUrl"],
            published_at=parse_timestamp(data["publishedAt"], doc_id),
            status=status,
            image_url=data.get("imageUrl") or None,
            topics=[str(t) for t in topics],
            region=data.get("region"),
            priority=priority,
            created_at=_optional_timestamp(data.get("createdAt"), doc_id),
            updated_at=_optional_timestamp(data.get("updatedAt"), doc_id),
        )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the store's document shape."""
        doc: dict[str, Any] = {
            "title": self.title,
            "summary": self.summary,
            "sourceName": self.source_name,
            "originalUrl": self.original_url,
            "publishedAt": format_timestamp(self.published_at),
            "status": self.status,
            "topics": list(self.topics),
            "priority": self.priority,
        }
        if self.image_url:
            doc["imageUrl"] = self.image_url
        if self.region:
            doc["region"] = self.region
        if self.created_at:
            doc["createdAt"] = format_timestamp(self.created_at)
        if self.updated_at:
            doc["updatedAt"] = format_timestamp(self.updated_at)
        return doc


def format_timestamp(dt: datetime) -> str:
    """Render a datetime as a sortable UTC ISO string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any, doc_id: str = "?") -> datetime:
    """Parse a stored timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise DataShapeError(f"Document {doc_id} has bad timestamp '{value}'")
    else:
        raise DataShapeError(f"Document {doc_id} has bad timestamp {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_timestamp(value: Any, doc_id: str) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_timestamp(value, doc_id)
