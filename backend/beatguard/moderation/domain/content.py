"""Content store contract consumed by the moderation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol


@dataclass(slots=True)
class ContentRecord:
    """A reportable piece of user content.

    ``fields`` holds the type specific attributes: ``text`` for comments,
    ``comment`` for ratings, ``name`` and ``description`` for playlists.
    """

    content_type: str
    content_id: str
    author_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


def moderation_text(record: ContentRecord) -> str | None:
    """Return the text to classify for a record, or None when it has none."""

    values = record.fields
    if record.content_type == "comment":
        text = values.get("text")
    elif record.content_type == "rating":
        text = values.get("comment")
    elif record.content_type == "playlist":
        text = f"Title: {values.get('name') or ''}\nDescription: {values.get('description') or ''}"
    else:
        return None
    if not isinstance(text, str) or not text.strip():
        return None
    return text


class ContentStore(Protocol):
    async def find_by_id(self, content_type: str, content_id: str) -> ContentRecord | None:
        """Fetch a comment, rating or playlist."""

    async def delete(self, content_type: str, content_id: str) -> bool:
        """Delete content; False when it was already gone."""


class InMemoryContentStore(ContentStore):
    def __init__(self) -> None:
        self.records: dict[tuple[str, str], ContentRecord] = {}
        self.deleted: list[tuple[str, str]] = []

    def add(self, record: ContentRecord) -> ContentRecord:
        self.records[(record.content_type, record.content_id)] = record
        return record

    async def find_by_id(self, content_type: str, content_id: str) -> ContentRecord | None:
        return self.records.get((content_type, content_id))

    async def delete(self, content_type: str, content_id: str) -> bool:
        removed = self.records.pop((content_type, content_id), None)
        if removed is None:
            return False
        self.deleted.append((content_type, content_id))
        return True


__all__ = ["ContentRecord", "ContentStore", "InMemoryContentStore", "moderation_text"]
