from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

DEFAULT_TEXT_SIZE = 1.0


def clamp_page_index(page_index: int, page_count: int) -> int:
    """Clamp a restored page index to a freshly paginated chapter."""
    if page_count <= 0:
        return 0
    return max(0, min(page_index, page_count - 1))


@dataclass
class ReadingPosition:
    chapter_index: int = 0
    page_index: int = 0
    text_size: float = DEFAULT_TEXT_SIZE

    def clamped(self, page_count: int) -> "ReadingPosition":
        return ReadingPosition(
            chapter_index=self.chapter_index,
            page_index=clamp_page_index(self.page_index, page_count),
            text_size=self.text_size,
        )

    def as_payload(self) -> dict[str, float | int]:
        return {
            "chapter_index": self.chapter_index,
            "page_index": self.page_index,
            "text_size": self.text_size,
        }

    @classmethod
    def from_payload(cls, payload: object) -> "ReadingPosition | None":
        if not isinstance(payload, Mapping):
            return None
        chapter_index = payload.get("chapter_index")
        page_index = payload.get("page_index")
        text_size = payload.get("text_size")
        if not isinstance(chapter_index, int) or isinstance(chapter_index, bool):
            return None
        if not isinstance(page_index, int) or isinstance(page_index, bool):
            page_index = 0
        if isinstance(text_size, (int, float)) and not isinstance(text_size, bool) and text_size > 0:
            size_value = float(text_size)
        else:
            size_value = DEFAULT_TEXT_SIZE
        return cls(
            chapter_index=max(0, chapter_index),
            page_index=max(0, page_index),
            text_size=size_value,
        )


__all__ = ["DEFAULT_TEXT_SIZE", "ReadingPosition", "clamp_page_index"]
