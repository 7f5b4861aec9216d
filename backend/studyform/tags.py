"""Bounded, de-duplicating tag list editor.

Tags can only be appended one at a time or cleared in bulk; there is no
single-tag removal.
"""

from typing import Iterable, List

from .schemas import MAX_TAGS

CAPACITY_MESSAGE = f"스택은 최대 {MAX_TAGS}개까지만 입력 가능합니다"
DUPLICATE_MESSAGE = "중복 스택이 존재합니다"


class TagEditor:
    """Edit an ordered tag list of at most `MAX_TAGS` unique strings.

    Two error slots are kept apart because the page shows them in
    different places: `capacity_error` next to the input and
    `field_error` as the `tags` field error.
    """
    def __init__(self, tags: Iterable[str] = (), capacity_error: str = "", field_error: str = ""):
        self.tags: List[str] = list(tags)
        self.capacity_error = capacity_error
        self.field_error = field_error

    def add(self, candidate: str) -> bool:
        """Append `candidate` if it fits; return True when the list changed."""
        tag = candidate.strip()
        if not tag:
            return False
        if len(self.tags) >= MAX_TAGS:
            self.capacity_error = CAPACITY_MESSAGE
            return False
        if len(set(self.tags) | {tag}) == len(self.tags):
            self.field_error = DUPLICATE_MESSAGE
            return False
        self.tags = self.tags + [tag]
        self.capacity_error = ""
        self.field_error = ""
        return True

    def reset(self) -> None:
        self.tags = []
        self.capacity_error = ""
        self.field_error = ""
