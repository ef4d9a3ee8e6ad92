"""Sibling ordering and reading-position navigation for books.

A book is a list of chapters, each holding a list of pages, both sorted by
their ``order`` column. A reader position is a pair of zero-based indexes
into those lists.
"""

from collections import namedtuple


ReadingPosition = namedtuple("ReadingPosition", ["chapter_index", "page_index"])


class PositionError(ValueError):
    pass


def next_order(existing_orders):
    orders = [o for o in existing_orders if o is not None]
    return max(orders) + 1 if orders else 1


def parse_order(raw):
    """Return ``raw`` as a positive int, raising ValueError otherwise."""
    if isinstance(raw, bool):
        raise ValueError("order must be a positive integer")
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValueError("order must be a positive integer") from None
    if value < 1:
        raise ValueError("order must be a positive integer")
    return value


def validate_position(page_counts, position):
    chapter_index, page_index = position
    if not 0 <= chapter_index < len(page_counts):
        raise PositionError("chapter index out of range")
    count = page_counts[chapter_index]
    if count == 0 and page_index == 0:
        return
    if not 0 <= page_index < count:
        raise PositionError("page index out of range")


def first_position(page_counts):
    for chapter_index, count in enumerate(page_counts):
        if count:
            return ReadingPosition(chapter_index, 0)
    return ReadingPosition(0, 0) if page_counts else None


def next_position(page_counts, position):
    """Move one page forward, crossing into the next non-empty chapter.

    At the last page of the book the position is returned unchanged.
    """
    validate_position(page_counts, position)
    chapter_index, page_index = position
    if page_index < page_counts[chapter_index] - 1:
        return ReadingPosition(chapter_index, page_index + 1)
    for candidate in range(chapter_index + 1, len(page_counts)):
        if page_counts[candidate]:
            return ReadingPosition(candidate, 0)
    return ReadingPosition(chapter_index, page_index)


def previous_position(page_counts, position):
    """Move one page back, landing on the last page of the previous chapter.

    At the first page of the book the position is returned unchanged.
    """
    validate_position(page_counts, position)
    chapter_index, page_index = position
    if page_index > 0:
        return ReadingPosition(chapter_index, page_index - 1)
    for candidate in range(chapter_index - 1, -1, -1):
        if page_counts[candidate]:
            return ReadingPosition(candidate, page_counts[candidate] - 1)
    return ReadingPosition(chapter_index, page_index)


def has_next(page_counts, position):
    return next_position(page_counts, position) != tuple(position)


def has_previous(page_counts, position):
    return previous_position(page_counts, position) != tuple(position)
