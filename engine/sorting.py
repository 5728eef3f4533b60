"""Client-side ordering for pages the provider did not sort."""

from metadata.types import SortOption


def _title_key(item):
    return (item.title or "").casefold()


def sort_items(items, sort):
    """Return ``items`` ordered by ``sort``.

    Items with no value for the sort field go last in both directions.
    Relevance keeps the upstream order. The sort is stable.
    """
    items = list(items)
    sort = SortOption(sort)
    if sort == SortOption.RELEVANCE:
        return items
    if sort in (SortOption.TITLE_ASC, SortOption.TITLE_DESC):
        return sorted(items, key=_title_key, reverse=sort == SortOption.TITLE_DESC)

    attr = {
        SortOption.RATING_DESC: "rating",
        SortOption.RATING_ASC: "rating",
        SortOption.REVIEWS_DESC: "review_count",
        SortOption.REVIEWS_ASC: "review_count",
        SortOption.DATE_DESC: "year",
        SortOption.DATE_ASC: "year",
    }[sort]
    present = [item for item in items if getattr(item, attr) is not None]
    missing = [item for item in items if getattr(item, attr) is None]
    descending = sort.value.endswith("_desc")
    present.sort(key=lambda item: getattr(item, attr), reverse=descending)
    return present + missing
