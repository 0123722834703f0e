import math


class Paginator:
    """
    Page arithmetic for list endpoints.
    Pages are 1-based; the current page is clamped into [1, total_pages] whenever pages exist.
    """

    def __init__(self, total_items: int = 0, page_size: int = 10, page: int = 1, max_page_buttons: int = 5):
        self.total_items = max(0, int(total_items or 0))
        self.page_size = page_size if page_size and page_size > 0 else 10
        self.max_page_buttons = max_page_buttons
        self._page = page

    @property
    def total_pages(self) -> int:
        if self.total_items <= 0:
            return 0
        return math.ceil(self.total_items / self.page_size)

    @property
    def page(self) -> int:
        if self.total_pages == 0:
            return self._page
        return max(1, min(self._page, self.total_pages))

    @property
    def start_index(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def end_index(self) -> int:
        return min(self.start_index + self.page_size - 1, self.total_items - 1)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1

    def next_page(self) -> None:
        if self.has_next_page:
            self._page = self.page + 1

    def prev_page(self) -> None:
        if self.has_prev_page:
            self._page = self.page - 1

    def go_to_page(self, page: int) -> None:
        if 1 <= page <= self.total_pages:
            self._page = page

    def set_page_size(self, size: int) -> None:
        """Changes the page size while keeping the first visible item on screen."""
        if size <= 0:
            return
        first_item_index = (self.page - 1) * self.page_size
        self.page_size = size
        self._page = first_item_index // size + 1

    @property
    def visible_page_buttons(self) -> list:
        total = self.total_pages
        if total <= self.max_page_buttons:
            return list(range(1, total + 1))

        start = max(1, self.page - self.max_page_buttons // 2)
        end = start + self.max_page_buttons - 1
        if end > total:
            end = total
            start = max(1, end - self.max_page_buttons + 1)
        return list(range(start, end + 1))

    def paginate(self, items: list) -> list:
        if not items:
            return []
        return items[self.start_index:self.start_index + self.page_size]

    def item_range_label(self) -> str:
        if self.total_items == 0:
            return "No items"
        start = self.start_index + 1
        end = min(self.start_index + self.page_size, self.total_items)
        return f"{start}-{end} of {self.total_items} items"

    def to_dict(self) -> dict:
        return {
            'page': self.page,
            'page_size': self.page_size,
            'total_items': self.total_items,
            'total_pages': self.total_pages,
            'start_index': self.start_index,
            'end_index': self.end_index,
            'has_next_page': self.has_next_page,
            'has_prev_page': self.has_prev_page,
            'visible_page_buttons': self.visible_page_buttons,
            'label': self.item_range_label(),
        }


def paginate_items(items: list, page: int = 1, page_size: int = 10) -> tuple:
    """Slices `items` for the requested page. Returns (page_items, pagination metadata)."""
    paginator = Paginator(total_items=len(items), page_size=page_size, page=page)
    return paginator.paginate(items), paginator.to_dict()
