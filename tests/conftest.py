import copy

import pytest

from agentic_recall.config import Settings

FIELDS = {"doc_id", "doc_type", "issue_id", "file_path", "file_type", "attachment_content", "embedding"}
DIM = 4


def raw_hit(doc_id, score=None, **source):
    """A hit as the backend returns it."""
    return {"_id": doc_id, "_score": score, "_source": source}


def pages_of(prefix, *sizes, **source):
    """One page per size; ids run prefix-0, prefix-1, … across pages."""
    pages, counter = [], 0
    for size in sizes:
        page = []
        for _ in range(size):
            page.append(raw_hit(f"{prefix}-{counter}", 1.0, **source))
            counter += 1
        pages.append(page)
    return pages


class FakeBackend:
    """
    In-memory SearchBackend.

    `pages_for(body)` decides which pages a request returns; the first page
    comes back from search(), the rest from successive scroll() calls.
    """

    def __init__(self, pages_for=None, fields=None):
        self.index_name = "docs"
        self.lookup_index = "docs-lookup"
        self._fields = set(FIELDS if fields is None else fields)
        self._pages_for = pages_for or (lambda body: [])
        self._open = {}
        self.searches = []
        self.scroll_calls = []
        self.timeouts = []
        self.cleared = []
        self.stored = {}
        self.search_error = None
        self.scroll_error = None

    def field_names(self):
        return set(self._fields)

    def search(self, body, scroll, timeout):
        self.searches.append(copy.deepcopy(body))
        self.timeouts.append(timeout)
        if self.search_error is not None:
            raise self.search_error
        pages = [list(p) for p in self._pages_for(body)]
        scroll_id = f"sid-{len(self.searches)}"
        self._open[scroll_id] = pages[1:]
        return {"_scroll_id": scroll_id, "hits": {"hits": pages[0] if pages else []}}

    def scroll(self, scroll_id, scroll, timeout):
        self.scroll_calls.append(scroll_id)
        self.timeouts.append(timeout)
        if self.scroll_error is not None:
            raise self.scroll_error
        remaining = self._open.get(scroll_id, [])
        batch = remaining.pop(0) if remaining else []
        return {"_scroll_id": scroll_id, "hits": {"hits": batch}}

    def clear_scroll(self, scroll_ids):
        self.cleared.extend(scroll_ids)

    def store_id_list(self, path, ids):
        doc_id = f"{path}_{len(self.stored) + 1}"
        self.stored[doc_id] = {path: list(ids)}
        return doc_id


class FakeEmbedder:
    def __init__(self, dim=DIM):
        self.dim = dim
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        return [0.5] * self.dim


@pytest.fixture
def settings():
    return Settings(
        embed_dim=DIM,
        default_k=10,
        max_plan_steps=15,
        max_iterations=6,
        max_inline_terms=5,
        source_fields=["doc_id", "issue_id"],
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def embedder():
    return FakeEmbedder()
