from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import NotFoundError, TransportError

from agentic_recall.backend import META_FIELDS, OpenSearchBackend
from agentic_recall.config import Settings
from agentic_recall.errors import BackendError, CursorExpiredError


@pytest.fixture
def client():
    return MagicMock()


def test_field_names_come_from_mapping_and_are_cached(client):
    client.indices.get_mapping.return_value = {
        "docs": {"mappings": {"properties": {"issue_id": {"type": "keyword"}, "embedding": {"type": "knn_vector"}}}}
    }
    backend = OpenSearchBackend(client, "docs")

    assert backend.field_names() == {"issue_id", "embedding"} | META_FIELDS
    backend.field_names()
    client.indices.get_mapping.assert_called_once_with(index="docs")


def test_mapping_failure_is_backend_error(client):
    client.indices.get_mapping.side_effect = TransportError(500, "boom", {})
    with pytest.raises(BackendError):
        OpenSearchBackend(client, "docs").field_names()


def test_search_passes_cursor_and_timeout(client):
    client.search.return_value = {"_scroll_id": "s1", "hits": {"hits": []}}
    backend = OpenSearchBackend(client, "docs")

    backend.search({"query": {"match_all": {}}}, "60s", 60.0)

    client.search.assert_called_once_with(
        index="docs", body={"query": {"match_all": {}}}, scroll="60s", request_timeout=60.0
    )


def test_search_failure_is_backend_error(client):
    client.search.side_effect = TransportError(400, "parsing_exception", {})
    with pytest.raises(BackendError):
        OpenSearchBackend(client, "docs").search({}, "60s", 60.0)


def test_expired_cursor_is_distinguished(client):
    client.scroll.side_effect = NotFoundError(404, "search_context_missing_exception", {})
    with pytest.raises(CursorExpiredError):
        OpenSearchBackend(client, "docs").scroll("abc", "60s", 60.0)


def test_clear_scroll_tolerates_missing_context(client):
    client.clear_scroll.side_effect = NotFoundError(404, "not_found", {})
    OpenSearchBackend(client, "docs").clear_scroll(["abc"])
    client.clear_scroll.assert_called_once_with(body={"scroll_id": ["abc"]})


def test_clear_scroll_with_nothing_open_is_a_no_op(client):
    OpenSearchBackend(client, "docs").clear_scroll([])
    client.clear_scroll.assert_not_called()


def test_store_id_list_writes_lookup_document(client):
    backend = OpenSearchBackend(client, "docs", lookup_index="docs-lookup")

    doc_id = backend.store_id_list("issue_id_list", ["1", "2"])

    assert doc_id.startswith("issue_id_list_")
    client.index.assert_called_once_with(
        index="docs-lookup", id=doc_id, body={"issue_id_list": ["1", "2"]}, refresh=True
    )


def test_lookup_index_defaults_to_search_index(client):
    assert OpenSearchBackend(client, "docs").lookup_index == "docs"


def test_from_settings_keeps_id_lists_out_of_search_index():
    assert OpenSearchBackend.from_settings(Settings(index_name="docs")).lookup_index == "docs-id-lists"
    configured = OpenSearchBackend.from_settings(Settings(index_name="docs", lookup_index="id-lists"))
    assert configured.lookup_index == "id-lists"
    assert configured.index_name == "docs"
