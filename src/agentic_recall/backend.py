# backend.py
# Search backend contract and the OpenSearch adapter.
#
# The engine only ever talks to SearchBackend. OpenSearchBackend is the
# production implementation; tests substitute fakes. Third-party exceptions
# are translated here so nothing above this file imports opensearchpy.

import uuid
from typing import Any, Protocol

from opensearchpy import OpenSearch
from opensearchpy.exceptions import NotFoundError, OpenSearchException

from agentic_recall.config import Settings
from agentic_recall.errors import BackendError, CursorExpiredError

# Always valid as filter targets regardless of the mapping.
META_FIELDS = frozenset({"_id", "_index", "_routing"})


class SearchBackend(Protocol):
    """What the engine needs from a search service."""

    index_name: str
    lookup_index: str

    def field_names(self) -> set[str]: ...

    def search(self, body: dict[str, Any], scroll: str, timeout: float) -> dict[str, Any]: ...

    def scroll(self, scroll_id: str, scroll: str, timeout: float) -> dict[str, Any]: ...

    def clear_scroll(self, scroll_ids: list[str]) -> None: ...

    def store_id_list(self, path: str, ids: list[str]) -> str: ...


class OpenSearchBackend:
    """
    SearchBackend over a single OpenSearch index.

    Large identifier sets are written to `lookup_index` so terms-lookup
    clauses can reference them. It defaults to the search index here;
    from_settings() points it at a separate index.
    """

    def __init__(
        self,
        client: OpenSearch,
        index_name: str,
        lookup_index: str | None = None,
    ) -> None:
        self._client = client
        self.index_name = index_name
        self.lookup_index = lookup_index or index_name
        self._fields: set[str] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenSearchBackend":
        client = OpenSearch(
            hosts=[{"host": settings.opensearch_host, "port": settings.opensearch_port}],
            use_ssl=settings.opensearch_use_ssl,
            verify_certs=False,
            ssl_show_warn=False,
            timeout=settings.cursor_ttl_seconds,
        )
        return cls(client, settings.index_name, settings.id_list_index)

    # ------------------------------------------------------------------
    # Schema introspection
    # ------------------------------------------------------------------

    def field_names(self) -> set[str]:
        """Top-level mapped field names, cached for the backend's lifetime."""
        if self._fields is None:
            try:
                mappings = self._client.indices.get_mapping(index=self.index_name)
            except OpenSearchException as exc:
                raise BackendError(f"mapping lookup failed for {self.index_name}: {exc}") from exc

            fields: set[str] = set(META_FIELDS)
            for index_mapping in mappings.values():
                properties = index_mapping.get("mappings", {}).get("properties", {})
                fields.update(properties)
            self._fields = fields
        return set(self._fields)

    # ------------------------------------------------------------------
    # Cursor protocol
    # ------------------------------------------------------------------

    def search(self, body: dict[str, Any], scroll: str, timeout: float) -> dict[str, Any]:
        try:
            return self._client.search(
                index=self.index_name,
                body=body,
                scroll=scroll,
                request_timeout=timeout,
            )
        except OpenSearchException as exc:
            raise BackendError(f"search failed: {exc}") from exc

    def scroll(self, scroll_id: str, scroll: str, timeout: float) -> dict[str, Any]:
        try:
            return self._client.scroll(scroll_id=scroll_id, scroll=scroll, request_timeout=timeout)
        except NotFoundError as exc:
            raise CursorExpiredError(f"scroll context {scroll_id[:16]}… expired") from exc
        except OpenSearchException as exc:
            raise BackendError(f"scroll failed: {exc}") from exc

    def clear_scroll(self, scroll_ids: list[str]) -> None:
        if not scroll_ids:
            return
        try:
            self._client.clear_scroll(body={"scroll_id": scroll_ids})
        except NotFoundError:
            # Already gone server-side; nothing left to release.
            return
        except OpenSearchException as exc:
            raise BackendError(f"clear_scroll failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Side documents
    # ------------------------------------------------------------------

    def store_id_list(self, path: str, ids: list[str]) -> str:
        """Persist `ids` under `path` in a new lookup document; return its id."""
        doc_id = f"{path}_{uuid.uuid4().hex}"
        try:
            self._client.index(index=self.lookup_index, id=doc_id, body={path: ids}, refresh=True)
        except OpenSearchException as exc:
            raise BackendError(f"could not store id list: {exc}") from exc
        return doc_id
