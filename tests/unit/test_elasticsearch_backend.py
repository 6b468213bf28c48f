"""
Unit tests for the Elasticsearch backend.

The client is replaced by a MagicMock, so these tests check request
shaping and error translation without a cluster.

Tests cover:
- Client construction from configuration
- Backend factory and lazy client import
- Per-call options (timeout, no retries, security headers)
- Request shapes for every backend operation
- Translation of client errors into store errors
"""

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from elasticsearch.exceptions import (
    ApiError,
    BadRequestError,
    ConflictError,
    ConnectionTimeout,
    NotFoundError,
)
from elasticsearch.exceptions import ConnectionError as ESConnectionError

from observability.collaborations.config import (
    ElasticsearchConfig,
    SearchBackendKind,
    ServiceConfig,
)
from observability.collaborations.errors import (
    BackendUnavailableError,
    ConflictingCreateError,
    InvalidRequestError,
    OperationTimeoutError,
)
from observability.collaborations.index.base import (
    IndexAlreadyExistsError,
    IndexMissingError,
    SearchQuery,
    create_search_backend,
)
from observability.collaborations.index.elasticsearch import (
    ElasticsearchBackend,
    create_elasticsearch_client,
)

INDEX = ".collaborations"
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def api_error(cls, status, error_type=None):
    """Helper to build a client ApiError with a response body."""
    body = {"error": {"type": error_type, "reason": error_type}, "status": status}
    return cls(message=error_type or "error", meta=MagicMock(status=status), body=body)


@pytest.fixture
def client():
    client = MagicMock()
    client.options.return_value = client
    return client


@pytest.fixture
def backend(client):
    return ElasticsearchBackend(client, security_headers={"es-security-runas-user": "collab"})


class TestClientConstruction:
    """Tests for create_elasticsearch_client."""

    def test_retries_disabled(self):
        """The client is built with retries disabled."""
        with patch("observability.collaborations.index.elasticsearch.Elasticsearch") as es:
            create_elasticsearch_client(ElasticsearchConfig(hosts="http://a:9200, http://b:9200"))

        kwargs = es.call_args.kwargs
        assert kwargs["hosts"] == ["http://a:9200", "http://b:9200"]
        assert kwargs["max_retries"] == 0
        assert kwargs["retry_on_timeout"] is False
        assert "basic_auth" not in kwargs

    def test_basic_auth_and_ca(self):
        """Credentials and CA bundle are passed to the client."""
        config = ElasticsearchConfig(username="svc", password="secret", ca_certs="/ca.pem")

        with patch("observability.collaborations.index.elasticsearch.Elasticsearch") as es:
            create_elasticsearch_client(config)

        kwargs = es.call_args.kwargs
        assert kwargs["basic_auth"] == ("svc", "secret")
        assert kwargs["ca_certs"] == "/ca.pem"


class TestBackendFactory:
    """Tests for create_search_backend."""

    def test_elasticsearch_backend_with_run_as(self):
        """The factory builds the cluster backend with the run-as header."""
        config = ServiceConfig(
            backend=SearchBackendKind.ELASTICSEARCH,
            elasticsearch=ElasticsearchConfig(run_as="svc-user"),
        )

        with patch("observability.collaborations.index.elasticsearch.Elasticsearch"):
            backend = create_search_backend(config)

        assert isinstance(backend, ElasticsearchBackend)
        assert backend.security_headers == {"es-security-runas-user": "svc-user"}

    def test_index_package_does_not_load_client(self):
        """Importing the index package leaves the cluster client unloaded."""
        code = (
            "import sys\n"
            "import observability.collaborations.index\n"
            "assert 'elasticsearch' not in sys.modules, 'client imported'\n"
        )

        result = subprocess.run(
            [sys.executable, "-c", code],
            cwd=PROJECT_ROOT,
            capture_output=True,
            text=True,
        )

        assert result.returncode == 0, result.stderr


class TestRequestOptions:
    """Tests for per-call client options."""

    def test_timeout_and_headers(self, backend, client):
        """Each call carries the timeout and the security headers."""
        client.indices.exists.return_value = True

        assert backend.index_exists(INDEX, timeout_ms=2500)

        client.options.assert_called_with(
            request_timeout=2.5,
            max_retries=0,
            retry_on_timeout=False,
            headers={"es-security-runas-user": "collab"},
        )

    def test_no_headers_without_security_context(self, client):
        """No headers are sent without a security context."""
        client.indices.exists.return_value = False

        ElasticsearchBackend(client).index_exists(INDEX, timeout_ms=1000)

        assert "headers" not in client.options.call_args.kwargs


class TestIndexLifecycle:
    """Tests for create_index and put_mapping."""

    def test_create_index(self, backend, client):
        """Create sends the mapping and settings."""
        client.indices.create.return_value = {"acknowledged": True}

        assert backend.create_index(INDEX, {"properties": {}}, {"index": {}}, 1000)

        client.indices.create.assert_called_once_with(
            index=INDEX, mappings={"properties": {}}, settings={"index": {}}
        )

    def test_create_index_not_acknowledged(self, backend, client):
        """A non-acknowledged create returns False."""
        client.indices.create.return_value = {"acknowledged": False}

        assert not backend.create_index(INDEX, {}, {}, 1000)

    def test_create_index_already_exists(self, backend, client):
        """An existing index raises IndexAlreadyExistsError."""
        client.indices.create.side_effect = api_error(
            BadRequestError, 400, "resource_already_exists_exception"
        )

        with pytest.raises(IndexAlreadyExistsError):
            backend.create_index(INDEX, {}, {}, 1000)

    def test_create_index_other_bad_request(self, backend, client):
        """Other create failures are invalid requests."""
        client.indices.create.side_effect = api_error(
            BadRequestError, 400, "mapper_parsing_exception"
        )

        with pytest.raises(InvalidRequestError):
            backend.create_index(INDEX, {}, {}, 1000)

    def test_put_mapping(self, backend, client):
        """The mapping update carries properties, dynamic and _meta."""
        client.indices.put_mapping.return_value = {"acknowledged": True}
        mappings = {"dynamic": False, "_meta": {"schema_version": 1}, "properties": {"a": {}}}

        assert backend.put_mapping(INDEX, mappings, 1000)

        client.indices.put_mapping.assert_called_once_with(
            index=INDEX, properties={"a": {}}, dynamic=False, meta={"schema_version": 1}
        )

    def test_put_mapping_index_missing(self, backend, client):
        """A missing index on mapping update raises IndexMissingError."""
        client.indices.put_mapping.side_effect = api_error(
            NotFoundError, 404, "index_not_found_exception"
        )

        with pytest.raises(IndexMissingError):
            backend.put_mapping(INDEX, {"properties": {}}, 1000)


class TestDocuments:
    """Tests for document operations."""

    def test_get_found(self, backend, client):
        """A found document keeps its source and version metadata."""
        client.get.return_value = {
            "_id": "a",
            "found": True,
            "_source": {"type": "note"},
            "_version": 3,
            "_seq_no": 7,
            "_primary_term": 2,
        }

        raw = backend.get(INDEX, "a", 1000)

        assert raw.found
        assert raw.source == {"type": "note"}
        assert (raw.version, raw.seq_no, raw.primary_term) == (3, 7, 2)

    def test_get_missing_document(self, backend, client):
        """A missing document reports found=False."""
        client.get.side_effect = api_error(NotFoundError, 404)

        assert not backend.get(INDEX, "a", 1000).found

    def test_get_missing_index(self, backend, client):
        """A missing index on get raises IndexMissingError."""
        client.get.side_effect = api_error(NotFoundError, 404, "index_not_found_exception")

        with pytest.raises(IndexMissingError):
            backend.get(INDEX, "a", 1000)

    def test_multi_get(self, backend, client):
        """Multi-get reports found and missing documents."""
        client.mget.return_value = {
            "docs": [
                {"_id": "a", "found": True, "_source": {"type": "note"}},
                {"_id": "b", "found": False},
            ]
        }

        raws = backend.multi_get(INDEX, ["a", "b"], 1000)

        assert [(r.id, r.found) for r in raws] == [("a", True), ("b", False)]
        client.mget.assert_called_once_with(index=INDEX, ids=["a", "b"])

    def test_multi_get_item_error_raises(self, backend, client):
        """A per-item shard failure is a backend error, not a missing document."""
        client.mget.return_value = {
            "docs": [
                {"_id": "a", "found": True, "_source": {"type": "note"}},
                {"_id": "b", "error": {"type": "unavailable_shards_exception"}},
            ]
        }

        with pytest.raises(BackendUnavailableError) as exc_info:
            backend.multi_get(INDEX, ["a", "b"], 1000)

        assert exc_info.value.details == {"id": "b", "reason": "unavailable_shards_exception"}

    def test_index_document_create_only(self, backend, client):
        """Documents are indexed with op_type=create."""
        client.index.return_value = {"_id": "a", "result": "created"}

        result = backend.index_document(INDEX, b'{"type":"note"}', "a", 1000, refresh="wait_for")

        assert result.id == "a"
        client.index.assert_called_once_with(
            index=INDEX,
            document=b'{"type":"note"}',
            op_type="create",
            refresh="wait_for",
            id="a",
        )

    def test_index_document_without_id(self, backend, client):
        """Without an id the cluster assigns one."""
        client.index.return_value = {"_id": "generated", "result": "created"}

        result = backend.index_document(INDEX, b"{}", None, 1000)

        assert result.id == "generated"
        assert "id" not in client.index.call_args.kwargs

    def test_index_document_conflict(self, backend, client):
        """A version conflict is a conflicting create."""
        client.index.side_effect = api_error(
            ConflictError, 409, "version_conflict_engine_exception"
        )

        with pytest.raises(ConflictingCreateError) as exc_info:
            backend.index_document(INDEX, b"{}", "a", 1000)

        assert exc_info.value.object_id == "a"

    def test_delete(self, backend, client):
        """Delete reports a removed document."""
        client.delete.return_value = {"_id": "a", "result": "deleted"}

        assert backend.delete(INDEX, "a", 1000)

    def test_delete_missing(self, backend, client):
        """Deleting an absent document returns False."""
        client.delete.side_effect = api_error(NotFoundError, 404)

        assert not backend.delete(INDEX, "a", 1000)

    def test_bulk_delete(self, backend, client):
        """Bulk delete reports every item's status and reason."""
        client.bulk.return_value = {
            "errors": True,
            "items": [
                {"delete": {"_id": "a", "status": 200, "result": "deleted"}},
                {"delete": {"_id": "b", "status": 404, "result": "not_found"}},
                {
                    "delete": {
                        "_id": "c",
                        "status": 503,
                        "error": {"type": "unavailable_shards_exception", "reason": "no shard"},
                    }
                },
            ],
        }

        items = backend.bulk_delete(INDEX, ["a", "b", "c"], 1000)

        assert [(i.id, i.status, i.error) for i in items] == [
            ("a", 200, None),
            ("b", 404, None),
            ("c", 503, "no shard"),
        ]
        operations = client.bulk.call_args.kwargs["operations"]
        assert operations[0] == {"delete": {"_index": INDEX, "_id": "a"}}

    def test_bulk_delete_nothing(self, backend, client):
        """An empty bulk delete sends no request."""
        assert backend.bulk_delete(INDEX, [], 1000) == []
        client.bulk.assert_not_called()


class TestSearch:
    """Tests for search."""

    def test_search_request_shape(self, backend, client):
        """Search sends paging, sort and the query timeout."""
        client.search.return_value = {"hits": {"total": {"value": 0, "relation": "eq"}, "hits": []}}
        query = SearchQuery(
            {"match_all": {}}, 5, 10, sort=[{"updatedTimeMs": {"order": "desc"}}], timeout_ms=900
        )

        backend.search(INDEX, query, 1000)

        client.search.assert_called_once_with(
            index=INDEX,
            query={"match_all": {}},
            from_=5,
            size=10,
            version=True,
            seq_no_primary_term=True,
            sort=[{"updatedTimeMs": {"order": "desc"}}],
            timeout="900ms",
        )

    def test_search_response(self, backend, client):
        """Hits and the total-hit relation are read from the response."""
        client.search.return_value = {
            "hits": {
                "total": {"value": 10000, "relation": "gte"},
                "hits": [{"_id": "a", "_source": {"type": "note"}, "_version": 1}],
            }
        }

        response = backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)

        assert response.total == 10000
        assert response.relation == "gte"
        assert response.hits[0].id == "a"
        assert response.hits[0].source == {"type": "note"}

    def test_search_integer_total(self, backend, client):
        """A plain integer total is exact."""
        client.search.return_value = {"hits": {"total": 3, "hits": []}}

        response = backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)

        assert (response.total, response.relation) == (3, "eq")


class TestErrorTranslation:
    """Tests for client error translation."""

    def test_timeout(self, backend, client):
        """A client timeout becomes OperationTimeoutError."""
        client.search.side_effect = ConnectionTimeout("timed out")

        with pytest.raises(OperationTimeoutError):
            backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)

    def test_connection_error(self, backend, client):
        """A connection failure is unavailability, not a timeout."""
        client.indices.exists.side_effect = ESConnectionError("refused")

        with pytest.raises(BackendUnavailableError) as exc_info:
            backend.index_exists(INDEX, 1000)

        assert not isinstance(exc_info.value, OperationTimeoutError)

    def test_bad_request(self, backend, client):
        """A 400 becomes InvalidRequestError."""
        client.search.side_effect = api_error(BadRequestError, 400, "search_phase_execution_exception")

        with pytest.raises(InvalidRequestError):
            backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)

    def test_server_error(self, backend, client):
        """Other API errors become BackendUnavailableError."""
        client.search.side_effect = api_error(ApiError, 503, "cluster_block_exception")

        with pytest.raises(BackendUnavailableError) as exc_info:
            backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)

        assert exc_info.value.details["status"] == 503

    def test_index_missing(self, backend, client):
        """A missing index on search raises IndexMissingError."""
        client.search.side_effect = api_error(NotFoundError, 404, "index_not_found_exception")

        with pytest.raises(IndexMissingError):
            backend.search(INDEX, SearchQuery({"match_all": {}}, 0, 1), 1000)
