"""
Integration tests for the access gate over the in-memory backend.

Tests cover:
- Create stamping (tenant, access, timestamps)
- Get dispatch: search, single id, several ids
- NOT_FOUND vs FORBIDDEN on single and batch paths
- Delete dispatch and all-or-nothing batch checks
- Redaction of sensitive fields
- Backend failures on batch lookups
"""

from unittest.mock import MagicMock

import pytest

from observability.collaborations.config import (
    FilterBy,
    SearchBackendKind,
    SecurityConfig,
    ServiceConfig,
)
from observability.collaborations.errors import (
    BackendUnavailableError,
    ConflictingCreateError,
    DeleteFailedError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from observability.collaborations.index import InMemorySearchBackend
from observability.collaborations.index.elasticsearch import ElasticsearchBackend
from observability.collaborations.main import CollaborationService
from observability.collaborations.model import (
    Comment,
    DeleteStatus,
    GetCollaborationObjectRequest,
    Note,
)
from observability.collaborations.security import AccessGate, Identity, UserAccessManager

NOW = 1_700_000_000_000


def by_ids(*ids):
    return GetCollaborationObjectRequest(ids=frozenset(ids))


@pytest.fixture
def alice():
    return Identity("alice", tenant="team-a", backend_roles=frozenset({"ops"}))


@pytest.fixture
def bob():
    return Identity("bob", tenant="team-a", backend_roles=frozenset({"dev"}))


@pytest.fixture
def carol():
    """Member of another tenant sharing alice's backend role."""
    return Identity("carol", tenant="team-b", backend_roles=frozenset({"ops"}))


@pytest.fixture
def admin():
    return Identity("root", tenant="team-a", roles=frozenset({"all_access"}))


@pytest.fixture
def backend():
    return InMemorySearchBackend()


def make_service(backend, security=None):
    config = ServiceConfig(backend=SearchBackendKind.MEMORY, security=security or SecurityConfig())
    service = CollaborationService.from_config(config, backend=backend)
    service.gate.clock = lambda: NOW
    return service


@pytest.fixture
def gate(backend):
    return make_service(backend).gate


class TestCreate:
    """Tests for AccessGate.create."""

    def test_stamps_identity(self, gate, alice):
        """Create stamps tenant, access tokens and timestamps."""
        object_id = gate.create(alice, Note(name="Review"))

        doc = gate.store.get(object_id).doc
        assert doc.tenant == "team-a"
        assert doc.access == ("User:alice", "BERole:ops")
        assert doc.created_time_ms == doc.updated_time_ms == NOW

    def test_default_tenant(self, gate):
        """An identity without a tenant writes to the default tenant."""
        object_id = gate.create(Identity("dave"), Note(name="Review"))

        assert gate.store.get(object_id).doc.tenant == ""

    def test_anonymous_rejected(self, backend, gate):
        """Anonymous creates are rejected before any write."""
        with pytest.raises(UnauthenticatedError):
            gate.create(None, Note(name="Review"))

        assert backend.index_count() == 0

    def test_conflicting_create(self, gate, alice):
        """A second create under the same id conflicts."""
        gate.create(alice, Note(name="first"), "X")

        with pytest.raises(ConflictingCreateError):
            gate.create(alice, Note(name="second"), "X")


class TestGetSingle:
    """Tests for get with one id."""

    def test_visible_object(self, gate, alice):
        """A visible object is returned alone."""
        object_id = gate.create(alice, Note(name="Review"))

        response = gate.get(alice, by_ids(object_id))

        (doc,) = response.search_result.objects
        assert doc.object_id == object_id
        assert response.search_result.total_hits == 1

    def test_missing(self, gate, alice):
        """A missing id is NOT_FOUND."""
        with pytest.raises(NotFoundError) as exc_info:
            gate.get(alice, by_ids("nope"))

        assert exc_info.value.ids == {"nope"}
        assert exc_info.value.status == 404

    def test_same_tenant_without_token(self, gate, alice, bob):
        """Same tenant without a shared token is FORBIDDEN."""
        object_id = gate.create(alice, Note(name="Review"))

        with pytest.raises(PermissionDeniedError) as exc_info:
            gate.get(bob, by_ids(object_id))

        assert exc_info.value.status == 403

    def test_other_tenant_forbidden(self, gate, alice, carol):
        """Cross-tenant reads are FORBIDDEN, never silently empty."""
        object_id = gate.create(alice, Note(name="Review"))

        with pytest.raises(PermissionDeniedError):
            gate.get(carol, by_ids(object_id))

    def test_superuser_in_tenant(self, gate, alice, admin):
        """Superusers read any object of their tenant unredacted."""
        object_id = gate.create(alice, Note(name="Review"))

        response = gate.get(admin, by_ids(object_id))

        assert not response.filter_sensitive_info
        assert response.to_dict()["objectList"][0]["tenant"] == "team-a"

    def test_regular_user_output_redacted(self, gate, alice):
        """Regular users get output without sensitive fields."""
        object_id = gate.create(alice, Note(name="Review"))

        rendered = gate.get(alice, by_ids(object_id)).to_dict()

        (obj,) = rendered["objectList"]
        assert "tenant" not in obj
        assert "access" not in obj
        assert "createdTimeMs" not in obj
        assert rendered["totalHits"] == 1
        assert rendered["totalHitRelation"] == "eq"


class TestGetMany:
    """Tests for get with several ids."""

    def test_all_visible(self, gate, alice):
        """Every requested object is returned."""
        ids = {gate.create(alice, Note(name=n)) for n in ("a", "b")}

        response = gate.get(alice, GetCollaborationObjectRequest(ids=frozenset(ids)))

        assert {o.object_id for o in response.search_result.objects} == ids

    def test_missing_ids_reported(self, gate, alice):
        """All missing ids are reported together."""
        gate.create(alice, Note(name="a"), "a")

        with pytest.raises(NotFoundError) as exc_info:
            gate.get(alice, by_ids("a", "b", "c"))

        assert exc_info.value.ids == {"b", "c"}

    def test_missing_reported_before_access(self, gate, alice, bob):
        """Absence is reported independent of access."""
        gate.create(alice, Note(name="a"), "a")

        with pytest.raises(NotFoundError) as exc_info:
            gate.get(bob, by_ids("a", "b"))

        assert exc_info.value.ids == {"b"}

    def test_one_forbidden_aborts_batch(self, gate, alice, bob):
        """One forbidden object fails the whole batch."""
        gate.create(alice, Note(name="a"), "a")
        gate.create(bob, Note(name="b"), "b")

        with pytest.raises(PermissionDeniedError) as exc_info:
            gate.get(alice, by_ids("a", "b"))

        assert exc_info.value.object_id == "b"


class TestSearch:
    """Tests for get without ids."""

    def test_sees_only_own_tenant_and_tokens(self, gate, alice, bob, carol):
        """Search returns only same-tenant objects with a shared token."""
        mine = gate.create(alice, Note(name="mine"))
        gate.create(bob, Note(name="bobs"))
        gate.create(carol, Note(name="other tenant"))

        response = gate.get(alice, GetCollaborationObjectRequest())

        assert [o.object_id for o in response.search_result.objects] == [mine]

    def test_access_isolation_across_tenants(self, gate, alice, carol):
        """Objects created under T1 are never returned to T2."""
        gate.create(alice, Note(name="t1 note"))

        response = gate.get(carol, GetCollaborationObjectRequest())

        assert response.search_result.objects == ()
        assert response.search_result.total_hits == 0

    def test_superuser_sees_tenant(self, gate, alice, bob, admin):
        """Superusers search their whole tenant."""
        gate.create(alice, Note(name="a"))
        gate.create(bob, Note(name="b"))

        response = gate.get(admin, GetCollaborationObjectRequest())

        assert response.search_result.total_hits == 2

    def test_user_without_matching_tokens(self, backend, alice):
        """A user with no role tokens matches nothing under the roles filter."""
        gate = make_service(backend, SecurityConfig(filter_by=FilterBy.ROLES)).gate
        gate.create(alice, Note(name="a"))

        response = gate.get(Identity("eve", tenant="team-a"), GetCollaborationObjectRequest())

        assert response.search_result.total_hits == 0
        assert "search" not in backend.calls

    def test_search_filters(self, gate, alice):
        """Filter parameters narrow the search."""
        gate.create(alice, Comment(thread_id="t1", text="first"), "c1")
        gate.create(alice, Comment(thread_id="t2", text="second"), "c2")

        response = gate.get(
            alice, GetCollaborationObjectRequest(filter_params={"comment.threadId": "t2"})
        )

        assert [o.object_id for o in response.search_result.objects] == ["c2"]


class TestDelete:
    """Tests for AccessGate.delete."""

    def test_single_delete(self, gate, alice):
        """A single delete removes the object."""
        object_id = gate.create(alice, Note(name="a"))

        assert gate.delete(alice, [object_id]) == {object_id: DeleteStatus.OK}
        assert gate.store.get(object_id) is None

    def test_single_delete_missing(self, gate, alice):
        """Deleting a missing id is NOT_FOUND."""
        with pytest.raises(NotFoundError):
            gate.delete(alice, ["nope"])

    def test_single_delete_forbidden(self, gate, alice, bob):
        """A forbidden delete leaves the object in place."""
        object_id = gate.create(alice, Note(name="a"))

        with pytest.raises(PermissionDeniedError):
            gate.delete(bob, [object_id])

        assert gate.store.get(object_id) is not None

    def test_single_delete_failed(self, gate, alice, monkeypatch):
        """A delete that removes nothing fails with 408."""
        object_id = gate.create(alice, Note(name="a"))
        monkeypatch.setattr(gate.store, "delete", lambda object_id: False)

        with pytest.raises(DeleteFailedError) as exc_info:
            gate.delete(alice, [object_id])

        assert exc_info.value.status == 408

    def test_bulk_delete(self, gate, alice):
        """Bulk delete reports OK for every removed id."""
        gate.create(alice, Note(name="a"), "a")
        gate.create(alice, Note(name="b"), "b")

        statuses = gate.delete(alice, ["a", "b"])

        assert statuses == {"a": DeleteStatus.OK, "b": DeleteStatus.OK}

    def test_bulk_delete_missing_deletes_nothing(self, gate, alice):
        """A missing id stops the batch before any delete."""
        gate.create(alice, Note(name="a"), "a")

        with pytest.raises(NotFoundError) as exc_info:
            gate.delete(alice, ["a", "b"])

        assert exc_info.value.ids == {"b"}
        assert gate.store.get("a") is not None

    def test_bulk_delete_forbidden_deletes_nothing(self, gate, alice, bob):
        """A forbidden id stops the batch before any delete."""
        gate.create(alice, Note(name="a"), "a")
        gate.create(bob, Note(name="b"), "b")

        with pytest.raises(PermissionDeniedError):
            gate.delete(alice, ["a", "b"])

        assert gate.store.get("a") is not None
        assert gate.store.get("b") is not None

    def test_empty_delete_rejected(self, gate, alice):
        """Deleting no ids is an invalid request."""
        with pytest.raises(InvalidRequestError):
            gate.delete(alice, [])

    def test_anonymous_delete_rejected(self, gate):
        """Anonymous deletes are rejected."""
        with pytest.raises(UnauthenticatedError):
            gate.delete(None, ["a"])


class TestAnonymousTrusted:
    """Tests with require_identity disabled."""

    def test_trusted_local_caller(self, backend):
        """Trusted anonymous callers use the default tenant unfiltered."""
        gate = make_service(backend, SecurityConfig(require_identity=False)).gate

        object_id = gate.create(None, Note(name="local"))
        response = gate.get(None, by_ids(object_id))

        assert not response.filter_sensitive_info
        assert response.search_result.objects[0].tenant == ""
        assert response.search_result.objects[0].access == ()


class TestWiring:
    """Tests for service construction."""

    def test_components_share_backend(self, backend):
        """All components share one backend and provisioner."""
        service = make_service(backend)

        assert service.store.backend is backend
        assert service.provisioner.backend is backend
        assert service.store.provisioner is service.provisioner
        assert isinstance(service.gate, AccessGate)
        assert isinstance(service.access_manager, UserAccessManager)


class TestBackendFailures:
    """Tests that backend failures are not reported as missing objects."""

    @pytest.fixture
    def es_gate(self):
        """Gate over an Elasticsearch backend whose client is mocked."""
        client = MagicMock()
        client.options.return_value = client
        client.indices.exists.return_value = True
        client.indices.put_mapping.return_value = {"acknowledged": True}
        client.mget.return_value = {
            "docs": [
                {
                    "_id": "a",
                    "found": True,
                    "_source": {
                        "type": "note",
                        "note": {"name": "a"},
                        "tenant": "team-a",
                        "access": ["User:alice"],
                        "createdTimeMs": NOW,
                        "updatedTimeMs": NOW,
                    },
                },
                {"_id": "b", "error": {"type": "unavailable_shards_exception"}},
            ]
        }
        service = make_service(ElasticsearchBackend(client))
        return service.gate, client

    def test_shard_failure_on_get_is_not_not_found(self, es_gate, alice):
        """A per-item shard failure on a batch get surfaces as unavailable."""
        gate, _ = es_gate

        with pytest.raises(BackendUnavailableError) as exc_info:
            gate.get(alice, by_ids("a", "b"))

        assert not isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.status == 503
        assert exc_info.value.details["id"] == "b"

    def test_shard_failure_on_delete_deletes_nothing(self, es_gate, alice):
        """A batch delete stops before deleting when a lookup fails."""
        gate, client = es_gate

        with pytest.raises(BackendUnavailableError):
            gate.delete(alice, ["a", "b"])

        client.bulk.assert_not_called()
