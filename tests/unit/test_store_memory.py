"""
Unit tests for the in-memory document store.

Tests cover:
- Basic document operations
- Conditional writes and conflict reporting
- Unique keys
- Query subset and paging
- Container lifecycle
"""

import pytest

from optidoc import DocumentStore, InMemoryDocumentStore, sql
from optidoc.errors import ConflictError, ConflictReason, NotFoundError
from optidoc.query import QuerySpec


class TestInMemoryDocumentStore:
    """Tests for document operations."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryDocumentStore(), DocumentStore)

    @pytest.mark.asyncio
    async def test_insert_and_read(self, store):
        created = await store.insert("users", {"id": "1", "username": "connor"})

        assert created.status_code == 201
        assert created.etag is not None
        assert created.resource["_etag"] == created.etag
        assert isinstance(created.resource["_ts"], int)

        read = await store.read("users", "1", "1")
        assert read.resource == created.resource
        assert read.request_charge == 1.0
        assert read.activity_id

    @pytest.mark.asyncio
    async def test_read_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.read("users", "1", "1")
        assert exc_info.value.item_id == "1"

    @pytest.mark.asyncio
    async def test_missing_container(self, store):
        with pytest.raises(NotFoundError, match="Container"):
            await store.read("nope", "1", "1")

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, store):
        await store.insert("users", {"id": "1", "username": "a"})
        with pytest.raises(ConflictError) as exc_info:
            await store.insert("users", {"id": "1", "username": "b"})
        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", [{"username": "a"}, {"id": "", "username": "a"}])
    async def test_document_without_id_is_rejected(self, store, document):
        with pytest.raises(ValueError, match="id"):
            await store.insert("users", document)
        with pytest.raises(ValueError, match="id"):
            await store.upsert("users", document)
        assert store.get_document_count("users") == 0

    @pytest.mark.asyncio
    async def test_same_id_in_other_partition(self, store):
        await store.insert("posts", {"id": "1", "author": "a"})
        await store.insert("posts", {"id": "1", "author": "b"})
        assert store.get_document_count("posts") == 2

    @pytest.mark.asyncio
    async def test_client_system_keys_are_ignored(self, store):
        created = await store.insert("users", {"id": "1", "username": "a", "_etag": "bogus"})
        assert created.etag != "bogus"

    @pytest.mark.asyncio
    async def test_returned_resource_is_a_copy(self, store):
        created = await store.insert("users", {"id": "1", "username": "a"})
        created.resource["username"] = "changed"
        assert store.get_document("users", "1", "1")["username"] == "a"


class TestConditionalWrites:
    """Tests for If-Match semantics."""

    @pytest.mark.asyncio
    async def test_replace_with_current_etag(self, store):
        created = await store.insert("users", {"id": "1", "username": "a"})
        replaced = await store.replace(
            "users", "1", {"id": "1", "username": "b"}, if_match=created.etag
        )

        assert replaced.etag != created.etag
        assert store.get_document("users", "1", "1")["username"] == "b"

    @pytest.mark.asyncio
    async def test_replace_with_stale_etag(self, store):
        created = await store.insert("users", {"id": "1", "username": "a"})
        await store.replace("users", "1", {"id": "1", "username": "b"}, if_match=created.etag)

        with pytest.raises(ConflictError) as exc_info:
            await store.replace(
                "users", "1", {"id": "1", "username": "c"}, if_match=created.etag
            )
        assert exc_info.value.reason is ConflictReason.PRECONDITION_FAILED
        assert exc_info.value.status_code == 412
        assert store.get_document("users", "1", "1")["username"] == "b"

    @pytest.mark.asyncio
    async def test_unconditional_replace(self, store):
        await store.insert("users", {"id": "1", "username": "a"})
        await store.replace("users", "1", {"id": "1", "username": "b"})
        assert store.get_document("users", "1", "1")["username"] == "b"

    @pytest.mark.asyncio
    async def test_replace_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.replace("users", "1", {"id": "1", "username": "b"})

    @pytest.mark.asyncio
    async def test_upsert_status(self, store):
        first = await store.upsert("users", {"id": "1", "username": "a"})
        second = await store.upsert("users", {"id": "1", "username": "b"})
        assert first.status_code == 201
        assert second.status_code == 200

    @pytest.mark.asyncio
    async def test_delete(self, store):
        created = await store.insert("users", {"id": "1", "username": "a"})

        with pytest.raises(ConflictError):
            await store.delete("users", "1", "1", if_match='"stale"')

        response = await store.delete("users", "1", "1", if_match=created.etag)
        assert response.status_code == 204
        assert store.get_document("users", "1", "1") is None

        with pytest.raises(NotFoundError):
            await store.delete("users", "1", "1")


class TestUniqueKeys:
    """Tests for unique key enforcement."""

    @pytest.mark.asyncio
    async def test_unique_violation(self, store):
        await store.insert("users", {"id": "1", "username": "connor"})
        with pytest.raises(ConflictError, match="Unique key"):
            await store.insert("users", {"id": "2", "username": "connor"})

    @pytest.mark.asyncio
    async def test_replacing_self_is_not_a_violation(self, store):
        await store.insert("users", {"id": "1", "username": "connor"})
        await store.upsert("users", {"id": "1", "username": "connor", "logins": 1})

    @pytest.mark.asyncio
    async def test_unique_is_per_partition(self):
        store = InMemoryDocumentStore()
        await store.create_container_if_not_exists(
            {
                "id": "posts",
                "partitionKey": {"paths": ["/author"], "version": 1},
                "uniqueKeyPolicy": {"uniqueKeys": [{"paths": ["/title"]}]},
            }
        )
        await store.insert("posts", {"id": "1", "author": "a", "title": "t"})
        await store.insert("posts", {"id": "2", "author": "b", "title": "t"})

        with pytest.raises(ConflictError):
            await store.insert("posts", {"id": "3", "author": "a", "title": "t"})


class TestQueries:
    """Tests for the query subset."""

    @pytest.mark.asyncio
    async def test_select_all(self, store):
        await store.insert("posts", {"id": "1", "author": "a"})
        page = await store.query_page("posts", QuerySpec("SELECT * FROM c"))
        assert [d["id"] for d in page.documents] == ["1"]
        assert page.continuation is None

    @pytest.mark.asyncio
    async def test_where_with_parameters(self, store):
        await store.insert("posts", {"id": "1", "author": "a", "title": "x"})
        await store.insert("posts", {"id": "2", "author": "b", "title": "x"})

        page = await store.query_page(
            "posts", sql("SELECT p.* FROM posts p WHERE p.author = {} AND p.title = {}", "b", "x")
        )
        assert [d["id"] for d in page.documents] == ["2"]

    @pytest.mark.asyncio
    async def test_literals(self, store):
        await store.insert("users", {"id": "1", "username": "a", "logins": 3})
        await store.insert("users", {"id": "2", "username": "b", "logins": 4})

        by_string = await store.query_page(
            "users", QuerySpec("SELECT * FROM users u WHERE u.username = 'b'")
        )
        by_number = await store.query_page(
            "users", QuerySpec("SELECT * FROM users AS u WHERE u.logins = 3")
        )
        assert [d["id"] for d in by_string.documents] == ["2"]
        assert [d["id"] for d in by_number.documents] == ["1"]

    @pytest.mark.asyncio
    async def test_nested_path(self, store):
        await store.insert("users", {"id": "1", "username": "a", "address": {"postal": 1}})
        await store.insert("users", {"id": "2", "username": "b", "address": {"postal": 2}})

        page = await store.query_page(
            "users", sql("SELECT * FROM c WHERE c.address.postal = {}", 2)
        )
        assert [d["id"] for d in page.documents] == ["2"]

    @pytest.mark.asyncio
    async def test_partition_scoped(self, store):
        await store.insert("posts", {"id": "1", "author": "a"})
        await store.insert("posts", {"id": "2", "author": "b"})

        page = await store.query_page("posts", QuerySpec("SELECT * FROM c"), partition_key="b")
        assert [d["id"] for d in page.documents] == ["2"]

    @pytest.mark.asyncio
    async def test_paging(self, store):
        for i in range(5):
            await store.insert("posts", {"id": str(i), "author": "a"})

        spec = QuerySpec("SELECT * FROM c")
        first = await store.query_page("posts", spec, options={"max_item_count": 2})
        second = await store.query_page("posts", spec, None, first.continuation, {"max_item_count": 2})
        third = await store.query_page("posts", spec, None, second.continuation, {"max_item_count": 2})

        assert [d["id"] for d in first.documents] == ["0", "1"]
        assert [d["id"] for d in second.documents] == ["2", "3"]
        assert [d["id"] for d in third.documents] == ["4"]
        assert third.continuation is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query",
        [
            "SELECT c.id FROM c",
            "SELECT * FROM c ORDER BY c.id",
            "SELECT * FROM c WHERE c.a > 1",
            "SELECT * FROM c WHERE d.a = 1",
            "SELECT * FROM c WHERE c.a = @missing",
            "SELECT * FROM c WHERE c.a = nope",
        ],
    )
    async def test_unsupported(self, store, query):
        with pytest.raises(ValueError):
            await store.query_page("posts", QuerySpec(query))


class TestContainers:
    """Tests for container lifecycle."""

    @pytest.mark.asyncio
    async def test_create_if_not_exists(self):
        store = InMemoryDocumentStore()
        first = await store.create_container_if_not_exists({"id": "c"})
        second = await store.create_container_if_not_exists({"id": "c", "defaultTtl": 5})

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.resource == {"id": "c"}

    @pytest.mark.asyncio
    async def test_replace_keeps_documents(self, store):
        await store.insert("posts", {"id": "1", "author": "a"})
        await store.replace_container(
            {"id": "posts", "partitionKey": {"paths": ["/author"], "version": 1}, "defaultTtl": 60}
        )
        assert store.get_document_count("posts") == 1

    @pytest.mark.asyncio
    async def test_replace_missing(self):
        with pytest.raises(NotFoundError):
            await InMemoryDocumentStore().replace_container({"id": "c"})

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.delete_container("posts")
        assert not store.has_container("posts")
        with pytest.raises(NotFoundError):
            await store.delete_container("posts")


class TestTestingHelpers:
    """Tests for counters and helpers."""

    @pytest.mark.asyncio
    async def test_operation_counts(self, store):
        await store.insert("users", {"id": "1", "username": "a"})
        await store.read("users", "1", "1")
        await store.upsert("users", {"id": "1", "username": "b"})

        assert store.operation_counts["insert"] == 1
        assert store.operation_counts["read"] == 1
        assert store.write_count() == 2

    @pytest.mark.asyncio
    async def test_latency(self, slow_store):
        await slow_store.insert("users", {"id": "1", "username": "a"})
        assert slow_store.latency == 0.001
        assert slow_store.get_document_count("users") == 1

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.insert("users", {"id": "1", "username": "a"})
        store.clear()
        assert not store.has_container("users")
        assert store.write_count() == 0
