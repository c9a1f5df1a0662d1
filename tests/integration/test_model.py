"""
Integration tests for models against the in-memory store.

Tests cover:
- Create / read round trips through field transforms
- Validation before writes
- Optimistic concurrency on update and delete
- Lifecycle hook ordering
- Entity state and schema-checked property access
"""

from datetime import datetime, timezone

import pytest

from optidoc import (
    ConflictError,
    Continue,
    EntityState,
    Model,
    StoreNotConfiguredError,
    ValidationError,
    connect_models,
)
from optidoc.errors import (
    CodecError,
    ConflictReason,
    EntityDeletedError,
    NotFoundError,
    PreconditionMissingError,
    UnknownFieldError,
)
from tests.models import Event, HookedUser, Post, User


class TestRoundTrip:
    """Tests for create and read."""

    @pytest.mark.asyncio
    async def test_create_then_find(self, store):
        user = User(id="1", username="connor", favoriteColors={"blue", "red"})
        returned = await user.create(store=store)

        assert returned is user
        assert user.state is EntityState.PERSISTED
        assert user.etag is not None
        assert user.last_modified is not None
        assert user.updated_at is not None

        stored = store.get_document("users", "1", "1")
        assert stored["favoriteColors"] == ["blue", "red"]

        found = await User.partition("1", store).find("1")
        assert found["favoriteColors"] == {"blue", "red"}
        assert found.etag == user.etag
        assert found.to_object() == {
            "id": "1",
            "username": "connor",
            "favoriteColors": {"blue", "red"},
        }

    @pytest.mark.asyncio
    async def test_props_do_not_hold_metadata(self, store):
        user = await User(id="1", username="connor").create(store=store)
        assert "_etag" not in user.props
        assert "_ts" not in user.props

    @pytest.mark.asyncio
    async def test_registry_store(self, store):
        connect_models(store)
        await User(id="1", username="connor").create()
        assert (await User.partition("1").find("1"))["username"] == "connor"

    @pytest.mark.asyncio
    async def test_no_store_configured(self):
        with pytest.raises(StoreNotConfiguredError):
            await User(id="1", username="connor").create()

    @pytest.mark.asyncio
    async def test_corrupt_stored_data(self, store):
        await store.insert("users", {"id": "1", "username": "a", "favoriteColors": 5})

        with pytest.raises(CodecError) as exc_info:
            await User.partition("1", store).find("1")
        assert exc_info.value.field_name == "favoriteColors"


class TestValidation:
    """Tests for validation before writes."""

    def test_validate_is_idempotent(self):
        user = User(id="1", username="connor", favoriteColors={"a"})
        before = user.to_object()
        user.validate()
        user.validate()
        assert user.to_object() == before

    def test_validate_reports_every_error(self):
        user = User(id="1", favoriteColors={"a", "b", "c", "d"}, logins=-1)
        with pytest.raises(ValidationError) as exc_info:
            user.validate()
        assert len(exc_info.value.errors) == 3

    @pytest.mark.asyncio
    async def test_invalid_document_is_never_sent(self, store):
        with pytest.raises(ValidationError):
            await User(id="1").create(store=store)
        with pytest.raises(ValidationError):
            await User(id="1", username="a", logins=-1).update(store=store)

        assert store.write_count() == 0

    @pytest.mark.asyncio
    async def test_validation_can_be_skipped(self, store):
        await User(id="1").create(store=store, validate=False)
        assert store.get_document_count("users") == 1

    @pytest.mark.asyncio
    async def test_validation_disabled_by_settings(self, store, monkeypatch):
        monkeypatch.setenv("OPTIDOC_VALIDATE_ON_WRITE", "false")
        await User(id="1").create(store=store)
        assert store.get_document_count("users") == 1


class TestCreate:
    """Tests for create conflicts."""

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store):
        await User(id="1", username="a").create(store=store)

        with pytest.raises(ConflictError) as exc_info:
            await User(id="1", username="b").create(store=store)
        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS
        assert store.get_document("users", "1", "1")["username"] == "a"

    @pytest.mark.asyncio
    async def test_force_overwrites(self, store):
        await User(id="1", username="a").create(store=store)
        await User(id="1", username="b").create(store=store, force=True)

        assert store.get_document("users", "1", "1")["username"] == "b"
        assert store.operation_counts["upsert"] == 1


class TestUpdate:
    """Tests for optimistic updates."""

    @pytest.mark.asyncio
    async def test_update_refreshes_etag(self, store):
        user = await User(id="1", username="a").create(store=store)
        first_etag = user.etag

        user["logins"] = 1
        await user.update(store=store)

        assert user.etag != first_etag
        assert store.get_document("users", "1", "1")["logins"] == 1

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, store):
        await User(id="1", username="a").create(store=store)
        partition = User.partition("1", store)
        first = await partition.find("1")
        second = await partition.find("1")

        first["logins"] = 1
        await first.update(store=store)

        second["logins"] = 2
        with pytest.raises(ConflictError) as exc_info:
            await second.update(store=store)
        assert exc_info.value.reason is ConflictReason.PRECONDITION_FAILED
        assert store.get_document("users", "1", "1")["logins"] == 1

        await second.update(store=store, force=True)
        assert store.get_document("users", "1", "1")["logins"] == 2

    @pytest.mark.asyncio
    async def test_update_without_etag_is_unconditional(self, store):
        await User(id="1", username="a").create(store=store)
        await User(id="1", username="b").update(store=store)
        assert store.get_document("users", "1", "1")["username"] == "b"

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await User(id="1", username="a").update(store=store)

    @pytest.mark.asyncio
    async def test_save_dispatches(self, store):
        user = User(id="1", username="a")
        await user.save(store=store)
        user["logins"] = 3
        await user.save(store=store)

        assert store.operation_counts["insert"] == 1
        assert store.operation_counts["replace"] == 1


class TestDelete:
    """Tests for delete."""

    @pytest.mark.asyncio
    async def test_delete_requires_etag(self, store):
        with pytest.raises(PreconditionMissingError):
            await User(id="1", username="a").delete(store=store)
        assert store.write_count() == 0

    @pytest.mark.asyncio
    async def test_force_delete_without_etag(self, store):
        await User(id="1", username="a").create(store=store)
        await User(id="1", username="a").delete(store=store, force=True)
        assert store.get_document_count("users") == 0

    @pytest.mark.asyncio
    async def test_stale_delete_conflicts(self, store):
        user = await User(id="1", username="a").create(store=store)
        other = await User.partition("1", store).find("1")
        await other.update(store=store)

        with pytest.raises(ConflictError):
            await user.delete(store=store)
        assert user.state is EntityState.PERSISTED

    @pytest.mark.asyncio
    async def test_deleted_entity_is_terminal(self, store):
        user = await User(id="1", username="a").create(store=store)
        await user.delete(store=store)

        assert user.state is EntityState.DELETED
        assert store.get_document_count("users") == 0
        with pytest.raises(EntityDeletedError):
            await user.update(store=store)
        with pytest.raises(EntityDeletedError):
            await user.delete(store=store)

    @pytest.mark.asyncio
    async def test_partition_key_from_document(self, store):
        post = await Post(id="1", author="connor").create(store=store)
        await post.delete(store=store)
        assert store.get_document_count("posts") == 0


class TestTransformedPartitionKey:
    """A partition key field with a transform is routed by its stored form."""

    DAY = datetime(2024, 5, 1, tzinfo=timezone.utc)
    STORED_DAY = "2024-05-01T00:00:00+00:00"

    def test_partition_key_is_serialized(self):
        assert Event(id="e1", day=self.DAY).partition_key() == self.STORED_DAY

    @pytest.mark.asyncio
    async def test_create_update_delete(self, store):
        event = await Event(id="e1", day=self.DAY, title="a").create(store=store)
        assert store.get_document("events", self.STORED_DAY, "e1")["day"] == self.STORED_DAY

        other = await Event.partition(self.STORED_DAY, store).find("e1")
        assert other["day"] == self.DAY
        other["title"] = "b"
        await other.update(store=store)

        seen = []

        def retitle(current):
            seen.append(current["title"])
            current["title"] = current["title"] + "!"
            return Continue(current)

        await event.update_using(retitle, store=store)
        assert seen == ["a", "b"]
        assert store.get_document("events", self.STORED_DAY, "e1")["title"] == "b!"

        await event.delete(store=store)
        assert store.get_document_count("events") == 0


class TestHooks:
    """Tests for lifecycle hook ordering."""

    @pytest.mark.asyncio
    async def test_create_order(self, store):
        user = await HookedUser(id="1", username="a").create(store=store)
        assert user.calls == ["before_create", "before_persist", "after_persist", "after_create"]

    @pytest.mark.asyncio
    async def test_update_order(self, store):
        user = await HookedUser(id="1", username="a").create(store=store)
        user.calls.clear()
        await user.update(store=store)
        assert user.calls == ["before_update", "before_persist", "after_persist", "after_update"]

    @pytest.mark.asyncio
    async def test_delete_order(self, store):
        user = await HookedUser(id="1", username="a").create(store=store)
        user.calls.clear()
        await user.delete(store=store)
        assert user.calls == ["before_delete", "after_delete"]

    @pytest.mark.asyncio
    async def test_no_after_hooks_on_failure(self, store):
        await User(id="1", username="a").create(store=store)
        user = HookedUser(id="1", username="b")

        with pytest.raises(ConflictError):
            await user.create(store=store)
        assert user.calls == ["before_create", "before_persist"]

    @pytest.mark.asyncio
    async def test_before_hook_failure_sends_nothing(self, store):
        class FailsBeforeCreate(Model, schema=User.schema):
            async def before_create(self) -> None:
                raise RuntimeError("before_create failed")

        class FailsBeforePersist(Model, schema=User.schema):
            async def before_persist(self) -> None:
                raise RuntimeError("before_persist failed")

        with pytest.raises(RuntimeError, match="before_create"):
            await FailsBeforeCreate(id="1", username="a").create(store=store)
        user = FailsBeforePersist(id="1", username="a")
        with pytest.raises(RuntimeError, match="before_persist"):
            await user.create(store=store)

        assert store.write_count() == 0
        assert user.state is EntityState.NEW
        assert user.etag is None

    @pytest.mark.asyncio
    async def test_after_hook_failure_is_post_commit(self, store):
        class FailsAfterPersist(Model, schema=User.schema):
            async def after_persist(self) -> None:
                raise RuntimeError("after_persist failed")

        class FailsAfterCreate(Model, schema=User.schema):
            async def after_create(self) -> None:
                raise RuntimeError("after_create failed")

        first = FailsAfterPersist(id="1", username="a")
        with pytest.raises(RuntimeError, match="after_persist"):
            await first.create(store=store)
        second = FailsAfterCreate(id="2", username="b")
        with pytest.raises(RuntimeError, match="after_create"):
            await second.create(store=store)

        for entity in (first, second):
            stored = store.get_document("users", entity.id, entity.id)
            assert stored is not None
            assert entity.etag == stored["_etag"]
            assert entity.state is EntityState.PERSISTED

    @pytest.mark.asyncio
    async def test_before_persist_changes_are_written(self, store):
        class Normalized(Model, schema=User.schema):
            async def before_persist(self) -> None:
                self["username"] = self["username"].strip()

        await Normalized(id="1", username="  connor ").create(store=store)
        assert store.get_document("users", "1", "1")["username"] == "connor"


class TestPropertyAccess:
    """Tests for schema-checked property access."""

    def test_unknown_field_on_construct(self):
        with pytest.raises(UnknownFieldError) as exc_info:
            User(id="1", usernme="connor")
        assert exc_info.value.suggestions == ["username"]

    def test_unknown_field_on_access(self):
        user = User(id="1", username="connor")
        with pytest.raises(UnknownFieldError):
            user["usernme"]
        with pytest.raises(UnknownFieldError):
            user["usernme"] = "x"
        with pytest.raises(UnknownFieldError):
            user.get("usernme")

    def test_declared_but_unset(self):
        user = User(id="1", username="connor")
        assert user["logins"] is None
        assert user.get("logins", 0) == 0
        assert "logins" not in user

    def test_delete_property(self):
        user = User(id="1", username="connor", logins=1)
        del user["logins"]
        assert "logins" not in user

    def test_metadata_in_props(self):
        user = User({"id": "1", "username": "a", "_etag": '"e"', "_ts": 10, "_rid": "r"})
        assert user.etag == '"e"'
        assert user.last_modified == 10
        assert user.state is EntityState.PERSISTED
        assert user.props == {"id": "1", "username": "a"}

    def test_from_document_keeps_undeclared(self):
        user = User.from_document({"id": "1", "username": "a", "legacy": True})
        assert user.props["legacy"] is True
        assert user.state is EntityState.NEW

    def test_partition_key(self):
        assert Post(id="1", author="connor").partition_key() == "connor"
        with pytest.raises(ValueError, match="Partition key"):
            Post(id="1").partition_key()

    def test_model_without_schema(self):
        class Bare(Model):
            pass

        with pytest.raises(TypeError):
            Bare(id="1")
