"""
Schemas and models shared by the test suite.
"""

from typing import List

from optidoc import Model, create_schema, datetime_transform, set_transform

USER_SCHEMA = (
    create_schema("users")
    .field("username", {"type": "string"}, required=True)
    .field(
        "favoriteColors",
        {"type": "array", "maxItems": 3, "items": {"type": "string"}},
        transform=set_transform(),
    )
    .field("logins", {"type": "integer", "minimum": 0})
    .field(
        "address",
        {
            "type": "object",
            "properties": {
                "street": {"type": "string"},
                "postal": {"type": "integer"},
            },
        },
    )
    .partition_key("/id")
    .unique("/username")
)

PAGE_VIEW_SCHEMA = (
    create_schema("page_views")
    .field("views", {"type": "integer", "minimum": 0}, required=True)
    .partition_key("/id")
)

POST_SCHEMA = (
    create_schema("posts")
    .field("author", {"type": "string"}, required=True)
    .field("title", {"type": "string"})
    .field("tags", {"type": "array", "items": {"type": "string"}})
    .partition_key("/author")
)

EVENT_SCHEMA = (
    create_schema("events")
    .field("day", {"type": "string"}, required=True, transform=datetime_transform())
    .field("title", {"type": "string"})
    .partition_key("/day")
)


class User(Model, schema=USER_SCHEMA):
    pass


class HookedUser(Model, schema=USER_SCHEMA):
    """Records every lifecycle hook it runs."""

    @property
    def calls(self) -> List[str]:
        return self.__dict__.setdefault("_calls", [])

    async def before_persist(self) -> None:
        self.calls.append("before_persist")

    async def after_persist(self) -> None:
        self.calls.append("after_persist")

    async def before_create(self) -> None:
        self.calls.append("before_create")

    async def after_create(self) -> None:
        self.calls.append("after_create")

    async def before_update(self) -> None:
        self.calls.append("before_update")

    async def after_update(self) -> None:
        self.calls.append("after_update")

    async def before_delete(self) -> None:
        self.calls.append("before_delete")

    async def after_delete(self) -> None:
        self.calls.append("after_delete")


class PageView(Model, schema=PAGE_VIEW_SCHEMA):
    default_conflict_retries = 10


class Post(Model, schema=POST_SCHEMA):
    pass


class Event(Model, schema=EVENT_SCHEMA):
    pass
