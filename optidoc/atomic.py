"""
Atomic read-transform-write operations.

The plain create/update path needs the caller to already hold the right
prior state. The functions here instead read the current document, hand it
to a transition function, and try a conditional write; when another writer
got there first, they re-read and try again, up to a retry budget.

Transition functions receive the prior entity (or None when absent) and
return Continue(entity) to write it, or ABORT to stop without writing. They
may be plain functions or coroutines, and may run more than once.

Invariants:
    - Within one attempt: read completes before the transition runs, and
      the transition completes before the write is attempted
    - An aborted transition performs zero writes
    - Only ConflictError is retried; everything else propagates unchanged
    - An exhausted budget raises RetriesExhaustedError from the last conflict

Example:
    >>> async def bump(existing):
    ...     page = existing or PageView(id=page_id, views=0)
    ...     page["views"] += 1
    ...     return Continue(page)
    >>>
    >>> await create_or_update(PageView.partition(page_id), page_id, bump)
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from .errors import ConflictError, RetriesExhaustedError
from .outcome import Abort, Continue, check_outcome

if TYPE_CHECKING:
    from .model import Model
    from .partition import Partition
    from .store.base import DocumentStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


async def _run_transition(fn: Callable[[Any], Any], current: Any) -> Continue[Any] | Abort:
    result = fn(current)
    if inspect.isawaitable(result):
        result = await result
    return check_outcome(result)


async def create_or_update(
    partition: Partition[M],
    id: str,
    fn: Callable[[Optional[M]], Any],
    *,
    retries: Optional[int] = None,
    initial_value: Optional[M] = None,
    must_find: bool = False,
    **options: Any,
) -> Optional[M]:
    """Create or update a document with a transition function.

    Args:
        partition: Partition holding the document
        id: Document id
        fn: Transition function, called with the prior entity or None
        retries: Conflict retries; None uses the model's default
        initial_value: Use this as the prior state for the first attempt
            instead of reading it
        must_find: A missing document is a NotFoundError instead of None
        **options: Forwarded verbatim to every store call

    Returns:
        The persisted entity, or None if the transition aborted

    Raises:
        RetriesExhaustedError: If every attempt hit a conflict
        NotFoundError: If must_find and the document does not exist
        TypeError: If the transition returned something other than an outcome
        ValueError: If the produced entity has another id or partition key
    """
    if retries is None:
        retries = partition.model.conflict_retries()
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")

    context = {"container_id": partition.container_id, "item_id": id}
    attempt = 0
    while True:
        attempt += 1
        current = initial_value
        if current is None:
            if must_find:
                current = await partition.find(id, **options)
            else:
                current = await partition.maybe_find(id, **options)

        outcome = await _run_transition(fn, current)
        if isinstance(outcome, Abort):
            logger.debug("Atomic operation aborted by transition", extra=context)
            return None

        entity = outcome.value
        if not isinstance(entity, partition.model):
            raise TypeError(
                f"Transition must produce a {partition.model.__name__}, "
                f"got {type(entity).__name__}"
            )
        if entity.id != id:
            raise ValueError(f"Transition produced id '{entity.id}', expected '{id}'")
        if partition.model.schema.partition_key_path is not None:
            produced = entity.partition_key()
            if produced != partition.partition_key:
                raise ValueError(
                    f"Transition produced partition key {produced!r}, "
                    f"expected {partition.partition_key!r}"
                )

        try:
            await entity.save(store=partition.store, **options)
        except ConflictError as e:
            if attempt > retries:
                logger.warning(
                    "Atomic operation gave up after conflicts",
                    extra={**context, "attempts": attempt},
                )
                raise RetriesExhaustedError(e, attempt) from e
            logger.info(
                "Conflict during atomic operation, retrying",
                extra={**context, "attempt": attempt, "reason": e.reason.value},
            )
            initial_value = None
            continue

        return entity


async def update(
    entity: M,
    fn: Callable[[M], Any],
    *,
    retries: Optional[int] = None,
    store: Optional[DocumentStore] = None,
    **options: Any,
) -> M:
    """Atomically update an existing entity with a transition function.

    The first attempt uses ``entity`` as it is. On a conflict the document is
    re-read and its state re-bound onto ``entity`` before ``fn`` runs again,
    so callers mutating the captured reference see consistent retries.

    Args:
        entity: Entity to update
        fn: Transition function, called with ``entity``
        retries: Conflict retries; None uses the model's default
        store: Store to use instead of the registered one
        **options: Forwarded verbatim to every store call

    Returns:
        The entity, also when the transition aborted

    Raises:
        RetriesExhaustedError: If every attempt hit a conflict
        NotFoundError: If the document was deleted in the meantime
    """
    entity._check_alive()
    partition = type(entity).partition(entity.partition_key(), store)

    def rebind(current: M) -> Any:
        if current is not entity:
            entity._rebind(current)
        return fn(entity)

    result = await create_or_update(
        partition,
        entity.id,
        rebind,
        retries=retries,
        initial_value=entity,
        must_find=True,
        **options,
    )
    return result if result is not None else entity
