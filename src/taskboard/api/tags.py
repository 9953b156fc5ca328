"""
Tag identity for a user: upsert of normalized tag names and full replacement
of a todo's tag links.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from ..tagnames import normalize_tag_names
from .errors import ConstraintViolation, DataAccessError
from .models import TagEntity
from .repositories import Store

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def ensure_tags(
    store: Store,
    user_id: str,
    names: Optional[Iterable[object]],
    retries: int = 3,
) -> List[TagEntity]:
    """
    Guarantee that a Tag row exists for each (normalized) name and return the
    {id, name} pairs for the full set, in normalized first-seen order.

    A unique-constraint violation on insert means a concurrent request created
    one of the names between our select and insert. In that case the missing
    names are refetched and the insert is retried for whatever is still absent.

    Raises:
        DataAccessError if the store fails, or names are still missing after
        `retries` attempts.
    """
    normalized = normalize_tag_names(names)
    if not normalized:
        return []

    found: Dict[str, TagEntity] = {}
    attempts = max(retries, 1)
    for attempt in range(1, attempts + 1):
        missing = [n for n in normalized if n not in found]
        for tag in store.select_tags(user_id, missing):
            found[tag["name"]] = tag

        to_insert = [n for n in normalized if n not in found]
        if not to_insert:
            break

        try:
            for tag in store.insert_tags(user_id, to_insert):
                found[tag["name"]] = tag
            break
        except ConstraintViolation as e:
            if attempt == attempts:
                raise DataAccessError(e.message) from e
            logger.warning(
                "tag insert for user %s collided (attempt %d/%d), refetching: %s",
                user_id,
                attempt,
                attempts,
                e.message,
            )

    return [found[n] for n in normalized]


# PUBLIC_INTERFACE
def set_todo_tags(store: Store, todo_id: str, tag_ids: Sequence[str]) -> None:
    """
    Make the link set of a todo exactly equal to `tag_ids`.

    Always deletes every existing link first, then inserts the new set
    (nothing is inserted for an empty set). Both steps run in one store
    transaction, so a failed insert leaves the previous links in place.
    """
    unique_ids = list(dict.fromkeys(tag_ids))
    with store.transaction():
        store.delete_todo_tags(todo_id)
        if unique_ids:
            store.insert_todo_tags(todo_id, unique_ids)


# PUBLIC_INTERFACE
def replace_todo_tags(
    store: Store,
    user_id: str,
    todo_id: str,
    names: Optional[Iterable[object]],
    retries: int = 3,
) -> List[TagEntity]:
    """Resolve `names` to tags for the owner and make them the todo's complete tag set."""
    tags = ensure_tags(store, user_id, names, retries=retries)
    set_todo_tags(store, todo_id, [t["id"] for t in tags])
    return tags
