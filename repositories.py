"""
Community repositories.

``CommunityRepository`` is the query surface the service depends on. Two
implementations are provided:

- ``MongoCommunityRepository`` stores one document per community in the
  "communities" collection. Membership and admin changes are single
  ``find_one_and_update`` calls using ``$addToSet``/``$pull`` with guard
  filters, so concurrent joins and leaves never overwrite each other.
- ``MemoryCommunityRepository`` keeps communities in a dict. It mirrors the
  Mongo semantics and is used in tests and for running without a database.

Result lists carry no ordering guarantee.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol

from bson import ObjectId
from pydantic.alias_generators import to_camel
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from database import to_object_id, to_public
from errors import StoreFailure
from schemas import PROFILE_FIELDS, Community

logger = logging.getLogger(__name__)


class CommunityRepository(Protocol):
    def find_all(self, limit: int = 0) -> List[Community]: ...

    def find_by_id(self, community_id: str) -> Optional[Community]: ...

    def find_by_creator_id(self, creator_id: str) -> List[Community]: ...

    def find_by_member_id(self, user_id: str) -> List[Community]: ...

    def find_by_admin_id(self, user_id: str) -> List[Community]: ...

    def find_by_category(self, category: str) -> List[Community]: ...

    def find_public(self) -> List[Community]: ...

    def save(self, community: Community) -> Community: ...

    def delete_by_id(self, community_id: str) -> bool: ...

    def update_profile(
        self, community_id: str, fields: Mapping[str, Any], updated_at: datetime
    ) -> Optional[Community]: ...

    def add_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]: ...

    def remove_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]: ...

    def add_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]: ...

    def remove_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]: ...


@contextmanager
def _store_errors(operation: str, **context: Any) -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        logger.error(
            "Community store operation failed",
            exc_info=True,
            extra={"operation": operation, "error_type": type(e).__name__, **context},
        )
        raise StoreFailure(f"Community store failed during {operation}") from e


class MongoCommunityRepository:
    """CommunityRepository backed by a pymongo collection."""

    def __init__(self, collection: Collection):
        self._collection = collection

    @staticmethod
    def _id_filter(community_id: str) -> Dict[str, Any]:
        oid = to_object_id(community_id)
        return {"_id": oid if oid is not None else community_id}

    @staticmethod
    def _to_community(doc: Optional[dict]) -> Optional[Community]:
        if doc is None:
            return None
        return Community.model_validate(to_public(doc))

    @staticmethod
    def _to_document(community: Community) -> dict:
        doc = community.model_dump(by_alias=True, exclude={"id"})
        doc["memberIds"] = sorted(community.member_ids)
        doc["adminIds"] = sorted(community.admin_ids)
        return doc

    def _find(self, query: dict, operation: str, limit: int = 0) -> List[Community]:
        with _store_errors(operation, query=query):
            docs = list(self._collection.find(query, limit=limit))
        return [self._to_community(d) for d in docs]

    def find_all(self, limit: int = 0) -> List[Community]:
        return self._find({}, "find_all", limit=limit)

    def find_by_id(self, community_id: str) -> Optional[Community]:
        with _store_errors("find_by_id", community_id=community_id):
            doc = self._collection.find_one(self._id_filter(community_id))
        return self._to_community(doc)

    def find_by_creator_id(self, creator_id: str) -> List[Community]:
        return self._find({"creatorId": creator_id}, "find_by_creator_id")

    def find_by_member_id(self, user_id: str) -> List[Community]:
        # Equality against an array field matches on containment
        return self._find({"memberIds": user_id}, "find_by_member_id")

    def find_by_admin_id(self, user_id: str) -> List[Community]:
        return self._find({"adminIds": user_id}, "find_by_admin_id")

    def find_by_category(self, category: str) -> List[Community]:
        return self._find({"category": category}, "find_by_category")

    def find_public(self) -> List[Community]:
        return self._find({"isPrivate": False}, "find_public")

    def save(self, community: Community) -> Community:
        doc = self._to_document(community)
        if community.id is None:
            with _store_errors("insert"):
                result = self._collection.insert_one(doc)
            return community.model_copy(update={"id": str(result.inserted_id)})

        with _store_errors("replace", community_id=community.id):
            self._collection.replace_one(self._id_filter(community.id), doc, upsert=True)
        return community

    def delete_by_id(self, community_id: str) -> bool:
        with _store_errors("delete", community_id=community_id):
            result = self._collection.delete_one(self._id_filter(community_id))
        return result.deleted_count > 0

    def _update(
        self, community_id: str, guard: dict, update: dict, operation: str
    ) -> Optional[Community]:
        query = {**self._id_filter(community_id), **guard}
        with _store_errors(operation, community_id=community_id):
            doc = self._collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        return self._to_community(doc)

    def update_profile(
        self, community_id: str, fields: Mapping[str, Any], updated_at: datetime
    ) -> Optional[Community]:
        values = {to_camel(k): fields[k] for k in PROFILE_FIELDS if k in fields}
        values["updatedAt"] = updated_at
        return self._update(community_id, {}, {"$set": values}, "update_profile")

    def add_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            {},
            {"$addToSet": {"memberIds": user_id}, "$set": {"updatedAt": updated_at}},
            "add_member",
        )

    def remove_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            {"creatorId": {"$ne": user_id}},
            {
                "$pull": {"memberIds": user_id, "adminIds": user_id},
                "$set": {"updatedAt": updated_at},
            },
            "remove_member",
        )

    def add_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            {"memberIds": user_id},
            {"$addToSet": {"adminIds": user_id}, "$set": {"updatedAt": updated_at}},
            "add_admin",
        )

    def remove_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            {"creatorId": {"$ne": user_id}},
            {"$pull": {"adminIds": user_id}, "$set": {"updatedAt": updated_at}},
            "remove_admin",
        )


class MemoryCommunityRepository:
    """
    CommunityRepository keeping communities in a dictionary keyed by id.

    Every read returns a copy, and each mutation runs under one lock, which
    gives the same per-document atomicity MongoDB provides.
    """

    def __init__(self) -> None:
        logger.debug("Initializing MemoryCommunityRepository")
        self._communities: Dict[str, Community] = {}
        self._lock = threading.Lock()

    def _select(self, predicate: Callable[[Community], bool], limit: int = 0) -> List[Community]:
        with self._lock:
            found = [c.model_copy(deep=True) for c in self._communities.values() if predicate(c)]
        return found[:limit] if limit else found

    def find_all(self, limit: int = 0) -> List[Community]:
        return self._select(lambda c: True, limit=limit)

    def find_by_id(self, community_id: str) -> Optional[Community]:
        with self._lock:
            community = self._communities.get(community_id)
            return community.model_copy(deep=True) if community else None

    def find_by_creator_id(self, creator_id: str) -> List[Community]:
        return self._select(lambda c: c.creator_id == creator_id)

    def find_by_member_id(self, user_id: str) -> List[Community]:
        return self._select(lambda c: user_id in c.member_ids)

    def find_by_admin_id(self, user_id: str) -> List[Community]:
        return self._select(lambda c: user_id in c.admin_ids)

    def find_by_category(self, category: str) -> List[Community]:
        return self._select(lambda c: c.category == category)

    def find_public(self) -> List[Community]:
        return self._select(lambda c: not c.is_private)

    def save(self, community: Community) -> Community:
        stored = community.model_copy(deep=True)
        if stored.id is None:
            stored.id = str(ObjectId())
        with self._lock:
            self._communities[stored.id] = stored
        logger.debug("MemoryCommunityRepository: community saved", extra={"community_id": stored.id})
        return stored.model_copy(deep=True)

    def delete_by_id(self, community_id: str) -> bool:
        with self._lock:
            return self._communities.pop(community_id, None) is not None

    def _update(
        self,
        community_id: str,
        guard: Callable[[Community], bool],
        change: Callable[[Community], None],
        updated_at: datetime,
    ) -> Optional[Community]:
        with self._lock:
            current = self._communities.get(community_id)
            if current is None or not guard(current):
                return None
            updated = current.model_copy(deep=True)
            change(updated)
            updated.updated_at = updated_at
            self._communities[community_id] = updated
            return updated.model_copy(deep=True)

    def update_profile(
        self, community_id: str, fields: Mapping[str, Any], updated_at: datetime
    ) -> Optional[Community]:
        def change(c: Community) -> None:
            for k in PROFILE_FIELDS:
                if k in fields:
                    setattr(c, k, fields[k])

        return self._update(community_id, lambda c: True, change, updated_at)

    def add_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id, lambda c: True, lambda c: c.member_ids.add(user_id), updated_at
        )

    def remove_member(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        def change(c: Community) -> None:
            c.member_ids.discard(user_id)
            c.admin_ids.discard(user_id)

        return self._update(
            community_id, lambda c: c.creator_id != user_id, change, updated_at
        )

    def add_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            lambda c: user_id in c.member_ids,
            lambda c: c.admin_ids.add(user_id),
            updated_at,
        )

    def remove_admin(
        self, community_id: str, user_id: str, updated_at: datetime
    ) -> Optional[Community]:
        return self._update(
            community_id,
            lambda c: c.creator_id != user_id,
            lambda c: c.admin_ids.discard(user_id),
            updated_at,
        )
