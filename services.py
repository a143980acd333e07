"""
Community business rules.

The service applies creation defaults, authorization checks and the
creator invariants (the creator is always a member and an admin), then
delegates persistence to a CommunityRepository. Membership and admin changes
are single atomic repository updates; when one matches nothing the service
re-reads the community to tell a missing community from a refused change.

Every mutating operation refreshes ``updated_at``.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, NoReturn

from errors import ForbiddenError, InvalidStateError, NotFoundError, UnauthorizedError
from repositories import CommunityRepository
from schemas import Community, CommunityUpdate

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommunityService:
    def __init__(
        self,
        repository: CommunityRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.clock = clock

    # ----------------- Queries -----------------

    def get_all(self, limit: int = 0) -> List[Community]:
        return self.repository.find_all(limit=limit)

    def get_public(self) -> List[Community]:
        return self.repository.find_public()

    def get_by_creator(self, creator_id: str) -> List[Community]:
        return self.repository.find_by_creator_id(creator_id)

    def get_by_member(self, member_id: str) -> List[Community]:
        return self.repository.find_by_member_id(member_id)

    def get_by_admin(self, admin_id: str) -> List[Community]:
        return self.repository.find_by_admin_id(admin_id)

    def get_by_category(self, category: str) -> List[Community]:
        return self.repository.find_by_category(category)

    def get_by_id(self, community_id: str) -> Community:
        community = self.repository.find_by_id(community_id)
        if community is None:
            raise NotFoundError(f"Community '{community_id}' not found")
        return community

    def is_member(self, community_id: str, user_id: str) -> bool:
        return self.get_by_id(community_id).is_member(user_id)

    def is_admin(self, community_id: str, user_id: str) -> bool:
        return self.get_by_id(community_id).is_admin(user_id)

    def is_creator(self, community_id: str, user_id: str) -> bool:
        return self.get_by_id(community_id).is_creator(user_id)

    # ----------------- Lifecycle -----------------

    def create(self, community: Community, creator_id: str) -> Community:
        """Persist a new community owned by ``creator_id``.

        Any id on the incoming model is discarded; the store assigns one.
        """
        now = self.clock()
        members = set(community.member_ids) | {creator_id}
        # Admins must be members
        new = community.model_copy(
            update={
                "id": None,
                "creator_id": creator_id,
                "member_ids": members,
                "admin_ids": (set(community.admin_ids) & members) | {creator_id},
                "created_at": now,
                "updated_at": now,
            }
        )
        saved = self.repository.save(new)
        logger.info(
            "Community created",
            extra={"community_id": saved.id, "creator_id": creator_id},
        )
        return saved

    def update(
        self, community_id: str, patch: CommunityUpdate, requesting_user_id: str
    ) -> Community:
        """Replace the profile fields of a community.

        ``requesting_user_id`` is the authenticated caller; it must be the
        creator or an admin.
        """
        existing = self.get_by_id(community_id)
        if not (existing.is_creator(requesting_user_id) or existing.is_admin(requesting_user_id)):
            logger.warning(
                "Community update refused",
                extra={"community_id": community_id, "user_id": requesting_user_id},
            )
            raise UnauthorizedError(
                "Only the community creator or an admin can update the community"
            )

        updated = self.repository.update_profile(
            community_id, patch.model_dump(), self.clock()
        )
        if updated is None:
            raise NotFoundError(f"Community '{community_id}' not found")
        logger.info(
            "Community updated",
            extra={"community_id": community_id, "user_id": requesting_user_id},
        )
        return updated

    def delete(self, community_id: str, requesting_user_id: str) -> None:
        existing = self.get_by_id(community_id)
        if not existing.is_creator(requesting_user_id):
            logger.warning(
                "Community delete refused",
                extra={"community_id": community_id, "user_id": requesting_user_id},
            )
            raise UnauthorizedError("Only the community creator can delete the community")
        self.repository.delete_by_id(community_id)
        logger.info(
            "Community deleted",
            extra={"community_id": community_id, "user_id": requesting_user_id},
        )

    # ----------------- Membership -----------------

    def join(self, community_id: str, user_id: str) -> Community:
        community = self.repository.add_member(community_id, user_id, self.clock())
        if community is None:
            raise NotFoundError(f"Community '{community_id}' not found")
        logger.info("User joined community", extra={"community_id": community_id, "user_id": user_id})
        return community

    def leave(self, community_id: str, user_id: str) -> Community:
        """Remove a user from the members and admins of a community.

        Leaving as a non-member is a no-op. The creator cannot leave.
        """
        community = self.repository.remove_member(community_id, user_id, self.clock())
        if community is None:
            self._refused(community_id, user_id, ForbiddenError("The community creator cannot leave"))
        logger.info("User left community", extra={"community_id": community_id, "user_id": user_id})
        return community

    def add_admin(
        self, community_id: str, user_id: str, requesting_user_id: str
    ) -> Community:
        self._require_admin(community_id, requesting_user_id)
        community = self.repository.add_admin(community_id, user_id, self.clock())
        if community is None:
            self._refused(
                community_id, user_id, InvalidStateError("Only members can become admins")
            )
        logger.info("Admin added", extra={"community_id": community_id, "user_id": user_id})
        return community

    def remove_admin(
        self, community_id: str, user_id: str, requesting_user_id: str
    ) -> Community:
        self._require_admin(community_id, requesting_user_id)
        community = self.repository.remove_admin(community_id, user_id, self.clock())
        if community is None:
            self._refused(
                community_id, user_id, ForbiddenError("The community creator is always an admin")
            )
        logger.info("Admin removed", extra={"community_id": community_id, "user_id": user_id})
        return community

    def _require_admin(self, community_id: str, requesting_user_id: str) -> None:
        if not self.get_by_id(community_id).is_admin(requesting_user_id):
            logger.warning(
                "Admin change refused",
                extra={"community_id": community_id, "user_id": requesting_user_id},
            )
            raise UnauthorizedError("Only community admins can change admins")

    def _refused(self, community_id: str, user_id: str, error: Exception) -> NoReturn:
        # A guarded update matched nothing: either the community is gone
        # or the guard rejected the change.
        self.get_by_id(community_id)
        logger.warning(
            "Community change refused",
            extra={"community_id": community_id, "user_id": user_id, "reason": str(error)},
        )
        raise error
