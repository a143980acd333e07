"""
Tests for CommunityService membership, admin and authorization rules.
"""

import threading

import pytest

from errors import ForbiddenError, InvalidStateError, NotFoundError, UnauthorizedError
from schemas import Community, CommunityUpdate
from services import CommunityService


class TestCreate:
    def test_creator_is_member_and_admin(self, community: Community) -> None:
        assert community.id is not None
        assert community.creator_id == "u1"
        assert "u1" in community.member_ids
        assert "u1" in community.admin_ids

    def test_sets_both_timestamps(self, community: Community) -> None:
        assert community.created_at is not None
        assert community.created_at == community.updated_at

    def test_discards_client_supplied_id(self, service: CommunityService) -> None:
        created = service.create(Community(id="chosen-by-client", name="Chess"), "u9")
        assert created.id != "chosen-by-client"
        assert service.get_by_id(created.id).creator_id == "u9"

    def test_keeps_existing_members(self, service: CommunityService) -> None:
        created = service.create(Community(name="Chess", member_ids={"u2"}), "u1")
        assert created.member_ids == {"u1", "u2"}
        assert created.admin_ids == {"u1"}

    def test_admins_outside_members_are_dropped(self, service: CommunityService) -> None:
        created = service.create(
            Community(name="Chess", member_ids={"u2"}, admin_ids={"u2", "outsider"}), "u1"
        )
        assert created.admin_ids == {"u1", "u2"}
        assert created.admin_ids <= created.member_ids


class TestQueries:
    def test_get_by_id_missing(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.get_by_id("does-not-exist")

    def test_public_returns_only_non_private(self, service: CommunityService) -> None:
        public = service.create(Community(name="Open", is_private=False), "u1")
        service.create(Community(name="Closed", is_private=True), "u1")

        assert [c.id for c in service.get_public()] == [public.id]

    def test_lookups_by_creator_member_admin_category(self, service: CommunityService) -> None:
        a = service.create(Community(name="A", category="music"), "u1")
        b = service.create(Community(name="B", category="art"), "u2")
        service.join(b.id, "u1")

        assert {c.id for c in service.get_by_creator("u1")} == {a.id}
        assert {c.id for c in service.get_by_member("u1")} == {a.id, b.id}
        assert {c.id for c in service.get_by_admin("u1")} == {a.id}
        assert {c.id for c in service.get_by_category("art")} == {b.id}
        assert len(service.get_all()) == 2

    def test_predicates_fail_for_missing_community(self, service: CommunityService) -> None:
        for check in (service.is_member, service.is_admin, service.is_creator):
            with pytest.raises(NotFoundError):
                check("missing", "u1")


class TestUpdate:
    def test_creator_can_update(self, service: CommunityService, community: Community) -> None:
        patch = CommunityUpdate(name="Pythonistas", description="New", category="code", is_private=True)
        updated = service.update(community.id, patch, "u1")

        assert updated.name == "Pythonistas"
        assert updated.is_private is True
        assert updated.updated_at > community.updated_at
        assert updated.created_at == community.created_at
        assert updated.member_ids == community.member_ids

    def test_admin_can_update(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.add_admin(community.id, "u2", "u1")

        updated = service.update(community.id, CommunityUpdate(name="Renamed"), "u2")
        assert updated.name == "Renamed"

    def test_plain_member_is_refused(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        with pytest.raises(UnauthorizedError):
            service.update(community.id, CommunityUpdate(name="Hijacked"), "u2")
        assert service.get_by_id(community.id).name == "Python Learners"

    def test_missing_community(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.update("missing", CommunityUpdate(name="x"), "u1")


class TestDelete:
    def test_creator_deletes(self, service: CommunityService, community: Community) -> None:
        service.delete(community.id, "u1")
        with pytest.raises(NotFoundError):
            service.get_by_id(community.id)

    def test_admin_cannot_delete(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.add_admin(community.id, "u2", "u1")
        with pytest.raises(UnauthorizedError):
            service.delete(community.id, "u2")
        assert service.get_by_id(community.id).id == community.id

    def test_missing_community(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.delete("missing", "u1")


class TestMembership:
    def test_join_is_idempotent(self, service: CommunityService, community: Community) -> None:
        once = service.join(community.id, "u2")
        twice = service.join(community.id, "u2")
        assert once.member_ids == twice.member_ids == {"u1", "u2"}

    def test_join_refreshes_updated_at(self, service: CommunityService, community: Community) -> None:
        joined = service.join(community.id, "u2")
        assert joined.updated_at > community.updated_at

    def test_join_missing_community(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.join("missing", "u2")

    def test_leave_drops_membership_and_admin(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.add_admin(community.id, "u2", "u1")

        left = service.leave(community.id, "u2")
        assert "u2" not in left.member_ids
        assert "u2" not in left.admin_ids

    def test_leave_as_non_member_is_noop(self, service: CommunityService, community: Community) -> None:
        left = service.leave(community.id, "stranger")
        assert left.member_ids == community.member_ids
        assert left.admin_ids == community.admin_ids

    def test_creator_cannot_leave(self, service: CommunityService, community: Community) -> None:
        with pytest.raises(ForbiddenError):
            service.leave(community.id, "u1")
        assert service.is_member(community.id, "u1")

    def test_leave_missing_community(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.leave("missing", "u2")

    def test_concurrent_joins_are_not_lost(self, service: CommunityService, community: Community) -> None:
        users = [f"user-{i}" for i in range(50)]
        threads = [threading.Thread(target=service.join, args=(community.id, u)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert service.get_by_id(community.id).member_ids == {"u1", *users}


class TestAdmins:
    def test_non_member_cannot_become_admin(self, service: CommunityService, community: Community) -> None:
        with pytest.raises(InvalidStateError):
            service.add_admin(community.id, "stranger", "u1")

    def test_add_admin_is_idempotent(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.add_admin(community.id, "u2", "u1")
        again = service.add_admin(community.id, "u2", "u1")
        assert again.admin_ids == {"u1", "u2"}

    def test_remove_admin_keeps_membership(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.add_admin(community.id, "u2", "u1")

        removed = service.remove_admin(community.id, "u2", "u1")
        assert "u2" not in removed.admin_ids
        assert "u2" in removed.member_ids

    def test_creator_cannot_be_removed_as_admin(self, service: CommunityService, community: Community) -> None:
        with pytest.raises(ForbiddenError):
            service.remove_admin(community.id, "u1", "u1")
        assert service.is_admin(community.id, "u1")

    def test_requester_must_be_admin(self, service: CommunityService, community: Community) -> None:
        service.join(community.id, "u2")
        service.join(community.id, "u3")
        with pytest.raises(UnauthorizedError):
            service.add_admin(community.id, "u3", requesting_user_id="u2")
        with pytest.raises(UnauthorizedError):
            service.remove_admin(community.id, "u1", requesting_user_id="u2")

        promoted = service.add_admin(community.id, "u3", requesting_user_id="u1")
        assert "u3" in promoted.admin_ids

    def test_missing_community(self, service: CommunityService) -> None:
        with pytest.raises(NotFoundError):
            service.add_admin("missing", "u2", "u1")
        with pytest.raises(NotFoundError):
            service.remove_admin("missing", "u2", "u1")


def test_membership_lifecycle(service: CommunityService) -> None:
    c = service.create(Community(name="C"), "u1")
    assert service.is_member(c.id, "u1")
    assert service.is_admin(c.id, "u1")
    assert service.is_creator(c.id, "u1")

    service.join(c.id, "u2")
    assert service.is_member(c.id, "u2")
    assert not service.is_admin(c.id, "u2")
    assert not service.is_creator(c.id, "u2")

    service.add_admin(c.id, "u2", "u1")
    assert service.is_admin(c.id, "u2")

    service.leave(c.id, "u2")
    assert not service.is_member(c.id, "u2")
    assert not service.is_admin(c.id, "u2")


@pytest.mark.parametrize(
    "operation",
    [
        lambda s, cid: s.join(cid, "u2"),
        lambda s, cid: s.join(cid, "u1"),
        lambda s, cid: s.leave(cid, "u2"),
        lambda s, cid: s.leave(cid, "stranger"),
        lambda s, cid: s.add_admin(cid, "u2", "u1"),
        lambda s, cid: s.add_admin(cid, "u1", "u1"),
        lambda s, cid: s.remove_admin(cid, "u2", "u1"),
        lambda s, cid: s.remove_admin(cid, "stranger", "u1"),
    ],
    ids=[
        "join",
        "join-existing-member",
        "leave",
        "leave-non-member",
        "add-admin",
        "add-existing-admin",
        "remove-admin",
        "remove-non-admin",
    ],
)
def test_membership_changes_refresh_updated_at(
    service: CommunityService, community: Community, operation
) -> None:
    service.join(community.id, "u2")
    before = service.get_by_id(community.id)

    after = operation(service, community.id)

    assert after.updated_at > before.updated_at
    assert after.created_at == before.created_at
