"""
Membership Engine Tests

Tests for readalong.services.membership:
- Group creation and reads
- Join / leave, including ownership transfer and group deletion
- Promote / demote / kick
- Progress updates
- Settings updates
- Chat log
- Optimistic concurrency retries

After every mutating scenario the admin invariant is checked: a group
with members always has at least one admin.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from readalong.config import get_settings
from readalong.database import Base
from readalong.models import Book, GroupMember, GroupMessage, MemberRole, ReadingGroup, User
from readalong.services import membership
from readalong.services.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from tests.conftest import assert_admin_invariant

# =============================================================================
# Helper Functions
# =============================================================================


def reload(db: Session, group_id: int) -> ReadingGroup | None:
    """Read a group back from the database."""
    db.expire_all()
    return db.get(ReadingGroup, group_id)


def message_texts(db: Session, group_id: int) -> list[str]:
    stmt = (
        select(GroupMessage.text)
        .where(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.id)
    )
    return list(db.execute(stmt).scalars().all())


def member_ids(group: ReadingGroup) -> list[int]:
    return [m.user_id for m in group.members]


# =============================================================================
# Create / Read
# =============================================================================


class TestCreateGroup:
    """Tests for create_group."""

    def test_creator_is_only_admin_member(self, db_session: Session, sample_group, alice):
        """Reading a new group back yields one member: the creator, admin, page 0."""
        group = reload(db_session, sample_group.id)

        assert group.creator_id == alice.id
        assert len(group.members) == 1
        member = group.members[0]
        assert member.user_id == alice.id
        assert member.role == MemberRole.ADMIN.value
        assert member.current_page == 0

    def test_records_group_created_message(self, db_session: Session, sample_group):
        messages = db_session.execute(
            select(GroupMessage).where(GroupMessage.group_id == sample_group.id)
        ).scalars().all()

        assert len(messages) == 1
        assert messages[0].text == "Group created"
        assert messages[0].type == "system"

    def test_unknown_book(self, db_session: Session, alice):
        with pytest.raises(NotFoundError):
            membership.create_group(db_session, alice.id, "Nowhere", book_id=99999)

    def test_reading_goal_stored(self, db_session: Session, alice, sample_book):
        group = membership.create_group(
            db_session,
            alice.id,
            "Paced",
            sample_book.id,
            reading_goal={"pages_per_day": 20, "target_finish_date": date(2026, 12, 1)},
        )

        assert group.reading_goal == {
            "pages_per_day": 20,
            "target_finish_date": date(2026, 12, 1),
        }


class TestReads:
    """Tests for get_group, list_groups_for_user and search_public_groups."""

    def test_public_group_visible_to_anyone(self, db_session: Session, sample_group, outsider):
        group = membership.get_group(db_session, sample_group.id, outsider.id)
        assert group.id == sample_group.id

    def test_private_group_hidden_from_non_members(
        self, db_session: Session, private_group, outsider
    ):
        with pytest.raises(ForbiddenError):
            membership.get_group(db_session, private_group.id, outsider.id)

    def test_private_group_visible_to_members(self, db_session: Session, private_group, bob):
        group = membership.get_group(db_session, private_group.id, bob.id)
        assert group.is_private is True

    def test_missing_group(self, db_session: Session, alice):
        with pytest.raises(NotFoundError):
            membership.get_group(db_session, 99999, alice.id)

    def test_list_groups_for_user(self, db_session: Session, sample_group, private_group, bob):
        membership.join_group(db_session, sample_group.id, bob.id)

        groups = membership.list_groups_for_user(db_session, bob.id)

        assert {g.id for g in groups} == {sample_group.id, private_group.id}

    def test_member_group_ids(self, db_session: Session, sample_group, private_group, alice):
        assert membership.member_group_ids(db_session, alice.id) == [sample_group.id]

    def test_search_excludes_private_groups(
        self, db_session: Session, sample_group, private_group
    ):
        page = membership.search_public_groups(db_session, None)

        assert [g.id for g in page.items] == [sample_group.id]
        assert page.total == 1

    def test_search_is_case_insensitive(self, db_session: Session, sample_group):
        assert membership.search_public_groups(db_session, "ARRAKIS").total == 1
        assert membership.search_public_groups(db_session, "desert power").total == 1
        assert membership.search_public_groups(db_session, "hobbit").total == 0

    def test_search_pagination(self, db_session: Session, alice, sample_book):
        for i in range(5):
            membership.create_group(db_session, alice.id, f"Club {i}", sample_book.id)

        page = membership.search_public_groups(db_session, "club", page=2, limit=2)

        assert page.total == 5
        assert page.pages == 3
        assert len(page.items) == 2


# =============================================================================
# Join
# =============================================================================


class TestJoinGroup:
    """Tests for join_group."""

    def test_join_appends_member(self, db_session: Session, sample_group, alice, bob, carol):
        membership.join_group(db_session, sample_group.id, bob.id)
        result = membership.join_group(db_session, sample_group.id, carol.id)

        group = result.group
        assert member_ids(group) == [alice.id, bob.id, carol.id]
        carol_member = group.get_member(carol.id)
        assert carol_member.role == MemberRole.MEMBER.value
        assert carol_member.current_page == 0
        assert_admin_invariant(group)

    def test_join_records_message(self, db_session: Session, sample_group, bob):
        result = membership.join_group(db_session, sample_group.id, bob.id)

        assert result.message.text == "Bob Serrano joined the group"
        assert result.message.type == "system"
        assert result.user.id == bob.id

    def test_join_twice_conflicts(self, db_session: Session, sample_group, bob):
        membership.join_group(db_session, sample_group.id, bob.id)

        with pytest.raises(ConflictError):
            membership.join_group(db_session, sample_group.id, bob.id)

        assert reload(db_session, sample_group.id).member_count == 2

    def test_join_missing_group(self, db_session: Session, bob):
        with pytest.raises(NotFoundError):
            membership.join_group(db_session, 99999, bob.id)


# =============================================================================
# Progress
# =============================================================================


class TestUpdateProgress:
    """Tests for update_progress."""

    def test_progress_from_10_to_42(self, db_session: Session, full_group, bob):
        membership.update_progress(db_session, full_group.id, bob.id, 10)

        result = membership.update_progress(db_session, full_group.id, bob.id, 42)

        assert result.previous_page == 10
        assert result.current_page == 42
        assert reload(db_session, full_group.id).get_member(bob.id).current_page == 42
        assert result.message.type == "progress"
        assert "page 10 to page 42" in result.message.text

    def test_non_member_forbidden(self, db_session: Session, full_group, outsider):
        before = message_texts(db_session, full_group.id)

        with pytest.raises(ForbiddenError):
            membership.update_progress(db_session, full_group.id, outsider.id, 5)

        group = reload(db_session, full_group.id)
        assert all(m.current_page == 0 for m in group.members)
        assert message_texts(db_session, full_group.id) == before

    def test_negative_page_rejected(self, db_session: Session, full_group, bob):
        with pytest.raises(InvalidArgumentError):
            membership.update_progress(db_session, full_group.id, bob.id, -1)

    def test_unchanged_page_is_still_recorded(self, db_session: Session, full_group, bob):
        membership.update_progress(db_session, full_group.id, bob.id, 7)
        result = membership.update_progress(db_session, full_group.id, bob.id, 7)

        assert result.previous_page == 7
        assert result.current_page == 7
        progress = db_session.execute(
            select(func.count())
            .select_from(GroupMessage)
            .where(GroupMessage.group_id == full_group.id, GroupMessage.type == "progress")
        ).scalar()
        assert progress == 2

    def test_page_not_clamped_to_book_length(self, db_session: Session, full_group, bob):
        result = membership.update_progress(db_session, full_group.id, bob.id, 5000)
        assert result.current_page == 5000


# =============================================================================
# Roles
# =============================================================================


class TestSetMemberRole:
    """Tests for set_member_role (promote, demote, kick)."""

    def test_promote(self, db_session: Session, full_group, alice, bob):
        result = membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

        assert result.group.get_member(bob.id).role == MemberRole.ADMIN.value
        assert result.message.text == "Bob Serrano is now an admin"
        assert result.message.user_id == alice.id

    def test_promote_admin_is_invalid(self, db_session: Session, full_group, alice, bob):
        membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

        with pytest.raises(InvalidStateError):
            membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

    def test_demote_with_two_admins(self, db_session: Session, full_group, alice, bob):
        membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

        result = membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "demote")

        assert result.group.get_member(bob.id).role == MemberRole.MEMBER.value
        assert_admin_invariant(result.group)

    def test_demote_last_admin_fails(self, db_session: Session, full_group, alice):
        """With exactly one admin left, demoting is rejected."""
        with pytest.raises(InvalidStateError):
            membership.set_member_role(db_session, full_group.id, alice.id, alice.id, "demote")

        assert_admin_invariant(reload(db_session, full_group.id))

    def test_demote_plain_member_is_invalid(self, db_session: Session, full_group, alice, bob):
        with pytest.raises(InvalidStateError):
            membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "demote")

    def test_self_action_is_invalid(self, db_session: Session, full_group, alice):
        with pytest.raises(InvalidStateError):
            membership.set_member_role(db_session, full_group.id, alice.id, alice.id, "kick")

    def test_non_admin_forbidden(self, db_session: Session, full_group, bob, carol):
        with pytest.raises(ForbiddenError):
            membership.set_member_role(db_session, full_group.id, bob.id, carol.id, "kick")

    def test_target_not_member(self, db_session: Session, full_group, alice, outsider):
        with pytest.raises(NotFoundError):
            membership.set_member_role(
                db_session, full_group.id, alice.id, outsider.id, "promote"
            )

    def test_unknown_action(self, db_session: Session, full_group, alice, bob):
        with pytest.raises(InvalidArgumentError):
            membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "ban")

    def test_kick_removes_member(self, db_session: Session, full_group, alice, bob, carol):
        result = membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "kick")

        assert member_ids(result.group) == [alice.id, carol.id]
        assert result.action is membership.MemberAction.KICK
        assert result.message.text == "Bob Serrano was removed from the group by Alice Moreno"
        assert_admin_invariant(result.group)

    def test_kicked_creator_hands_ownership_to_actor(
        self, db_session: Session, full_group, alice, bob
    ):
        membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

        result = membership.set_member_role(db_session, full_group.id, bob.id, alice.id, "kick")

        group = reload(db_session, result.group.id)
        assert group.creator_id == bob.id
        assert not group.is_member(alice.id)
        assert group.is_member(group.creator_id)
        assert_admin_invariant(group)


# =============================================================================
# Settings
# =============================================================================


class TestUpdateSettings:
    """Tests for update_settings."""

    def test_partial_update(self, db_session: Session, sample_group, alice):
        group = membership.update_settings(
            db_session, sample_group.id, alice.id, {"name": "  Spice Readers  ", "is_private": True}
        )

        assert group.name == "Spice Readers"
        assert group.is_private is True
        assert group.description == "Desert power, one chapter at a time"

    def test_set_and_clear_reading_goal(self, db_session: Session, sample_group, alice):
        membership.update_settings(
            db_session, sample_group.id, alice.id, {"reading_goal": {"pages_per_day": 15}}
        )
        assert reload(db_session, sample_group.id).pages_per_day == 15

        group = membership.update_settings(
            db_session, sample_group.id, alice.id, {"reading_goal": None}
        )
        assert group.reading_goal is None

    def test_non_admin_forbidden(self, db_session: Session, full_group, bob):
        with pytest.raises(ForbiddenError):
            membership.update_settings(db_session, full_group.id, bob.id, {"name": "Mine now"})

    def test_creator_not_settable(self, db_session: Session, full_group, alice, bob):
        with pytest.raises(InvalidArgumentError):
            membership.update_settings(db_session, full_group.id, alice.id, {"creator_id": bob.id})

    def test_blank_name_rejected(self, db_session: Session, sample_group, alice):
        with pytest.raises(InvalidArgumentError):
            membership.update_settings(db_session, sample_group.id, alice.id, {"name": "   "})


# =============================================================================
# Leave
# =============================================================================


class TestLeaveGroup:
    """Tests for leave_group."""

    def test_last_member_leaving_deletes_group_and_messages(
        self, db_session: Session, sample_group, alice
    ):
        group_id = sample_group.id
        membership.post_message(db_session, group_id, alice.id, "Anyone here?")

        result = membership.leave_group(db_session, group_id, alice.id)

        assert result.group_deleted is True
        assert result.group is None
        assert reload(db_session, group_id) is None
        assert message_texts(db_session, group_id) == []
        members_left = db_session.execute(
            select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group_id)
        ).scalar()
        assert members_left == 0

    def test_non_member_cannot_leave(self, db_session: Session, full_group, outsider):
        with pytest.raises(InvalidStateError):
            membership.leave_group(db_session, full_group.id, outsider.id)

    def test_only_admin_must_appoint_successor(self, db_session: Session, full_group, alice):
        with pytest.raises(InvalidStateError):
            membership.leave_group(db_session, full_group.id, alice.id)

        group = reload(db_session, full_group.id)
        assert group.member_count == 3
        assert group.creator_id == alice.id

    def test_member_leaves(self, db_session: Session, full_group, alice, bob, carol):
        result = membership.leave_group(db_session, full_group.id, bob.id)

        assert result.group_deleted is False
        assert result.new_creator_id is None
        assert member_ids(result.group) == [alice.id, carol.id]
        assert [m.text for m in result.messages] == ["Bob Serrano left the group"]
        assert_admin_invariant(result.group)

    def test_creator_leaving_hands_ownership_to_admin(
        self, db_session: Session, full_group, alice, bob, carol
    ):
        """G = [A(admin), B, C]; B is appointed admin, then A leaves."""
        membership.set_member_role(db_session, full_group.id, alice.id, bob.id, "promote")

        result = membership.leave_group(db_session, full_group.id, alice.id)

        group = reload(db_session, full_group.id)
        assert result.new_creator_id == bob.id
        assert group.creator_id == bob.id
        assert member_ids(group) == [bob.id, carol.id]
        assert group.member_count == 2
        assert len(group.admins) == 1
        assert [m.text for m in result.messages] == [
            "Alice Moreno left the group",
            "Bob Serrano is now the group owner",
        ]

    def test_existing_admin_preferred_over_earlier_member(
        self, db_session: Session, full_group, alice, bob, carol
    ):
        membership.set_member_role(db_session, full_group.id, alice.id, carol.id, "promote")

        result = membership.leave_group(db_session, full_group.id, alice.id)

        assert result.new_creator_id == carol.id
        group = reload(db_session, full_group.id)
        assert group.get_member(bob.id).role == MemberRole.MEMBER.value
        assert_admin_invariant(group)

    def test_pick_new_creator_falls_back_to_first_member(self):
        group = ReadingGroup(creator_id=1)
        group.members = [
            GroupMember(user_id=1, role=MemberRole.MEMBER.value, position=0),
            GroupMember(user_id=2, role=MemberRole.MEMBER.value, position=1),
            GroupMember(user_id=3, role=MemberRole.MEMBER.value, position=2),
        ]

        heir = membership._pick_new_creator(group, leaving_user_id=1)

        assert heir.user_id == 2

    def test_pick_new_creator_first_member_at_index_zero(self):
        """The first eligible member is chosen even when it is first in the list."""
        group = ReadingGroup(creator_id=2)
        group.members = [
            GroupMember(user_id=1, role=MemberRole.ADMIN.value, position=0),
            GroupMember(user_id=2, role=MemberRole.ADMIN.value, position=1),
        ]

        assert membership._pick_new_creator(group, leaving_user_id=2).user_id == 1


# =============================================================================
# Chat log
# =============================================================================


class TestMessages:
    """Tests for post_message and list_messages."""

    def test_post_and_list_newest_first(self, db_session: Session, full_group, bob):
        membership.post_message(db_session, full_group.id, bob.id, "first")
        membership.post_message(db_session, full_group.id, bob.id, "second")

        page = membership.list_messages(db_session, full_group.id, bob.id, limit=2)

        assert [m.text for m in page.items] == ["second", "first"]
        # Group created + 2 joins + 2 chat messages
        assert page.total == 5
        assert page.pages == 3

    def test_post_requires_membership(self, db_session: Session, full_group, outsider):
        with pytest.raises(ForbiddenError):
            membership.post_message(db_session, full_group.id, outsider.id, "hi")

    def test_blank_message_rejected(self, db_session: Session, full_group, bob):
        with pytest.raises(InvalidArgumentError):
            membership.post_message(db_session, full_group.id, bob.id, "   ")

    def test_list_requires_membership(self, db_session: Session, full_group, outsider):
        with pytest.raises(ForbiddenError):
            membership.list_messages(db_session, full_group.id, outsider.id)


# =============================================================================
# Concurrency
# =============================================================================


class TestVersionedWrites:
    """Tests for the optimistic-concurrency retry loop."""

    def test_retries_after_stale_data(self):
        db = MagicMock()
        command = MagicMock(side_effect=[StaleDataError("stale"), StaleDataError("stale"), "ok"])

        assert membership._run_versioned(db, 1, command) == "ok"
        assert command.call_count == 3
        assert db.rollback.call_count == 2

    def test_gives_up_after_retry_budget(self):
        db = MagicMock()
        command = MagicMock(side_effect=StaleDataError("stale"))

        with pytest.raises(ConcurrentModificationError):
            membership._run_versioned(db, 1, command)

        assert command.call_count == get_settings().group_write_retries

    @pytest.fixture
    def file_sessions(self, tmp_path):
        """
        Session factory on a file database.

        Racing writers need sessions on separate connections, which the
        shared in-memory fixture cannot provide.
        """
        engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(engine)
        yield sessionmaker(bind=engine, autoflush=False)
        engine.dispose()

    @staticmethod
    def seed_race_group(SessionFactory, extra_admin: bool = False, join_second: bool = True):
        """Create two users and a group owned by the first; return the ids."""
        with SessionFactory() as setup:
            first_user = User(email="one@example.com", first_name="One", last_name1="Reader")
            second_user = User(email="two@example.com", first_name="Two", last_name1="Reader")
            book = Book(title="Dune")
            setup.add_all([first_user, second_user, book])
            setup.commit()
            group = membership.create_group(setup, first_user.id, "Race", book.id)
            if join_second:
                membership.join_group(setup, group.id, second_user.id)
            if extra_admin:
                membership.set_member_role(
                    setup, group.id, first_user.id, second_user.id, "promote"
                )
            return group.id, first_user.id, second_user.id

    def test_concurrent_progress_updates_are_not_lost(self, file_sessions, monkeypatch):
        """
        Another session commits between our read and our write. Our first
        attempt fails the version check and is re-run on fresh state.
        """
        group_id, one, two = self.seed_race_group(file_sessions)

        racer = file_sessions()
        session = file_sessions()
        real_lookup = membership.get_user_summary
        calls = []

        def interleaving_lookup(db, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                membership.update_progress(racer, group_id, two, 99)
            return real_lookup(db, user_id)

        monkeypatch.setattr(membership, "get_user_summary", interleaving_lookup)

        try:
            result = membership.update_progress(session, group_id, one, 10)

            assert result.current_page == 10
            group = membership.get_group(session, group_id, one)
            assert group.get_member(one).current_page == 10
            assert group.get_member(two).current_page == 99
            # The first attempt was rolled back, so only one entry per writer
            progress = session.execute(
                select(func.count())
                .select_from(GroupMessage)
                .where(GroupMessage.group_id == group_id, GroupMessage.type == "progress")
            ).scalar()
            assert progress == 2
        finally:
            racer.close()
            session.close()

    def test_mutual_demote_keeps_one_admin(self, file_sessions, monkeypatch):
        """
        Two admins demote each other at the same time. The second writer
        re-reads, finds it is no longer an admin and is refused.
        """
        group_id, one, two = self.seed_race_group(file_sessions, extra_admin=True)

        racer = file_sessions()
        session = file_sessions()
        real_lookup = membership.get_user_summary
        calls = []

        def interleaving_lookup(db, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                membership.set_member_role(racer, group_id, two, one, "demote")
            return real_lookup(db, user_id)

        monkeypatch.setattr(membership, "get_user_summary", interleaving_lookup)

        try:
            with pytest.raises(ForbiddenError):
                membership.set_member_role(session, group_id, one, two, "demote")

            group = membership.get_group(session, group_id, one)
            assert [m.user_id for m in group.admins] == [two]
            assert group.get_member(one).role == MemberRole.MEMBER.value
            assert_admin_invariant(group)
        finally:
            racer.close()
            session.close()

    def test_last_member_leave_racing_a_join(self, file_sessions, monkeypatch):
        """
        The sole member leaves while someone joins. The deletion fails the
        version check; on retry the leaver is the only admin of a group
        with another member, so the group survives.
        """
        group_id, one, two = self.seed_race_group(file_sessions, join_second=False)

        racer = file_sessions()
        session = file_sessions()
        real_load = membership._load_group
        calls = []

        def interleaving_load(db, loaded_group_id):
            group = real_load(db, loaded_group_id)
            calls.append(loaded_group_id)
            if len(calls) == 1:
                membership.join_group(racer, group_id, two)
            return group

        monkeypatch.setattr(membership, "_load_group", interleaving_load)

        try:
            with pytest.raises(InvalidStateError):
                membership.leave_group(session, group_id, one)

            group = membership.get_group(session, group_id, one)
            assert [(m.user_id, m.role) for m in group.members] == [
                (one, MemberRole.ADMIN.value),
                (two, MemberRole.MEMBER.value),
            ]
            # The rolled-back deletion left the log intact
            messages = session.execute(
                select(func.count()).select_from(GroupMessage).where(
                    GroupMessage.group_id == group_id
                )
            ).scalar()
            assert messages == 2
        finally:
            racer.close()
            session.close()
