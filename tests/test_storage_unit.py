import threading
from datetime import timedelta

import pytest

from projectdesk.storage.errors import ConstraintViolation
from projectdesk.storage.memory import MemoryStore


class TestUsers:
    def test_email_is_lowercased_and_unique(self, memory_store):
        user = memory_store.create_user("Alice@Example.COM", "alice", "h")
        assert user.email == "alice@example.com"
        assert memory_store.get_user_by_email("ALICE@example.com").id == user.id
        with pytest.raises(ConstraintViolation) as excinfo:
            memory_store.create_user("alice@example.com", "other", "h")
        assert excinfo.value.detail == {"field": "email"}

    def test_username_is_unique(self, memory_store):
        memory_store.create_user("a@x.com", "alice", "h")
        with pytest.raises(ConstraintViolation) as excinfo:
            memory_store.create_user("b@x.com", "alice", "h")
        assert excinfo.value.detail == {"field": "username"}

    def test_profile_update_conflicts(self, memory_store):
        memory_store.create_user("a@x.com", "alice", "h")
        bob = memory_store.create_user("b@x.com", "bob", "h")
        with pytest.raises(ConstraintViolation):
            memory_store.update_user_profile(bob.id, username="alice")
        with pytest.raises(ConstraintViolation):
            memory_store.update_user_profile(bob.id, email="A@x.com")
        assert memory_store.update_user_profile("missing", username="zed") is None

    def test_rejected_profile_update_changes_nothing(self, memory_store):
        alice = memory_store.create_user("a@x.com", "alice", "h", full_name="Alice")
        memory_store.create_user("b@x.com", "bob", "h")
        with pytest.raises(ConstraintViolation) as excinfo:
            memory_store.update_user_profile(
                alice.id, username="carol", email="b@x.com", full_name="Carol"
            )
        assert excinfo.value.detail == {"field": "email"}
        stored = memory_store.get_user(alice.id)
        assert stored.username == "alice"
        assert stored.email == "a@x.com"
        assert stored.full_name == "Alice"
        assert memory_store.get_user_by_username("carol") is None

    def test_rejected_profile_update_is_not_persisted(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        alice = store.create_user("a@x.com", "alice", "h")
        store.create_user("b@x.com", "bob", "h")
        with pytest.raises(ConstraintViolation):
            store.update_user_profile(alice.id, username="carol", email="b@x.com")
        store.create_user("c@x.com", "carl", "h")

        reloaded = MemoryStore(fs_root=str(tmp_path))
        assert reloaded.get_user(alice.id).username == "alice"

    def test_email_change_resets_verification(self, memory_store):
        user = memory_store.create_user("a@x.com", "alice", "h", is_email_verified=True)
        memory_store.update_user_profile(user.id, email="a@x.com")
        assert memory_store.get_user(user.id).is_email_verified
        memory_store.update_user_profile(user.id, email="new@x.com")
        assert not memory_store.get_user(user.id).is_email_verified

    def test_list_users_search_and_paging(self, memory_store):
        for idx in range(5):
            memory_store.create_user(f"user{idx}@x.com", f"member_{idx}", "h")
        memory_store.create_user("carol@corp.com", "carol", "h")

        page, total = memory_store.list_users(offset=0, limit=4)
        assert total == 6 and len(page) == 4
        page, total = memory_store.list_users(offset=4, limit=4)
        assert total == 6 and len(page) == 2
        page, total = memory_store.list_users(search="CORP")
        assert total == 1 and page[0].username == "carol"

    def test_delete_user_removes_memberships_not_projects(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        dev = memory_store.create_user("d@x.com", "dev", "h")
        project = memory_store.create_project("Apollo", owner.id)
        memory_store.upsert_member(project.id, dev.id, "member")

        assert memory_store.delete_user(owner.id)
        assert not memory_store.delete_user(owner.id)
        assert memory_store.get_project(project.id) is not None
        assert [m.user_id for m in memory_store.list_members(project.id)] == [dev.id]


class TestSessions:
    def test_add_stops_at_the_cap(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "h")
        expires = clock.now + timedelta(days=7)
        results = [
            memory_store.add_refresh_token(user.id, f"hash-{i}", expires, max_sessions=3, now=clock.now)
            for i in range(4)
        ]
        assert results == [True, True, True, False]
        assert memory_store.count_refresh_tokens(user.id, clock.now) == 3

    def test_password_replacement_drops_sessions(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "h")
        memory_store.add_refresh_token(
            user.id, "hash", clock.now + timedelta(days=1), max_sessions=5, now=clock.now
        )
        memory_store.replace_password(user.id, "h2")
        assert not memory_store.has_refresh_token(user.id, "hash", clock.now)

    def test_concurrent_rotation_has_one_winner(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "h")
        expires = clock.now + timedelta(days=7)
        memory_store.add_refresh_token(user.id, "old", expires, max_sessions=5, now=clock.now)

        workers = 8
        barrier = threading.Barrier(workers)
        results = []

        def rotate(idx):
            barrier.wait()
            results.append(
                memory_store.rotate_refresh_token(user.id, "old", f"new-{idx}", expires, now=clock.now)
            )

        threads = [threading.Thread(target=rotate, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert memory_store.count_refresh_tokens(user.id, clock.now) == 1

    def test_concurrent_logins_respect_the_cap(self, memory_store, clock):
        user = memory_store.create_user("a@x.com", "alice", "h")
        expires = clock.now + timedelta(days=7)
        workers = 12
        barrier = threading.Barrier(workers)
        results = []

        def add(idx):
            barrier.wait()
            results.append(
                memory_store.add_refresh_token(user.id, f"h-{idx}", expires, max_sessions=5, now=clock.now)
            )

        threads = [threading.Thread(target=add, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 5
        assert memory_store.count_refresh_tokens(user.id, clock.now) == 5


class TestProjects:
    def test_list_projects_reports_role_and_member_count(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        dev = memory_store.create_user("d@x.com", "dev", "h")
        project = memory_store.create_project("Apollo", owner.id, description="moon")
        memory_store.upsert_member(project.id, dev.id, "member")

        [summary] = memory_store.list_projects_for_user(dev.id)
        assert summary.role == "member"
        assert summary.member_count == 2
        assert summary.project.description == "moon"

    def test_membership_requires_existing_rows(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        with pytest.raises(ConstraintViolation):
            memory_store.upsert_member(project.id, "ghost", "member")
        with pytest.raises(ConstraintViolation):
            memory_store.upsert_member("missing", owner.id, "member")
        with pytest.raises(ConstraintViolation):
            memory_store.create_project("Orphan", "ghost")

    def test_member_role_update_and_removal(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        assert memory_store.update_member_role(project.id, owner.id, "project_admin").role == "project_admin"
        assert memory_store.update_member_role(project.id, "ghost", "member") is None
        assert memory_store.remove_member(project.id, owner.id)
        assert not memory_store.remove_member(project.id, owner.id)


class TestWorkItems:
    def test_deleting_project_cascades(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        task = memory_store.create_task(project.id, "Fuel", assigned_by=owner.id)
        subtask = memory_store.create_subtask(task.id, "Valves", owner.id)
        note = memory_store.create_note(project.id, owner.id, "Monday")
        comment = memory_store.create_comment(note.id, owner.id, "ok")

        assert memory_store.delete_project(project.id)
        assert memory_store.get_task(task.id) is None
        assert memory_store.get_subtask(subtask.id) is None
        assert memory_store.get_note(note.id) is None
        assert memory_store.get_comment(comment.id) is None

    def test_deleting_user_unassigns_tasks(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        dev = memory_store.create_user("d@x.com", "dev", "h")
        project = memory_store.create_project("Apollo", owner.id)
        task = memory_store.create_task(project.id, "Fuel", assigned_to=dev.id)

        memory_store.delete_user(dev.id)
        assert memory_store.get_task(task.id).assigned_to is None

    def test_update_task_assignment(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        task = memory_store.create_task(project.id, "Fuel", assigned_to=owner.id)

        kept = memory_store.update_task(task.id, status="done")
        assert kept.assigned_to == owner.id and kept.status == "done"
        cleared = memory_store.update_task(task.id, unassign=True)
        assert cleared.assigned_to is None
        assert memory_store.update_task("missing", title="x") is None

    def test_reply_must_stay_on_the_same_note(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        first = memory_store.create_note(project.id, owner.id, "one")
        second = memory_store.create_note(project.id, owner.id, "two")
        parent = memory_store.create_comment(first.id, owner.id, "root")

        with pytest.raises(ConstraintViolation):
            memory_store.create_comment(second.id, owner.id, "stray", parent_id=parent.id)
        reply = memory_store.create_comment(first.id, owner.id, "reply", parent_id=parent.id)

        assert memory_store.delete_comment(parent.id)
        assert memory_store.get_comment(reply.id).parent_id is None

    def test_notes_list_pinned_first(self, memory_store):
        owner = memory_store.create_user("o@x.com", "owner", "h")
        project = memory_store.create_project("Apollo", owner.id)
        old = memory_store.create_note(project.id, owner.id, "old")
        new = memory_store.create_note(project.id, owner.id, "new")
        assert memory_store.toggle_note_pin(old.id).is_pinned

        assert [n.id for n in memory_store.list_notes(project.id)][0] == old.id
        assert memory_store.toggle_note_pin(old.id).is_pinned is False
        assert {n.id for n in memory_store.list_notes(project.id)} == {old.id, new.id}

    def test_children_require_parents(self, memory_store):
        with pytest.raises(ConstraintViolation):
            memory_store.create_task("missing", "Fuel")
        with pytest.raises(ConstraintViolation):
            memory_store.create_subtask("missing", "Valves", "u")
        with pytest.raises(ConstraintViolation):
            memory_store.create_note("missing", "u", "hi")
        with pytest.raises(ConstraintViolation):
            memory_store.create_comment("missing", "u", "hi")


class TestPersistence:
    def test_state_survives_reload(self, tmp_path, clock):
        store = MemoryStore(fs_root=str(tmp_path))
        user = store.create_user("a@x.com", "alice", "h", full_name="Alice")
        store.add_refresh_token(
            user.id, "hash", clock.now + timedelta(days=7), max_sessions=5, now=clock.now
        )
        project = store.create_project("Apollo", user.id)
        task = store.create_task(project.id, "Fuel", assigned_to=user.id)
        store.create_subtask(task.id, "Valves", user.id)
        note = store.create_note(project.id, user.id, "Monday")
        store.toggle_note_pin(note.id)
        store.create_comment(note.id, user.id, "ok")

        reloaded = MemoryStore(fs_root=str(tmp_path))

        again = reloaded.get_user_by_email("a@x.com")
        assert again.id == user.id
        assert again.full_name == "Alice"
        assert reloaded.has_refresh_token(user.id, "hash", clock.now)
        assert reloaded.get_membership(project.id, user.id).role == "admin"
        assert reloaded.get_task(task.id).assigned_to == user.id
        assert reloaded.get_task(task.id).created_at == task.created_at
        assert [s.title for s in reloaded.list_subtasks(task.id)] == ["Valves"]
        assert reloaded.get_note(note.id).is_pinned
        assert [c.content for c in reloaded.list_comments(note.id)] == ["ok"]
        assert (tmp_path / "state" / "memory_store.json").exists()

    def test_no_files_without_fs_root(self, memory_store):
        memory_store.create_user("a@x.com", "alice", "h")
        assert memory_store.fs_root is None
