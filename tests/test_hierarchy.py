"""TaskHierarchyStore tests: creation, listing, leaf walk and moves."""

import pytest

from wbstrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from wbstrack.tasks.models import TaskStatus


class TestCreate:
    @pytest.mark.asyncio
    async def test_initial_status_pending_when_basics_filled(self, hierarchy):
        task = await hierarchy.create({"title": "Plan", "description": "Plan it", "estimate": "1d"})
        assert task.status == TaskStatus.PENDING
        assert task.version == 1

    @pytest.mark.asyncio
    async def test_initial_status_draft_when_blank(self, hierarchy):
        task = await hierarchy.create({"title": "Plan", "description": "   ", "estimate": "1d"})
        assert task.status == TaskStatus.DRAFT

    @pytest.mark.asyncio
    async def test_unknown_parent(self, hierarchy):
        with pytest.raises(NotFoundError):
            await hierarchy.create({"title": "Child", "parent_id": "nope"})

    @pytest.mark.asyncio
    async def test_get_includes_children(self, hierarchy):
        root = await hierarchy.create({"title": "Root"})
        await hierarchy.create({"title": "A", "parent_id": root.id})
        await hierarchy.create({"title": "B", "parent_id": root.id})

        fetched = await hierarchy.get(root.id)
        assert [c.title for c in fetched.children] == ["A", "B"]
        assert fetched.child_count == 2
        assert await hierarchy.get("missing") is None


class TestListing:
    @pytest.mark.asyncio
    async def test_list_children_roots_and_filter(self, hierarchy):
        root = await hierarchy.create({"title": "Root"})
        await hierarchy.create({"title": "Pending", "parent_id": root.id, "description": "d", "estimate": "1h"})
        await hierarchy.create({"title": "Draft", "parent_id": root.id})

        roots = await hierarchy.list_children(None)
        assert [t.id for t in roots] == [root.id]
        assert roots[0].child_count == 2

        pending = await hierarchy.list_children(root.id, "PENDING")
        assert [t.title for t in pending] == ["Pending"]

    @pytest.mark.asyncio
    async def test_leaf_list_walks_subtree(self, hierarchy):
        root = await hierarchy.create({"title": "Root"})
        mid = await hierarchy.create({"title": "Mid", "parent_id": root.id})
        leaf_a = await hierarchy.create({"title": "Leaf A", "parent_id": mid.id})
        leaf_b = await hierarchy.create({"title": "Leaf B", "parent_id": root.id, "description": "d", "estimate": "1h"})

        leaves = await hierarchy.leaf_list(root.id)
        assert {t.id for t in leaves} == {leaf_a.id, leaf_b.id}

        pending = await hierarchy.leaf_list(None, "Pending")
        assert [t.id for t in pending] == [leaf_b.id]

    @pytest.mark.asyncio
    async def test_leaf_list_unknown_parent_is_empty(self, hierarchy):
        assert await hierarchy.leaf_list("does-not-exist") == []


class TestMove:
    @pytest.mark.asyncio
    async def test_move_bumps_version(self, hierarchy):
        a = await hierarchy.create({"title": "A"})
        b = await hierarchy.create({"title": "B"})

        moved = await hierarchy.move(b.id, a.id)
        assert moved.parent_id == a.id
        assert moved.version == 2

        back = await hierarchy.move(b.id, None)
        assert back.parent_id is None
        assert back.version == 3

    @pytest.mark.asyncio
    async def test_move_to_same_parent_is_noop(self, hierarchy):
        a = await hierarchy.create({"title": "A"})
        b = await hierarchy.create({"title": "B", "parent_id": a.id})
        unchanged = await hierarchy.move(b.id, a.id)
        assert unchanged.version == 1

    @pytest.mark.asyncio
    async def test_self_parent_rejected(self, hierarchy):
        a = await hierarchy.create({"title": "A"})
        with pytest.raises(ValidationError):
            await hierarchy.move(a.id, a.id)

    @pytest.mark.asyncio
    async def test_missing_parent_rejected(self, hierarchy):
        a = await hierarchy.create({"title": "A"})
        with pytest.raises(ValidationError):
            await hierarchy.move(a.id, "ghost")

    @pytest.mark.asyncio
    async def test_unknown_task(self, hierarchy):
        with pytest.raises(NotFoundError):
            await hierarchy.move("ghost", None)

    @pytest.mark.asyncio
    async def test_move_under_direct_child_rejected(self, hierarchy):
        x = await hierarchy.create({"title": "X"})
        child = await hierarchy.create({"title": "Child", "parent_id": x.id})
        with pytest.raises(ValidationError):
            await hierarchy.move(x.id, child.id)

    @pytest.mark.asyncio
    async def test_move_under_deep_descendant_rejected(self, hierarchy):
        x = await hierarchy.create({"title": "X"})
        child = await hierarchy.create({"title": "Child", "parent_id": x.id})
        grandchild = await hierarchy.create({"title": "Grandchild", "parent_id": child.id})

        with pytest.raises(ValidationError):
            await hierarchy.move(x.id, grandchild.id)

        unchanged = await hierarchy.get_row(x.id)
        assert unchanged["parent_id"] is None
        assert unchanged["version"] == 1


class TestDeleteAndUpdate:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_descendants(self, hierarchy):
        root = await hierarchy.create({"title": "Root"})
        child = await hierarchy.create({"title": "Child", "parent_id": root.id})

        assert await hierarchy.delete(root.id) is True
        assert await hierarchy.get(child.id) is None
        assert await hierarchy.delete(root.id) is False

    @pytest.mark.asyncio
    async def test_update_fields_compare_and_set(self, hierarchy):
        task = await hierarchy.create({"title": "A"})
        assert await hierarchy.update_fields(task.id, {"title": "A2"}, expected_version=1) == 2

        with pytest.raises(ConflictError):
            await hierarchy.update_fields(task.id, {"title": "A3"}, expected_version=1)
        with pytest.raises(NotFoundError):
            await hierarchy.update_fields("ghost", {"title": "x"}, expected_version=1)

    @pytest.mark.asyncio
    async def test_set_status_keeps_version(self, hierarchy):
        task = await hierarchy.create({"title": "A"})
        assert await hierarchy.set_status(task.id, TaskStatus.COMPLETED) is True
        row = await hierarchy.get_row(task.id)
        assert row["status"] == "completed"
        assert row["version"] == 1
