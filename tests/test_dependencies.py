"""DependencyGraphStore tests."""

import pytest

from wbstrack.core.exceptions import NotFoundError, ValidationError
from wbstrack.tasks.models import DependencyInput


@pytest.fixture
def make_task(hierarchy):
    async def _make(title):
        return await hierarchy.create({"title": title})

    return _make


class TestDependencyEdges:
    @pytest.mark.asyncio
    async def test_create_with_ordered_links(self, dependencies, artifacts, make_task):
        a = await make_task("A")
        b = await make_task("B")
        design = await artifacts.create("Design")
        plan = await artifacts.create("Plan")

        edge = await dependencies.create(a.id, b.id, [plan.id, design.id])
        assert edge.from_task_id == a.id
        assert edge.to_task_id == b.id
        assert edge.artifact_ids == [plan.id, design.id]
        assert [link.order_index for link in edge.artifacts] == [0, 1]

        assert await dependencies.dependees_of(b.id) == [a.id]
        assert await dependencies.dependents_of(a.id) == [b.id]

    @pytest.mark.asyncio
    async def test_missing_artifacts_are_listed(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")

        with pytest.raises(ValidationError) as exc_info:
            await dependencies.create(a.id, b.id, ["missing-1", "missing-2"])
        assert exc_info.value.context["missing_artifact_ids"] == ["missing-1", "missing-2"]
        assert await dependencies.dependees_of(b.id) == []

    @pytest.mark.asyncio
    async def test_missing_task_names_side(self, dependencies, make_task):
        a = await make_task("A")
        with pytest.raises(NotFoundError) as exc_info:
            await dependencies.create(a.id, "ghost")
        assert exc_info.value.context["side"] == "to_task_id"

    @pytest.mark.asyncio
    async def test_duplicate_pair_rejected(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await dependencies.create(a.id, b.id)
        with pytest.raises(ValidationError):
            await dependencies.create(a.id, b.id)

    @pytest.mark.asyncio
    async def test_cycles_are_permitted(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await dependencies.create(a.id, b.id)
        reverse = await dependencies.create(b.id, a.id)
        assert reverse.from_task_id == b.id

    @pytest.mark.asyncio
    async def test_update_replaces_links(self, dependencies, artifacts, make_task):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        first = await artifacts.create("First")
        second = await artifacts.create("Second")

        edge = await dependencies.create(a.id, b.id, [first.id])
        updated = await dependencies.update(edge.id, c.id, b.id, [second.id])
        assert updated.from_task_id == c.id
        assert updated.artifact_ids == [second.id]

        with pytest.raises(NotFoundError):
            await dependencies.update("ghost", a.id, b.id)

    @pytest.mark.asyncio
    async def test_delete_and_get(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")
        edge = await dependencies.create(a.id, b.id)

        assert await dependencies.delete(edge.id) is True
        assert await dependencies.get_by_id(edge.id) is None
        assert await dependencies.delete(edge.id) is False

    @pytest.mark.asyncio
    async def test_edges_removed_with_task(self, dependencies, hierarchy, make_task):
        a = await make_task("A")
        b = await make_task("B")
        edge = await dependencies.create(a.id, b.id)
        await hierarchy.delete(a.id)
        assert await dependencies.get_by_id(edge.id) is None


class TestBatchQueries:
    @pytest.mark.asyncio
    async def test_collect_for_tasks_has_every_key(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")
        lonely = await make_task("Lonely")
        await dependencies.create(a.id, b.id)

        collected = await dependencies.collect_for_tasks([a.id, b.id, lonely.id, "unknown"])
        assert collected[a.id] == {"dependees": [], "dependents": [b.id]}
        assert collected[b.id] == {"dependees": [a.id], "dependents": []}
        assert collected[lonely.id] == {"dependees": [], "dependents": []}
        assert collected["unknown"] == {"dependees": [], "dependents": []}

    @pytest.mark.asyncio
    async def test_replace_dependees(self, dependencies, make_task):
        a = await make_task("A")
        b = await make_task("B")
        target = await make_task("Target")
        await dependencies.create(a.id, target.id)

        await dependencies.replace_dependees(target.id, [DependencyInput(task_id=b.id)])
        assert await dependencies.dependees_of(target.id) == [b.id]
