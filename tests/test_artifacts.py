"""Artifact catalog, assignment and completion condition store tests."""

import pytest

from wbstrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from wbstrack.tasks.models import ArtifactRole, CompletionConditionInput, TaskArtifactInput


class TestArtifactStore:
    @pytest.mark.asyncio
    async def test_crud(self, artifacts):
        created = await artifacts.create("  Readme ", uri="README.md")
        assert created.title == "Readme"
        assert created.version == 1

        updated = await artifacts.update(created.id, description="Top-level docs", if_version=1)
        assert updated.version == 2
        assert updated.description == "Top-level docs"
        assert updated.uri == "README.md"

        assert [a.id for a in await artifacts.list()] == [created.id]
        assert await artifacts.delete(created.id) is True
        assert await artifacts.get(created.id) is None

    @pytest.mark.asyncio
    async def test_stale_version(self, artifacts):
        created = await artifacts.create("Readme")
        await artifacts.update(created.id, uri="a")
        with pytest.raises(ConflictError):
            await artifacts.update(created.id, uri="b", if_version=1)

    @pytest.mark.asyncio
    async def test_duplicate_title(self, artifacts):
        await artifacts.create("Readme")
        with pytest.raises(ValidationError):
            await artifacts.create("Readme")

    @pytest.mark.asyncio
    async def test_update_unknown(self, artifacts):
        with pytest.raises(NotFoundError):
            await artifacts.update("ghost", title="x")

    @pytest.mark.asyncio
    async def test_missing(self, artifacts):
        created = await artifacts.create("Readme")
        assert await artifacts.missing([created.id, "x", "y", "x"]) == ["x", "y"]


class TestAssignmentStore:
    @pytest.mark.asyncio
    async def test_sync_per_role_and_order(self, hierarchy, assignments, artifacts):
        task = await hierarchy.create({"title": "Task"})
        one = await artifacts.create("One")
        two = await artifacts.create("Two")
        three = await artifacts.create("Three")

        await assignments.sync(
            task.id,
            [
                TaskArtifactInput(artifact_id=one.id, role=ArtifactRole.DELIVERABLE),
                TaskArtifactInput(artifact_id=two.id, role=ArtifactRole.PREREQUISITE),
                TaskArtifactInput(artifact_id=three.id, role=ArtifactRole.DELIVERABLE, crud_operations="CU"),
            ],
        )
        stored = (await assignments.collect([task.id]))[task.id]
        deliverables = [a for a in stored if a.role == ArtifactRole.DELIVERABLE]
        assert [(a.artifact_id, a.order_index) for a in deliverables] == [(one.id, 0), (three.id, 1)]
        assert deliverables[1].crud_operations == "CU"
        assert deliverables[0].artifact.title == "One"

        # Role-scoped sync leaves the other role alone
        await assignments.sync(task.id, [TaskArtifactInput(artifact_id=two.id)], role=ArtifactRole.DELIVERABLE)
        stored = (await assignments.collect([task.id]))[task.id]
        assert sorted((a.role.value, a.artifact_id) for a in stored) == [
            ("deliverable", two.id),
            ("prerequisite", two.id),
        ]

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, hierarchy, assignments, artifacts):
        task = await hierarchy.create({"title": "Task"})
        one = await artifacts.create("One")
        items = [TaskArtifactInput(artifact_id=one.id)]

        first = await assignments.sync(task.id, items)
        second = await assignments.sync(task.id, items)
        assert [(a.artifact_id, a.role, a.order_index) for a in first] == [
            (a.artifact_id, a.role, a.order_index) for a in second
        ]
        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_unknown_artifact(self, hierarchy, assignments):
        task = await hierarchy.create({"title": "Task"})
        with pytest.raises(NotFoundError):
            await assignments.sync(task.id, [TaskArtifactInput(artifact_id="ghost")])

    @pytest.mark.asyncio
    async def test_collect_has_every_key(self, assignments):
        assert await assignments.collect(["a", "b"]) == {"a": [], "b": []}


class TestCompletionConditionStore:
    @pytest.mark.asyncio
    async def test_trims_and_drops_blanks(self, hierarchy, conditions):
        task = await hierarchy.create({"title": "Task"})
        stored = await conditions.sync(
            task.id,
            [
                CompletionConditionInput(description=" a "),
                CompletionConditionInput(description="  "),
                CompletionConditionInput(description="b"),
            ],
        )
        assert [(c.description, c.order_index) for c in stored] == [("a", 0), ("b", 1)]

    @pytest.mark.asyncio
    async def test_full_replace(self, hierarchy, conditions):
        task = await hierarchy.create({"title": "Task"})
        await conditions.sync(task.id, ["first", "second"])
        await conditions.sync(task.id, ["only"])
        collected = await conditions.collect([task.id, "other"])
        assert [c.description for c in collected[task.id]] == ["only"]
        assert collected["other"] == []
