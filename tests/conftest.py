"""Shared fixtures: one temporary SQLite database per test."""

import pytest
import pytest_asyncio

from wbstrack.core.config import DatabaseConfig, LoggingConfig, WbsConfig
from wbstrack.runtime import WbsRuntime
from wbstrack.tasks.models import ArtifactRole, TaskArtifactInput


@pytest.fixture
def config(tmp_path):
    return WbsConfig(
        environment="testing",
        database=DatabaseConfig(data_dir=str(tmp_path), filename="wbs-test.db"),
        logging=LoggingConfig(level="WARNING"),
    )


@pytest_asyncio.fixture
async def runtime(config):
    async with WbsRuntime(config) as rt:
        yield rt


@pytest.fixture
def service(runtime):
    return runtime.service


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def hierarchy(service):
    return service.hierarchy


@pytest.fixture
def dependencies(service):
    return service.dependencies


@pytest.fixture
def artifacts(service):
    return service.artifacts


@pytest.fixture
def assignments(service):
    return service.assignments


@pytest.fixture
def conditions(service):
    return service.conditions


@pytest_asyncio.fixture
async def artifact(artifacts):
    return await artifacts.create("Design document", uri="docs/design.md")


@pytest_asyncio.fixture
async def complete_task(service, artifact):
    """Factory for tasks that satisfy every required-field rule."""

    async def _make(title="Complete task", **kwargs):
        kwargs.setdefault("description", "Fully specified")
        kwargs.setdefault("details", "Step by step")
        kwargs.setdefault("estimate", "2h")
        kwargs.setdefault("completion_conditions", ["Reviewed"])
        kwargs.setdefault(
            "deliverables",
            [TaskArtifactInput(artifact_id=artifact.id, role=ArtifactRole.DELIVERABLE)],
        )
        return await service.create_task(title, **kwargs)

    return _make
