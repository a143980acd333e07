from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from main import app, get_community_repository
from repositories import MemoryCommunityRepository
from schemas import Community
from services import CommunityService


class FakeClock:
    """Returns a strictly increasing UTC instant on every call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_repo() -> MemoryCommunityRepository:
    return MemoryCommunityRepository()


@pytest.fixture
def service(memory_repo: MemoryCommunityRepository, clock: FakeClock) -> CommunityService:
    return CommunityService(memory_repo, clock=clock)


@pytest.fixture
def community(service: CommunityService) -> Community:
    """A public community created by u1."""
    return service.create(
        Community(name="Python Learners", description="Weekly katas", category="programming"),
        "u1",
    )


@pytest.fixture
def client(memory_repo: MemoryCommunityRepository) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_community_repository] = lambda: memory_repo
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
