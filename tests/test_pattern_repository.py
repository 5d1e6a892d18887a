"""
Unit tests for pattern repositories.
"""

import pytest

from annotation_engine.exceptions import PersistenceError
from annotation_engine.services.pattern_repository import (
    InMemoryPatternRepository,
    JsonFilePatternRepository,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "json"])
def repository(request, tmp_path, clock):
    """Each backend is exercised with the same contract"""
    if request.param == "memory":
        return InMemoryPatternRepository(clock=clock)
    return JsonFilePatternRepository(tmp_path / "store")


class TestRepositoryContract:
    """Behaviour shared by every repository"""

    def test_put_and_get(self, repository):
        repository.put("patterns/cardinal/pico", {"observation_count": 3})
        assert repository.get("patterns/cardinal/pico") == {"observation_count": 3}

    def test_missing_key(self, repository):
        assert repository.get("patterns/none") is None

    def test_list_by_prefix(self, repository):
        repository.put("patterns/cardinal/pico", 1)
        repository.put("patterns/robin/cola", 2)
        repository.put("positioning/cardinal/pico", 3)

        assert repository.list("patterns/") == ["patterns/cardinal/pico", "patterns/robin/cola"]
        assert len(repository.list()) == 3

    def test_delete(self, repository):
        repository.put("feedback/1", {"type": "approve"})

        assert repository.delete("feedback/1") is True
        assert repository.delete("feedback/1") is False
        assert repository.get("feedback/1") is None

    def test_overwrite(self, repository):
        repository.put("rejections/catalog", {"entries": []})
        repository.put("rejections/catalog", {"entries": [1]})
        assert repository.get("rejections/catalog") == {"entries": [1]}


class TestInMemoryRepository:
    """In-memory specifics"""

    def test_ttl_expiry(self, clock):
        repository = InMemoryPatternRepository(clock=clock)
        repository.put("patterns/a", 1, ttl=60)
        repository.put("patterns/b", 2)

        clock.now += 59
        assert repository.get("patterns/a") == 1

        clock.now += 1
        assert repository.get("patterns/a") is None
        assert repository.list("patterns/") == ["patterns/b"]

    def test_values_are_detached(self):
        repository = InMemoryPatternRepository()
        value = {"notes": ["a"]}
        repository.put("k", value)

        value["notes"].append("b")
        repository.get("k")["notes"].append("c")

        assert repository.get("k") == {"notes": ["a"]}

    def test_unserializable_value(self):
        with pytest.raises(PersistenceError):
            InMemoryPatternRepository().put("k", object())


class TestJsonFileRepository:
    """File-backed specifics"""

    def test_persists_across_instances(self, tmp_path):
        JsonFilePatternRepository(tmp_path).put("patterns/cardinal/pico", {"n": 1})
        assert JsonFilePatternRepository(tmp_path).get("patterns/cardinal/pico") == {"n": 1}

    def test_expired_entry(self, tmp_path):
        repository = JsonFilePatternRepository(tmp_path)
        repository.put("patterns/a", 1, ttl=-1)

        assert repository.get("patterns/a") is None
        assert repository.list() == []

    def test_corrupt_file(self, tmp_path):
        repository = JsonFilePatternRepository(tmp_path)
        repository.put("patterns/a", 1)
        next(tmp_path.glob("*.json")).write_text("{not json")

        with pytest.raises(PersistenceError):
            repository.get("patterns/a")

    def test_corrupt_file_stays_listed(self, tmp_path):
        repository = JsonFilePatternRepository(tmp_path)
        repository.put("patterns/a", 1)
        repository.put("patterns/b", 2)
        (tmp_path / "patterns%2Fb.json").write_text("{not json")

        assert repository.list("patterns/") == ["patterns/a", "patterns/b"]
        with pytest.raises(PersistenceError):
            repository.get("patterns/b")
