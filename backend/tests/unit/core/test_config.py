import pytest
from pydantic import ValidationError

from qachat.core.config import Settings


def test_defaults_to_a_single_worker():
    assert Settings().web_concurrency == 1


@pytest.mark.parametrize("workers", [0, 2, 4])
def test_more_than_one_worker_is_refused(workers):
    with pytest.raises(ValidationError, match="single worker"):
        Settings(web_concurrency=workers)


def test_worker_count_from_environment_is_checked(monkeypatch):
    monkeypatch.setenv("WEB_CONCURRENCY", "3")
    with pytest.raises(ValidationError):
        Settings()
