import pytest

from backend.tests._utils import make_message


@pytest.fixture
def message_factory():
    return make_message
