import pytest

from mbgl_renderer.testing.renderer import FakeEngine
from tests import FakeSession


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def session():
    return FakeSession()
