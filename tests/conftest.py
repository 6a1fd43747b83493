import pytest

from tests.helpers import FakeAdvertisementSource


@pytest.fixture
def source() -> FakeAdvertisementSource:
    return FakeAdvertisementSource()
