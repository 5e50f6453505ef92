import pytest

from blkarbs_block_profiler import BootstrapHandoff
from fake_sensor import FakeSensor


@pytest.fixture
def sensor() -> FakeSensor:
    return FakeSensor()


@pytest.fixture
def handoff() -> BootstrapHandoff:
    return BootstrapHandoff()
