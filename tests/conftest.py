import logging

import pytest

from dexbuilder import build_sample_dex
from dexhollow import Dex


@pytest.fixture
def sample():
    data, classes = build_sample_dex()
    return data, classes


@pytest.fixture
def sample_data(sample):
    return sample[0]


@pytest.fixture
def dex(sample_data):
    return Dex.from_bytes(sample_data)


@pytest.fixture
def sample_path(tmp_path, sample_data):
    path = tmp_path / "classes.dex"
    path.write_bytes(sample_data)
    return path


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    log = logging.getLogger("dexhollow")
    for handler in list(log.handlers):
        log.removeHandler(handler)
    log.setLevel(logging.NOTSET)
    log.propagate = True
