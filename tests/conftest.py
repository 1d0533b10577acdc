import os

os.environ.setdefault("NUMBA_THREADING_LAYER", "workqueue")

import numpy as np
import pytest


@pytest.fixture
def scenario_a():
    """2x2 image with two populated bins."""
    return np.array([[10, 10], [200, 200]], dtype=np.uint8)


@pytest.fixture
def every_value_once():
    return np.arange(256, dtype=np.uint8).reshape(16, 16)
