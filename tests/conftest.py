from __future__ import annotations

import pytest

from skimmer.retry import Pacing
from tests.fakes import FakeCv2


@pytest.fixture
def no_pacing() -> Pacing:
    return Pacing.disabled()


@pytest.fixture
def fake_cv2() -> FakeCv2:
    return FakeCv2()
