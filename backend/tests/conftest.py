"""
Shared pytest fixtures for fallwatch tests.
"""
import os
from unittest.mock import patch

import pytest

from fallwatch.calls import CallProvider
from fallwatch.errors import DispatchRejected, DispatchUnavailable
from fallwatch.schemas import BodyPart, Keypoint, PoseSnapshot


def torso_snapshot(left_shoulder, right_shoulder, left_hip, right_hip, confidence=0.9):
    """Snapshot with only the four torso keypoints."""
    points = {
        BodyPart.LEFT_SHOULDER: left_shoulder,
        BodyPart.RIGHT_SHOULDER: right_shoulder,
        BodyPart.LEFT_HIP: left_hip,
        BodyPart.RIGHT_HIP: right_hip,
    }
    return PoseSnapshot(
        keypoints=tuple(
            Keypoint(name=part, x=xy[0], y=xy[1], confidence=confidence)
            for part, xy in points.items()
            if xy is not None
        ),
        score=confidence,
    )


class FakeCallProvider(CallProvider):
    """Records calls; optionally fails with a prepared error."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def place_call(self, to_phone_number):
        self.calls.append(to_phone_number)
        if self.error is not None:
            raise self.error
        return f"CA{len(self.calls):032d}"


@pytest.fixture
def upright():
    return torso_snapshot((140, 100), (160, 100), (140, 300), (160, 300))


@pytest.fixture
def lying():
    return torso_snapshot((100, 100), (100, 120), (300, 100), (300, 120))


@pytest.fixture
def fake_provider():
    return FakeCallProvider()


@pytest.fixture
def rejecting_provider():
    return FakeCallProvider(error=DispatchRejected("Invalid 'To' Phone Number"))


@pytest.fixture
def failing_provider():
    return FakeCallProvider(error=DispatchUnavailable("provider returned 503"))


@pytest.fixture
def mock_env():
    """Fixture to set common test environment variables."""
    env_vars = {
        "FALL_MIN_CONFIDENCE": "0.3",
        "FALL_ANGLE_LOW_DEG": "70",
        "FALL_ANGLE_HIGH_DEG": "120",
        "CALL_COOLDOWN_MS": "4500",
        "TWILIO_ACCOUNT_SID": "ACtest",
        "TWILIO_AUTH_TOKEN": "test_token",
        "TWILIO_PHONE_NUMBER": "+15550000000",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def make_torso():
    return torso_snapshot
