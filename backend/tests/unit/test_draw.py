"""
Unit tests for fallwatch.draw
"""
import numpy as np

from fallwatch.draw import AQUA, RED, draw_pose
from fallwatch.schemas import FallVerdict, PoseSnapshot


def test_draws_aqua_keypoints_when_upright(upright):
    frame = np.zeros((400, 400, 3), dtype=np.uint8)
    draw_pose(frame, upright, FallVerdict(is_fall=False, angle_degrees=90.0))
    assert tuple(frame[100, 140]) == AQUA


def test_draws_red_keypoints_on_fall(lying):
    frame = np.zeros((400, 400, 3), dtype=np.uint8)
    draw_pose(frame, lying, FallVerdict(is_fall=True, angle_degrees=0.0))
    assert tuple(frame[100, 100]) == RED


def test_low_confidence_keypoints_are_not_drawn(make_torso):
    frame = np.zeros((400, 400, 3), dtype=np.uint8)
    snapshot = make_torso((140, 100), (160, 100), (140, 300), (160, 300), confidence=0.1)
    draw_pose(frame, snapshot, FallVerdict(is_fall=False, angle_degrees=90.0), min_confidence=0.2)
    assert not frame.any()


def test_empty_snapshot_draws_nothing():
    frame = np.zeros((100, 100, 3), dtype=np.uint8)
    draw_pose(frame, PoseSnapshot.empty(), FallVerdict(is_fall=False))
    assert not frame.any()
