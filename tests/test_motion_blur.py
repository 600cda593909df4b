"""Tests for motion blur sampling."""

import pytest

from src.domain.motion_blur import MotionBlurInterval, MotionBlurSampler
from src.domain.time import FrameClock
from src.shared.exceptions import ConfigurationError


def _floats(clocks):
    return [c.to_float() for c in clocks]


def test_single_sample_at_start_offset():
    interval = MotionBlurInterval(start_offset=0.5, duration=1.0, sample_count=1)
    assert MotionBlurSampler.sample_instants(1, interval) == (FrameClock(1, 0.5),)


def test_two_samples_span_the_interval():
    interval = MotionBlurInterval(start_offset=-0.25, duration=0.5, sample_count=2)
    samples = MotionBlurSampler.sample_instants(1, interval)
    assert _floats(samples) == pytest.approx([0.75, 1.25])


def test_from_center_starts_half_a_duration_early():
    interval = MotionBlurInterval.from_center(0.0, 1.0, 3)
    assert interval.start_offset == pytest.approx(-0.5)
    samples = MotionBlurSampler.sample_instants(2, interval)
    assert _floats(samples) == pytest.approx([1.5, 2.0, 2.5])


def test_zero_duration_collapses_to_identical_clocks():
    interval = MotionBlurInterval(start_offset=0.0, duration=0.0, sample_count=3)
    samples = MotionBlurSampler.sample_instants(4, interval)
    assert len(samples) == 3
    assert len(set(samples)) == 1


def test_sample_count_and_bounds():
    for render_frame, interval in [
        (1, MotionBlurInterval(0.1, 0.7, 7)),
        (10, MotionBlurInterval(-1.0, 2.0, 5)),
        (-3, MotionBlurInterval(0.0, 0.3, 2)),
    ]:
        samples = MotionBlurSampler.sample_instants(render_frame, interval)

        assert len(samples) == interval.sample_count
        assert all(a <= b for a, b in zip(samples, samples[1:]))
        assert samples[0] == FrameClock.from_float(render_frame + interval.start_offset)
        assert samples[-1] == FrameClock.from_float(
            render_frame + interval.start_offset + interval.duration
        )


def test_sample_step():
    assert MotionBlurInterval(0.0, 1.0, 5).sample_step == pytest.approx(0.25)
    assert MotionBlurInterval(0.0, 1.0, 1).sample_step == 0.0


def test_disabled_interval():
    samples = MotionBlurSampler.sample_instants(7, MotionBlurInterval.disabled())
    assert samples == (FrameClock(7),)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sample_count": 0},
        {"duration": -1.0},
    ],
)
def test_invalid_interval(kwargs):
    with pytest.raises(ConfigurationError):
        MotionBlurInterval(**kwargs)
