import numpy as np
import pytest

from histeq.domain.errors import InvalidInputError
from histeq.domain.models import EqualizationResult, GreyImage
from histeq.features.equalization.logic import (
    build_histogram,
    cumulative_histogram,
    equalize_reference,
    find_invariant_violations,
    normalize_lut,
    reproject,
)


def test_histogram_two_bins(scenario_a):
    hist = build_histogram(scenario_a)
    assert hist.dtype == np.uint32
    assert hist[10] == 2
    assert hist[200] == 2
    assert hist.sum() == 4


def test_cumulative_steps(scenario_a):
    cum = cumulative_histogram(build_histogram(scenario_a))
    assert np.all(cum[:10] == 0)
    assert np.all(cum[10:200] == 2)
    assert np.all(cum[200:] == 4)


def test_lut_rounds_half_up(scenario_a):
    lut = normalize_lut(cumulative_histogram(build_histogram(scenario_a)), 4)
    # 2 * 255 / 4 = 127.5
    assert lut[10] == 128
    assert lut[200] == 255
    assert np.array_equal(reproject(scenario_a, lut), [[128, 128], [255, 255]])


def test_uniform_image_saturates():
    img = np.full((4, 4), 5, dtype=np.uint8)
    hist = build_histogram(img)
    assert hist[5] == 16
    cum = cumulative_histogram(hist)
    assert np.all(cum[:5] == 0)
    assert np.all(cum[5:] == 16)
    lut = normalize_lut(cum, 16)
    assert lut[5] == 255
    assert np.all(equalize_reference(img) == 255)


def test_every_value_once_spreads_full_range(every_value_once):
    cum = cumulative_histogram(build_histogram(every_value_once))
    assert np.array_equal(cum, np.arange(1, 257))

    lut = normalize_lut(cum, 256)
    expected = np.array([((i + 1) * 510 + 256) // 512 for i in range(256)])
    assert np.array_equal(lut, expected)
    assert lut[0] == 1
    assert lut[255] == 255
    assert np.all(np.diff(lut.astype(int)) >= 0)


def test_identity_lut_reproduces_input():
    rng = np.random.default_rng(3)
    img = rng.integers(0, 256, size=(19, 23), dtype=np.uint8)
    identity = np.arange(256, dtype=np.uint8)
    assert np.array_equal(reproject(img, identity), img)


def test_empty_histogram_scans_to_zero():
    hist = build_histogram(np.zeros((0,), dtype=np.uint8))
    assert not hist.any()
    assert not cumulative_histogram(hist).any()


def test_normalize_rejects_zero_pixels():
    with pytest.raises(InvalidInputError) as exc:
        normalize_lut(np.zeros(256, dtype=np.uint32), 0)
    assert exc.value.stage == "lut_normalize"


def test_normalize_large_counts_are_exact():
    total = 2**32 - 1
    cum = np.linspace(0, total, 256).astype(np.uint64).astype(np.uint32)
    cum[-1] = total
    lut = normalize_lut(cum, total)
    expected = [(2 * 255 * int(c) + total) // (2 * total) for c in cum]
    assert lut.tolist() == expected
    assert lut[-1] == 255


def test_normalize_respects_max_output(every_value_once):
    cum = cumulative_histogram(build_histogram(every_value_once))
    lut = normalize_lut(cum, 256, max_output=15)
    assert lut.max() == 15
    assert np.all(np.diff(lut.astype(int)) >= 0)


def _result_for(img: np.ndarray) -> EqualizationResult:
    hist = build_histogram(img)
    cum = cumulative_histogram(hist)
    lut = normalize_lut(cum, img.size)
    return EqualizationResult(
        output=GreyImage.from_array(reproject(img, lut)),
        histogram=hist,
        cumulative=cum,
        lut=lut,
    )


def test_sound_result_has_no_violations(scenario_a):
    assert find_invariant_violations(scenario_a, _result_for(scenario_a)) == []


def test_violations_are_reported(scenario_a):
    result = _result_for(scenario_a)
    hist = result.histogram.copy()
    hist[0] += 1
    lut = result.lut.copy()
    lut[250] = 0
    tampered = EqualizationResult(
        output=GreyImage.from_array(np.zeros((2, 2), dtype=np.uint8)),
        histogram=hist,
        cumulative=result.cumulative,
        lut=lut,
    )
    problems = find_invariant_violations(scenario_a, tampered)
    assert any("histogram sums" in p for p in problems)
    assert any("prefix sum" in p for p in problems)
    assert any("non-decreasing" in p for p in problems)
    assert any("LUT[input]" in p for p in problems)
