import numpy as np

from histeq.domain.errors import InvalidInputError
from histeq.domain.models import EqualizationResult, Stage
from histeq.domain.types import (
    CounterTable,
    LookupTable,
    MAX_OUTPUT,
    NUM_BINS,
    PixelBuffer,
)


def build_histogram(pixels: PixelBuffer) -> CounterTable:
    """
    Frequency of every pixel value. An empty buffer yields all zero bins.
    """
    flat = np.asarray(pixels, dtype=np.uint8).ravel()
    return np.bincount(flat, minlength=NUM_BINS).astype(np.uint32)


def cumulative_histogram(histogram: CounterTable) -> CounterTable:
    """Inclusive prefix sum over the 256 bins."""
    return np.cumsum(np.asarray(histogram, dtype=np.uint64)).astype(np.uint32)


def normalize_lut(
    cumulative: CounterTable, total_pixels: int, max_output: int = MAX_OUTPUT
) -> LookupTable:
    """
    lut[i] = round(cumulative[i] * max_output / total_pixels), ties rounded up,
    clamped to [0, max_output].

    Evaluated in integers as (2 * max_output * c + total) // (2 * total) so the
    result is bit exact with the device kernels.
    """
    if total_pixels <= 0:
        raise InvalidInputError(
            "Cannot normalize a cumulative histogram of an empty image",
            stage=Stage.RANGE_MAPPER.value,
            operation="normalize",
        )
    c = np.asarray(cumulative, dtype=np.uint64)
    total = np.uint64(total_pixels)
    lut = (np.uint64(2 * max_output) * c + total) // (np.uint64(2) * total)
    return np.minimum(lut, np.uint64(max_output)).astype(np.uint8)


def reproject(pixels: PixelBuffer, lut: LookupTable) -> PixelBuffer:
    """output[p] = lut[input[p]]"""
    return np.asarray(lut, dtype=np.uint8)[np.asarray(pixels, dtype=np.uint8)]


def equalize_reference(pixels: PixelBuffer, max_output: int = MAX_OUTPUT) -> PixelBuffer:
    hist = build_histogram(pixels)
    lut = normalize_lut(cumulative_histogram(hist), int(np.asarray(pixels).size), max_output)
    return reproject(pixels, lut)


def find_invariant_violations(
    source: PixelBuffer, result: EqualizationResult, max_output: int = MAX_OUTPUT
) -> list[str]:
    """
    Checks every artifact of a run against the data model invariants.
    Returns a list of human readable violations, empty when the run is sound.
    """
    problems: list[str] = []
    pixel_count = int(source.size)
    hist = np.asarray(result.histogram, dtype=np.uint64)
    cum = np.asarray(result.cumulative, dtype=np.uint64)
    lut = np.asarray(result.lut, dtype=np.int64)
    output = result.output.pixels

    if hist.shape != (NUM_BINS,) or cum.shape != (NUM_BINS,) or lut.shape != (NUM_BINS,):
        problems.append("tables must have exactly 256 entries")
        return problems

    if int(hist.sum()) != pixel_count:
        problems.append(
            f"histogram sums to {int(hist.sum())}, expected {pixel_count}"
        )
    if np.any(np.diff(cum.astype(np.int64)) < 0):
        problems.append("cumulative histogram is not non-decreasing")
    if int(cum[-1]) != pixel_count:
        problems.append(
            f"cumulative histogram ends at {int(cum[-1])}, expected {pixel_count}"
        )
    if not np.array_equal(cum, np.cumsum(hist)):
        problems.append("cumulative histogram is not the prefix sum of the histogram")
    if lut.min() < 0 or lut.max() > max_output:
        problems.append(f"LUT leaves the range [0, {max_output}]")
    if np.any(np.diff(lut) < 0):
        problems.append("LUT is not non-decreasing")
    if output.shape != source.shape:
        problems.append(f"output shape {output.shape} differs from input {source.shape}")
    elif not np.array_equal(output, np.asarray(result.lut, dtype=np.uint8)[source]):
        problems.append("output pixels do not match LUT[input]")

    return problems
