from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Tuple

import numpy as np

from histeq.domain.errors import InvalidInputError
from histeq.domain.types import (
    CounterTable,
    LookupTable,
    MAX_OUTPUT,
    MAX_PIXEL_COUNT,
    PixelBuffer,
)


class Stage(str, Enum):
    """
    The four kernels of the equalization program.
    Values are the entry point names the compiled program exposes.
    """

    BIN_COUNTER = "histogram"
    PREFIX_ACCUMULATOR = "cumulative_scan"
    RANGE_MAPPER = "lut_normalize"
    PIXEL_REPROJECTOR = "reproject"

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    Stage.BIN_COUNTER: "Histogram",
    Stage.PREFIX_ACCUMULATOR: "Cumulative Histogram",
    Stage.RANGE_MAPPER: "LUT",
    Stage.PIXEL_REPROJECTOR: "Reproject",
}

STAGE_ORDER: Tuple[Stage, ...] = (
    Stage.BIN_COUNTER,
    Stage.PREFIX_ACCUMULATOR,
    Stage.RANGE_MAPPER,
    Stage.PIXEL_REPROJECTOR,
)


class RunState(str, Enum):
    IDLE = "Idle"
    BUFFERS_ALLOCATED = "BuffersAllocated"
    STAGE1_DONE = "Stage1Done"
    STAGE2_DONE = "Stage2Done"
    STAGE3_DONE = "Stage3Done"
    STAGE4_DONE = "Stage4Done"
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass(frozen=True)
class GreyImage:
    """
    Validated 8-bit single channel image. The pixel array is read-only.
    """

    pixels: PixelBuffer

    @classmethod
    def from_array(cls, arr: Any) -> "GreyImage":
        if not isinstance(arr, np.ndarray):
            raise InvalidInputError(f"Expected numpy.ndarray, got {type(arr)}")
        if arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[:, :, 0]
        if arr.ndim != 2:
            raise InvalidInputError(
                f"Expected a single channel 2D image, got shape {arr.shape}"
            )
        if arr.dtype != np.uint8:
            raise InvalidInputError(f"Expected 8-bit pixels, got dtype {arr.dtype}")
        if arr.size == 0:
            raise InvalidInputError(f"Image is empty (shape {arr.shape})")
        if arr.size > MAX_PIXEL_COUNT:
            raise InvalidInputError(
                f"Image has {arr.size} pixels, counters are limited to {MAX_PIXEL_COUNT}"
            )

        pixels = np.ascontiguousarray(arr).copy()
        pixels.setflags(write=False)
        return cls(pixels=pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def pixel_count(self) -> int:
        return int(self.pixels.size)


@dataclass(frozen=True)
class EqualizationConfig:
    """
    Per-run pipeline options.
    """

    max_output: int = MAX_OUTPUT
    verify_results: bool = True
    profiling: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.max_output <= MAX_OUTPUT:
            raise ValueError(
                f"max_output must be within 1..{MAX_OUTPUT}, got {self.max_output}"
            )


@dataclass(frozen=True)
class EqualizationResult:
    output: GreyImage
    histogram: CounterTable
    cumulative: CounterTable
    lut: LookupTable
    profile: Tuple[Any, ...] = field(default_factory=tuple)
    backend: str = ""
