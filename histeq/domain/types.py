from typing import TypeAlias
import numpy as np
import numpy.typing as npt


# Image Types
# 8-bit single channel raster (Height, Width)
PixelBuffer: TypeAlias = npt.NDArray[np.uint8]

# 256-entry tables indexed by pixel value
CounterTable: TypeAlias = npt.NDArray[np.uint32]
LookupTable: TypeAlias = npt.NDArray[np.uint8]

NUM_BINS = 256
MAX_OUTPUT = 255
COUNTER_BYTES = 4
TABLE_BYTES = NUM_BINS * COUNTER_BYTES

# Counters are 32-bit on every backend
MAX_PIXEL_COUNT = 2**32 - 1
