import numpy as np
from numba import njit, prange  # type: ignore

# Pixels per private sub-histogram
HIST_CHUNK = 1 << 16


@njit(parallel=True)
def histogram_jit(pixels: np.ndarray, hist: np.ndarray) -> None:
    """
    Scatter with privatization: every chunk counts into its own row, rows are
    merged once the parallel loop has finished, so no increment is lost.
    """
    n = pixels.shape[0]
    n_chunks = (n + HIST_CHUNK - 1) // HIST_CHUNK
    partial = np.zeros((n_chunks, 256), dtype=np.uint32)
    for c in prange(n_chunks):
        start = c * HIST_CHUNK
        end = min(start + HIST_CHUNK, n)
        for i in range(start, end):
            partial[c, pixels[i]] += 1
    for c in range(n_chunks):
        for b in range(256):
            hist[b] += partial[c, b]


@njit
def cumulative_scan_jit(hist: np.ndarray, cum: np.ndarray) -> None:
    acc = 0
    for i in range(hist.shape[0]):
        acc += np.int64(hist[i])
        cum[i] = acc


@njit(parallel=True)
def lut_normalize_jit(
    cum: np.ndarray, lut: np.ndarray, total: np.int64, max_output: np.int64
) -> None:
    """Round half up in int64, exact for every u32 pixel count."""
    for i in prange(cum.shape[0]):
        c = np.int64(cum[i])
        v = (2 * max_output * c + total) // (2 * total)
        if v > max_output:
            v = max_output
        lut[i] = v


@njit(parallel=True)
def reproject_jit(pixels: np.ndarray, lut: np.ndarray, out: np.ndarray) -> None:
    for i in prange(pixels.shape[0]):
        out[i] = np.uint8(lut[pixels[i]])
