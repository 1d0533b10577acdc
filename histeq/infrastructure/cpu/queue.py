import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np

from histeq.domain.errors import DeviceError, TransferError
from histeq.domain.interfaces import KernelEvent, KernelParams
from histeq.domain.models import Stage
from histeq.infrastructure.cpu.kernels import (
    cumulative_scan_jit,
    histogram_jit,
    lut_normalize_jit,
    reproject_jit,
)
from histeq.kernel.system.logging import get_logger

logger = get_logger(__name__)


@dataclass
class HostBuffer:
    """Byte buffer in host memory standing in for device memory."""

    size: int
    label: str
    data: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = np.zeros(self.size, dtype=np.uint8)

    def view(self, dtype: type = np.uint8) -> np.ndarray:
        if self.data is None:
            raise DeviceError(f"Buffer '{self.label}' used after release", operation="access")
        return self.data.view(dtype)

    def release(self) -> None:
        self.data = None


def _run_histogram(args: Sequence[HostBuffer], params: KernelParams) -> None:
    pixels, hist = args
    histogram_jit(pixels.view()[: params.pixel_count], hist.view(np.uint32))


def _run_cumulative_scan(args: Sequence[HostBuffer], params: KernelParams) -> None:
    hist, cum = args
    cumulative_scan_jit(hist.view(np.uint32), cum.view(np.uint32))


def _run_lut_normalize(args: Sequence[HostBuffer], params: KernelParams) -> None:
    cum, lut = args
    lut_normalize_jit(
        cum.view(np.uint32),
        lut.view(np.uint32),
        np.int64(params.total_pixels),
        np.int64(params.max_output),
    )


def _run_reproject(args: Sequence[HostBuffer], params: KernelParams) -> None:
    pixels, lut, out = args
    n = params.pixel_count
    reproject_jit(pixels.view()[:n], lut.view(np.uint32), out.view()[:n])


@dataclass(frozen=True)
class HostKernel:
    stage: Stage
    fn: Callable[[Sequence[HostBuffer], KernelParams], None]
    arg_count: int


class HostProgram:
    """
    The four entry points as numba kernels.
    """

    def __init__(self) -> None:
        self._kernels: Dict[Stage, HostKernel] = {
            Stage.BIN_COUNTER: HostKernel(Stage.BIN_COUNTER, _run_histogram, 2),
            Stage.PREFIX_ACCUMULATOR: HostKernel(
                Stage.PREFIX_ACCUMULATOR, _run_cumulative_scan, 2
            ),
            Stage.RANGE_MAPPER: HostKernel(Stage.RANGE_MAPPER, _run_lut_normalize, 2),
            Stage.PIXEL_REPROJECTOR: HostKernel(
                Stage.PIXEL_REPROJECTOR, _run_reproject, 3
            ),
        }

    def kernel(self, stage: Stage) -> HostKernel:
        try:
            return self._kernels[stage]
        except KeyError:
            raise DeviceError(
                f"Program has no entry point '{stage.value}'",
                stage=stage.value,
                operation="resolve_kernel",
            ) from None


class HostCommandQueue:
    """
    Executes kernels synchronously on the CPU. enqueue_kernel returns once the
    kernel has run, so wait() only stamps the completion time.
    """

    device_name = "Host CPU (numba)"

    def create_buffer(self, size: int, label: str) -> HostBuffer:
        logger.debug(f"Allocated '{label}' ({size} bytes)")
        return HostBuffer(size=size, label=label)

    def write_buffer(self, buffer: HostBuffer, data: Union[bytes, np.ndarray]) -> int:
        raw = np.frombuffer(
            data.tobytes() if isinstance(data, np.ndarray) else bytes(data), dtype=np.uint8
        )
        if raw.size > buffer.size:
            raise TransferError(
                f"Upload of {raw.size} bytes exceeds buffer '{buffer.label}' ({buffer.size} bytes)",
                operation="write_buffer",
            )
        buffer.view()[: raw.size] = raw
        return int(raw.size)

    def fill_buffer(self, buffer: HostBuffer, value: int = 0) -> None:
        buffer.view()[:] = value

    def read_buffer(self, buffer: HostBuffer, size: int) -> np.ndarray:
        if size > buffer.size:
            raise TransferError(
                f"Readback of {size} bytes exceeds buffer '{buffer.label}' ({buffer.size} bytes)",
                operation="read_buffer",
            )
        return buffer.view()[:size].copy()

    def enqueue_kernel(
        self,
        kernel: HostKernel,
        args: Sequence[HostBuffer],
        params: KernelParams,
    ) -> KernelEvent:
        if len(args) != kernel.arg_count:
            raise DeviceError(
                f"'{kernel.stage.value}' takes {kernel.arg_count} buffers, got {len(args)}",
                stage=kernel.stage.value,
                operation="set_args",
            )
        queued_ns = time.perf_counter_ns()
        event = KernelEvent(stage=kernel.stage, queued_ns=queued_ns, submit_ns=queued_ns)
        event.start_ns = time.perf_counter_ns()
        kernel.fn(args, params)
        event.device_exec_ns = time.perf_counter_ns() - event.start_ns
        logger.debug(f"Ran '{kernel.stage.value}' on host")
        return event

    def wait(self, event: KernelEvent) -> None:
        event.end_ns = time.perf_counter_ns()

    def close(self) -> None:
        pass
