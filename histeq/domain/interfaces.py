from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from histeq.domain.models import Stage


@dataclass(frozen=True)
class KernelParams:
    """
    Scalars every kernel receives through its uniform block.
    """

    pixel_count: int
    total_pixels: int
    max_output: int


@dataclass
class KernelEvent:
    """
    Host-clock timestamps of one kernel dispatch in nanoseconds.
    start_ns is taken once the device accepted the submission, end_ns once the
    queue has waited on the event. device_exec_ns holds the execution time
    measured on the device itself when the backend supports it.
    """

    stage: Stage
    queued_ns: int
    submit_ns: int
    start_ns: Optional[int] = None
    end_ns: Optional[int] = None
    device_exec_ns: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.end_ns is not None


@runtime_checkable
class DeviceBuffer(Protocol):
    """
    Device-resident memory of a fixed byte size.
    """

    size: int
    label: str

    def release(self) -> None: ...


@runtime_checkable
class Kernel(Protocol):
    """
    A resolved entry point of a compiled program.
    """

    stage: Stage


class ComputeProgram(Protocol):
    """
    A compiled program exposing the four equalization entry points.
    """

    def kernel(self, stage: Stage) -> Kernel: ...


class CommandQueue(Protocol):
    """
    Blocking command queue bound to one device.
    """

    device_name: str

    def create_buffer(self, size: int, label: str) -> DeviceBuffer: ...

    def write_buffer(
        self, buffer: DeviceBuffer, data: Union[bytes, np.ndarray]
    ) -> int: ...

    def fill_buffer(self, buffer: DeviceBuffer, value: int = 0) -> None: ...

    def read_buffer(self, buffer: DeviceBuffer, size: int) -> np.ndarray: ...

    def enqueue_kernel(
        self,
        kernel: Kernel,
        args: Sequence[DeviceBuffer],
        params: KernelParams,
    ) -> KernelEvent: ...

    def wait(self, event: KernelEvent) -> None: ...
