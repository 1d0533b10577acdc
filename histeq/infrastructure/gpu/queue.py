import struct
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import wgpu  # type: ignore

from histeq.domain.errors import DeviceError
from histeq.domain.interfaces import KernelEvent, KernelParams
from histeq.infrastructure.gpu.device import GPUDevice
from histeq.infrastructure.gpu.program import WORKGROUP_SIZE, WgpuKernel
from histeq.infrastructure.gpu.resources import GPUBuffer, STORAGE_USAGE
from histeq.kernel.system.logging import get_logger

logger = get_logger(__name__)

MAX_WORKGROUPS_PER_DIM = 65535


def dispatch_grid(work_items: int) -> Tuple[int, int]:
    """
    Workgroup counts covering work_items invocations. Domains beyond the
    per-dimension limit fold into y; kernels rebuild the linear index from
    num_workgroups.
    """
    groups = max(1, (work_items + WORKGROUP_SIZE - 1) // WORKGROUP_SIZE)
    x = min(groups, MAX_WORKGROUPS_PER_DIM)
    y = (groups + x - 1) // x
    if y > MAX_WORKGROUPS_PER_DIM:
        raise DeviceError(
            f"Domain of {work_items} items exceeds the dispatch limit",
            operation="dispatch",
        )
    return x, y


class WgpuCommandQueue:
    """
    Blocking command queue over a WebGPU device.
    Every dispatch is its own submission; wait() is the completion barrier.
    """

    def __init__(self, gpu: GPUDevice) -> None:
        self.gpu = gpu
        self.device_name = gpu.name
        self._in_flight: Dict[int, List[Any]] = {}

    def create_buffer(self, size: int, label: str) -> GPUBuffer:
        try:
            buf = GPUBuffer(self.gpu, size, STORAGE_USAGE, label)
        except wgpu.GPUError as e:
            raise DeviceError(
                f"Allocation of '{label}' ({size} bytes) failed: {e}",
                operation="create_buffer",
            ) from e
        logger.debug(f"Allocated '{label}' ({buf.size} bytes)")
        return buf

    def write_buffer(self, buffer: GPUBuffer, data: Union[bytes, np.ndarray]) -> int:
        return buffer.upload(data)

    def fill_buffer(self, buffer: GPUBuffer, value: int = 0) -> None:
        try:
            if value == 0:
                buffer.clear()
            else:
                buffer.upload(np.full(buffer.size, value, dtype=np.uint8))
        except wgpu.GPUError as e:
            raise DeviceError(
                f"Fill of '{buffer.label}' failed: {e}", operation="fill_buffer"
            ) from e

    def read_buffer(self, buffer: GPUBuffer, size: int) -> np.ndarray:
        return buffer.read(size)

    def enqueue_kernel(
        self,
        kernel: WgpuKernel,
        args: Sequence[GPUBuffer],
        params: KernelParams,
    ) -> KernelEvent:
        layout = kernel.layout
        if len(args) != layout.arg_count:
            raise DeviceError(
                f"'{kernel.stage.value}' takes {layout.arg_count} buffers, got {len(args)}",
                stage=kernel.stage.value,
                operation="set_args",
            )

        device = self.gpu.device
        transient: List[Any] = []
        queued_ns = time.perf_counter_ns()
        try:
            entries = [
                {
                    "binding": idx,
                    "resource": {"buffer": buf.buffer, "offset": 0, "size": buf.size},
                }
                for idx, buf in enumerate(args)
            ]
            if layout.uses_params:
                uniform = GPUBuffer(
                    self.gpu,
                    16,
                    wgpu.BufferUsage.UNIFORM | wgpu.BufferUsage.COPY_DST,
                    f"{kernel.stage.value}_params",
                )
                transient.append(uniform)
                uniform.upload(
                    struct.pack(
                        "IIII", params.pixel_count, params.total_pixels, params.max_output, 0
                    )
                )
                entries.append(
                    {
                        "binding": layout.arg_count,
                        "resource": {"buffer": uniform.buffer, "offset": 0, "size": 16},
                    }
                )

            bind_group = device.create_bind_group(
                layout=kernel.pipeline.get_bind_group_layout(0), entries=entries
            )

            timestamp_writes: Optional[Dict[str, Any]] = None
            resolve: Optional[GPUBuffer] = None
            if self.gpu.timestamps_supported:
                query_set = device.create_query_set(type=wgpu.QueryType.timestamp, count=2)
                transient.append(query_set)
                resolve = GPUBuffer(
                    self.gpu,
                    16,
                    wgpu.BufferUsage.QUERY_RESOLVE | wgpu.BufferUsage.COPY_SRC,
                    f"{kernel.stage.value}_timestamps",
                )
                transient.append(resolve)
                timestamp_writes = {
                    "query_set": query_set,
                    "beginning_of_pass_write_index": 0,
                    "end_of_pass_write_index": 1,
                }

            x, y = dispatch_grid(layout.work_items(params))
            encoder = device.create_command_encoder()
            if timestamp_writes:
                pass_enc = encoder.begin_compute_pass(timestamp_writes=timestamp_writes)
            else:
                pass_enc = encoder.begin_compute_pass()
            pass_enc.set_pipeline(kernel.pipeline)
            pass_enc.set_bind_group(0, bind_group)
            pass_enc.dispatch_workgroups(x, y)
            pass_enc.end()
            if timestamp_writes and resolve is not None:
                encoder.resolve_query_set(timestamp_writes["query_set"], 0, 2, resolve.buffer, 0)

            submit_ns = time.perf_counter_ns()
            device.queue.submit([encoder.finish()])
        except wgpu.GPUError as e:
            self._destroy(transient)
            raise DeviceError(
                f"Dispatch of '{kernel.stage.value}' failed: {e}",
                stage=kernel.stage.value,
                operation="dispatch",
            ) from e
        except BaseException:
            self._destroy(transient)
            raise

        event = KernelEvent(
            stage=kernel.stage,
            queued_ns=queued_ns,
            submit_ns=submit_ns,
            start_ns=time.perf_counter_ns(),
        )
        self._in_flight[id(event)] = transient
        logger.debug(f"Dispatched '{kernel.stage.value}' on grid {x}x{y}")
        return event

    def wait(self, event: KernelEvent) -> None:
        transient = self._in_flight.pop(id(event), [])
        try:
            self.gpu.wait_idle()
            event.end_ns = time.perf_counter_ns()
            resolve = next(
                (t for t in transient if isinstance(t, GPUBuffer) and t.label.endswith("_timestamps")),
                None,
            )
            if resolve is not None:
                begin, end = np.frombuffer(resolve.read(16).tobytes(), dtype=np.uint64)
                event.device_exec_ns = int(end - begin) if end >= begin else None
        except wgpu.GPUError as e:
            raise DeviceError(
                f"Waiting on '{event.stage.value}' failed: {e}",
                stage=event.stage.value,
                operation="wait",
            ) from e
        finally:
            self._destroy(transient)

    def close(self) -> None:
        for transient in self._in_flight.values():
            self._destroy(transient)
        self._in_flight.clear()

    @staticmethod
    def _destroy(resources: List[Any]) -> None:
        for res in resources:
            if isinstance(res, GPUBuffer):
                res.release()
            elif hasattr(res, "destroy"):
                res.destroy()
