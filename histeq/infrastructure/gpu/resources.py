from typing import Any, Optional, Union
import numpy as np
import wgpu  # type: ignore

from histeq.domain.errors import TransferError
from histeq.infrastructure.gpu.device import GPUDevice

STORAGE_USAGE = (
    wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_SRC | wgpu.BufferUsage.COPY_DST
)


def aligned_size(size: int, alignment: int = 4) -> int:
    """Buffer copies must be multiples of 4 bytes; zero sized buffers are invalid."""
    return max(alignment, (size + alignment - 1) // alignment * alignment)


class GPUBuffer:
    """
    Storage or uniform buffer wrapper. Usable as a context manager so the
    hardware resource is released on every exit path.
    """

    def __init__(
        self, gpu: GPUDevice, size: int, usage: int = STORAGE_USAGE, label: str = ""
    ) -> None:
        self.gpu = gpu
        self.label = label
        self.size = aligned_size(size)
        self.buffer: Optional[Any] = gpu.device.create_buffer(
            size=self.size, usage=usage, label=label
        )

    def __enter__(self) -> "GPUBuffer":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.release()

    def upload(self, data: Union[bytes, np.ndarray]) -> int:
        """Transfers host bytes to VRAM, zero padding to the copy alignment."""
        raw = data.tobytes() if isinstance(data, np.ndarray) else bytes(data)
        if len(raw) > self.size:
            raise TransferError(
                f"Upload of {len(raw)} bytes exceeds buffer '{self.label}' ({self.size} bytes)",
                operation="write_buffer",
            )
        padded = raw + b"\x00" * (aligned_size(len(raw)) - len(raw))
        try:
            self.gpu.device.queue.write_buffer(self.buffer, 0, padded)
        except wgpu.GPUError as e:
            raise TransferError(
                f"Upload to '{self.label}' failed: {e}", operation="write_buffer"
            ) from e
        return len(raw)

    def clear(self) -> None:
        device = self.gpu.device
        encoder = device.create_command_encoder()
        encoder.clear_buffer(self.buffer, 0, self.size)
        device.queue.submit([encoder.finish()])

    def read(self, size: Optional[int] = None) -> np.ndarray:
        """
        Copies the buffer into a mappable staging buffer and returns its bytes.
        """
        nbytes = self.size if size is None else size
        device = self.gpu.device
        staging = device.create_buffer(
            size=aligned_size(nbytes),
            usage=wgpu.BufferUsage.COPY_DST | wgpu.BufferUsage.MAP_READ,
        )
        try:
            encoder = device.create_command_encoder()
            encoder.copy_buffer_to_buffer(self.buffer, 0, staging, 0, aligned_size(nbytes))
            device.queue.submit([encoder.finish()])
            staging.map_sync(wgpu.MapMode.READ)
            data = np.frombuffer(staging.read_mapped(), dtype=np.uint8)[:nbytes].copy()
            staging.unmap()
        except wgpu.GPUError as e:
            raise TransferError(
                f"Readback of '{self.label}' failed: {e}", operation="read_buffer"
            ) from e
        finally:
            staging.destroy()

        if data.size != nbytes:
            raise TransferError(
                f"Readback of '{self.label}' returned {data.size} of {nbytes} bytes",
                operation="read_buffer",
            )
        return data

    def release(self) -> None:
        """Forces hardware resource release."""
        if self.buffer is not None:
            self.buffer.destroy()
            self.buffer = None
