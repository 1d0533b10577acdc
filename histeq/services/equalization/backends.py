from dataclasses import dataclass
from typing import Any, Optional

from histeq.domain.errors import DeviceError
from histeq.domain.interfaces import CommandQueue, ComputeProgram
from histeq.domain.models import EqualizationConfig, EqualizationResult, GreyImage
from histeq.infrastructure.cpu.queue import HostCommandQueue, HostProgram
from histeq.infrastructure.gpu.device import GPUDevice
from histeq.infrastructure.gpu.program import WgpuProgram
from histeq.infrastructure.gpu.queue import WgpuCommandQueue
from histeq.kernel.system.config import APP_CONFIG
from histeq.kernel.system.logging import get_logger
from histeq.services.equalization.pipeline import EqualizationPipeline

logger = get_logger(__name__)


@dataclass
class Backend:
    """
    A command queue and the program compiled for it.
    """

    name: str
    queue: Any
    program: Any
    gpu: Optional[GPUDevice] = None

    def pipeline(self, config: Optional[EqualizationConfig] = None) -> EqualizationPipeline:
        queue: CommandQueue = self.queue
        program: ComputeProgram = self.program
        return EqualizationPipeline(queue, program, config)

    def close(self) -> None:
        self.queue.close()
        if self.gpu is not None:
            self.gpu.destroy()
            self.gpu = None

    def __enter__(self) -> "Backend":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def host_backend() -> Backend:
    queue = HostCommandQueue()
    return Backend(name=queue.device_name, queue=queue, program=HostProgram())


def gpu_backend(
    platform_id: Optional[int] = None,
    device_id: Optional[int] = None,
    power_preference: Optional[str] = None,
) -> Backend:
    gpu = GPUDevice.select(
        platform_id,
        device_id,
        power_preference=power_preference or APP_CONFIG.power_preference,
    )
    try:
        program = WgpuProgram.build(gpu)
    except DeviceError:
        gpu.destroy()
        raise
    queue = WgpuCommandQueue(gpu)
    return Backend(name=queue.device_name, queue=queue, program=program, gpu=gpu)


def open_backend(
    use_gpu: Optional[bool] = None,
    platform_id: Optional[int] = None,
    device_id: Optional[int] = None,
) -> Backend:
    """
    GPU backend when available, host backend otherwise.
    An explicitly selected platform/device never falls back.
    """
    if use_gpu is None:
        use_gpu = APP_CONFIG.use_gpu
    if not use_gpu:
        return host_backend()

    explicit = platform_id is not None or device_id is not None
    try:
        return gpu_backend(platform_id, device_id)
    except DeviceError as e:
        if explicit or e.operation == "build":
            raise
        logger.warning(f"GPU requested but not available, using CPU: {e}")
        return host_backend()


def equalize(
    pixels: Any,
    config: Optional[EqualizationConfig] = None,
    use_gpu: Optional[bool] = None,
) -> EqualizationResult:
    """
    One-shot equalization of a uint8 greyscale array.
    """
    image = pixels if isinstance(pixels, GreyImage) else GreyImage.from_array(pixels)
    if config is None:
        config = EqualizationConfig(verify_results=APP_CONFIG.verify_results)
    with open_backend(use_gpu) as backend:
        return backend.pipeline(config).run(image)
