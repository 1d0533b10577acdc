from dataclasses import dataclass
from typing import Any, Callable, Dict

import wgpu  # type: ignore

from histeq.domain.errors import DeviceError
from histeq.domain.interfaces import KernelParams
from histeq.domain.models import STAGE_ORDER, Stage
from histeq.domain.types import NUM_BINS
from histeq.infrastructure.gpu.device import GPUDevice
from histeq.infrastructure.gpu.shader_loader import ShaderLoader
from histeq.kernel.system.logging import get_logger
from histeq.kernel.system.paths import get_shader_path

logger = get_logger(__name__)

WORKGROUP_SIZE = 256


@dataclass(frozen=True)
class KernelLayout:
    """
    Binding layout of an entry point: positional buffer arguments at
    bindings 0..arg_count-1, then the Params uniform when uses_params is set.
    work_items gives the size of the parallel domain.
    """

    arg_count: int
    uses_params: bool
    work_items: Callable[[KernelParams], int]


KERNEL_LAYOUTS: Dict[Stage, KernelLayout] = {
    Stage.BIN_COUNTER: KernelLayout(2, True, lambda p: p.pixel_count),
    Stage.PREFIX_ACCUMULATOR: KernelLayout(2, False, lambda p: NUM_BINS),
    Stage.RANGE_MAPPER: KernelLayout(2, True, lambda p: NUM_BINS),
    Stage.PIXEL_REPROJECTOR: KernelLayout(3, True, lambda p: (p.pixel_count + 3) // 4),
}


@dataclass(frozen=True)
class WgpuKernel:
    stage: Stage
    pipeline: Any
    layout: KernelLayout


class WgpuProgram:
    """
    The four equalization entry points compiled into compute pipelines.
    """

    def __init__(self, kernels: Dict[Stage, WgpuKernel]) -> None:
        self._kernels = kernels

    @classmethod
    def build(cls, gpu: GPUDevice) -> "WgpuProgram":
        loader = ShaderLoader(gpu)
        kernels = {}
        for stage in STAGE_ORDER:
            module = loader.load(get_shader_path(stage.value))
            try:
                pipeline = gpu.device.create_compute_pipeline(
                    label=stage.value,
                    layout="auto",
                    compute={"module": module, "entry_point": stage.value},
                )
            except wgpu.GPUError as e:
                raise DeviceError(
                    f"Failed to create pipeline for entry point '{stage.value}'",
                    stage=stage.value,
                    operation="build",
                    build_log=str(e),
                ) from e
            kernels[stage] = WgpuKernel(stage, pipeline, KERNEL_LAYOUTS[stage])
        logger.info("GPU Pipelines Initialized")
        return cls(kernels)

    def kernel(self, stage: Stage) -> WgpuKernel:
        try:
            return self._kernels[stage]
        except KeyError:
            raise DeviceError(
                f"Program has no entry point '{stage.value}'",
                stage=stage.value,
                operation="resolve_kernel",
            ) from None
