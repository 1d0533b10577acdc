import os
from typing import Any, Dict

import wgpu  # type: ignore

from histeq.domain.errors import DeviceError
from histeq.infrastructure.gpu.device import GPUDevice
from histeq.kernel.system.logging import get_logger

logger = get_logger(__name__)


class ShaderLoader:
    """
    Loads and caches WGSL shader modules for one device.
    """

    def __init__(self, gpu: GPUDevice) -> None:
        self.gpu = gpu
        self._cache: Dict[str, Any] = {}

    def load(self, path: str) -> Any:
        """
        Loads a WGSL shader from the filesystem and creates a shader module.
        Compilation errors surface as DeviceError carrying the compiler output.
        """
        if path in self._cache:
            return self._cache[path]

        if not os.path.exists(path):
            raise DeviceError(f"Shader not found at {path}", operation="build")

        with open(path, "r", encoding="utf-8") as f:
            code = f.read()

        try:
            shader_module = self.gpu.device.create_shader_module(
                label=os.path.basename(path), code=code
            )
        except wgpu.GPUError as e:
            raise DeviceError(
                f"Failed to compile {os.path.basename(path)}",
                operation="build",
                build_log=str(e),
            ) from e

        self._cache[path] = shader_module
        logger.debug(f"Loaded shader: {os.path.basename(path)}")
        return shader_module
