from typing import Any, Dict, List, Optional, Tuple
import wgpu  # type: ignore

from histeq.domain.errors import DeviceError
from histeq.kernel.system.logging import get_logger

logger = get_logger(__name__)

TIMESTAMP_FEATURE = "timestamp-query"


def _backend_of(adapter: Any) -> str:
    info = getattr(adapter, "info", None) or {}
    return str(info.get("backend_type", "Unknown"))


def enumerate_platforms() -> List[Tuple[str, List[Any]]]:
    """
    Groups the available adapters by graphics backend.
    A backend (Vulkan, Metal, D3D12, OpenGL...) plays the role of a platform,
    the adapters it exposes are its devices.
    """
    try:
        adapters = wgpu.gpu.enumerate_adapters_sync()
    except Exception as e:
        raise DeviceError(f"Adapter enumeration failed: {e}", operation="enumerate") from e

    platforms: Dict[str, List[Any]] = {}
    for adapter in adapters:
        platforms.setdefault(_backend_of(adapter), []).append(adapter)
    return sorted(platforms.items(), key=lambda item: item[0])


def list_platforms() -> str:
    platforms = enumerate_platforms()
    if not platforms:
        return "No compatible GPU adapters found"

    lines = []
    for p_id, (backend, adapters) in enumerate(platforms):
        lines.append(f"Platform {p_id}, {backend}")
        for d_id, adapter in enumerate(adapters):
            lines.append(f"  Device {d_id}, {adapter.summary}")
    return "\n".join(lines)


class GPUDevice:
    """
    WebGPU adapter and the logical device requested from it.
    """

    def __init__(self, adapter: Any) -> None:
        self.adapter = adapter
        self.timestamps_supported = TIMESTAMP_FEATURE in set(adapter.features)
        features = [TIMESTAMP_FEATURE] if self.timestamps_supported else []
        try:
            self.device = adapter.request_device_sync(required_features=features)
        except Exception as e:
            raise DeviceError(
                f"Failed to create device on {adapter.summary}: {e}",
                operation="create_device",
            ) from e
        self.limits = self.device.limits
        logger.info(f"GPU Initialized: {adapter.summary}")
        logger.debug(
            f"GPU Limits: Max Storage Buffer Binding = {self.limits.get('max_storage_buffer_binding_size', 'Unknown')}"
        )
        if not self.timestamps_supported:
            logger.debug("Adapter lacks timestamp queries, using host timing")

    @classmethod
    def select(
        cls,
        platform_id: Optional[int] = None,
        device_id: Optional[int] = None,
        power_preference: str = "high-performance",
    ) -> "GPUDevice":
        """
        Binds to the adapter at the given ordinals, or lets wgpu pick one when
        no ordinal is given.
        """
        if platform_id is None and device_id is None:
            try:
                adapter = wgpu.gpu.request_adapter_sync(power_preference=power_preference)
            except Exception as e:
                raise DeviceError(f"Adapter request failed: {e}", operation="request_adapter") from e
            if adapter is None:
                raise DeviceError("No compatible GPU adapter found", operation="request_adapter")
            return cls(adapter)

        platforms = enumerate_platforms()
        p_id, d_id = platform_id or 0, device_id or 0
        if not 0 <= p_id < len(platforms):
            raise DeviceError(
                f"Platform {p_id} not found ({len(platforms)} available)",
                operation="select_platform",
            )
        backend, adapters = platforms[p_id]
        if not 0 <= d_id < len(adapters):
            raise DeviceError(
                f"Device {d_id} not found on platform {p_id} ({backend})",
                operation="select_device",
            )
        return cls(adapters[d_id])

    @property
    def name(self) -> str:
        return f"{_backend_of(self.adapter)}, {self.adapter.summary}"

    def poll(self) -> None:
        """
        Polls the GPU device to progress async tasks.
        """
        if hasattr(self.device, "poll"):
            self.device.poll()
        elif hasattr(self.device, "_poll"):
            self.device._poll()

    def wait_idle(self) -> None:
        """
        Blocks until all submitted work has finished executing.
        """
        self.poll()

    def destroy(self) -> None:
        if hasattr(self.device, "destroy"):
            self.device.destroy()
