from histeq.services.equalization.pipeline import EqualizationPipeline, RunContext
from histeq.services.equalization.backends import (
    Backend,
    equalize,
    gpu_backend,
    host_backend,
    open_backend,
)

__all__ = [
    "Backend",
    "EqualizationPipeline",
    "RunContext",
    "equalize",
    "gpu_backend",
    "host_backend",
    "open_backend",
]
