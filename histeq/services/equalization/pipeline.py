from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Sequence

import numpy as np

from histeq.domain.errors import DeviceError, EqualizationError, InvalidInputError
from histeq.domain.interfaces import (
    CommandQueue,
    ComputeProgram,
    DeviceBuffer,
    Kernel,
    KernelParams,
)
from histeq.domain.models import (
    STAGE_ORDER,
    EqualizationConfig,
    EqualizationResult,
    GreyImage,
    RunState,
    Stage,
)
from histeq.domain.types import NUM_BINS, TABLE_BYTES
from histeq.features.equalization.logic import find_invariant_violations
from histeq.kernel.system.logging import get_logger
from histeq.services.profiling.collector import ProfilingCollector

logger = get_logger(__name__)

_TRANSITIONS = {
    RunState.IDLE: RunState.BUFFERS_ALLOCATED,
    RunState.BUFFERS_ALLOCATED: RunState.STAGE1_DONE,
    RunState.STAGE1_DONE: RunState.STAGE2_DONE,
    RunState.STAGE2_DONE: RunState.STAGE3_DONE,
    RunState.STAGE3_DONE: RunState.STAGE4_DONE,
    RunState.STAGE4_DONE: RunState.COMPLETE,
}

_STAGE_DONE = {
    Stage.BIN_COUNTER: RunState.STAGE1_DONE,
    Stage.PREFIX_ACCUMULATOR: RunState.STAGE2_DONE,
    Stage.RANGE_MAPPER: RunState.STAGE3_DONE,
    Stage.PIXEL_REPROJECTOR: RunState.STAGE4_DONE,
}


@dataclass
class RunContext:
    """
    Everything one pipeline invocation owns: its state, device buffers,
    resolved kernels and profiling samples. Discarded when the run ends.
    """

    image: GreyImage
    params: KernelParams
    kernels: Dict[Stage, Kernel]
    collector: ProfilingCollector = field(default_factory=ProfilingCollector)
    state: RunState = RunState.IDLE
    buffers: Dict[str, DeviceBuffer] = field(default_factory=dict)
    resources: ExitStack = field(default_factory=ExitStack)

    def advance(self, new_state: RunState) -> None:
        if _TRANSITIONS.get(self.state) != new_state:
            raise RuntimeError(f"Illegal run transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Run state {self.state.value} -> {new_state.value}")
        self.state = new_state

    def fail(self) -> None:
        self.state = RunState.FAILED

    def allocate(self, queue: CommandQueue, role: str, size: int) -> DeviceBuffer:
        buf = queue.create_buffer(size, role)
        self.buffers[role] = buf
        self.resources.callback(self._release, role)
        return buf

    def _release(self, role: str) -> None:
        buf = self.buffers.pop(role, None)
        if buf is not None:
            buf.release()
            logger.debug(f"Released '{role}'")


class EqualizationPipeline:
    """
    Histogram equalization as four dependent kernels:
    histogram -> cumulative_scan -> lut_normalize -> reproject.

    Each stage starts only after the previous one has completed on the device.
    Buffers live for exactly one run and are released on every exit path.
    """

    def __init__(
        self,
        queue: CommandQueue,
        program: ComputeProgram,
        config: Optional[EqualizationConfig] = None,
    ) -> None:
        self.queue = queue
        self.program = program
        self.config = config or EqualizationConfig()
        self.last_state: Optional[RunState] = None

    def run(self, image: Any) -> EqualizationResult:
        if not isinstance(image, GreyImage):
            image = GreyImage.from_array(image)

        params = KernelParams(
            pixel_count=image.pixel_count,
            total_pixels=image.pixel_count,
            max_output=self.config.max_output,
        )
        ctx = RunContext(image=image, params=params, kernels={})
        logger.info(
            f"Equalizing {image.width}x{image.height} image on {self.queue.device_name}"
        )

        try:
            with ctx.resources:
                with self._operation(ctx, None, "resolve_kernel"):
                    ctx.kernels = {stage: self.program.kernel(stage) for stage in STAGE_ORDER}
                self._allocate(ctx)
                histogram = self._bin_counter(ctx)
                cumulative = self._prefix_accumulator(ctx)
                lut = self._range_mapper(ctx)
                output = self._pixel_reprojector(ctx)

                result = EqualizationResult(
                    output=output,
                    histogram=histogram,
                    cumulative=cumulative,
                    lut=lut,
                    profile=ctx.collector.samples,
                    backend=self.queue.device_name,
                )
                if self.config.verify_results:
                    self._verify(ctx, result)
                ctx.advance(RunState.COMPLETE)
        except EqualizationError as e:
            logger.error(f"Equalization failed after {ctx.state.value}: {e.kind}: {e}")
            ctx.fail()
            raise
        except Exception:
            ctx.fail()
            raise
        finally:
            self.last_state = ctx.state

        logger.info(f"Equalization complete ({image.pixel_count} pixels)")
        return result

    @contextmanager
    def _operation(
        self, ctx: RunContext, stage: Optional[Stage], operation: str
    ) -> Iterator[None]:
        """Tags failures with the active stage/operation and classifies them."""
        stage_name = stage.value if stage else None
        try:
            yield
        except EqualizationError as e:
            if e.stage is None:
                e.stage = stage_name
            if e.operation is None:
                e.operation = operation
            raise
        except Exception as e:
            raise DeviceError(
                f"{operation} failed: {e}", stage=stage_name, operation=operation
            ) from e

    def _allocate(self, ctx: RunContext) -> None:
        n = ctx.params.pixel_count
        with self._operation(ctx, None, "create_buffer"):
            ctx.allocate(self.queue, "input", n)
            ctx.allocate(self.queue, "histogram", TABLE_BYTES)
            ctx.allocate(self.queue, "cumulative", TABLE_BYTES)
            ctx.allocate(self.queue, "lut", TABLE_BYTES)
            ctx.allocate(self.queue, "output", n)
        ctx.advance(RunState.BUFFERS_ALLOCATED)

        with self._operation(ctx, Stage.BIN_COUNTER, "write_buffer"):
            written = self.queue.write_buffer(ctx.buffers["input"], ctx.image.pixels.ravel())
            if written != n:
                raise DeviceError(f"Uploaded {written} of {n} pixel bytes")
            ctx.collector.add_transfer(Stage.BIN_COUNTER, written=written)

    def _dispatch(
        self, ctx: RunContext, stage: Stage, args: Sequence[str], out_role: str, out_bytes: int
    ) -> np.ndarray:
        """
        Submits one stage, blocks on its completion and reads its output back.
        """
        with self._operation(ctx, stage, "dispatch"):
            event = self.queue.enqueue_kernel(
                ctx.kernels[stage], [ctx.buffers[role] for role in args], ctx.params
            )
        with self._operation(ctx, stage, "wait"):
            self.queue.wait(event)
        with self._operation(ctx, stage, "read_buffer"):
            data = self.queue.read_buffer(ctx.buffers[out_role], out_bytes)
            ctx.collector.add_transfer(stage, read=int(data.size))
        if self.config.profiling:
            ctx.collector.record(event)
        ctx.advance(_STAGE_DONE[stage])
        return data

    def _bin_counter(self, ctx: RunContext) -> np.ndarray:
        with self._operation(ctx, Stage.BIN_COUNTER, "fill_buffer"):
            self.queue.fill_buffer(ctx.buffers["histogram"], 0)
        raw = self._dispatch(ctx, Stage.BIN_COUNTER, ("input", "histogram"), "histogram", TABLE_BYTES)
        return raw.view(np.uint32).copy()

    def _prefix_accumulator(self, ctx: RunContext) -> np.ndarray:
        with self._operation(ctx, Stage.PREFIX_ACCUMULATOR, "fill_buffer"):
            self.queue.fill_buffer(ctx.buffers["cumulative"], 0)
        raw = self._dispatch(
            ctx, Stage.PREFIX_ACCUMULATOR, ("histogram", "cumulative"), "cumulative", TABLE_BYTES
        )
        return raw.view(np.uint32).copy()

    def _range_mapper(self, ctx: RunContext) -> np.ndarray:
        if ctx.params.total_pixels == 0:
            raise InvalidInputError(
                "Cannot normalize a cumulative histogram of an empty image",
                stage=Stage.RANGE_MAPPER.value,
                operation="normalize",
            )
        with self._operation(ctx, Stage.RANGE_MAPPER, "fill_buffer"):
            self.queue.fill_buffer(ctx.buffers["lut"], 0)
        raw = self._dispatch(ctx, Stage.RANGE_MAPPER, ("cumulative", "lut"), "lut", TABLE_BYTES)
        lut = raw.view(np.uint32)
        if lut.shape != (NUM_BINS,) or int(lut.max()) > self.config.max_output:
            raise DeviceError(
                f"LUT entries exceed {self.config.max_output}",
                stage=Stage.RANGE_MAPPER.value,
                operation="read_buffer",
            )
        return lut.astype(np.uint8)

    def _pixel_reprojector(self, ctx: RunContext) -> GreyImage:
        n = ctx.params.pixel_count
        raw = self._dispatch(
            ctx, Stage.PIXEL_REPROJECTOR, ("input", "lut", "output"), "output", n
        )
        pixels = raw.reshape(ctx.image.pixels.shape)
        pixels.setflags(write=False)
        return GreyImage(pixels=pixels)

    def _verify(self, ctx: RunContext, result: EqualizationResult) -> None:
        problems = find_invariant_violations(
            ctx.image.pixels, result, self.config.max_output
        )
        if problems:
            raise DeviceError(
                f"Result invariants violated: {'; '.join(problems)}",
                operation="verify",
            )
