from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from histeq.domain.interfaces import KernelEvent
from histeq.domain.models import Stage


class ProfilingResolution(Enum):
    NS = ("ns", 1)
    US = ("us", 1_000)
    MS = ("ms", 1_000_000)
    S = ("s", 1_000_000_000)

    @property
    def suffix(self) -> str:
        return self.value[0]

    @property
    def divisor(self) -> int:
        return self.value[1]


@dataclass(frozen=True)
class ProfilingSample:
    """
    Timing and transfer telemetry of one stage. Timestamps are host
    monotonic nanoseconds.
    """

    stage: Stage
    queued_ns: int
    submit_ns: int
    start_ns: int
    end_ns: int
    bytes_written: int = 0
    bytes_read: int = 0
    device_exec_ns: Optional[int] = None

    @property
    def exec_ns(self) -> int:
        """Kernel execution time, measured on the device when available."""
        if self.device_exec_ns is not None:
            return self.device_exec_ns
        return self.end_ns - self.start_ns

    @property
    def total_ns(self) -> int:
        return self.end_ns - self.queued_ns

    @property
    def bytes_transferred(self) -> int:
        return self.bytes_written + self.bytes_read


def format_full_profiling(
    sample: ProfilingSample, resolution: ProfilingResolution = ProfilingResolution.US
) -> str:
    """
    One line breakdown: time spent queued, until execution started, executing,
    and in total, followed by the transfer volume.
    """
    d = resolution.divisor
    queued = (sample.submit_ns - sample.queued_ns) // d
    submitted = (sample.start_ns - sample.submit_ns) // d
    executed = sample.exec_ns // d
    total = sample.total_ns // d
    return (
        f"Queued {queued}, Submitted {submitted}, Executed {executed}, "
        f"Total {total} [{resolution.suffix}], "
        f"Transferred {sample.bytes_transferred} bytes "
        f"(in {sample.bytes_written}, out {sample.bytes_read})"
    )


class ProfilingCollector:
    """
    Per-run store of profiling samples, one per stage.
    """

    def __init__(self) -> None:
        self._samples: List[ProfilingSample] = []
        self._transfers: Dict[Stage, List[int]] = {}

    def add_transfer(self, stage: Stage, written: int = 0, read: int = 0) -> None:
        totals = self._transfers.setdefault(stage, [0, 0])
        totals[0] += written
        totals[1] += read

    def record(self, event: KernelEvent) -> ProfilingSample:
        if event.start_ns is None or event.end_ns is None:
            raise ValueError(f"Event of '{event.stage.value}' has not completed")
        if any(s.stage == event.stage for s in self._samples):
            raise ValueError(f"Stage '{event.stage.value}' was already recorded")
        written, read = self._transfers.get(event.stage, (0, 0))
        sample = ProfilingSample(
            stage=event.stage,
            queued_ns=event.queued_ns,
            submit_ns=event.submit_ns,
            start_ns=event.start_ns,
            end_ns=event.end_ns,
            bytes_written=written,
            bytes_read=read,
            device_exec_ns=event.device_exec_ns,
        )
        self._samples.append(sample)
        return sample

    def get(self, stage: Stage) -> Optional[ProfilingSample]:
        return next((s for s in self._samples if s.stage == stage), None)

    @property
    def samples(self) -> Tuple[ProfilingSample, ...]:
        return tuple(self._samples)
