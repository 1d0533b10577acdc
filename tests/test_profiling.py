import pytest

from histeq.domain.interfaces import KernelEvent
from histeq.domain.models import Stage
from histeq.services.profiling.collector import (
    ProfilingCollector,
    ProfilingResolution,
    format_full_profiling,
)


def _event(stage=Stage.BIN_COUNTER, device_exec_ns=None):
    return KernelEvent(
        stage=stage,
        queued_ns=1_000,
        submit_ns=3_000,
        start_ns=6_000,
        end_ns=16_000,
        device_exec_ns=device_exec_ns,
    )


def test_record_attaches_transfers():
    collector = ProfilingCollector()
    collector.add_transfer(Stage.BIN_COUNTER, written=100)
    collector.add_transfer(Stage.BIN_COUNTER, read=1024)
    sample = collector.record(_event())
    assert sample.bytes_written == 100
    assert sample.bytes_read == 1024
    assert sample.bytes_transferred == 1124
    assert collector.get(Stage.BIN_COUNTER) is sample
    assert collector.get(Stage.RANGE_MAPPER) is None


def test_exec_time_prefers_device_measurement():
    collector = ProfilingCollector()
    host = collector.record(_event(Stage.BIN_COUNTER))
    device = collector.record(_event(Stage.RANGE_MAPPER, device_exec_ns=42))
    assert host.exec_ns == 10_000
    assert device.exec_ns == 42
    assert host.total_ns == 15_000


def test_stage_recorded_once():
    collector = ProfilingCollector()
    collector.record(_event())
    with pytest.raises(ValueError):
        collector.record(_event())


def test_incomplete_event_rejected():
    event = KernelEvent(stage=Stage.BIN_COUNTER, queued_ns=0, submit_ns=0)
    assert not event.complete
    with pytest.raises(ValueError):
        ProfilingCollector().record(event)


def test_full_profiling_line():
    collector = ProfilingCollector()
    collector.add_transfer(Stage.BIN_COUNTER, written=4, read=1024)
    line = format_full_profiling(collector.record(_event()), ProfilingResolution.US)
    assert line == (
        "Queued 2, Submitted 3, Executed 10, Total 15 [us], "
        "Transferred 1028 bytes (in 4, out 1024)"
    )
    assert "[ns]" in format_full_profiling(collector.samples[0], ProfilingResolution.NS)
