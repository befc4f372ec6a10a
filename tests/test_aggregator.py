import pytest

from s3_upload_bench.aggregator import (
  aggregate, compat_average_mb_per_second, peak_mb_per_second, wall_clock_average_mb_per_second,
)
from s3_upload_bench.config import MIB, resolve_config
from s3_upload_bench.models import RunState, WorkerStatus
from s3_upload_bench.sampler import ThroughputSample


def completed(worker_id, elapsed_ms, failed=0, finished_at=None):
  return WorkerStatus(worker_id=worker_id, state=RunState.COMPLETED, elapsed_ms=list(elapsed_ms),
                      failed_uploads=failed, finished_at=finished_at)


def test_compat_formula_matches_documented_example():
  # 400 files of 2 MiB, 100,000 ms of upload time summed over 4 workers
  assert compat_average_mb_per_second(400, 2 * MIB, 100_000, 4) == pytest.approx(32.0)


def test_compat_formula_degenerate_inputs():
  assert compat_average_mb_per_second(400, 2 * MIB, 0, 4) == 0.0
  assert compat_average_mb_per_second(400, 2 * MIB, 1000, 0) == 0.0


def test_wall_clock_average():
  assert wall_clock_average_mb_per_second(100 * MIB, 10.0, 20.0) == pytest.approx(10.0)
  assert wall_clock_average_mb_per_second(100 * MIB, 10.0, 10.0) == 0.0


def test_peak_is_max_sample():
  samples = [ThroughputSample(0, 2.0, 4 * MIB), ThroughputSample(2, 2.0, 10 * MIB), ThroughputSample(4, 2.0, 0)]
  assert peak_mb_per_second(samples) == pytest.approx(5.0)
  assert peak_mb_per_second([]) == 0.0


def test_aggregate_compat_mode(tmp_path):
  config = resolve_config(block_size_kb=2048, number_of_files=400, max_workers=4,
                          working_directory=str(tmp_path), throughput_mode="compat")
  statuses = {i: completed(i, [250.0] * 100) for i in range(4)}

  result = aggregate(config, statuses, [], started_at=0.0, finished_at=25.0)
  assert result.average_mb_per_second == pytest.approx(32.0)
  assert result.average_mbps == pytest.approx(256.0)
  assert result.wall_clock_average_mb_per_second == pytest.approx(32.0)
  assert result.uploads_completed == 400
  assert result.uploads_failed == 0
  assert result.latency_ms["p50"] == pytest.approx(250.0)
  assert result.per_worker[0] == {"completed": 100, "failed": 0}


def test_aggregate_wall_clock_mode_uses_last_finish(tmp_path):
  config = resolve_config(block_size_kb=1024, number_of_files=4, max_workers=2, working_directory=str(tmp_path))
  statuses = {
    0: completed(0, [100.0, 100.0], finished_at=102.0),
    1: completed(1, [100.0, 300.0], finished_at=104.0),
  }
  result = aggregate(config, statuses, [], started_at=100.0)

  assert result.throughput_mode == "wall-clock"
  assert result.duration_seconds == pytest.approx(4.0)
  assert result.average_mb_per_second == pytest.approx(1.0)


def test_failed_uploads_are_excluded(tmp_path):
  config = resolve_config(block_size_kb=2048, number_of_files=8, max_workers=2,
                          working_directory=str(tmp_path), throughput_mode="compat")
  statuses = {
    0: completed(0, [1000.0] * 4),
    1: completed(1, [1000.0] * 2, failed=2),
  }
  result = aggregate(config, statuses, [], started_at=0.0, finished_at=4.0)

  assert result.uploads_completed == 6
  assert result.uploads_failed == 2
  assert result.bytes_uploaded == 6 * 2 * MIB
  # (6 x 2 MiB) / (6000 ms / 2 workers / 1000)
  assert result.compat_average_mb_per_second == pytest.approx(4.0)


def test_failed_workers_are_reported(tmp_path):
  config = resolve_config(block_size_kb=4, number_of_files=4, max_workers=2, working_directory=str(tmp_path))
  statuses = {
    0: completed(0, [10.0, 10.0], finished_at=1.0),
    1: WorkerStatus(worker_id=1, state=RunState.FAILED, message="crashed"),
  }
  result = aggregate(config, statuses, [], started_at=0.0)
  assert result.failed_workers == [1]


def test_peak_not_below_average_when_samples_cover_the_run(tmp_path):
  config = resolve_config(block_size_kb=1024, number_of_files=40, max_workers=4, working_directory=str(tmp_path))
  statuses = {i: completed(i, [500.0] * 10, finished_at=20.0) for i in range(4)}
  # 40 MiB over 20 s, sent unevenly across ten 2 s intervals
  deltas = [2, 6, 4, 3, 5, 4, 6, 2, 4, 4]
  samples = [ThroughputSample(float(i * 2), 2.0, d * MIB) for i, d in enumerate(deltas)]
  assert sum(deltas) == 40

  result = aggregate(config, statuses, samples, started_at=0.0)
  assert result.average_mb_per_second == pytest.approx(2.0)
  assert result.peak_mb_per_second == pytest.approx(3.0)
  assert result.peak_mb_per_second >= result.average_mb_per_second
  assert result.sample_count == 10
