"""
Result Aggregator.

Averages are reported in MB/s where MB is 2^20 bytes, and in Mbps as MB/s x 8,
so average and peak figures are directly comparable.

Two averages are computed:

  compat      (uploaded files x block size) / (sum of every upload's elapsed
              time / worker count). Treats total worker time spread evenly
              over workers as the run duration. Kept so results stay
              comparable with earlier runs of this benchmark.
  wall-clock  uploaded bytes / (last worker finish - barrier release)

Failed uploads contribute neither bytes nor elapsed time.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np

from .config import MIB, THROUGHPUT_COMPAT, BenchmarkConfig
from .models import RunState, WorkerStatus
from .sampler import ThroughputSample

logger = logging.getLogger(__name__)


def compat_average_mb_per_second(
  number_of_files: int,
  block_size_bytes: int,
  elapsed_ms_total: float,
  max_workers: int
) -> float:
  if elapsed_ms_total <= 0 or max_workers <= 0:
    return 0.0
  duration_seconds = elapsed_ms_total / max_workers / 1000
  return (number_of_files * block_size_bytes / MIB) / duration_seconds


def wall_clock_average_mb_per_second(total_bytes: int, started_at: float, finished_at: float) -> float:
  duration = finished_at - started_at
  if duration <= 0:
    return 0.0
  return (total_bytes / MIB) / duration


def peak_mb_per_second(samples: Iterable[ThroughputSample]) -> float:
  rates = [s.bytes_per_second for s in samples]
  return max(rates) / MIB if rates else 0.0


def to_mbps(mb_per_second: float) -> float:
  return mb_per_second * 8


def latency_stats(elapsed_ms) -> Dict[str, float]:
  if not len(elapsed_ms):
    return {}
  values = np.array(elapsed_ms, dtype=float)
  p50, p95, p99 = np.percentile(values, [50, 95, 99])
  return {
    "min": float(f"{np.min(values):.2f}"),
    "mean": float(f"{np.mean(values):.2f}"),
    "p50": float(f"{p50:.2f}"),
    "p95": float(f"{p95:.2f}"),
    "p99": float(f"{p99:.2f}"),
    "max": float(f"{np.max(values):.2f}"),
  }


@dataclass
class BenchmarkResult:
  throughput_mode: str
  average_mb_per_second: float
  average_mbps: float
  peak_mb_per_second: float
  peak_mbps: float
  compat_average_mb_per_second: float
  wall_clock_average_mb_per_second: float
  uploads_completed: int
  uploads_failed: int
  bytes_uploaded: int
  duration_seconds: float
  latency_ms: Dict[str, float] = field(default_factory=dict)
  per_worker: Dict[int, Dict[str, int]] = field(default_factory=dict)
  failed_workers: List[int] = field(default_factory=list)
  sample_count: int = 0

  def to_dict(self) -> dict:
    return asdict(self)


def aggregate(
  config: BenchmarkConfig,
  statuses: Dict[int, WorkerStatus],
  samples: Iterable[ThroughputSample],
  started_at: float,
  finished_at: Optional[float] = None
) -> BenchmarkResult:
  """Combine every worker's elapsed times with the sampler readings"""
  samples = tuple(samples)
  all_elapsed = [ms for status in statuses.values() for ms in status.elapsed_ms]
  completed = len(all_elapsed)
  failed = sum(status.failed_uploads for status in statuses.values())
  bytes_uploaded = completed * config.block_size_bytes

  if finished_at is None:
    finish_times = [s.finished_at for s in statuses.values() if s.finished_at]
    finished_at = max(finish_times) if finish_times else started_at

  compat = compat_average_mb_per_second(completed, config.block_size_bytes, sum(all_elapsed), config.max_workers)
  wall_clock = wall_clock_average_mb_per_second(bytes_uploaded, started_at, finished_at)
  average = compat if config.throughput_mode == THROUGHPUT_COMPAT else wall_clock
  peak = peak_mb_per_second(samples)

  if failed:
    logger.warning(f"{failed} upload(s) failed; averages cover the {completed} successful uploads only")

  return BenchmarkResult(
    throughput_mode=config.throughput_mode,
    average_mb_per_second=average,
    average_mbps=to_mbps(average),
    peak_mb_per_second=peak,
    peak_mbps=to_mbps(peak),
    compat_average_mb_per_second=compat,
    wall_clock_average_mb_per_second=wall_clock,
    uploads_completed=completed,
    uploads_failed=failed,
    bytes_uploaded=bytes_uploaded,
    duration_seconds=max(0.0, finished_at - started_at),
    latency_ms=latency_stats(all_elapsed),
    per_worker={
      worker_id: {"completed": status.completed_uploads, "failed": status.failed_uploads}
      for worker_id, status in sorted(statuses.items())
    },
    failed_workers=sorted(w for w, s in statuses.items() if s.state == RunState.FAILED),
    sample_count=len(samples),
  )
