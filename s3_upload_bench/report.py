"""Operator-facing output: console summary and optional result files."""

import json
import logging
import os
from datetime import datetime
from typing import Dict, Iterable

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
from termcolor import colored

from .aggregator import BenchmarkResult
from .config import BenchmarkConfig
from .models import WorkerStatus
from .sampler import ThroughputSample

logger = logging.getLogger(__name__)


def build_summary(config: BenchmarkConfig, result: BenchmarkResult) -> dict:
  return {
    "mode": "upload",
    "run_id": config.run_id,
    "block_size_kb": config.block_size_kb,
    "number_of_files": config.number_of_files,
    "max_workers": config.max_workers,
    "upload_from_filesystem": config.upload_from_filesystem,
    "timestamp": datetime.now().isoformat(),
    "result": result.to_dict(),
  }


def print_summary(config: BenchmarkConfig, result: BenchmarkResult) -> None:
  print("\nJSON Summary:")
  print(json.dumps(build_summary(config, result), indent=2))

  colour = "yellow" if result.uploads_failed or result.failed_workers else "green"
  print(colored(
    f"\nUploaded {result.uploads_completed} x {config.block_size_kb} KB with {config.max_workers} workers "
    f"in {result.duration_seconds:.2f} seconds",
    colour
  ))
  print(colored(
    f"Average throughput ({result.throughput_mode}): "
    f"{result.average_mb_per_second:.2f} MB/s ({result.average_mbps:.2f} Mbps)",
    "green"
  ))
  print(colored(
    f"Peak throughput: {result.peak_mb_per_second:.2f} MB/s ({result.peak_mbps:.2f} Mbps)",
    "green"
  ))
  if result.uploads_failed:
    print(colored(f"Failed uploads: {result.uploads_failed}", "red"))


def export_results(
  config: BenchmarkConfig,
  result: BenchmarkResult,
  statuses: Dict[int, WorkerStatus],
  samples: Iterable[ThroughputSample],
  output_dir: str
) -> Dict[str, str]:
  """
  Write uploads.csv, throughput.csv, summary.json and throughput.png.

  Returns:
      Mapping of artifact name to path
  """
  os.makedirs(output_dir, exist_ok=True)
  paths = {
    "uploads": os.path.join(output_dir, "uploads.csv"),
    "throughput": os.path.join(output_dir, "throughput.csv"),
    "summary": os.path.join(output_dir, "summary.json"),
    "chart": os.path.join(output_dir, "throughput.png"),
  }

  uploads = pd.DataFrame(
    [
      {"worker_id": worker_id, "sequence": i, "elapsed_ms": ms}
      for worker_id, status in sorted(statuses.items())
      for i, ms in enumerate(status.elapsed_ms)
    ],
    columns=["worker_id", "sequence", "elapsed_ms"],
  )
  uploads.to_csv(paths["uploads"], index=False)

  throughput = pd.DataFrame(
    [
      {
        "timestamp": pd.to_datetime(s.timestamp, unit="s"),
        "interval_seconds": s.interval_seconds,
        "bytes_sent_delta": s.bytes_sent_delta,
        "mbps": s.bits_per_second / (1024 * 1024),
      }
      for s in samples
    ],
    columns=["timestamp", "interval_seconds", "bytes_sent_delta", "mbps"],
  )
  throughput.to_csv(paths["throughput"], index=False)

  with open(paths["summary"], "w") as f:
    json.dump(build_summary(config, result), f, indent=2)

  fig, ax = plt.subplots(figsize=(12, 6))
  if not throughput.empty:
    ax.plot(throughput["timestamp"], throughput["mbps"], linewidth=2, label="Sampled")
  ax.axhline(result.average_mbps, color="orange", linestyle="--", label=f"Average ({result.throughput_mode})")
  ax.set_title(f"Upload throughput - {config.max_workers} workers, {config.block_size_kb} KB blocks")
  ax.set_ylabel("Mbps")
  ax.set_xlabel("Time")
  ax.grid(True)
  ax.legend()
  fig.autofmt_xdate()
  fig.tight_layout()
  fig.savefig(paths["chart"], dpi=150)
  plt.close(fig)

  logger.info(f"Results saved to {output_dir}")
  return paths
