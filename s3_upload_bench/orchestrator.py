"""
Benchmark run orchestration.

  launch workers -> gather readiness -> release start signal
  -> uploads run while the sampler reads the NIC counter
  -> aggregate -> cleanup (always)
"""

import logging
import os
import shutil
import time
from typing import Callable, Dict, Optional, Tuple

from tqdm import tqdm

from .aggregator import BenchmarkResult, aggregate
from .barrier import ReadinessBarrier
from .cleanup import CleanupManager
from .config import BenchmarkConfig, StorageTarget
from .models import WorkerStatus
from .pool import WorkerPoolManager
from .sampler import ThroughputSample, ThroughputSampler
from .storage import uploader_from_target

logger = logging.getLogger(__name__)


class BenchmarkRunner:
  def __init__(
    self,
    config: BenchmarkConfig,
    target: StorageTarget,
    uploader_factory: Callable = uploader_from_target,
    sampler: Optional[ThroughputSampler] = None,
    session_path: Optional[str] = None,
    revoke_session: bool = False,
    show_progress: bool = True
  ):
    self.config = config
    self.target = target
    self.uploader_factory = uploader_factory
    self.sampler = sampler or ThroughputSampler(interval=config.sample_interval, interface=config.interface)
    self.session_path = session_path
    self.revoke_session = revoke_session
    self.show_progress = show_progress

    self.released_at: Optional[float] = None
    self.statuses: Dict[int, WorkerStatus] = {}
    self.samples: Tuple[ThroughputSample, ...] = ()

  def _prepare_directories(self) -> bool:
    """Returns True if the working directory did not exist before this run"""
    created = not os.path.isdir(self.config.working_directory)
    os.makedirs(self.config.working_directory, exist_ok=True)
    # Markers left by an earlier, interrupted run would satisfy the barrier
    if os.path.isdir(self.config.control_directory):
      shutil.rmtree(self.config.control_directory)
    os.makedirs(self.config.control_directory)
    return created

  def run(self) -> BenchmarkResult:
    """
    Execute one benchmark run.

    Raises:
        WorkerPreparationError: if any worker fails before the start signal
    """
    config = self.config
    pool = WorkerPoolManager(config, self.target, self.uploader_factory)
    cleanup = CleanupManager(config, session_path=self.session_path, revoke_session=self.revoke_session)
    cleanup.register_pool(pool)

    logger.info(f"Run {config.run_id}: {config.max_workers} workers, {config.number_of_files} files of "
                f"{config.block_size_kb} KB, payloads from {'disk' if config.upload_from_filesystem else 'memory'}")
    try:
      cleanup.owns_working_directory = self._prepare_directories()
      barrier = ReadinessBarrier(config.control_directory, pool.worker_ids)
      pool.launch()
      pool.wait_for_ready(barrier)

      self.released_at = barrier.release()
      self.sampler.start()
      progress = tqdm(total=config.number_of_files, desc="Uploading", unit="file", disable=not self.show_progress)
      try:
        def on_tick(statuses):
          done = sum(s.completed_uploads + s.failed_uploads for s in statuses.values())
          progress.update(done - progress.n)

        self.statuses = pool.wait_for_completion(on_tick=on_tick)
      finally:
        self.samples = self.sampler.stop()
        progress.close()

      finished_at = time.time()
      finish_times = [s.finished_at for s in self.statuses.values() if s.finished_at]
      if finish_times:
        finished_at = max(finish_times)

      result = aggregate(config, self.statuses, self.samples, self.released_at, finished_at)
      if result.failed_workers:
        logger.warning(f"Workers {result.failed_workers} failed during the run; "
                       f"results are not comparable with a full run")
      return result
    finally:
      cleanup.run()
