"""
Worker Unit.

Runs in its own process: prepares its share of payloads, reports ready, waits
for the start artifact, then uploads sequentially, timing every put call.

  PREPARING -> AWAITING_BARRIER -> RUNNING -> COMPLETED
  (any non-terminal state) -> FAILED
"""

import logging
import multiprocessing
import os
import time
import traceback
from typing import Callable

import psutil

from .barrier import StatusBoard, wait_for_release
from .config import BenchmarkConfig, StorageTarget
from .content import ContentGenerator, ObjectKeyFactory
from .errors import UploadError
from .log import configure_logging
from .models import PayloadSource, RunState, WorkerAssignment, WorkerStatus
from .storage import uploader_from_target

logger = logging.getLogger(__name__)

NICE_STEP = 5


def elevate_priority() -> bool:
  """Raise this process's scheduling priority; best effort"""
  try:
    process = psutil.Process()
    if psutil.WINDOWS:
      process.nice(psutil.HIGH_PRIORITY_CLASS)
    else:
      process.nice(max(process.nice() - NICE_STEP, -20))
    return True
  except (psutil.Error, OSError) as e:
    logger.debug(f"Could not raise process priority: {e}")
    return False


class WorkerUnit:
  """One worker's state machine; `run` is called inside the worker process"""

  def __init__(
    self,
    config: BenchmarkConfig,
    assignment: WorkerAssignment,
    target: StorageTarget,
    uploader_factory: Callable = uploader_from_target
  ):
    self.config = config
    self.assignment = assignment
    self.target = target
    self.uploader_factory = uploader_factory
    self.board = StatusBoard(config.control_directory)
    self.generator = ContentGenerator(config, assignment.worker_id, assignment.source)
    self.keys = ObjectKeyFactory(config.key_prefix, config.run_id)
    self.status = WorkerStatus(
      worker_id=assignment.worker_id,
      state=RunState.PREPARING,
      pid=os.getpid(),
    )
    self._last_progress = 0.0

  def _transition(self, state: RunState, message: str = "") -> None:
    self.status.state = state
    if message:
      self.status.message = message
    self.board.publish(self.status)

  def _publish_progress(self, force: bool = False) -> None:
    # Marker writes fall inside the measured window; keep them small and rare
    now = time.monotonic()
    if not force and now - self._last_progress < self.config.pool_poll_interval:
      return
    self._last_progress = now
    self.board.publish(self.status.progress())

  def _fail(self, error: Exception) -> WorkerStatus:
    logger.error(f"Worker {self.assignment.worker_id} failed in state {self.status.state.value}: {error}")
    logger.debug(traceback.format_exc())
    self.status.finished_at = time.time()
    self._transition(RunState.FAILED, f"{type(error).__name__}: {error}")
    return self.status

  def run(self) -> WorkerStatus:
    worker_id = self.assignment.worker_id
    self._transition(RunState.PREPARING)

    try:
      elevate_priority()
      payloads = self.generator.prepare(self.assignment.files_assigned)
      uploader = self.uploader_factory(self.target, self.config.upload_retries)
    except Exception as e:
      return self._fail(e)

    try:
      self._transition(RunState.AWAITING_BARRIER)
      wait_for_release(self.config.control_directory, self.config.barrier_poll_interval)

      self.status.running_at = time.time()
      self.status.state = RunState.RUNNING
      self._publish_progress(force=True)
      logger.debug(f"Worker {worker_id} starting {len(payloads)} uploads")

      for payload in payloads:
        key = self.keys.next_key()
        start = time.perf_counter()
        try:
          uploader.put(key, payload)
        except UploadError as e:
          self.status.failed_uploads += 1
          logger.warning(f"Worker {worker_id}: {e}")
        else:
          self.status.elapsed_ms.append((time.perf_counter() - start) * 1000.0)
        self._publish_progress()

      del payloads
      if self.generator.source == PayloadSource.DISK:
        self.generator.remove_scratch()
      uploader.close()
    except Exception as e:
      return self._fail(e)

    self.status.finished_at = time.time()
    self._transition(RunState.COMPLETED)
    logger.debug(f"Worker {worker_id} completed {self.status.completed_uploads} uploads, "
                 f"{self.status.failed_uploads} failed")
    return self.status


def run_worker(
  config: BenchmarkConfig,
  assignment: WorkerAssignment,
  target: StorageTarget,
  uploader_factory: Callable = uploader_from_target,
  log_level: int = logging.INFO
) -> WorkerStatus:
  """Process entry point for one Worker Unit"""
  multiprocessing.current_process().name = f"Worker-{assignment.worker_id}"
  configure_logging(log_level)
  return WorkerUnit(config, assignment, target, uploader_factory).run()
