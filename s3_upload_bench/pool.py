"""
Worker Pool Manager.

Launches one worker process per share of files and polls their status
markers on a fixed interval instead of blocking, so the readiness barrier and
the throughput sampler can progress alongside it.
"""

import logging
import multiprocessing
import time
from typing import Callable, Dict, List, Optional

from .barrier import ReadinessBarrier, StatusBoard
from .config import BenchmarkConfig, StorageTarget
from .models import PayloadSource, RunState, WorkerAssignment, WorkerStatus, overall_state
from .storage import uploader_from_target
from .worker import run_worker

logger = logging.getLogger(__name__)

JOIN_TIMEOUT = 5


class WorkerPoolManager:
  def __init__(
    self,
    config: BenchmarkConfig,
    target: StorageTarget,
    uploader_factory: Callable = uploader_from_target
  ):
    self.config = config
    self.target = target
    self.uploader_factory = uploader_factory
    self.board = StatusBoard(config.control_directory)
    self.handles: Dict[int, multiprocessing.Process] = {}
    self._context = multiprocessing.get_context(config.start_method)

  def assignments(self) -> List[WorkerAssignment]:
    source = PayloadSource.DISK if self.config.upload_from_filesystem else PayloadSource.MEMORY
    return [
      WorkerAssignment(worker_id=i, files_assigned=count, source=source)
      for i, count in enumerate(self.config.files_per_worker)
    ]

  @property
  def worker_ids(self) -> List[int]:
    return list(range(self.config.max_workers))

  def launch(self) -> Dict[int, multiprocessing.Process]:
    log_level = logging.getLogger().getEffectiveLevel()
    for assignment in self.assignments():
      p = self._context.Process(
        target=run_worker,
        args=(self.config, assignment, self.target, self.uploader_factory, log_level),
        name=f"Worker-{assignment.worker_id}",
      )
      p.daemon = True
      p.start()
      self.handles[assignment.worker_id] = p
      logger.debug(f"Started worker {assignment.worker_id} (pid {p.pid}) with {assignment.files_assigned} files")

    logger.info(f"Launched {len(self.handles)} workers, "
                f"{self.config.number_of_files} files of {self.config.block_size_kb} KB in total")
    return self.handles

  def poll(self) -> Dict[int, WorkerStatus]:
    """Current status of every worker; a dead process that never finished is FAILED"""
    statuses = {}
    for worker_id in self.worker_ids:
      status = self.board.read(worker_id)
      handle = self.handles.get(worker_id)
      if status is None:
        status = WorkerStatus(worker_id=worker_id, state=RunState.PREPARING,
                              pid=handle.pid if handle else None)
      if not status.state.is_terminal and handle is not None and not handle.is_alive():
        # Re-read once: the process may have published its last marker and exited in between
        status = self.board.read(worker_id) or status
        if not status.state.is_terminal:
          status.state = RunState.FAILED
          status.message = status.message or f"worker process exited with code {handle.exitcode}"
      statuses[worker_id] = status
    return statuses

  def overall_state(self, statuses: Optional[Dict[int, WorkerStatus]] = None) -> RunState:
    if statuses is None:
      statuses = self.poll()
    return overall_state(s.state for s in statuses.values())

  def wait_for_ready(self, barrier: ReadinessBarrier) -> Dict[int, WorkerStatus]:
    """
    Poll until every worker reports ready.

    Raises:
        WorkerPreparationError: as soon as any worker fails preparation
    """
    while True:
      statuses = self.poll()
      if barrier.check(statuses):
        return statuses
      state = barrier.gather(statuses)
      logger.info(f"Waiting for workers: {len(state.ready)}/{len(self.worker_ids)} ready")
      time.sleep(self.config.pool_poll_interval)

  def wait_for_completion(self, on_tick: Optional[Callable[[Dict[int, WorkerStatus]], None]] = None
                          ) -> Dict[int, WorkerStatus]:
    """Poll until no worker remains non-terminal"""
    while True:
      statuses = self.poll()
      if on_tick:
        on_tick(statuses)
      if all(s.state.is_terminal for s in statuses.values()):
        break
      time.sleep(self.config.pool_poll_interval)

    for p in self.handles.values():
      p.join(timeout=JOIN_TIMEOUT)
    return statuses

  def terminate_all(self) -> None:
    for worker_id, p in list(self.handles.items()):
      if p.is_alive():
        logger.warning(f"Terminating worker {worker_id} (pid {p.pid})")
        p.terminate()
      p.join(timeout=JOIN_TIMEOUT)
      if p.is_alive():
        logger.warning(f"Worker {worker_id} still running after terminate, killing")
        p.kill()
        p.join(timeout=JOIN_TIMEOUT)
    self.handles.clear()
