"""
Filesystem readiness barrier.

Workers are separate processes with no shared memory, so they coordinate
through a control directory:

  worker-<id>.json   status marker, written by the worker only
  start.signal       start artifact, written once by the orchestrator

Phase 1 (gather): the orchestrator reads every marker until all workers are
ready, stopping at the first failure. Phase 2 (release): it writes the start
artifact, which each worker notices within one poll interval.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import WorkerPreparationError
from .models import RunState, WorkerStatus

logger = logging.getLogger(__name__)

START_SIGNAL = "start.signal"


def _write_atomically(path: str, data: dict) -> None:
  tmp_path = f"{path}.{os.getpid()}.tmp"
  with open(tmp_path, "w") as f:
    json.dump(data, f)
  os.replace(tmp_path, path)


def start_signal_path(control_dir: str) -> str:
  return os.path.join(control_dir, START_SIGNAL)


class StatusBoard:
  """Per-worker status markers inside the control directory"""

  def __init__(self, control_dir: str):
    self.control_dir = control_dir

  def marker_path(self, worker_id: int) -> str:
    return os.path.join(self.control_dir, f"worker-{worker_id}.json")

  def publish(self, status: WorkerStatus) -> None:
    _write_atomically(self.marker_path(status.worker_id), status.to_dict())

  def read(self, worker_id: int) -> Optional[WorkerStatus]:
    try:
      with open(self.marker_path(worker_id)) as f:
        return WorkerStatus.from_dict(json.load(f))
    except FileNotFoundError:
      return None

  def read_all(self, worker_ids: Iterable[int]) -> Dict[int, Optional[WorkerStatus]]:
    return {worker_id: self.read(worker_id) for worker_id in worker_ids}


@dataclass
class BarrierState:
  pending: List[int] = field(default_factory=list)
  ready: List[int] = field(default_factory=list)
  failed: List[WorkerStatus] = field(default_factory=list)

  @property
  def all_ready(self) -> bool:
    return not self.pending and not self.failed


class ReadinessBarrier:
  """Orchestrator side of the two-phase gather/release protocol"""

  def __init__(self, control_dir: str, worker_ids: Iterable[int]):
    self.control_dir = control_dir
    self.worker_ids = list(worker_ids)
    self.board = StatusBoard(control_dir)
    self.released = False

  @property
  def signal_path(self) -> str:
    return start_signal_path(self.control_dir)

  def gather(self, statuses: Optional[Dict[int, Optional[WorkerStatus]]] = None) -> BarrierState:
    if statuses is None:
      statuses = self.board.read_all(self.worker_ids)
    state = BarrierState()
    for worker_id in self.worker_ids:
      status = statuses.get(worker_id)
      if status is None or status.state == RunState.PREPARING:
        state.pending.append(worker_id)
      elif status.state == RunState.FAILED:
        state.failed.append(status)
      else:
        # AWAITING_BARRIER, or already past it on a later poll
        state.ready.append(worker_id)
    return state

  def check(self, statuses: Optional[Dict[int, Optional[WorkerStatus]]] = None) -> bool:
    """
    Returns True when every worker is ready.

    Raises:
        WorkerPreparationError: for the first worker that reported failure
    """
    state = self.gather(statuses)
    if state.failed:
      first = state.failed[0]
      raise WorkerPreparationError(first.worker_id, first.message or "unknown error")
    return state.all_ready

  def release(self) -> float:
    """Create the start artifact; returns the release timestamp"""
    if self.released:
      return self.released_at()
    released_at = time.time()
    _write_atomically(self.signal_path, {"released_at": released_at})
    self.released = True
    logger.info(f"Start signal released for {len(self.worker_ids)} workers")
    return released_at

  def released_at(self) -> Optional[float]:
    return read_release_time(self.control_dir)

  def remove_start_signal(self) -> None:
    if os.path.exists(self.signal_path):
      os.remove(self.signal_path)


def read_release_time(control_dir: str) -> Optional[float]:
  try:
    with open(start_signal_path(control_dir)) as f:
      return float(json.load(f)["released_at"])
  except FileNotFoundError:
    return None


def wait_for_release(control_dir: str, poll_interval: float = 0.5, timeout: Optional[float] = None) -> float:
  """
  Worker side: poll for the start artifact.

  Returns:
      The release timestamp written by the orchestrator

  Raises:
      TimeoutError: if timeout seconds pass without a release
  """
  deadline = None if timeout is None else time.monotonic() + timeout
  while True:
    released_at = read_release_time(control_dir)
    if released_at is not None:
      return released_at
    if deadline is not None and time.monotonic() >= deadline:
      raise TimeoutError(f"No start signal in {control_dir} after {timeout} seconds")
    time.sleep(poll_interval)
