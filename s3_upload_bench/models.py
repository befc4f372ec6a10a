"""Records exchanged between the orchestrator and worker processes."""

import enum
from dataclasses import asdict, dataclass, field, replace
from typing import List, Optional


class RunState(str, enum.Enum):
  PREPARING = "preparing"
  AWAITING_BARRIER = "awaiting_barrier"
  RUNNING = "running"
  COMPLETED = "completed"
  FAILED = "failed"

  @property
  def is_terminal(self) -> bool:
    return self in (RunState.COMPLETED, RunState.FAILED)


class PayloadSource(str, enum.Enum):
  MEMORY = "memory"
  DISK = "disk"


@dataclass(frozen=True)
class WorkerAssignment:
  worker_id: int
  files_assigned: int
  source: PayloadSource = PayloadSource.MEMORY


@dataclass
class WorkerStatus:
  """
  Snapshot a worker publishes on every state change.

  While RUNNING only counts are published; the elapsed_ms list is written
  once, with the terminal state.
  """
  worker_id: int
  state: RunState
  pid: Optional[int] = None
  message: str = ""
  elapsed_ms: List[float] = field(default_factory=list)
  failed_uploads: int = 0
  running_at: Optional[float] = None
  finished_at: Optional[float] = None
  completed: int = 0

  @property
  def completed_uploads(self) -> int:
    return max(self.completed, len(self.elapsed_ms))

  def progress(self) -> "WorkerStatus":
    """Count-only copy for progress markers"""
    return replace(self, elapsed_ms=[], completed=self.completed_uploads)

  def to_dict(self) -> dict:
    data = asdict(self)
    data['state'] = self.state.value
    return data

  @classmethod
  def from_dict(cls, data: dict) -> "WorkerStatus":
    data = dict(data)
    data['state'] = RunState(data['state'])
    return cls(**data)


def overall_state(states) -> RunState:
  """Coarse run state derived from every worker's state"""
  states = list(states)
  if not states:
    return RunState.PREPARING
  if any(s == RunState.FAILED for s in states):
    return RunState.FAILED
  if all(s == RunState.COMPLETED for s in states):
    return RunState.COMPLETED
  if any(s in (RunState.RUNNING, RunState.COMPLETED) for s in states):
    return RunState.RUNNING
  if all(s == RunState.AWAITING_BARRIER for s in states):
    return RunState.AWAITING_BARRIER
  return RunState.PREPARING
