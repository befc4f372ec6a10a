"""
Cleanup Manager.

Runs after every run, successful or not. Each step is attempted even if an
earlier one failed, and failures are only logged so they never replace the
run's own outcome.
"""

import glob
import logging
import os
import shutil
from typing import List, Optional

import psutil

from .barrier import ReadinessBarrier
from .config import BenchmarkConfig
from .content import read_owner_pid
from .errors import CleanupError

logger = logging.getLogger(__name__)


class CleanupManager:
  def __init__(
    self,
    config: BenchmarkConfig,
    session_path: Optional[str] = None,
    revoke_session: bool = False,
    owns_working_directory: bool = False
  ):
    self.config = config
    self.session_path = session_path
    self.revoke_session = revoke_session
    # Only a working directory this run created is removed
    self.owns_working_directory = owns_working_directory
    self.pool = None
    self.errors: List[CleanupError] = []

  def register_pool(self, pool) -> None:
    self.pool = pool

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_val, exc_tb):
    self.run()
    return False

  def run(self) -> List[CleanupError]:
    steps = [
      ("revoke session", self._revoke_session),
      ("terminate workers", self._terminate_workers),
      ("remove scratch directories", self._remove_orphaned_scratch),
      ("remove start signal", self._remove_start_signal),
      ("remove control directory", self._remove_control_directory),
    ]
    self.errors = []
    for name, step in steps:
      try:
        step()
      except Exception as e:
        error = CleanupError(name, e)
        logger.warning(str(error))
        self.errors.append(error)
    return self.errors

  def _revoke_session(self) -> None:
    if self.revoke_session and self.session_path and os.path.exists(self.session_path):
      os.remove(self.session_path)
      logger.info(f"Removed session file {self.session_path}")

  def _terminate_workers(self) -> None:
    if self.pool is not None:
      self.pool.terminate_all()

  def _remove_orphaned_scratch(self) -> None:
    own_dirs = {self.config.scratch_directory(i) for i in range(self.config.max_workers)}
    for scratch_dir in glob.glob(os.path.join(self.config.working_directory, "worker-*")):
      if not os.path.isdir(scratch_dir):
        continue
      owner = read_owner_pid(scratch_dir)
      if owner is not None and psutil.pid_exists(owner):
        logger.debug(f"Keeping {scratch_dir}, owner pid {owner} is still running")
        continue
      if owner is None and scratch_dir not in own_dirs:
        continue
      shutil.rmtree(scratch_dir)
      logger.debug(f"Removed scratch directory {scratch_dir}")

  def _remove_start_signal(self) -> None:
    barrier = ReadinessBarrier(self.config.control_directory, range(self.config.max_workers))
    barrier.remove_start_signal()

  def _remove_control_directory(self) -> None:
    if os.path.isdir(self.config.control_directory):
      shutil.rmtree(self.config.control_directory)
    if not self.owns_working_directory:
      return
    try:
      os.rmdir(self.config.working_directory)
    except OSError:
      # Not empty or already gone; leave it
      pass
