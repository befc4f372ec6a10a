"""
Payload generation for worker processes.

Every payload is block_size_bytes of random data so the storage backend cannot
benefit from compression. In filesystem mode payloads are written to a
per-worker scratch directory and uploaded from disk.
"""

import logging
import os
import secrets
import shutil
import uuid
from typing import List, Optional, Union

import numpy as np

from .config import BenchmarkConfig
from .errors import WorkerPreparationError
from .models import PayloadSource

logger = logging.getLogger(__name__)

OWNER_FILE = ".owner"

Payload = Union[bytes, str]


def generate_payload(size: int) -> bytes:
  """Random bytes, not cryptographically strong"""
  return np.random.bytes(size)


def random_prefix(length: int = 6) -> str:
  return secrets.token_hex(length // 2 + length % 2)[:length]


class ObjectKeyFactory:
  """Unique object keys: <key prefix>/<run id>/<random prefix>-<uuid>"""

  def __init__(self, key_prefix: str, run_id: str):
    self.key_prefix = key_prefix.strip("/")
    self.run_id = run_id

  def next_key(self) -> str:
    return f"{self.key_prefix}/{self.run_id}/{random_prefix()}-{uuid.uuid4().hex}"


class ContentGenerator:
  """Prepares one worker's share of payloads"""

  def __init__(self, config: BenchmarkConfig, worker_id: int, source: Optional[PayloadSource] = None):
    self.config = config
    self.worker_id = worker_id
    if source is None:
      source = PayloadSource.DISK if config.upload_from_filesystem else PayloadSource.MEMORY
    self.source = source
    self.scratch_dir = config.scratch_directory(worker_id)

  def prepare(self, count: int) -> List[Payload]:
    """
    Generate `count` payloads.

    Returns:
        Raw bytes in memory mode, file paths in filesystem mode

    Raises:
        WorkerPreparationError: if a payload cannot be written
    """
    if self.source == PayloadSource.MEMORY:
      return [generate_payload(self.config.block_size_bytes) for _ in range(count)]

    try:
      os.makedirs(self.scratch_dir, exist_ok=True)
      with open(os.path.join(self.scratch_dir, OWNER_FILE), "w") as f:
        f.write(str(os.getpid()))

      paths = []
      for i in range(count):
        path = os.path.join(self.scratch_dir, f"payload_{i:06d}.bin")
        with open(path, "wb") as f:
          f.write(generate_payload(self.config.block_size_bytes))
        paths.append(path)
    except OSError as e:
      raise WorkerPreparationError(self.worker_id, f"could not write payload under {self.scratch_dir}: {e}")

    logger.debug(f"Worker {self.worker_id} wrote {count} payloads to {self.scratch_dir}")
    return paths

  def remove_scratch(self) -> None:
    if os.path.isdir(self.scratch_dir):
      shutil.rmtree(self.scratch_dir)


def read_owner_pid(scratch_dir: str):
  """Pid recorded by the worker that created scratch_dir, or None"""
  try:
    with open(os.path.join(scratch_dir, OWNER_FILE)) as f:
      return int(f.read().strip())
  except (OSError, ValueError):
    return None
