"""
Benchmark configuration.

Resolves raw operator input (block size, optional file and worker counts,
payload mode) into an immutable BenchmarkConfig that every component receives
at construction. Also holds the storage target persisted by the setup command.
"""

import json
import logging
import math
import os
import tempfile
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional, Tuple

from .errors import ConfigurationError, SetupError

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * 1024
GIB = 1024 * 1024 * 1024

DEFAULT_BLOCK_SIZE_KB = 2048
DEFAULT_VOLUME_WARNING_BYTES = 2 * GIB
TARGET_VOLUME_BYTES = 1 * GIB
DEFAULT_KEY_PREFIX = "s3-upload-bench"

BARRIER_POLL_INTERVAL = 0.5
POOL_POLL_INTERVAL = 2.0
SAMPLE_INTERVAL = 2.0

REMAINDER_ROUND_UP = "round-up"
REMAINDER_DISTRIBUTE = "distribute"
REMAINDER_STRICT = "strict"
REMAINDER_POLICIES = (REMAINDER_ROUND_UP, REMAINDER_DISTRIBUTE, REMAINDER_STRICT)

THROUGHPUT_WALL_CLOCK = "wall-clock"
THROUGHPUT_COMPAT = "compat"
THROUGHPUT_MODES = (THROUGHPUT_WALL_CLOCK, THROUGHPUT_COMPAT)

SESSION_ENV_VAR = "S3_UPLOAD_BENCH_SESSION"


def default_working_directory() -> str:
  return os.path.join(tempfile.gettempdir(), "s3_upload_bench")


def logical_core_count() -> int:
  import psutil

  return psutil.cpu_count(logical=True) or os.cpu_count() or 1


def default_worker_count(block_size_kb: int, cores: Optional[int] = None) -> int:
  """Workers shrink as blocks grow: 48 workers at 512 KB, capped at 6 per core."""
  if cores is None:
    cores = logical_core_count()
  by_block_size = (48 * 512) // block_size_kb
  return max(1, min(by_block_size, cores * 6))


def default_file_count(block_size_kb: int) -> int:
  """Number of blocks needed to move roughly 1 GiB"""
  return math.ceil(TARGET_VOLUME_BYTES / (block_size_kb * KIB))


def split_files(number_of_files: int, max_workers: int) -> Tuple[int, ...]:
  """Spread files over workers, the first workers taking any remainder."""
  base, remainder = divmod(number_of_files, max_workers)
  return tuple(base + 1 if i < remainder else base for i in range(max_workers))


@dataclass(frozen=True)
class BenchmarkConfig:
  block_size_bytes: int
  number_of_files: int
  max_workers: int
  files_per_worker: Tuple[int, ...]
  working_directory: str
  upload_from_filesystem: bool = False
  barrier_poll_interval: float = BARRIER_POLL_INTERVAL
  pool_poll_interval: float = POOL_POLL_INTERVAL
  sample_interval: float = SAMPLE_INTERVAL
  interface: Optional[str] = None
  volume_warning_bytes: int = DEFAULT_VOLUME_WARNING_BYTES
  throughput_mode: str = THROUGHPUT_WALL_CLOCK
  upload_retries: int = 0
  start_method: str = "spawn"
  key_prefix: str = DEFAULT_KEY_PREFIX
  run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

  @property
  def block_size_kb(self) -> int:
    return self.block_size_bytes // KIB

  @property
  def control_directory(self) -> str:
    return os.path.join(self.working_directory, "control")

  def scratch_directory(self, worker_id: int) -> str:
    return os.path.join(self.working_directory, f"worker-{worker_id}")

  @property
  def projected_volume_bytes(self) -> int:
    return self.number_of_files * self.block_size_bytes

  def needs_confirmation(self) -> bool:
    return self.projected_volume_bytes >= self.volume_warning_bytes

  def to_dict(self) -> dict:
    return asdict(self)


def resolve_config(
  block_size_kb: int = DEFAULT_BLOCK_SIZE_KB,
  number_of_files: Optional[int] = None,
  max_workers: Optional[int] = None,
  upload_from_filesystem: bool = False,
  working_directory: Optional[str] = None,
  remainder_policy: str = REMAINDER_ROUND_UP,
  cores: Optional[int] = None,
  **tunables
) -> BenchmarkConfig:
  """
  Build a BenchmarkConfig from operator input.

  Args:
      block_size_kb: Size of every generated object in KB
      number_of_files: Total uploads; derived to fill ~1 GiB when None
      max_workers: Worker processes; derived from block size and cores when None
      upload_from_filesystem: Write payloads to disk and upload the files
      working_directory: Scratch and control location
      remainder_policy: What to do when files don't divide evenly over workers
      cores: Logical core count override
      **tunables: Any other BenchmarkConfig field

  Raises:
      ConfigurationError: if the inputs cannot produce a valid run
  """
  if block_size_kb is None or block_size_kb <= 0:
    raise ConfigurationError(f"Block size must be a positive number of KB, got {block_size_kb}")
  if remainder_policy not in REMAINDER_POLICIES:
    raise ConfigurationError(f"Unknown remainder policy '{remainder_policy}'")
  throughput_mode = tunables.get("throughput_mode", THROUGHPUT_WALL_CLOCK)
  if throughput_mode not in THROUGHPUT_MODES:
    raise ConfigurationError(f"Unknown throughput mode '{throughput_mode}'")

  if number_of_files is None:
    number_of_files = default_file_count(block_size_kb)
  if max_workers is None:
    max_workers = default_worker_count(block_size_kb, cores)

  if number_of_files <= 0:
    raise ConfigurationError(f"File count resolved to {number_of_files}, must be at least 1")
  if max_workers <= 0:
    raise ConfigurationError(f"Worker count resolved to {max_workers}, must be at least 1")
  if max_workers > number_of_files:
    raise ConfigurationError(
      f"Worker count ({max_workers}) exceeds file count ({number_of_files}); "
      f"lower --workers or raise --files"
    )

  remainder = number_of_files % max_workers
  if remainder:
    if remainder_policy == REMAINDER_STRICT:
      raise ConfigurationError(
        f"{number_of_files} files do not divide evenly over {max_workers} workers"
      )
    if remainder_policy == REMAINDER_ROUND_UP:
      rounded = number_of_files + (max_workers - remainder)
      logger.warning(f"Rounding file count up from {number_of_files} to {rounded} "
                     f"so every one of {max_workers} workers uploads the same share")
      number_of_files = rounded
    else:
      logger.warning(f"{remainder} worker(s) will upload one extra file "
                     f"({number_of_files} files over {max_workers} workers)")

  if working_directory is None:
    if upload_from_filesystem:
      raise ConfigurationError("A working directory is required when uploading from the filesystem")
    working_directory = default_working_directory()

  config = BenchmarkConfig(
    block_size_bytes=block_size_kb * KIB,
    number_of_files=number_of_files,
    max_workers=max_workers,
    files_per_worker=split_files(number_of_files, max_workers),
    working_directory=os.path.abspath(working_directory),
    upload_from_filesystem=upload_from_filesystem,
    **tunables
  )
  logger.debug(f"Resolved configuration: {config}")
  return config


def nearest_existing_directory(path: str) -> str:
  """path itself, or its closest ancestor that exists"""
  path = os.path.abspath(path)
  while not os.path.isdir(path):
    parent = os.path.dirname(path)
    if parent == path:
      break
    path = parent
  return path


def volume_warning(config: BenchmarkConfig) -> str:
  """Describe the projected payload footprint against what the host has free"""
  import psutil

  projected_gb = config.projected_volume_bytes / GIB
  if config.upload_from_filesystem:
    free = psutil.disk_usage(nearest_existing_directory(config.working_directory)).free
    where = f"disk under {config.working_directory}"
  else:
    free = psutil.virtual_memory().available
    where = "RAM"
  return (f"This run will generate {projected_gb:.2f} GB of payload in {where} "
          f"({config.number_of_files} x {config.block_size_kb} KB); "
          f"{free / GIB:.2f} GB currently available")


@dataclass(frozen=True)
class StorageTarget:
  bucket: str
  endpoint_url: Optional[str]
  region: Optional[str]
  access_key: str
  secret_key: str

  def __repr__(self):
    return (f"StorageTarget(bucket={self.bucket!r}, endpoint_url={self.endpoint_url!r}, "
            f"region={self.region!r}, access_key={self.access_key!r}, secret_key='***')")


def default_session_path() -> str:
  return os.environ.get(SESSION_ENV_VAR) or os.path.join(
    os.path.expanduser("~"), ".s3_upload_bench", "session.json"
  )


def save_session(target: StorageTarget, path: Optional[str] = None) -> str:
  """Persist the storage target so the run command can pick it up"""
  path = path or default_session_path()
  os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
  # Credentials inside: owner read/write only
  fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
  with os.fdopen(fd, "w") as f:
    json.dump(asdict(target), f, indent=2)
  logger.info(f"Saved session for bucket '{target.bucket}' to {path}")
  return path


def load_session(path: Optional[str] = None) -> StorageTarget:
  path = path or default_session_path()
  try:
    with open(path) as f:
      data = json.load(f)
    return StorageTarget(**data)
  except FileNotFoundError:
    raise SetupError(f"No session found at {path}; run the setup command first")
  except (ValueError, TypeError) as e:
    raise SetupError(f"Session file {path} is unreadable: {e}")

