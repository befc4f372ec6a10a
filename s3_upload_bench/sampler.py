"""
Throughput Sampler.

Reads the cumulative bytes-sent counter of a network interface on a fixed
interval while uploads run. It measures wire throughput independently of the
per-upload timings taken inside the workers.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)


def read_bytes_sent(interface: Optional[str] = None) -> int:
  """Cumulative bytes sent on `interface`, or on all interfaces when None"""
  if interface:
    counters = psutil.net_io_counters(pernic=True).get(interface)
    if counters is not None:
      return counters.bytes_sent
    logger.warning(f"Interface '{interface}' not found, sampling all interfaces")
  return psutil.net_io_counters(pernic=False).bytes_sent


@dataclass(frozen=True)
class ThroughputSample:
  timestamp: float
  interval_seconds: float
  bytes_sent_delta: int

  @property
  def bytes_per_second(self) -> float:
    if self.interval_seconds <= 0:
      return 0.0
    return self.bytes_sent_delta / self.interval_seconds

  @property
  def bits_per_second(self) -> float:
    return self.bytes_per_second * 8


class ThroughputSampler:
  def __init__(
    self,
    interval: float = 2.0,
    interface: Optional[str] = None,
    counter: Callable[[Optional[str]], int] = read_bytes_sent
  ):
    self.interval = interval
    self.interface = interface
    self.counter = counter
    self._samples: List[ThroughputSample] = []
    self._lock = threading.Lock()
    self._stop_event = threading.Event()
    self._thread: Optional[threading.Thread] = None
    self._last_bytes: Optional[int] = None
    self._last_time: Optional[float] = None

  def _reset_baseline(self) -> None:
    self._last_bytes = self.counter(self.interface)
    self._last_time = time.monotonic()

  def sample_once(self) -> ThroughputSample:
    """Take one reading against the previous one and record the delta"""
    if self._last_bytes is None:
      self._reset_baseline()
    current_bytes = self.counter(self.interface)
    current_time = time.monotonic()

    # Counters can wrap or reset on some platforms
    delta = max(0, current_bytes - self._last_bytes)
    sample = ThroughputSample(
      timestamp=time.time(),
      interval_seconds=current_time - self._last_time,
      bytes_sent_delta=delta,
    )
    self._last_bytes = current_bytes
    self._last_time = current_time

    with self._lock:
      self._samples.append(sample)
    return sample

  def _run(self) -> None:
    while not self._stop_event.wait(self.interval):
      try:
        sample = self.sample_once()
      except Exception as e:
        logger.warning(f"Network counter read failed, skipping this interval: {e}")
        self._last_bytes = None
        continue
      logger.debug(f"Network: {sample.bits_per_second / 1e6:.1f} Mbit/s over {sample.interval_seconds:.2f}s")

  def start(self) -> None:
    self._stop_event.clear()
    self._reset_baseline()
    self._thread = threading.Thread(target=self._run, name="throughput-sampler", daemon=True)
    self._thread.start()

  def stop(self) -> Tuple[ThroughputSample, ...]:
    self._stop_event.set()
    if self._thread:
      self._thread.join(timeout=self.interval + 5)
      self._thread = None
    return self.samples

  @property
  def samples(self) -> Tuple[ThroughputSample, ...]:
    with self._lock:
      return tuple(self._samples)
