import logging
import time
from collections import namedtuple

from s3_upload_bench import sampler as sampler_module
from s3_upload_bench.sampler import ThroughputSample, ThroughputSampler, read_bytes_sent

Counters = namedtuple("Counters", ["bytes_sent"])


def test_sample_rates():
  sample = ThroughputSample(timestamp=0.0, interval_seconds=2.0, bytes_sent_delta=4_000_000)
  assert sample.bytes_per_second == 2_000_000
  assert sample.bits_per_second == 16_000_000


def test_zero_interval_sample_has_zero_rate():
  assert ThroughputSample(0.0, 0.0, 100).bytes_per_second == 0.0


def test_sample_once_records_deltas(fakes):
  counter = fakes.counter(steps=(1, 2, 4))
  sampler = ThroughputSampler(interval=1.0, counter=counter)

  first = sampler.sample_once()
  second = sampler.sample_once()
  assert first.bytes_sent_delta == 2 * 1024 * 1024
  assert second.bytes_sent_delta == 4 * 1024 * 1024
  assert sampler.samples == (first, second)


def test_counter_reset_does_not_go_negative():
  values = iter([1000, 10])
  sampler = ThroughputSampler(counter=lambda interface=None: next(values))
  assert sampler.sample_once().bytes_sent_delta == 0


def test_background_sampling_until_stopped(fakes):
  sampler = ThroughputSampler(interval=0.02, counter=fakes.counter())
  sampler.start()
  time.sleep(0.2)
  samples = sampler.stop()

  assert len(samples) >= 2
  assert all(s.interval_seconds > 0 for s in samples)
  count = len(sampler.samples)
  time.sleep(0.05)
  assert len(sampler.samples) == count


def test_read_bytes_sent_per_interface(monkeypatch):
  def fake_counters(pernic=False):
    if pernic:
      return {"eth0": Counters(bytes_sent=111)}
    return Counters(bytes_sent=999)

  monkeypatch.setattr(sampler_module.psutil, "net_io_counters", fake_counters)
  assert read_bytes_sent("eth0") == 111
  assert read_bytes_sent("missing0") == 999
  assert read_bytes_sent() == 999


def test_sampling_survives_a_failed_read(fakes, caplog):
  counter = fakes.counter()

  def unreliable(interface=None):
    if counter.reads == 2:
      counter.reads += 1
      raise OSError("counter temporarily unavailable")
    return counter(interface)

  sampler = ThroughputSampler(interval=0.02, counter=unreliable)
  with caplog.at_level(logging.WARNING, logger=sampler_module.__name__):
    sampler.start()
    time.sleep(0.3)
    samples = sampler.stop()

  assert len(samples) > 5
  assert "counter temporarily unavailable" in caplog.text
