import multiprocessing
import time

import pytest

from s3_upload_bench.config import StorageTarget, resolve_config
from s3_upload_bench.errors import UploadError


class FakeUploader:
  def __init__(self, delay=0.005, fail_every=0):
    self.delay = delay
    self.fail_every = fail_every
    self.calls = []
    self.closed = False

  def put(self, key, payload):
    self.calls.append((key, payload))
    time.sleep(self.delay)
    if self.fail_every and len(self.calls) % self.fail_every == 0:
      raise UploadError(key, "simulated failure")
    return True

  def close(self):
    self.closed = True


def fake_uploader_factory(target, retries=0):
  return FakeUploader()


def flaky_uploader_factory(target, retries=0):
  return FakeUploader(fail_every=3)


def broken_worker_one_factory(target, retries=0):
  if multiprocessing.current_process().name == "Worker-1":
    raise RuntimeError("simulated preparation failure")
  return FakeUploader()


class CountingCounter:
  """Stands in for the NIC counter: grows by a varying amount per read"""

  def __init__(self, steps=(1, 4, 2, 8, 3)):
    self.steps = steps
    self.reads = 0
    self.value = 0

  def __call__(self, interface=None):
    self.value += self.steps[self.reads % len(self.steps)] * 1024 * 1024
    self.reads += 1
    return self.value


@pytest.fixture
def target():
  return StorageTarget(
    bucket="bench",
    endpoint_url="http://localhost:9000",
    region="eu-north1",
    access_key="access",
    secret_key="secret",
  )


@pytest.fixture
def make_config(tmp_path):
  def _make(**overrides):
    params = dict(
      block_size_kb=4,
      number_of_files=6,
      max_workers=2,
      working_directory=str(tmp_path / "work"),
      barrier_poll_interval=0.02,
      pool_poll_interval=0.05,
      sample_interval=0.05,
      start_method="fork",
    )
    params.update(overrides)
    return resolve_config(**params)

  return _make


@pytest.fixture
def fakes():
  class Fakes:
    uploader = FakeUploader
    factory = staticmethod(fake_uploader_factory)
    flaky_factory = staticmethod(flaky_uploader_factory)
    broken_worker_one_factory = staticmethod(broken_worker_one_factory)
    counter = CountingCounter

  return Fakes
