import json
import os

import psutil
import pytest

from s3_upload_bench import barrier as barrier_module
from s3_upload_bench import worker as worker_module
from s3_upload_bench.barrier import ReadinessBarrier, StatusBoard
from s3_upload_bench.models import PayloadSource, RunState, WorkerAssignment
from s3_upload_bench.worker import WorkerUnit, elevate_priority


@pytest.fixture(autouse=True)
def no_priority_change(monkeypatch):
  monkeypatch.setattr(worker_module, "elevate_priority", lambda: True)


def released_config(make_config, **overrides):
  config = make_config(**overrides)
  os.makedirs(config.control_directory, exist_ok=True)
  released_at = ReadinessBarrier(config.control_directory, []).release()
  return config, released_at


def test_worker_uploads_every_assigned_file(make_config, target, fakes):
  config, released_at = released_config(make_config)
  uploaders = []

  def factory(target, retries=0):
    uploaders.append(fakes.uploader(delay=0))
    return uploaders[-1]

  status = WorkerUnit(config, WorkerAssignment(0, 3), target, factory).run()

  assert status.state == RunState.COMPLETED
  assert status.completed_uploads == 3
  assert status.failed_uploads == 0
  assert all(ms >= 0 for ms in status.elapsed_ms)
  assert status.running_at >= released_at
  assert uploaders[0].closed
  assert len({key for key, _ in uploaders[0].calls}) == 3
  assert StatusBoard(config.control_directory).read(0) == status


def test_worker_counts_failed_uploads_and_continues(make_config, target, fakes):
  config, _ = released_config(make_config)
  status = WorkerUnit(config, WorkerAssignment(1, 7), target, fakes.flaky_factory).run()

  assert status.state == RunState.COMPLETED
  assert status.failed_uploads == 2
  assert status.completed_uploads == 5


def test_worker_preparation_failure(make_config, target):
  config, _ = released_config(make_config)

  def factory(target, retries=0):
    raise RuntimeError("no credentials")

  status = WorkerUnit(config, WorkerAssignment(2, 3), target, factory).run()
  assert status.state == RunState.FAILED
  assert "no credentials" in status.message
  assert status.elapsed_ms == []
  assert StatusBoard(config.control_directory).read(2).state == RunState.FAILED


def test_worker_filesystem_mode_removes_scratch(make_config, target, fakes):
  config, _ = released_config(make_config, upload_from_filesystem=True)
  uploaded = []

  class PathCheckingUploader(fakes.uploader):
    def put(self, key, payload):
      assert os.path.isfile(payload)
      uploaded.append(payload)
      return True

  assignment = WorkerAssignment(0, 2, PayloadSource.DISK)
  status = WorkerUnit(config, assignment, target, lambda t, r=0: PathCheckingUploader()).run()

  assert status.state == RunState.COMPLETED
  assert len(uploaded) == 2
  assert not os.path.exists(config.scratch_directory(0))


def test_elevate_priority_is_best_effort(monkeypatch):
  class DeniedProcess:
    def nice(self, value=None):
      raise psutil.AccessDenied()

  monkeypatch.setattr(worker_module.psutil, "Process", DeniedProcess)
  assert elevate_priority() is False


def test_running_markers_stay_small(make_config, target, fakes, monkeypatch):
  config, _ = released_config(make_config)
  uploads = 2000
  written = []
  real_write = barrier_module._write_atomically

  def recording_write(path, data):
    written.append((data["state"], data["elapsed_ms"], data["completed"], len(json.dumps(data))))
    real_write(path, data)

  monkeypatch.setattr(barrier_module, "_write_atomically", recording_write)
  status = WorkerUnit(config, WorkerAssignment(0, uploads), target, lambda t, r=0: fakes.uploader(delay=0)).run()

  assert status.completed_uploads == uploads
  running = [w for w in written if w[0] == RunState.RUNNING.value]
  assert running
  assert all(elapsed == [] for _, elapsed, _, _ in running)
  assert [c for _, _, c, _ in running] == sorted(c for _, _, c, _ in running)
  assert len(written) < uploads / 10
  assert sum(size for *_, size in written) < 64 * uploads
  assert written[-1][0] == RunState.COMPLETED.value
  assert len(written[-1][1]) == uploads
