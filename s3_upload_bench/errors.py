"""Exceptions raised by the benchmark and the exit codes they map to."""

EXIT_GENERIC = 1
EXIT_BUCKET = 2
EXIT_DEPENDENCY_MISSING = 3
EXIT_DEPENDENCY_INCOMPATIBLE = 4
EXIT_WORKER_PREPARATION = 5
EXIT_CONFIGURATION = 6
EXIT_DECLINED = 7


class BenchmarkError(Exception):
  exit_code = EXIT_GENERIC


class ConfigurationError(BenchmarkError):
  exit_code = EXIT_CONFIGURATION


class SetupError(BenchmarkError):
  """Raised before any run starts: credentials, dependencies, bucket."""
  exit_code = EXIT_GENERIC


class DependencyMissingError(SetupError):
  exit_code = EXIT_DEPENDENCY_MISSING


class DependencyIncompatibleError(SetupError):
  exit_code = EXIT_DEPENDENCY_INCOMPATIBLE


class BucketError(SetupError):
  exit_code = EXIT_BUCKET


class RunDeclinedError(BenchmarkError):
  exit_code = EXIT_DECLINED


class WorkerPreparationError(BenchmarkError):
  exit_code = EXIT_WORKER_PREPARATION

  def __init__(self, worker_id, message):
    super().__init__(f"Worker {worker_id} failed during preparation: {message}")
    self.worker_id = worker_id
    self.message = message


class UploadError(BenchmarkError):
  def __init__(self, key, cause):
    super().__init__(f"Upload of {key} failed: {cause}")
    self.key = key
    self.cause = cause


class CleanupError(BenchmarkError):
  def __init__(self, step, cause):
    super().__init__(f"Cleanup step '{step}' failed: {cause}")
    self.step = step
    self.cause = cause
