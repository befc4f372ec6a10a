"""
Command line entry point.

  s3-upload-bench setup --endpoint-url ... --bucket ... --access-key ... --secret-key ...
  s3-upload-bench run [--block-size-kb 2048] [--use-filesystem] ...
"""

import argparse
import logging
import sys
from importlib import metadata

from .config import (
  DEFAULT_BLOCK_SIZE_KB, GIB, REMAINDER_POLICIES, REMAINDER_ROUND_UP, THROUGHPUT_MODES,
  THROUGHPUT_WALL_CLOCK, StorageTarget, default_session_path, default_working_directory,
  load_session, resolve_config, save_session, volume_warning,
)
from .errors import (
  BenchmarkError, DependencyIncompatibleError, DependencyMissingError, RunDeclinedError,
)
from .log import configure_logging

logger = logging.getLogger(__name__)

REQUIRED_DISTRIBUTIONS = ("boto3", "botocore", "psutil", "numpy", "termcolor", "tqdm", "pandas", "matplotlib")
# Client.close() first shipped in this botocore release
MIN_BOTOCORE_VERSION = (1, 28)


def _version_tuple(version: str):
  parts = []
  for piece in version.split(".")[:2]:
    digits = "".join(ch for ch in piece if ch.isdigit())
    parts.append(int(digits) if digits else 0)
  return tuple(parts)


def check_dependencies() -> None:
  """
  Raises:
      DependencyMissingError: a required distribution is not installed
      DependencyIncompatibleError: an installed distribution is too old to use
  """
  for name in REQUIRED_DISTRIBUTIONS:
    try:
      metadata.version(name)
    except metadata.PackageNotFoundError:
      raise DependencyMissingError(f"Required package '{name}' is not installed")

  botocore_version = metadata.version("botocore")
  if _version_tuple(botocore_version) < MIN_BOTOCORE_VERSION:
    raise DependencyIncompatibleError(
      f"botocore {botocore_version} is installed; "
      f"{'.'.join(map(str, MIN_BOTOCORE_VERSION))} or newer is required"
    )


def parse_args(argv=None):
  parser = argparse.ArgumentParser(prog="s3-upload-bench", description="Parallel S3 upload throughput benchmark")
  parser.add_argument("--verbose", "-v", help="Debug logging", action="store_true")
  parser.add_argument("--session-file", help="Where setup stores and run reads the session",
                      default=default_session_path())
  subparsers = parser.add_subparsers(dest="command", required=True)

  setup = subparsers.add_parser("setup", help="Check or create the bucket and save the session")
  setup.add_argument("--region", help="Region Name", default="eu-north1")
  setup.add_argument("--endpoint-url", help="Endpoint URL", required=True)
  setup.add_argument("--bucket", help="Bucket Name", required=True)
  setup.add_argument("--access-key", help="Access Key ID", required=True)
  setup.add_argument("--secret-key", help="Secret Access Key", required=True)

  run = subparsers.add_parser("run", help="Run the upload benchmark")
  run.add_argument("--block-size-kb", help="Object size in KB", type=int, default=DEFAULT_BLOCK_SIZE_KB)
  run.add_argument("--use-filesystem", help="Write payloads to disk and upload the files",
                   action="store_true")
  run.add_argument("--working-directory", help="Scratch and control directory",
                   default=default_working_directory())
  run.add_argument("--files", help="Number of files (default: ~1 GiB worth)", type=int, default=None)
  run.add_argument("--workers", help="Number of worker processes (default: from block size and cores)",
                   type=int, default=None)
  run.add_argument("--remainder-policy", help="How to handle files that don't divide evenly over workers",
                   choices=REMAINDER_POLICIES, default=REMAINDER_ROUND_UP)
  run.add_argument("--throughput-mode", help="How the average throughput is computed",
                   choices=THROUGHPUT_MODES, default=THROUGHPUT_WALL_CLOCK)
  run.add_argument("--retries", help="Extra attempts per failed upload", type=int, default=0)
  run.add_argument("--interface", help="Network interface to sample (default: all)", default=None)
  run.add_argument("--volume-warning-gb", help="Ask for confirmation above this payload volume",
                   type=float, default=2.0)
  run.add_argument("--yes", "-y", help="Don't ask for confirmation", action="store_true")
  run.add_argument("--output-dir", help="Write CSV/JSON results and a throughput chart here", default=None)
  run.add_argument("--end-session", help="Remove the saved session after the run", action="store_true")
  run.add_argument("--no-progress", help="Disable the progress bar", action="store_true")

  return parser.parse_args(argv)


def confirm(prompt: str) -> bool:
  try:
    answer = input(f"{prompt} [y/N] ")
  except EOFError:
    return False
  return answer.strip().lower() in ("y", "yes")


def command_setup(args) -> int:
  from .storage import create_boto3_client, ensure_bucket
  from termcolor import colored

  target = StorageTarget(
    bucket=args.bucket,
    endpoint_url=args.endpoint_url,
    region=args.region,
    access_key=args.access_key,
    secret_key=args.secret_key,
  )
  s3_client = create_boto3_client(target)
  try:
    created = ensure_bucket(s3_client, target.bucket, target.region)
  finally:
    s3_client.close()
  save_session(target, args.session_file)
  print(colored(f"Bucket '{target.bucket}' {'created' if created else 'ready'}", "green"))
  return 0


def command_run(args) -> int:
  from termcolor import colored

  from .orchestrator import BenchmarkRunner
  from .report import export_results, print_summary

  target = load_session(args.session_file)
  config = resolve_config(
    block_size_kb=args.block_size_kb,
    number_of_files=args.files,
    max_workers=args.workers,
    upload_from_filesystem=args.use_filesystem,
    working_directory=args.working_directory,
    remainder_policy=args.remainder_policy,
    interface=args.interface,
    volume_warning_bytes=int(args.volume_warning_gb * GIB),
    throughput_mode=args.throughput_mode,
    upload_retries=args.retries,
  )

  if config.needs_confirmation():
    print(colored(f"Warning: {volume_warning(config)}", "yellow"))
    if not args.yes and not confirm("Continue?"):
      raise RunDeclinedError("Run cancelled by operator")

  runner = BenchmarkRunner(
    config,
    target,
    session_path=args.session_file,
    revoke_session=args.end_session,
    show_progress=not args.no_progress,
  )
  result = runner.run()
  print_summary(config, result)
  if args.output_dir:
    export_results(config, result, runner.statuses, runner.samples, args.output_dir)
  return 0


def main(argv=None) -> int:
  args = parse_args(argv)
  configure_logging(logging.DEBUG if args.verbose else logging.INFO)

  try:
    check_dependencies()
    if args.command == "setup":
      return command_setup(args)
    return command_run(args)
  except BenchmarkError as e:
    logger.error(str(e))
    return e.exit_code
  except KeyboardInterrupt:
    logger.warning("Interrupted by user")
    return 130


if __name__ == "__main__":
  sys.exit(main())
