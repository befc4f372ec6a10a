import logging

LOG_FORMAT = '%(asctime)s - %(processName)s - %(levelname)s - %(message)s'


def configure_logging(level=logging.INFO) -> None:
  """Configure root logging once per process; worker processes call this too"""
  logging.basicConfig(level=level, format=LOG_FORMAT)
  logging.getLogger().setLevel(level)
  # boto's debug output drowns the benchmark's own
  for noisy in ("botocore", "boto3", "urllib3", "s3transfer"):
    logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
