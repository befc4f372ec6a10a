"""
S3 collaborators: the per-upload put call and the bucket lifecycle check.

Upload timing is taken by the caller, never here.
"""

import logging
import time
from typing import Optional, Union

import boto3
import botocore.config
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageTarget
from .errors import BucketError, UploadError

logger = logging.getLogger(__name__)


def create_boto3_client(target: StorageTarget, max_pool_connections: int = 10, max_attempts: int = 3):
  """Create a boto3 S3 client for the given storage target"""
  session = boto3.session.Session(
    aws_access_key_id=target.access_key,
    aws_secret_access_key=target.secret_key,
    region_name=target.region,
  )

  botocore_config = botocore.config.Config(
    max_pool_connections=max_pool_connections,
    retries={'max_attempts': max_attempts, 'mode': 'standard'},
    tcp_keepalive=True,
  )

  return session.client("s3", endpoint_url=target.endpoint_url, config=botocore_config)


class S3Uploader:
  """
  Puts one object per call into the target bucket.

  Payloads are raw bytes (put_object) or a path on disk (upload_file).
  """

  def __init__(self, target: StorageTarget, retries: int = 0, client=None):
    self.target = target
    self.retries = retries
    self.s3_client = client or create_boto3_client(target)

  def put(self, key: str, payload: Union[bytes, str]) -> bool:
    attempt = 0
    while True:
      try:
        if isinstance(payload, (bytes, bytearray, memoryview)):
          self.s3_client.put_object(Bucket=self.target.bucket, Key=key, Body=payload)
        else:
          self.s3_client.upload_file(payload, self.target.bucket, key)
        return True
      except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
        attempt += 1
        if attempt > self.retries:
          raise UploadError(key, e)
        logger.warning(f"Upload of {key} failed (attempt {attempt}/{self.retries + 1}): {e}")
        time.sleep(1)

  def close(self) -> None:
    self.s3_client.close()


def uploader_from_target(target: StorageTarget, retries: int = 0) -> S3Uploader:
  """Default uploader factory; each worker process builds its own client"""
  return S3Uploader(target, retries=retries)


def list_bucket_names(s3_client) -> set:
  response = s3_client.list_buckets()
  return {bucket['Name'] for bucket in response.get('Buckets', [])}


def ensure_bucket(s3_client, bucket: str, region: Optional[str] = None) -> bool:
  """
  Create the bucket unless list_buckets already reports it.

  Returns:
      True if the bucket was created, False if it already existed

  Raises:
      BucketError: if the bucket cannot be listed or created
  """
  try:
    if bucket in list_bucket_names(s3_client):
      logger.info(f"Bucket '{bucket}' already exists")
      return False

    params = {'Bucket': bucket}
    if region and region != "us-east-1":
      params['CreateBucketConfiguration'] = {'LocationConstraint': region}
    s3_client.create_bucket(**params)
  except (BotoCoreError, ClientError) as e:
    raise BucketError(f"Could not check or create bucket '{bucket}': {e}")

  logger.info(f"Created bucket '{bucket}'")
  return True
