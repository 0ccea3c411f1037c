"""S3 utilities for ledger database persistence."""

import os
import tempfile

import boto3
from botocore.exceptions import ClientError

# S3 client (reused across Lambda invocations)
_s3_client = None


def get_s3_client():
    """Get or create S3 client."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client('s3')
    return _s3_client


def is_enabled() -> bool:
    """S3 persistence is on when a data bucket is configured."""
    return bool(os.environ.get('DATA_BUCKET'))


def get_bucket_name() -> str:
    """Get the data bucket name from environment."""
    return os.environ['DATA_BUCKET']


def download_file(key: str, local_path: str) -> bool:
    """Download the database file from S3.

    Args:
        key: S3 object key
        local_path: Local file path to save to

    Returns:
        True if downloaded, False if the object doesn't exist yet
    """
    try:
        get_s3_client().download_file(get_bucket_name(), key, local_path)
        return True
    except ClientError as e:
        if e.response['Error']['Code'] in ('404', 'NoSuchKey'):
            return False
        raise


def upload_file(local_path: str, key: str) -> None:
    get_s3_client().upload_file(local_path, get_bucket_name(), key)


def get_temp_path(filename: str = 'ledger.db') -> str:
    """Path in Lambda's /tmp directory for the working copy."""
    return os.path.join(tempfile.gettempdir(), filename)
