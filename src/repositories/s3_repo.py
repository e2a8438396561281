"""S3 repository for raw inbound mail written by SES receipt rules."""

from typing import Iterable, Optional

import boto3


class S3Repository:
    """Minimal helper around S3 for listing, reading and moving objects."""

    def __init__(self, bucket_name: str, client=None):
        self.bucket_name = bucket_name
        self.client = client or boto3.client("s3")

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> Iterable[str]:
        """List object keys under a prefix, oldest listing order first."""
        paginator = self.client.get_paginator("list_objects_v2")
        yielded = 0
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            for item in page.get("Contents", []):
                if item["Key"].endswith("/"):
                    continue
                yield item["Key"]
                yielded += 1
                if limit is not None and yielded >= limit:
                    return

    def read_bytes(self, key: str) -> bytes:
        resp = self.client.get_object(Bucket=self.bucket_name, Key=key)
        return resp["Body"].read()

    def move(self, key: str, destination_key: str) -> None:
        """Copy then delete; S3 has no rename."""
        self.client.copy_object(
            Bucket=self.bucket_name,
            Key=destination_key,
            CopySource={"Bucket": self.bucket_name, "Key": key},
        )
        self.client.delete_object(Bucket=self.bucket_name, Key=key)
