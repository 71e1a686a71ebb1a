"""Per-source run locks so two runs for the same source never interleave."""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Set

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class SourceBusyError(Exception):
    """A run for this source is already in progress."""

    def __init__(self, source_name: str):
        super().__init__(f"A run for source '{source_name}' is already in progress")
        self.source_name = source_name


class InProcessRunLock:
    """Run lock for a single process, used when no lock table is configured."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[str] = set()

    def acquire(self, source_name: str) -> str:
        with self._guard:
            if source_name in self._held:
                raise SourceBusyError(source_name)
            self._held.add(source_name)
        return source_name

    def release(self, source_name: str, token: str) -> None:
        with self._guard:
            self._held.discard(source_name)

    @contextmanager
    def hold(self, source_name: str) -> Iterator[str]:
        token = self.acquire(source_name)
        try:
            yield token
        finally:
            self.release(source_name, token)


class DynamoDBRunLock:
    """
    Lease lock stored in a DynamoDB table keyed by lock_name.

    A lease expires after lease_seconds so a crashed invocation cannot block
    its source forever. The default matches the Lambda maximum timeout.
    """

    KEY_ATTRIBUTE = 'lock_name'
    DEFAULT_LEASE_SECONDS = 900

    def __init__(
        self,
        table_name: str,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        region_name: Optional[str] = None
    ):
        self.table_name = table_name
        self.lease_seconds = lease_seconds
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)

    def acquire(self, source_name: str) -> str:
        """
        Take the lease for a source.

        Returns:
            Owner token needed to release the lease

        Raises:
            SourceBusyError: If an unexpired lease is held by another run
        """
        now = int(time.time())
        token = uuid.uuid4().hex

        try:
            self.table.put_item(
                Item={
                    self.KEY_ATTRIBUTE: self._lock_name(source_name),
                    'owner': token,
                    'acquired_at': now,
                    'expires_at': now + self.lease_seconds
                },
                ConditionExpression='attribute_not_exists(#pk) OR #expires_at < :now',
                ExpressionAttributeNames={
                    '#pk': self.KEY_ATTRIBUTE,
                    '#expires_at': 'expires_at'
                },
                ExpressionAttributeValues={':now': now}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise SourceBusyError(source_name) from e
            raise

        logger.info(f"Acquired run lock for source {source_name}")
        return token

    def release(self, source_name: str, token: str) -> None:
        """Drop the lease if this run still owns it."""
        try:
            self.table.delete_item(
                Key={self.KEY_ATTRIBUTE: self._lock_name(source_name)},
                ConditionExpression='#owner = :token',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':token': token}
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                raise
            logger.warning(
                f"Run lock for source {source_name} expired before release"
            )
            return

        logger.info(f"Released run lock for source {source_name}")

    @contextmanager
    def hold(self, source_name: str) -> Iterator[str]:
        token = self.acquire(source_name)
        try:
            yield token
        finally:
            self.release(source_name, token)

    def _lock_name(self, source_name: str) -> str:
        return f"source-run#{source_name}"
