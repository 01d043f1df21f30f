"""
CloudWatch Logs client used by the log proxy.

Wraps a boto3 "logs" client and turns GetLogEvents calls into LogPage
objects. boto3 is blocking, so calls run in the threadpool and only the
calling request waits on them.
"""

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from ..config import Settings
from ..models import LogErrorDetails, LogPage, LogQuery

logger = logging.getLogger(__name__)


class LogStoreError(Exception):
    """
    The log store call failed.

    Attributes:
        message: Provider error message
        code: Provider error code, when the provider sent one
        request_id: Provider request id, when available
        cf_id: CloudFront request id, when available
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
        cf_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.request_id = request_id
        self.cf_id = cf_id

    @classmethod
    def from_client_error(cls, error: ClientError) -> "LogStoreError":
        """Pull the sanitized fields out of a botocore ClientError."""
        response = error.response or {}
        error_info = response.get("Error", {})
        metadata = response.get("ResponseMetadata", {})
        headers = metadata.get("HTTPHeaders", {})

        return cls(
            message=error_info.get("Message") or str(error),
            code=error_info.get("Code") or None,
            request_id=metadata.get("RequestId") or None,
            cf_id=headers.get("x-amz-cf-id") or None,
        )

    @property
    def details(self) -> LogErrorDetails:
        return LogErrorDetails(code=self.code, requestId=self.request_id, cfId=self.cf_id)


class LogStore:
    """Reads pages of events from one CloudWatch Logs client."""

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "LogStore":
        """
        Build a store with bounded timeouts and no SDK retries.

        Credentials come from the standard AWS credential chain.
        """
        config = Config(
            region_name=settings.AWS_REGION,
            connect_timeout=settings.LOG_STORE_CONNECT_TIMEOUT_SECONDS,
            read_timeout=settings.LOG_STORE_READ_TIMEOUT_SECONDS,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        return cls(boto3.client("logs", config=config))

    async def fetch_page(self, query: LogQuery) -> LogPage:
        """
        Fetch one page of events.

        Args:
            query: Server-chosen log query

        Returns:
            LogPage with at most query.limit events and the continuation
            tokens as returned

        Raises:
            LogStoreError: If the provider call fails
        """
        params = query.to_request_params()
        logger.info("Fetching log events", extra={"log_params": params})

        try:
            response = await run_in_threadpool(self._client.get_log_events, **params)
        except ClientError as e:
            raise LogStoreError.from_client_error(e) from e
        except BotoCoreError as e:
            raise LogStoreError(message=str(e)) from e

        events = response.get("events", [])[: query.limit]
        logger.info(f"Successfully fetched {len(events)} logs")

        return LogPage(
            events=events,
            nextForwardToken=response.get("nextForwardToken"),
            nextBackwardToken=response.get("nextBackwardToken"),
        )
