"""Transports that hand a dispatch envelope to the ticket generator."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional, Protocol

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from planner_core.core.logging import request_id_var
from planner_core.schemas.dispatch import DispatchEnvelope

LOGGER = logging.getLogger("planner_core.dispatch.transport")


class GeneratorUnavailableError(Exception):
    """Connection failure, timeout or 5xx. Worth retrying."""


class GeneratorRejectedError(Exception):
    """The generator refused the batch (4xx). Retrying will not help."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GeneratorTransport(Protocol):
    async def send(self, envelope: DispatchEnvelope) -> None:
        ...


class NullGeneratorTransport(GeneratorTransport):
    """Accepts every envelope. Used when no generator is configured."""

    async def send(self, envelope: DispatchEnvelope) -> None:
        LOGGER.info(
            "dispatch_skipped_no_generator",
            extra={"job_id": envelope.job_id, "tickets": len(envelope.tickets)},
        )


class HttpGeneratorTransport(GeneratorTransport):
    """POSTs the envelope to the generator's batch endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str],
        service_name: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/api/tickets/batch"
        self._api_key = api_key
        self._service_name = service_name
        self._timeout = timeout
        self._client = client

    async def send(self, envelope: DispatchEnvelope) -> None:
        headers = {
            "X-Correlation-Id": str(envelope.correlation_id),
            "X-Service-Name": self._service_name,
            "X-Request-Id": request_id_var.get() or str(envelope.correlation_id),
        }
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        payload = envelope.model_dump(mode="json")

        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise GeneratorUnavailableError(f"generator timed out after {self._timeout}s") from exc
        except httpx.RequestError as exc:
            raise GeneratorUnavailableError(f"generator unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GeneratorUnavailableError(f"generator returned {response.status_code}")
        if response.status_code >= 400:
            raise GeneratorRejectedError(
                f"generator rejected batch with {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )

        LOGGER.info(
            "dispatch_sent",
            extra={"job_id": envelope.job_id, "status_code": response.status_code, "transport": "http"},
        )


class SqsGeneratorTransport(GeneratorTransport):
    """Enqueues the envelope on the generator's SQS queue."""

    def __init__(self, *, queue_url: str, region_name: str, client: Optional[object] = None) -> None:
        self._queue_url = queue_url
        self._client = client or boto3.client("sqs", region_name=region_name)
        self._fifo = queue_url.endswith(".fifo")

    async def send(self, envelope: DispatchEnvelope) -> None:
        await asyncio.to_thread(self._send_sync, envelope)

    def _send_sync(self, envelope: DispatchEnvelope) -> None:
        correlation_id = str(envelope.correlation_id)
        params = {
            "QueueUrl": self._queue_url,
            "MessageBody": json.dumps(envelope.model_dump(mode="json")),
            "MessageAttributes": {
                "correlation_id": {"DataType": "String", "StringValue": correlation_id},
                "job_id": {"DataType": "Number", "StringValue": str(envelope.job_id)},
            },
        }
        if self._fifo:
            params["MessageGroupId"] = str(envelope.job_id)
            params["MessageDeduplicationId"] = f"{correlation_id}-{envelope.attempt}"

        try:
            self._client.send_message(**params)
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500)
            if 400 <= int(status) < 500:
                raise GeneratorRejectedError(f"queue rejected message: {exc}", status_code=int(status)) from exc
            raise GeneratorUnavailableError(f"queue unavailable: {exc}") from exc
        except BotoCoreError as exc:
            raise GeneratorUnavailableError(f"queue unavailable: {exc}") from exc

        LOGGER.info(
            "dispatch_sent",
            extra={"job_id": envelope.job_id, "queue_url": self._queue_url, "transport": "sqs"},
        )
