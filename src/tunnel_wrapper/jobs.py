"""Reporting pass/fail state of test jobs to a vendor's REST API.

Job state is independent of the tunnel lifecycle; a tunnel only forwards
``send_job_state`` calls to the reporter in its strategy.
"""

from collections.abc import Callable
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import JobStateError, JobStateNotSupportedError
from .common.http import Credentials, create_client, is_success
from .common.logging import get_logger
from .config import TunnelConfig

logger = get_logger(__name__)


class JobState(BaseModel):
    """Data about one test job, usually keyed by WebDriver session ID."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(description="Whether the job should be listed as successful")
    build_id: int | str | None = Field(default=None, description="Build of the software under test")
    extra: dict[str, Any] | None = Field(default=None, description="Arbitrary data stored with the job")
    name: str | None = None
    status: str | None = Field(default=None, description="Status message shown with the job")
    tags: list[str] = Field(default_factory=list)
    visibility: Literal["public", "public restricted", "share", "team", "private"] | None = None


class JobStateReporter(Protocol):
    """Sends job state for one vendor."""

    async def send(self, job_id: str, state: JobState, config: TunnelConfig) -> None:
        ...


class UnsupportedJobStateReporter:
    """Reporter for vendors without a job state API."""

    async def send(self, job_id: str, state: JobState, config: TunnelConfig) -> None:
        raise JobStateNotSupportedError("Job state is not supported by this tunnel.")


class NoopJobStateReporter:
    """Accepts and discards job state."""

    async def send(self, job_id: str, state: JobState, config: TunnelConfig) -> None:
        logger.debug("Discarding job state", job_id=job_id)


def check_response(response: httpx.Response) -> None:
    """Raise JobStateError unless the vendor answered with 2xx."""
    if not is_success(response):
        raise JobStateError(
            response.text or f"Server reported {response.status_code} with no other data."
        )


class RestJobStateReporter:
    """PUTs a vendor-specific payload to ``url_template``.

    ``url_template`` is formatted with ``job_id`` and ``username``.
    """

    def __init__(
        self,
        url_template: str,
        build_payload: Callable[[JobState], dict[str, Any]],
        *,
        encoding: Literal["json", "form"] = "json",
        credentials: Callable[[TunnelConfig], Credentials | None] | None = None,
        check: Callable[[httpx.Response], None] = check_response,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url_template = url_template
        self.build_payload = build_payload
        self.encoding = encoding
        self.credentials = credentials
        self.check = check
        self._transport = transport

    async def send(self, job_id: str, state: JobState, config: TunnelConfig) -> None:
        """Send job state.

        Raises:
            JobStateError: If the vendor rejects the update or is unreachable
        """
        url = self.url_template.format(job_id=job_id, username=config.username or "")
        credentials = self.credentials(config) if self.credentials else config.credentials
        payload = self.build_payload(state)

        try:
            async with create_client(
                proxy=config.proxy, credentials=credentials, transport=self._transport
            ) as client:
                if self.encoding == "json":
                    response = await client.put(url, json=payload)
                else:
                    response = await client.put(url, data=payload)
        except httpx.HTTPError as e:
            raise JobStateError(f"Could not reach {url}: {e}") from e

        self.check(response)
        logger.info("Job state sent", job_id=job_id, success=state.success)
