"""Verification client — dispatch a probe job and check its status.

Wraps ``POST /verify/dispatch`` and ``GET /verify/status``.  Dispatch is
never retried here: a refused dispatch raises ``DispatchError`` carrying
the server's message, which the coordinator classifies and renders.
"""

from __future__ import annotations

import logging

from queue_verifier.clients.base import ApiClient
from queue_verifier.core.constants import DISPATCH_PATH, STATUS_PATH
from queue_verifier.core.exceptions import DispatchError
from queue_verifier.models.payloads import DispatchResponse, StatusResponse, parse_payload

logger = logging.getLogger("queue_verifier.clients.verification")


class VerificationClient(ApiClient):
    """Client for the probe-job endpoints."""

    async def dispatch(self) -> str:
        """Enqueue a probe job and return its id.

        Raises:
            DispatchError: If the server reports ``success: false`` or
                omits the job id.
            NetworkError, StatusRequestTimeoutError, ServerResponseError,
            ContractError: Propagated from the transport layer.
        """
        raw = await self.request_json("POST", DISPATCH_PATH, stage="dispatch", json={})
        response = parse_payload(DispatchResponse, raw if raw is not None else {}, stage="dispatch")

        if not response.success:
            msg = response.message or "Failed to dispatch test job"
            logger.error("dispatch refused | message=%s", msg)
            raise DispatchError(msg)

        if not response.job_id:
            msg = "Dispatch succeeded but no job id was returned"
            logger.error("dispatch refused | message=%s", msg)
            raise DispatchError(msg)

        logger.info("probe job dispatched | job_id=%s", response.job_id)
        return response.job_id

    async def check_status(self, job_id: str) -> StatusResponse:
        """Fetch the current status of *job_id*.  Safe to call repeatedly."""
        raw = await self.request_json(
            "GET",
            STATUS_PATH,
            stage="status",
            params={"job_id": job_id},
            correlation_id=job_id,
        )
        return parse_payload(StatusResponse, raw, stage="status")
