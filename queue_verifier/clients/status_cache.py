"""Status cache client — read the server-held verification snapshot.

The server writes the snapshot when a probe job finishes; the client
only reads it on startup.  Any failure to fetch or decode it is raised
as ``CacheUnavailableError`` so the coordinator can fall back to the
"not tested" state without surfacing an error.
"""

from __future__ import annotations

import logging

from queue_verifier.clients.base import ApiClient
from queue_verifier.core.constants import CACHED_STATUS_PATH
from queue_verifier.core.exceptions import CacheUnavailableError, VerifierError
from queue_verifier.models.cache import CachedStatus
from queue_verifier.models.payloads import CachedStatusPayload, parse_payload

logger = logging.getLogger("queue_verifier.clients.status_cache")


class StatusCacheClient(ApiClient):
    """Client for ``GET /verify/cached-status``."""

    async def fetch(self) -> CachedStatus | None:
        """Return the cached snapshot, or ``None`` when nothing is cached.

        Raises:
            CacheUnavailableError: If the request fails or the body does
                not match the expected schema.
        """
        try:
            raw = await self.request_json("GET", CACHED_STATUS_PATH, stage="cached_status")
            if not raw:
                return None
            payload = parse_payload(CachedStatusPayload, raw, stage="cached_status")
        except VerifierError as exc:
            logger.warning("cached status unavailable | error=%s", exc)
            raise CacheUnavailableError(f"Cached status unavailable: {exc}") from exc

        cached = CachedStatus.from_payload(payload)
        logger.debug(
            "cached status fetched | status=%s | job_id=%s",
            cached.raw_status if cached else None,
            cached.job_id if cached else None,
        )
        return cached
