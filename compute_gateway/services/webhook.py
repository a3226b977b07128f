"""
Completion callbacks.

POSTs the finished job's response as JSON, signed with
X-Signature = hex(HMAC-SHA256(secret, body)) over the exact body bytes sent.
Delivery is best-effort: failures are logged and never retried.
"""

import hashlib
import hmac
import time

import httpx
import structlog

from ..models.job import ComputeResponse

logger = structlog.get_logger()


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature of a request body, hex encoded."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class WebhookSender:
    """Signed webhook delivery."""

    def __init__(
        self,
        secret: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize webhook sender.

        Args:
            secret: Shared HMAC secret
            timeout: Request timeout in seconds
            client: Optional httpx AsyncClient for connection pooling
        """
        self.secret = secret
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, url: str, response: ComputeResponse) -> bool:
        """
        Deliver a job response to a callback URL.

        Returns:
            True if the receiver answered with a 2xx status
        """
        try:
            body = response.model_dump_json().encode()
            headers = {
                "Content-Type": "application/json",
                "X-Signature": sign_payload(self.secret, body),
                "X-Timestamp": str(int(time.time() * 1000)),
            }
            client = await self._get_client()
            reply = await client.post(url, content=body, headers=headers)
            reply.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Webhook rejected by receiver",
                url=url,
                job_id=response.job_id,
                status_code=e.response.status_code,
            )
            return False
        except Exception as e:
            # Callback URLs and results come from clients; InvalidURL and
            # serialization errors are not httpx.HTTPError
            logger.error(
                "Webhook delivery failed",
                url=url,
                job_id=response.job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("Webhook delivered", url=url, job_id=response.job_id)
        return True
