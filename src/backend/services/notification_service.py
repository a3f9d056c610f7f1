"""
Notification Service

Announces final results when an election closes and hands email
verification codes to the mail relay. Results are always logged; when
RESULTS_WEBHOOK_URL is configured they are also POSTed as JSON to that URL.

Delivery is best-effort: a failed webhook is logged and reported to the
caller, it never undoes the close.
"""

from typing import Optional

import httpx
import structlog

from core.config import settings
from schemas.results import ElectionResults

logger = structlog.get_logger(__name__)


class ResultsNotifier:
    """Publishes final election results to interested parties."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.RESULTS_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.RESULTS_WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def results_published(self, results: ElectionResults) -> bool:
        """
        Publish results.

        Returns:
            True if every configured channel accepted the results
        """
        logger.info(
            "results_published",
            election_id=results.election_id,
            total_votes=results.total_votes,
            turnout=results.turnout,
            positions=len(results.positions),
            ties=[p.position_id for p in results.positions if p.tie_at_cutoff],
        )

        if not self.is_configured:
            return True

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"event": "results_published", "results": results.model_dump(mode="json")},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "results_webhook_rejected",
                election_id=results.election_id,
                status_code=e.response.status_code,
            )
            return False
        except httpx.HTTPError as e:
            logger.error(
                "results_webhook_failed",
                election_id=results.election_id,
                error=str(e),
            )
            return False

        logger.info("results_webhook_delivered", election_id=results.election_id)
        return True


class VerificationCodeSender:
    """
    Hands verification codes to the mail relay.

    The code itself is never logged. Without MAIL_WEBHOOK_URL nothing can be
    delivered and the attempt is logged as a warning.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.MAIL_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.MAIL_WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def send_code(self, email: str, code: str, expires_in_minutes: int) -> bool:
        """Ask the relay to mail a code. Returns True if the relay accepted it."""
        if not self.is_configured:
            logger.warning("verification_code_not_delivered", reason="mail_relay_not_configured")
            return False

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json={
                        "event": "verification_code",
                        "to": email,
                        "code": code,
                        "expires_in_minutes": expires_in_minutes,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("mail_relay_rejected", status_code=e.response.status_code)
            return False
        except httpx.HTTPError as e:
            logger.error("mail_relay_failed", error=str(e))
            return False

        logger.info("verification_code_sent")
        return True
