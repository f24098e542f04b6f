"""Amazon SES-backed Notifier.

Email bodies are rendered from the Jinja2 templates next to this module.
boto3 is synchronous, so each send runs via asyncio.to_thread(); SES
throttling is retried with exponential backoff before giving up.
"""

import asyncio
import uuid
from pathlib import Path
from urllib.parse import urlencode

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, FileSystemLoader
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from tenantflow.core.exceptions import DeliveryError

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

_THROTTLING_CODES = {"Throttling", "ThrottlingException", "TooManyRequestsException"}


def _is_throttled(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and exc.response.get("Error", {}).get("Code") in _THROTTLING_CODES


class SesNotifier:
    def __init__(
        self,
        sender: str,
        frontend_url: str,
        verification_path: str,
        region: str = "us-east-1",
        token_ttl_hours: int = 24,
    ):
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self.verification_path = verification_path
        self.region = region
        self.token_ttl_hours = token_ttl_hours
        self._client = None
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=False,  # plain-text bodies
            keep_trailing_newline=True,
        )

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("ses", region_name=self.region)
        return self._client

    def verification_link(self, token: str, onboarding_id: uuid.UUID) -> str:
        query = urlencode({"onboarding_id": str(onboarding_id), "token": token})
        return f"{self.frontend_url}{self.verification_path}?{query}"

    def render(self, template_name: str, **context) -> str:
        return self.env.get_template(template_name).render(**context)

    @retry(
        retry=retry_if_exception(_is_throttled),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
        before_sleep=lambda rs: logger.warning(
            "ses_throttled_retrying",
            attempt=rs.attempt_number,
            sleep_seconds=rs.next_action.sleep,
        ),
    )
    async def _send(self, to: str, subject: str, body: str) -> None:
        await asyncio.to_thread(
            self._get_client().send_email,
            Source=self.sender,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
            },
        )

    async def _deliver(self, kind: str, to: str, subject: str, body: str) -> None:
        try:
            await self._send(to, subject, body)
        except (BotoCoreError, ClientError) as e:
            logger.warning("email_delivery_failed", kind=kind, error=str(e))
            raise DeliveryError(f"SES rejected {kind} email: {e}") from e
        logger.info("email_sent", kind=kind)

    async def send_verification(
        self,
        email: str,
        first_name: str,
        tenant_name: str,
        token: str,
        onboarding_id: uuid.UUID,
    ) -> None:
        body = self.render(
            "verification.txt.j2",
            first_name=first_name,
            tenant_name=tenant_name,
            verification_link=self.verification_link(token, onboarding_id),
            ttl_hours=self.token_ttl_hours,
        )
        await self._deliver("verification", email, f"Verify your email for {tenant_name}", body)

    async def send_welcome(self, email: str, first_name: str, tenant_name: str) -> None:
        body = self.render(
            "welcome.txt.j2",
            first_name=first_name,
            tenant_name=tenant_name,
            frontend_url=self.frontend_url,
        )
        await self._deliver("welcome", email, f"Welcome to {tenant_name}", body)
