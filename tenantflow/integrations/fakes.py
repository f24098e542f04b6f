"""Test doubles for the billing gateway and notifier.

Both are deterministic and instant. They record every call so tests can
assert on side effects (and read the raw verification token a real user
would receive by email), and can be switched into a failing mode.
"""

import uuid
from dataclasses import dataclass

from tenantflow.core.exceptions import DeliveryError, GatewayError


class BillingGatewayFake:
    """Deduplicates by idempotency key like the real gateway."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.references: dict[str, str] = {}
        self.calls: list[tuple[uuid.UUID, str, str]] = []

    async def provision(self, tenant_id: uuid.UUID, plan: str, idempotency_key: str) -> str:
        self.calls.append((tenant_id, plan, idempotency_key))
        if self.fail:
            raise GatewayError("Card declined")
        if idempotency_key not in self.references:
            self.references[idempotency_key] = f"cus_fake_{uuid.uuid4().hex[:14]}"
        return self.references[idempotency_key]

    @property
    def provisioned_count(self) -> int:
        return len(self.references)


@dataclass
class SentMessage:
    kind: str
    email: str
    first_name: str
    tenant_name: str
    token: str | None = None
    onboarding_id: uuid.UUID | None = None


class NotifierFake:
    def __init__(self, fail_verification: bool = False, fail_welcome: bool = False):
        self.fail_verification = fail_verification
        self.fail_welcome = fail_welcome
        self.sent: list[SentMessage] = []

    async def send_verification(
        self,
        email: str,
        first_name: str,
        tenant_name: str,
        token: str,
        onboarding_id: uuid.UUID,
    ) -> None:
        if self.fail_verification:
            raise DeliveryError("SMTP relay unavailable")
        self.sent.append(SentMessage("verification", email, first_name, tenant_name, token, onboarding_id))

    async def send_welcome(self, email: str, first_name: str, tenant_name: str) -> None:
        if self.fail_welcome:
            raise DeliveryError("SMTP relay unavailable")
        self.sent.append(SentMessage("welcome", email, first_name, tenant_name))

    def of_kind(self, kind: str) -> list[SentMessage]:
        return [m for m in self.sent if m.kind == kind]

    def last_token(self, onboarding_id: uuid.UUID | None = None) -> str | None:
        for message in reversed(self.sent):
            if message.kind == "verification" and (onboarding_id is None or message.onboarding_id == onboarding_id):
                return message.token
        return None
