"""
Bot-challenge verification for new submissions.

The challenge is consulted before admitting a first observation, never
before an update (holding an update token already proves a prior pass).

Verification fails open: when the challenge service cannot be reached
or answers with something unusable, the submission is allowed and the
outage is logged and counted. Only a definitive negative answer rejects.
"""

import logging
from abc import ABC, abstractmethod

import requests

from errors import VerificationUnavailableError
from monitoring import metrics

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
CONNECT_TIMEOUT = 2.0


class BotVerifier(ABC):
    """Answers whether a challenge token belongs to a human."""

    @abstractmethod
    def check(self, token: str | None, remote_ip: str | None = None) -> bool:
        """
        Evaluate a challenge token.

        Returns:
            True for a pass, False for a definitive failure

        Raises:
            VerificationUnavailableError: If the check could not be evaluated
        """
        pass

    def verify(self, token: str | None, remote_ip: str | None = None) -> bool:
        """Fail-open wrapper around check()."""
        try:
            return self.check(token, remote_ip)
        except VerificationUnavailableError as e:
            metrics.increment("verification_unavailable_total")
            logger.warning(
                "Bot verification unavailable, allowing submission",
                extra={"verifier": self.__class__.__name__, "reason": e.message},
            )
            return True


class AllowAllVerifier(BotVerifier):
    """Verifier used when no challenge secret is configured."""

    def check(self, token: str | None, remote_ip: str | None = None) -> bool:
        return True


class TurnstileVerifier(BotVerifier):
    """
    Cloudflare Turnstile siteverify client.

    Args:
        secret_key: Turnstile secret
        timeout: Read timeout in seconds for the siteverify call
        session: Optional requests.Session (injected in tests)
    """

    def __init__(
        self,
        secret_key: str,
        timeout: float = 3.0,
        session: requests.Session | None = None,
        verify_url: str = TURNSTILE_VERIFY_URL,
    ):
        if not secret_key:
            raise ValueError("Turnstile secret key cannot be empty")
        self.secret_key = secret_key
        self.timeout = timeout
        self.verify_url = verify_url
        self.session = session or requests.Session()

    def check(self, token: str | None, remote_ip: str | None = None) -> bool:
        if not token:
            return False

        payload = {"secret": self.secret_key, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            response = self.session.post(
                self.verify_url,
                data=payload,
                timeout=(CONNECT_TIMEOUT, self.timeout),
            )
        except requests.exceptions.Timeout as e:
            raise VerificationUnavailableError("Turnstile request timed out") from e
        except requests.RequestException as e:
            raise VerificationUnavailableError(f"Turnstile request failed: {e}") from e

        if not response.ok:
            raise VerificationUnavailableError(f"Turnstile returned HTTP {response.status_code}")

        try:
            result = response.json()
        except ValueError as e:
            raise VerificationUnavailableError("Turnstile returned malformed JSON") from e

        if not isinstance(result, dict) or not isinstance(result.get("success"), bool):
            raise VerificationUnavailableError("Turnstile response missing 'success'")

        if not result["success"]:
            logger.warning(
                "Bot challenge rejected",
                extra={"error_codes": result.get("error-codes", [])},
            )
        return result["success"]


def build_verifier(secret_key: str, timeout: float = 3.0) -> BotVerifier:
    """TurnstileVerifier when a secret is configured, AllowAllVerifier otherwise."""
    if secret_key:
        return TurnstileVerifier(secret_key, timeout=timeout)
    logger.info("TURNSTILE_SECRET_KEY not set, bot verification disabled")
    return AllowAllVerifier()
