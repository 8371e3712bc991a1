import requests
from typing import List, Optional, Sequence
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from ..config import settings
from ..errors import SettlementError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class PendingConfirmation(Exception):
    """Transaction submitted but not yet confirmed."""


class SettlementClient:
    """
    Interface to the on-chain program that holds stakes.

    Both operations are idempotent from the caller's side: re-submitting the
    same accounts or finalizing twice is safe. Implementations block until
    the transaction is confirmed and raise SettlementError otherwise.
    """

    def record_completions(self, challenge_ref: str, accounts: Sequence[str]) -> str:
        raise NotImplementedError

    def finalize(self, challenge_ref: str) -> str:
        raise NotImplementedError


class SettlementGatewayClient(SettlementClient):
    """Talks to the signing gateway that holds the admin key and relays program instructions."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.settlement_url).rstrip("/")
        self.session = session or requests.Session()
        token = token if token is not None else settings.settlement_token
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _post(self, path: str, payload: dict) -> str:
        try:
            response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=(3, 30))
            response.raise_for_status()
            signature = response.json()["signature"]
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            logger.error(f"Settlement request {path} failed: {e}")
            raise SettlementError(f"Settlement request {path} failed: {e}") from e
        logger.debug(f"Transaction submitted: {signature}")
        return signature

    @retry(
        retry=retry_if_exception_type(PendingConfirmation),
        stop=stop_after_attempt(settings.settlement_confirm_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    def _wait_for_confirmation(self, signature: str) -> None:
        try:
            response = self.session.get(f"{self.base_url}/transactions/{signature}", timeout=(3, 10))
            response.raise_for_status()
            status = response.json().get("status")
        except (requests.exceptions.RequestException, ValueError) as e:
            raise PendingConfirmation(f"Could not fetch status for {signature}: {e}") from e

        if status in ("confirmed", "finalized"):
            return
        if status == "failed":
            raise SettlementError(f"Transaction {signature} failed")
        raise PendingConfirmation(f"Transaction {signature} is {status}")

    def confirm(self, signature: str) -> str:
        try:
            self._wait_for_confirmation(signature)
        except PendingConfirmation as e:
            raise SettlementError(f"Transaction {signature} was not confirmed: {e}") from e
        logger.debug(f"Transaction confirmed: {signature}")
        return signature

    def record_completions(self, challenge_ref: str, accounts: Sequence[str]) -> str:
        accounts: List[str] = list(accounts)
        signature = self._post(f"/challenges/{challenge_ref}/completions", {"accounts": accounts})
        return self.confirm(signature)

    def finalize(self, challenge_ref: str) -> str:
        signature = self._post(f"/challenges/{challenge_ref}/finalize", {})
        return self.confirm(signature)
