"""
Writeathon API client for WeRead Sync Service.

Documentation: https://www.writeathon.cn
"""

import time
from typing import Optional, Dict, Any, Callable

import requests

from weread_sync.api.base import BaseClient, APIError, RetryPolicy
from weread_sync.config import DestinationCredentials
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

WRITEATHON_API_URL = "https://api.writeathon.cn"

# The card API allows 30 requests per second; stay well below it.
CARD_REQUEST_DELAY_SECONDS = 0.14


class WriteathonClient(BaseClient):
    """
    Client for the Writeathon REST API.
    """

    def __init__(
        self,
        base_url: str = WRITEATHON_API_URL,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None,
        card_delay_seconds: float = CARD_REQUEST_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(base_url, timeout=timeout, retry_policy=retry_policy, session=session)
        self.card_delay_seconds = card_delay_seconds
        self.sleep = sleep

    def _raise_for_error(self, status_code: int, data: Dict[str, Any]) -> None:
        if status_code >= 400 or data.get("success") is False:
            raise APIError(
                message=str(data.get("message") or data.get("error") or data),
                status_code=status_code,
                response_data=data,
            )

    @staticmethod
    def _headers(credentials: DestinationCredentials) -> Dict[str, str]:
        return {"x-writeathon-token": credentials.api_token}

    def get_user_info(self, credentials: DestinationCredentials) -> Optional[Dict[str, Any]]:
        """
        Get the account behind the API token.

        Returns:
            The ``data`` object of ``/v1/me``, or None on failure
        """
        try:
            response = self.get("/v1/me", headers=self._headers(credentials))
        except APIError as e:
            logger.error("Failed to get Writeathon user info", error=str(e))
            return None

        return response.get("data") or None

    def validate_credentials(self, credentials: DestinationCredentials) -> bool:
        """
        Check that the token is valid and belongs to the configured user id.
        """
        if not credentials.is_complete:
            return False

        user = self.get_user_info(credentials)
        if not user:
            return False

        return str(user.get("id")) == str(credentials.user_id)

    def create_card(
        self,
        credentials: DestinationCredentials,
        title: str,
        content: str
    ) -> bool:
        """
        Create a card.

        Returns:
            True if the card was created, False once every attempt has failed
        """
        def _post_card() -> Dict[str, Any]:
            self.sleep(self.card_delay_seconds)
            return self._request(
                "POST",
                f"/v1/users/{credentials.user_id}/cards",
                json={"title": title, "content": content},
                headers=self._headers(credentials),
            )

        try:
            self.retry_policy.call(_post_card)
        except APIError as e:
            logger.error("Failed to create Writeathon card", title=title, error=str(e))
            return False

        logger.debug("Created Writeathon card", title=title)
        return True
