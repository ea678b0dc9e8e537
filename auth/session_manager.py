"""Resolution of the signed-in user from a Cognito session."""
import logging
import time
from typing import Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.errors import AuthenticationError

logger = logging.getLogger(__name__)


class SessionManager:
    """Holds the current session tokens and resolves the user id."""

    # Tokens this close to expiry are treated as expired.
    EXPIRY_SKEW_SECONDS = 30

    def __init__(
        self,
        client_id: Optional[str] = None,
        region_name: Optional[str] = None,
        client=None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the session manager.

        Args:
            client_id: Cognito app client id, required for token refresh
            region_name: AWS region of the user pool
            client: Pre-built cognito-idp client (created lazily otherwise)
            clock: Source of the current epoch time
        """
        self.client_id = client_id
        self.region_name = region_name
        self._client = client
        self._clock = clock
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._user_id: Optional[str] = None

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('cognito-idp', region_name=self.region_name)
        return self._client

    def set_session(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> None:
        """Store tokens returned by a sign-in."""
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._expires_at = self._clock() + expires_in if expires_in else None
        self._user_id = user_id

    def clear(self) -> None:
        self._access_token = None
        self._refresh_token = None
        self._expires_at = None
        self._user_id = None

    def _session_expired(self) -> bool:
        if self._expires_at is None:
            return False
        return self._clock() >= self._expires_at - self.EXPIRY_SKEW_SECONDS

    def current_user_id(self) -> Optional[str]:
        """
        Resolve the signed-in user.

        Tries the cached session, then a get_user call with the access
        token, then a refresh of the session.

        Returns:
            The user id, or None when no session can be resolved
        """
        try:
            return self.require_user_id()
        except AuthenticationError as e:
            logger.info(f"No authenticated user: {e}")
            return None

    def require_user_id(self) -> str:
        """Same as current_user_id but raises AuthenticationError on failure."""
        if self._access_token and not self._session_expired():
            if self._user_id:
                return self._user_id

            user_id = self._fetch_user_id()
            if user_id:
                self._user_id = user_id
                return user_id

        if self._refresh_token and self._refresh_session():
            user_id = self._fetch_user_id()
            if user_id:
                self._user_id = user_id
                return user_id

        raise AuthenticationError("no resolvable user session")

    def _fetch_user_id(self) -> Optional[str]:
        try:
            response = self.client.get_user(AccessToken=self._access_token)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"get_user failed: {e}")
            return None

        for attribute in response.get('UserAttributes', []):
            if attribute.get('Name') == 'sub':
                return attribute.get('Value')
        return response.get('Username')

    def _refresh_session(self) -> bool:
        if not self.client_id:
            logger.warning("Cannot refresh session without a Cognito client id")
            return False

        logger.info("Refreshing session")
        try:
            response = self.client.initiate_auth(
                ClientId=self.client_id,
                AuthFlow='REFRESH_TOKEN_AUTH',
                AuthParameters={'REFRESH_TOKEN': self._refresh_token}
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'NotAuthorizedException':
                logger.warning("Refresh token rejected, clearing session")
                self.clear()
            else:
                logger.error(f"Session refresh failed: {e}")
            return False
        except BotoCoreError as e:
            logger.error(f"Session refresh failed: {e}")
            return False

        result = response.get('AuthenticationResult') or {}
        access_token = result.get('AccessToken')
        if not access_token:
            return False

        self._access_token = access_token
        expires_in = result.get('ExpiresIn')
        self._expires_at = self._clock() + expires_in if expires_in else None
        if result.get('RefreshToken'):
            self._refresh_token = result['RefreshToken']
        self._user_id = None
        return True
