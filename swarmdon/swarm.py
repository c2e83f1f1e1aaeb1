"""Client for the Swarm (Foursquare v2) API.

Every failure, whether transport, HTTP status or an unexpected body, is
raised as UpstreamError so callers only deal with one exception type.
"""

from urllib.parse import urlencode

import httpx
import pydantic

from swarmdon.errors import UpstreamError
from swarmdon.models import SwarmCheckinDetail, SwarmUser

API_URL = "https://api.foursquare.com/v2"
AUTHENTICATE_URL = "https://foursquare.com/oauth2/authenticate"
ACCESS_TOKEN_URL = "https://foursquare.com/oauth2/access_token"
API_VERSION = "20220722"


class SwarmClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        client_id: str = "",
        client_secret: str = "",
        redirect_uri: str = "",
        timeout: float = 15,
    ):
        self._client = client
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    async def _get_json(self, url: str, params: dict) -> dict:
        try:
            resp = await self._client.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Swarm request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Swarm returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamError("Swarm returned an unexpected body")
        return data

    async def api(self, method: str, access_token: str, **params) -> dict:
        data = await self._get_json(
            f"{API_URL}{method}",
            {"v": API_VERSION, "oauth_token": access_token, **params},
        )
        response = data.get("response")
        if not isinstance(response, dict):
            raise UpstreamError(f"unable to retrieve response for {method}")
        return response

    async def get_me(self, access_token: str) -> SwarmUser:
        response = await self.api("/users/self", access_token)
        try:
            return SwarmUser.model_validate(response["user"])
        except (KeyError, pydantic.ValidationError) as e:
            raise UpstreamError(f"unable to retrieve user info from Swarm: {e}") from e

    async def get_checkin_details(
        self, access_token: str, checkin_id: str
    ) -> SwarmCheckinDetail:
        response = await self.api(f"/checkins/{checkin_id}", access_token)
        try:
            return SwarmCheckinDetail.model_validate(response["checkin"])
        except (KeyError, pydantic.ValidationError) as e:
            raise UpstreamError(
                f"response from Swarm does not contain checkin {checkin_id}: {e}"
            ) from e

    async def get_recent_checkins(self, access_token: str, limit: int) -> list[dict]:
        """Fetch the user's most recent checkins, newest first."""
        response = await self.api(
            "/users/self/checkins", access_token, limit=limit, sort="newestfirst"
        )
        items = response.get("checkins", {}).get("items")
        if not isinstance(items, list):
            raise UpstreamError("response from Swarm does not contain checkins")
        return items

    def get_authenticate_url(self) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
            }
        )
        return f"{AUTHENTICATE_URL}?{query}"

    async def get_access_token(self, code: str) -> str:
        data = await self._get_json(
            ACCESS_TOKEN_URL,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        token = data.get("access_token")
        if not token:
            raise UpstreamError("Swarm did not return an access token")
        return token
