"""Client for the subset of the Mastodon API swarmdon uses.

Which is registering the app on an instance, completing the OAuth flow,
and posting a status.
"""

from urllib.parse import urlencode

import httpx

from swarmdon.errors import UpstreamError
from swarmdon.models import AppRegistration, MastodonCredential

SCOPES = "write:statuses read:accounts"


class MastodonClient:
    def __init__(self, client: httpx.AsyncClient, timeout: float = 15):
        self._client = client
        self.timeout = timeout

    async def _request(
        self, method: str, url: str, token: str | None = None, **kwargs
    ) -> dict:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            resp = await self._client.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Mastodon request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Mastodon returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamError("Mastodon returned an unexpected body")
        return data

    async def register(
        self, instance_url: str, client_name: str, redirect_uri: str
    ) -> AppRegistration:
        data = await self._request(
            "POST",
            f"{instance_url}/api/v1/apps",
            data={
                "client_name": client_name,
                "redirect_uris": redirect_uri,
                "scopes": SCOPES,
            },
        )
        try:
            return AppRegistration(
                base=instance_url,
                client_id=data["client_id"],
                client_secret=data["client_secret"],
                redirect_uri=redirect_uri,
                scopes=SCOPES,
            )
        except KeyError as e:
            raise UpstreamError(f"app registration response is missing {e}") from e

    @staticmethod
    def authorize_url(registration: AppRegistration) -> str:
        query = urlencode(
            {
                "client_id": registration.client_id,
                "redirect_uri": registration.redirect_uri,
                "response_type": "code",
                "scope": registration.scopes,
            }
        )
        return f"{registration.base}/oauth/authorize?{query}"

    async def complete(
        self, registration: AppRegistration, code: str
    ) -> MastodonCredential:
        data = await self._request(
            "POST",
            f"{registration.base}/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": registration.client_id,
                "client_secret": registration.client_secret,
                "redirect_uri": registration.redirect_uri,
                "scope": registration.scopes,
            },
        )
        token = data.get("access_token")
        if not token:
            raise UpstreamError("Mastodon did not return an access token")
        return MastodonCredential(
            base=registration.base,
            client_id=registration.client_id,
            client_secret=registration.client_secret,
            redirect=registration.redirect_uri,
            token=token,
        )

    async def verify_credentials(self, credential: MastodonCredential) -> str:
        """Return the Mastodon account id the credential belongs to."""
        data = await self._request(
            "GET",
            f"{credential.base}/api/v1/accounts/verify_credentials",
            token=credential.token,
        )
        if "id" not in data:
            raise UpstreamError("verify_credentials response has no account id")
        return str(data["id"])

    async def post_status(self, credential: MastodonCredential, status: str) -> str:
        """Publish a status and return its id."""
        data = await self._request(
            "POST",
            f"{credential.base}/api/v1/statuses",
            token=credential.token,
            data={"status": status},
        )
        return str(data.get("id", ""))
