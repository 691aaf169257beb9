import asyncio
import base64
import json
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from jagex_oauth.constants import ACCOUNTS_URL, LAUNCHER_CLIENT_ID, SESSIONS_URL, TOKEN_URL
from jagex_oauth.redirect_channel import PendingRedirectChannel

CSRF_PATTERN = re.compile(r'params\.append\("_csrf", "([A-Za-z0-9]*)"\)')


def _b64(data: Dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def make_jwt(claims: Dict[str, Any]) -> str:
    return f"{_b64({'alg': 'RS256', 'typ': 'JWT'})}.{_b64(claims)}.signature"


class FakeProvider:
    """Token endpoint and game session service behind an httpx.MockTransport"""

    def __init__(
        self,
        login_provider: Optional[str] = "jagex",
        characters: Optional[List[Dict[str, Any]]] = None,
        refresh_status: int = 200,
        exchange_status: int = 200,
        session_id: str = "abc123",
        error_body: Optional[Dict[str, Any]] = None,
    ):
        self.login_provider = login_provider
        self.characters = characters if characters is not None else [
            {"accountId": "1001", "displayName": "Zezima"},
        ]
        self.refresh_status = refresh_status
        self.exchange_status = exchange_status
        self.session_id = session_id
        self.error_body = error_body
        self.expected_code = "launcher-code"
        self.consent_id_token: Optional[str] = None
        self.token_requests: List[Dict[str, str]] = []
        self.session_requests: List[Dict[str, Any]] = []
        self.account_requests = 0

    def launcher_id_token(self) -> str:
        claims = {"sub": "user-1", "exp": int(time.time()) + 3600}
        if self.login_provider is not None:
            claims["login_provider"] = self.login_provider
        return make_jwt(claims)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == TOKEN_URL:
            return self._token(request)
        if url == SESSIONS_URL:
            return self._session(request)
        if url == ACCOUNTS_URL:
            return self._accounts(request)
        return httpx.Response(404, json={"error": "not_found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}
        self.token_requests.append(form)
        assert form["client_id"] == LAUNCHER_CLIENT_ID

        if form["grant_type"] == "authorization_code":
            if self.exchange_status != 200:
                body = self.error_body or {"error": "invalid_grant", "error_description": f"code={form.get('code')} was already used"}
                return httpx.Response(self.exchange_status, json=body)
            if form.get("code") != self.expected_code or not form.get("code_verifier"):
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": "launcher-access",
                    "refresh_token": "launcher-refresh",
                    "id_token": self.launcher_id_token(),
                    "expires_in": 3600,
                },
            )

        if self.refresh_status != 200:
            return httpx.Response(self.refresh_status, json=self.error_body or {"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "refreshed-access", "expires_in": 1800})

    def _session(self, request: httpx.Request) -> httpx.Response:
        assert "authorization" not in request.headers
        body = json.loads(request.content)
        self.session_requests.append(body)
        if self.consent_id_token is not None and body.get("idToken") != self.consent_id_token:
            return httpx.Response(401, json={"error": "invalid_token"})
        return httpx.Response(200, json={"sessionId": self.session_id})

    def _accounts(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == f"Bearer {self.session_id}"
        self.account_requests += 1
        return httpx.Response(200, json=self.characters)


class FakeBrowser:
    """Stands in for the user's browser during a login attempt

    The launcher step is answered through the redirect channel. The consent
    step loads the capture server page and forwards the fragment the way the
    page script does.
    """

    def __init__(
        self,
        channel: PendingRedirectChannel,
        provider: FakeProvider,
        step1_state: Optional[str] = None,
        step2_state: Optional[str] = None,
        step2_nonce: Optional[str] = None,
        answer_launcher: bool = True,
    ):
        self.channel = channel
        self.provider = provider
        self.step1_state = step1_state
        self.step2_state = step2_state
        self.step2_nonce = step2_nonce
        self.answer_launcher = answer_launcher
        self.opened: List[str] = []
        self.consent_status: Optional[int] = None
        self._tasks: List[asyncio.Task] = []

    def __call__(self, url: str) -> None:
        self.opened.append(url)
        params = {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
        if params["client_id"] == LAUNCHER_CLIENT_ID:
            if self.answer_launcher:
                state = self.step1_state or params["state"]
                self.channel.deliver(f"jagex:code={self.provider.expected_code}&state={state}&intent=social_auth")
            return
        self._tasks.append(asyncio.ensure_future(self._consent(params)))

    async def _consent(self, params: Dict[str, str]) -> None:
        port = urlparse(params["redirect_uri"]).port
        base = f"http://127.0.0.1:{port}"
        id_token = make_jwt({"sub": "user-1", "nonce": self.step2_nonce or params["nonce"]})
        self.provider.consent_id_token = id_token

        async with httpx.AsyncClient(trust_env=False) as client:
            page = await client.get(f"{base}/")
            csrf = CSRF_PATTERN.search(page.text).group(1)
            response = await client.post(
                f"{base}/jws",
                data={
                    "code": "consent-code",
                    "id_token": id_token,
                    "state": self.step2_state or params["state"],
                    "_csrf": csrf,
                },
            )
            self.consent_status = response.status_code

    async def finish(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks)
