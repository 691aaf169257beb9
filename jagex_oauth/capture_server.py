"""
Ephemeral loopback server for the consent (Step 2) redirect

The hybrid grant returns the id_token in the URL fragment, which a browser
never sends to a server. The exchange is therefore exactly two requests:

1. Any request: answered with a page whose script reads ``location.hash``,
   appends the CSRF token it was served with and POSTs everything back.
2. ``POST /jws``: the forwarded fragment. CSRF and state are checked first,
   then the nonce of any id_token, then the error field and finally that an
   id_token was sent at all.

Anything else fails the attempt. A single deadline covers both requests.
"""
import asyncio
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs

from aiohttp import web

from .authorization import consent_redirect_uri
from .constants import (
    CAPTURE_BACKLOG,
    CAPTURE_CSRF_FIELD,
    CAPTURE_HOST,
    CAPTURE_MAX_BODY_BYTES,
    CAPTURE_POST_PATH,
    DEFAULT_LOGIN_TIMEOUT,
)
from .errors import AuthError, ProviderError, SecurityError
from .jwt_utils import parse_jwt_claim
from .pkce import values_match

logger = logging.getLogger(__name__)

RESPONSE_HEADERS = {
    "Cache-Control": "no-store",
    "Referrer-Policy": "no-referrer",
}

FORWARDER_PAGE = Template("""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<link rel="icon" href="data:,">
<title>Jagex Login</title>
</head>
<body>
<h1 id="title">Completing login...</h1>
<p id="message">Please wait.</p>
<script>
(function () {
  var title = document.getElementById("title");
  var message = document.getElementById("message");
  function show(heading, text) {
    title.textContent = heading;
    message.textContent = text;
  }
  var fragment = window.location.hash.substring(1);
  if (!fragment) {
    show("Login Failed", "No login data was received. You can close this window and try again.");
    return;
  }
  var params = new URLSearchParams(fragment);
  params.append("$csrf_field", "$csrf_token");
  history.replaceState(null, "", window.location.pathname);
  fetch("$post_path", {
    method: "POST",
    headers: {"Content-Type": "application/x-www-form-urlencoded"},
    body: params.toString()
  }).then(function (response) {
    if (response.ok) {
      show("Login Successful", "You can close this window and return to the launcher.");
    } else {
      show("Login Failed", "The login could not be completed. You can close this window and try again.");
    }
  }).catch(function () {
    show("Login Failed", "The launcher stopped waiting for this login. You can close this window.");
  });
})();
</script>
</body>
</html>
""")


class ConsentStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class ConsentResult:
    """Outcome of the consent capture

    Attributes:
        status: SUCCESS, ERROR or CANCELLED
        id_token: Consent id_token (SUCCESS)
        code: Authorization code delivered alongside the id_token, if any
        error: Failure reason (ERROR)
    """
    status: ConsentStatus
    id_token: Optional[str] = field(default=None, repr=False)
    code: Optional[str] = field(default=None, repr=False)
    error: Optional[AuthError] = None

    @classmethod
    def success(cls, id_token: str, code: Optional[str] = None) -> "ConsentResult":
        return cls(status=ConsentStatus.SUCCESS, id_token=id_token, code=code)

    @classmethod
    def failure(cls, error: AuthError) -> "ConsentResult":
        return cls(status=ConsentStatus.ERROR, error=error)

    @classmethod
    def cancelled(cls) -> "ConsentResult":
        return cls(status=ConsentStatus.CANCELLED)


class ConsentCaptureServer:
    """Two-request loopback listener for one consent attempt"""

    def __init__(
        self,
        expected_state: str,
        expected_nonce: str,
        csrf_token: str,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
        max_body_bytes: int = CAPTURE_MAX_BODY_BYTES,
    ):
        self._expected_state = expected_state
        self._expected_nonce = expected_nonce
        self._csrf_token: Optional[str] = csrf_token
        self.timeout = timeout
        self.max_body_bytes = max_body_bytes
        self.port: Optional[int] = None
        self.requests_seen = 0
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._dispatch)
        self._runner: Optional[web.AppRunner] = None
        self._socket: Optional[socket.socket] = None
        self._result: Optional[asyncio.Future] = None
        self._deadline: Optional[float] = None
        self._closed = False

    @property
    def redirect_uri(self) -> str:
        if self.port is None:
            raise RuntimeError("Capture server not started")
        return consent_redirect_uri(self.port)

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> int:
        """
        Bind 127.0.0.1 on an OS-assigned port and start serving.

        Returns:
            int: The bound port
        """
        if self._result is not None:
            raise RuntimeError("Capture server already started")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._deadline = loop.time() + self.timeout

        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._socket.bind((CAPTURE_HOST, 0))
            self._socket.listen(CAPTURE_BACKLOG)
            self._socket.setblocking(False)
            self.port = self._socket.getsockname()[1]

            runner = web.AppRunner(self.app, access_log=None)
            await runner.setup()
            self._runner = runner
            site = web.SockSite(runner, self._socket, backlog=CAPTURE_BACKLOG)
            await site.start()
        except BaseException:
            await self.stop()
            raise

        logger.debug(f"Capture server listening on {CAPTURE_HOST}:{self.port}")
        return self.port

    async def wait_for_consent(self) -> ConsentResult:
        """
        Wait for the forwarded fragment, then shut the server down.

        Returns:
            ConsentResult; CANCELLED when the deadline passes first
        """
        if self._result is None:
            raise RuntimeError("Capture server not started")

        remaining = max(0.0, self._deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=remaining)
        except asyncio.TimeoutError:
            logger.info(f"Consent redirect not completed within {self.timeout:.0f} seconds")
            self._resolve(ConsentResult.cancelled())
            return self._result.result()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Close the listener; later calls do nothing"""
        if self._closed:
            return
        self._closed = True
        self._resolve(ConsentResult.cancelled())
        try:
            if self._runner is not None:
                await self._runner.cleanup()
        finally:
            if self._socket is not None and self._socket.fileno() != -1:
                self._socket.close()
            logger.debug("Capture server closed")

    async def __aenter__(self) -> "ConsentCaptureServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _resolve(self, result: ConsentResult) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_result(result)

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        self.requests_seen += 1

        if self._result is None or self._result.done() or self.requests_seen > 2:
            return self._json_response({"error": "capture_closed"}, status=400)

        if self.requests_seen == 1:
            return self._serve_forwarder()

        try:
            status, payload, result = await self._check_forwarded(request)
        except Exception as e:
            logger.error(f"Error in capture handler: {type(e).__name__}")
            status, payload = 500, {"error": "internal_error"}
            result = ConsentResult.failure(AuthError("Capture server could not process the redirect"))

        # The waiter closes the server as soon as the result is set, so the
        # reply goes out first
        response = self._json_response(payload, status=status)
        try:
            await response.prepare(request)
            await response.write_eof()
        finally:
            self._resolve(result)
        return response

    def _serve_forwarder(self) -> web.Response:
        page = FORWARDER_PAGE.substitute(
            csrf_field=CAPTURE_CSRF_FIELD,
            csrf_token=self._csrf_token or "",
            post_path=CAPTURE_POST_PATH,
        )
        response = web.Response(text=page, content_type="text/html", headers=RESPONSE_HEADERS)
        response.force_close()
        logger.debug("Served consent forwarder page")
        return response

    async def _check_forwarded(self, request: web.Request) -> Tuple[int, Dict[str, str], ConsentResult]:
        """Validate the forwarded fragment; returns (status, reply, result)"""
        if request.method != "POST" or request.path != CAPTURE_POST_PATH:
            return self._rejection(
                400,
                "unexpected_request",
                SecurityError("capture_request", f"Unexpected {request.method} request reached the capture server"),
            )

        body = await self._read_body(request)
        if body is None:
            return self._rejection(
                400,
                "invalid_body",
                SecurityError("capture_request", "Forwarded payload was empty or too large"),
            )

        fields = self._parse_form(body)

        # Single use: the served token is spent by the first POST
        expected_csrf, self._csrf_token = self._csrf_token, None
        if not values_match(fields.get(CAPTURE_CSRF_FIELD), expected_csrf):
            return self._rejection(403, "csrf_mismatch", SecurityError("step2_csrf"))

        if not values_match(fields.get("state"), self._expected_state):
            return self._rejection(400, "state_mismatch", SecurityError("step2_state"))

        # Any id_token present is bound to this attempt, even beside an error field
        id_token = fields.get("id_token")
        if id_token:
            nonce = parse_jwt_claim(id_token, "nonce")
            if not isinstance(nonce, str) or not values_match(nonce, self._expected_nonce):
                return self._rejection(400, "nonce_mismatch", SecurityError("step2_nonce"))

        if fields.get("error"):
            return self._rejection(
                400,
                "provider_error",
                ProviderError(fields["error"], fields.get("error_description")),
            )

        if not id_token:
            return self._rejection(
                400,
                "missing_id_token",
                ProviderError("missing_id_token", "Consent redirect did not include an id_token"),
            )

        logger.debug("Consent redirect captured")
        return 200, {"status": "ok"}, ConsentResult.success(id_token, fields.get("code"))

    async def _read_body(self, request: web.Request) -> Optional[bytes]:
        if request.content_length is not None and request.content_length > self.max_body_bytes:
            return None

        chunks = []
        total = 0
        async for chunk in request.content.iter_chunked(8192):
            total += len(chunk)
            if total > self.max_body_bytes:
                return None
            chunks.append(chunk)

        if total == 0:
            return None
        return b"".join(chunks)

    @staticmethod
    def _parse_form(body: bytes) -> Dict[str, str]:
        text = body.decode("utf-8", errors="replace")
        return {key: values[0] for key, values in parse_qs(text, keep_blank_values=True).items()}

    @staticmethod
    def _rejection(status: int, error_code: str, error: AuthError) -> Tuple[int, Dict[str, str], ConsentResult]:
        logger.warning(f"Consent capture rejected: {error_code}")
        return status, {"error": error_code}, ConsentResult.failure(error)

    @staticmethod
    def _json_response(payload: Dict[str, str], status: int = 200) -> web.Response:
        response = web.json_response(payload, status=status, headers=RESPONSE_HEADERS)
        response.force_close()
        return response


async def start_capture_server(
    expected_state: str,
    expected_nonce: str,
    csrf_token: str,
    timeout: float = DEFAULT_LOGIN_TIMEOUT,
) -> ConsentCaptureServer:
    """
    Start a consent capture server.

    Args:
        expected_state: Step 2 state value
        expected_nonce: Step 2 nonce
        csrf_token: Token embedded in the forwarder page
        timeout: Deadline for the whole two-request exchange

    Returns:
        ConsentCaptureServer instance, already listening
    """
    server = ConsentCaptureServer(expected_state, expected_nonce, csrf_token, timeout=timeout)
    await server.start()
    return server
