import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

import aiohttp
import jwt

from config import config


logger = logging.getLogger(__name__)

API_VERSION = "2"


class QuoineAPIError(Exception):
    def __init__(self, status: int, message: Optional[str], body: str, path: str = ""):
        self.status = status
        self.message = message
        self.body = body
        self.path = path
        text = f"Quoine API error (status={status}, path={path}, message={message})"
        super().__init__(text)


def build_auth_token(path: str, token_id: str, token_secret: str, nonce: Optional[int] = None) -> str:
    """Sign ``{path, nonce, token_id}`` as an HS256 JWT for the X-Quoine-Auth header."""
    payload = {
        "path": path,
        "nonce": str(nonce if nonce is not None else int(time.time() * 1000)),
        "token_id": token_id,
    }
    token = jwt.encode(payload, token_secret, algorithm="HS256")
    # PyJWT < 2 returned bytes
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


class QuoineRESTClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token_id: Optional[str] = None,
        token_secret: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        exchange_cfg = config.section("exchange")
        self.base_url = (base_url or exchange_cfg.get("base_url") or "https://api.quoine.com").rstrip("/")
        self.token_id: Optional[str] = token_id or exchange_cfg.get("token_id")
        self.token_secret: Optional[str] = token_secret or exchange_cfg.get("token_secret")
        self.timeout_s = float(timeout_s or exchange_cfg.get("request_timeout_s", 15))
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    def _auth_headers(self, path: str) -> Dict[str, str]:
        if not self.token_id or not self.token_secret:
            raise RuntimeError("Quoine token id/secret required for authenticated request")
        return {
            "X-Quoine-API-Version": API_VERSION,
            "X-Quoine-Auth": build_auth_token(path, self.token_id, self.token_secret),
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        signed: bool = True,
    ) -> Any:
        logger.info("Quoine API: %s %s", method.upper(), path)
        session = await self._get_session()
        if signed:
            headers = self._auth_headers(path)
        else:
            headers = {"X-Quoine-API-Version": API_VERSION}
        data = json.dumps(body) if body is not None else None

        async with session.request(
            method.upper(),
            f"{self.base_url}{path}",
            data=data,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_s),
        ) as resp:
            text = await resp.text()
            try:
                payload: Any = json.loads(text) if text else None
            except ValueError:
                payload = text

            if resp.status >= 400:
                message = None
                if isinstance(payload, dict):
                    message = payload.get("message") or payload.get("errors")
                    if message is not None and not isinstance(message, str):
                        message = json.dumps(message)
                raise QuoineAPIError(resp.status, message, text, path)

            return payload

    async def get(self, path: str, signed: bool = True) -> Any:
        return await self._request("GET", path, signed=signed)

    async def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", path, body=body)

    async def put(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("PUT", path, body=body)
