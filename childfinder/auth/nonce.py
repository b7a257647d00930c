"""
State/nonce storage for outstanding login requests.

Each login stores a (state, nonce, timestamp) entry that the callback must
consume. Entries expire after NONCE_LIFETIME seconds and at most
NONCE_MAX_AMOUNT are kept; the oldest are evicted first. Entries are single
use.

Two mechanisms:
- SessionNonceStore: a list of entries in the server-side session
- CookieNonceStore:  one AES-GCM encrypted cookie per entry
"""

import base64
import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from fastapi import Request
from starlette.responses import Response

from ..config import Settings
from ..sessions import ensure_session, get_session

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class NonceStore(Protocol):
    async def add(self, request: Request, response: Response, state: str, nonce: str) -> None: ...

    async def consume(self, request: Request, response: Response, state: str) -> Optional[str]: ...


# ============================================================================
# Session-based Storage
# ============================================================================

class SessionNonceStore:
    """Keep outstanding login requests in the user's session."""

    def __init__(self, settings: Settings, clock: Clock = time.time):
        self.lifetime = settings.NONCE_LIFETIME
        self.max_amount = settings.NONCE_MAX_AMOUNT
        self.session_key = f"oidc:{settings.CLIENT_ID}"
        self._clock = clock

    def _live(self, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        now = self._clock()
        return [e for e in entries if now - e.get("timestamp", 0) < self.lifetime]

    async def add(self, request: Request, response: Response, state: str, nonce: str) -> None:
        session = await ensure_session(request)
        entries = self._live(session.get(self.session_key, []))
        entries.append({"state": state, "nonce": nonce, "timestamp": self._clock()})

        if len(entries) > self.max_amount:
            evicted = len(entries) - self.max_amount
            entries = entries[evicted:]
            logger.info(f"Evicted {evicted} outstanding login request(s) over the cap")

        session.set(self.session_key, entries)

    async def consume(self, request: Request, response: Response, state: str) -> Optional[str]:
        session = get_session(request)
        if session is None:
            return None

        entries = self._live(session.get(self.session_key, []))
        match = next((e for e in entries if e.get("state") == state), None)
        if match is not None:
            entries.remove(match)
        session.set(self.session_key, entries)

        return match["nonce"] if match else None


# ============================================================================
# Cookie-based Storage
# ============================================================================

class CookieNonceStore:
    """
    Keep outstanding login requests in encrypted cookies.

    Cookie name: ``<prefix><timestamp_ms>.<state>``; value: base64url of a
    12-byte IV followed by the AES-GCM ciphertext of the JSON entry. The first
    configured key encrypts; all keys are tried when decrypting.
    """

    COOKIE_PREFIX = "oidc-nonce."

    def __init__(self, settings: Settings, clock: Clock = time.time):
        self.lifetime = settings.NONCE_LIFETIME
        self.max_amount = settings.NONCE_MAX_AMOUNT
        self.secure = settings.COOKIE_SECURE
        self.samesite = settings.cookie_samesite
        self._ciphers = [AESGCM(key) for key in settings.cookie_encryption_keys]
        self._clock = clock

    def _encrypt(self, payload: Dict[str, Any]) -> str:
        iv = os.urandom(12)
        ciphertext = self._ciphers[0].encrypt(iv, json.dumps(payload).encode("utf-8"), None)
        return base64.urlsafe_b64encode(iv + ciphertext).decode("ascii").rstrip("=")

    def _decrypt(self, value: str) -> Optional[Dict[str, Any]]:
        try:
            raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
        except ValueError:
            return None
        iv, ciphertext = raw[:12], raw[12:]
        for cipher in self._ciphers:
            try:
                return json.loads(cipher.decrypt(iv, ciphertext, None))
            except InvalidTag:
                continue
            except ValueError:
                return None
        return None

    def _outstanding(self, request: Request) -> List[Tuple[int, str]]:
        """(timestamp_ms, cookie name) of nonce cookies, oldest first."""
        found = []
        for name in request.cookies:
            if not name.startswith(self.COOKIE_PREFIX):
                continue
            stamp = name[len(self.COOKIE_PREFIX):].split(".", 1)[0]
            if stamp.isdigit():
                found.append((int(stamp), name))
        return sorted(found)

    def _delete(self, response: Response, name: str) -> None:
        response.delete_cookie(name, path="/", secure=self.secure, httponly=True, samesite=self.samesite)

    async def add(self, request: Request, response: Response, state: str, nonce: str) -> None:
        now = self._clock()
        live = []
        for stamp, name in self._outstanding(request):
            if now - stamp / 1000 >= self.lifetime:
                self._delete(response, name)
            else:
                live.append(name)

        # Make room for the new entry
        while live and len(live) >= self.max_amount:
            self._delete(response, live.pop(0))

        payload = {"state": state, "nonce": nonce, "timestamp": now}
        response.set_cookie(
            f"{self.COOKIE_PREFIX}{int(now * 1000)}.{state}",
            self._encrypt(payload),
            max_age=self.lifetime,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    async def consume(self, request: Request, response: Response, state: str) -> Optional[str]:
        for _, name in self._outstanding(request):
            if not name.endswith(f".{state}"):
                continue

            self._delete(response, name)
            payload = self._decrypt(request.cookies[name])
            if not payload or payload.get("state") != state:
                logger.warning("Undecryptable or tampered nonce cookie")
                return None
            if self._clock() - payload.get("timestamp", 0) >= self.lifetime:
                return None
            return payload.get("nonce")

        return None


def create_nonce_store(settings: Settings, clock: Clock = time.time) -> NonceStore:
    if settings.USE_COOKIE_INSTEAD_OF_SESSION:
        return CookieNonceStore(settings, clock)
    return SessionNonceStore(settings, clock)
