"""HTTP agent: signs and sends canister requests for one identity.

An agent is bound to exactly one identity for its whole life.  Switching
identity means building a new agent; ``SessionManager`` does that.

Requests are JSON envelopes POSTed to ``<host>/api/v2/canister/<id>/query``
(read-only) or ``.../call`` (may mutate state).  The envelope carries the
sender principal, its public key, a signature over the content and, for
delegated identities, the delegation chain.

Failure mapping (the ``ErrorKind`` is what the retry executor looks at):

  ===============================  ==============
  httpx timeout                    ``TIMEOUT``
  httpx connect failure            ``CONNECTION``
  any other httpx transport error  ``NETWORK``
  HTTP 429                         ``THROTTLED``
  HTTP 5xx / reject code 2         ``TRANSIENT``
  other 4xx / other reject codes   ``REJECTED``
  ===============================  ==============

A reply is returned verbatim.  An update method's ``{"err": ...}`` variant
is a successful transport round trip and is never turned into an exception
here.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from typing import Any

import httpx

from canister_client.errors import ErrorKind, TransportError
from canister_client.identity.keys import Identity
from canister_client.identity.principal import Principal

logger = logging.getLogger(__name__)

_REQUEST_DOMAIN_SEPARATOR = b"\x0aic-request"
_DEFAULT_INGRESS_EXPIRY = 300  # seconds

# Replica reject codes.
_SYS_TRANSIENT = 2


class HttpAgent:
    """Transport bound to a single identity."""

    def __init__(
        self,
        identity: Identity,
        host: str,
        http_client: httpx.AsyncClient,
        ingress_expiry: int = _DEFAULT_INGRESS_EXPIRY,
    ) -> None:
        self._identity = identity
        self._host = host.rstrip("/")
        self._client = http_client
        self._ingress_expiry = ingress_expiry
        self._root_key: bytes | None = None

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def principal(self) -> Principal:
        return self._identity.principal

    @property
    def host(self) -> str:
        return self._host

    @property
    def root_key(self) -> bytes | None:
        return self._root_key

    async def fetch_root_key(self) -> bytes:
        """Trust the replica's advertised root key (development replicas only)."""
        status = await self._send("GET", f"{self._host}/api/v2/status")
        try:
            self._root_key = bytes.fromhex(status["root_key"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError(
                f"Replica at {self._host} returned no usable root key", kind=ErrorKind.REJECTED,
            ) from exc
        logger.debug("Fetched root key from %s", self._host)
        return self._root_key

    async def query(self, canister_id: str, method: str, args: list[Any]) -> Any:
        return await self._submit("query", canister_id, method, args)

    async def update(self, canister_id: str, method: str, args: list[Any]) -> Any:
        return await self._submit("call", canister_id, method, args)

    # -- private helpers -----------------------------------------------------

    async def _submit(self, request_type: str, canister_id: str, method: str, args: list[Any]) -> Any:
        url = f"{self._host}/api/v2/canister/{canister_id}/{request_type}"
        payload = await self._send("POST", url, json=self._envelope(request_type, canister_id, method, args))

        status = payload.get("status")
        if status == "replied":
            return payload.get("reply")
        if status == "rejected":
            code = payload.get("reject_code")
            kind = ErrorKind.TRANSIENT if code == _SYS_TRANSIENT else ErrorKind.REJECTED
            raise TransportError(
                f"Canister {canister_id} rejected {method} "
                f"(code {code}): {payload.get('reject_message', 'no reason given')}",
                kind=kind,
            )
        raise TransportError(
            f"Unexpected reply status {status!r} from canister {canister_id}",
            kind=ErrorKind.REJECTED,
        )

    async def _send(self, http_method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(http_method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timeout contacting {url}", kind=ErrorKind.TIMEOUT) from exc
        except httpx.ConnectError as exc:
            raise TransportError(f"Connection failed to {url}: {exc}", kind=ErrorKind.CONNECTION) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"Network error contacting {url}: {exc}", kind=ErrorKind.NETWORK) from exc

        if response.status_code == 429:
            raise TransportError(
                f"Too many requests to {url}", kind=ErrorKind.THROTTLED, status_code=429,
            )
        if response.status_code >= 500:
            raise TransportError(
                f"Replica temporarily unavailable ({response.status_code}) at {url}",
                kind=ErrorKind.TRANSIENT,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise TransportError(
                f"Replica refused request ({response.status_code}) at {url}: {response.text}",
                kind=ErrorKind.REJECTED,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Malformed reply from {url}", kind=ErrorKind.REJECTED, status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise TransportError(
                f"Malformed reply from {url}: expected an object", kind=ErrorKind.REJECTED,
                status_code=response.status_code,
            )
        return payload

    def _envelope(self, request_type: str, canister_id: str, method: str, args: list[Any]) -> dict[str, Any]:
        content = {
            "request_type": request_type,
            "canister_id": canister_id,
            "method_name": method,
            "arg": args,
            "sender": self.principal.to_text(),
            "ingress_expiry": time.time_ns() + self._ingress_expiry * 1_000_000_000,
            "nonce": secrets.token_hex(16),
        }
        request_id = hashlib.sha256(json.dumps(content, sort_keys=True).encode()).digest()

        envelope: dict[str, Any] = {"content": content}
        public_key = self._identity.public_key
        signature = self._identity.sign(_REQUEST_DOMAIN_SEPARATOR + request_id)
        if public_key is not None and signature is not None:
            envelope["sender_pubkey"] = public_key.hex()
            envelope["sender_sig"] = signature.hex()

        chain = getattr(self._identity, "chain", None)
        if chain is not None:
            envelope["sender_delegation"] = [d.to_dict() for d in chain.delegations]
        return envelope

    def __repr__(self) -> str:
        return f"HttpAgent(principal={self.principal}, host={self._host})"
