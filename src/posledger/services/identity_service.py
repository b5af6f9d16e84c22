from __future__ import annotations

import logging
import secrets
from typing import Callable, Optional, Protocol

from posledger.domain.models import Identity

log = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Identity]], None]


class IdentityProvider(Protocol):
    def current(self) -> Optional[Identity]: ...
    def sign_out(self) -> None: ...


class LocalIdentityProvider:
    """In-process identity holder.

    Credential checks happen outside this package; callers hand over an
    already authenticated identity or ask for an anonymous (restricted) one.
    """

    def __init__(self, identity: Identity | None = None):
        self._identity = identity
        self._listeners: list[IdentityListener] = []

    def current(self) -> Optional[Identity]:
        return self._identity

    def sign_in(self, uid: str, restricted: bool = False) -> Identity:
        uid = (uid or "").strip()
        if not uid:
            raise ValueError("uid is required")
        return self._set(Identity(uid=uid, is_restricted=bool(restricted)))

    def sign_in_anonymous(self) -> Identity:
        return self._set(Identity(uid=f"anon-{secrets.token_hex(8)}", is_restricted=True))

    def sign_out(self) -> None:
        if self._identity is not None:
            log.info("sign_out uid=%s", self._identity.uid)
        self._set(None)

    def on_change(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _set(self, identity: Optional[Identity]) -> Optional[Identity]:
        self._identity = identity
        if identity is not None:
            log.info("sign_in uid=%s restricted=%s", identity.uid, identity.is_restricted)
        for listener in list(self._listeners):
            listener(identity)
        return identity
