"""Authentication collaborator: the signed-in caller and sign-in changes."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from loguru import logger
from pydantic import BaseModel

UNKNOWN_STREAMER = "Unknown Streamer"


class AuthUser(BaseModel):
    uid: str
    display_name: str | None = None
    email: str | None = None

    @property
    def streamer_name(self) -> str:
        """Display name, else the email local part, else a placeholder."""
        if self.display_name and self.display_name.strip():
            return self.display_name.strip()
        if self.email and self.email.split("@", 1)[0]:
            return self.email.split("@", 1)[0]
        return UNKNOWN_STREAMER


AuthListener = Callable[[AuthUser | None], None]


class AuthProvider(ABC):
    @property
    @abstractmethod
    def current_user(self) -> AuthUser | None:
        ...

    @abstractmethod
    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener called with the current user and on every change.

        Returns a callable that unregisters the listener.
        """


class StaticAuthProvider(AuthProvider):
    """Holds one user set in-process (CLI identity, demo mode, tests)."""

    def __init__(self, user: AuthUser | None = None):
        self._user = user
        self._listeners: list[AuthListener] = []

    @property
    def current_user(self) -> AuthUser | None:
        return self._user

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._user)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self._user)
            except Exception as e:
                logger.exception("Auth listener failed: {}", e)

    def sign_in(self, user: AuthUser):
        self._user = user
        logger.info("Signed in: uid={}", user.uid)
        self._notify()

    def sign_out(self):
        if self._user is not None:
            logger.info("Signed out: uid={}", self._user.uid)
        self._user = None
        self._notify()
