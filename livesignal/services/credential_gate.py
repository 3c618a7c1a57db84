"""Go-live credential check run before a host acquires media."""

import asyncio
import hmac
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from loguru import logger

# Resolves to the entered text, or None when the user cancels
PromptFn = Callable[[str], Awaitable[str | None]]


class CredentialGate(ABC):
    @abstractmethod
    async def confirm(self) -> bool:
        """True to proceed; False on cancel, timeout or exhausted attempts."""


class OpenGate(CredentialGate):
    """Used when no go-live password is configured."""

    async def confirm(self) -> bool:
        return True


class PasswordGate(CredentialGate):
    """
    Prompts for the go-live password.

    Empty input is rejected without using up an attempt. The whole exchange
    is bounded by `timeout` seconds, and running out counts as a cancel.
    """

    def __init__(self, prompt: PromptFn, password: str, *, max_attempts: int = 3, timeout: float = 30.0):
        if not password:
            raise ValueError("PasswordGate requires a non-empty password")
        self._prompt = prompt
        self._password = password.encode()
        self.max_attempts = max_attempts
        self.timeout = timeout

    async def confirm(self) -> bool:
        try:
            return await asyncio.wait_for(self._ask(), self.timeout)
        except asyncio.TimeoutError:
            logger.info("Go-live password prompt timed out")
            return False

    async def _ask(self) -> bool:
        attempts = 0
        message = "Enter password to start live streaming"

        while attempts < self.max_attempts:
            answer = await self._prompt(message)
            if answer is None:
                logger.info("Go-live password entry cancelled")
                return False

            answer = answer.strip()
            if not answer:
                message = "Password cannot be empty"
                continue

            if hmac.compare_digest(answer.encode(), self._password):
                logger.info("Go-live password accepted")
                return True

            attempts += 1
            logger.warning("Incorrect go-live password ({}/{})", attempts, self.max_attempts)
            message = f"Incorrect password ({attempts}/{self.max_attempts})"

        logger.warning("Maximum go-live password attempts exceeded")
        return False
