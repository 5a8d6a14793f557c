#!/usr/bin/env python3
"""Last-used credential and mailbox identity, shared across activity calls.

A value passed explicitly always replaces the stored one; omitting it reuses
whatever was stored last. Nothing is ever cleared implicitly. Not safe for
concurrent mutation from several threads.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth_manager import Credential

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when a credential or mailbox identity is required but unknown."""


class SessionState:
    def __init__(
        self,
        credential: Optional[Credential] = None,
        identity: Optional[str] = None,
    ) -> None:
        self.credential = credential
        self.identity = identity

    def resolve_credential(self, supplied: Optional[Credential] = None) -> Credential:
        if supplied is not None:
            self.credential = supplied
        if self.credential is None:
            raise ConfigurationError("credentials not set")
        logger.debug("Using credential for %s", self.credential.username)
        return self.credential

    def resolve_identity(self, supplied: Optional[str] = None) -> str:
        if supplied is not None:
            self.identity = supplied
        if self.identity is None:
            raise ConfigurationError("user not set")
        logger.debug("Using mailbox %s", self.identity)
        return self.identity

    def clear(self) -> None:
        self.credential = None
        self.identity = None


default_session = SessionState()
