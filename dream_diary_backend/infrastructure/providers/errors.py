"""Classification of provider call failures.

Retry policy keys off ``ProviderErrorKind`` rather than exception message text.
"""
from __future__ import annotations

import asyncio
import socket
from enum import Enum

import httpx
import openai

from dream_diary_backend.domain.errors import (
    DreamDiaryError,
    PermissionDenied,
    QuotaExceeded,
)


class ProviderErrorKind(str, Enum):
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    QUOTA = "quota"
    PERMISSION = "permission"
    INVALID_REQUEST = "invalid_request"
    CONTENT_POLICY = "content_policy"
    UNKNOWN = "unknown"


TERMINAL_KINDS = frozenset({
    ProviderErrorKind.AUTHENTICATION,
    ProviderErrorKind.QUOTA,
    ProviderErrorKind.PERMISSION,
})


def classify_provider_error(exc: BaseException) -> ProviderErrorKind:
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(exc, openai.APIConnectionError):
        return ProviderErrorKind.TRANSIENT
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, socket.gaierror, httpx.TransportError)):
        return ProviderErrorKind.TRANSIENT
    if isinstance(exc, openai.RateLimitError):
        return ProviderErrorKind.QUOTA
    if isinstance(exc, openai.AuthenticationError):
        return ProviderErrorKind.AUTHENTICATION
    if isinstance(exc, openai.PermissionDeniedError):
        return ProviderErrorKind.PERMISSION
    if isinstance(exc, openai.BadRequestError):
        if getattr(exc, "code", None) == "content_policy_violation":
            return ProviderErrorKind.CONTENT_POLICY
        return ProviderErrorKind.INVALID_REQUEST
    return ProviderErrorKind.UNKNOWN


def terminal_error(kind: ProviderErrorKind, exc: BaseException, provider: str = "OpenAI") -> DreamDiaryError:
    """Domain error for a terminal kind; callers raise it ``from exc``."""
    if kind is ProviderErrorKind.QUOTA:
        return QuotaExceeded(f"{provider} API quota exceeded. Please check your billing: {exc}")
    if kind is ProviderErrorKind.AUTHENTICATION:
        return PermissionDenied(f"Invalid {provider} API key. Please check OPENAI_API_KEY: {exc}")
    return PermissionDenied(f"Permission denied. Please check your {provider} API key permissions: {exc}")
