#!/usr/bin/env python3
"""Exchange Online REST client for mailbox activity logs and message details."""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, urljoin

from auth_manager import AuthManager, Credential, DependencyError
from session_state import SessionState, default_session

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://outlook.office365.com/api/v1.0"
ACTIVITY_ACCESS_PREFER = 'exchange.behavior="ActivityAccess"'
MAX_RESULTS_LIMIT = 1000

ACTIVITY_SELECT_FIELDS = [
    "TimeStamp",
    "ActivityIdType",
    "ActivityCreationTime",
    "ActivityItemId",
    "AppIdType",
    "ClientSessionId",
    "CustomProperties",
]
MESSAGE_SELECT_FIELDS = [
    "BccRecipients",
    "BodyPreview",
    "Categories",
    "CcRecipients",
    "ChangeKey",
    "ConversationId",
    "DateTimeCreated",
    "DateTimeLastModified",
    "DateTimeReceived",
    "DateTimeSent",
    "From",
    "HasAttachments",
    "Id",
    "Importance",
    "IsDeliveryReceiptRequested",
    "IsDraft",
    "IsRead",
    "IsReadReceiptRequested",
    "ParentFolderId",
    "ReplyTo",
    "Sender",
    "Subject",
    "ToRecipients",
    "WebLink",
]


class ActivityType(str, Enum):
    DELETE = "Delete"
    FORWARD = "Forward"
    LINK_CLICKED = "LinkClicked"
    MARK_AS_READ = "MarkAsRead"
    MARK_AS_UNREAD = "MarkAsUnread"
    MESSAGE_DELIVERED = "MessageDelivered"
    MESSAGE_SENT = "MessageSent"
    MOVE = "Move"
    OPENED_AN_ATTACHMENT = "OpenedAnAttachment"
    READING_PANE_DISPLAY_END = "ReadingPaneDisplayEnd"
    READING_PANE_DISPLAY_START = "ReadingPaneDisplayStart"
    REPLY = "Reply"
    SEARCH_RESULT = "SearchResult"
    SERVER_LOGON = "ServerLogon"


class ApplicationType(str, Enum):
    EXCHANGE = "Exchange"
    IMAP4 = "IMAP4"
    LYNC = "Lync"
    MAC_MAIL = "MacMail"
    MAC_OUTLOOK = "MacOutlook"
    MOBILE = "Mobile"
    OUTLOOK = "Outlook"
    POP3 = "POP3"
    WEB = "Web"


class ValidationError(RuntimeError, ValueError):
    """Raised when request parameters are rejected before any network call."""


class TransportError(RuntimeError):
    """Raised on HTTP failures, non-success statuses or unreadable responses."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExchangeActivityClient:
    def __init__(
        self,
        auth: Optional[AuthManager] = None,
        session: Optional[SessionState] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.auth = auth or AuthManager()
        self.session = session if session is not None else SessionState()
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._requests = self._load_requests()

    def get_mail_activity(
        self,
        credential: Optional[Credential] = None,
        identity: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        max_results: int = 500,
        start_from: int = 0,
        activity_type: Union[ActivityType, str, None] = None,
        application_type: Union[ApplicationType, str, None] = None,
    ) -> List[Dict[str, Any]]:
        """Return activity records for a mailbox, oldest first.

        ``end_time`` defaults to now and ``start_time`` to one calendar month
        before ``end_time``. Naive datetimes are taken as local time.
        """
        credential = self.session.resolve_credential(credential)
        identity = self.session.resolve_identity(identity)

        _require_int(max_results, "max_results")
        if not 1 <= max_results <= MAX_RESULTS_LIMIT:
            raise ValidationError(
                f"max_results must be between 1 and {MAX_RESULTS_LIMIT}, got {max_results}"
            )
        if end_time is None:
            end_time = now_utc()
        if start_time is None:
            start_time = subtract_months(end_time, 1)
        activity = _coerce_choice(ActivityType, activity_type, "activity_type")
        application = _coerce_choice(ApplicationType, application_type, "application_type")
        _require_int(start_from, "start_from")
        if start_from < 0:
            raise ValidationError(f"start_from must be 0 or greater, got {start_from}")

        params: Dict[str, Any] = {
            "$orderby": "TimeStamp asc",
            "$select": ",".join(ACTIVITY_SELECT_FIELDS),
            "$filter": build_activity_filter(start_time, end_time, activity, application),
            "$top": str(max_results),
        }
        if start_from > 0:
            params["$skip"] = str(start_from)

        payload = self._request_json(
            credential,
            f"{_user_path(identity)}/Activities",
            params=params,
            headers={"Prefer": ACTIVITY_ACCESS_PREFER},
        )
        return payload.get("value", [])

    def get_mail_activity_details(
        self,
        credential: Optional[Credential] = None,
        identity: Optional[str] = None,
        activity_item_id: Optional[str] = None,
        include_body: bool = False,
    ) -> Dict[str, Any]:
        credential = self.session.resolve_credential(credential)
        identity = self.session.resolve_identity(identity)

        # Item ids come straight from activity records and are used verbatim.
        path = f"{_user_path(identity)}/Messages/{activity_item_id or ''}"
        params = None
        if not include_body:
            params = {"$select": ",".join(MESSAGE_SELECT_FIELDS)}

        return self._request_json(credential, path, params=params)

    def _request_json(
        self,
        credential: Credential,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        response = self._request(credential, path, params=params, headers=headers)
        if not response.content:
            return {}

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type.lower():
            raise TransportError(
                f"Expected JSON response but got content type '{content_type}'",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as err:
            raise TransportError(
                f"Malformed JSON response: {err}",
                status_code=response.status_code,
            ) from err

    def _request(
        self,
        credential: Credential,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        auth, auth_headers = self.auth.authenticate(credential)
        url = self._build_url(path)
        request_headers = {"Accept": "application/json"}
        request_headers.update(auth_headers)
        request_headers.update(headers or {})

        logger.debug("GET %s params=%s", url, params)
        try:
            response = self._requests.get(
                url,
                params=params,
                headers=request_headers,
                auth=auth,
                timeout=self.timeout_seconds,
            )
        except self._requests.RequestException as err:
            raise TransportError(f"Request to {url} failed: {err}") from err

        if response.status_code >= 400:
            raise TransportError(_extract_service_error(response), status_code=response.status_code)

        return response

    def _build_url(self, path: str) -> str:
        return urljoin(self.base_url + "/", path.lstrip("/"))

    @staticmethod
    def _load_requests():
        try:
            import requests  # type: ignore
        except Exception as err:
            raise DependencyError(
                "Missing dependency 'requests'. Install with: python3 -m pip install requests"
            ) from err

        return requests


def get_mail_activity(
    credential: Optional[Credential] = None,
    identity: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    max_results: int = 500,
    start_from: int = 0,
    activity_type: Union[ActivityType, str, None] = None,
    application_type: Union[ApplicationType, str, None] = None,
) -> List[Dict[str, Any]]:
    """Module-level shortcut that remembers the credential and mailbox between calls.

    Uses basic auth against the public endpoint unless ``configure_defaults``
    was called first.
    """
    return _default_client().get_mail_activity(
        credential=credential,
        identity=identity,
        start_time=start_time,
        end_time=end_time,
        max_results=max_results,
        start_from=start_from,
        activity_type=activity_type,
        application_type=application_type,
    )


def get_mail_activity_details(
    credential: Optional[Credential] = None,
    identity: Optional[str] = None,
    activity_item_id: Optional[str] = None,
    include_body: bool = False,
) -> Dict[str, Any]:
    return _default_client().get_mail_activity_details(
        credential=credential,
        identity=identity,
        activity_item_id=activity_item_id,
        include_body=include_body,
    )


_default: Optional[ExchangeActivityClient] = None


def configure_defaults(
    auth: Optional[AuthManager] = None,
    base_url: str = DEFAULT_BASE_URL,
) -> ExchangeActivityClient:
    """Replace the client behind the module-level shortcuts; the session is kept."""
    global _default
    _default = ExchangeActivityClient(auth, session=default_session, base_url=base_url)
    return _default


def _default_client() -> ExchangeActivityClient:
    if _default is None:
        return configure_defaults()
    return _default


def build_activity_filter(
    start_time: datetime,
    end_time: datetime,
    activity_type: Optional[ActivityType] = None,
    application_type: Optional[ApplicationType] = None,
) -> str:
    clauses = [
        f"TimeStamp ge {format_utc(start_time)}",
        f"TimeStamp le {format_utc(end_time)}",
    ]
    if activity_type is not None:
        clauses.append(f"ActivityIdType eq '{activity_type.value}'")
    if application_type is not None:
        clauses.append(f"AppIdType eq '{application_type.value}'")
    return " and ".join(clauses)


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def subtract_months(value: datetime, months: int) -> datetime:
    """Step back whole calendar months, clamping to the last day of the month."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _require_int(value: Any, name: str) -> None:
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")


def _coerce_choice(enum_cls, value, name: str):
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value

    lowered = str(value).strip().lower()
    for member in enum_cls:
        if member.value.lower() == lowered:
            return member

    allowed = ", ".join(member.value for member in enum_cls)
    raise ValidationError(f"{name} must be one of: {allowed}; got '{value}'")


def _user_path(identity: str) -> str:
    key = quote(identity.replace("'", "''"), safe="@'")
    return f"Users('{key}')"


def _extract_service_error(response: Any) -> str:
    """Describe a failed response using the OData ``error`` object when present."""
    summary = f"Exchange request failed with status {response.status_code}"
    try:
        error = response.json().get("error")
    except (ValueError, AttributeError):
        error = None

    if isinstance(error, dict):
        detail = " - ".join(str(part) for part in (error.get("code"), error.get("message")) if part)
    else:
        detail = (response.text or "").strip()[:500]

    return f"{summary}: {detail}" if detail else summary
