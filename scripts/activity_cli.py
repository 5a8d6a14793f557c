#!/usr/bin/env python3
"""CLI entrypoint for Exchange Online mailbox activity reports."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from activity_client import (
    DEFAULT_BASE_URL,
    ActivityType,
    ApplicationType,
    ExchangeActivityClient,
    TransportError,
    ValidationError,
    format_utc,
    now_utc,
    subtract_months,
)
from auth_manager import AuthConfig, AuthConfigError, AuthError, AuthManager, Credential, DependencyError
from session_state import ConfigurationError, SessionState

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("json", "text")
ACTIVITY_TEXT_COLUMNS = ("TimeStamp", "ActivityIdType", "AppIdType", "ActivityItemId")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    output_format, cleaned_argv = extract_output_format(argv if argv is not None else sys.argv[1:])

    parser = argparse.ArgumentParser(description="Exchange Online mailbox activity CLI")
    parser.add_argument("--verbose", action="store_true", help="Log resolved identities and request URLs")

    root = parser.add_subparsers(dest="domain", required=True)

    activity = root.add_parser("activity", help="Mailbox activity operations")
    activity_sub = activity.add_subparsers(dest="action", required=True)

    activity_list = activity_sub.add_parser("list", help="List activity records for a mailbox")
    activity_list.add_argument("--user", default=None, help="Mailbox email address")
    activity_list.add_argument("--start", default=None, help="ISO 8601 start time")
    activity_list.add_argument("--end", default=None, help="ISO 8601 end time")
    activity_list.add_argument("--top", type=int, default=500)
    activity_list.add_argument("--skip", type=int, default=0)
    activity_list.add_argument(
        "--activity-type",
        default=None,
        help="One of: " + ", ".join(member.value for member in ActivityType),
    )
    activity_list.add_argument(
        "--app-type",
        default=None,
        help="One of: " + ", ".join(member.value for member in ApplicationType),
    )

    activity_get = activity_sub.add_parser("get", help="Get the message behind an activity record")
    activity_get.add_argument("--user", default=None, help="Mailbox email address")
    activity_get.add_argument("--item-id", required=True)
    activity_get.add_argument("--include-body", action="store_true")

    auth = root.add_parser("auth", help="Authentication operations")
    auth_sub = auth.add_subparsers(dest="action", required=True)
    auth_sub.add_parser("check", help="Show resolved auth settings without contacting the service")

    args = parser.parse_args(cleaned_argv)
    args.format = output_format
    return args


def extract_output_format(argv: List[str]) -> Tuple[str, List[str]]:
    """Pull ``--format`` out of argv so it may appear before or after the subcommand."""
    pre = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    pre.add_argument("--format", default="json")
    known, remaining = pre.parse_known_args(argv)

    fmt = known.format.strip().lower()
    if fmt not in OUTPUT_FORMATS:
        raise ValueError("--format must be one of: " + ", ".join(OUTPUT_FORMATS))
    return fmt, remaining


def main(argv: Optional[List[str]] = None) -> int:
    output_format = "json"
    try:
        args = parse_args(argv)
        output_format = args.format
        configure_logging(args.verbose)

        if args.domain == "activity":
            result = run_activity(args)
        elif args.domain == "auth":
            result = run_auth(args)
        else:
            raise RuntimeError(f"Unsupported domain '{args.domain}'")

        emit({"ok": True, "result": result}, output_format)
        return 0

    except (
        AuthConfigError,
        AuthError,
        ConfigurationError,
        DependencyError,
        TransportError,
        ValidationError,
        ValueError,
    ) as err:
        emit(
            {
                "ok": False,
                "error": {
                    "type": err.__class__.__name__,
                    "message": str(err),
                },
            },
            output_format,
        )
        return 1


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def run_activity(args: argparse.Namespace) -> Dict[str, Any]:
    client = build_activity_client()
    identity = args.user or os.environ.get("OUTLOOK_USER") or None

    if args.action == "list":
        end_time = parse_datetime_arg(args.end, "--end") or now_utc()
        start_time = parse_datetime_arg(args.start, "--start") or subtract_months(end_time, 1)
        records = client.get_mail_activity(
            identity=identity,
            start_time=start_time,
            end_time=end_time,
            max_results=args.top,
            start_from=args.skip,
            activity_type=args.activity_type,
            application_type=args.app_type,
        )
        return {
            "user": client.session.identity,
            "start": format_utc(start_time),
            "end": format_utc(end_time),
            "top": int(args.top),
            "skip": int(args.skip),
            "count": len(records),
            "activities": records,
        }

    if args.action == "get":
        message = client.get_mail_activity_details(
            identity=identity,
            activity_item_id=args.item_id,
            include_body=bool(args.include_body),
        )
        return {"message": message}

    raise RuntimeError(f"Unsupported activity action '{args.action}'")


def run_auth(args: argparse.Namespace) -> Dict[str, Any]:
    if args.action != "check":
        raise RuntimeError(f"Unsupported auth action '{args.action}'")

    config = AuthConfig.from_env()
    AuthManager(config)
    credential = Credential.from_env()
    return {
        "mode": config.mode,
        "client_id": config.client_id or None,
        "tenant_id": config.tenant_id,
        "scopes": config.scopes,
        "username": credential.username if credential else None,
        "credential_available": credential is not None,
        "base_url": resolve_base_url(),
    }


def build_activity_client() -> ExchangeActivityClient:
    manager = AuthManager(AuthConfig.from_env())
    session = SessionState(credential=Credential.from_env())
    logger.debug("Using %s auth against %s", manager.config.mode, resolve_base_url())
    return ExchangeActivityClient(manager, session=session, base_url=resolve_base_url())


def resolve_base_url() -> str:
    return os.environ.get("OUTLOOK_ACTIVITY_BASE_URL", "").strip() or DEFAULT_BASE_URL


def parse_datetime_arg(raw: Optional[str], flag: str) -> Optional[datetime]:
    if not raw:
        return None

    normalized = raw.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"

    try:
        value = datetime.fromisoformat(normalized)
    except ValueError as err:
        raise ValueError(f"{flag} must be an ISO 8601 timestamp, got '{raw}'") from err

    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


def emit(payload: Dict[str, Any], fmt: str) -> None:
    if fmt == "json":
        text = json.dumps(payload, indent=2, sort_keys=True)
    elif payload.get("ok"):
        text = render_text(payload.get("result", {}))
    else:
        err = payload.get("error", {})
        text = f"ERROR [{err.get('type')}]: {err.get('message')}"
    print(text)


def render_text(result: Dict[str, Any]) -> str:
    """Summary fields first, then one line per activity or message property."""
    lines = [
        f"{key}: {_text_value(value)}"
        for key, value in result.items()
        if key not in {"activities", "message"}
    ]
    for record in result.get("activities", []):
        lines.append("  ".join(str(record.get(name) or "-") for name in ACTIVITY_TEXT_COLUMNS))
    message = result.get("message") or {}
    for key in sorted(message):
        lines.append(f"{key}: {_text_value(message[key])}")
    return "\n".join(lines)


def _text_value(value: Any) -> str:
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return ", ".join(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


if __name__ == "__main__":
    raise SystemExit(main())
