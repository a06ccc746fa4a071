#!/usr/bin/env python3
"""Connectivity checks against the FabTrack backend."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import Iterable

import httpx
from dotenv import load_dotenv


PUBLIC_CHECKS = [
    ("equipment list", "/api/equipment"),
]

AUTHENTICATED_CHECKS = [
    ("current user", "/api/auth/me"),
    ("all requests", "/api/borrow/all-requests"),
    ("pending requests", "/api/borrow/pending-requests"),
    ("audit logs", "/api/borrow/logs"),
]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _describe_body(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"{len(response.content)} bytes"
    if isinstance(payload, list):
        return f"{len(payload)} rows"
    if isinstance(payload, dict):
        for key, value in payload.items():
            if isinstance(value, list):
                return f"{len(value)} rows under {key!r}"
        return f"keys={sorted(payload)[:5]}"
    return type(payload).__name__


def _check(client: httpx.Client, name: str, path: str, headers: dict[str, str]) -> CheckResult:
    try:
        response = client.get(path, headers=headers)
    except httpx.TimeoutException:
        return CheckResult(name, False, "request timed out")
    except httpx.HTTPError as exc:
        return CheckResult(name, False, f"unreachable: {exc}")
    if response.status_code >= 400:
        return CheckResult(name, False, f"status={response.status_code}")
    return CheckResult(name, True, f"status={response.status_code} {_describe_body(response)}")


def run_checks(
    base_url: str,
    token: str | None,
    timeout: float,
    transport: httpx.BaseTransport | None = None,
) -> list[CheckResult]:
    checks = list(PUBLIC_CHECKS)
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
        checks.extend(AUTHENTICATED_CHECKS)
    with httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport) as client:
        return [_check(client, name, path, headers) for name, path in checks]


def _print_results(rows: Iterable[CheckResult]) -> None:
    for row in rows:
        status = "PASS" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def main() -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="FabTrack backend connectivity probe")
    parser.add_argument("--base-url", default=os.environ.get("FABTRACK_API_BASE_URL", ""))
    parser.add_argument("--token", default=os.environ.get("FABTRACK_PROBE_TOKEN", ""))
    parser.add_argument("--timeout", type=float, default=float(os.environ.get("FABTRACK_API_TIMEOUT_SECONDS") or "10"))
    args = parser.parse_args()

    if not args.base_url.strip():
        print("FABTRACK_API_BASE_URL is not set. Provide --base-url or export env first.")
        return 2

    results = run_checks(args.base_url.strip(), args.token.strip() or None, args.timeout)
    _print_results(results)
    if not args.token:
        print("No --token given; authenticated endpoints were skipped.")
    return 0 if all(row.ok for row in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
