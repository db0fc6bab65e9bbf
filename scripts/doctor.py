"""Environment and preflight checks for relaystream."""

from __future__ import annotations

import os
import socket
import sys
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from relaystream.config import (
    API_KEY_ENV,
    DEFAULT_API_URL,
    RetryConfig,
    SessionConfig,
    looks_like_api_key,
)

MIN_PYTHON = (3, 10)
NEWEST_TESTED_PYTHON = (3, 13)
TRUTHY = {"1", "true", "yes"}


@dataclass
class DoctorResult:
    ok: bool
    messages: List[str]


def _python_version_tuple() -> Tuple[int, int, int]:
    v = sys.version_info
    return (v.major, v.minor, v.micro)


def _check_python_version(errors: List[str], warnings: List[str]) -> None:
    current = _python_version_tuple()
    if current[:2] < MIN_PYTHON:
        errors.append(
            f"Python {current[0]}.{current[1]} is unsupported. "
            f"Use Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer."
        )
    elif current[:2] > NEWEST_TESTED_PYTHON:
        warnings.append(f"Python {current[0]}.{current[1]} has not been tested yet.")


def _check_api_key(env: Mapping[str, str], errors: List[str], warnings: List[str]) -> None:
    key = env.get(API_KEY_ENV, "").strip()
    if not key:
        errors.append(f"`{API_KEY_ENV}` must be set and non-empty.")
    elif not looks_like_api_key(key):
        warnings.append(f"`{API_KEY_ENV}` does not look like an Anthropic key (expected `sk-ant-` prefix).")


def _check_settings(env: Mapping[str, str], errors: List[str]) -> Optional[SessionConfig]:
    session_config = None
    try:
        session_config = SessionConfig.from_env(env)
    except ValueError as exc:
        errors.append(str(exc))

    try:
        RetryConfig.from_env(env)
    except ValueError as exc:
        errors.append(str(exc))

    if session_config is not None:
        parts = urlsplit(session_config.api_url)
        if parts.scheme not in {"http", "https"} or not parts.hostname:
            errors.append(f"RELAYSTREAM_API_URL must be an http(s) URL, got `{session_config.api_url}`.")
            return None
    return session_config


def _check_network(env: Mapping[str, str], api_url: str, errors: List[str]) -> None:
    if env.get("DOCTOR_CHECK_NETWORK", "false").strip().lower() not in TRUTHY:
        return

    parts = urlsplit(api_url)
    host = parts.hostname or ""
    port = parts.port or (443 if parts.scheme == "https" else 80)
    try:
        with socket.create_connection((host, port), timeout=5):
            pass
    except OSError as exc:
        errors.append(f"Cannot reach {host}:{port} ({exc}). Check connectivity or RELAYSTREAM_API_URL.")


def run_doctor(env: Optional[Mapping[str, str]] = None) -> DoctorResult:
    env_map: Mapping[str, str] = os.environ if env is None else env
    errors: List[str] = []
    warnings: List[str] = []

    _check_python_version(errors, warnings)
    _check_api_key(env_map, errors, warnings)
    session_config = _check_settings(env_map, errors)
    _check_network(env_map, session_config.api_url if session_config else DEFAULT_API_URL, errors)

    messages: List[str] = []
    if errors:
        messages.append("Doctor found configuration issues:")
        for i, msg in enumerate(errors, 1):
            messages.append(f"{i}. {msg}")
        messages.append("Fix the items above and rerun `python -m scripts.doctor`.")
    else:
        messages.append("Doctor checks passed.")

    if warnings:
        messages.append("Warnings:")
        for msg in warnings:
            messages.append(f"- {msg}")

    return DoctorResult(ok=not errors, messages=messages)


def main() -> int:
    result = run_doctor()
    print("\n".join(result.messages))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
