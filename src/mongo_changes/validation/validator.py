"""Boundary validation: raw payloads in, typed ``ChangeRequest`` out."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import ValidationError

from mongo_changes.domain.changes import ChangeRequest
from mongo_changes.errors import ChangeValidationError, ValidationIssue

_VALUE_ERROR_PREFIX = "Value error, "


def _format_loc(loc: Sequence[int | str], prefix: str = "") -> str:
    parts = [str(part) for part in loc]
    if prefix:
        parts.insert(0, prefix)
    return ".".join(parts)


def _issues_from(exc: ValidationError, prefix: str = "") -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for error in exc.errors(include_url=False):
        message = str(error.get("msg", "invalid value"))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        issues.append(ValidationIssue(loc=_format_loc(error.get("loc", ()), prefix), message=message))
    return issues


def parse_change_request(payload: object) -> ChangeRequest:
    """Validate one payload, reporting every offending field at once."""
    try:
        return ChangeRequest.model_validate(payload)
    except ValidationError as exc:
        raise ChangeValidationError(_issues_from(exc)) from exc


def parse_change_requests(payloads: object) -> list[ChangeRequest]:
    """Validate a whole batch before anything runs.

    Issues from every invalid item are collected, each prefixed with the
    item's position (``changes.1.target.uri``).
    """
    if not isinstance(payloads, (list, tuple)) or not payloads:
        raise ChangeValidationError([ValidationIssue(loc="changes", message="changes array required")])

    requests: list[ChangeRequest] = []
    issues: list[ValidationIssue] = []
    for index, payload in enumerate(payloads):
        try:
            requests.append(ChangeRequest.model_validate(payload))
        except ValidationError as exc:
            issues.extend(_issues_from(exc, prefix=f"changes.{index}"))
    if issues:
        raise ChangeValidationError(issues)
    return requests
