"""
hachiko — tracking-record collaborator

File: src/hachiko/state/tracker.py
Last updated: 2026-10-19

Purpose
- Durable migration state lives in labelled, commented tracking records (issues).

What should be included in this file
- The async ``IssueTracker`` protocol.
- An in-memory reference implementation with failure injection for tests.
- A GitHub REST implementation.

Functional requirements
- Only open records are listed; pull requests are not tracking records.
- Label writes replace the full label set.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from hachiko.state.github import DEFAULT_API_URL, DEFAULT_TOKEN_ENV, GitHubApi


@dataclass(frozen=True, slots=True)
class TrackingRecord:
    number: int
    title: str
    labels: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.number <= 0:
            raise ValueError("number must be > 0")
        object.__setattr__(self, "labels", tuple(self.labels))


@dataclass(frozen=True, slots=True)
class TrackingComment:
    id: int
    body: str


@runtime_checkable
class IssueTracker(Protocol):
    async def list_open_records(self, label: str) -> Sequence[TrackingRecord]: ...

    async def get_labels(self, number: int) -> Sequence[str]: ...

    async def set_labels(self, number: int, labels: Sequence[str]) -> None: ...

    async def add_comment(self, number: int, body: str) -> None: ...

    async def list_comments(self, number: int) -> Sequence[TrackingComment]: ...


@dataclass(slots=True)
class _StoredRecord:
    title: str
    labels: list[str]
    comments: list[TrackingComment] = field(default_factory=list)
    open: bool = True


class InMemoryIssueTracker:
    """
    Dictionary-backed tracker.

    ``inject_failure(operation, error)`` queues an exception that the next call
    of that operation raises; ``calls`` records every operation in order.
    """

    def __init__(self) -> None:
        self._records: dict[int, _StoredRecord] = {}
        self._next_number = 1
        self._next_comment_id = 1
        self._failures: dict[str, list[BaseException]] = {}
        self.calls: list[tuple[str, Any]] = []

    def create_record(self, title: str, labels: Iterable[str] = ()) -> int:
        number = self._next_number
        self._next_number += 1
        self._records[number] = _StoredRecord(title=title, labels=list(dict.fromkeys(labels)))
        return number

    def close_record(self, number: int) -> None:
        self._record(number).open = False

    def inject_failure(self, operation: str, error: BaseException | None = None) -> None:
        failure = error if error is not None else ConnectionError(f"injected {operation} failure")
        self._failures.setdefault(operation, []).append(failure)

    def labels_of(self, number: int) -> tuple[str, ...]:
        return tuple(self._record(number).labels)

    def comments_of(self, number: int) -> tuple[str, ...]:
        return tuple(comment.body for comment in self._record(number).comments)

    async def list_open_records(self, label: str) -> Sequence[TrackingRecord]:
        self._enter("list_open_records", label)
        return [
            TrackingRecord(number=number, title=record.title, labels=tuple(record.labels))
            for number, record in sorted(self._records.items())
            if record.open and label in record.labels
        ]

    async def get_labels(self, number: int) -> Sequence[str]:
        self._enter("get_labels", number)
        return list(self._record(number).labels)

    async def set_labels(self, number: int, labels: Sequence[str]) -> None:
        self._enter("set_labels", number)
        self._record(number).labels = list(dict.fromkeys(labels))

    async def add_comment(self, number: int, body: str) -> None:
        self._enter("add_comment", number)
        record = self._record(number)
        record.comments.append(TrackingComment(id=self._next_comment_id, body=body))
        self._next_comment_id += 1

    async def list_comments(self, number: int) -> Sequence[TrackingComment]:
        self._enter("list_comments", number)
        return list(self._record(number).comments)

    def _enter(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _record(self, number: int) -> _StoredRecord:
        try:
            return self._records[number]
        except KeyError:
            raise LookupError(f"tracking record #{number} does not exist") from None


class GitHubIssueTracker:
    """``IssueTracker`` over the GitHub issues REST API."""

    def __init__(
        self,
        repository: str,
        *,
        api_url: str = DEFAULT_API_URL,
        token_env: str = DEFAULT_TOKEN_ENV,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        api: GitHubApi | None = None,
        logger: Any | None = None,
    ) -> None:
        self._api = (
            api
            if api is not None
            else GitHubApi(
                repository,
                api_url=api_url,
                token_env=token_env,
                client=client,
                environ=environ,
                logger=logger,
            )
        )

    async def aclose(self) -> None:
        await self._api.aclose()

    async def list_open_records(self, label: str) -> Sequence[TrackingRecord]:
        items = await self._api.paginate("/issues", params={"labels": label, "state": "open"})
        return [
            TrackingRecord(
                number=int(item["number"]),
                title=str(item.get("title", "")),
                labels=_label_names(item.get("labels", ())),
            )
            for item in items
            if "pull_request" not in item
        ]

    async def get_labels(self, number: int) -> Sequence[str]:
        items = await self._api.paginate(f"/issues/{number}/labels")
        return list(_label_names(items))

    async def set_labels(self, number: int, labels: Sequence[str]) -> None:
        await self._api.request("PUT", f"/issues/{number}/labels", payload={"labels": list(labels)})

    async def add_comment(self, number: int, body: str) -> None:
        await self._api.request("POST", f"/issues/{number}/comments", payload={"body": body})

    async def list_comments(self, number: int) -> Sequence[TrackingComment]:
        items = await self._api.paginate(f"/issues/{number}/comments")
        return [
            TrackingComment(id=int(item["id"]), body=str(item.get("body") or ""))
            for item in items
        ]


def _label_names(items: Iterable[Any]) -> tuple[str, ...]:
    names: list[str] = []
    for item in items:
        name = item.get("name") if isinstance(item, dict) else item
        if isinstance(name, str):
            names.append(name)
    return tuple(names)


__all__ = [
    "GitHubIssueTracker",
    "InMemoryIssueTracker",
    "IssueTracker",
    "TrackingComment",
    "TrackingRecord",
]
