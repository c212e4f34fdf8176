"""Reviewer roster, seller directory and admin list.

The directory is owned by an external system. It is consumed as a JSON
document, either from a file or from an HTTP endpoint:

    {
      "reviewers": [{"identity": "ana@example.com", "branches": ["Caracas"]},
                    {"identity": "luis@example.com", "branches": ["ALL"]}],
      "sellers":   [{"code": "V001", "name": "Pedro Perez", "branch": "Caracas",
                     "owner": "pedro@example.com"}],
      "admins":    ["jefe@example.com"]
    }

Any failure to fetch or parse it is reported as ``UpstreamUnavailable``.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib import request
from urllib.error import URLError

from conciliapp.errors import UpstreamUnavailable
from conciliapp.records import BRANCH_FILTER_ALL, normalize_identity

ALL_BRANCH_ALIASES = {BRANCH_FILTER_ALL.lower(), "todas", "*"}


@dataclass(frozen=True)
class Reviewer:
    identity: str
    branches: tuple[str, ...] = ()
    all_branches: bool = False

    def covers(self, branch: str) -> bool:
        return self.all_branches or branch in self.branches


@dataclass(frozen=True)
class Seller:
    code: str
    name: str
    branch: str = ""
    owner: str = ""


@dataclass
class DirectorySnapshot:
    reviewers: list[Reviewer] = field(default_factory=list)
    sellers: list[Seller] = field(default_factory=list)
    admins: set[str] = field(default_factory=set)

    def reviewer(self, identity: str) -> Reviewer | None:
        key = normalize_identity(identity)
        for item in self.reviewers:
            if item.identity == key:
                return item
        return None

    def is_admin(self, identity: str) -> bool:
        return normalize_identity(identity) in self.admins

    def seller(self, code: str) -> Seller | None:
        key = str(code or "").strip()
        for item in self.sellers:
            if item.code == key:
                return item
        return None

    def vendor_code_for_name(self, name: str) -> str:
        key = str(name or "").strip()
        if not key:
            return ""
        for item in self.sellers:
            if item.name == key:
                return item.code
        return ""

    def sellers_for_owner(self, identity: str) -> list[Seller]:
        key = normalize_identity(identity)
        return [item for item in self.sellers if item.owner == key]

    def branches(self) -> list[str]:
        seen: set[str] = set()
        for item in self.sellers:
            if item.branch:
                seen.add(item.branch)
        for reviewer in self.reviewers:
            seen.update(reviewer.branches)
        return sorted(seen)

    def eligible_reviewers(self, branch: str) -> list[str]:
        """Branch-scoped reviewers first, then all-branch reviewers; roster order, no repeats."""
        eligible: list[str] = []
        for reviewer in self.reviewers:
            if not reviewer.all_branches and branch in reviewer.branches and reviewer.identity not in eligible:
                eligible.append(reviewer.identity)
        for reviewer in self.reviewers:
            if reviewer.all_branches and reviewer.identity not in eligible:
                eligible.append(reviewer.identity)
        return eligible


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [x for x in value.split(",")]
    raise ValueError("expected a list")


def parse_directory(payload: Any) -> DirectorySnapshot:
    if not isinstance(payload, dict):
        raise ValueError("directory payload must be an object")
    merged: dict[str, dict[str, Any]] = {}
    order: list[str] = []
    for raw in _as_list(payload.get("reviewers")):
        if not isinstance(raw, dict):
            raise ValueError("reviewer entries must be objects")
        identity = normalize_identity(raw.get("identity") or raw.get("email"))
        if not identity:
            continue
        if identity not in merged:
            merged[identity] = {"branches": [], "all": False}
            order.append(identity)
        for branch in _as_list(raw.get("branches", raw.get("branch"))):
            name = str(branch or "").strip()
            if not name:
                continue
            if name.lower() in ALL_BRANCH_ALIASES:
                merged[identity]["all"] = True
            elif name not in merged[identity]["branches"]:
                merged[identity]["branches"].append(name)
    reviewers = [
        Reviewer(identity=identity, branches=tuple(merged[identity]["branches"]), all_branches=merged[identity]["all"])
        for identity in order
    ]

    sellers: list[Seller] = []
    for raw in _as_list(payload.get("sellers")):
        if not isinstance(raw, dict):
            raise ValueError("seller entries must be objects")
        code = str(raw.get("code") or "").strip()
        if not code:
            continue
        sellers.append(
            Seller(
                code=code,
                name=str(raw.get("name") or code).strip(),
                branch=str(raw.get("branch") or "").strip(),
                owner=normalize_identity(raw.get("owner")),
            )
        )

    admins = {normalize_identity(x) for x in _as_list(payload.get("admins")) if normalize_identity(x)}
    return DirectorySnapshot(reviewers=reviewers, sellers=sellers, admins=admins)


class StaticDirectorySource:
    def __init__(self, snapshot: DirectorySnapshot | None = None) -> None:
        self.snapshot = snapshot or DirectorySnapshot()

    def load(self) -> DirectorySnapshot:
        return self.snapshot


class JsonFileDirectorySource:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> DirectorySnapshot:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            return parse_directory(payload)
        except (OSError, ValueError) as exc:
            raise UpstreamUnavailable(f"directory file unavailable: {type(exc).__name__}") from exc


class HttpDirectorySource:
    def __init__(self, url: str, *, timeout_s: float = 5.0) -> None:
        if not url.strip():
            raise ValueError("CONCILIA_DIRECTORY_URL must not be empty")
        self._url = url.strip()
        self._timeout_s = max(0.1, float(timeout_s))

    @staticmethod
    def _get_json(*, endpoint: str, timeout_s: float) -> object:
        req = request.Request(endpoint, method="GET", headers={"Accept": "application/json"})
        with request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8")
        return json.loads(raw)

    def load(self) -> DirectorySnapshot:
        try:
            payload = self._get_json(endpoint=self._url, timeout_s=self._timeout_s)
            return parse_directory(payload)
        except (TimeoutError, URLError, ValueError, OSError) as exc:
            raise UpstreamUnavailable(f"directory endpoint unavailable: {type(exc).__name__}") from exc


def create_directory_source_from_env(
    environ: Mapping[str, str] | None = None,
) -> StaticDirectorySource | JsonFileDirectorySource | HttpDirectorySource:
    env = os.environ if environ is None else environ
    url = env.get("CONCILIA_DIRECTORY_URL", "").strip()
    if url:
        raw_timeout = env.get("CONCILIA_DIRECTORY_TIMEOUT_MS", "5000").strip()
        try:
            timeout_ms = max(100, int(raw_timeout))
        except ValueError:
            timeout_ms = 5000
        return HttpDirectorySource(url, timeout_s=timeout_ms / 1000.0)
    path = env.get("CONCILIA_DIRECTORY_PATH", "").strip()
    if path:
        return JsonFileDirectorySource(path)
    return StaticDirectorySource()
