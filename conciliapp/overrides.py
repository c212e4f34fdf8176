from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from conciliapp.actors import Actor
from conciliapp.errors import NotFoundError, PermissionDeniedError, ValidationError
from conciliapp.records import normalize_identity

logger = logging.getLogger(__name__)


class OverrideRegistry:
    """Administrator-managed vendor -> reviewer rules consumed by the assignment pass."""

    def __init__(
        self,
        *,
        repository: Any,
        directory_source: Any,
        now_fn: Callable[[], datetime],
    ) -> None:
        self.repository = repository
        self.directory_source = directory_source
        self._now_fn = now_fn

    @staticmethod
    def _require_admin(actor: Actor, action: str) -> None:
        if not actor.is_admin:
            logger.warning("override_denied action=%s actor=%s role=%s", action, actor.identity, actor.role.value)
            raise PermissionDeniedError("Acceso denegado.")

    def add_override(self, vendor_code: str, reviewer: str, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor, "add")
        code = str(vendor_code or "").strip()
        identity = normalize_identity(reviewer)
        if not code or not identity:
            raise ValidationError("Se requiere el vendedor y el analista.", code="OVERRIDE_FIELDS_REQUIRED")
        previous = self.repository.get(vendor_code=code)
        rule = self.repository.upsert(
            rule={
                "vendor_code": code,
                "reviewer_identity": identity,
                "created_by": actor.identity,
                "updated_at": self._now_fn().isoformat(),
            }
        )
        logger.info(
            "override_saved vendor_code=%s reviewer=%s actor=%s replaced=%s",
            code,
            identity,
            actor.identity,
            previous is not None,
        )
        return dict(rule, created=previous is None)

    def remove_override(self, vendor_code: str, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor, "remove")
        code = str(vendor_code or "").strip()
        if not self.repository.delete(vendor_code=code):
            raise NotFoundError("Regla no encontrada.", code="OVERRIDE_NOT_FOUND")
        logger.info("override_removed vendor_code=%s actor=%s", code, actor.identity)
        return {"vendor_code": code, "deleted": True}

    def list_overrides(self, actor: Actor) -> list[dict[str, Any]]:
        self._require_admin(actor, "list")
        return sorted(self.repository.list(), key=lambda x: str(x.get("vendor_code", "")))

    def active_rules(self) -> dict[str, str]:
        rules: dict[str, str] = {}
        for item in self.repository.list():
            code = str(item.get("vendor_code") or "").strip()
            reviewer = normalize_identity(item.get("reviewer_identity"))
            if code and reviewer:
                rules[code] = reviewer
        return rules

    def catalog(self, actor: Actor) -> dict[str, Any]:
        """Sellers, reviewers and current rules for the override admin screen."""
        self._require_admin(actor, "catalog")
        directory = self.directory_source.load()
        return {
            "sellers": [
                {"code": x.code, "name": x.name, "branch": x.branch}
                for x in sorted(directory.sellers, key=lambda s: s.name)
            ],
            "reviewers": sorted({x.identity for x in directory.reviewers}),
            "rules": self.list_overrides(actor),
        }
