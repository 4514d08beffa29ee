"""Per-request context passed explicitly down the call chain."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from feedback_portal.models import Principal
from feedback_portal.models.principal import PRINCIPAL_ROLE_ADMIN, PRINCIPAL_ROLE_MEMBER


@dataclass
class RequestContext:
    """Request-scoped state: the session, the acting principal and memoized lookups.

    Built once per request by the API dependency; lookups made through it are
    cached for the lifetime of the request only.
    """

    db: Session
    principal: Principal
    _principals: dict[int, Principal | None] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._principals[self.principal.id] = self.principal

    @property
    def actor_id(self) -> int:
        """Return the id recorded in audit fields for this request."""
        return self.principal.id

    @property
    def is_team_member(self) -> bool:
        """Return True for admins and members, who may triage feedback."""
        return self.principal.role in (PRINCIPAL_ROLE_ADMIN, PRINCIPAL_ROLE_MEMBER)

    def get_principal(self, principal_id: int) -> Principal | None:
        """Return a principal by id, hitting the database at most once per id."""
        if principal_id not in self._principals:
            self._principals[principal_id] = self.db.get(Principal, principal_id)
        return self._principals[principal_id]
