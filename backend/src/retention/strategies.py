"""Retention strategy registry and default per-entity strategies.

A strategy factory turns a ``RetentionPolicy`` and the policy's transaction
into a ``RetentionStrategy``: the table to act on, a builder for the
selection query, and the deletion semantics. ``build_query()`` returns an
immutable SQLAlchemy ``Select`` so the engine can derive the sample, count,
delete and update statements from it any number of times within one
transaction.

Registration is explicit: ``build_default_registry()`` returns a fresh
registry holding the built-in strategies, and callers pass it to the
enforcement service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, column, or_, select, table
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select
from sqlalchemy.sql.expression import TableClause

from .exceptions import StrategyRegistrationError
from .schemas import RetentionPolicy


@dataclass
class RetentionStrategy:
    """Row selection and deletion semantics for one entity.

    Attributes:
        table: Table the policy acts on
        build_query: Returns a fresh ``SELECT`` over ``table`` matching expired rows
        reason: Human-readable reason recorded in the audit trail
        id_column: Identifier column sampled for the audit trail
        soft_delete_column: Column stamped by soft-delete (default ``deleted_at``)
        context: Strategy parameters recorded with results and audit rows
    """
    table: TableClause
    build_query: Callable[[], Select]
    reason: str
    id_column: str = "id"
    soft_delete_column: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


StrategyFactory = Callable[[RetentionPolicy, Session], RetentionStrategy]


class RetentionStrategyRegistry:
    """Maps entity names to strategy factories.

    Usage:
        registry = RetentionStrategyRegistry()
        registry.register("user_sessions", user_sessions_strategy)
        factory = registry.get("user_sessions")

    Registration is an in-memory operation with no persistence. Strategies
    may be added or removed at runtime (tests, feature rollout).
    """

    def __init__(self, strategies: Optional[Dict[str, StrategyFactory]] = None):
        self._strategies: Dict[str, StrategyFactory] = {}
        for entity_name, factory in (strategies or {}).items():
            self.register(entity_name, factory)

    def register(self, entity_name: str, factory: StrategyFactory) -> None:
        """Register (or replace) the strategy factory for ``entity_name``.

        Raises:
            StrategyRegistrationError: If entity_name is empty or factory is not callable
        """
        if not entity_name or not isinstance(entity_name, str) or not entity_name.strip():
            raise StrategyRegistrationError("Retention strategies require a non-empty entity_name string.")

        if not callable(factory):
            raise StrategyRegistrationError(
                f'Retention strategy for "{entity_name}" must be callable.'
            )

        self._strategies[entity_name] = factory

    def unregister(self, entity_name: str) -> None:
        """Remove a strategy. Unknown names are ignored."""
        self._strategies.pop(entity_name, None)

    def get(self, entity_name: str) -> Optional[StrategyFactory]:
        return self._strategies.get(entity_name)

    def list_registered(self) -> List[str]:
        """List registered entity names in registration order."""
        return list(self._strategies.keys())

    def __contains__(self, entity_name: str) -> bool:
        return entity_name in self._strategies


def utc_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the instant ``days`` days before ``now`` (UTC)."""
    current = now or datetime.now(timezone.utc)
    return current - timedelta(days=int(days))


def user_sessions_strategy(policy: RetentionPolicy, session: Session) -> RetentionStrategy:
    criteria = policy.criteria or {}
    stale_last_used_days = int(criteria.get("staleLastUsedDays", policy.retention_period_days))
    include_revoked = criteria.get("includeRevoked") is not False
    now = datetime.now(timezone.utc)

    sessions = table(
        "user_sessions",
        column("id"),
        column("expires_at"),
        column("last_used_at"),
        column("revoked_at"),
        column("deleted_at"),
    )

    def build_query() -> Select:
        query = select(sessions).where(
            or_(
                sessions.c.expires_at < now,
                sessions.c.last_used_at < utc_cutoff(stale_last_used_days, now),
            )
        )
        if not include_revoked:
            query = query.where(sessions.c.revoked_at.is_(None))
        return query.where(sessions.c.deleted_at.is_(None))

    return RetentionStrategy(
        table=sessions,
        build_query=build_query,
        reason=f"remove refresh sessions after {stale_last_used_days}-day inactivity or expiration",
        context={
            "includeRevoked": include_revoked,
            "staleLastUsedDays": stale_last_used_days,
        },
    )


def user_email_verification_tokens_strategy(policy: RetentionPolicy, session: Session) -> RetentionStrategy:
    tokens = table("user_email_verification_tokens", column("id"), column("expires_at"))
    cutoff = utc_cutoff(policy.retention_period_days)

    return RetentionStrategy(
        table=tokens,
        build_query=lambda: select(tokens).where(tokens.c.expires_at < cutoff),
        reason="trim expired verification tokens",
    )


def domain_events_strategy(policy: RetentionPolicy, session: Session) -> RetentionStrategy:
    events = table("domain_events", column("id"), column("created_at"))
    cutoff = utc_cutoff(policy.retention_period_days)

    return RetentionStrategy(
        table=events,
        build_query=lambda: select(events).where(events.c.created_at < cutoff),
        reason="purge domain audit events after retention window",
    )


def content_asset_events_strategy(policy: RetentionPolicy, session: Session) -> RetentionStrategy:
    events = table("content_asset_events", column("id"), column("occurred_at"))
    cutoff = utc_cutoff(policy.retention_period_days)

    return RetentionStrategy(
        table=events,
        build_query=lambda: select(events).where(events.c.occurred_at < cutoff),
        reason="remove aged asset telemetry events",
    )


def communities_strategy(policy: RetentionPolicy, session: Session) -> RetentionStrategy:
    criteria = policy.criteria or {}
    soft_delete_column = criteria.get("softDeleteColumn") or "deleted_at"
    visibility = criteria.get("visibility")
    cutoff = utc_cutoff(policy.retention_period_days)

    communities = table(
        "communities",
        column("id"),
        column("updated_at"),
        column("visibility"),
        column(soft_delete_column),
    )

    def build_query() -> Select:
        conditions = [
            communities.c[soft_delete_column].is_(None),
            communities.c.updated_at < cutoff,
        ]
        if visibility:
            conditions.append(communities.c.visibility == visibility)
        return select(communities).where(and_(*conditions))

    return RetentionStrategy(
        table=communities,
        build_query=build_query,
        soft_delete_column=soft_delete_column,
        reason=f"soft delete communities inactive for {policy.retention_period_days} days",
        context={"visibility": visibility},
    )


DEFAULT_STRATEGIES: Dict[str, StrategyFactory] = {
    "user_sessions": user_sessions_strategy,
    "user_email_verification_tokens": user_email_verification_tokens_strategy,
    "domain_events": domain_events_strategy,
    "content_asset_events": content_asset_events_strategy,
    "communities": communities_strategy,
}


def build_default_registry() -> RetentionStrategyRegistry:
    """Return a new registry pre-populated with the built-in strategies."""
    return RetentionStrategyRegistry(DEFAULT_STRATEGIES)
