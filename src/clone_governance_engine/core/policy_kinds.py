"""Per-kind policy definitions.

Each PolicyKind maps to exactly one pydantic definition model that carries its
own strongly-typed parameters and its own match predicate. Definitions are
validated when a policy is created or updated, so the evaluator never has to
interpret a raw document. A stored document that no longer validates is
turned into an EvaluationSkip for that one policy.

Definition documents keep the keys used by existing policy tooling
(max_age_days, restricted_clone_types, allowed_hours_start, ...). Unknown
keys are ignored.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clone_governance_engine.core.types import (
    EvaluationContext,
    PolicyAction,
    PolicyKind,
    Severity,
    normalize_tag,
)
from clone_governance_engine.errors import EvaluationSkip, ValidationError

WEEKDAY_CODES: tuple[str, ...] = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


class PolicyMatch(NamedTuple):
    """A positive match: human-readable message plus kind-specific details."""

    message: str
    details: dict[str, Any]


def _upper_all(values: list[str]) -> list[str]:
    return [v.strip().upper() for v in values if v and v.strip()]


class PolicyDefinition(BaseModel):
    """Common shape of every definition document."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: ClassVar[PolicyKind]
    # Actions that make a match block the governed operation
    blocking_actions: ClassVar[frozenset[PolicyAction]] = frozenset({PolicyAction.BLOCK})

    action: PolicyAction = PolicyAction.WARN_AND_LOG

    @property
    def blocks(self) -> bool:
        return self.action in self.blocking_actions

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        """Return a match when the operation violates this policy, None otherwise.

        Raises:
            EvaluationSkip: When the context lacks what this kind needs.
        """
        raise NotImplementedError


class MaxAgeDefinition(PolicyDefinition):
    """Clones must not outlive max_age_days. Checked by the compliance scanner only."""

    kind = PolicyKind.MAX_AGE

    max_age_days: int = Field(ge=0)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        # A clone being created has age zero; age is only meaningful retrospectively.
        return None

    def match_age(self, age_days: int) -> PolicyMatch | None:
        if age_days > self.max_age_days:
            return PolicyMatch(
                f"Clone age ({age_days} days) exceeds maximum ({self.max_age_days} days)",
                {"age_days": age_days, "max_age_days": self.max_age_days},
            )
        return None


class RestrictedSourceDefinition(PolicyDefinition):
    """Sources (databases, schemas, or DB.SCHEMA pairs) that must not be cloned."""

    kind = PolicyKind.RESTRICTED_SOURCE

    restricted_databases: list[str] = Field(default_factory=list)
    restricted_schemas: list[str] = Field(default_factory=list)

    normalize_lists = field_validator("restricted_databases", "restricted_schemas")(_upper_all)

    @model_validator(mode="after")
    def _require_some_source(self) -> RestrictedSourceDefinition:
        if not self.restricted_databases and not self.restricted_schemas:
            raise ValueError("restricted_databases or restricted_schemas must be non-empty")
        return self

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        database = (context.source_database or "").strip().upper()
        schema = (context.source_schema or "").strip().upper()

        if database and database in self.restricted_databases:
            return PolicyMatch(
                f"Source database {database} may not be cloned",
                {"source_database": database},
            )
        if schema:
            qualified = f"{database}.{schema}" if database else None
            for entry in self.restricted_schemas:
                if entry == schema or (qualified is not None and entry == qualified):
                    return PolicyMatch(
                        f"Source schema {qualified or schema} may not be cloned",
                        {"source_database": database or None, "source_schema": schema},
                    )
        return None


class DataClassificationDefinition(PolicyDefinition):
    """Restrict cloning by the source's data classification label.

    A definition without restricted_classifications is descriptive only (for
    example a retention statement) and never matches an operation.
    """

    kind = PolicyKind.DATA_CLASSIFICATION

    restricted_classifications: list[str] = Field(default_factory=list)
    retention_days: int | None = Field(default=None, gt=0)
    applies_to: str | None = None

    normalize_lists = field_validator("restricted_classifications")(_upper_all)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        label = normalize_tag(context.data_classification)
        if label is None or label not in self.restricted_classifications:
            return None
        return PolicyMatch(
            f"Data classified as {label} may not be cloned",
            {"data_classification": label},
        )


class UserQuotaDefinition(PolicyDefinition):
    """Maximum number of live clones one actor may hold across all scopes."""

    kind = PolicyKind.USER_QUOTA

    max_total_clones: int = Field(ge=0)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        if context.live_resource_count is None:
            raise EvaluationSkip(policy_name, "live resource count unavailable")
        count = context.live_resource_count
        if count >= self.max_total_clones:
            return PolicyMatch(
                f"Total clone limit exceeded. You have {count} clones (max: {self.max_total_clones})",
                {"live_resource_count": count, "max_total_clones": self.max_total_clones},
            )
        return None


class EnvironmentRestrictionDefinition(PolicyDefinition):
    """Clone kinds (DATABASE, SCHEMA, TABLE, ...) not allowed in the policy's scope."""

    kind = PolicyKind.ENVIRONMENT_RESTRICTION

    restricted_clone_types: list[str] = Field(min_length=1)

    normalize_lists = field_validator("restricted_clone_types")(_upper_all)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        if context.resource_kind is None or context.resource_kind not in self.restricted_clone_types:
            return None
        where = context.scope or "this environment"
        return PolicyMatch(
            f"{context.resource_kind} clones are not allowed in {where}",
            {"resource_kind": context.resource_kind},
        )


class TimeRestrictionDefinition(PolicyDefinition):
    """Creation only within [allowed_hours_start, allowed_hours_end) on allowed days."""

    kind = PolicyKind.TIME_RESTRICTION

    allowed_hours_start: int = Field(ge=0, le=23)
    allowed_hours_end: int = Field(ge=1, le=24)
    allowed_days: list[str] = Field(min_length=1)
    timezone: str | None = None

    @field_validator("allowed_days")
    @classmethod
    def _check_days(cls, value: list[str]) -> list[str]:
        days = [d.strip().upper()[:3] for d in value]
        unknown = sorted(set(days) - set(WEEKDAY_CODES))
        if unknown:
            raise ValueError(f"unknown weekday codes: {unknown}")
        return days

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone '{value}'") from exc
        return value

    @model_validator(mode="after")
    def _check_window(self) -> TimeRestrictionDefinition:
        if self.allowed_hours_start >= self.allowed_hours_end:
            raise ValueError("allowed_hours_start must be before allowed_hours_end")
        return self

    def local_time(self, now: datetime) -> datetime:
        if self.timezone and now.tzinfo is not None:
            return now.astimezone(ZoneInfo(self.timezone))
        return now

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        local = self.local_time(context.now)
        day = WEEKDAY_CODES[local.weekday()]
        outside_hours = not (self.allowed_hours_start <= local.hour < self.allowed_hours_end)
        wrong_day = day not in self.allowed_days
        if not (outside_hours or wrong_day):
            return None
        return PolicyMatch(
            "Clone creation not allowed at this time. "
            f"Allowed: {self.allowed_hours_start}:00 - {self.allowed_hours_end}:00 "
            f"on {','.join(self.allowed_days)}",
            {"current_hour": local.hour, "current_day": day, "timezone": self.timezone},
        )


class SensitiveDataDefinition(PolicyDefinition):
    """Source schemas whose names contain a restricted marker (PII, PHI, ...)."""

    kind = PolicyKind.SENSITIVE_DATA
    blocking_actions = frozenset({PolicyAction.BLOCK, PolicyAction.REQUIRE_APPROVAL})

    restricted_schemas: list[str] = Field(min_length=1)
    approvers: list[str] = Field(default_factory=list)

    normalize_lists = field_validator("restricted_schemas")(_upper_all)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        if not context.source_schema:
            return None
        schema = context.source_schema.upper()
        for marker in self.restricted_schemas:
            if marker in schema:
                return PolicyMatch(
                    "Schema contains sensitive data and requires approval",
                    {"source_schema": context.source_schema, "marker": marker, "approvers": self.approvers},
                )
        return None


class ApprovalRequiredDefinition(PolicyDefinition):
    """Clones of the listed kinds need an approver role to create them."""

    kind = PolicyKind.APPROVAL_REQUIRED

    action: PolicyAction = PolicyAction.REQUIRE_APPROVAL
    approvers: list[str] = Field(min_length=1)
    clone_types: list[str] = Field(default_factory=list)

    normalize_lists = field_validator("approvers", "clone_types")(_upper_all)

    def match(self, context: EvaluationContext, policy_name: str) -> PolicyMatch | None:
        if self.clone_types and context.resource_kind not in self.clone_types:
            return None
        role = normalize_tag(context.actor_role)
        if role is not None and role in self.approvers:
            return None
        return PolicyMatch(
            f"Clone requires approval by one of: {', '.join(self.approvers)}",
            {"approvers": self.approvers, "actor_role": context.actor_role},
        )


DEFINITION_MODELS: dict[PolicyKind, type[PolicyDefinition]] = {
    model.kind: model
    for model in (
        MaxAgeDefinition,
        RestrictedSourceDefinition,
        DataClassificationDefinition,
        UserQuotaDefinition,
        EnvironmentRestrictionDefinition,
        TimeRestrictionDefinition,
        SensitiveDataDefinition,
        ApprovalRequiredDefinition,
    )
}


def parse_kind(value: str | PolicyKind) -> PolicyKind:
    """Parse a policy kind, raising ValidationError for unknown values."""
    try:
        return PolicyKind(value)
    except ValueError:
        valid = ", ".join(k.value for k in PolicyKind)
        raise ValidationError(f"Invalid policy type. Valid types: {valid}", field="kind") from None


def parse_severity(value: str | Severity) -> Severity:
    """Parse a severity, raising ValidationError for unknown values."""
    try:
        return Severity(value)
    except ValueError:
        valid = ", ".join(s.value for s in Severity)
        raise ValidationError(f"Invalid severity. Valid values: {valid}", field="severity") from None


def parse_definition(kind: PolicyKind, document: dict[str, Any] | None) -> PolicyDefinition:
    """Validate a raw definition document against the shape required by kind.

    Raises:
        ValidationError: If the document does not match the kind's shape.
    """
    if not isinstance(document, dict):
        raise ValidationError("Policy definition must be an object", field="definition")
    model = DEFINITION_MODELS[kind]
    try:
        return model.model_validate(document)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(
            f"Invalid {kind.value} definition: {problems}",
            field="definition",
        ) from exc


@dataclass(frozen=True)
class PolicyRule:
    """An active policy compiled for evaluation."""

    policy_id: uuid.UUID
    name: str
    kind: PolicyKind
    scope: str | None
    severity: Severity
    definition: PolicyDefinition

    def applies_to(self, scope: str | None) -> bool:
        """Global policies apply everywhere; scoped ones only to their own scope."""
        return self.scope is None or self.scope == scope

    @classmethod
    def compile(
        cls,
        policy_id: uuid.UUID,
        name: str,
        kind: str,
        scope: str | None,
        severity: str,
        definition: dict[str, Any] | None,
    ) -> PolicyRule:
        """Build a rule from stored values.

        Raises:
            ValidationError: If any stored value no longer validates.
        """
        parsed_kind = parse_kind(kind)
        return cls(
            policy_id=policy_id,
            name=name,
            kind=parsed_kind,
            scope=normalize_tag(scope),
            severity=parse_severity(severity),
            definition=parse_definition(parsed_kind, definition),
        )
