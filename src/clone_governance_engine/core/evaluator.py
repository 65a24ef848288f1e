"""Pure policy evaluator.

PolicyEvaluator holds no state and performs no I/O. Given an evaluation
context (which already carries the clock value and, for quota checks, the
actor's live resource count) and a list of compiled rules, it returns a
PolicyVerdict. Identical inputs always produce identical output.

A rule that cannot be evaluated is skipped with a warning and counted; it
never stops the remaining rules from being evaluated.
"""

from collections.abc import Iterable
from datetime import datetime

from clone_governance_engine.core.policy_kinds import MaxAgeDefinition, PolicyMatch, PolicyRule
from clone_governance_engine.core.types import (
    EvaluationContext,
    LiveResource,
    PolicyKind,
    PolicyVerdict,
    ViolationCandidate,
    normalize_tag,
)
from clone_governance_engine.errors import EvaluationSkip
from clone_governance_engine.metrics import EVALUATION_SKIPS_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


def _candidate(rule: PolicyRule, match: PolicyMatch) -> ViolationCandidate:
    return ViolationCandidate(
        policy_id=rule.policy_id,
        policy_name=rule.name,
        policy_kind=rule.kind,
        severity=rule.severity,
        action=rule.definition.action,
        message=match.message,
        blocks=rule.definition.blocks,
        details=match.details,
    )


def _skip(rule: PolicyRule, exc: Exception) -> None:
    logger.warning(
        "Policy skipped during evaluation",
        policy_name=rule.name,
        policy_kind=rule.kind.value,
        reason=str(exc),
    )
    EVALUATION_SKIPS_TOTAL.labels(policy_kind=rule.kind.value).inc()


class PolicyEvaluator:
    """Dispatches each applicable rule to its kind's predicate."""

    def evaluate(self, context: EvaluationContext, rules: Iterable[PolicyRule]) -> PolicyVerdict:
        """Evaluate every rule that applies to the context's scope.

        Args:
            context: The operation being checked, including clock and live count.
            rules: Active compiled rules. Rules scoped elsewhere are ignored.

        Returns:
            Violations ordered by descending severity then policy name, and a
            block flag that is the OR of every matched rule's block decision.
        """
        candidates: list[ViolationCandidate] = []
        skipped: list[str] = []
        block = False

        for rule in rules:
            if not rule.applies_to(context.scope):
                continue
            try:
                match = rule.definition.match(context, rule.name)
            except EvaluationSkip as exc:
                _skip(rule, exc)
                skipped.append(rule.name)
                continue
            except Exception as exc:
                # A broken rule must not abort evaluation of the rest
                logger.exception("Policy check raised", policy_name=rule.name)
                _skip(rule, exc)
                skipped.append(rule.name)
                continue
            if match is None:
                continue
            candidate = _candidate(rule, match)
            candidates.append(candidate)
            block = block or candidate.blocks

        candidates.sort(key=ViolationCandidate.sort_key)
        return PolicyVerdict(
            violations=tuple(candidates),
            block=block,
            skipped_policies=tuple(sorted(skipped)),
        )

    def evaluate_age(
        self,
        resource: LiveResource,
        rules: Iterable[PolicyRule],
        now: datetime,
    ) -> list[ViolationCandidate]:
        """Check one live resource against the age-bearing rules for its scope.

        Age findings are retrospective: they never block anything.

        Args:
            resource: The live clone being scanned.
            rules: Active compiled rules; only MAX_AGE rules are considered.
            now: Clock value for the scan.

        Returns:
            Age violations ordered by descending severity then policy name.
        """
        scope = normalize_tag(resource.scope)
        age_days = resource.age_days(now)
        candidates: list[ViolationCandidate] = []

        for rule in rules:
            if rule.kind is not PolicyKind.MAX_AGE or not rule.applies_to(scope):
                continue
            definition = rule.definition
            if not isinstance(definition, MaxAgeDefinition):
                continue
            match = definition.match_age(age_days)
            if match is None:
                continue
            candidates.append(
                ViolationCandidate(
                    policy_id=rule.policy_id,
                    policy_name=rule.name,
                    policy_kind=rule.kind,
                    severity=rule.severity,
                    action=definition.action,
                    message=match.message,
                    blocks=False,
                    details={**match.details, "resource_created_at": resource.created_at.isoformat()},
                )
            )

        candidates.sort(key=ViolationCandidate.sort_key)
        return candidates
