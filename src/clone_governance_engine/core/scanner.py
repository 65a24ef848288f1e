"""Compliance scanner.

Periodically re-evaluates age-bearing policies against every live clone.
The scan is retrospective: it never blocks or mutates a live resource, it
only writes OPEN violations. A resource that already has an OPEN violation
for the same policy reuses it instead of accumulating duplicates.

Resources are processed in batches. Each batch's findings are committed in
one transaction, and a stop event is checked between batches so a shutdown
halts the scan without leaving a batch half-written.
"""

import asyncio
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.repositories import ViolationRepository
from clone_governance_engine.api.schemas import ScanFinding, ScanResult
from clone_governance_engine.core.evaluator import PolicyEvaluator
from clone_governance_engine.core.interfaces import IResourceRegistry
from clone_governance_engine.core.policy_kinds import PolicyRule
from clone_governance_engine.core.services import PolicyEvaluationService
from clone_governance_engine.core.types import Clock, LiveResource, ViolationCandidate, normalize_tag, utc_now
from clone_governance_engine.metrics import VIOLATIONS_DETECTED_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


class ComplianceScanner:
    """Sweeps live clones for age violations.

    At most one scan runs at a time per scanner; a concurrent call returns
    a SKIPPED result immediately.

    Args:
        session_factory: Factory for per-batch units of work.
        registry: Source of live clones.
        evaluation: Loads the active MAX_AGE rules.
        evaluator: The pure evaluator.
        clock: Injected wall clock.
        batch_size: Live clones fetched per batch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: IResourceRegistry,
        evaluation: PolicyEvaluationService,
        evaluator: PolicyEvaluator | None = None,
        clock: Clock = utc_now,
        batch_size: int = 200,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._evaluation = evaluation
        self._evaluator = evaluator or PolicyEvaluator()
        self._clock = clock
        self._batch_size = batch_size
        self._running = asyncio.Lock()

    async def scan_compliance(
        self,
        scope: str | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> ScanResult:
        """Scan live clones, optionally limited to one scope.

        Args:
            scope: Scope tag to scan. None scans every scope.
            stop_event: Checked between batches; when set the scan stops and
                reports status CANCELLED with the counts committed so far.

        Returns:
            ScanResult with compliant / non-compliant counts and the findings.
        """
        scope_tag = normalize_tag(scope)
        scanned_at = self._clock()

        if self._running.locked():
            logger.warning("Compliance scan already running, skipping", scope=scope_tag)
            return ScanResult(
                status="SKIPPED",
                message="A compliance scan is already running",
                scope=scope_tag,
                scanned_at=scanned_at,
            )

        async with self._running:
            rules = await self._evaluation.load_age_rules()
            result = ScanResult(status="SUCCESS", message="", scope=scope_tag, scanned_at=scanned_at)
            logger.info("Compliance scan started", scope=scope_tag, age_rules=len(rules))

            async for batch in self._registry.iter_live_resources(scope=scope_tag, batch_size=self._batch_size):
                if stop_event is not None and stop_event.is_set():
                    result.status = "CANCELLED"
                    break
                findings = await self._scan_batch(batch, rules, scanned_at)
                non_compliant = {f.resource_id for f in findings}
                result.scanned_resources += len(batch)
                result.non_compliant_count += len(non_compliant)
                result.compliant_count += len(batch) - len(non_compliant)
                result.new_violations += sum(1 for f in findings if f.new)
                result.violations.extend(findings)

            if result.status == "CANCELLED":
                result.message = f"Compliance scan cancelled after {result.scanned_resources} resources"
            else:
                result.message = (
                    f"Scanned {result.scanned_resources} resources: "
                    f"{result.non_compliant_count} non-compliant, {result.new_violations} new violations"
                )

        logger.info(
            "Compliance scan finished",
            status=result.status,
            scope=scope_tag,
            scanned=result.scanned_resources,
            non_compliant=result.non_compliant_count,
            new_violations=result.new_violations,
        )
        return result

    async def _scan_batch(
        self,
        batch: list[LiveResource],
        rules: list[PolicyRule],
        scanned_at: datetime,
    ) -> list[ScanFinding]:
        matches: list[tuple[LiveResource, ViolationCandidate]] = [
            (resource, candidate)
            for resource in batch
            for candidate in self._evaluator.evaluate_age(resource, rules, scanned_at)
        ]
        if not matches:
            return []

        findings: list[ScanFinding] = []
        async with self._session_factory() as session, session.begin():
            repo = ViolationRepository(session)
            for resource, candidate in matches:
                existing = await repo.find_open(candidate.policy_id, resource.resource_id)
                violation = existing or await repo.add(
                    candidate,
                    violator=resource.owner,
                    detected_at=scanned_at,
                    resource_id=resource.resource_id,
                    resource_name=resource.name,
                    scope=normalize_tag(resource.scope),
                )
                findings.append(
                    ScanFinding(
                        violation_id=violation.id,
                        new=existing is None,
                        resource_id=resource.resource_id,
                        resource_name=resource.name,
                        owner=resource.owner,
                        scope=normalize_tag(resource.scope),
                        policy_name=candidate.policy_name,
                        severity=candidate.severity.value,
                        message=candidate.message,
                        age_days=resource.age_days(scanned_at),
                    )
                )

        for finding in findings:
            if finding.new:
                VIOLATIONS_DETECTED_TOTAL.labels(severity=finding.severity, source="scan").inc()
        return findings
