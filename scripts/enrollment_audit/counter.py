"""Registration counting across enrollment groups and individual enrollments."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from scripts.enrollment_audit.aggregator import Accumulator, BoundedConcurrentAggregator
from scripts.enrollment_audit.clients.provisioning_service import ProvisioningServiceClient
from scripts.enrollment_audit.models import (
    DEFAULT_QUERY_ENROLLMENT_GROUPS,
    DEFAULT_QUERY_ENROLLMENTS,
    EnrollmentGroup,
    QuerySpecification,
)
from scripts.enrollment_audit.paging import iter_pages
from scripts.enrollment_audit.progress import ProgressReporter
from scripts.enrollment_audit.retry import TransientRetryPolicy

logger = logging.getLogger("enrollment_audit.counter")


@dataclass(frozen=True)
class CountReport:
    group_counts: Mapping[str, int]
    individual_registrations: int
    failed_groups: tuple[str, ...] = ()
    duration_s: float = 0.0

    @property
    def group_registrations(self) -> int:
        return sum(self.group_counts.values())

    @property
    def total(self) -> int:
        return self.group_registrations + self.individual_registrations

    @property
    def succeeded(self) -> bool:
        return not self.failed_groups

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_registrations": self.group_registrations,
            "individual_registrations": self.individual_registrations,
            "total": self.total,
            "enrollment_groups": len(self.group_counts),
            "failed_groups": list(self.failed_groups),
            "duration_s": round(self.duration_s, 2),
        }


@dataclass
class RegistrationCounter:
    """Sums registrations per enrollment group plus individual enrollments.

    Groups are counted concurrently (at most group_parallelism at once);
    the registration pages of a single group are read one after another.
    """

    service: ProvisioningServiceClient
    group_parallelism: int = 15
    group_page_size: int = 1024
    registration_page_size: int = 5000
    progress_interval_s: float = 5.0
    retry_policy: TransientRetryPolicy = field(default_factory=TransientRetryPolicy)
    group_query: str = DEFAULT_QUERY_ENROLLMENT_GROUPS
    enrollment_query: str = DEFAULT_QUERY_ENROLLMENTS

    async def count_registrations(self, group_id: str) -> int:
        """Count the registration states of one group, page by page."""
        cursor = self.service.query_device_registration_states(
            QuerySpecification(self.group_query), group_id, self.registration_page_size
        )
        registrations = 0

        def render(_elapsed: float) -> str:
            return f"Calculating registrations in {group_id}: {registrations} so far..."

        async with ProgressReporter(render, self.progress_interval_s):
            async for page in iter_pages(
                cursor, self.retry_policy, f"registrations page of {group_id}"
            ):
                registrations += len(page)
        return registrations

    async def count_group_registrations(self) -> tuple[Accumulator, list[str]]:
        """Count every group's registrations.

        Returns the per-group counts and the ids of groups that could not be
        counted. A failed group is logged and left out of the counts.
        """
        logger.info("Calculating device enrollment group registrations...")
        totals = Accumulator()
        failed: list[str] = []
        aggregator = BoundedConcurrentAggregator(self.group_parallelism)
        cursor = self.service.query_enrollment_groups(
            QuerySpecification(self.group_query), self.group_page_size
        )

        async def count_group(group: EnrollmentGroup) -> int:
            group_id = group.enrollment_group_id
            registrations = await self.count_registrations(group_id)
            totals.add(group_id, registrations)
            logger.info(
                "Enrollment Group %s: %d registrations.", group_id, registrations,
                extra={"group_id": group_id, "records": registrations},
            )
            return registrations

        async for page in iter_pages(cursor, self.retry_policy, "enrollment groups page"):
            for outcome in await aggregator.run(page.items, count_group):
                if outcome.ok:
                    continue
                group_id = outcome.item.enrollment_group_id
                logger.error(
                    "Unable to count registrations of enrollment group %s: %s",
                    group_id, outcome.error,
                    extra={"group_id": group_id},
                )
                failed.append(group_id)
                totals.mark_failed()

        logger.info(
            "Group registrations: %d registrations.", totals.total(),
            extra={"records": totals.total()},
        )
        return totals, failed

    async def count_individual_enrollments(self, page_size: Optional[int] = None) -> int:
        logger.info("Calculating individual registrations...")
        cursor = self.service.query_individual_enrollments(
            QuerySpecification(self.enrollment_query), page_size
        )
        individual = 0
        async for page in iter_pages(cursor, self.retry_policy, "individual enrollments page"):
            individual += len(page)
        logger.info(
            "Individual Registrations: %d registrations.", individual,
            extra={"records": individual},
        )
        return individual

    async def count_all(self) -> CountReport:
        started = time.monotonic()
        totals, failed = await self.count_group_registrations()
        individual = await self.count_individual_enrollments()
        report = CountReport(
            group_counts=totals.snapshot(),
            individual_registrations=individual,
            failed_groups=tuple(failed),
            duration_s=time.monotonic() - started,
        )
        logger.info(
            "Total: %d registrations.", report.total,
            extra={"records": report.total, "duration_s": round(report.duration_s, 2)},
        )
        return report
