"""Replay enrollment back-reference writes.

A completed purchase whose users.enrolled_courses / courses.enrolled_students
update failed is recorded in enrollment_repairs. This script replays those
rows, or every completed purchase of one user with --user-id.

Usage:
    python -m scripts.reconcile_enrollments
    python -m scripts.reconcile_enrollments --user-id <uuid>
"""

import argparse
import asyncio
from uuid import UUID

from lms_core.catalog.service import CourseCatalog
from lms_core.config.settings import get_settings
from lms_core.core.context import RequestContext
from lms_core.core.database import AsyncCassandraConnection
from lms_core.core.logging import configure_structlog, get_logger
from lms_core.enrollments.coordinator import EnrollmentCoordinator
from lms_core.enrollments.ledger import PurchaseLedger
from lms_core.users.service import UserDirectory


logger = get_logger(__name__)


def build_coordinator(session, keyspace: str) -> EnrollmentCoordinator:
    """Wire the coordinator without Redis (the script never reads the cache)."""
    settings = get_settings()
    catalog = CourseCatalog(session=session, keyspace=keyspace)
    ledger = PurchaseLedger(
        session=session,
        keyspace=keyspace,
        catalog=catalog,
        max_write_retries=settings.ledger_max_write_retries,
        default_currency=settings.default_currency,
    )
    return EnrollmentCoordinator(
        ledger=ledger,
        catalog=catalog,
        users=UserDirectory(session=session, keyspace=keyspace),
        max_write_retries=settings.ledger_max_write_retries,
        default_currency=settings.default_currency,
    )


async def run_reconcile(user_id: UUID | None = None) -> int:
    """Run one reconciliation pass.

    Returns:
        Number of enrollments that still could not be repaired
    """
    settings = get_settings()
    keyspace = settings.cassandra_keyspace

    logger.info(
        "reconcile_starting",
        keyspace=keyspace,
        hosts=settings.cassandra_hosts,
        user_id=str(user_id) if user_id else None,
    )

    session = AsyncCassandraConnection.connect()
    session.set_keyspace(keyspace)

    try:
        coordinator = build_coordinator(session, keyspace)
        if user_id is not None:
            report = await coordinator.reconcile_user(user_id)
        else:
            report = await coordinator.reconcile_pending()
    finally:
        AsyncCassandraConnection.disconnect()

    logger.info(
        "reconcile_completed",
        processed=report.processed,
        repaired=report.repaired,
        skipped=report.skipped,
        failed=report.failed,
    )
    return report.failed


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--user-id", type=UUID, help="Reconcile a single user")
    args = parser.parse_args()

    configure_structlog(get_settings())

    with RequestContext(correlation_id="reconcile-enrollments"):
        failed = asyncio.run(run_reconcile(args.user_id))

    raise SystemExit(1 if failed else 0)


if __name__ == "__main__":
    main()
