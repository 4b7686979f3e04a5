"""GCP Cloud Run Job entry point for enrollment audits.

Deployed as Cloud Run Jobs triggered by Cloud Scheduler.
The AUDIT_OPERATION env var determines which operation to run.

Usage:
  AUDIT_OPERATION=count python -m scripts.enrollment_audit.entrypoints.gcp_cloudrun
  AUDIT_OPERATION=create AUDIT_PREFIX=load-test AUDIT_GROUPS=5 AUDIT_DEVICES=100 \
    python -m scripts.enrollment_audit.entrypoints.gcp_cloudrun
  AUDIT_OPERATION=remove AUDIT_GROUP_ID=load-test-000 \
    python -m scripts.enrollment_audit.entrypoints.gcp_cloudrun
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.enrollment_audit.cli import OPERATIONS, run_operation
from scripts.enrollment_audit.config import load_config
from scripts.enrollment_audit.logging_config import configure_logging

logger = logging.getLogger("enrollment_audit.cloudrun")


def _int_env(name: str):
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else None


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    operation = os.environ.get("AUDIT_OPERATION", "")
    if operation not in OPERATIONS:
        logger.error("AUDIT_OPERATION env var must be one of %s", ", ".join(OPERATIONS))
        sys.exit(1)

    logger.info("Cloud Run Job started for operation=%s", operation,
                extra={"operation": operation})

    try:
        config = load_config()
        outcome = asyncio.run(run_operation(
            operation, config,
            group_id=os.environ.get("AUDIT_GROUP_ID") or None,
            prefix=os.environ.get("AUDIT_PREFIX") or None,
            groups=_int_env("AUDIT_GROUPS"),
            devices=_int_env("AUDIT_DEVICES"),
        ))
    except Exception as exc:
        logger.error("%s failed: %s", operation, exc, exc_info=True,
                     extra={"operation": operation})
        sys.exit(1)

    logger.info("%s complete: %s", operation, outcome.summary, extra={"operation": operation})
    if not outcome.succeeded:
        sys.exit(1)


if __name__ == "__main__":
    main()
