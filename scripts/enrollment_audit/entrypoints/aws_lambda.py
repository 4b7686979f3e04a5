"""AWS Lambda handler for enrollment audits.

Deployed as Lambda functions triggered by EventBridge rules (count) or
invoked directly (fixture setup and teardown).

Event format:
  {"operation": "count"}
  {"operation": "create", "group_id": "load-test-000", "devices": 100}
  {"operation": "create", "prefix": "load-test", "groups": 5, "devices": 100}
  {"operation": "remove", "prefix": "load-test", "groups": 5}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

# Ensure the project root is on sys.path for Lambda packaging
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.enrollment_audit.cli import OPERATIONS, run_operation
from scripts.enrollment_audit.config import load_config
from scripts.enrollment_audit.logging_config import configure_logging

logger = logging.getLogger("enrollment_audit.lambda")


def _bad_request(message: str) -> dict:
    return {"statusCode": 400, "body": json.dumps({"error": message})}


def handler(event: dict, context) -> dict:
    """Lambda entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    operation = event.get("operation", "")
    if operation not in OPERATIONS:
        return _bad_request(f"'operation' must be one of {', '.join(OPERATIONS)}")

    group_id = event.get("group_id")
    prefix = event.get("prefix")
    try:
        groups = int(event["groups"]) if "groups" in event else None
        devices = int(event["devices"]) if "devices" in event else None
    except (TypeError, ValueError):
        return _bad_request("'groups' and 'devices' must be integers")
    if operation != "count" and not group_id and not (prefix and groups and groups > 0):
        return _bad_request("Either 'group_id' or 'prefix' with a positive 'groups' is required")

    logger.info("Lambda invoked for operation=%s", operation, extra={"operation": operation})

    try:
        config = load_config()
        outcome = asyncio.run(run_operation(
            operation, config,
            group_id=group_id, prefix=prefix, groups=groups, devices=devices,
        ))
    except Exception as exc:
        logger.error("%s failed: %s", operation, exc, exc_info=True,
                     extra={"operation": operation})
        return {
            "statusCode": 500,
            "body": json.dumps({"operation": operation, "error": str(exc)}),
        }

    logger.info("%s complete: %s", operation, outcome.summary, extra={"operation": operation})
    return {
        "statusCode": 200 if outcome.succeeded else 207,
        "body": json.dumps({
            "operation": operation,
            "succeeded": outcome.succeeded,
            "results": outcome.summary,
        }),
    }
