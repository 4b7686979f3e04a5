"""CLI entry point: count, create, remove, scheduler."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Optional

from scripts.enrollment_audit.clients import (
    DeviceProvisioningClient,
    DeviceRegistryClient,
    ProvisioningServiceClient,
)
from scripts.enrollment_audit.config import AuditConfig, load_config
from scripts.enrollment_audit.counter import CountReport, RegistrationCounter
from scripts.enrollment_audit.logging_config import configure_logging
from scripts.enrollment_audit.orchestrator import EnrollmentLifecycleOrchestrator
from scripts.enrollment_audit.retry import TransientRetryPolicy

logger = logging.getLogger("enrollment_audit.cli")

OPERATIONS = ("count", "create", "remove")


@dataclass(frozen=True)
class OperationOutcome:
    operation: str
    succeeded: bool
    results: Any
    summary: dict[str, Any]


def build_counter(config: AuditConfig, service: ProvisioningServiceClient) -> RegistrationCounter:
    conc = config.concurrency
    return RegistrationCounter(
        service=service,
        group_parallelism=conc.count_group_parallelism,
        group_page_size=conc.group_page_size,
        registration_page_size=conc.registration_page_size,
        progress_interval_s=conc.progress_interval_s,
        retry_policy=TransientRetryPolicy(),
    )


def build_orchestrator(
    config: AuditConfig,
    service: ProvisioningServiceClient,
    device_registry: Optional[DeviceRegistryClient] = None,
    device_provisioning: Optional[DeviceProvisioningClient] = None,
) -> EnrollmentLifecycleOrchestrator:
    conc = config.concurrency
    return EnrollmentLifecycleOrchestrator(
        service,
        device_registry,
        device_provisioning,
        id_scope=config.provisioning.id_scope,
        device_endpoint=config.provisioning.device_endpoint,
        max_parallelism=conc.fixture_parallelism,
        progress_interval_s=conc.progress_interval_s,
        throttle_fallback_delay_s=conc.throttle_fallback_delay_s,
        key_seed=config.fixture_key_seed,
    )


def _validate_target(
    group_id: Optional[str], prefix: Optional[str], groups: Optional[int]
) -> None:
    if group_id:
        return
    if not prefix or not groups or groups < 1:
        raise ValueError("Either a group id or a prefix with a positive group count is required")


async def run_operation(
    operation: str,
    config: AuditConfig,
    *,
    group_id: Optional[str] = None,
    prefix: Optional[str] = None,
    groups: Optional[int] = None,
    devices: Optional[int] = None,
) -> OperationOutcome:
    """Run one operation against the remote registries and summarise it."""
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation {operation!r}")
    if operation != "count":
        _validate_target(group_id, prefix, groups)
    if operation == "remove" and config.device_registry is None:
        raise ValueError("IOTHUB_CONNECTION_STRING is required to remove enrollment groups")
    if operation == "create" and devices is not None and not config.provisioning.id_scope:
        raise ValueError("DPS_ID_SCOPE is required to provision devices")

    timeout = config.concurrency.http_timeout_s
    async with AsyncExitStack() as stack:
        service = await stack.enter_async_context(
            ProvisioningServiceClient.from_connection_string(
                config.provisioning.connection_string, timeout=timeout
            )
        )

        if operation == "count":
            report = await build_counter(config, service).count_all()
            return OperationOutcome(operation, report.succeeded, report, report.as_dict())

        if operation == "create":
            provisioning = None
            if devices is not None:
                provisioning = await stack.enter_async_context(
                    DeviceProvisioningClient(timeout=timeout)
                )
            orchestrator = build_orchestrator(config, service, device_provisioning=provisioning)
            if group_id:
                results = [await orchestrator.create_enrollment_group(group_id, devices)]
            else:
                results = await orchestrator.create_sample_enrollment_groups_with_devices(
                    prefix, groups, devices
                )
        else:
            registry = await stack.enter_async_context(
                DeviceRegistryClient.from_connection_string(
                    config.device_registry.connection_string, timeout=timeout
                )
            )
            orchestrator = build_orchestrator(config, service, device_registry=registry)
            if group_id:
                results = [await orchestrator.remove_enrollment_group(group_id)]
            else:
                results = await orchestrator.remove_sample_enrollment_groups(prefix, groups)

    return OperationOutcome(
        operation,
        all(r.succeeded for r in results),
        results,
        {"groups": [r.as_dict() for r in results]},
    )


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------

def _print_count(report: CountReport) -> None:
    fmt = "{:<48}  {:>12}"
    print(fmt.format("ENROLLMENT GROUP", "REGISTRATIONS"))
    print("-" * 62)
    for group_id in sorted(report.group_counts):
        print(fmt.format(group_id, report.group_counts[group_id]))
    for group_id in report.failed_groups:
        print(fmt.format(group_id, "FAILED"))
    print("-" * 62)
    print(f"Group registrations:      {report.group_registrations}")
    print(f"Individual registrations: {report.individual_registrations}")
    print(f"Total: {report.total} registrations. [Duration: {report.duration_s:.2f} seconds]")


def _print_setups(results) -> None:
    fmt = "{:<40}  {:<8}  {:>10}  {:>11}  {:>7}  {:>9}"
    print(fmt.format("ENROLLMENT GROUP", "ACTION", "REQUESTED", "PROVISIONED", "FAILED", "REG/SEC"))
    print("-" * 94)
    for r in results:
        p = r.provisioning
        print(fmt.format(
            r.group_id,
            "created" if r.created else "updated",
            p.requested if p else "-",
            p.provisioned if p else "-",
            p.failed if p else "-",
            f"{p.rate:.2f}" if p else "-",
        ))


def _print_teardowns(results) -> None:
    fmt = "{:<40}  {:>13}  {:>8}  {:>7}  {}"
    print(fmt.format("ENROLLMENT GROUP", "REGISTRATIONS", "DEVICES", "FAILED", "GROUP"))
    print("-" * 94)
    for r in results:
        if not r.found:
            status = "not found"
        elif r.group_deleted:
            status = "deleted"
        else:
            status = "PRESERVED (incomplete cascade)"
        print(fmt.format(
            r.group_id, r.registrations_deleted, r.devices_removed, r.failed_items, status,
        ))
    preserved = [r.group_id for r in results if not r.succeeded]
    if preserved:
        print(
            f"\n{len(preserved)} enrollment group(s) kept because some registrations "
            f"or devices could not be removed: {', '.join(preserved)}"
        )


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

def cmd_count(args: argparse.Namespace) -> int:
    """Count every registration in the provisioning service."""
    config = load_config()
    outcome = asyncio.run(run_operation("count", config))
    _print_count(outcome.results)
    return 0 if outcome.succeeded else 1


def cmd_create(args: argparse.Namespace) -> int:
    """Create (or update) enrollment groups and optionally provision devices."""
    config = load_config()
    outcome = asyncio.run(run_operation(
        "create", config,
        group_id=args.group_id, prefix=args.prefix, groups=args.groups, devices=args.devices,
    ))
    _print_setups(outcome.results)
    return 0 if outcome.succeeded else 1


def cmd_remove(args: argparse.Namespace) -> int:
    """Cascade-delete enrollment groups with their registrations and devices."""
    config = load_config()
    outcome = asyncio.run(run_operation(
        "remove", config, group_id=args.group_id, prefix=args.prefix, groups=args.groups,
    ))
    _print_teardowns(outcome.results)
    return 0 if outcome.succeeded else 1


def cmd_scheduler(args: argparse.Namespace) -> int:
    """Start the APScheduler-based count audit loop."""
    from scripts.enrollment_audit.scheduler import start_scheduler

    start_scheduler(load_config())
    return 0


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--group-id", "-g", help="Single enrollment group id")
    target.add_argument("--prefix", "-p", help="Prefix of sample groups named <prefix>-000, -001, ...")
    parser.add_argument(
        "--groups", "-n",
        type=int,
        default=1,
        help="Number of sample groups when --prefix is used (default: 1)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enrollment-audit",
        description="Audit and manage enrollment records in a device-provisioning registry",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    count_parser = subparsers.add_parser("count", help="Count all registrations")
    count_parser.set_defaults(func=cmd_count)

    create_parser = subparsers.add_parser("create", help="Create enrollment group fixtures")
    _add_target_arguments(create_parser)
    create_parser.add_argument(
        "--devices", "-d",
        type=int,
        default=None,
        help="Devices to provision per group (default: none)",
    )
    create_parser.set_defaults(func=cmd_create)

    remove_parser = subparsers.add_parser("remove", help="Tear down enrollment group fixtures")
    _add_target_arguments(remove_parser)
    remove_parser.set_defaults(func=cmd_remove)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled count audits")
    sched_parser.set_defaults(func=cmd_scheduler)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit status."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except Exception as exc:
        logger.error("%s failed: %s", args.command, exc, exc_info=True)
        return 1
