"""Provisioning-service client: enrollment groups, enrollments, registration states."""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Optional, TypeVar
from urllib.parse import quote

from scripts.enrollment_audit.auth import ConnectionString, SasTokenProvider
from scripts.enrollment_audit.clients.http import HTTPClient
from scripts.enrollment_audit.errors import NotFoundError
from scripts.enrollment_audit.models import (
    DeviceRegistrationState,
    EnrollmentGroup,
    IndividualEnrollment,
    Page,
    QuerySpecification,
)
from scripts.enrollment_audit.paging import QueryCursor

logger = logging.getLogger("enrollment_audit.provisioning_service")

API_VERSION = "2021-10-01"

T = TypeVar("T")


class ProvisioningServiceClient:
    def __init__(self, http: HTTPClient) -> None:
        self._http = http

    @classmethod
    def from_connection_string(
        cls, connection_string: str, timeout: float = 30.0
    ) -> "ProvisioningServiceClient":
        conn = ConnectionString.parse(connection_string)
        http = HTTPClient(
            base_url=f"https://{conn.host_name}",
            api_version=API_VERSION,
            auth=SasTokenProvider.from_connection_string(conn),
            timeout=timeout,
        )
        return cls(http)

    async def close(self) -> None:
        await self._http.close()

    async def __aenter__(self) -> "ProvisioningServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _query_page(
        self,
        path: str,
        query_spec: QuerySpecification,
        parse: Callable[[dict], T],
        continuation: Optional[str],
        page_size: Optional[int],
    ) -> Page[T]:
        headers: dict[str, str] = {}
        if page_size:
            headers["x-ms-max-item-count"] = str(page_size)
        if continuation:
            headers["x-ms-continuation"] = continuation
        resp = await self._http.request(
            "POST", path, json_body=query_spec.to_dict(), headers=headers
        )
        items = [parse(item) for item in (resp.body or [])]
        return Page(items=items, continuation_token=resp.headers.get("x-ms-continuation") or None)

    def query_enrollment_groups(
        self, query_spec: QuerySpecification, page_size: Optional[int] = None
    ) -> QueryCursor[EnrollmentGroup]:
        fetch = partial(
            self._query_page, "/enrollmentGroups/query", query_spec, EnrollmentGroup.from_dict
        )
        return QueryCursor(fetch, page_size)

    def query_individual_enrollments(
        self, query_spec: QuerySpecification, page_size: Optional[int] = None
    ) -> QueryCursor[IndividualEnrollment]:
        fetch = partial(
            self._query_page, "/enrollments/query", query_spec, IndividualEnrollment.from_dict
        )
        return QueryCursor(fetch, page_size)

    def query_device_registration_states(
        self,
        query_spec: QuerySpecification,
        group_id: str,
        page_size: Optional[int] = None,
    ) -> QueryCursor[DeviceRegistrationState]:
        fetch = partial(
            self._query_page,
            f"/registrations/{quote(group_id, safe='')}/query",
            query_spec,
            DeviceRegistrationState.from_dict,
        )
        return QueryCursor(fetch, page_size)

    # ------------------------------------------------------------------
    # Enrollment groups
    # ------------------------------------------------------------------

    async def get_enrollment_group(self, group_id: str) -> EnrollmentGroup:
        """Fetch a group. Raises NotFoundError when it does not exist."""
        resp = await self._http.request(
            "GET", f"/enrollmentGroups/{quote(group_id, safe='')}"
        )
        return EnrollmentGroup.from_dict(resp.body)

    async def find_enrollment_group(self, group_id: str) -> Optional[EnrollmentGroup]:
        """Fetch a group, or None when it does not exist."""
        try:
            return await self.get_enrollment_group(group_id)
        except NotFoundError:
            return None

    async def create_or_update_enrollment_group(self, group: EnrollmentGroup) -> EnrollmentGroup:
        headers = {"If-Match": group.etag} if group.etag else None
        resp = await self._http.request(
            "PUT",
            f"/enrollmentGroups/{quote(group.enrollment_group_id, safe='')}",
            json_body=group.to_dict(),
            headers=headers,
        )
        return EnrollmentGroup.from_dict(resp.body)

    async def delete_enrollment_group(self, group_id: str) -> None:
        await self._http.request(
            "DELETE", f"/enrollmentGroups/{quote(group_id, safe='')}"
        )

    # ------------------------------------------------------------------
    # Registration states
    # ------------------------------------------------------------------

    async def delete_device_registration_state(self, state: DeviceRegistrationState) -> None:
        headers = {"If-Match": state.etag} if state.etag else None
        await self._http.request(
            "DELETE",
            f"/registrations/{quote(state.registration_id, safe='')}",
            headers=headers,
        )
