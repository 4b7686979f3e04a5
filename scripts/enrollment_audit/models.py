"""Registry entities and their wire representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_QUERY_ENROLLMENT_GROUPS = "SELECT * FROM enrollmentGroups"
DEFAULT_QUERY_ENROLLMENTS = "SELECT * FROM enrollments"


@dataclass(frozen=True)
class QuerySpecification:
    query: str

    def to_dict(self) -> dict[str, str]:
        return {"query": self.query}


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of query results plus the token for the next page (None when exhausted)."""

    items: list[T]
    continuation_token: Optional[str] = None

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class SymmetricKeyAttestation:
    primary_key: str
    secondary_key: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "symmetricKey",
            "symmetricKey": {
                "primaryKey": self.primary_key,
                "secondaryKey": self.secondary_key,
            },
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["SymmetricKeyAttestation"]:
        keys = (data or {}).get("symmetricKey")
        if not keys:
            return None
        return cls(
            primary_key=keys.get("primaryKey", ""),
            secondary_key=keys.get("secondaryKey", ""),
        )


@dataclass
class EnrollmentGroup:
    enrollment_group_id: str
    attestation: Optional[SymmetricKeyAttestation] = None
    provisioning_status: str = "enabled"
    reprovision_policy: dict[str, bool] = field(
        default_factory=lambda: {"updateHubAssignment": True, "migrateDeviceData": True}
    )
    etag: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "enrollmentGroupId": self.enrollment_group_id,
            "provisioningStatus": self.provisioning_status,
            "reprovisionPolicy": dict(self.reprovision_policy),
        }
        if self.attestation is not None:
            body["attestation"] = self.attestation.to_dict()
        if self.etag:
            body["etag"] = self.etag
        return body

    @classmethod
    def from_dict(cls, data: dict) -> "EnrollmentGroup":
        return cls(
            enrollment_group_id=data["enrollmentGroupId"],
            attestation=SymmetricKeyAttestation.from_dict(data.get("attestation")),
            provisioning_status=data.get("provisioningStatus", "enabled"),
            reprovision_policy=data.get("reprovisionPolicy")
            or {"updateHubAssignment": True, "migrateDeviceData": True},
            etag=data.get("etag"),
            created_at=data.get("createdDateTimeUtc"),
            updated_at=data.get("lastUpdatedDateTimeUtc"),
        )


@dataclass(frozen=True)
class IndividualEnrollment:
    registration_id: str
    device_id: Optional[str] = None
    provisioning_status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "IndividualEnrollment":
        return cls(
            registration_id=data["registrationId"],
            device_id=data.get("deviceId"),
            provisioning_status=data.get("provisioningStatus"),
        )


@dataclass(frozen=True)
class DeviceRegistrationState:
    registration_id: str
    device_id: Optional[str] = None
    status: Optional[str] = None
    assigned_hub: Optional[str] = None
    etag: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceRegistrationState":
        return cls(
            registration_id=data["registrationId"],
            # A registration that never reached a hub carries no deviceId;
            # the device identity equals the registration id for symmetric keys.
            device_id=data.get("deviceId") or data["registrationId"],
            status=data.get("status"),
            assigned_hub=data.get("assignedHub"),
            etag=data.get("etag"),
        )


@dataclass(frozen=True)
class RegistrationResult:
    registration_id: str
    status: str
    device_id: Optional[str] = None
    assigned_hub: Optional[str] = None
    substatus: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def assigned(self) -> bool:
        return self.status == "assigned"

    @classmethod
    def from_operation(cls, registration_id: str, data: dict) -> "RegistrationResult":
        state = data.get("registrationState") or {}
        return cls(
            registration_id=state.get("registrationId", registration_id),
            status=state.get("status") or data.get("status", "unknown"),
            device_id=state.get("deviceId"),
            assigned_hub=state.get("assignedHub"),
            substatus=state.get("substatus"),
            error_message=state.get("errorMessage"),
        )
