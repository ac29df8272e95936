"""
Pydantic models for the CLS API payloads.

Only the fields the exporter reads are declared. Unknown fields are ignored
and explicit ``null`` values fall back to the field default, so newer API
revisions keep parsing.
"""

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ApiModel(BaseModel):
    """
    Base for CLS payload models.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class EntitlementFeature(ApiModel):
    feature_name: str = Field(default="", alias="featureName")
    feature_version: str = Field(default="", alias="featureVersion")
    product_name: str = Field(default="", alias="productName")
    license_type: str = Field(default="", alias="licenseType")
    total_quantity: float = Field(default=0.0, alias="totalQuantity")
    in_use_quantity: float = Field(default=0.0, alias="inUseQuantity")
    unassigned_quantity: float = Field(default=0.0, alias="unassignedQuantity")


class EntitlementProductKey(ApiModel):
    entitlement_features: List[EntitlementFeature] = Field(
        default_factory=list, alias="entitlementFeatures"
    )


class EntitlementSummary(ApiModel):
    entitlement_product_keys: List[EntitlementProductKey] = Field(
        default_factory=list, alias="entitlementProductKeys"
    )


class VirtualGroup(ApiModel):
    """
    A licensing tenant grouping entitlements and license servers.
    """

    id: int = 0
    name: str = ""
    entitlements: List[EntitlementSummary] = Field(default_factory=list)

    def entitlement_features(self) -> List[EntitlementFeature]:
        """Flatten the nested entitlement → product key → feature payload."""
        return [
            feature
            for entitlement in self.entitlements
            for key in entitlement.entitlement_product_keys
            for feature in key.entitlement_features
        ]


class LicenseServerFeature(ApiModel):
    id: str = ""
    feature_name: str = Field(default="", alias="featureName")
    product_name: str = Field(default="", alias="productName")
    license_type: str = Field(default="", alias="licenseType")
    total_quantity: float = Field(default=0.0, alias="totalQuantity")


class LicenseServer(ApiModel):
    """
    A license-serving node under a virtual group.
    """

    id: str = ""
    name: str = ""
    status: str = ""
    virtual_group_id: int = Field(default=0, alias="virtualGroupId")
    virtual_group_name: str = Field(default="", alias="virtualGroupName")
    deployed_on: str = Field(default="", alias="deployedOn")
    leasing_mode: str = Field(default="", alias="leasingMode")
    service_instance_id: str = Field(default="", alias="serviceInstanceId")
    license_server_features: List[LicenseServerFeature] = Field(
        default_factory=list, alias="licenseServerFeatures"
    )

    def with_group(self, group: VirtualGroup) -> "LicenseServer":
        """
        Return this server with its group id/name backfilled from ``group``
        where the payload left them empty.
        """
        update = {}
        if not self.virtual_group_id:
            update["virtual_group_id"] = group.id
        if not self.virtual_group_name:
            update["virtual_group_name"] = group.name
        return self.model_copy(update=update) if update else self


class LicensePoolFeature(ApiModel):
    license_server_feature_id: str = Field(default="", alias="licenseServerFeatureId")
    total_allotment: float = Field(default=0.0, alias="totalAllotment")
    in_use: float = Field(default=0.0, alias="inUse")


class LicensePool(ApiModel):
    id: str = ""
    name: str = ""
    license_pool_features: List[LicensePoolFeature] = Field(
        default_factory=list, alias="licensePoolFeatures"
    )


class ActiveLease(ApiModel):
    lease_id: str = Field(default="", alias="leaseId")
    feature_name: str = Field(default="", alias="featureName")
    lease_count: float = Field(default=0.0, alias="leaseCount")
    license_allotment_feature_id: str = Field(
        default="", alias="licenseAllotmentFeatureId"
    )


class ActiveLeaseProperties(ApiModel):
    license_server_id: str = ""
    license_server_name: str = ""


class ActiveLeaseClient(ApiModel):
    """
    A leasing client with its leases, tagged with the serving license server.
    """

    leases: List[ActiveLease] = Field(default_factory=list)
    additional_properties: ActiveLeaseProperties = Field(
        default_factory=ActiveLeaseProperties, alias="additionalProperties"
    )


class VirtualGroupsResponse(ApiModel):
    virtual_groups: List[VirtualGroup] = Field(
        default_factory=list, alias="virtualGroups"
    )


class LicenseServersResponse(ApiModel):
    license_servers: List[LicenseServer] = Field(
        default_factory=list, alias="licenseServers"
    )


class LicensePoolsResponse(ApiModel):
    license_pools: List[LicensePool] = Field(default_factory=list, alias="licensePools")


class ActiveLeasesResponse(ApiModel):
    clients: List[ActiveLeaseClient] = Field(default_factory=list)


__all__ = [
    "ActiveLease",
    "ActiveLeaseClient",
    "ActiveLeaseProperties",
    "ActiveLeasesResponse",
    "EntitlementFeature",
    "LicensePool",
    "LicensePoolFeature",
    "LicensePoolsResponse",
    "LicenseServer",
    "LicenseServerFeature",
    "LicenseServersResponse",
    "VirtualGroup",
    "VirtualGroupsResponse",
]
