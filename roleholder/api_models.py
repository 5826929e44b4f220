from __future__ import annotations

from pydantic import BaseModel, Field


class ManageHolderRequest(BaseModel):
    package: str = Field(..., min_length=1, description="Package name, e.g. com.example.watch")
    user: int | None = Field(None, ge=0, description="User id (defaults to RHR_DEFAULT_USER)")
    add: bool = Field(True, description="true to grant the role, false to revoke it")


class ReconcileRequest(BaseModel):
    holders: list[str] = Field(default_factory=list, description="Desired holder packages")
    user: int | None = Field(None, ge=0)


class RequestStateResponse(BaseModel):
    role: str
    package: str
    user: int
    state: str = Field(..., description="idle|running|success|failure")
    add: bool | None = None
    error: str | None = None
    started_at: str | None = None
    finished_at: str | None = None


class CandidateResponse(BaseModel):
    key: str
    package: str
    uid: int
    label: str
    is_holder: bool


class RoleResponse(BaseModel):
    name: str
    label: str
    behavior: str
    exclusive: bool
    holders: int
    qualifying: int


# --- catalog / platform seed files -------------------------------------------


class RequiredComponentModel(BaseModel):
    interface: str
    permission: str | None = None


class RoleModel(BaseModel):
    name: str = Field(..., min_length=1)
    label: str = ""
    behavior: str = "default"
    required_components: list[RequiredComponentModel] = Field(default_factory=list)
    exclusive: bool = False


class CatalogFile(BaseModel):
    roles: list[RoleModel]


class ServiceModel(BaseModel):
    name: str
    interfaces: list[str] = Field(default_factory=list)
    permission: str | None = None


class PackageModel(BaseModel):
    package_name: str
    app_id: int = Field(..., ge=0, lt=100000)
    label: str = ""
    users: list[int] = Field(default_factory=list, description="Users it is installed for (default: all)")
    services: list[ServiceModel] = Field(default_factory=list)


class PlatformSeed(BaseModel):
    users: list[int] = Field(default_factory=lambda: [0])
    packages: list[PackageModel] = Field(default_factory=list)
    granted: dict[str, list[str]] = Field(default_factory=dict, description="capability kind -> 'pkg/cls' list")
    role_holders: dict[str, list[str]] = Field(default_factory=dict)
