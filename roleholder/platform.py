from __future__ import annotations

import json
from dataclasses import dataclass, field
from threading import RLock

from .api_models import PlatformSeed

PER_USER_RANGE = 100000

NOTIFICATION_LISTENER_SERVICE = "android.service.notification.NotificationListenerService"
BIND_NOTIFICATION_LISTENER_SERVICE = "android.permission.BIND_NOTIFICATION_LISTENER_SERVICE"

# Capability kinds understood by the platform.
NOTIFICATION_LISTENER = "notification_listener"


class PlatformCallFailure(Exception):
    """An underlying platform service call failed."""


@dataclass(frozen=True, order=True)
class ComponentName:
    package_name: str
    class_name: str

    def flatten(self) -> str:
        return f"{self.package_name}/{self.class_name}"

    @classmethod
    def unflatten(cls, raw: str) -> "ComponentName":
        pkg, sep, name = raw.partition("/")
        if not sep or not pkg or not name:
            raise ValueError(f"Invalid component name {raw!r}, expected 'package/class'.")
        if name.startswith("."):
            name = pkg + name
        return cls(pkg, name)


@dataclass(frozen=True)
class ServiceInfo:
    package_name: str
    name: str
    interfaces: tuple[str, ...] = ()
    permission: str | None = None

    @property
    def component(self) -> ComponentName:
        return ComponentName(self.package_name, self.name)


@dataclass(frozen=True)
class PackageInfo:
    package_name: str
    app_id: int
    label: str = ""
    services: tuple[ServiceInfo, ...] = ()

    def uid(self, user: int) -> int:
        return user * PER_USER_RANGE + self.app_id

    @property
    def display_label(self) -> str:
        return self.label or self.package_name


class CapabilityGateway:
    """Grants/revokes one kind of capability for one user."""

    def set_capability_granted(self, component: ComponentName, granted: bool) -> None:
        raise NotImplementedError

    def get_granted_components(self) -> set[ComponentName]:
        raise NotImplementedError


class ComponentResolver:
    """Package directory lookups for one user."""

    def list_packages(self) -> list[PackageInfo]:
        raise NotImplementedError

    def get_package(self, package_name: str) -> PackageInfo | None:
        raise NotImplementedError

    def resolve_services_for_package(
        self, package_name: str, interface_contract: str, required_permission: str | None
    ) -> list[ComponentName]:
        raise NotImplementedError


class RoleHolderStore:
    """Platform-level role holder table for one user."""

    def get_role_holders(self, role_name: str) -> set[str]:
        raise NotImplementedError

    def add_role_holder(self, role_name: str, package_name: str) -> None:
        raise NotImplementedError

    def remove_role_holder(self, role_name: str, package_name: str) -> None:
        raise NotImplementedError


class Platform:
    def capabilities(self, kind: str, user: int) -> CapabilityGateway:
        raise NotImplementedError

    def resolver(self, user: int) -> ComponentResolver:
        raise NotImplementedError

    def role_holders(self, user: int) -> RoleHolderStore:
        raise NotImplementedError


@dataclass(frozen=True)
class PlatformContext:
    """Execution context handed to role behaviors: a platform bound to a user."""

    user: int
    platform: Platform

    def capabilities(self, kind: str) -> CapabilityGateway:
        return self.platform.capabilities(kind, self.user)

    @property
    def resolver(self) -> ComponentResolver:
        return self.platform.resolver(self.user)

    @property
    def role_holders(self) -> RoleHolderStore:
        return self.platform.role_holders(self.user)


# ---------------------------------------------------------------------------
# In-memory platform
# ---------------------------------------------------------------------------


@dataclass
class _UserState:
    packages: dict[str, PackageInfo] = field(default_factory=dict)  # insertion order == install order
    granted: dict[str, set[ComponentName]] = field(default_factory=dict)  # kind -> components
    holders: dict[str, set[str]] = field(default_factory=dict)  # role -> packages


class InMemoryPlatform(Platform):
    """Thread-safe in-process model of the platform services.

    Besides serving the role behaviors it exposes drift operations
    (installing/uninstalling packages, granting access directly) so callers
    can move live state out from under the reconciler.
    """

    def __init__(self, users: list[int] | None = None) -> None:
        self._lock = RLock()
        self._users: dict[int, _UserState] = {u: _UserState() for u in (users or [0])}
        self._failures_left = 0
        self._calls_before_failure = 0

    # -- failure injection ------------------------------------------------

    def fail_next(self, count: int = 1, after: int = 0) -> None:
        """Make `count` platform calls raise PlatformCallFailure, once `after` calls have gone through."""
        with self._lock:
            self._failures_left = max(0, int(count))
            self._calls_before_failure = max(0, int(after))

    def _state(self, user: int) -> _UserState:
        # Caller holds the lock.
        if self._failures_left > 0:
            if self._calls_before_failure > 0:
                self._calls_before_failure -= 1
            else:
                self._failures_left -= 1
                raise PlatformCallFailure("Platform service unavailable")
        st = self._users.get(user)
        if st is None:
            raise PlatformCallFailure(f"Unknown user {user}")
        return st

    # -- users / packages -------------------------------------------------

    @property
    def users(self) -> list[int]:
        with self._lock:
            return sorted(self._users)

    def add_user(self, user: int) -> None:
        with self._lock:
            self._users.setdefault(user, _UserState())

    def install_package(self, package: PackageInfo, user: int = 0) -> None:
        with self._lock:
            self._users.setdefault(user, _UserState()).packages[package.package_name] = package

    def uninstall_package(self, package_name: str, user: int = 0) -> None:
        """Remove a package along with any access or role it held."""
        with self._lock:
            st = self._users.get(user)
            if st is None:
                return
            st.packages.pop(package_name, None)
            for components in st.granted.values():
                for c in [c for c in components if c.package_name == package_name]:
                    components.discard(c)
            for holders in st.holders.values():
                holders.discard(package_name)

    # -- Platform ----------------------------------------------------------

    def capabilities(self, kind: str, user: int) -> CapabilityGateway:
        return _InMemoryCapabilityGateway(self, kind, user)

    def resolver(self, user: int) -> ComponentResolver:
        return _InMemoryComponentResolver(self, user)

    def role_holders(self, user: int) -> RoleHolderStore:
        return _InMemoryRoleHolderStore(self, user)

    # -- raw operations used by the adapters ------------------------------

    def set_capability_granted(self, kind: str, user: int, component: ComponentName, granted: bool) -> None:
        with self._lock:
            st = self._state(user)
            components = st.granted.setdefault(kind, set())
            if granted:
                components.add(component)
            else:
                components.discard(component)

    def get_granted_components(self, kind: str, user: int) -> set[ComponentName]:
        with self._lock:
            return set(self._state(user).granted.get(kind, set()))

    def list_packages(self, user: int) -> list[PackageInfo]:
        with self._lock:
            return list(self._state(user).packages.values())

    def get_package(self, user: int, package_name: str) -> PackageInfo | None:
        with self._lock:
            return self._state(user).packages.get(package_name)

    def get_role_holders(self, user: int, role_name: str) -> set[str]:
        with self._lock:
            return set(self._state(user).holders.get(role_name, set()))

    def set_role_holder(self, user: int, role_name: str, package_name: str, holder: bool) -> None:
        with self._lock:
            holders = self._state(user).holders.setdefault(role_name, set())
            if holder:
                holders.add(package_name)
            else:
                holders.discard(package_name)

    # -- seed loading -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryPlatform":
        seed = PlatformSeed.model_validate(data)
        platform = cls(users=list(seed.users))
        for pkg in seed.packages:
            info = PackageInfo(
                package_name=pkg.package_name,
                app_id=pkg.app_id,
                label=pkg.label,
                services=tuple(
                    ServiceInfo(
                        package_name=pkg.package_name,
                        name=svc.name,
                        interfaces=tuple(svc.interfaces),
                        permission=svc.permission,
                    )
                    for svc in pkg.services
                ),
            )
            for user in pkg.users or seed.users:
                platform.install_package(info, user=user)
        for user in seed.users:
            for kind, components in seed.granted.items():
                for raw in components:
                    platform.set_capability_granted(kind, user, ComponentName.unflatten(raw), True)
            for role_name, packages in seed.role_holders.items():
                for package_name in packages:
                    platform.set_role_holder(user, role_name, package_name, True)
        return platform

    @classmethod
    def from_json(cls, path: str) -> "InMemoryPlatform":
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class _InMemoryCapabilityGateway(CapabilityGateway):
    def __init__(self, platform: InMemoryPlatform, kind: str, user: int) -> None:
        self._platform = platform
        self._kind = kind
        self._user = user

    def set_capability_granted(self, component: ComponentName, granted: bool) -> None:
        self._platform.set_capability_granted(self._kind, self._user, component, granted)

    def get_granted_components(self) -> set[ComponentName]:
        return self._platform.get_granted_components(self._kind, self._user)


class _InMemoryComponentResolver(ComponentResolver):
    def __init__(self, platform: InMemoryPlatform, user: int) -> None:
        self._platform = platform
        self._user = user

    def list_packages(self) -> list[PackageInfo]:
        return self._platform.list_packages(self._user)

    def get_package(self, package_name: str) -> PackageInfo | None:
        return self._platform.get_package(self._user, package_name)

    def resolve_services_for_package(
        self, package_name: str, interface_contract: str, required_permission: str | None
    ) -> list[ComponentName]:
        pkg = self._platform.get_package(self._user, package_name)
        if pkg is None:
            return []
        out: list[ComponentName] = []
        for svc in pkg.services:
            if interface_contract not in svc.interfaces:
                continue
            if required_permission is not None and svc.permission != required_permission:
                continue
            out.append(svc.component)
        return out


class _InMemoryRoleHolderStore(RoleHolderStore):
    def __init__(self, platform: InMemoryPlatform, user: int) -> None:
        self._platform = platform
        self._user = user

    def get_role_holders(self, role_name: str) -> set[str]:
        return self._platform.get_role_holders(self._user, role_name)

    def add_role_holder(self, role_name: str, package_name: str) -> None:
        self._platform.set_role_holder(self._user, role_name, package_name, True)

    def remove_role_holder(self, role_name: str, package_name: str) -> None:
        self._platform.set_role_holder(self._user, role_name, package_name, False)
