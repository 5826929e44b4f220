from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Iterator

from .api_models import CatalogFile
from .behaviors import COMPANION_DEVICE_WATCH_KIND, DEFAULT_KIND, behavior_for
from .platform import (
    BIND_NOTIFICATION_LISTENER_SERVICE,
    NOTIFICATION_LISTENER_SERVICE,
    PlatformContext,
)


class UnknownRole(KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown role '{self.name}'."


class PackageNotQualified(Exception):
    def __init__(self, role_name: str, package_name: str) -> None:
        super().__init__(f"Package '{package_name}' does not qualify for role '{role_name}'.")
        self.role_name = role_name
        self.package_name = package_name


@dataclass(frozen=True)
class RequiredComponent:
    interface: str
    permission: str | None = None


@dataclass(frozen=True)
class Role:
    name: str
    label: str
    behavior_kind: str = DEFAULT_KIND
    required_components: tuple[RequiredComponent, ...] = ()
    exclusive: bool = False

    @property
    def behavior(self):
        return behavior_for(self.behavior_kind)

    def is_package_qualified(self, package_name: str, context: PlatformContext) -> bool:
        """A package qualifies when it declares a service for every required component."""
        resolver = context.resolver
        if resolver.get_package(package_name) is None:
            return False
        for req in self.required_components:
            if not resolver.resolve_services_for_package(package_name, req.interface, req.permission):
                return False
        return True


class RoleCatalog:
    """Immutable name -> Role registry, built once and passed around by reference."""

    def __init__(self, roles: Iterable[Role]) -> None:
        by_name: dict[str, Role] = {}
        for role in roles:
            if role.name in by_name:
                raise ValueError(f"Duplicate role '{role.name}'.")
            by_name[role.name] = role
        self._roles = by_name

    def get(self, name: str) -> Role:
        role = self._roles.get(name)
        if role is None:
            raise UnknownRole(name)
        return role

    def names(self) -> list[str]:
        return list(self._roles)

    def __contains__(self, name: object) -> bool:
        return name in self._roles

    def __iter__(self) -> Iterator[Role]:
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)

    @classmethod
    def from_dict(cls, data: dict) -> "RoleCatalog":
        parsed = CatalogFile.model_validate(data)
        return cls(
            Role(
                name=r.name,
                label=r.label or r.name,
                behavior_kind=r.behavior,
                required_components=tuple(
                    RequiredComponent(interface=c.interface, permission=c.permission) for c in r.required_components
                ),
                exclusive=r.exclusive,
            )
            for r in parsed.roles
        )

    @classmethod
    def from_json(cls, path: str) -> "RoleCatalog":
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


WATCH_NOTIFICATIONS = "watch-notifications"


def default_roles() -> list[Role]:
    return [
        Role(
            name=WATCH_NOTIFICATIONS,
            label="Companion watch notification access",
            behavior_kind=COMPANION_DEVICE_WATCH_KIND,
            required_components=(
                RequiredComponent(NOTIFICATION_LISTENER_SERVICE, BIND_NOTIFICATION_LISTENER_SERVICE),
            ),
        ),
        Role(
            name="android.app.role.SMS",
            label="SMS app",
            required_components=(RequiredComponent("android.service.sms.SmsService"),),
            exclusive=True,
        ),
        Role(
            name="android.app.role.ASSISTANT",
            label="Digital assistant app",
            required_components=(
                RequiredComponent(
                    "android.service.voice.VoiceInteractionService",
                    "android.permission.BIND_VOICE_INTERACTION",
                ),
            ),
            exclusive=True,
        ),
    ]


def default_catalog() -> RoleCatalog:
    return RoleCatalog(default_roles())
