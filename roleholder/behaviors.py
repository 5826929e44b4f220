"""Role behaviors: the per-role-kind grant/revoke/query strategies.

Every behavior implements the same three operations and keeps no state of its
own. Behaviors are looked up by role kind in ``BEHAVIORS``; kinds without an
entry fall back to ``DEFAULT_BEHAVIOR``.

Platform failures are not caught here. A failing call has to reach the
reconciler so the whole request ends in FAILURE instead of a false success.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from .platform import (
    BIND_NOTIFICATION_LISTENER_SERVICE,
    NOTIFICATION_LISTENER,
    NOTIFICATION_LISTENER_SERVICE,
    ComponentName,
    PlatformContext,
)

if TYPE_CHECKING:
    from .roles import Role

DEFAULT_KIND = "default"
COMPANION_DEVICE_WATCH_KIND = "companion_device_watch"


class DefaultRoleBehavior:
    """Holder state is whatever the platform's role holder table says."""

    def grant(self, role: Role, package_name: str, context: PlatformContext) -> None:
        context.role_holders.add_role_holder(role.name, package_name)

    def revoke(self, role: Role, package_name: str, context: PlatformContext) -> None:
        context.role_holders.remove_role_holder(role.name, package_name)

    def query_current_holders(self, role: Role, context: PlatformContext) -> set[str]:
        return context.role_holders.get_role_holders(role.name)


class CompanionDeviceWatchRoleBehavior:
    """Behavior of the "watch" companion device profile role.

    Holding the role means having notification listener access for every
    notification listener service the package declares.
    """

    def grant(self, role: Role, package_name: str, context: PlatformContext) -> None:
        listeners = context.capabilities(NOTIFICATION_LISTENER)
        for component in self._listeners_for_package(package_name, context):
            listeners.set_capability_granted(component, True)

    def revoke(self, role: Role, package_name: str, context: PlatformContext) -> None:
        # Walk what is actually enabled, not what the package declares today:
        # an update may have dropped a service that still has access.
        listeners = context.capabilities(NOTIFICATION_LISTENER)
        for component in sorted(listeners.get_granted_components()):
            if component.package_name == package_name:
                listeners.set_capability_granted(component, False)

    def query_current_holders(self, role: Role, context: PlatformContext) -> set[str]:
        enabled = context.capabilities(NOTIFICATION_LISTENER).get_granted_components()
        holders: set[str] = set()
        for package_name in sorted({c.package_name for c in enabled}):
            declared = self._listeners_for_package(package_name, context)
            if declared and all(c in enabled for c in declared):
                holders.add(package_name)
        return holders

    def _listeners_for_package(self, package_name: str, context: PlatformContext) -> list[ComponentName]:
        return context.resolver.resolve_services_for_package(
            package_name,
            NOTIFICATION_LISTENER_SERVICE,
            BIND_NOTIFICATION_LISTENER_SERVICE,
        )


DEFAULT_BEHAVIOR = DefaultRoleBehavior()

BEHAVIORS = {
    DEFAULT_KIND: DEFAULT_BEHAVIOR,
    COMPANION_DEVICE_WATCH_KIND: CompanionDeviceWatchRoleBehavior(),
}


def behavior_for(kind: str | None):
    return BEHAVIORS.get(kind or DEFAULT_KIND, DEFAULT_BEHAVIOR)
