from __future__ import annotations

from dataclasses import dataclass
from threading import Thread
from typing import Iterable

from . import db
from .platform import Platform, PlatformContext
from .roles import PackageNotQualified, Role, RoleCatalog
from .runtime import IDLE, ConcurrentRequestRejected, RequestHandle, RequestKey, RuntimeState
from .settings import settings


@dataclass(frozen=True)
class Candidate:
    package_name: str
    uid: int
    label: str
    is_holder: bool

    @property
    def key(self) -> str:
        return f"{self.package_name}_{self.uid}"


@dataclass(frozen=True)
class RoleSummary:
    name: str
    label: str
    exclusive: bool
    holders: int
    qualifying: int


class RoleReconciler:
    """Applies role holder changes to the platform and reads holder state back.

    Holder sets are never cached: every query re-derives them from live
    platform state through the role's behavior.
    """

    def __init__(
        self,
        catalog: RoleCatalog,
        platform: Platform,
        runtime: RuntimeState | None = None,
        run_async: bool | None = None,
    ):
        self.catalog = catalog
        self.platform = platform
        self.runtime = runtime or RuntimeState()
        self.run_async = settings.run_async if run_async is None else bool(run_async)
        db.init_db()

    def context(self, user: int) -> PlatformContext:
        return PlatformContext(user=user, platform=self.platform)

    def get_handle(self, role_name: str, package_name: str, user: int) -> RequestHandle:
        role = self.catalog.get(role_name)
        return self.runtime.get_handle(RequestKey(role.name, package_name, user))

    def peek_handle(self, role_name: str, package_name: str, user: int) -> RequestHandle | None:
        role = self.catalog.get(role_name)
        return self.runtime.peek_handle(RequestKey(role.name, package_name, user))

    def _has_pending_request(self, role: Role, package_name: str, user: int) -> bool:
        handle = self.runtime.peek_handle(RequestKey(role.name, package_name, user))
        if handle is None:
            return False
        state = handle.state
        if state == IDLE:
            return False
        db.log_event(
            "WARN",
            f"Skipping holder change; request is {state} and must be reset first",
            role_name=role.name,
            package_name=package_name,
            user=user,
        )
        return True

    def manage_role_holder(self, role_name: str, package_name: str, user: int, add: bool) -> RequestHandle:
        """Add or remove `package_name` as a holder of the role.

        Returns the request handle for the key. If the handle is not idle the
        existing handle is returned and nothing is dispatched.
        """
        role = self.catalog.get(role_name)
        handle = self.runtime.get_handle(RequestKey(role.name, package_name, user))
        try:
            handle.begin(add)
        except ConcurrentRequestRejected as e:
            db.log_event(
                "WARN",
                f"Request already {e.state}; returning the existing handle",
                role_name=role.name,
                package_name=package_name,
                user=user,
            )
            return e.handle

        if self.run_async:
            try:
                Thread(target=self._run, args=(role, handle, add), daemon=True).start()
            except RuntimeError as e:
                handle.finish(e)
                raise
        else:
            self._run(role, handle, add)
        return handle

    def _run(self, role: Role, handle: RequestHandle, add: bool) -> None:
        package_name = handle.key.package_name
        user = handle.key.user
        error: BaseException | None = None
        try:
            db.log_event(
                "INFO",
                f"{'Adding' if add else 'Removing'} role holder",
                role_name=role.name,
                package_name=package_name,
                user=user,
            )
            try:
                context = self.context(user)
                if add:
                    self._add_holder(role, package_name, context)
                else:
                    role.behavior.revoke(role, package_name, context)
            except Exception as e:
                error = e

            if error is None:
                db.log_event(
                    "INFO",
                    f"Role holder {'added' if add else 'removed'}",
                    role_name=role.name,
                    package_name=package_name,
                    user=user,
                )
            else:
                db.log_event(
                    "ERROR",
                    f"Failed to {'add' if add else 'remove'} role holder: {type(error).__name__}: {error}",
                    role_name=role.name,
                    package_name=package_name,
                    user=user,
                )
            db.record_request(
                role.name,
                package_name,
                user,
                add,
                state="failure" if error else "success",
                error=f"{type(error).__name__}: {error}" if error else None,
                started_at=handle.started_at or db.utc_now(),
            )
        except BaseException as e:
            if error is None:
                error = e
            raise
        finally:
            # A running request always ends terminal.
            handle.finish(error)

    def _add_holder(self, role: Role, package_name: str, context: PlatformContext) -> None:
        if not role.is_package_qualified(package_name, context):
            raise PackageNotQualified(role.name, package_name)
        behavior = role.behavior
        if role.exclusive:
            for other in sorted(behavior.query_current_holders(role, context) - {package_name}):
                behavior.revoke(role, other, context)
                db.log_event(
                    "INFO",
                    f"Removed previous holder of exclusive role for '{package_name}'",
                    role_name=role.name,
                    package_name=other,
                    user=context.user,
                )
        behavior.grant(role, package_name, context)

    def query_current_holders(self, role_name: str, user: int) -> set[str]:
        role = self.catalog.get(role_name)
        return role.behavior.query_current_holders(role, self.context(user))

    def query_qualifying_applications(self, role_name: str, user: int) -> list[Candidate]:
        """Qualifying installed packages, in package directory order."""
        role = self.catalog.get(role_name)
        context = self.context(user)
        holders = role.behavior.query_current_holders(role, context)
        out: list[Candidate] = []
        for pkg in context.resolver.list_packages():
            if not role.is_package_qualified(pkg.package_name, context):
                continue
            out.append(
                Candidate(
                    package_name=pkg.package_name,
                    uid=pkg.uid(user),
                    label=pkg.display_label,
                    is_holder=pkg.package_name in holders,
                )
            )
        return out

    def reconcile(self, role_name: str, desired: Iterable[str], user: int) -> list[RequestHandle]:
        """Dispatch the removals and additions that turn the live holder set into `desired`.

        Keys whose request is still running or not yet reset are skipped.
        """
        role = self.catalog.get(role_name)
        wanted = set(desired)
        if role.exclusive and len(wanted) > 1:
            raise ValueError(f"Role '{role.name}' is exclusive and accepts at most one holder.")

        context = self.context(user)
        current = role.behavior.query_current_holders(role, context)
        handles: list[RequestHandle] = []
        for package_name in sorted(current - wanted):
            if self._has_pending_request(role, package_name, user):
                continue
            handles.append(self.manage_role_holder(role.name, package_name, user, add=False))
        for package_name in sorted(wanted - current):
            if self._has_pending_request(role, package_name, user):
                continue
            if not role.is_package_qualified(package_name, context):
                db.log_event(
                    "WARN",
                    "Skipping desired holder that does not qualify",
                    role_name=role.name,
                    package_name=package_name,
                    user=user,
                )
                continue
            handles.append(self.manage_role_holder(role.name, package_name, user, add=True))
        return handles

    def summarize(self, user: int) -> list[RoleSummary]:
        out: list[RoleSummary] = []
        for role in self.catalog:
            candidates = self.query_qualifying_applications(role.name, user)
            out.append(
                RoleSummary(
                    name=role.name,
                    label=role.label,
                    exclusive=role.exclusive,
                    holders=sum(1 for c in candidates if c.is_holder),
                    qualifying=len(candidates),
                )
            )
        return out
