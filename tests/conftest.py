import os
import sys

import pytest

# Ensure project root is importable (so `import cli` works reliably across environments)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from roleholder import db  # noqa: E402
from roleholder.platform import (  # noqa: E402
    BIND_NOTIFICATION_LISTENER_SERVICE,
    NOTIFICATION_LISTENER_SERVICE,
    InMemoryPlatform,
    PackageInfo,
    ServiceInfo,
)
from roleholder.reconciler import RoleReconciler  # noqa: E402
from roleholder.roles import default_catalog  # noqa: E402
from roleholder.settings import Settings  # noqa: E402

WATCH_PKG = "com.example.watch"
WATCH_SERVICE = "com.example.watch.NotificationMirror"


def listener(package_name: str, name: str, permission: str | None = BIND_NOTIFICATION_LISTENER_SERVICE) -> ServiceInfo:
    return ServiceInfo(
        package_name=package_name,
        name=name,
        interfaces=(NOTIFICATION_LISTENER_SERVICE,),
        permission=permission,
    )


def package(package_name: str, app_id: int, *services: ServiceInfo, label: str = "") -> PackageInfo:
    return PackageInfo(package_name=package_name, app_id=app_id, label=label, services=tuple(services))


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test writes its event log to its own sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "test.db")))
    db.init_db()


@pytest.fixture
def platform():
    p = InMemoryPlatform(users=[0])
    p.install_package(package(WATCH_PKG, 10057, listener(WATCH_PKG, WATCH_SERVICE), label="Example Watch"))
    p.install_package(package("com.example.notes", 10080, label="Notes"))
    return p


@pytest.fixture
def reconciler(platform):
    return RoleReconciler(default_catalog(), platform, run_async=False)
