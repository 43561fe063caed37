import os as _os
import sys

import pytest

# Ensure project root is importable (so `import cso` and `main.py` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from cso import db  # noqa: E402
from cso.dispatcher import ERROR, SUCCESS, DispatchHandle  # noqa: E402
from cso.ledger import OperationLedger  # noqa: E402
from cso.registry import HostComponent, Service, ServiceRegistry  # noqa: E402
from cso.settings import Settings  # noqa: E402


class FakeDispatcher:
    """Records descriptors; handles stay unresolved until the test resolves them."""

    def __init__(self):
        self.sent = []
        self.handles = []

    def send(self, descriptor):
        h = DispatchHandle(descriptor)
        self.sent.append(descriptor)
        self.handles.append(h)
        return h

    def succeed(self, index=-1, response=None):
        self.handles[index].resolve(SUCCESS, response or {})

    def fail(self, index=-1, response="HTTP 500"):
        self.handles[index].resolve(ERROR, response)


class FakeChecker:
    def __init__(self):
        self.pending = []

    def check_safe_to_stop(self, on_safe, on_unsafe=None):
        self.pending.append((on_safe, on_unsafe))

    def report_safe(self):
        for on_safe, _ in self.pending:
            on_safe()

    def report_unsafe(self, reason="NameNode checkpoint is stale"):
        for _, on_unsafe in self.pending:
            on_unsafe(reason)


class FakeTimers:
    def __init__(self):
        self.armed = []

    def __call__(self, delay_s, fn):
        self.armed.append((delay_s, fn))

    def fire_all(self):
        armed, self.armed = self.armed, []
        for _, fn in armed:
            fn()


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "cso.db")))
    db.init_db()
    yield


@pytest.fixture
def cfg():
    return Settings(
        cluster_name="c1",
        poll_interval_s=30,
        api_prefix="/api/v1",
        bg_operations_update_interval_s=6,
        batch_interval_s=1,
        batch_tolerate_size=0,
        show_bg_operations=True,
        enable_email=False,
    )


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def checker():
    return FakeChecker()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def ledger():
    return OperationLedger()


@pytest.fixture
def registry():
    return ServiceRegistry(
        services=[
            Service("HDFS", "STARTED", display_name="HDFS"),
            Service("YARN", "STARTED", display_name="YARN"),
        ],
        host_components=[
            HostComponent("NAMENODE", "nn1.example.com", "HDFS"),
            HostComponent("RESOURCEMANAGER", "rm1.example.com", "YARN"),
        ],
    )


@pytest.fixture
def engine(registry, ledger, dispatcher, checker, cfg, timers):
    from cso.engine import OrchestrationEngine

    shown = []
    eng = OrchestrationEngine(
        registry,
        ledger,
        dispatcher,
        checker,
        cfg=cfg,
        later=timers,
        show_background_operations=lambda: shown.append(True),
    )
    eng.shown = shown
    return eng
