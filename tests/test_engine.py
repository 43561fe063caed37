import httpx
import pytest

from cso import db
from cso.backend import ClusterApiClient
from cso.planner import BATCH, REQUEST, CommandContext
from cso.preconditions import NameNodeCheckpointChecker
from cso.queries import FAIL, PENDING, SUCCESS
from cso.registry import HostComponent, Service


def test_stop_all_waits_for_checkpoint_check(engine, dispatcher, checker):
    q = engine.request_transition("INSTALLED", confirmation_granted=True)

    assert q is not None
    assert q.status == PENDING
    assert dispatcher.sent == []
    assert len(checker.pending) == 1

    checker.report_safe()

    assert len(dispatcher.sent) == 1
    d = dispatcher.sent[0]
    assert d.context == CommandContext.STOP_ALL_SERVICES
    assert d.body == {"ServiceInfo": {"state": "INSTALLED"}}

    dispatcher.succeed()
    assert q.status == SUCCESS
    assert engine.shown == [True]


def test_checkpoint_safe_signal_twice_dispatches_once(engine, dispatcher, checker):
    engine.request_transition("INSTALLED", confirmation_granted=True)
    checker.report_safe()
    checker.report_safe()
    assert len(dispatcher.sent) == 1


def test_stop_all_without_running_hdfs_skips_checkpoint_check(engine, registry, dispatcher, checker):
    registry.replace([Service("HDFS", "INSTALLED"), Service("YARN", "STARTED")], registry.host_components())

    q = engine.request_transition("INSTALLED", confirmation_granted=True)

    assert q is not None
    assert checker.pending == []
    assert len(dispatcher.sent) == 1


def test_start_all_dispatches_directly(engine, registry, dispatcher, checker):
    registry.replace([Service("HDFS", "INSTALLED"), Service("YARN", "INSTALLED")], [])

    q = engine.request_transition("STARTED", confirmation_granted=True)

    assert checker.pending == []
    assert [d.context for d in dispatcher.sent] == [CommandContext.START_ALL_SERVICES]
    dispatcher.fail(response="HTTP 500: boom")
    assert q.status == FAIL
    assert "boom" in q.message
    assert engine.shown == []


def test_dispatch_failure_is_not_retried(engine, registry, dispatcher):
    registry.replace([Service("YARN", "INSTALLED")], [])
    engine.request_transition("STARTED", confirmation_granted=True)
    dispatcher.fail()
    assert len(dispatcher.sent) == 1


def test_unconfirmed_transition_is_a_noop(engine, dispatcher, checker):
    assert engine.request_transition("INSTALLED", confirmation_granted=False) is None
    assert dispatcher.sent == []
    assert checker.pending == []


def test_satisfied_transitions_are_noops(engine, registry, dispatcher):
    # Everything is already running.
    assert engine.request_transition("STARTED", confirmation_granted=True) is None

    registry.replace([Service("HDFS", "INSTALLED"), Service("PIG", "INSTALLED", client_only=True)], [])
    assert engine.request_transition("INSTALLED", confirmation_granted=True) is None

    # Only a client-only service is stopped: nothing to start.
    registry.replace([Service("HDFS", "STARTED"), Service("PIG", "INSTALLED", client_only=True)], [])
    assert engine.request_transition("STARTED", confirmation_granted=True) is None
    assert dispatcher.sent == []


def test_transitions_disabled_while_operations_in_flight(engine, ledger, dispatcher):
    ledger.set_count(2)
    assert engine.request_transition("INSTALLED", confirmation_granted=True) is None
    assert dispatcher.sent == []


def test_invalid_desired_state_raises(engine):
    with pytest.raises(ValueError):
        engine.request_transition("RESTARTED", confirmation_granted=True)


def test_checker_crash_marks_query_failed(engine, dispatcher):
    class Broken:
        def check_safe_to_stop(self, on_safe, on_unsafe=None):
            raise RuntimeError("metrics unavailable")

    engine.checker = Broken()
    q = engine.request_transition("INSTALLED", confirmation_granted=True)
    assert q.status == FAIL
    assert dispatcher.sent == []


def test_dispatcher_exception_does_not_escape(engine, registry):
    class Exploding:
        def send(self, descriptor):
            raise ConnectionError("backend down")

    engine.dispatcher = Exploding()
    registry.replace([Service("YARN", "INSTALLED")], [])
    q = engine.request_transition("STARTED", confirmation_granted=True)
    assert q.status == FAIL
    assert "backend down" in q.message


def test_restart_required_disabled_without_stale_configs(engine, dispatcher):
    assert engine.is_restart_all_required_disabled()
    assert engine.request_restart_required() is None
    assert dispatcher.sent == []


def test_restart_required_ignores_client_only_services(engine, registry, dispatcher):
    registry.replace([Service("PIG", "INSTALLED", stale_configs=True, client_only=True)], [])
    assert engine.request_restart_required() is None


def test_restart_required_single_request(engine, registry, dispatcher):
    registry.replace(
        [Service("HDFS", "STARTED", stale_configs=True, display_name="HDFS")],
        [HostComponent("DATANODE", "dn1", "HDFS", stale_configs=True)],
    )

    q = engine.request_restart_required()

    assert q is not None
    assert len(dispatcher.sent) == 1
    assert dispatcher.sent[0].kind == REQUEST
    dispatcher.succeed()
    assert q.status == SUCCESS
    assert engine.shown == [True]


def test_restart_required_with_stale_interactive_query_is_batched(engine, registry, dispatcher):
    registry.replace(
        [
            Service("HIVE", "STARTED", stale_configs=True, display_name="Hive"),
            Service("YARN", "STARTED", display_name="YARN"),
        ],
        [
            HostComponent("HIVE_SERVER_INTERACTIVE", "hive1", "HIVE", stale_configs=True),
            HostComponent("RESOURCEMANAGER", "rm1.example.com", "YARN"),
        ],
    )

    q = engine.request_restart_required()

    assert len(dispatcher.sent) == 1
    d = dispatcher.sent[0]
    assert d.kind == BATCH
    assert d.tolerate_size == 0
    assert [s.order_id for s in d.steps] == [1, 2]
    assert d.steps[0].body["RequestInfo"]["command"] == "REFRESHQUEUES"
    assert d.steps[1].body["RequestInfo"]["command"] == "RESTART"
    dispatcher.succeed()
    assert q.status == SUCCESS
    assert engine.shown == [True]


def test_stale_service_names_are_unique_display_names(engine, registry):
    registry.replace(
        [Service("HIVE", "STARTED", stale_configs=True, display_name="Hive"), Service("HDFS", "STARTED", stale_configs=True)],
        [
            HostComponent("HIVE_SERVER", "h1", "HIVE", stale_configs=True),
            HostComponent("HIVE_METASTORE", "h2", "HIVE", stale_configs=True),
            HostComponent("DATANODE", "dn1", "HDFS", stale_configs=True),
            HostComponent("NAMENODE", "nn1", "HDFS"),
        ],
    )
    assert engine.stale_service_names() == ["Hive", "HDFS"]


def test_background_operations_hidden_when_preference_off(registry, ledger, dispatcher, checker, timers, cfg):
    from dataclasses import replace

    from cso.engine import OrchestrationEngine

    shown = []
    eng = OrchestrationEngine(
        registry,
        ledger,
        dispatcher,
        checker,
        cfg=replace(cfg, show_bg_operations=False),
        later=timers,
        show_background_operations=lambda: shown.append(True),
    )
    registry.replace([Service("YARN", "INSTALLED")], [])
    eng.request_transition("STARTED", confirmation_granted=True)
    dispatcher.succeed()
    assert shown == []


def test_queries_are_persisted(engine, registry, dispatcher):
    registry.replace([Service("YARN", "INSTALLED")], [])
    q = engine.request_transition("STARTED", confirmation_granted=True)
    dispatcher.succeed()

    rows = db.list_queries()
    assert [(r.id, r.status) for r in rows] == [(q.id, SUCCESS)]




def test_unsafe_checkpoint_defers_stop_until_recheck_passes(engine, dispatcher, checker, timers):
    q = engine.request_transition("INSTALLED", confirmation_granted=True)
    checker.report_unsafe("nn1: last checkpoint 30.0h ago")

    assert q.status == PENDING
    assert "30.0h" in q.message
    assert dispatcher.sent == []
    assert [delay for delay, _ in timers.armed] == [30]

    timers.fire_all()
    assert len(checker.pending) == 2
    checker.report_safe()

    assert len(dispatcher.sent) == 1
    dispatcher.succeed()
    assert q.status == SUCCESS
    assert q.message == "Accepted"


def test_failing_recheck_marks_query_failed(engine, dispatcher, timers):
    class FlakyChecker:
        calls = 0

        def check_safe_to_stop(self, on_safe, on_unsafe=None):
            self.calls += 1
            if self.calls > 1:
                raise RuntimeError("metrics unavailable")
            on_unsafe("no NameNode reported checkpoint metrics")

    engine.checker = FlakyChecker()
    q = engine.request_transition("INSTALLED", confirmation_granted=True)
    assert q.status == PENDING

    timers.fire_all()
    assert q.status == FAIL
    assert "metrics unavailable" in q.message
    assert timers.armed == []
    assert dispatcher.sent == []


def test_stop_all_behind_namenode_checkpoint_check(engine, dispatcher, timers, cfg):
    now_s = 1_700_000_000
    last_checkpoint = {"ms": now_s * 1000 - 24 * 3600 * 1000}

    def handler(request):
        fs = {"LastCheckpointTime": last_checkpoint["ms"], "TxnsSinceLastCheckpoint": 40}
        return httpx.Response(
            200,
            json={"items": [{"HostRoles": {"host_name": "nn1.example.com"}, "metrics": {"dfs": {"FSNamesystem": fs}}}]},
        )

    client = ClusterApiClient(cfg, transport=httpx.MockTransport(handler))
    engine.checker = NameNodeCheckpointChecker(client, cfg=cfg, clock=lambda: now_s, spawn=lambda fn: fn())

    q = engine.request_transition("INSTALLED", confirmation_granted=True)
    assert q.status == PENDING
    assert "24.0h" in q.message
    assert dispatcher.sent == []

    # The NameNode checkpoints; the next check lets the stop through.
    last_checkpoint["ms"] = now_s * 1000 - 60 * 1000
    timers.fire_all()

    assert [d.context for d in dispatcher.sent] == [CommandContext.STOP_ALL_SERVICES]
    dispatcher.succeed()
    assert q.status == SUCCESS
