"""Tests for the Kubernetes-backed store."""

import asyncio
import itertools
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import urllib3
from kubernetes.client.exceptions import ApiException
from pizzeria.config import ControllerConfig
from pizzeria.core.errors import (
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from pizzeria.domain.models import (
    EventType,
    Job,
    JobEvent,
    ObjectKey,
    ObjectMeta,
    OrderEvent,
    OrderPhase,
)
from pizzeria.dispatcher import BackoffPolicy, Dispatcher
from pizzeria.index import register_job_owner_index
from pizzeria.manager import build_scheme
from pizzeria.reconciler import OrderReconciler
from pizzeria.store.kubernetes import KubernetesStore, translate_api_error

ORDER = {
    "apiVersion": "resturant.foodie.io/v1",
    "kind": "Pizza",
    "metadata": {
        "name": "margherita",
        "namespace": "default",
        "uid": "uid-1",
        "resourceVersion": "41",
        "creationTimestamp": "2024-05-01T12:00:00Z",
    },
    "spec": {"jobTemplate": {"spec": {"template": {"spec": {"restartPolicy": "Never"}}}}},
    "status": {},
}


def _job_dict(name, owner=None):
    metadata = {"name": name, "namespace": "default", "resourceVersion": "7"}
    if owner:
        metadata["ownerReferences"] = [
            {
                "apiVersion": "resturant.foodie.io/v1",
                "kind": "Pizza",
                "name": owner,
                "uid": f"uid-{owner}",
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]
    return {
        "metadata": metadata,
        "spec": {},
        "status": {"conditions": [{"type": "Complete", "status": "True"}]},
    }


@pytest.fixture
def custom_api():
    return MagicMock()


@pytest.fixture
def batch_api():
    return MagicMock()


@pytest.fixture
def k8s_store(custom_api, batch_api):
    config = ControllerConfig()
    store = KubernetesStore(config=config, namespace="default", request_timeout=3.0)
    register_job_owner_index(store.field_indexer, config)
    with patch.object(store, "_ensure_initialized"), patch.object(
        store, "_get_custom_api", return_value=custom_api
    ), patch.object(store, "_get_batch_api", return_value=batch_api):
        yield store


class TestTranslateApiError:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (404, NotFoundError),
            (409, ConflictError),
            (429, TransientError),
            (500, TransientError),
            (503, TransientError),
            (422, ValidationError),
            (403, ValidationError),
        ],
    )
    def test_status_mapping(self, status, expected):
        error = translate_api_error(ApiException(status=status, reason="x"))
        assert type(error) is expected
        assert error.details["status"] == status

    def test_network_error_is_transient(self):
        error = translate_api_error(urllib3.exceptions.ProtocolError("reset"))
        assert isinstance(error, TransientError)

    def test_unknown_errors_reraised(self):
        with pytest.raises(KeyError):
            translate_api_error(KeyError("bug"))


class TestOrders:
    @pytest.mark.asyncio
    async def test_get_order(self, k8s_store, custom_api):
        custom_api.get_namespaced_custom_object.return_value = ORDER

        order = await k8s_store.get_order(ObjectKey("default", "margherita"))

        custom_api.get_namespaced_custom_object.assert_called_once_with(
            "resturant.foodie.io", "v1", "default", "pizzas", "margherita", _request_timeout=3.0
        )
        assert order.metadata.uid == "uid-1"
        assert order.job_template["spec"]["template"]["spec"]["restartPolicy"] == "Never"

    @pytest.mark.asyncio
    async def test_get_missing_order(self, k8s_store, custom_api):
        custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(NotFoundError):
            await k8s_store.get_order(ObjectKey("default", "margherita"))

    @pytest.mark.asyncio
    async def test_update_status_sends_resource_version(self, k8s_store, custom_api):
        custom_api.get_namespaced_custom_object.return_value = ORDER
        order = await k8s_store.get_order(ObjectKey("default", "margherita"))
        order.status.phase = OrderPhase.READY
        order.status.price = 123
        custom_api.replace_namespaced_custom_object_status.return_value = {
            **ORDER,
            "status": {"phase": "Ready to Pickup", "price": 123},
        }

        updated = await k8s_store.update_order_status(order)

        args = custom_api.replace_namespaced_custom_object_status.call_args.args
        assert args[:5] == ("resturant.foodie.io", "v1", "default", "pizzas", "margherita")
        body = args[5]
        assert body["metadata"]["resourceVersion"] == "41"
        assert body["status"] == {"phase": "Ready to Pickup", "price": 123}
        assert updated.status.price == 123

    @pytest.mark.asyncio
    async def test_update_status_conflict(self, k8s_store, custom_api):
        custom_api.get_namespaced_custom_object.return_value = ORDER
        order = await k8s_store.get_order(ObjectKey("default", "margherita"))
        custom_api.replace_namespaced_custom_object_status.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(ConflictError):
            await k8s_store.update_order_status(order)


class TestJobs:
    @pytest.mark.asyncio
    async def test_list_jobs_filters_by_owner(self, k8s_store, batch_api):
        batch_api.list_namespaced_job.return_value = MagicMock(
            items=[_job_dict("a", owner="margherita"), _job_dict("b", owner="quattro"), _job_dict("c")]
        )

        jobs = await k8s_store.list_jobs("default", {".metadata.controller": "margherita"})

        batch_api.list_namespaced_job.assert_called_once_with("default", _request_timeout=3.0)
        assert [j.metadata.name for j in jobs] == ["a"]
        assert jobs[0].conditions[0].type == "Complete"

    @pytest.mark.asyncio
    async def test_list_failure_is_transient(self, k8s_store, batch_api):
        batch_api.list_namespaced_job.side_effect = urllib3.exceptions.ReadTimeoutError(None, None, "timed out")

        with pytest.raises(TransientError):
            await k8s_store.list_jobs("default", {".metadata.controller": "margherita"})

    @pytest.mark.asyncio
    async def test_create_job(self, k8s_store, batch_api):
        batch_api.create_namespaced_job.return_value = _job_dict("margherita-1", owner="margherita")
        job = Job(metadata=ObjectMeta(name="margherita-1", namespace="default"), spec={"parallelism": 1})

        created = await k8s_store.create_job(job)

        namespace, body = batch_api.create_namespaced_job.call_args.args
        assert namespace == "default"
        assert body["apiVersion"] == "batch/v1"
        assert body["kind"] == "Job"
        assert body["spec"] == {"parallelism": 1}
        assert created.metadata.owner_references[0].name == "margherita"


class TestCancelledCalls:
    @pytest.mark.asyncio
    async def test_cancellation_waits_for_api_thread(self, k8s_store, batch_api):
        finished = threading.Event()

        def slow_create(namespace, body, **kwargs):
            time.sleep(0.2)
            finished.set()
            return body

        batch_api.create_namespaced_job.side_effect = slow_create
        job = Job(metadata=ObjectMeta(name="margherita-1", namespace="default"))

        task = asyncio.create_task(k8s_store.create_job(job))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_reconcile_timeout_does_not_duplicate_job(self, k8s_store, custom_api, batch_api):
        """A create outliving the reconcile deadline is seen by the retry, not repeated."""
        created = []

        def slow_create(namespace, body, **kwargs):
            time.sleep(0.3)
            created.append(body)
            return body

        batch_api.create_namespaced_job.side_effect = slow_create
        batch_api.list_namespaced_job.side_effect = lambda *args, **kwargs: MagicMock(items=list(created))
        custom_api.get_namespaced_custom_object.return_value = ORDER
        custom_api.replace_namespaced_custom_object_status.return_value = ORDER

        config = ControllerConfig()
        ticks = itertools.count(1_700_000_000)
        reconciler = OrderReconciler(
            store=k8s_store, scheme=build_scheme(config), config=config, clock=lambda: next(ticks)
        )
        dispatcher = Dispatcher(
            reconciler.reconcile, backoff=BackoffPolicy(initial=0.001, maximum=0.01, jitter=0), timeout=0.1
        )
        dispatcher.start()
        dispatcher.add(ObjectKey("default", "margherita"))

        await asyncio.sleep(0.8)
        await dispatcher.shutdown()

        assert len(created) == 1
        assert dispatcher.failures(ObjectKey("default", "margherita")) == 0


class TestWatchLoop:
    def test_emits_typed_events_and_resumes(self, k8s_store):
        stop = threading.Event()
        emitted = []

        def emit(event):
            emitted.append(event)
            stop.set()

        stream = [{"type": "ADDED", "object": ORDER}]
        with patch("kubernetes.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.return_value = iter(stream)
            k8s_store._watch_loop("orders", MagicMock(), (), k8s_store._order_event, emit, stop)

        assert len(emitted) == 1
        assert isinstance(emitted[0], OrderEvent)
        assert emitted[0].type == EventType.ADDED
        assert emitted[0].order.key == ObjectKey("default", "margherita")

    def test_job_events(self, k8s_store):
        event = k8s_store._job_event(EventType.MODIFIED, _job_dict("a", owner="margherita"))

        assert isinstance(event, JobEvent)
        assert event.job.metadata.owner_references[0].name == "margherita"

    def test_expired_resource_version_relists(self, k8s_store):
        stop = threading.Event()
        calls = []

        def fake_stream(func, *args, **kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                yield {"type": "ADDED", "object": ORDER}
                raise ApiException(status=410, reason="Gone")
            stop.set()
            return

        with patch("kubernetes.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.side_effect = fake_stream
            k8s_store._watch_loop("orders", MagicMock(), (), k8s_store._order_event, lambda e: None, stop)

        assert "resource_version" not in calls[0]
        assert "resource_version" not in calls[1]
