"""Tests for workload_attestor.kube.client — cluster adapters with a mocked API."""
from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
from conftest import FakeClock
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError, ProtocolError, ReadTimeoutError

from workload_attestor.config import ClusterConnectionConfig
from workload_attestor.kube.client import (
    ClusterClientFactory,
    KubePodDirectory,
    KubeTokenReviewer,
    pod_record_from_kube,
)
from workload_attestor.resolution.engine import (
    AttestationRequest,
    ByDiscriminantScan,
    ResolutionEngine,
)
from workload_attestor.resolution.errors import DirectoryUnavailableError, NotFoundExhaustedError
from workload_attestor.resolution.resolver import known_pod


def _v1pod(name: str = "web-7", namespace: str = "prod") -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=f"uid-{name}",
            labels={"app": "web"},
            owner_references=[
                client.V1OwnerReference(
                    api_version="apps/v1", kind="ReplicaSet", name="web-5d9", uid="rs-uid"
                )
            ],
        ),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name="main", image="web:1")],
            service_account_name="web-sa",
            node_name="node-1",
        ),
        status=client.V1PodStatus(
            container_statuses=[
                client.V1ContainerStatus(
                    name="main",
                    image="web:1",
                    image_id="web@sha256:01",
                    container_id="containerd://abc",
                    ready=True,
                    restart_count=0,
                )
            ]
        ),
    )


@pytest.fixture()
def core_api() -> MagicMock:
    return MagicMock(spec=client.CoreV1Api)


@pytest.fixture()
def factory(core_api: MagicMock) -> MagicMock:
    fake = MagicMock(spec=ClusterClientFactory)
    fake.core_v1.return_value = core_api
    fake.request_timeout = 3.0
    fake.config = ClusterConnectionConfig(audiences=("spire",))
    return fake


# ===========================================================================
# ClusterClientFactory
# ===========================================================================


class TestClusterClientFactory:
    def test_client_built_once_and_cached(self) -> None:
        loader = MagicMock(return_value=MagicMock(spec=client.ApiClient))
        factory = ClusterClientFactory(ClusterConnectionConfig(), environ={}, loader=loader)
        first = factory.api_client()
        second = factory.api_client()
        assert first is second
        loader.assert_called_once()

    def test_loader_receives_config_and_environ(self) -> None:
        loader = MagicMock(return_value=MagicMock(spec=client.ApiClient))
        config = ClusterConnectionConfig(kubeconfig="/etc/kc")
        ClusterClientFactory(config, environ={"HOME": "/h"}, loader=loader).api_client()
        loader.assert_called_once_with(config, {"HOME": "/h"})

    def test_concurrent_first_use_builds_one_client(self) -> None:
        barrier = threading.Barrier(8)
        built: list[object] = []

        def slow_loader(config, environ):  # type: ignore[no-untyped-def]
            built.append(object())
            return built[-1]

        factory = ClusterClientFactory(ClusterConnectionConfig(), environ={}, loader=slow_loader)
        seen: list[object] = []

        def worker() -> None:
            barrier.wait()
            seen.append(factory.api_client())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(built) == 1
        assert all(s is built[0] for s in seen)

    def test_config_failure_is_directory_unavailable(self) -> None:
        loader = MagicMock(side_effect=ConfigException("Service host/port is not set."))
        factory = ClusterClientFactory(ClusterConnectionConfig(), environ={}, loader=loader)
        with pytest.raises(DirectoryUnavailableError) as exc_info:
            factory.api_client()
        assert exc_info.value.retryable

    def test_missing_kubeconfig_is_directory_unavailable(self) -> None:
        loader = MagicMock(side_effect=FileNotFoundError("/nope/config"))
        factory = ClusterClientFactory(ClusterConnectionConfig(), environ={}, loader=loader)
        with pytest.raises(DirectoryUnavailableError):
            factory.api_client()

    def test_failed_construction_is_retried_on_next_use(self) -> None:
        api = MagicMock(spec=client.ApiClient)
        loader = MagicMock(side_effect=[ConfigException("not yet"), api])
        factory = ClusterClientFactory(ClusterConnectionConfig(), environ={}, loader=loader)
        with pytest.raises(DirectoryUnavailableError):
            factory.api_client()
        assert factory.api_client() is api


# ===========================================================================
# Conversion
# ===========================================================================


class TestPodRecordFromKube:
    def test_converts_all_fields(self) -> None:
        record = pod_record_from_kube(_v1pod())
        assert record.qualified_name == "prod/web-7"
        assert record.uid == "uid-web-7"
        assert record.service_account == "web-sa"
        assert record.node_name == "node-1"
        assert record.labels == {"app": "web"}
        assert record.owners[0].kind == "ReplicaSet"
        assert record.containers[0].image_id == "web@sha256:01"
        assert record.init_containers == ()

    def test_pod_without_status(self) -> None:
        pod = _v1pod()
        pod.status = None
        assert pod_record_from_kube(pod).containers == ()


# ===========================================================================
# KubePodDirectory
# ===========================================================================


class TestKubePodDirectory:
    def test_list_all_namespaces(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_pod_for_all_namespaces.return_value = client.V1PodList(items=[_v1pod()])
        pods = KubePodDirectory(factory).list_pods()
        assert [p.name for p in pods] == ["web-7"]
        core_api.list_pod_for_all_namespaces.assert_called_once_with(_request_timeout=3.0)

    def test_list_one_namespace(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_namespaced_pod.return_value = client.V1PodList(items=[])
        assert KubePodDirectory(factory).list_pods("prod") == []
        core_api.list_namespaced_pod.assert_called_once_with("prod", _request_timeout=3.0)

    def test_list_failure_is_directory_unavailable(
        self, factory: MagicMock, core_api: MagicMock
    ) -> None:
        core_api.list_pod_for_all_namespaces.side_effect = ApiException(status=500, reason="boom")
        with pytest.raises(DirectoryUnavailableError) as exc_info:
            KubePodDirectory(factory).list_pods()
        assert exc_info.value.retryable

    def test_connection_refused_is_directory_unavailable(
        self, factory: MagicMock, core_api: MagicMock
    ) -> None:
        core_api.list_pod_for_all_namespaces.side_effect = MaxRetryError(
            None, "/api/v1/pods", reason="connection refused"  # type: ignore[arg-type]
        )
        with pytest.raises(DirectoryUnavailableError) as exc_info:
            KubePodDirectory(factory).list_pods()
        assert exc_info.value.retryable

    def test_read_timeout_is_directory_unavailable(
        self, factory: MagicMock, core_api: MagicMock
    ) -> None:
        core_api.read_namespaced_pod.side_effect = ReadTimeoutError(
            None, "/api/v1/namespaces/prod/pods/web-7", "Read timed out."  # type: ignore[arg-type]
        )
        with pytest.raises(DirectoryUnavailableError):
            KubePodDirectory(factory).get_pod("prod", "web-7")

    def test_dropped_connection_on_namespaces(
        self, factory: MagicMock, core_api: MagicMock
    ) -> None:
        core_api.list_namespace.side_effect = ProtocolError("Connection aborted.")
        with pytest.raises(DirectoryUnavailableError):
            KubePodDirectory(factory).active_namespaces()

    def test_get_pod(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.read_namespaced_pod.return_value = _v1pod()
        pod = KubePodDirectory(factory).get_pod("prod", "web-7")
        assert pod is not None and pod.uid == "uid-web-7"

    def test_get_missing_pod_returns_none(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
        assert KubePodDirectory(factory).get_pod("prod", "gone") is None

    def test_get_forbidden_raises(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.read_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(DirectoryUnavailableError):
            KubePodDirectory(factory).get_pod("prod", "web-7")

    def test_active_namespaces(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_namespace.return_value = client.V1NamespaceList(
            items=[
                client.V1Namespace(
                    metadata=client.V1ObjectMeta(name="prod"),
                    status=client.V1NamespaceStatus(phase="Active"),
                ),
                client.V1Namespace(
                    metadata=client.V1ObjectMeta(name="old"),
                    status=client.V1NamespaceStatus(phase="Terminating"),
                ),
            ]
        )
        assert KubePodDirectory(factory).active_namespaces() == ["prod"]

    def test_annotate_pods_by_name(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_pod_for_all_namespaces.return_value = client.V1PodList(
            items=[_v1pod("web-7"), _v1pod("db-0")]
        )
        patched = KubePodDirectory(factory).annotate_pods({"team": "core"}, pod_name="web-7")
        assert patched == ["prod/web-7"]
        core_api.patch_namespaced_pod.assert_called_once_with(
            "web-7", "prod", {"metadata": {"annotations": {"team": "core"}}}, _request_timeout=3.0
        )

    def test_annotate_namespace(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[_v1pod("a"), _v1pod("b")]
        )
        patched = KubePodDirectory(factory).annotate_pods({"k": "v"}, namespace="prod")
        assert patched == ["prod/a", "prod/b"]
        assert core_api.patch_namespaced_pod.call_count == 2


# ===========================================================================
# KubeTokenReviewer
# ===========================================================================


class TestKubeTokenReviewer:
    def _auth_api(self, factory: MagicMock, response: object) -> MagicMock:
        auth_api = MagicMock(spec=client.AuthenticationV1Api)
        auth_api.create_token_review.return_value = response
        factory.authentication_v1.return_value = auth_api
        return auth_api

    def test_authenticated_review(self, factory: MagicMock) -> None:
        response = client.V1TokenReview(
            spec=client.V1TokenReviewSpec(token="t"),
            status=client.V1TokenReviewStatus(
                authenticated=True,
                user=client.V1UserInfo(
                    username="system:serviceaccount:prod:web-sa",
                    extra={"authentication.kubernetes.io/pod-name": ["web-7"]},
                ),
            ),
        )
        auth_api = self._auth_api(factory, response)
        review = KubeTokenReviewer(factory).review("a.b.c")
        assert review.authenticated
        assert review.extra_claims == {"authentication.kubernetes.io/pod-name": ["web-7"]}
        body = auth_api.create_token_review.call_args.args[0]
        assert body.spec.token == "a.b.c"
        assert body.spec.audiences == ["spire"]

    def test_unauthenticated_review(self, factory: MagicMock) -> None:
        response = client.V1TokenReview(
            spec=client.V1TokenReviewSpec(token="t"),
            status=client.V1TokenReviewStatus(authenticated=False, error="invalid bearer token"),
        )
        self._auth_api(factory, response)
        review = KubeTokenReviewer(factory).review("a.b.c")
        assert not review.authenticated
        assert review.error == "invalid bearer token"

    def test_api_failure_is_directory_unavailable(self, factory: MagicMock) -> None:
        auth_api = MagicMock(spec=client.AuthenticationV1Api)
        auth_api.create_token_review.side_effect = ApiException(status=503, reason="unavailable")
        factory.authentication_v1.return_value = auth_api
        with pytest.raises(DirectoryUnavailableError):
            KubeTokenReviewer(factory).review("a.b.c")

    def test_transport_failure_is_directory_unavailable(self, factory: MagicMock) -> None:
        auth_api = MagicMock(spec=client.AuthenticationV1Api)
        auth_api.create_token_review.side_effect = MaxRetryError(
            None, "/apis/authentication.k8s.io/v1/tokenreviews", reason="connection refused"  # type: ignore[arg-type]
        )
        factory.authentication_v1.return_value = auth_api
        with pytest.raises(DirectoryUnavailableError):
            KubeTokenReviewer(factory).review("a.b.c")


# ===========================================================================
# Engine over an unreachable cluster
# ===========================================================================


class TestEngineOverUnreachableCluster:
    def test_connection_failures_are_retried_until_exhausted(
        self, factory: MagicMock, core_api: MagicMock
    ) -> None:
        core_api.list_pod_for_all_namespaces.side_effect = MaxRetryError(
            None, "/api/v1/pods", reason="connection refused"  # type: ignore[arg-type]
        )
        clock = FakeClock()
        engine = ResolutionEngine(
            ByDiscriminantScan(KubePodDirectory(factory), predicate_factory=lambda pid: known_pod),
            max_attempts=3,
            clock=clock,
        )
        with pytest.raises(NotFoundExhaustedError):
            engine.resolve(AttestationRequest(pid=42))
        assert core_api.list_pod_for_all_namespaces.call_count == 3
        assert len(clock.waits) == 2

    def test_recovers_once_cluster_answers(self, factory: MagicMock, core_api: MagicMock) -> None:
        core_api.list_pod_for_all_namespaces.side_effect = [
            MaxRetryError(None, "/api/v1/pods", reason="connection refused"),  # type: ignore[arg-type]
            client.V1PodList(items=[_v1pod()]),
        ]
        engine = ResolutionEngine(
            ByDiscriminantScan(KubePodDirectory(factory), predicate_factory=lambda pid: known_pod),
            max_attempts=3,
            clock=FakeClock(),
        )
        selectors = engine.resolve(AttestationRequest(pid=42))
        assert "pod-name:web-7" in selectors
