"""Cluster-backed pod directory and token reviewer.

:class:`ClusterClientFactory` builds one ``kubernetes`` API client from an
explicit :class:`~workload_attestor.config.ClusterConnectionConfig` the
first time it is needed and hands the same client to every caller after
that. Construction is guarded by a lock so concurrent first use cannot
build two clients.

:class:`KubePodDirectory` and :class:`KubeTokenReviewer` adapt the client
to the :mod:`workload_attestor.resolution.directory` protocols. Transport
failures surface as
:class:`~workload_attestor.resolution.errors.DirectoryUnavailableError`,
which the engine retries like any other miss.
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Mapping, Optional

from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from workload_attestor.config import ClusterConnectionConfig
from workload_attestor.resolution.descriptor import ContainerStatus, OwnerReference, PodRecord
from workload_attestor.resolution.directory import TokenReview
from workload_attestor.resolution.errors import DirectoryUnavailableError

logger = logging.getLogger(__name__)

ApiClientLoader = Callable[[ClusterConnectionConfig, Mapping[str, str]], client.ApiClient]


def load_api_client(
    config: ClusterConnectionConfig, environ: Mapping[str, str]
) -> client.ApiClient:
    """Build an API client for *config* without touching global client state."""
    if config.resolve_in_cluster(environ):
        configuration = client.Configuration()
        kube_config.load_incluster_config(client_configuration=configuration)
        logger.info("Connecting to cluster API at %s (in-cluster)", configuration.host)
        return client.ApiClient(configuration)

    kubeconfig = config.resolve_kubeconfig(environ)
    logger.info("Connecting to cluster API using kubeconfig %s", kubeconfig or "<default>")
    return kube_config.new_client_from_config(config_file=kubeconfig, context=config.context)


class ClusterClientFactory:
    """Lazily constructed, shared API client.

    Parameters
    ----------
    config:
        Connection settings.
    environ:
        Environment used for in-cluster detection and kubeconfig lookup.
        Defaults to a snapshot of ``os.environ`` taken at construction.
    loader:
        Builds the client; replaceable in tests.
    """

    def __init__(
        self,
        config: ClusterConnectionConfig,
        environ: Optional[Mapping[str, str]] = None,
        loader: ApiClientLoader = load_api_client,
    ) -> None:
        self.config = config
        self._environ: Mapping[str, str] = dict(os.environ if environ is None else environ)
        self._loader = loader
        self._api_client: Optional[client.ApiClient] = None
        self._lock = threading.Lock()

    @property
    def request_timeout(self) -> float:
        return self.config.request_timeout_seconds

    def api_client(self) -> client.ApiClient:
        api = self._api_client
        if api is not None:
            return api
        with self._lock:
            if self._api_client is None:
                try:
                    self._api_client = self._loader(self.config, self._environ)
                except (ConfigException, OSError) as exc:
                    logger.error("Cannot configure cluster client: %s", exc)
                    raise DirectoryUnavailableError("configure cluster client", str(exc)) from exc
            return self._api_client

    def core_v1(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.api_client())

    def authentication_v1(self) -> client.AuthenticationV1Api:
        return client.AuthenticationV1Api(self.api_client())


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def _container_status_from_kube(status: Any) -> ContainerStatus:
    return ContainerStatus(
        name=status.name or "",
        image=status.image or "",
        image_id=status.image_id or "",
        container_id=status.container_id or "",
    )


def pod_record_from_kube(pod: Any) -> PodRecord:
    """Convert a ``V1Pod`` into a :class:`PodRecord`."""
    metadata = pod.metadata
    spec = pod.spec
    status = pod.status
    return PodRecord(
        namespace=metadata.namespace or "",
        name=metadata.name or "",
        uid=metadata.uid or "",
        service_account=(spec.service_account_name or "") if spec is not None else "",
        node_name=(spec.node_name or "") if spec is not None else "",
        labels=dict(metadata.labels or {}),
        owners=tuple(
            OwnerReference(kind=ref.kind, name=ref.name, uid=ref.uid)
            for ref in metadata.owner_references or []
        ),
        containers=tuple(
            _container_status_from_kube(s)
            for s in (status.container_statuses if status is not None else None) or []
        ),
        init_containers=tuple(
            _container_status_from_kube(s)
            for s in (status.init_container_statuses if status is not None else None) or []
        ),
        annotations=dict(metadata.annotations or {}),
    )


# ---------------------------------------------------------------------------
# Pod directory
# ---------------------------------------------------------------------------


class KubePodDirectory:
    """:class:`~workload_attestor.resolution.directory.PodDirectory` backed by the cluster API."""

    def __init__(self, factory: ClusterClientFactory) -> None:
        self._factory = factory

    def list_pods(self, namespace: str = "") -> list[PodRecord]:
        core = self._factory.core_v1()
        timeout = self._factory.request_timeout
        try:
            if namespace:
                pods = core.list_namespaced_pod(namespace, _request_timeout=timeout)
            else:
                pods = core.list_pod_for_all_namespaces(_request_timeout=timeout)
        except ApiException as exc:
            logger.error("Listing pods failed: %s", exc.reason)
            raise DirectoryUnavailableError("list pods", str(exc.reason)) from exc
        except HTTPError as exc:
            logger.error("Listing pods failed: %s", exc)
            raise DirectoryUnavailableError("list pods", str(exc)) from exc
        return [pod_record_from_kube(pod) for pod in pods.items or []]

    def get_pod(self, namespace: str, name: str) -> Optional[PodRecord]:
        core = self._factory.core_v1()
        try:
            pod = core.read_namespaced_pod(
                name, namespace, _request_timeout=self._factory.request_timeout
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            logger.error("Reading pod %s/%s failed: %s", namespace, name, exc.reason)
            raise DirectoryUnavailableError(f"get pod {namespace}/{name}", str(exc.reason)) from exc
        except HTTPError as exc:
            logger.error("Reading pod %s/%s failed: %s", namespace, name, exc)
            raise DirectoryUnavailableError(f"get pod {namespace}/{name}", str(exc)) from exc
        return pod_record_from_kube(pod)

    def active_namespaces(self) -> list[str]:
        """Return the names of namespaces in phase ``Active``."""
        core = self._factory.core_v1()
        try:
            namespaces = core.list_namespace(_request_timeout=self._factory.request_timeout)
        except ApiException as exc:
            raise DirectoryUnavailableError("list namespaces", str(exc.reason)) from exc
        except HTTPError as exc:
            raise DirectoryUnavailableError("list namespaces", str(exc)) from exc
        return [
            ns.metadata.name
            for ns in namespaces.items or []
            if ns.status is not None and ns.status.phase == "Active"
        ]

    def annotate_pods(
        self,
        annotations: Mapping[str, str],
        namespace: str = "",
        pod_name: Optional[str] = None,
    ) -> list[str]:
        """Merge *annotations* into matching pods.

        Parameters
        ----------
        annotations:
            Annotations to set; existing keys are overwritten.
        namespace:
            Restrict to one namespace; empty means all namespaces.
        pod_name:
            Restrict to pods with this name.

        Returns
        -------
        list[str]
            Qualified names of the pods that were patched.
        """
        core = self._factory.core_v1()
        body = {"metadata": {"annotations": dict(annotations)}}
        patched: list[str] = []
        for pod in self.list_pods(namespace):
            if pod_name is not None and pod.name != pod_name:
                continue
            try:
                core.patch_namespaced_pod(
                    pod.name,
                    pod.namespace,
                    body,
                    _request_timeout=self._factory.request_timeout,
                )
            except ApiException as exc:
                raise DirectoryUnavailableError(
                    f"annotate pod {pod.qualified_name}", str(exc.reason)
                ) from exc
            except HTTPError as exc:
                raise DirectoryUnavailableError(f"annotate pod {pod.qualified_name}", str(exc)) from exc
            patched.append(pod.qualified_name)
        logger.info("Annotated %d pod(s)", len(patched))
        return patched


# ---------------------------------------------------------------------------
# Token reviewer
# ---------------------------------------------------------------------------


class KubeTokenReviewer:
    """:class:`~workload_attestor.resolution.directory.TokenReviewer` using the TokenReview API."""

    def __init__(self, factory: ClusterClientFactory) -> None:
        self._factory = factory

    def review(self, token: str) -> TokenReview:
        audiences = list(self._factory.config.audiences) or None
        body = client.V1TokenReview(spec=client.V1TokenReviewSpec(token=token, audiences=audiences))
        try:
            response = self._factory.authentication_v1().create_token_review(
                body, _request_timeout=self._factory.request_timeout
            )
        except ApiException as exc:
            logger.error("Token review failed: %s", exc.reason)
            raise DirectoryUnavailableError("token review", str(exc.reason)) from exc
        except HTTPError as exc:
            logger.error("Token review failed: %s", exc)
            raise DirectoryUnavailableError("token review", str(exc)) from exc

        status = response.status
        if status is None:
            return TokenReview(authenticated=False, error="token review returned no status")
        user = status.user
        extra = dict(user.extra or {}) if user is not None else {}
        return TokenReview(
            authenticated=bool(status.authenticated),
            extra_claims={str(k): list(v or []) for k, v in extra.items()},
            error=status.error or "",
        )
