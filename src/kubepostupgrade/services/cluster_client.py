"""Thin Kubernetes API adapter used by the reconciliation phases."""

from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, RbacAuthorizationV1Api
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from urllib3.exceptions import HTTPError

from kubepostupgrade.constants import FIELD_MANAGER, NAMESPACE_SYSTEM
from kubepostupgrade.errors import NotFoundError, PostUpgradeError
from kubepostupgrade.models import DeploymentReadiness


class ClusterClient:
    """Wraps the typed Kubernetes APIs with create-or-update and dry-run semantics.

    In dry-run mode every mutating request is sent with ``dryRun=All`` so the
    API server validates it without persisting anything. 404 responses are
    raised as :class:`NotFoundError`.
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        dry_run: bool = False,
        api_client: Optional[ApiClient] = None,
    ):
        self.dry_run = dry_run
        self._dynamic = None
        if api_client is None:
            api_client = self._load_api_client(kubeconfig, context)
        self.api_client = api_client
        self.core_v1 = CoreV1Api(api_client)
        self.apps_v1 = AppsV1Api(api_client)
        self.rbac_v1 = RbacAuthorizationV1Api(api_client)

    @staticmethod
    def _load_api_client(kubeconfig: Optional[str], context: Optional[str]) -> ApiClient:
        try:
            if kubeconfig:
                config.load_kube_config(config_file=kubeconfig, context=context)
            else:
                try:
                    config.load_incluster_config()
                except config.ConfigException:
                    config.load_kube_config(context=context)
        except Exception as exc:
            raise PostUpgradeError(f"Failed to initialize cluster connection: {exc}") from exc
        return ApiClient()

    @property
    def dynamic(self):
        if self._dynamic is None:
            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    def _mutation_kwargs(self) -> Dict[str, Any]:
        return {"dry_run": "All"} if self.dry_run else {}

    @staticmethod
    def _describe(kind: str, name: str, namespace: Optional[str]) -> str:
        if namespace:
            return f'{kind} "{name}" in namespace "{namespace}"'
        return f'{kind} "{name}"'

    def _call(self, kind: str, name: str, namespace: Optional[str], func: Callable, /, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ApiException as exc:
            what = self._describe(kind, name, namespace)
            if exc.status == 404:
                raise NotFoundError(f"{what} not found") from exc
            raise PostUpgradeError(f"API request for {what} failed ({exc.status}): {exc.reason}") from exc
        except HTTPError as exc:
            what = self._describe(kind, name, namespace)
            raise PostUpgradeError(f"API request for {what} failed: {exc}") from exc

    def _create_or_replace(
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        create: Callable,
        replace: Callable,
        body,
    ):
        ns_args = (namespace,) if namespace else ()
        try:
            return create(*ns_args, body, **self._mutation_kwargs())
        except ApiException as exc:
            if exc.status != 409:
                what = self._describe(kind, name, namespace)
                raise PostUpgradeError(f"unable to create {what} ({exc.status}): {exc.reason}") from exc
        except HTTPError as exc:
            what = self._describe(kind, name, namespace)
            raise PostUpgradeError(f"unable to create {what}: {exc}") from exc
        return self._call(kind, name, namespace, replace, name, *ns_args, body, **self._mutation_kwargs())

    def get_deployment_readiness(self, namespace: str, name: str) -> DeploymentReadiness:
        deployment = self._call(
            "deployment", name, namespace, self.apps_v1.read_namespaced_deployment, name, namespace
        )
        ready = 0
        if deployment.status is not None and deployment.status.ready_replicas:
            ready = int(deployment.status.ready_replicas)
        return DeploymentReadiness(namespace=namespace, name=name, ready_replicas=ready)

    def delete_deployment_foreground(self, namespace: str, name: str):
        self._call(
            "deployment",
            name,
            namespace,
            self.apps_v1.delete_namespaced_deployment,
            name,
            namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
            **self._mutation_kwargs(),
        )

    def daemonset_exists(self, namespace: str, name: str) -> bool:
        try:
            self._call("daemonset", name, namespace, self.apps_v1.read_namespaced_daemon_set, name, namespace)
        except NotFoundError:
            return False
        return True

    def get_config_map_data(self, namespace: str, name: str) -> Dict[str, str]:
        config_map = self._call(
            "configmap", name, namespace, self.core_v1.read_namespaced_config_map, name, namespace
        )
        return dict(config_map.data or {})

    def create_or_update_config_map(self, namespace: str, name: str, data: Dict[str, str]):
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            data=data,
        )
        return self._create_or_replace(
            "configmap",
            name,
            namespace,
            self.core_v1.create_namespaced_config_map,
            self.core_v1.replace_namespaced_config_map,
            body,
        )

    def patch_node_annotations(self, node_name: str, annotations: Dict[str, str]):
        patch = {"metadata": {"annotations": annotations}}
        return self._call(
            "node", node_name, None, self.core_v1.patch_node, node_name, patch, **self._mutation_kwargs()
        )

    def create_or_update_cluster_role_binding(self, body: Dict[str, Any]):
        return self._create_or_replace(
            "clusterrolebinding",
            body["metadata"]["name"],
            None,
            self.rbac_v1.create_cluster_role_binding,
            self.rbac_v1.replace_cluster_role_binding,
            body,
        )

    def create_or_update_role(self, namespace: str, body: Dict[str, Any]):
        return self._create_or_replace(
            "role",
            body["metadata"]["name"],
            namespace,
            self.rbac_v1.create_namespaced_role,
            self.rbac_v1.replace_namespaced_role,
            body,
        )

    def create_or_update_role_binding(self, namespace: str, body: Dict[str, Any]):
        return self._create_or_replace(
            "rolebinding",
            body["metadata"]["name"],
            namespace,
            self.rbac_v1.create_namespaced_role_binding,
            self.rbac_v1.replace_namespaced_role_binding,
            body,
        )

    def apply(self, document: Dict[str, Any]):
        """Server-side apply an arbitrary manifest document."""
        metadata = document.get("metadata") or {}
        name = metadata.get("name", "")
        kind = document.get("kind", "")
        resource = self.dynamic.resources.get(api_version=document.get("apiVersion"), kind=kind)
        namespace = None
        if resource.namespaced:
            namespace = metadata.get("namespace") or NAMESPACE_SYSTEM
        return self._call(
            kind.lower(),
            name,
            namespace,
            self.dynamic.server_side_apply,
            resource,
            body=document,
            name=name,
            namespace=namespace,
            field_manager=FIELD_MANAGER,
            force_conflicts=True,
            **self._mutation_kwargs(),
        )

    def server_version(self) -> str:
        try:
            return client.VersionApi(self.api_client).get_code().git_version
        except ApiException as exc:
            raise PostUpgradeError(f"API server is not reachable ({exc.status}): {exc.reason}") from exc
        except HTTPError as exc:
            raise PostUpgradeError(f"API server is not reachable: {exc}") from exc

    def list_pod_phases(self, namespace: str, label_selector: str) -> List[str]:
        pods = self._call(
            "pods",
            label_selector,
            namespace,
            self.core_v1.list_namespaced_pod,
            namespace,
            label_selector=label_selector,
        )
        return [pod.status.phase if pod.status else "Unknown" for pod in pods.items]

    def close(self):
        self.api_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
