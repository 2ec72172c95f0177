"""Bounded waits for cluster workloads to become ready."""

import time
from collections.abc import Callable
from pathlib import Path

import yaml

from kubeadm_bootstrap.exceptions import KubernetesError, ReadinessTimeoutError
from kubeadm_bootstrap.logging_config import get_logger

logger = get_logger(__name__)


def load_core_api(kubeconfig: str | Path):
    """Build a CoreV1Api client from a kubeconfig file.

    Raises:
        KubernetesError: If the kubeconfig cannot be loaded
    """
    from kubernetes import client, config
    from kubernetes.config.config_exception import ConfigException

    try:
        config.load_kube_config(config_file=str(kubeconfig))
    except (ConfigException, OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load kubeconfig {kubeconfig}: {e}")
        raise KubernetesError(
            f"Failed to load kubeconfig: {kubeconfig}",
            f"{e}\nMake sure the control plane was initialized and the kubeconfig installed",
        )
    return client.CoreV1Api()


def is_pod_ready(pod) -> bool:
    """Whether a pod reports the Ready condition as True."""
    conditions = (pod.status.conditions if pod.status else None) or []
    return any(c.type == "Ready" and c.status == "True" for c in conditions)


def wait_for_ready_pods(
    api,
    namespace: str,
    selector: str,
    timeout: float,
    interval: float = 2.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Poll until at least one pod matching ``selector`` is ready.

    API errors while polling are expected right after a manifest is applied
    (the namespace or pods may not exist yet), as are connection failures
    while the API server restarts. Both only delay the next poll, and no
    single request is allowed to run past the deadline.

    Returns:
        Names of the ready pods

    Raises:
        ReadinessTimeoutError: If no pod is ready within ``timeout`` seconds
    """
    from kubernetes.client.rest import ApiException
    from urllib3.exceptions import HTTPError

    deadline = clock() + timeout
    last_seen = "no pods found"
    logger.info(f"Waiting up to {timeout}s for pods '{selector}' in namespace '{namespace}'")

    while True:
        # A single request may not outlive the overall deadline
        remaining = max(deadline - clock(), 1.0)
        try:
            pods = api.list_namespaced_pod(
                namespace, label_selector=selector, _request_timeout=remaining
            )
            ready = [p.metadata.name for p in pods.items if is_pod_ready(p)]
            if ready:
                logger.info(f"Ready pods: {', '.join(ready)}")
                return ready
            if pods.items:
                last_seen = ", ".join(
                    f"{p.metadata.name} ({p.status.phase if p.status else 'Unknown'})"
                    for p in pods.items
                )
        except ApiException as e:
            last_seen = f"API error {e.status}: {e.reason}"
            logger.debug(f"Pods not listable yet: {last_seen}")
        except HTTPError as e:
            last_seen = f"API server unreachable: {e}"
            logger.debug(last_seen)

        if clock() >= deadline:
            raise ReadinessTimeoutError(
                f"Timed out after {timeout}s waiting for pods '{selector}' "
                f"in namespace '{namespace}' to become ready",
                f"Last observed: {last_seen}\n"
                f"Inspect with: kubectl -n {namespace} get pods -l {selector}",
            )
        sleep(interval)
