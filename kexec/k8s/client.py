from dataclasses import dataclass
import logging

from kubernetes import client, config

logger = logging.getLogger(__name__)


@dataclass
class KubeClients:
    core_v1: client.CoreV1Api
    batch_v1: client.BatchV1Api


def load_kube_clients(settings) -> KubeClients:
    """Load cluster credentials and build the API handles used by the pipeline."""
    try:
        if settings.KUBE_IN_CLUSTER:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=settings.KUBE_CONFIG_PATH)
        clients = KubeClients(core_v1=client.CoreV1Api(), batch_v1=client.BatchV1Api())
        logger.info("Successfully connected to Kubernetes cluster")
        return clients
    except Exception as e:
        logger.error(f"Failed to connect to Kubernetes: {str(e)}")
        raise
