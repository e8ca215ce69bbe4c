"""Service DNS name helpers"""

from typing import List

DEFAULT_CLUSTER_DOMAIN = "cluster.local"


def get_service_dns_names(service: str, namespace: str, cluster_domain: str = DEFAULT_CLUSTER_DOMAIN) -> List[str]:
    """
    Every name a service is reachable under from inside the cluster,
    shortest first.

    >>> get_service_dns_names("gw", "logs", "cluster.local")
    ['gw', 'gw.logs', 'gw.logs.svc', 'gw.logs.svc.cluster.local']
    """
    return [
        service,
        f"{service}.{namespace}",
        f"{service}.{namespace}.svc",
        f"{service}.{namespace}.svc.{cluster_domain}",
    ]
