"""
CronJob Controller - Authorization Rules

The API operations the controller may perform. These are granted by the
platform through a ClusterRole; the controller itself enforces nothing.
"""

from dataclasses import dataclass

from services.cronjob.types import API_GROUP, CRONJOB_PLURAL

DEFAULT_ROLE_NAME = "cronjob-controller-manager-role"

_ALL_VERBS = ("get", "list", "watch", "create", "update", "patch", "delete")


@dataclass(frozen=True)
class PolicyRule:
    """One rule of a ClusterRole."""
    api_groups: tuple[str, ...]
    resources: tuple[str, ...]
    verbs: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "apiGroups": list(self.api_groups),
            "resources": list(self.resources),
            "verbs": list(self.verbs),
        }


RBAC_RULES: tuple[PolicyRule, ...] = (
    PolicyRule((API_GROUP,), (CRONJOB_PLURAL,), _ALL_VERBS),
    PolicyRule((API_GROUP,), (f"{CRONJOB_PLURAL}/status",), ("get", "update", "patch")),
    PolicyRule((API_GROUP,), (f"{CRONJOB_PLURAL}/finalizers",), ("update",)),
    PolicyRule(("batch",), ("jobs",), _ALL_VERBS),
    PolicyRule(("batch",), ("jobs/status",), ("get",)),
)


def render_cluster_role(name: str = DEFAULT_ROLE_NAME) -> dict:
    """Render RBAC_RULES as a rbac.authorization.k8s.io/v1 ClusterRole."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": {"name": name},
        "rules": [rule.to_dict() for rule in RBAC_RULES],
    }


def is_allowed(api_group: str, resource: str, verb: str) -> bool:
    """
    Whether the rules grant verb on resource in api_group.

    Backs `render_rbac.py --check`, for auditing a permission before
    the role is applied.
    """
    return any(
        api_group in rule.api_groups and resource in rule.resources and verb in rule.verbs
        for rule in RBAC_RULES
    )
