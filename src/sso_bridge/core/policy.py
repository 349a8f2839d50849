"""Group-based client access policy."""

from typing import Iterable, Optional

from sso_bridge.domain.models import ClientGroupPolicy, PolicyDecision


def evaluate_group_policy(
    policy: Optional[ClientGroupPolicy],
    user_groups: Iterable[str],
) -> PolicyDecision:
    """Decide whether a user may sign in to a client.

    An allow list, when present, decides alone and the deny list is not
    consulted. Otherwise the first entry of the deny list, in configured
    order, that the user belongs to rejects the user. A client without a
    policy is unrestricted.

    Args:
        policy: Client group policy, or None
        user_groups: Groups reported by the SSO provider

    Returns:
        PolicyDecision
    """
    if policy is None:
        return PolicyDecision.allow()

    groups = set(user_groups)

    if policy.allow_groups:
        if policy.allow_groups.intersection(groups):
            return PolicyDecision.allow()
        return PolicyDecision.deny("not in allowed groups")

    for group in policy.deny_groups:
        if group in groups:
            return PolicyDecision.deny(f"in denied group {group}")

    return PolicyDecision.allow()
