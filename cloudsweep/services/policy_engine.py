"""Policy condition engine.

Pure functions deciding whether a policy applies to a resource. Nothing
here touches the database or a provider, so results only depend on the
resource, the conditions and the evaluation time.
"""

from datetime import datetime
from fnmatch import fnmatchcase
from typing import Iterable

from cloudsweep.core.database import utcnow
from cloudsweep.models.policy import Policy, PolicyAction
from cloudsweep.models.resource import Resource
from cloudsweep.schemas.policy import PolicyConditions

SECONDS_PER_DAY = 86400


def _has_any_tag(tags: dict[str, str], pairs: dict[str, str]) -> bool:
    return any(tags.get(key) == value for key, value in pairs.items())


def _has_all_tags(tags: dict[str, str], pairs: dict[str, str]) -> bool:
    return all(key in tags and tags[key] == value for key, value in pairs.items())


def matches(resource: Resource, conditions: PolicyConditions, now: datetime | None = None) -> bool:
    """
    Evaluate conditions against a resource.

    Conditions are conjunctive and absent ones are vacuously satisfied.
    ``excluded_tags`` is checked first and short-circuits.

    Args:
        resource: Resource to evaluate
        conditions: Policy conditions
        now: Evaluation time (naive UTC), defaults to the current time

    Returns:
        True if every present condition holds
    """
    tags = resource.tags or {}

    if conditions.excluded_tags and _has_any_tag(tags, conditions.excluded_tags):
        return False

    if conditions.unused_days is not None:
        if not resource.is_unused():
            return False
        now = now or utcnow()
        idle_days = (now - resource.last_seen_at).total_seconds() / SECONDS_PER_DAY
        if idle_days < conditions.unused_days:
            return False

    if conditions.min_monthly_cost is not None and resource.monthly_cost < conditions.min_monthly_cost:
        return False
    if conditions.max_monthly_cost is not None and resource.monthly_cost > conditions.max_monthly_cost:
        return False

    if conditions.required_tags and not _has_all_tags(tags, conditions.required_tags):
        return False

    if conditions.regions and resource.region not in conditions.regions:
        return False

    if conditions.name_pattern is not None and not fnmatchcase(resource.name or "", conditions.name_pattern):
        return False

    return True


def policy_applies(policy: Policy, resource: Resource, now: datetime | None = None) -> bool:
    """
    Decide whether a policy governs a resource.

    A policy applies when it is enabled, targets the resource's provider,
    lists the resource's type (or lists no type at all) and its conditions
    match.
    """
    if not policy.is_enabled:
        return False
    if policy.provider != resource.provider:
        return False
    if policy.resource_types and resource.resource_type not in policy.resource_types:
        return False
    return matches(resource, policy.conditions, now=now)


def matching_policies(
    policies: Iterable[Policy],
    resource: Resource,
    now: datetime | None = None,
) -> list[Policy]:
    """Return the policies applying to a resource, in the given order."""
    return [policy for policy in policies if policy_applies(policy, resource, now=now)]


def collect_actions(
    policies: Iterable[Policy],
    resource: Resource,
    now: datetime | None = None,
    single: bool = False,
) -> list[PolicyAction]:
    """
    Combine the actions of every policy applying to a resource.

    Args:
        policies: Candidate policies, in priority order
        resource: Resource to evaluate
        now: Evaluation time
        single: Only use the first matching policy

    Returns:
        Actions de-duplicated by kind in first-seen order
    """
    actions: list[PolicyAction] = []
    for policy in matching_policies(policies, resource, now=now):
        for action in policy.action_list:
            if action not in actions:
                actions.append(action)
        if single:
            break
    return actions
