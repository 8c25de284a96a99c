"""
Rule Resolver: picks the one rule in effect for a service at an instant.
"""
from datetime import datetime
from typing import Optional, List

from ..extensions import db
from ..models.service import ServiceConfig, RuleType
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import RuleNotFoundError


class RuleResolver:
    """
    Resolve the active EARN or BURN rule of a service.

    Candidates are active, not deleted, and have as_of inside their
    [valid_from, valid_until] window. Administrators are expected to keep
    windows from overlapping; when they do overlap the latest valid_from
    wins, then the highest id, so the choice is always deterministic.
    """

    def __init__(self, clock: Clock = None):
        self.clock = clock or utcnow

    def candidates(self, service_id: str, rule_type: str, as_of: datetime) -> List[ServiceConfig]:
        """All rules in effect at as_of, best match first."""
        rule_type = RuleType(rule_type).value
        configs = ServiceConfig.query.filter(
            ServiceConfig.service_id == service_id,
            ServiceConfig.rule_type == rule_type,
            ServiceConfig.is_active.is_(True),
            ServiceConfig.deleted_at.is_(None),
            ServiceConfig.valid_from <= as_of,
            db.or_(
                ServiceConfig.valid_until.is_(None),
                ServiceConfig.valid_until >= as_of,
            ),
        ).all()

        return sorted(configs, key=lambda c: (c.valid_from, c.id), reverse=True)

    def find_active_rule(
        self,
        service_id: str,
        rule_type: str,
        as_of: datetime = None
    ) -> Optional[ServiceConfig]:
        """Like resolve_active_rule but returns None instead of raising."""
        as_of = as_of or self.clock()
        configs = self.candidates(service_id, rule_type, as_of)
        return configs[0] if configs else None

    def resolve_active_rule(
        self,
        service_id: str,
        rule_type: str,
        as_of: datetime = None
    ) -> ServiceConfig:
        """
        Get the rule in effect for (service_id, rule_type) at as_of.

        Raises:
            RuleNotFoundError: No rule is configured for that instant
        """
        rule = self.find_active_rule(service_id, rule_type, as_of)
        if rule is None:
            raise RuleNotFoundError(service_id, RuleType(rule_type).value)
        return rule
