from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import AutomationRule

logger = get_logger("rule_matcher")

MATCH_EXACT = "exact"
MATCH_CONTAINS = "contains"


def normalize_trigger_text(text: Optional[str]) -> str:
    """Lowercase and trim; applied identically to inbound text and trigger keywords."""
    return (text or "").strip().lower()


def rule_matches(rule: AutomationRule, normalized_text: str) -> bool:
    trigger = normalize_trigger_text(rule.trigger_keyword)
    if rule.match_type == MATCH_EXACT:
        return normalized_text == trigger
    # Any other match_type behaves as "contains".
    return trigger in normalized_text


def match_rule(rules: Iterable[AutomationRule], inbound_text: Optional[str]) -> Optional[AutomationRule]:
    """First rule (in the given order) whose trigger matches wins; no re-sorting."""
    normalized = normalize_trigger_text(inbound_text)
    if not normalized:
        return None
    for rule in rules:
        if rule_matches(rule, normalized):
            return rule
    return None


class RuleMatcher:
    def __init__(self, db: Session):
        self.db = db

    def active_rules(self, org_id: UUID) -> Sequence[AutomationRule]:
        """All active rules of the org in evaluation order: priority, then age, then id."""
        return (
            self.db.query(AutomationRule)
            .filter(AutomationRule.org_id == org_id, AutomationRule.is_active.is_(True))
            .order_by(AutomationRule.priority.asc(), AutomationRule.created_at.asc(), AutomationRule.id.asc())
            .all()
        )

    def match(self, org_id: UUID, inbound_text: Optional[str]) -> Optional[AutomationRule]:
        if not normalize_trigger_text(inbound_text):
            return None
        rule = match_rule(self.active_rules(org_id), inbound_text)
        if rule:
            logger.info(
                "Automation rule matched",
                extra={"context": {"org_id": str(org_id), "rule_id": str(rule.id), "trigger": rule.trigger_keyword}},
            )
        return rule
