from types import SimpleNamespace
from uuid import uuid4

from app.services.rule_matcher import RuleMatcher, match_rule, normalize_trigger_text


def _rule(trigger, match_type="contains", reply="reply"):
    return SimpleNamespace(id=uuid4(), trigger_keyword=trigger, match_type=match_type, reply_message=reply)


class TestNormalize:
    def test_trims_and_lowercases(self):
        assert normalize_trigger_text("  Hello THERE ") == "hello there"

    def test_none_is_empty(self):
        assert normalize_trigger_text(None) == ""


class TestMatchRule:
    def test_exact_is_case_insensitive(self):
        rule = _rule("Price", match_type="exact")
        assert match_rule([rule], "  PRICE ") is rule

    def test_exact_requires_whole_text(self):
        assert match_rule([_rule("price", match_type="exact")], "what is the price") is None

    def test_contains_matches_substring(self):
        rule = _rule("Price")
        assert match_rule([rule], "What is the PRICE today?") is rule

    def test_unknown_match_type_behaves_as_contains(self):
        rule = _rule("hours", match_type="fuzzy")
        assert match_rule([rule], "opening hours please") is rule

    def test_exact_vs_contains_on_longer_text(self):
        assert match_rule([_rule("hi", match_type="exact")], "Hi") is not None
        assert match_rule([_rule("hi", match_type="exact")], "hi there") is None
        assert match_rule([_rule("hi", match_type="contains")], "hi there") is not None

    def test_first_match_wins_not_longest(self):
        first = _rule("help")
        second = _rule("help me")
        assert match_rule([first, second], "please help me") is first

    def test_order_is_respected_not_resorted(self):
        broad = _rule("hi")
        specific = _rule("hi", match_type="exact")
        assert match_rule([specific, broad], "hi") is specific
        assert match_rule([broad, specific], "hi") is broad

    def test_empty_text_never_matches(self):
        assert match_rule([_rule("a")], "   ") is None
        assert match_rule([_rule("a")], None) is None

    def test_empty_contains_trigger_matches_any_text(self):
        catch_all = _rule("  ")
        assert match_rule([catch_all], "anything") is catch_all

    def test_empty_exact_trigger_never_matches(self):
        assert match_rule([_rule("", match_type="exact")], "anything") is None

    def test_empty_trigger_still_respects_order(self):
        specific = _rule("price")
        catch_all = _rule("")
        assert match_rule([specific, catch_all], "price?") is specific
        assert match_rule([specific, catch_all], "hello") is catch_all

    def test_no_rules(self):
        assert match_rule([], "hello") is None


class TestRuleMatcher:
    def test_orders_by_priority_then_age(self, db, make_org, make_rule):
        org = make_org()
        older = make_rule(org, "hello", "older")
        make_rule(org, "hello", "newer")
        urgent = make_rule(org, "hello", "urgent", priority=-1)

        rules = RuleMatcher(db).active_rules(org.id)

        assert rules[0].id == urgent.id
        assert rules[1].id == older.id
        assert RuleMatcher(db).match(org.id, "HELLO").reply_message == "urgent"

    def test_inactive_rules_are_skipped(self, db, make_org, make_rule):
        org = make_org()
        make_rule(org, "hello", "disabled", is_active=False)
        active = make_rule(org, "hello", "enabled")

        assert RuleMatcher(db).match(org.id, "hello").id == active.id

    def test_rules_are_scoped_to_org(self, db, make_org, make_rule):
        org = make_org(name="A")
        other = make_org(name="B")
        make_rule(other, "hello", "not yours")

        assert RuleMatcher(db).match(org.id, "hello") is None

    def test_same_input_same_rule(self, db, make_org, make_rule):
        org = make_org()
        make_rule(org, "price", "first")
        make_rule(org, "price list", "second")
        matcher = RuleMatcher(db)

        picks = {matcher.match(org.id, "send the price list").reply_message for _ in range(5)}

        assert picks == {"first"}

    def test_empty_text_skips_query(self, db_session):
        assert RuleMatcher(db_session).match(uuid4(), "  ") is None
        db_session.query.assert_not_called()
