"""Property-based tests for the eligibility cascade and entitlement rules."""

from uuid import UUID, uuid4

from hypothesis import assume, given
from hypothesis import strategies as st

from booking_engine.models import RuleScope
from booking_engine.schemas.booking import BLOCKED, PaymentSource, PaymentType
from booking_engine.schemas.catalog import MissingRestriction
from booking_engine.services.eligibility_service import (
    decide_eligibility,
    format_price,
    missing_restriction_ids,
)
from booking_engine.services.entitlement_service import (
    CoverageRule,
    membership_covers,
    package_covers,
    package_subtitle,
    rank_payment_sources,
)

# Strategies for generating test data
tag_ids = st.sampled_from([f"tag-{i}" for i in range(8)])
prices = st.one_of(st.none(), st.integers(min_value=0, max_value=100_000))
small_uuids = st.sampled_from([UUID(int=i) for i in range(1, 5)])
optional_uuids = st.one_of(st.none(), small_uuids)

missing_items = st.builds(MissingRestriction, id=tag_ids, name=st.text(min_size=1, max_size=20))
payment_sources = st.builds(
    PaymentSource,
    id=st.builds(uuid4),
    type=st.sampled_from([PaymentType.MEMBERSHIP, PaymentType.PACKAGE]),
    name=st.text(min_size=1, max_size=20),
    subtitle=st.just("Active"),
    remaining_sessions=st.one_of(st.none(), st.integers(min_value=1, max_value=50)),
)
coverage_rules = st.one_of(
    st.builds(CoverageRule, scope=st.just(RuleScope.ANY.value)),
    st.builds(CoverageRule, scope=st.just(RuleScope.CATEGORY.value), category_id=small_uuids),
    st.builds(CoverageRule, scope=st.just(RuleScope.TEMPLATE.value), template_id=small_uuids),
)


@given(
    missing=st.lists(missing_items, min_size=1, max_size=4),
    sources=st.lists(payment_sources, max_size=4),
    price=prices,
)
def test_missing_restrictions_always_block(missing, sources, price):
    """Restrictions win over every payment source and any drop-in price."""
    result = decide_eligibility(missing, sources, price)

    assert result.can_book is False
    assert result.source_type == BLOCKED
    assert result.source_id is None
    assert [item.id for item in result.missing_restrictions] == [item.id for item in missing]


@given(sources=st.lists(payment_sources, min_size=1, max_size=5), price=prices)
def test_first_source_is_default(sources, price):
    result = decide_eligibility([], sources, price)

    assert result.can_book is True
    assert result.source_id == sources[0].id
    assert result.source_type == sources[0].type.value
    assert result.drop_in_price_cents is None
    assert result.reason is None


@given(price=prices)
def test_drop_in_fallback(price):
    result = decide_eligibility([], [], price)

    assert result.can_book is (price is not None)
    assert result.drop_in_price_cents == price
    if price is None:
        assert result.source_type is None
    else:
        assert result.source_type == PaymentType.DROP_IN.value


@given(required=st.lists(tag_ids, max_size=8), held=st.lists(tag_ids, max_size=8))
def test_missing_restriction_ids(required, held):
    missing = missing_restriction_ids(required, held)

    assert set(missing) == set(required) - set(held)
    assert len(missing) == len(set(missing))
    # Required order is preserved
    assert missing == sorted(missing, key=required.index)


@given(required=st.lists(tag_ids, max_size=8))
def test_holding_every_tag_clears_restrictions(required):
    assert missing_restriction_ids(required, required) == []


@given(sources=st.lists(payment_sources, max_size=8))
def test_ranking_puts_memberships_first_and_is_stable(sources):
    ranked = rank_payment_sources(sources)

    assert sorted(ranked, key=lambda s: s.id) == sorted(sources, key=lambda s: s.id)
    types = [source.type for source in ranked]
    assert types == sorted(types, key=lambda t: t != PaymentType.MEMBERSHIP)
    for payment_type in (PaymentType.MEMBERSHIP, PaymentType.PACKAGE):
        assert [s.id for s in ranked if s.type == payment_type] == [s.id for s in sources if s.type == payment_type]


@given(rules=st.lists(coverage_rules, max_size=5), category_id=optional_uuids, template_id=optional_uuids)
def test_membership_coverage_implies_package_coverage(rules, category_id, template_id):
    """Packages honour every rule a membership honours, plus ``any``."""
    if membership_covers(rules, category_id, template_id):
        assert package_covers(rules, category_id, template_id)


@given(rules=st.lists(coverage_rules, max_size=5), category_id=optional_uuids, template_id=optional_uuids)
def test_any_rule_only_grants_packages(rules, category_id, template_id):
    assume(all(rule.scope == RuleScope.ANY.value for rule in rules))

    assert membership_covers(rules, category_id, template_id) is False
    assert package_covers(rules, category_id, template_id) is bool(rules)


@given(category_id=optional_uuids, template_id=optional_uuids)
def test_empty_rules_grant_nothing(category_id, template_id):
    assert membership_covers([], category_id, template_id) is False
    assert package_covers([], category_id, template_id) is False


@given(cents=st.integers(min_value=0, max_value=10_000_000))
def test_format_price(cents):
    formatted = format_price(cents)

    assert formatted.startswith("$")
    assert formatted.endswith(f"{cents % 100:02d}")
    assert int(formatted[1:].replace(",", "").replace(".", "")) == cents


@given(uses=st.integers(min_value=0, max_value=500))
def test_package_subtitle_counts_uses(uses):
    subtitle = package_subtitle(uses, is_unlimited=False)

    assert subtitle.startswith(f"{uses} session")
    assert subtitle.endswith("remaining")
    assert package_subtitle(uses, is_unlimited=True) == "Unlimited sessions"
