"""
Tests for the merge engine.
"""

import pytest

from conftest import make_token
from token_aggregator.api.schemas import MergedTokenRecord
from token_aggregator.services.merge import merge_token_data


def test_disjoint_sources_are_concatenated_unchanged():
    a = make_token("addr1", price=1.0, source="dexscreener")
    b = make_token("addr2", price=2.0, source="dexscreener")
    c = make_token("addr3", price=3.0, source="geckoterminal")

    merged = merge_token_data([[a, b], [c]])

    assert len(merged) == 3
    for original, result in zip([a, b, c], merged):
        assert isinstance(result, MergedTokenRecord)
        assert result.dict() == original.dict()


def test_single_source_with_distinct_addresses_is_not_merged():
    a = make_token("addr1")
    b = make_token("addr2")

    assert [t.token_address for t in merge_token_data([[a, b]])] == ["addr1", "addr2"]
    assert [t.token_address for t in merge_token_data([[b, a]])] == ["addr2", "addr1"]


def test_equal_liquidity_gives_arithmetic_mean():
    a = make_token(price=1.0, liquidity=100, source="dexscreener")
    b = make_token(price=2.0, liquidity=100, source="jupiter")

    [merged] = merge_token_data([[a], [b]])

    assert merged.price_sol == pytest.approx(1.5)
    assert merged.liquidity_sol == 200


def test_zero_liquidity_gives_equal_blend():
    a = make_token(price=1.0, liquidity=0, source="dexscreener")
    b = make_token(price=3.0, liquidity=0, source="jupiter")

    [merged] = merge_token_data([[a], [b]])

    assert merged.price_sol == pytest.approx(2.0)
    assert merged.liquidity_sol == 0


def test_price_weighted_by_liquidity():
    a = make_token(price=1.0, liquidity=300, source="dexscreener")
    b = make_token(price=2.0, liquidity=100, source="geckoterminal")

    [merged] = merge_token_data([[a], [b]])

    assert merged.price_sol == pytest.approx(1.25)
    assert merged.liquidity_sol == 400


def test_volume_market_cap_and_tx_count_take_maximum():
    a = make_token(volume=500, market_cap=1000, tx_count=150, source="dexscreener")
    b = make_token(volume=600, market_cap=900, tx_count=100, source="jupiter")

    [merged] = merge_token_data([[a], [b]])

    assert merged.volume_sol == 600
    assert merged.market_cap_sol == 1000
    assert merged.transaction_count == 150


def test_sources_union_is_deduplicated():
    a = make_token(source="dexscreener")
    b = make_token(source="jupiter")
    c = make_token(source="dexscreener")

    [merged] = merge_token_data([[a], [b], [c]])

    assert sorted(merged.sources) == ["dexscreener", "jupiter"]


def test_identity_fields_kept_from_first_seen():
    a = make_token(protocol="raydium", token_name="First", token_ticker="FST", change=4.0)
    b = make_token(protocol="Jupiter", token_name="Second", token_ticker="SND", change=9.0, source="jupiter")

    [merged] = merge_token_data([[a], [b]])

    assert merged.token_name == "First"
    assert merged.token_ticker == "FST"
    assert merged.protocol == "raydium"
    assert merged.price_1hr_change == 4.0


def test_last_updated_set_at_merge_time():
    a = make_token(last_updated=1)
    b = make_token(last_updated=2, source="jupiter")

    [merged] = merge_token_data([[a], [b]])

    assert merged.last_updated > 2


def test_inputs_are_not_mutated():
    a = make_token(price=1.0, liquidity=100)
    b = make_token(price=2.0, liquidity=100, source="jupiter")
    before = a.dict()

    merge_token_data([[a], [b]])

    assert a.dict() == before


def test_three_sources_fold_sequentially():
    a = make_token(price=1.0, liquidity=100, source="dexscreener")
    b = make_token(price=2.0, liquidity=100, source="jupiter")
    c = make_token(price=4.0, liquidity=200, source="geckoterminal")

    [merged] = merge_token_data([[a], [b], [c]])

    # (1.0, 2.0) -> 1.5 at liquidity 200, then (1.5, 4.0) at 200/200 -> 2.75
    assert merged.price_sol == pytest.approx(2.75)
    assert merged.liquidity_sol == 400


def test_empty_input():
    assert merge_token_data([]) == []
    assert merge_token_data([[], []]) == []
