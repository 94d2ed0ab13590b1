from __future__ import annotations

from ev_bot.market_filter import (
    filter_candidates,
    has_tight_spread,
    is_forecastable,
    reference_price,
    select_diverse_candidates,
)
from ev_bot.models import Contract, ContractStatus


def _make_contract(
    ticker: str = "KXTEST-1",
    status: ContractStatus = ContractStatus.OPEN,
    yes_bid: int = 40,
    yes_ask: int = 44,
    volume: int = 100,
    category: str = "Politics",
    event_ticker: str = "",
) -> Contract:
    return Contract(
        ticker=ticker,
        status=status,
        yes_bid=yes_bid,
        yes_ask=yes_ask,
        volume=volume,
        category=category,
        event_ticker=event_ticker,
    )


class TestFilterCandidates:
    def test_keeps_liquid_open_contract(self) -> None:
        contract = _make_contract()
        assert filter_candidates([contract], ["politics"]) == [contract]

    def test_rejects_non_open(self) -> None:
        assert filter_candidates([_make_contract(status=ContractStatus.CLOSED)]) == []
        assert filter_candidates([_make_contract(status=ContractStatus.SETTLED)]) == []

    def test_rejects_unquoted_yes_side(self) -> None:
        assert filter_candidates([_make_contract(yes_bid=0, yes_ask=0)]) == []

    def test_price_band_is_exclusive(self) -> None:
        contracts = [
            _make_contract(ticker="AT5", yes_bid=0, yes_ask=5),
            _make_contract(ticker="AT95", yes_bid=95, yes_ask=0),
            _make_contract(ticker="IN6", yes_bid=0, yes_ask=6),
            _make_contract(ticker="MID94", yes_bid=93, yes_ask=95),
        ]
        kept = [contract.ticker for contract in filter_candidates(contracts)]
        assert kept == ["IN6", "MID94"]

    def test_minimum_volume(self) -> None:
        contracts = [_make_contract(ticker="LOW", volume=9), _make_contract(ticker="OK", volume=10)]
        assert [contract.ticker for contract in filter_candidates(contracts)] == ["OK"]

    def test_category_substring_case_insensitive(self) -> None:
        contracts = [
            _make_contract(ticker="P", category="US Politics"),
            _make_contract(ticker="S", category="Sports"),
        ]
        kept = filter_candidates(contracts, ["POLITICS"])
        assert [contract.ticker for contract in kept] == ["P"]

    def test_empty_allow_list_accepts_all_categories(self) -> None:
        contracts = [_make_contract(ticker="S", category="Sports")]
        assert len(filter_candidates(contracts, [])) == 1


def test_reference_price_prefers_midpoint() -> None:
    assert reference_price(_make_contract(yes_bid=40, yes_ask=44)) == 42.0
    assert reference_price(_make_contract(yes_bid=0, yes_ask=44)) == 44.0
    assert reference_price(_make_contract(yes_bid=0, yes_ask=0)) is None


def test_is_forecastable_excludes_realtime_markets() -> None:
    assert is_forecastable(_make_contract(ticker="KXPRES-28-DEM"))
    assert not is_forecastable(_make_contract(ticker="KXHIGHNY-26JAN01-B40"))
    assert not is_forecastable(_make_contract(ticker="kxlowchi-26JAN01-B10"))
    assert not is_forecastable(_make_contract(ticker="KXBTC15M-26JAN011200-T97000"))
    assert not is_forecastable(_make_contract(ticker="KXQUICKSETTLE-1"))


def test_has_tight_spread() -> None:
    assert has_tight_spread(_make_contract(yes_bid=40, yes_ask=55))
    assert not has_tight_spread(_make_contract(yes_bid=40, yes_ask=56))
    assert not has_tight_spread(_make_contract(yes_bid=0, yes_ask=44))
    assert has_tight_spread(_make_contract(yes_bid=40, yes_ask=60), max_spread_cents=20)


class TestSelectDiverseCandidates:
    def test_round_robin_across_groups(self) -> None:
        contracts = [
            _make_contract(ticker="P1", category="politics", volume=1000),
            _make_contract(ticker="P2", category="politics", volume=900),
            _make_contract(ticker="P3", category="politics", volume=800),
            _make_contract(ticker="E1", category="economics", volume=500),
            _make_contract(ticker="C1", category="crypto", volume=100),
        ]
        selected = select_diverse_candidates(contracts, 4)
        assert [contract.ticker for contract in selected] == ["P1", "E1", "C1", "P2"]

    def test_event_prefix_groups_when_category_missing(self) -> None:
        contracts = [
            _make_contract(ticker="A1", category="", event_ticker="KXFED-26JAN", volume=300),
            _make_contract(ticker="A2", category="", event_ticker="KXFED-26FEB", volume=200),
            _make_contract(ticker="B1", category="", event_ticker="KXCPI-26JAN", volume=100),
        ]
        selected = select_diverse_candidates(contracts, 2)
        assert [contract.ticker for contract in selected] == ["A1", "B1"]

    def test_exhausts_all_groups(self) -> None:
        contracts = [
            _make_contract(ticker="P1", category="politics", volume=10),
            _make_contract(ticker="E1", category="economics", volume=20),
        ]
        selected = select_diverse_candidates(contracts, 10)
        assert [contract.ticker for contract in selected] == ["E1", "P1"]

    def test_zero_count(self) -> None:
        assert select_diverse_candidates([_make_contract()], 0) == []
