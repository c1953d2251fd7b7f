"""
Tests for market side matching, result resolution and CLV.

Run with: pytest tests/test_markets.py -v
"""
import pytest

from pick_integrity.services.markets import (
    calculate_clv,
    combine_leg_results,
    parse_line,
    parse_total,
    resolve_selection,
    resolve_side,
    select_market_price,
)
from pick_integrity.services.sports_data import GameOutcome


def final_game(home_score=110, away_score=104, status="final"):
    return GameOutcome(
        game_id="g1",
        status=status,
        home_team="Lakers",
        away_team="Celtics",
        home_score=home_score,
        away_score=away_score,
    )


LINES = {
    "moneyline": {"home": -150, "away": 130},
    "spread": {"home": -110, "away": -110, "line": -5.5},
    "total": {"over": -105, "under": -115, "line": 210.5},
}


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

class TestParsing:

    def test_parse_line_ignores_team_digits(self):
        """Should take the handicap, not the digits in a team name."""
        assert parse_line("76ers -3.5") == -3.5

    def test_parse_line_positive(self):
        assert parse_line("Celtics +7") == 7.0

    def test_parse_line_missing(self):
        assert parse_line("Lakers") is None

    def test_parse_total(self):
        assert parse_total("Over 225.5") == ("over", 225.5)
        assert parse_total("under 41") == ("under", 41.0)
        assert parse_total("Lakers ML") == (None, None)


class TestResolveSide:

    def test_team_names(self):
        """Should match the team named in the selection."""
        assert resolve_side("moneyline", "Lakers ML", "Lakers", "Celtics") == "home"
        assert resolve_side("spread", "Celtics +5.5", "Lakers", "Celtics") == "away"

    def test_ambiguous_selection(self):
        """Should refuse to pick a side when both or neither team match."""
        assert resolve_side("moneyline", "Lakers or Celtics", "Lakers", "Celtics") is None
        assert resolve_side("moneyline", "Knicks", "Lakers", "Celtics") is None

    def test_home_away_words_without_team_names(self):
        """Should fall back to 'home'/'away' when no team names are known."""
        assert resolve_side("moneyline", "Home ML") == "home"
        assert resolve_side("spread", "away +3") == "away"

    def test_totals(self):
        assert resolve_side("total", "Over 210.5") == "over"

    def test_prop_has_no_side(self):
        assert resolve_side("prop", "LeBron over 25.5 points") is None


# ─────────────────────────────────────────────────────────────────────────────
# Result resolution
# ─────────────────────────────────────────────────────────────────────────────

class TestResolveSelection:

    def test_moneyline_winner_and_loser(self):
        game = final_game(110, 104)
        assert resolve_selection("moneyline", "Lakers ML", game)[0] == "win"
        assert resolve_selection("moneyline", "Celtics ML", game)[0] == "loss"

    def test_moneyline_tie_is_push(self):
        assert resolve_selection("moneyline", "Lakers ML", final_game(100, 100))[0] == "push"

    def test_moneyline_unknown_team_is_void(self):
        assert resolve_selection("moneyline", "Knicks ML", final_game())[0] == "void"

    @pytest.mark.parametrize("selection,expected", [
        ("Lakers -5.5", "win"),    # 6 - 5.5 > 0
        ("Lakers -6", "push"),     # 6 - 6 == 0
        ("Lakers -7.5", "loss"),   # 6 - 7.5 < 0
        ("Celtics +5.5", "loss"),  # -6 + 5.5 < 0
        ("Celtics +7", "win"),     # -6 + 7 > 0
    ])
    def test_spread(self, selection, expected):
        """Should cover when margin + line is positive."""
        assert resolve_selection("spread", selection, final_game(110, 104))[0] == expected

    def test_spread_without_line_is_void(self):
        assert resolve_selection("spread", "Lakers", final_game())[0] == "void"

    @pytest.mark.parametrize("selection,expected", [
        ("Over 210.5", "win"),
        ("Under 210.5", "loss"),
        ("Under 220", "win"),
        ("Over 214", "push"),
    ])
    def test_total(self, selection, expected):
        assert resolve_selection("total", selection, final_game(110, 104))[0] == expected

    def test_cancelled_game_voids(self):
        game = final_game(None, None, status="cancelled")
        assert resolve_selection("moneyline", "Lakers ML", game) == ("void", "Game cancelled")

    def test_prop_not_auto_graded(self):
        assert resolve_selection("prop", "LeBron over 25.5 points", final_game()) is None


class TestCombineLegResults:

    def test_all_wins(self):
        assert combine_leg_results(["win", "win"]) == "win"

    def test_void_beats_everything(self):
        assert combine_leg_results(["loss", "void", "win"]) == "void"

    def test_any_loss_loses(self):
        assert combine_leg_results(["win", "loss", "pending"]) == "loss"

    def test_push_without_loss(self):
        assert combine_leg_results(["win", "push"]) == "push"

    def test_pending_when_undecided(self):
        assert combine_leg_results(["win", "pending"]) == "pending"
        assert combine_leg_results([]) == "pending"


# ─────────────────────────────────────────────────────────────────────────────
# Prices and CLV
# ─────────────────────────────────────────────────────────────────────────────

class TestMarketPrice:

    def test_moneyline_price(self):
        assert select_market_price(LINES, "moneyline", "Celtics ML", "Lakers", "Celtics") == 130

    def test_total_price(self):
        assert select_market_price(LINES, "total", "Under 210.5") == -115

    def test_missing_market(self):
        assert select_market_price({"moneyline": {}}, "spread", "Lakers -5.5", "Lakers", "Celtics") is None
        assert select_market_price(None, "moneyline", "Lakers ML") is None

    def test_clv_positive_when_beating_close(self):
        """Should report posted decimal minus closing decimal."""
        # Posted +150 (2.5); closed +130 (2.3)
        clv = calculate_clv("moneyline", "Celtics ML", 2.5, LINES, "Lakers", "Celtics")
        assert clv == pytest.approx(0.2)

    def test_clv_unknown_side(self):
        assert calculate_clv("moneyline", "Knicks ML", 2.5, LINES, "Lakers", "Celtics") is None
