"""Tests for sig autocomplete suggestions."""

import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import MedicationContext, ParseOptions, SuggestOptions  # noqa: E402


class TestSuggestSig:
    """Test canonical suggestion generation and matching."""

    def test_empty_input(self):
        """Empty input lists candidates from the top."""
        from medsig import suggest_sig

        result = suggest_sig("", SuggestOptions(limit=5))

        assert len(result) == 5
        assert result[0] == "1 tab po qd"

    def test_multiplier_prefix(self):
        """1x matches the multiplier candidates."""
        from medsig import suggest_sig

        result = suggest_sig("1x")

        assert "1x2 po bid" in result
        assert "1x3 po pc" in result

    def test_partial_frequency(self):
        """A trailing q narrows to q-prefixed codes."""
        from medsig import suggest_sig

        result = suggest_sig("1 tab po q")

        assert "1 tab po qd" in result
        assert all(s.startswith("1 tab po q") for s in result)

    def test_context_unit_leads(self):
        """Medication context picks the leading unit."""
        from medsig import suggest_sig

        options = SuggestOptions(limit=3,
                                 parse_options=ParseOptions(context=MedicationContext(dosage_form="tablet")))
        result = suggest_sig("", options)

        assert result[0] == "1 tab po qd"

    def test_unit_prefix(self):
        """5 m completes to mL."""
        from medsig import suggest_sig

        result = suggest_sig("5 m")

        assert result[0] == "5 mL po qd"

    def test_fractional_dose(self):
        """Typed decimal doses are reused."""
        from medsig import suggest_sig

        result = suggest_sig("0.5 tab")

        assert result[0] == "0.5 tab po qd"

    def test_prn_reason_prefix(self):
        """PRN reasons complete from a prefix."""
        from medsig import suggest_sig

        result = suggest_sig("1 tab po prn a", SuggestOptions(limit=10))

        assert "1 tab po prn anxiety" in result

    def test_custom_prn_reasons(self):
        """Caller PRN reasons are normalised and offered."""
        from medsig import suggest_sig

        result = suggest_sig("1 tab po prn",
                             SuggestOptions(limit=15, prn_reasons=["agitation", " Pain  "]))

        assert "1 tab po prn agitation" in result
        assert "1 tab po prn pain" in result

    def test_filler_words_ignored(self):
        """'take' and 'by' do not block a match."""
        from medsig import suggest_sig

        result = suggest_sig("take 1 tab by po b")

        assert "1 tab po bid" in result

    def test_deterministic(self):
        """The same input gives the same list."""
        from medsig import suggest_sig

        assert suggest_sig("2 cap") == suggest_sig("2 cap")

    def test_non_positive_limit(self):
        """limit 0 returns nothing."""
        from medsig import suggest_sig

        assert suggest_sig("1 tab", SuggestOptions(limit=0)) == []


class TestCandidateHelpers:
    """Test candidate building helpers."""

    def test_prn_reasons_deduplicated(self):
        """Custom reasons come first and duplicates collapse."""
        from medsig.processing.suggest import build_prn_reasons

        reasons = build_prn_reasons(["Pain", "tremor"])

        assert reasons[:2] == ['pain', 'tremor']
        assert reasons.count('pain') == 1

    def test_prefix_matcher_tolerates_spacing(self):
        """Spacing and dashes are ignored when matching."""
        from medsig.processing.suggest import PrefixMatcher

        matcher = PrefixMatcher("1tab po q-6h")

        assert matcher("1 tab po q6h prn pain")
        assert not matcher("1 tab po q8h")
