"""Tests for sig parsing into FHIR Dosage."""

import pytest
import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import MedicationContext, ParseOptions, RouteCode  # noqa: E402
from medsig.config.vocabulary import (  # noqa: E402
    DEFAULT_UNIT_SYNONYMS,
    EVENT_TIMING_TOKENS,
    TIMING_ABBREVIATIONS,
)

TAB_CONTEXT = ParseOptions(context=MedicationContext(dosage_form="tab"))


def _repeat(result):
    return result.fhir['timing'].get('repeat', {})


def _timing_code(result):
    code = result.fhir['timing'].get('code')
    return code['coding'][0]['code'] if code else None


def _dose(result):
    return result.fhir['doseAndRate'][0].get('doseQuantity')


class TestCoreScenarios:
    """Test common oral sigs end to end."""

    def test_multiplicative_after_meals(self):
        """1x3 po pc becomes TID after meals."""
        from medsig import parse_sig

        result = parse_sig("1x3 po pc", TAB_CONTEXT)

        assert _dose(result) == {'value': 1, 'unit': 'tab'}
        assert _timing_code(result) == 'TID'
        assert _repeat(result)['frequency'] == 3
        assert _repeat(result)['period'] == 1
        assert _repeat(result)['periodUnit'] == 'd'
        assert _repeat(result)['when'] == ['PC']
        assert result.fhir['route']['coding'][0] == {
            'system': 'http://snomed.info/sct',
            'code': RouteCode.ORAL,
            'display': 'Oral route',
        }
        assert result.long_text == "Take 1 tablet by mouth three times daily after meals."

    def test_bid_short_and_long_text(self):
        """Render short and long text for a plain BID sig."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid")

        assert result.short_text == "1 tab PO BID"
        assert result.long_text == "Take 1 tablet by mouth twice daily."
        assert result.fhir['text'] == result.long_text
        assert result.fhir['route']['text'] == "by mouth"

    def test_prn_reason_in_long_text(self):
        """PRN reason is appended to the long text."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid prn pain")

        assert result.long_text == "Take 1 tablet by mouth twice daily as needed for pain."
        assert result.fhir['asNeededBoolean'] is True

    def test_bedtime(self):
        """Oral bedtime instructions."""
        from medsig import parse_sig

        result = parse_sig("1 mg po hs")

        assert result.long_text == "Take 1 mg by mouth at bedtime."

    def test_dose_range_with_frequency_code(self):
        """Dose range plus trailing TID."""
        from medsig import parse_sig

        result = parse_sig("1-2 tabs po prn pain tid", TAB_CONTEXT)

        assert result.fhir['doseAndRate'][0]['doseRange'] == {
            'low': {'value': 1, 'unit': 'tab'},
            'high': {'value': 2, 'unit': 'tab'},
        }
        assert _timing_code(result) == 'TID'
        assert "1 to 2 tablets by mouth" in result.long_text
        assert "as needed for pain" in result.long_text

    def test_route_and_frequency_without_dose(self):
        """po qid pc carries no dose quantity."""
        from medsig import parse_sig

        result = parse_sig("po qid pc")

        assert _timing_code(result) == 'QID'
        assert _repeat(result)['frequency'] == 4
        assert _repeat(result)['when'] == ['PC']
        assert 'doseAndRate' not in result.fhir

    def test_asterisk_multiplier(self):
        """1*3 po ac reads like 1x3."""
        from medsig import parse_sig

        result = parse_sig("1*3 po ac", TAB_CONTEXT)

        assert _dose(result) == {'value': 1, 'unit': 'tab'}
        assert _timing_code(result) == 'TID'
        assert _repeat(result)['when'] == ['AC']

    def test_daily_without_code(self):
        """'daily' sets once per day without a timing code."""
        from medsig import parse_sig

        result = parse_sig("500 mg po daily")

        assert _dose(result) == {'value': 500, 'unit': 'mg'}
        assert 'code' not in result.fhir['timing']
        assert _repeat(result)['frequency'] == 1
        assert _repeat(result)['period'] == 1
        assert _repeat(result)['periodUnit'] == 'd'

    def test_interval_prn(self):
        """q6h prn pain."""
        from medsig import parse_sig

        result = parse_sig("2 tab po q6h prn pain")

        assert _dose(result) == {'value': 2, 'unit': 'tab'}
        assert _timing_code(result) == 'Q6H'
        assert _repeat(result)['period'] == 6
        assert _repeat(result)['periodUnit'] == 'h'
        assert result.fhir['asNeededFor'][0]['text'] == 'pain'
        assert result.fhir['route']['coding'][0]['code'] == RouteCode.ORAL

    def test_period_range_with_prn_reason(self):
        """q 6-8 h sets period and periodMax."""
        from medsig import parse_sig

        result = parse_sig("2 supp q 6-8 h prn constipation")

        assert _dose(result) == {'value': 2, 'unit': 'suppository'}
        assert _repeat(result)['period'] == 6
        assert _repeat(result)['periodMax'] == 8
        assert _repeat(result)['periodUnit'] == 'h'
        assert result.fhir['asNeededFor'][0]['text'] == 'constipation'
        assert "every 6 to 8 hours" in result.long_text

    def test_unitless_dose_with_subcutaneous_route(self):
        """1x2 subcutaneous keeps a unitless dose."""
        from medsig import parse_sig

        result = parse_sig("1x2 subcutaneous")

        assert _dose(result) == {'value': 1}
        assert _timing_code(result) == 'BID'
        assert result.fhir['route']['text'] == 'subcutaneous'
        assert result.fhir['route']['coding'][0] == {
            'system': 'http://snomed.info/sct',
            'code': RouteCode.SUBCUTANEOUS,
            'display': 'Subcutaneous route',
        }

    def test_site_text_with_intramuscular_route(self):
        """Capture a spelled site after the route."""
        from medsig import parse_sig

        result = parse_sig("1 mL IM left arm")

        assert _dose(result) == {'value': 1, 'unit': 'mL'}
        assert result.fhir['site']['text'] == 'left arm'
        assert result.fhir['route']['coding'][0]['code'] == RouteCode.INTRAMUSCULAR


class TestIntervals:
    """Test q-interval and cadence parsing."""

    def test_compact_q12h(self):
        """q12h."""
        from medsig import parse_sig

        result = parse_sig("q12h")

        assert _timing_code(result) == 'Q12H'
        assert _repeat(result)['period'] == 12
        assert _repeat(result)['periodUnit'] == 'h'

    def test_compact_interval_range(self):
        """q6-8h."""
        from medsig import parse_sig

        result = parse_sig("q6-8h")

        assert _repeat(result)['period'] == 6
        assert _repeat(result)['periodMax'] == 8
        assert _repeat(result)['periodUnit'] == 'h'

    def test_separated_weekly(self):
        """q wk maps to WK."""
        from medsig import parse_sig

        result = parse_sig("q wk")

        assert _repeat(result)['period'] == 1
        assert _repeat(result)['periodUnit'] == 'wk'
        assert _timing_code(result) == 'WK'

    def test_separated_days(self):
        """q 2 d."""
        from medsig import parse_sig

        result = parse_sig("q 2 d")

        assert _repeat(result)['period'] == 2
        assert _repeat(result)['periodUnit'] == 'd'

    def test_weekly_with_day(self):
        """weekly friday."""
        from medsig import parse_sig

        result = parse_sig("weekly friday")

        assert _timing_code(result) == 'WK'
        assert _repeat(result)['dayOfWeek'] == ['fri']

    def test_weekly_long_text_names_day(self):
        """1*weekly wednesday renders the weekday."""
        from medsig import parse_sig

        result = parse_sig("1*weekly wednesday", TAB_CONTEXT)

        assert _timing_code(result) == 'WK'
        assert _repeat(result)['dayOfWeek'] == ['wed']
        assert "once weekly on Wednesday" in result.long_text

    def test_monthly(self):
        """q1mo and monthly both map to MO."""
        from medsig import parse_sig

        for text in ("q1mo", "monthly"):
            result = parse_sig(text)
            assert _timing_code(result) == 'MO'
            assert _repeat(result)['period'] == 1
            assert _repeat(result)['periodUnit'] == 'mo'

    def test_numeric_per_day(self):
        """3/day becomes TID."""
        from medsig import parse_sig

        result = parse_sig("1 tab 3/day", TAB_CONTEXT)

        assert _timing_code(result) == 'TID'
        assert _repeat(result)['frequency'] == 3

    def test_numeric_per_week(self):
        """2/week."""
        from medsig import parse_sig

        result = parse_sig("2 puffs 2/week")

        assert _dose(result) == {'value': 2, 'unit': 'puff'}
        assert _repeat(result)['frequency'] == 2
        assert _repeat(result)['periodUnit'] == 'wk'

    @pytest.mark.parametrize("text", sorted(TIMING_ABBREVIATIONS))
    def test_timing_abbreviations(self, text):
        """Every abbreviation sets the code and cadence from its table entry."""
        from medsig import parse_sig

        descriptor = TIMING_ABBREVIATIONS[text]
        result = parse_sig(f"1 tab po {text}")
        repeat = _repeat(result)

        assert _timing_code(result) == descriptor.get('code')
        assert repeat.get('frequency') == descriptor.get('frequency')
        assert repeat.get('period') == descriptor.get('period')
        assert repeat.get('periodUnit') == descriptor.get('period_unit')
        assert repeat.get('when', []) == descriptor.get('when', [])

    @pytest.mark.parametrize("text,period,unit", [
        ("q30min", 30, 'min'),
        ("q0.5h", 30, 'min'),
        ("q1/2hr", 30, 'min'),
        ("q0.25h", 15, 'min'),
        ("q1/4hr", 15, 'min'),
        ("q 30 minutes", 30, 'min'),
        ("q30 m", 30, 'min'),
    ])
    def test_minute_and_fractional_intervals(self, text, period, unit):
        """Sub-hour intervals are expressed in minutes."""
        from medsig import parse_sig

        result = parse_sig(text)

        assert _repeat(result)['period'] == period
        assert _repeat(result)['periodUnit'] == unit


class TestEventTiming:
    """Test event timing tokens."""

    @pytest.mark.parametrize("text", sorted(EVENT_TIMING_TOKENS))
    def test_every_event_timing_token(self, text):
        """Each event timing token maps to its when code."""
        from medsig import parse_sig

        result = parse_sig(f"1 tab po {text}")

        assert _repeat(result)['when'] == [EVENT_TIMING_TOKENS[text]]

    def test_am_and_pm_codes(self):
        """AM and PM set both the code and the when slot."""
        from medsig import parse_sig

        morning = parse_sig("1 po am", TAB_CONTEXT)
        evening = parse_sig("1 po pm", TAB_CONTEXT)

        assert _timing_code(morning) == 'AM'
        assert _repeat(morning)['when'] == ['MORN']
        assert _timing_code(evening) == 'PM'
        assert _repeat(evening)['when'] == ['EVE']

    def test_stat_is_immediate(self):
        """STAT maps to IMD."""
        from medsig import parse_sig

        result = parse_sig("1 tab po stat", TAB_CONTEXT)

        assert _repeat(result)['when'] == ['IMD']

    @pytest.mark.parametrize("text,expected", [
        ("wm", ['C']),
        ("pc breakfast", ['PCM']),
        ("ac dinner", ['ACV']),
        ("upon waking", ['WAKE']),
    ])
    def test_meal_and_wake_phrases(self, text, expected):
        """Meal phrases resolve to specific codes."""
        from medsig import parse_sig

        result = parse_sig(text)

        assert _repeat(result)['when'] == expected

    def test_generic_meal_kept_without_expansion(self):
        """AC stays generic by default."""
        from medsig import parse_sig

        result = parse_sig("1x2 po ac")

        assert _repeat(result)['when'] == ['AC']

    def test_smart_meal_expansion(self):
        """Twice daily AC expands to breakfast and dinner."""
        from medsig import parse_sig
        from medsig.config.sig_config import ParseOptions

        result = parse_sig("1x2 po ac", ParseOptions(smart_meal_expansion=True))

        assert _repeat(result)['when'] == ['ACM', 'ACV']

    def test_smart_meal_expansion_alternate_pair(self):
        """breakfast+lunch pairing."""
        from medsig import parse_sig
        from medsig.config.sig_config import ParseOptions

        options = ParseOptions(smart_meal_expansion=True, two_per_day_pair="breakfast+lunch")
        result = parse_sig("1x2 po pc", options)

        assert _repeat(result)['when'] == ['PCM', 'PCD']

    def test_smart_meal_expansion_adds_bedtime(self):
        """Four with-meal doses add bedtime."""
        from medsig import parse_sig
        from medsig.config.sig_config import ParseOptions

        result = parse_sig("1x4 po wm", ParseOptions(smart_meal_expansion=True))

        assert _repeat(result)['when'] == ['CM', 'CD', 'CV', 'HS']

    def test_no_expansion_for_interval_cadence(self):
        """Intervals keep generic meal codes."""
        from medsig import parse_sig
        from medsig.config.sig_config import ParseOptions

        result = parse_sig("po ac q6h", ParseOptions(smart_meal_expansion=True))

        assert _repeat(result)['when'] == ['AC']


class TestWarnings:
    """Test discouraged abbreviation handling."""

    @pytest.mark.parametrize("text,token", [
        ("1 po qd", 'QD'),
        ("1 po qod", 'QOD'),
        ("1 po bld", 'BLD'),
        ("1 po ad", 'AD'),
    ])
    def test_discouraged_tokens_warn(self, text, token):
        """Discouraged abbreviations produce warnings."""
        from medsig import parse_sig

        result = parse_sig(text)

        assert token in result.warnings[0]

    def test_bld_maps_to_meals(self):
        """BLD still sets the meal slot."""
        from medsig import parse_sig

        result = parse_sig("1 po bld")

        assert _repeat(result)['when'] == ['C']

    def test_alternate_days(self):
        """AD is every 2 days."""
        from medsig import parse_sig

        result = parse_sig("1 po ad")

        assert _repeat(result)['period'] == 2
        assert _repeat(result)['periodUnit'] == 'd'

    def test_discouraged_tokens_raise_when_disallowed(self):
        """allow_discouraged=False raises."""
        from medsig import parse_sig
        from medsig.config.sig_config import ParseOptions
        from medsig.errors import DiscouragedTokenError

        with pytest.raises(DiscouragedTokenError):
            parse_sig("1 po qd", ParseOptions(allow_discouraged=False))


class TestContextUnits:
    """Test unit inference from medication context."""

    @pytest.mark.parametrize("text", sorted(DEFAULT_UNIT_SYNONYMS))
    def test_every_unit_synonym(self, text):
        """An explicit unit word wins and maps to its canonical unit."""
        from medsig import parse_sig

        result = parse_sig(f"1 {text}")

        assert _dose(result) == {'value': 1, 'unit': DEFAULT_UNIT_SYNONYMS[text]}

    def test_dosage_form_unit(self):
        """Bare number takes the dosage form unit."""
        from medsig import parse_sig

        result = parse_sig("1", TAB_CONTEXT)

        assert _dose(result) == {'value': 1, 'unit': 'tab'}

    def test_container_unit(self):
        """Container unit wins for solutions."""
        from medsig import parse_sig

        options = ParseOptions(context=MedicationContext(dosage_form="sol", container_unit="mL"))
        result = parse_sig("2", options)

        assert _dose(result) == {'value': 2, 'unit': 'mL'}

    @pytest.mark.parametrize("form,unit", [
        ("capsule, soft", 'cap'),
        ("transdermal patch", 'patch'),
    ])
    def test_complex_dosage_forms(self, form, unit):
        """Dosage form strings are normalised before lookup."""
        from medsig import parse_sig

        result = parse_sig("1", ParseOptions(context=MedicationContext(dosage_form=form)))

        assert _dose(result) == {'value': 1, 'unit': unit}

    def test_route_implies_unit(self):
        """Rectal and transdermal routes imply their unit."""
        from medsig import parse_sig

        assert _dose(parse_sig("1 pr q12h")) == {'value': 1, 'unit': 'suppository'}
        assert _dose(parse_sig("1 td daily")) == {'value': 1, 'unit': 'patch'}

    def test_inhalation_unit(self):
        """inh implies puffs on the respiratory route."""
        from medsig import parse_sig

        result = parse_sig("2 inh q4h")

        assert _dose(result) == {'value': 2, 'unit': 'puff'}
        assert result.fhir['route']['coding'][0]['code'] == RouteCode.RESPIRATORY


class TestParseMetadata:
    """Test ParseResult metadata."""

    def test_normalized_route_and_unit(self):
        """meta carries the normalised route code and unit."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid")

        assert result.meta['normalized'] == {'route': RouteCode.ORAL, 'unit': 'tab'}
        assert result.meta['leftover_text'] is None

    def test_leftover_text(self):
        """Unrecognised text is reported in meta."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid ???")

        assert result.meta['leftover_text'] == "???"

    def test_async_matches_sync(self):
        """parse_sig_async produces the same Dosage."""
        import asyncio
        from medsig import parse_sig, parse_sig_async

        expected = parse_sig("2 tab po q6h prn pain")
        result = asyncio.run(parse_sig_async("2 tab po q6h prn pain"))

        assert result.fhir == expected.fhir
        assert result.long_text == expected.long_text
