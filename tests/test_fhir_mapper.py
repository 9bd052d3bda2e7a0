"""Tests for FHIR Dosage mapping and re-formatting."""

import pytest
import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import MedicationContext, ParseOptions, RouteCode  # noqa: E402
from medsig.config.vocabulary import ROUTE_SNOMED  # noqa: E402

TAB_CONTEXT = ParseOptions(context=MedicationContext(dosage_form="tab"))


class TestToFhir:
    """Test ParsedSig -> Dosage."""

    def test_empty_fields_omitted(self):
        """Only populated Dosage fields are emitted."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.fhir_mapper import to_fhir

        dosage = to_fhir(ParsedSig(dose=2, unit='tab'), long_text="Take 2 tablets.")

        assert dosage == {
            'timing': {},
            'doseAndRate': [{'doseQuantity': {'value': 2, 'unit': 'tab'}}],
            'text': "Take 2 tablets.",
        }

    def test_route_text_from_table(self):
        """A bare route code gets the table's display text."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.fhir_mapper import to_fhir

        dosage = to_fhir(ParsedSig(route_code=RouteCode.ORAL))

        assert dosage['route']['text'] == 'by mouth'
        assert dosage['route']['coding'][0]['code'] == RouteCode.ORAL

    def test_additional_instructions(self):
        """Additional instructions map to coded concepts."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.fhir_mapper import to_fhir

        sig = ParsedSig(additional_instructions=[
            {'text': 'with food', 'coding': {'code': '311504000', 'display': 'With or after food'}},
        ])
        dosage = to_fhir(sig)

        assert dosage['additionalInstruction'] == [{
            'text': 'with food',
            'coding': [{
                'system': 'http://snomed.info/sct',
                'code': '311504000',
                'display': 'With or after food',
            }],
        }]


class TestFromFhir:
    """Test Dosage -> ParsedSig."""

    def test_route_coding_restores_route(self):
        """A known SNOMED route coding replaces free text."""
        from medsig.transformers.fhir_mapper import internal_from_fhir

        sig = internal_from_fhir({
            'route': {
                'text': 'orally',
                'coding': [{'system': 'http://snomed.info/sct', 'code': RouteCode.ORAL}],
            },
        })

        assert sig.route_code == RouteCode.ORAL
        assert sig.route_text == 'by mouth'

    def test_unknown_when_codes_dropped(self):
        """Non event-timing when values are ignored."""
        from medsig.transformers.fhir_mapper import internal_from_fhir

        sig = internal_from_fhir({'timing': {'repeat': {'when': ['HS', 'LUNCHTIME']}}})

        assert sig.when == ['HS']

    def test_dose_range(self):
        """doseRange restores both bounds and the unit."""
        from medsig.transformers.fhir_mapper import internal_from_fhir

        sig = internal_from_fhir({'doseAndRate': [{'doseRange': {
            'low': {'value': 1, 'unit': 'tab'},
            'high': {'value': 2, 'unit': 'tab'},
        }}]})

        assert sig.dose_range == {'low': 1, 'high': 2}
        assert sig.unit == 'tab'


class TestRoundTrip:
    """Test formatting an existing Dosage."""

    def test_short_text_from_dosage(self):
        """format_sig renders a parsed Dosage."""
        from medsig import format_sig, parse_sig

        parsed = parse_sig("2 tab po q6h prn pain")

        assert "Q6H" in format_sig(parsed.fhir, 'short')

    def test_long_text_from_dosage(self):
        """format_sig long style matches the parse rendering."""
        from medsig import format_sig, parse_sig

        parsed = parse_sig("1 tab po bid prn pain")

        assert format_sig(parsed.fhir, 'long') == parsed.long_text

    def test_from_fhir_dosage_prefers_text(self):
        """from_fhir_dosage keeps Dosage.text as the long text."""
        from medsig import from_fhir_dosage, parse_sig

        parsed = parse_sig("1x3 po pc", TAB_CONTEXT)
        again = from_fhir_dosage(parsed.fhir)

        assert again.long_text == parsed.long_text
        assert again.fhir is parsed.fhir
        assert again.warnings == []
        assert again.meta['consumed_tokens'] == []

    def test_from_fhir_dosage_renders_without_text(self):
        """Without Dosage.text the long text is rendered."""
        from medsig import from_fhir_dosage

        dosage = {
            'timing': {'code': {'coding': [{'code': 'BID'}]},
                       'repeat': {'frequency': 2, 'period': 1, 'periodUnit': 'd'}},
            'doseAndRate': [{'doseQuantity': {'value': 1, 'unit': 'tab'}}],
            'route': {'coding': [{'system': 'http://snomed.info/sct', 'code': RouteCode.ORAL}]},
        }
        result = from_fhir_dosage(dosage)

        assert result.long_text == "Take 1 tablet by mouth twice daily."
        assert result.short_text == "1 tab PO BID"
        assert result.meta['normalized'] == {'route': RouteCode.ORAL, 'unit': 'tab'}


class TestRouteRoundTrip:
    """Test every coded route survives Dosage mapping."""

    @pytest.mark.parametrize("code", sorted(ROUTE_SNOMED))
    def test_route_code_round_trip(self, code):
        """Route codes come back from their own Dosage."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.fhir_mapper import internal_from_fhir, to_fhir

        sig = internal_from_fhir(to_fhir(ParsedSig(route_code=code)))

        assert sig.route_code == code
