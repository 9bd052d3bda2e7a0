"""Tests for configuration tables, context inference and tokenization."""

import pytest
import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class TestYamlTables:
    """Test the packaged YAML tables."""

    def test_route_table_has_oral(self):
        """Oral route display and text override."""
        from medsig.config.sig_config import RouteCode
        from medsig.config.vocabulary import ROUTE_SNOMED, ROUTE_TEXT

        assert ROUTE_SNOMED[RouteCode.ORAL]['display'] == 'Oral route'
        assert ROUTE_SNOMED[RouteCode.ORAL]['system'] == 'http://snomed.info/sct'
        assert ROUTE_TEXT[RouteCode.ORAL] == 'by mouth'

    def test_every_route_constant_is_coded(self):
        """Route constants referenced by the parser exist in the table."""
        from medsig.config.sig_config import RouteCode
        from medsig.config.vocabulary import ROUTE_SNOMED

        codes = [v for k, v in vars(RouteCode).items() if not k.startswith('_')]

        assert all(code in ROUTE_SNOMED for code in codes)

    def test_loaders_are_cached(self):
        """YAML files are read once."""
        from medsig.config.sig_config import load_body_sites

        assert load_body_sites() is load_body_sites()

    def test_schedule_defaults(self):
        """Built-in frequency clocks load from YAML."""
        from medsig.config.sig_config import SCHEDULE_DEFAULTS

        assert SCHEDULE_DEFAULTS.by_code['BID'] == ['08:00', '20:00']
        assert SCHEDULE_DEFAULTS.by_frequency['freq:3/d'] == ['08:00', '14:00', '20:00']

    @pytest.mark.parametrize("text,unit", [
        ("tabs", 'tab'),
        ("capsules", 'cap'),
        ("mcg", 'mcg'),
        ("milligrams", 'mg'),
        ("ml", 'mL'),
        ("tablespoons", 'tbsp'),
    ])
    def test_unit_synonyms(self, text, unit):
        """Unit spellings map to canonical units."""
        from medsig.config.vocabulary import DEFAULT_UNIT_SYNONYMS

        assert DEFAULT_UNIT_SYNONYMS[text] == unit


class TestMedicationContext:
    """Test dosage form normalisation."""

    def test_normalize_dosage_form(self):
        """Complex dosage forms map to dose labels."""
        from medsig.extractors.context import normalize_dosage_form

        assert normalize_dosage_form("Nasal Spray, Suspension") == "nasal spray"
        assert normalize_dosage_form("capsule, soft") == "capsule"
        assert normalize_dosage_form(None) is None

    def test_default_unit_wins(self):
        """An explicit default unit takes precedence."""
        from medsig.config.sig_config import MedicationContext
        from medsig.extractors.context import infer_unit_from_context

        context = MedicationContext(dosage_form="tab", default_unit="mg")

        assert infer_unit_from_context(context) == 'mg'
        assert infer_unit_from_context(None) is None


class TestTokenizer:
    """Test token splitting."""

    def test_compact_dose_split(self):
        """500mg splits into number and unit."""
        from medsig.extractors.tokenizer import tokenize

        assert [t.original for t in tokenize("500mg po bid")] == ['500', 'mg', 'po', 'bid']

    def test_range_glued(self):
        """Loosely spaced ranges are glued together."""
        from medsig.extractors.tokenizer import tokenize

        assert [t.original for t in tokenize("1 -2 tab")] == ['1-2', 'tab']

    def test_fraction_evaluated(self):
        """Numeric fractions become decimals."""
        from medsig.extractors.tokenizer import tokenize

        assert tokenize("1/2 tab")[0].original == '0.5'

    def test_indices_are_positional(self):
        """Token indices follow list position."""
        from medsig.extractors.tokenizer import tokenize

        tokens = tokenize("2 tab po q6h prn pain")

        assert [t.index for t in tokens] == list(range(len(tokens)))

    @pytest.mark.parametrize("value,expected", [
        (2.0, '2'),
        (0.5, '0.5'),
        (12, '12'),
    ])
    def test_format_number(self, value, expected):
        """Whole numbers drop the decimal point."""
        from medsig.extractors.tokenizer import format_number

        assert format_number(value) == expected
