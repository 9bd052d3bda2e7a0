"""Tests for English and localized sig rendering."""

import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import FormatOptions, ParseOptions  # noqa: E402


class TestEnglishGrammar:
    """Test English phrase building."""

    def test_site_preposition_and_article(self):
        """Surface sites read 'to the ...'."""
        from medsig import parse_sig

        result = parse_sig("1 drop bid to face")

        assert result.fhir['site']['text'] == 'face'
        assert result.long_text == "Apply 1 drop twice daily to the face."

    def test_plural_units(self):
        """Doses above one pluralise the unit."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.formatter import format_dose_long

        assert format_dose_long(ParsedSig(dose=2, unit='tab')) == "2 tablets"
        assert format_dose_long(ParsedSig(dose=1, unit='tab')) == "1 tablet"

    def test_every_other_day(self):
        """Period 2 days reads 'every other day'."""
        from medsig.extractors.parse_context import ParsedSig
        from medsig.transformers.formatter import describe_frequency

        sig = ParsedSig(period=2, period_unit='d')

        assert describe_frequency(sig) == "every other day"

    def test_join_with(self):
        """Lists join with commas and a final conjunction."""
        from medsig.transformers.formatter import join_with

        assert join_with(['a'], 'and') == 'a'
        assert join_with(['a', 'b', 'c'], 'and') == 'a, b and c'


class TestThaiLocalization:
    """Test the registered Thai grammar."""

    def test_thai_long_text(self):
        """Thai puts the verb first and the quantity after it."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid", ParseOptions(locale='th'))

        assert result.long_text == "รับประทาน ครั้งละ 1 เม็ด ทางปาก วันละ 2 ครั้ง."
        assert result.fhir['text'] == result.long_text

    def test_thai_as_needed(self):
        """PRN phrasing in Thai."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid prn pain", ParseOptions(locale='th'))

        assert "ใช้เมื่อจำเป็นสำหรับ pain" in result.long_text

    def test_thai_short_text(self):
        """Short Thai text uses Thai cadence words."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid", ParseOptions(locale='th'))

        assert "วันละ 2 ครั้ง" in result.short_text

    def test_format_sig_in_thai(self):
        """format_sig honours FormatOptions.locale."""
        from medsig import format_sig, parse_sig

        parsed = parse_sig("1 tab po bid")

        assert format_sig(parsed.fhir, 'long', FormatOptions(locale='th')).startswith("รับประทาน")


class TestLocalizationOverrides:
    """Test caller i18n configuration."""

    def test_config_formatter_wraps_default(self):
        """A config callable receives the default English text."""
        from medsig import parse_sig

        options = ParseOptions(i18n={'format_long': lambda context: context.default_text.upper()})
        result = parse_sig("1 tab po bid", options)

        assert result.long_text == "TAKE 1 TABLET BY MOUTH TWICE DAILY."
        assert result.short_text == "1 tab PO BID"

    def test_inherit_keeps_unset_style(self):
        """Inherited locales supply the styles the config leaves out."""
        from medsig import parse_sig

        options = ParseOptions(i18n={
            'locale': 'th-custom',
            'inherit': 'th',
            'format_short': lambda context: 'custom short',
        })
        result = parse_sig("1 tab po bid", options)

        assert result.short_text == 'custom short'
        assert result.long_text.startswith("รับประทาน")

    def test_registered_localization(self):
        """register_localization adds a locale."""
        from medsig import SigLocalization, format_sig, parse_sig, register_localization

        register_localization(SigLocalization(
            locale='x-test',
            format_long=lambda context: f"[{context.format_default('short')}]",
        ))
        parsed = parse_sig("1 tab po bid")

        assert format_sig(parsed.fhir, 'long', FormatOptions(locale='x-test')) == "[1 tab PO BID]"
        assert format_sig(parsed.fhir, 'short', FormatOptions(locale='x-test')) == "1 tab PO BID"

    def test_unknown_locale_falls_back_to_english(self):
        """Unregistered locales render English."""
        from medsig import parse_sig

        result = parse_sig("1 tab po bid", ParseOptions(locale='zz'))

        assert result.long_text == "Take 1 tablet by mouth twice daily."
