"""Tests for body site and PRN reason coding resolution."""

import asyncio
import pytest
import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import ParseOptions  # noqa: E402

CUSTOM_SITE = {'coding': {'code': 'custom-arm', 'display': 'Custom arm', 'system': 'urn:test'}}
CUSTOM_REASON = {'coding': {'code': 'custom-pain', 'display': 'Custom pain', 'system': 'urn:test'}}


class TestSiteCoding:
    """Test body site resolution order."""

    def test_builtin_table(self):
        """Known sites are coded from the built-in SNOMED table."""
        from medsig import parse_sig

        result = parse_sig("1 mL IM left arm")

        coding = result.fhir['site']['coding'][0]
        assert coding['code'] == '368208006'
        assert coding['system'] == 'http://snomed.info/sct'

    def test_site_code_map_wins_over_builtin(self):
        """Caller maps are consulted before the built-in table."""
        from medsig import parse_sig

        result = parse_sig("1 mL IM left arm", ParseOptions(site_code_map={'left arm': CUSTOM_SITE}))

        assert result.fhir['site']['coding'][0] == {
            'system': 'urn:test',
            'code': 'custom-arm',
            'display': 'Custom arm',
        }

    def test_resolver_receives_request(self):
        """Resolvers get the lookup request and their result is applied."""
        from medsig import parse_sig

        seen = []

        def resolver(request):
            seen.append(request)
            return CUSTOM_SITE

        result = parse_sig("1 mL IM left arm", ParseOptions(site_code_resolvers=[resolver]))

        assert seen[0].canonical == 'left arm'
        assert seen[0].is_probe is False
        assert result.fhir['site']['coding'][0]['code'] == 'custom-arm'

    def test_falsy_resolver_falls_through(self):
        """A resolver returning None leaves the built-in table in charge."""
        from medsig import parse_sig

        result = parse_sig("1 mL IM left arm", ParseOptions(site_code_resolvers=[lambda request: None]))

        assert result.fhir['site']['coding'][0]['code'] == '368208006'

    def test_async_resolver_rejected_in_sync_path(self):
        """parse_sig refuses awaitable resolver results."""
        from medsig import parse_sig
        from medsig.errors import ResolverUsageError

        async def resolver(request):
            return CUSTOM_SITE

        with pytest.raises(ResolverUsageError):
            parse_sig("1 mL IM left arm", ParseOptions(site_code_resolvers=[resolver]))

    def test_async_resolver_awaited(self):
        """parse_sig_async awaits resolvers."""
        from medsig import parse_sig_async

        async def resolver(request):
            return CUSTOM_SITE

        result = asyncio.run(parse_sig_async("1 mL IM left arm",
                                             ParseOptions(site_code_resolvers=[resolver])))

        assert result.fhir['site']['coding'][0]['code'] == 'custom-arm'

    def test_async_path_runs_mixed_resolvers_in_order(self):
        """Sync and async resolvers run in order and the first match wins."""
        from medsig import parse_sig_async

        calls = []

        def plain(request):
            calls.append('plain')
            return None

        async def remote(request):
            calls.append('remote')
            return CUSTOM_SITE

        def never(request):
            calls.append('never')
            return None

        options = ParseOptions(site_code_resolvers=[plain, remote, never])
        result = asyncio.run(parse_sig_async("1 mL IM left arm", options))

        assert calls == ['plain', 'remote']
        assert result.fhir['site']['coding'][0]['code'] == 'custom-arm'

    def test_resolver_types_exported(self):
        """Resolver callable types are part of the config package."""
        from medsig.config import AsyncResolver, Resolver, SyncResolver

        assert Resolver.__args__ == (SyncResolver, AsyncResolver)


class TestPrnReasonCoding:
    """Test PRN reason resolution."""

    def test_builtin_reason(self):
        """pain is coded from the built-in table."""
        from medsig import parse_sig

        result = parse_sig("1 tab po q6h prn pain")

        reason = result.fhir['asNeededFor'][0]
        assert reason['text'] == 'pain'
        assert reason['coding'][0]['code'] == '22253000'

    def test_selection_wins(self):
        """Explicit selections beat maps and the built-in table."""
        from medsig import parse_sig

        options = ParseOptions(
            prn_reason_selections=[{'text': 'pain', 'resolution': CUSTOM_REASON}],
            prn_reason_map={'pain': {'coding': {'code': 'mapped', 'display': 'Mapped'}}},
        )
        result = parse_sig("1 tab po q6h prn pain", options)

        assert result.fhir['asNeededFor'][0]['coding'][0]['code'] == 'custom-pain'

    def test_reason_map(self):
        """prn_reason_map overrides the built-in table."""
        from medsig import parse_sig

        result = parse_sig("1 tab po q6h prn pain", ParseOptions(prn_reason_map={'pain': CUSTOM_REASON}))

        assert result.fhir['asNeededFor'][0]['coding'][0]['code'] == 'custom-pain'

    def test_unknown_reason_collects_suggestions(self):
        """Unresolved reasons are reported with built-in suggestions."""
        from medsig import parse_sig

        result = parse_sig("1 tab po prn wobbly")

        assert 'coding' not in result.fhir['asNeededFor'][0]
        lookups = result.meta['prn_reason_lookups']
        assert len(lookups) == 1
        assert lookups[0]['request'].text == 'wobbly'
        assert len(lookups[0]['suggestions']) > 0

    def test_braced_reason_resolves_and_suggests(self):
        """A braced reason is resolved and still gathers suggestions."""
        from medsig import parse_sig

        result = parse_sig("1 tab po prn {pain}")

        assert result.fhir['asNeededFor'][0]['text'] == 'pain'
        assert result.fhir['asNeededFor'][0]['coding'][0]['code'] == '22253000'
        lookup = result.meta['prn_reason_lookups'][0]
        assert lookup['request'].is_probe is True
        codes = [s['coding']['code'] for s in lookup['suggestions'] if 'coding' in s]
        assert '22253000' in codes

    def test_suggestion_resolver_results_are_merged(self):
        """Suggestion resolvers add to the collected suggestions."""
        from medsig import parse_sig

        extra = {'text': 'wobbliness', 'coding': {'code': 'wobble', 'display': 'Wobble'}}
        options = ParseOptions(prn_reason_suggestion_resolvers=[lambda request: [extra]])
        result = parse_sig("1 tab po prn wobbly", options)

        suggestions = result.meta['prn_reason_lookups'][0]['suggestions']
        assert any(s.get('coding', {}).get('code') == 'wobble' for s in suggestions)

    def test_async_suggestion_resolver_rejected_in_sync_path(self):
        """Awaitable suggestion resolvers need parse_sig_async."""
        from medsig import parse_sig
        from medsig.errors import ResolverUsageError

        async def suggest(request):
            return []

        with pytest.raises(ResolverUsageError):
            parse_sig("1 tab po prn wobbly",
                      ParseOptions(prn_reason_suggestion_resolvers=[suggest]))
