"""
Thai Sig Grammar
================

Thai rendering registered under the ``th`` locale. Thai instructions put the
verb first and the per-administration quantity after it
(``รับประทาน ครั้งละ 1 เม็ด ทางปาก วันละ 2 ครั้ง.``), so this grammar builds
its own sentence from the ParsedSig instead of translating the English text.
"""

import re
from typing import Dict, Optional

from ..config.sig_config import EventTiming, PeriodUnit, RouteCode, load_thai_site_translations
from ..extractors.parse_context import ParsedSig
from ..extractors.tokenizer import format_number
from .formatter import (
    ROUTE_SHORT,
    FormatContext,
    RouteGrammar,
    SigLocalization,
    collapse,
    collect_when_phrases,
    combine_frequency_and_events,
    describe_period_range,
    is_daily,
    join_with,
    register_localization,
    resolve_route_grammar,
    short_route,
)

THAI_CONJUNCTION = 'และ'

THAI_SITE_TRANSLATIONS = load_thai_site_translations()

THAI_ROUTE_SHORT = dict(ROUTE_SHORT, **{RouteCode.OTIC: 'OT'})

DEFAULT_THAI_ROUTE_GRAMMAR = RouteGrammar('ใช้')


def _site_grammar(verb: str, phrase: str, preposition: str = 'ที่') -> RouteGrammar:
    return RouteGrammar(verb, phrase, preposition, omit_phrase_with_site=True)


THAI_ROUTE_GRAMMAR: Dict[str, RouteGrammar] = {
    RouteCode.ORAL: RouteGrammar('รับประทาน', 'ทางปาก'),
    RouteCode.SUBLINGUAL: RouteGrammar('อมใต้ลิ้น', 'ใต้ลิ้น'),
    RouteCode.BUCCAL: RouteGrammar('อมกระพุ้งแก้ม', 'ที่กระพุ้งแก้ม'),
    RouteCode.RESPIRATORY: _site_grammar('สูด', 'โดยการสูดดม'),
    RouteCode.NASAL: _site_grammar('พ่น', 'ทางจมูก'),
    RouteCode.TOPICAL: _site_grammar('ทา', 'บริเวณผิวหนัง', 'บริเวณ'),
    RouteCode.TRANSDERMAL: _site_grammar('ติด', 'แบบแผ่นแปะผิวหนัง', 'บริเวณ'),
    RouteCode.SUBCUTANEOUS: _site_grammar('ฉีด', 'เข้าใต้ผิวหนัง'),
    RouteCode.INTRAMUSCULAR: _site_grammar('ฉีด', 'เข้ากล้ามเนื้อ'),
    RouteCode.INTRAVENOUS: _site_grammar('ฉีด', 'เข้าหลอดเลือดดำ'),
    RouteCode.RECTAL: _site_grammar('สอด', 'ทางทวารหนัก'),
    RouteCode.VAGINAL: _site_grammar('สอด', 'ทางช่องคลอด'),
    RouteCode.OPHTHALMIC: _site_grammar('หยอด', 'ที่ดวงตา'),
    RouteCode.OTIC: _site_grammar('หยอด', 'ที่หู'),
    RouteCode.INTRAVITREAL: _site_grammar('ฉีด', 'เข้าดวงตา'),
}

WHEN_TEXT_THAI = {
    EventTiming.BEFORE_SLEEP: 'ก่อนนอน',
    EventTiming.BEFORE_MEAL: 'ก่อนอาหาร',
    EventTiming.BEFORE_BREAKFAST: 'ก่อนอาหารเช้า',
    EventTiming.BEFORE_LUNCH: 'ก่อนอาหารกลางวัน',
    EventTiming.BEFORE_DINNER: 'ก่อนอาหารเย็น',
    EventTiming.AFTER_MEAL: 'หลังอาหาร',
    EventTiming.AFTER_BREAKFAST: 'หลังอาหารเช้า',
    EventTiming.AFTER_LUNCH: 'หลังอาหารกลางวัน',
    EventTiming.AFTER_DINNER: 'หลังอาหารเย็น',
    EventTiming.MEAL: 'พร้อมอาหาร',
    EventTiming.BREAKFAST: 'พร้อมอาหารเช้า',
    EventTiming.LUNCH: 'พร้อมอาหารกลางวัน',
    EventTiming.DINNER: 'พร้อมอาหารเย็น',
    EventTiming.MORNING: 'ตอนเช้า',
    EventTiming.EARLY_MORNING: 'เช้าตรู่',
    EventTiming.LATE_MORNING: 'สาย',
    EventTiming.NOON: 'ตอนเที่ยง',
    EventTiming.AFTERNOON: 'ตอนบ่าย',
    EventTiming.EARLY_AFTERNOON: 'บ่ายต้น',
    EventTiming.LATE_AFTERNOON: 'บ่ายแก่',
    EventTiming.EVENING: 'ตอนเย็น',
    EventTiming.EARLY_EVENING: 'หัวค่ำ',
    EventTiming.LATE_EVENING: 'ดึก',
    EventTiming.NIGHT: 'ตอนกลางคืน',
    EventTiming.WAKE: 'หลังตื่นนอน',
    EventTiming.AFTER_SLEEP: 'หลังจากนอน',
    EventTiming.IMMEDIATE: 'ทันที',
}

DAY_NAMES_THAI = {
    'mon': 'วันจันทร์',
    'tue': 'วันอังคาร',
    'wed': 'วันพุธ',
    'thu': 'วันพฤหัสบดี',
    'fri': 'วันศุกร์',
    'sat': 'วันเสาร์',
    'sun': 'วันอาทิตย์',
}

# unit -> (short, long)
THAI_UNITS = {
    'tab': ('เม็ด', 'เม็ด'),
    'tablet': ('เม็ด', 'เม็ด'),
    'cap': ('แคปซูล', 'แคปซูล'),
    'capsule': ('แคปซูล', 'แคปซูล'),
    'ml': ('มล.', 'มิลลิลิตร'),
    'milliliter': ('มล.', 'มิลลิลิตร'),
    'milliliters': ('มล.', 'มิลลิลิตร'),
    'mg': ('มก.', 'มิลลิกรัม'),
    'mcg': ('ไมโครกรัม', 'ไมโครกรัม'),
    'ug': ('ไมโครกรัม', 'ไมโครกรัม'),
    'puff': ('พัฟ', 'พัฟ'),
    'puffs': ('พัฟ', 'พัฟ'),
    'spray': ('พ่น', 'พ่น'),
    'sprays': ('พ่น', 'พ่น'),
    'drop': ('หยด', 'หยด'),
    'drops': ('หยด', 'หยด'),
    'patch': ('แผ่น', 'แผ่นแปะ'),
    'patches': ('แผ่น', 'แผ่นแปะ'),
    'suppository': ('ยาเหน็บ', 'ยาเหน็บ'),
    'suppositories': ('ยาเหน็บ', 'ยาเหน็บ'),
}

_TIMING_CODE_THAI = {
    'BID': 'วันละ 2 ครั้ง',
    'TID': 'วันละ 3 ครั้ง',
    'QID': 'วันละ 4 ครั้ง',
    'QD': 'วันละครั้ง',
    'QOD': 'วันเว้นวัน',
    'Q6H': 'ทุก 6 ชั่วโมง',
    'Q8H': 'ทุก 8 ชั่วโมง',
    'WK': 'สัปดาห์ละครั้ง',
    'MO': 'เดือนละครั้ง',
}

_ROUTE_TEXT_THAI = {
    'oral': 'ทางปาก',
    'intravenous': 'เข้าหลอดเลือดดำ',
    'intramuscular': 'เข้ากล้ามเนื้อ',
    'subcutaneous': 'เข้าใต้ผิวหนัง',
    'topical': 'บริเวณผิวหนัง',
    'transdermal': 'แบบแผ่นแปะผิวหนัง',
    'intranasal': 'ทางจมูก',
    'nasal': 'ทางจมูก',
}

_THAI_CHAR = re.compile(r'^[\u0e00-\u0e7f]')
_WHITESPACE = re.compile(r'\s+')


# =============================================================================
# PHRASES
# =============================================================================

def format_unit_thai(unit: str, style: str) -> str:
    entry = THAI_UNITS.get(unit.lower())
    if entry is None:
        return unit
    return entry[0] if style == 'short' else entry[1]


def format_dose_thai(sig: ParsedSig, style: str) -> Optional[str]:
    if sig.dose_range:
        low, high = format_number(sig.dose_range['low']), format_number(sig.dose_range['high'])
        amount = f"{low}-{high}" if style == 'short' else f"ครั้งละ {low} ถึง {high}"
    elif sig.dose is not None:
        amount = format_number(sig.dose) if style == 'short' else f"ครั้งละ {format_number(sig.dose)}"
    else:
        return None
    if sig.unit:
        return f"{amount} {format_unit_thai(sig.unit, style)}"
    return amount


def _every(sig: ParsedSig, noun: str) -> str:
    if sig.period_max and sig.period_max != sig.period:
        return f"ทุก {format_number(sig.period)} ถึง {format_number(sig.period_max)} {noun}"
    return f"ทุก {format_number(sig.period)} {noun}"


def describe_frequency_thai(sig: ParsedSig) -> Optional[str]:
    freq, freq_max = sig.frequency, sig.frequency_max
    period, period_max, unit = sig.period, sig.period_max, sig.period_unit

    if freq is not None and freq_max is not None and is_daily(sig):
        if freq == 1 and freq_max == 1:
            return 'วันละครั้ง'
        return f"วันละ {format_number(freq)} ถึง {format_number(freq_max)} ครั้ง"
    if freq and is_daily(sig):
        return 'วันละครั้ง' if freq == 1 else f"วันละ {format_number(freq)} ครั้ง"
    if unit == PeriodUnit.HOUR and period:
        return _every(sig, 'ชั่วโมง')
    if unit == PeriodUnit.DAY and period and period != 1:
        if period == 2 and (not period_max or period_max == 2):
            return 'วันเว้นวัน'
        return _every(sig, 'วัน')
    if unit == PeriodUnit.WEEK and period:
        if period == 1 and (not period_max or period_max == 1):
            return 'สัปดาห์ละครั้ง'
        return _every(sig, 'สัปดาห์')
    if unit == PeriodUnit.MONTH and period:
        if period == 1 and (not period_max or period_max == 1):
            return 'เดือนละครั้ง'
        return _every(sig, 'เดือน')
    if sig.timing_code and sig.timing_code.upper() in _TIMING_CODE_THAI:
        return _TIMING_CODE_THAI[sig.timing_code.upper()]
    if freq and unit is None and period is None:
        return 'ครั้งเดียว' if freq == 1 else f"{format_number(freq)} ครั้ง"
    return None


def build_route_phrase_thai(sig: ParsedSig, grammar: RouteGrammar, has_site: bool) -> Optional[str]:
    if grammar.route_phrase is not None:
        return grammar.phrase(has_site)
    text = (sig.route_text or '').strip()
    if not text:
        return None
    normalized = text.lower()
    if normalized.startswith(('by ', 'per ', 'via ')):
        return text
    if normalized in _ROUTE_TEXT_THAI:
        return _ROUTE_TEXT_THAI[normalized]
    if 'inhal' in normalized:
        return 'โดยการสูดดม'
    return text


def translate_site_thai(site: str) -> str:
    normalized = _WHITESPACE.sub(' ', site.strip().lower())
    if not normalized:
        return site
    return THAI_SITE_TRANSLATIONS.get(normalized, site)


def format_site_thai(sig: ParsedSig, grammar: RouteGrammar) -> Optional[str]:
    text = (sig.site_text or '').strip()
    if not text:
        return None
    translated = translate_site_thai(text)
    preposition = grammar.site_preposition or 'ที่'
    separator = '' if _THAI_CHAR.match(translated) else ' '
    return f"{preposition}{separator}{translated}".strip()


def describe_day_of_week_thai(sig: ParsedSig) -> Optional[str]:
    days = [DAY_NAMES_THAI[d] for d in sig.day_of_week if d in DAY_NAMES_THAI]
    if not days:
        return None
    return f"ใน{join_with(days, THAI_CONJUNCTION)}"


def format_as_needed_thai(sig: ParsedSig) -> Optional[str]:
    if not sig.as_needed:
        return None
    if sig.as_needed_reason:
        return f"ใช้เมื่อจำเป็นสำหรับ {sig.as_needed_reason}"
    return 'ใช้เมื่อจำเป็น'


# =============================================================================
# SENTENCES
# =============================================================================

def format_short_thai(sig: ParsedSig) -> str:
    parts = [format_dose_thai(sig, 'short'), short_route(sig, THAI_ROUTE_SHORT)]
    timing = describe_frequency_thai(sig)
    if timing:
        parts.append(timing)
    elif sig.timing_code:
        parts.append(sig.timing_code)
    elif sig.period and sig.period_unit:
        parts.append(f"Q{describe_period_range(sig)}{sig.period_unit.upper()}")
    events = collect_when_phrases(sig, WHEN_TEXT_THAI, keep_unknown=False)
    if events:
        parts.append(' '.join(events))
    if sig.day_of_week:
        parts.append(','.join(
            DAY_NAMES_THAI[d][len('วัน'):] if d in DAY_NAMES_THAI else d
            for d in sig.day_of_week
        ))
    if sig.count is not None:
        parts.append(f"x{format_number(sig.count)}")
    parts.append(format_as_needed_thai(sig))
    return ' '.join(p for p in parts if p)


def format_long_thai(sig: ParsedSig) -> str:
    grammar = resolve_route_grammar(sig, THAI_ROUTE_GRAMMAR, DEFAULT_THAI_ROUTE_GRAMMAR)
    site_part = format_site_thai(sig, grammar)
    bedtime = WHEN_TEXT_THAI[EventTiming.BEFORE_SLEEP]
    frequency, event = combine_frequency_and_events(
        describe_frequency_thai(sig),
        collect_when_phrases(sig, WHEN_TEXT_THAI, keep_unknown=False),
        bedtime=bedtime,
        joiner=lambda text: 'วันละ' in text,
        conjunction=THAI_CONJUNCTION,
    )
    count_part = f"จำนวน {format_number(sig.count)} ครั้ง" if sig.count is not None else None

    body = collapse([
        format_dose_thai(sig, 'long') or 'ยา',
        build_route_phrase_thai(sig, grammar, bool(site_part)),
        frequency,
        event,
        describe_day_of_week_thai(sig),
        count_part,
        format_as_needed_thai(sig),
        site_part,
    ])
    return f"{grammar.verb} {body}." if body else f"{grammar.verb}."


def _format_short(context: FormatContext) -> str:
    return format_short_thai(context.sig)


def _format_long(context: FormatContext) -> str:
    return format_long_thai(context.sig)


THAI_LOCALIZATION = SigLocalization(locale='th', format_short=_format_short,
                                    format_long=_format_long)

register_localization(THAI_LOCALIZATION)
