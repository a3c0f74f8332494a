import logging
import re

logger = logging.getLogger(__name__)

# A single measurement: 120, 107.5 or 107,5
NUMBER = r"\d+(?:[,.]\d+)?"
SEP = r"[x×]"

SUB_DIMENSION_RE = re.compile(rf"({NUMBER}){SEP}({NUMBER})(?:{SEP}({NUMBER}))?")
DIAMETER_RE = re.compile(rf"[⌀ø]\D*?({NUMBER}){SEP}({NUMBER})")
THREE_DIM_RE = re.compile(rf"({NUMBER}){SEP}({NUMBER}){SEP}({NUMBER})")
TWO_DIM_RE = re.compile(rf"({NUMBER}){SEP}({NUMBER})")

# Part prefix such as "BT" directly followed by the first measurement
COMPOUND_PREFIX_RE = re.compile(r"^[a-zäöüß]+(?=\d)")

# Strings this module produces; fed back in they are returned as-is
_CANONICAL_GROUP = r"\d+(?:[,.]\d+)?(?:×\d+(?:[,.]\d+)?){1,2}"
CANONICAL_RE = re.compile(
    rf"^(?:Durchmesser×Höhe: \d+(?:[,.]\d+)?×\d+(?:[,.]\d+)? mm"
    rf"|{_CANONICAL_GROUP}(?: \+ {_CANONICAL_GROUP})* mm)$"
)


def _clean(text: str) -> str:
    return re.sub(r"\s+", "", text).lower()


def parse_compound_dimensions(clean_text: str):
    """
    Split compound part notation into its sub-dimensions.

    Input:  'bt3x30x107,3x228'
    Output: ['3×30×107', '3×228']
    """
    body = COMPOUND_PREFIX_RE.sub("", clean_text, count=1)
    parts = []
    for group in body.split(","):
        for match in SUB_DIMENSION_RE.finditer(group):
            parts.append("×".join(n for n in match.groups() if n))
    return parts


def normalize_dimensions(raw: str) -> str:
    """
    Render a free-form size string in canonical form.

    '120x45'             -> '120×45 mm'
    '12 X 30 x 5,5'      -> '12×30×5,5 mm'
    '⌀25x10'             -> 'Durchmesser×Höhe: 25×10 mm'
    'BT 3X30X107,3X228'  -> '3×30×107 + 3×228 mm'
    'unbekannt'          -> 'unbekannt'

    Unrecognized text is passed through unchanged.
    """
    if not raw:
        return raw

    text = raw.strip()
    if CANONICAL_RE.match(text):
        return text

    clean = _clean(text)

    if "," in clean and COMPOUND_PREFIX_RE.match(clean):
        parts = parse_compound_dimensions(clean)
        if parts:
            return f"{' + '.join(parts)} mm"

    if "⌀" in clean or "ø" in clean:
        match = DIAMETER_RE.search(clean)
        if match:
            return f"Durchmesser×Höhe: {match.group(1)}×{match.group(2)} mm"

    match = THREE_DIM_RE.search(clean)
    if match:
        return f"{match.group(1)}×{match.group(2)}×{match.group(3)} mm"

    match = TWO_DIM_RE.search(clean)
    if match:
        return f"{match.group(1)}×{match.group(2)} mm"

    logger.debug(f"No dimension pattern matched for: {raw!r}")
    return raw
