"""
Centralized Constants - SINGLE SOURCE OF TRUTH

Market segments, district ordering, sale/tenure labels and the default
gross yields used by the aggregation engine. Import from here; do not
duplicate these definitions in services.

Reference: URA Market Segments
- CCR: Core Central Region (Prime districts)
- RCR: Rest of Central Region (City fringe)
- OCR: Outside Central Region (Suburban)
"""

# =============================================================================
# MARKET SEGMENTS
# =============================================================================

SEGMENT_CCR = 'CCR'
SEGMENT_RCR = 'RCR'
SEGMENT_OCR = 'OCR'

# Display order for segment breakdowns
SEGMENTS = [SEGMENT_CCR, SEGMENT_RCR, SEGMENT_OCR]

# Used when a project carries no (or an unrecognised) segment
DEFAULT_SEGMENT = SEGMENT_RCR


# =============================================================================
# SEGMENT AND DISTRICT NORMALIZATION
# =============================================================================

def normalize_segment(raw_value) -> str:
    """
    Normalize a raw market segment string to CCR/RCR/OCR.

    Falls back to DEFAULT_SEGMENT for missing or unrecognised values.
    """
    if not raw_value:
        return DEFAULT_SEGMENT
    seg = str(raw_value).strip().upper()
    return seg if seg in SEGMENTS else DEFAULT_SEGMENT


def district_sort_key(district: str) -> int:
    """Numeric sort key so that 'D2' < 'D10'."""
    try:
        return int(str(district).upper().lstrip('D'))
    except ValueError:
        return 0


# =============================================================================
# SALE TYPE CLASSIFICATION
# =============================================================================

SALE_TYPE_NEW = "New Sale"
SALE_TYPE_RESALE = "Resale"
SALE_TYPE_SUB = "Sub Sale"

SALE_TYPES = [SALE_TYPE_NEW, SALE_TYPE_RESALE, SALE_TYPE_SUB]

# URA typeOfSale mapping: "1" = New Sale, "2" = Sub Sale, "3" = Resale
TYPE_OF_SALE_MAP = {
    "1": SALE_TYPE_NEW,
    "2": SALE_TYPE_SUB,
    "3": SALE_TYPE_RESALE,
}


# =============================================================================
# TENURE CLASSIFICATION
# =============================================================================

TENURE_FREEHOLD = "Freehold"
TENURE_999_YEAR = "999-yr"
TENURE_LEASEHOLD = "Leasehold"

TENURE_TYPES = [TENURE_FREEHOLD, TENURE_999_YEAR, TENURE_LEASEHOLD]


def normalize_tenure(tenure_str) -> str:
    """
    Normalize tenure free text to one of the three tenure categories.

    'Freehold' wins over '999' so "Freehold (999 yrs)" stays Freehold.
    Anything else, including missing text, is Leasehold.
    """
    if not tenure_str:
        return TENURE_LEASEHOLD

    t = str(tenure_str).lower()

    if 'freehold' in t:
        return TENURE_FREEHOLD
    elif '999' in t:
        return TENURE_999_YEAR
    else:
        return TENURE_LEASEHOLD


# =============================================================================
# YIELDS
# =============================================================================

# Annual gross yield per segment; last-resort fallback when no real rental
# data is available for a segment.
DEFAULT_SEGMENT_YIELDS = {
    SEGMENT_CCR: 0.025,
    SEGMENT_RCR: 0.028,
    SEGMENT_OCR: 0.032,
}

# Yield used for a segment that is missing from every yield table
FALLBACK_YIELD = 0.028


# =============================================================================
# UNITS AND BOUNDS
# =============================================================================

SQM_TO_SQFT = 10.7639

# PSF sanity bound; (0, MAX_PSF] is accepted, boundary inclusive
MAX_PSF = 50000

# Floor bands used by the floor premium analysis
FLOOR_BANDS = ['01-05', '06-10', '11-15', '16-20', '21-25',
               '26-30', '31-35', '36-40', '41-45', '46-50']

# Rental area buckets offered as search filters
AREA_SQFT_RANGES = [
    {'label': 'Under 500 sf', 'value': '0-500'},
    {'label': '500 - 1,000 sf', 'value': '500-1000'},
    {'label': '1,000 - 1,500 sf', 'value': '1000-1500'},
    {'label': '1,500 - 2,000 sf', 'value': '1500-2000'},
    {'label': '2,000 - 3,000 sf', 'value': '2000-3000'},
    {'label': '3,000+ sf', 'value': '3000-99999'},
]


# =============================================================================
# PAYLOAD
# =============================================================================

# Bump when the dashboard payload key set changes
PAYLOAD_VERSION = 3
