# features/booking/config.py
import re
from decimal import Decimal

# --- PRICE MATRIX HEADER KEYS ---
HYPOTHECATION_HEADER_KEY = 'HYPOTHECATION CHARGES (IF APPLICABLE)'
ACCESSORIES_TOTAL_HEADER_KEY = 'ACCESSORIES TOTAL'

# --- DISCOUNT LIMITS ---
MAX_DISCOUNT_RATIO = Decimal("0.95")
MIN_RETAINED_RATIO = Decimal("0.05")

# --- RTO ---
RTO_AMOUNTS = {
    'MH': Decimal("0.00"),
    'BH': Decimal("5000.00"),
    'CRTM': Decimal("4500.00"),
}

# --- CUSTOMER ---
VALID_SALUTATIONS = ('Mr.', 'Mrs.', 'Miss', 'Dr.', 'Prof.')

REQUIRED_CREATE_FIELDS = (
    ('model_id', 'Model selection is required'),
    ('model_color', 'Color selection is required'),
    ('customer_type', 'Customer type (B2B/B2C/CSD) is required'),
    ('rto_type', 'RTO state (MH/BH/CRTM) is required'),
    ('customer_details', 'Customer details are required'),
    ('payment', 'Payment details are required'),
)

# --- CHASSIS & CLAIMS ---
CHASSIS_NUMBER_PATTERN = re.compile(r'^[A-Z0-9]{17}$')
MAX_CLAIM_DOCUMENTS = 6
INITIAL_ALLOCATION_REASON = 'Initial allocation'

# --- SEQUENCING ---
BOOKING_NUMBER_PREFIX = 'BK'
BOOKING_NUMBER_COUNTER = 'bookingNumber'
BOOKING_NUMBER_WIDTH = 6


def get_rto_amount(rto_type: str) -> Decimal:
    return RTO_AMOUNTS.get(rto_type, Decimal("0.00"))


def format_booking_number(sequence: int) -> str:
    return f"{BOOKING_NUMBER_PREFIX}{sequence:0{BOOKING_NUMBER_WIDTH}d}"


def normalize_chassis_number(raw) -> str:
    return str(raw or '').strip().upper()
