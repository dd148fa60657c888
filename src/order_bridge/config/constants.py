"""
Centralized application constants.

Single point of truth for the business rules shared by the order poller
and the shipment webhook handler.
"""

# ==============================================================================
# HTTP / RETRY
# ==============================================================================

# General API call timeout (seconds)
API_TIMEOUT_SECONDS = 30.0

# OAuth token exchange timeout (seconds)
TOKEN_TIMEOUT_SECONDS = 15.0

# Retry schedule: delay = RETRY_BASE_DELAY_SECONDS * 2 ** (attempt - 1)
MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_SECONDS = 1.0

# Token is treated as expired this many seconds before its real expiry
TOKEN_EXPIRY_BUFFER_SECONDS = 60

# ==============================================================================
# CHANGE FEED
# ==============================================================================

STREAM_DESCRIPTION = "Order stream for ShipStation integration - new orders"

# Start position used when neither the cursor nor the partition reports one
STREAM_START_POSITION = "0"

DEFAULT_EVENT_REASONS = ["create"]

# Rithum order lookups
ORDER_INCLUDE_FIELDS = ["lineItems", "shipping", "shipTo", "billTo"]
ORDER_SEARCH_DAYS = 60
ORDER_SEARCH_MAX_PAGES = 10
ORDERS_PER_PAGE = 100

# ==============================================================================
# ORDER TRANSLATION
# ==============================================================================

# Rithum dscoStatus -> ShipStation order status
ORDER_STATUS_MAP = {
    "created": "awaiting_shipment",
    "shipment_pending": "awaiting_shipment",
    "shipped": "shipped",
    "cancelled": "cancelled",
}

# Rithum shipping service level -> ShipStation requested service
SHIPPING_SERVICE_MAP = {
    "GCG": "usps_ground_advantage",
    "GCP": "usps_priority_mail",
    "GCE": "usps_priority_mail_express",
    "FEDEX_GROUND": "fedex_ground",
    "FEDEX_2_DAY": "fedex_2_day",
    "FEDEX_OVERNIGHT": "fedex_overnight",
    "UPS_GROUND": "ups_ground",
    "UPS_2ND_DAY": "ups_2nd_day_air",
    "UPS_NEXT_DAY": "ups_next_day_air",
}

DEFAULT_CURRENCY = "USD"
DEFAULT_COUNTRY = "US"
DEFAULT_PHONE = "000-000-0000"
RESIDENTIAL_INDICATORS = ("yes", "no", "unknown")

# Per-item weight used when neither the item nor the catalog gives one
DEFAULT_ITEM_WEIGHT_OUNCES = 2.0

# Unit -> pounds conversion factors
POUNDS_PER_UNIT = {
    "lb": 1.0,
    "lbs": 1.0,
    "pound": 1.0,
    "pounds": 1.0,
    "kg": 2.20462,
    "kilogram": 2.20462,
    "kilograms": 2.20462,
    "oz": 1 / 16,
    "ounce": 1 / 16,
    "ounces": 1 / 16,
    "g": 0.00220462,
    "gram": 0.00220462,
    "grams": 0.00220462,
}

# ==============================================================================
# SHIPMENT REPORTING
# ==============================================================================

# Shipping service level codes accepted by Rithum
RITHUM_SERVICE_LEVEL_CODES = [
    "ASEE", "ASEP", "ASEL", "ASET", "FECG", "FEHD", "FESP",
    "ONCG", "PSDD", "UPCG", "UPSV", "UPSP", "USGA", "USPM",
]

DEFAULT_SERVICE_LEVEL_CODE = "UPCG"

# Service level code -> human readable ship method
SHIP_METHOD_NAMES = {
    "USGA": "Ground Advantage",
    "USPM": "Priority Mail",
    "FECG": "FedEx Ground",
    "FEHD": "FedEx 2Day",
    "FESP": "FedEx Express",
    "UPCG": "UPS Ground",
    "UPSV": "UPS Next Day Air",
    "UPSP": "UPS 2nd Day Air",
}

# ShipStation carrier code -> Rithum carrier manifest id
CARRIER_MANIFEST_IDS = {
    "usps": "USPS",
    "stamps_com": "USPS",
    "fedex": "FedEx",
    "fedex_uk": "FedEx",
    "ups": "UPS",
    "dhl_express": "DHL",
    "ontrac": "OnTrac",
}

# Weight unit -> Rithum weight unit
WEIGHT_UNITS = {
    "oz": "OZ",
    "ounce": "OZ",
    "ounces": "OZ",
    "lb": "LB",
    "lbs": "LB",
    "pound": "LB",
    "pounds": "LB",
    "g": "G",
    "gram": "G",
    "grams": "G",
    "kg": "KG",
    "kilogram": "KG",
    "kilograms": "KG",
}

# Source lifecycles that accept shipment updates
REPORTABLE_LIFECYCLES = ["acknowledged", "completed"]

NO_TRACKING = "NO_TRACKING"

# ==============================================================================
# WEBHOOKS
# ==============================================================================

EVENT_FULFILLMENT_SHIPPED = "fulfillment_shipped_v2"
EVENT_LABEL_CREATED = "label_created_v2"
EVENT_SHIPMENT_CREATED = "shipment_created_v2"
EVENT_TRACK = "track_event_v2"
EVENT_BATCH_PROCESSED = "batch_processed_v2"
EVENT_FULFILLMENT_REJECTED = "fulfillment_rejected_v2"

# Older names that ShipStation still sends for the fulfillment event
FULFILLMENT_SHIPPED_ALIASES = [
    EVENT_FULFILLMENT_SHIPPED,
    "fulfillment_shipped_v1",
    "fulfillment_shipped",
]

# Prefix of the shipment tag carrying the requested shipping service
SERVICE_TAG_PREFIX = "Service: "
