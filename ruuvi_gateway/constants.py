"""Constants shared across the gateway."""

# Manufacturer ID for Ruuvi, see https://docs.ruuvi.com/communication/bluetooth-advertisements
MANUFACTURER_ID = 0x0499

# Data format discriminators (first byte of the manufacturer data payload)
DATA_FORMAT_RAW_V2 = 0x05
DATA_FORMAT_6 = 0x06
DATA_FORMAT_EXTENDED_V1 = 0xE1

# Fixed payload lengths per data format
PAYLOAD_LENGTH_RAW_V2 = 24
PAYLOAD_LENGTH_DATA_FORMAT_6 = 20
PAYLOAD_LENGTH_EXTENDED_V1 = 40

# Device class reported with listener telemetry
DEVICE_CLASS = 'ruuvi'


# ANSI color codes for cross-platform colored output
class Colors:
    """ANSI color codes for terminal output."""
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    RESET = '\033[0m'
    BOLD = '\033[1m'


# Icons with colors for different log levels
ICON_SUCCESS = f"{Colors.GREEN}✓{Colors.RESET}"
ICON_ERROR = f"{Colors.RED}✗{Colors.RESET}"
ICON_WARNING = f"{Colors.YELLOW}⚠{Colors.RESET}"
ICON_INFO = f"{Colors.BLUE}ℹ{Colors.RESET}"
ICON_PUBLISH = f"{Colors.CYAN}{Colors.BOLD}⬆{Colors.RESET}"
ICON_RECEIVE = f"{Colors.CYAN}⬇{Colors.RESET}"


# Constants for configuration defaults
DEFAULT_PUBLISH_INTERVAL = 0.0
DEFAULT_MAX_BATCH_SIZE = 50
MAX_BATCH_SIZE_LIMIT = 10_000
DEFAULT_DESTINATION = 'console'
DEFAULT_SCANNING_MODE = 'active'
DEFAULT_LOG_LEVEL = 'WARNING'

# MQTT defaults
DEFAULT_QOS = 1
DEFAULT_KEEPALIVE = 1200  # MQTT keepalive: 1200 seconds (20 minutes)
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TLS_PORT = 8883
DEFAULT_TOPIC = '{clientId}/devices/{deviceId}'
UNKNOWN_DEVICE_ID = 'unknown'

# HTTP defaults
DEFAULT_HTTP_METHOD = 'POST'
DEFAULT_HTTP_TIMEOUT_SEC = 10.0

# Connection timeouts
CONNECTION_TIMEOUT_SEC = 10

# Validation limits
MAX_CLIENT_ID_LENGTH = 128
