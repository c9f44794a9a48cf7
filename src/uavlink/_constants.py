"""Internal constants shared across the package."""

SYNTHETIC_DEVICE_ID = "dummy_device"
UNKNOWN_DEVICE_ID = "unknown"
DEFAULT_BROKER_DEVICE_ID = "ESP32_UAV"
MAX_DEVICE_ID_LENGTH = 64

DEVICE_ID_HEADER = "X-Device-ID"

# ------------------------------------------------------------------
# Broker topics published by the device firmware
# ------------------------------------------------------------------

TOPIC_POSITION = "awikwokgps"
TOPIC_SPEED = "awikwokkecepatan"
TOPIC_VOLTAGE = "awikwoktegangan"
TOPIC_CURRENT = "awikwokarus"
TOPIC_POWER = "awikwokdaya"
TOPIC_RELAY = "awikwokrelay"
TOPIC_EMERGENCY = "awikwokemergency"
TOPIC_STATUS = "awikwokstatus"

# The firmware listens for emergency on/off on the same retained topic it echoes to.
TOPIC_COMMAND = TOPIC_EMERGENCY

RELAY_ON_TOKENS: frozenset[str] = frozenset({"1", "HIDUP", "ON", "TRUE"})
RELAY_OFF_TOKENS: frozenset[str] = frozenset({"0", "MATI", "OFF", "FALSE"})
