
# Wildcard receiver: every device accepts the packet
BROADCAST_ID = "ALL"
DEFAULT_SERVER_ID = "ACS_SERVER"
DEFAULT_TCP_PORT = 9001

TOPIC_VERSION = "fleetlink/v1"
MONITOR_TOPIC = "{root}/monitor/packets"
MONITOR_TYPE_TOPIC = "{root}/monitor/{type}"
DEVICES_TOPIC = "{root}/relay/devices"

DEFAULT_STARTUP_DELAY_SECS = 10.0
DEFAULT_TRAVEL_INTERVAL_SECS = 2.0
DEFAULT_ARRIVAL_DELAY_SECS = 1.0
DEFAULT_WORK_DURATION_SECS = 3.0

DEFAULT_DESTINATION = "BASE_STATION"
DEFAULT_STEP_DESCRIPTION = "Mission Assigned"
