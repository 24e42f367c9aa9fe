# Serial link to the door controller
SERIAL_PORT    = "/dev/ttyACM0"  # e.g. COM6 on Windows
BAUDRATE       = 9600
SERIAL_TIMEOUT = 0.1             # Read timeout so the reader thread can stop

# WebSocket server for the app clients
WS_HOST = "0.0.0.0"
WS_PORT = 8080

# Firestore settings
SERVICE_ACCOUNT_PATH  = "server-service-account.json"
DOOR_STATE_COLLECTION = "doorState"
DOOR_STATE_DOCUMENT   = "current"
DOOR_STATE_FIELD      = "state"
DEFAULT_DOOR_STATE    = "closed"  # Written when the document does not exist yet
WATCH_HEALTH_INTERVAL = 10        # Seconds between checks that the Firestore listener is still streaming
