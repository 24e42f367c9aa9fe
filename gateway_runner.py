#!/usr/bin/env python3
"""
gateway_runner.py

Door gateway: relays between the door controller (serial), the app clients
(WebSocket) and the desired door state kept in Firestore.

Key features:
- Broadcasts every line printed by the controller to all connected apps
- Forwards app commands (PASSCODE:<code>, CLOSE, RESET, anything else) to the controller
- Watches Firestore's doorState/current document and sends UNLOCK / LOCK on each snapshot
- Creates doorState/current with {state: "closed"} if it does not exist

Usage:
  python gateway_runner.py --serial-port /dev/ttyACM0 --baud 9600 --port 8080
  (Windows example: --serial-port COM6)

The process exits with status 1 if the serial port cannot be opened or the
Firebase credentials cannot be loaded. Every other failure is logged and the
gateway keeps running.
"""
import argparse
import sys
import time
from typing import List, Optional

# Firebase Admin SDK for Firestore database access
import firebase_admin
from firebase_admin import credentials, firestore

from client_hub import ClientHub
from device_link import DeviceLink, LinkOpenError
from relay import Relay
from state_watch import StateWatch

# Import configuration values from config.py
from config import (
    BAUDRATE,              # Serial speed of the controller
    DOOR_STATE_COLLECTION, # Firestore collection holding the door state
    DOOR_STATE_DOCUMENT,   # Singleton document inside that collection
    SERIAL_PORT,           # Port the controller is attached to
    SERVICE_ACCOUNT_PATH,  # Firebase service account key
    WS_HOST,               # Interface the WebSocket server binds to
    WS_PORT,               # WebSocket server port
)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Serial / WebSocket / Firestore door gateway")
    p.add_argument("--serial-port", default=SERIAL_PORT, help="e.g., /dev/ttyACM0 or COM6")
    p.add_argument("--baud", type=int, default=BAUDRATE)
    p.add_argument("--host", default=WS_HOST, help="WebSocket listen address")
    p.add_argument("--port", type=int, default=WS_PORT, help="WebSocket listen port")
    p.add_argument("--service-account", default=SERVICE_ACCOUNT_PATH,
                   help="Path to the Firebase service account JSON key")
    return p.parse_args(argv)


def open_door_state_document(service_account_path: str):
    """
    Initialise Firebase Admin and return the door state document reference.

    Args:
        service_account_path (str): Path to the service account key file.

    Returns:
        The Firestore DocumentReference for doorState/current.
    """
    cred = credentials.Certificate(service_account_path)
    firebase_admin.initialize_app(cred)
    db = firestore.client()
    return db.collection(DOOR_STATE_COLLECTION).document(DOOR_STATE_DOCUMENT)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # Step 1: Open the serial port; without the controller there is nothing to do
    link = DeviceLink(args.serial_port, args.baud)
    try:
        link.open()
    except LinkOpenError as e:
        print(f"[SERIAL-ERROR] Error opening serial port: {e}")
        return 1

    # Step 2: Connect to Firestore
    try:
        doc_ref = open_door_state_document(args.service_account)
    except (OSError, ValueError) as e:
        print(f"[FIRESTORE-ERROR] Could not initialise Firebase: {e}")
        link.close()
        return 1

    # Step 3: Wire the adapters together
    hub = ClientHub(args.host, args.port)
    watch = StateWatch(doc_ref)
    Relay(link, hub, watch).attach()

    try:
        # Step 4: Start serving clients, watching Firestore and reading the controller
        hub.start()
        watch.start()
        link.start()

        # Step 5: Run until interrupted (Ctrl+C)
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("👋  Shutting down")
    except OSError as e:
        # Typically the WebSocket port is already in use
        print(f"[WS-ERROR] {e}")
        return 1
    finally:
        # Step 6: Clean up resources when exiting
        watch.stop()
        hub.stop()
        link.close()
        print("Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
