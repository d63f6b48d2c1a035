import os
import json
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

DATA_DIR = os.environ.get("ATTENDANCE_DATA_DIR", os.path.join(os.getcwd(), "data"))
CONFIG_FILE = os.path.join(DATA_DIR, "config.json")

DEFAULT_CONFIG: Dict[str, Any] = {
    # Recognition service
    "api_key": "",
    "api_base": "https://generativelanguage.googleapis.com/v1beta",
    "model_name": "gemini-2.5-flash-preview-09-2025",
    "request_timeout": 30.0,
    "min_confidence": 0.0, # 0 disables the confidence check
    "max_frame_dimension": 1600,

    # Institution the cards must belong to
    "institution_name": "Vel Tech University",
    "identifier_label": "VTU Number",
    "institution_cues": [
        'Presence of Vel Tech University logo (or text "Vel Tech")',
        "Student information format typical of university ID cards",
        'VTU Number format (usually alphanumeric like "VTU12345" or similar pattern)',
    ],

    # Scan loop timing (seconds)
    "scan_interval": 3.0,
    "accepted_delay": 1.5,
    "rejected_delay": 2.5,
    "duplicate_delay": 2.5,
    "failed_delay": 2.0,

    # Connectivity
    "banner_timeout": 3.0,
    "connectivity_probe_interval": 0.0, # 0 disables the reachability probe

    # Storage / UI
    "session_file": os.path.join(DATA_DIR, "session", "attendance_session.json"),
    "slot_presets": [
        {"name": "Morning Session", "icon": "wb_sunny", "time": "9:00 AM - 12:00 PM"},
        {"name": "Afternoon Session", "icon": "schedule", "time": "12:00 PM - 3:00 PM"},
        {"name": "Evening Session", "icon": "wb_twilight", "time": "3:00 PM - 6:00 PM"},
        {"name": "Night Session", "icon": "dark_mode", "time": "6:00 PM - 9:00 PM"},
    ],
    "port": 8080,
}


def load_config() -> Dict[str, Any]:
    """Loads config from disk merged over the defaults. Environment wins for secrets."""
    config = dict(DEFAULT_CONFIG)
    if os.path.exists(CONFIG_FILE):
        try:
            with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if isinstance(data, dict):
                config.update(data)
            else:
                logger.error(f"Ignoring config file {CONFIG_FILE}: expected an object")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config: {e}")

    env_key = os.environ.get("GEMINI_API_KEY")
    if env_key:
        config["api_key"] = env_key
    return config


def get_api_key() -> str:
    return load_config().get("api_key", "")


def get_scan_interval() -> float:
    return float(load_config().get("scan_interval", DEFAULT_CONFIG["scan_interval"]))
