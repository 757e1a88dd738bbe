import os
from typing import Optional

from dotenv import load_dotenv

DEFAULT_CALL_MESSAGE_URL = (
    "http://twimlets.com/message?Message%5B0%5D=Fall+Detected%21+Please+check+immediately."
)


class Settings:
    """
    Runtime settings loaded from environment variables.

    The call cooldown is shared by the monitor's debouncer and the call
    endpoint; the endpoint's copy is the authoritative one.
    """

    def __init__(self) -> None:
        # Classifier
        self.min_confidence: float = float(os.getenv("FALL_MIN_CONFIDENCE", "0.2"))
        self.fall_angle_low_deg: float = float(os.getenv("FALL_ANGLE_LOW_DEG", "80"))
        self.fall_angle_high_deg: float = float(os.getenv("FALL_ANGLE_HIGH_DEG", "110"))

        # Debounce window, milliseconds
        self.call_cooldown_ms: int = int(os.getenv("CALL_COOLDOWN_MS", "60000"))

        # Voice-call provider (server)
        self.twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.twilio_phone_number: str = os.getenv("TWILIO_PHONE_NUMBER", "")
        self.call_message_url: str = os.getenv("CALL_MESSAGE_URL", DEFAULT_CALL_MESSAGE_URL)

        # Monitor (client)
        self.call_endpoint_url: str = os.getenv(
            "CALL_ENDPOINT_URL", "http://127.0.0.1:5001/api/call-caregiver"
        )
        self.call_timeout_s: float = float(os.getenv("CALL_TIMEOUT_S", "10"))
        self.caregiver_phone_number: str = os.getenv("CAREGIVER_PHONE_NUMBER", "")
        self.preferred_device: Optional[str] = os.getenv("PREFERRED_DEVICE") or None

        # Server
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT", "5001"))
        self.log_level: str = os.getenv("LOG_LEVEL", "DEBUG").upper()

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading `.env` on first use."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings()
    return _settings
