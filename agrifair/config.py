import os
from dataclasses import dataclass

# Load .env if available
from dotenv import load_dotenv


def _flag(name, default):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        print(f"[CONFIG] {name} is not an integer; using {default}")
        return default


def _float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        print(f"[CONFIG] {name} is not a number; using {default}")
        return default


@dataclass
class Settings:
    secret_key: str = "agrifair_dev_secret_key"
    data_dir: str = "data"

    # Remote store (MongoDB). No URI means local-only mode.
    mongodb_uri: str = ""
    mongodb_db: str = ""

    # Pricing service
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    # Authority & OTP
    admin_mobile: str = "0000000000"
    master_otp: str = "1234"
    allow_master_otp: bool = True
    allow_mobile_suffix_otp: bool = True
    otp_ttl_seconds: int = 300
    otp_issue_delay: float = 0.0

    # SMS delivery; without a gateway the code is printed and echoed (DEV MODE)
    sms_gateway_url: str = ""
    sms_gateway_key: str = ""

    max_photo_chars: int = 2_000_000

    @classmethod
    def from_env(cls):
        load_dotenv()
        env = os.environ.get
        return cls(
            secret_key=env("FLASK_SECRET", cls.secret_key),
            data_dir=env("AGRIFAIR_DATA_DIR", cls.data_dir),
            mongodb_uri=env("MONGODB_URI", ""),
            mongodb_db=env("MONGODB_DB", ""),
            gemini_api_key=env("GEMINI_API_KEY") or env("API_KEY") or "",
            gemini_model=env("GEMINI_MODEL", cls.gemini_model),
            admin_mobile=env("ADMIN_MOBILE", cls.admin_mobile),
            master_otp=env("MASTER_OTP", cls.master_otp),
            allow_master_otp=_flag("ALLOW_MASTER_OTP", True),
            allow_mobile_suffix_otp=_flag("ALLOW_MOBILE_SUFFIX_OTP", True),
            otp_ttl_seconds=_int("OTP_TTL_SECONDS", cls.otp_ttl_seconds),
            otp_issue_delay=_float("OTP_ISSUE_DELAY", 0.0),
            sms_gateway_url=env("SMS_GATEWAY_URL", ""),
            sms_gateway_key=env("SMS_GATEWAY_KEY", ""),
            max_photo_chars=_int("MAX_PHOTO_CHARS", cls.max_photo_chars),
        )

    @property
    def remote_configured(self):
        return bool(self.mongodb_uri)

    @property
    def sms_configured(self):
        return bool(self.sms_gateway_url)
