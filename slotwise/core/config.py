from pydantic_settings import BaseSettings
from pydantic import Field

"""
API CONFIGURATION
"""


#Class to load and read backend .env
class Settings(BaseSettings):

    FRONTEND_URL: str = "http://localhost:5173"
    PUBLIC_API_URL: str = "http://localhost:8000"

    JWT_SECRET_KEY: str = Field(...)

    DATABASE_URL: str = "sqlite:///./dev.db"

    #Transactional email (Brevo)
    BREVO_API_KEY: str | None = None
    EMAIL_SENDER_ADDRESS: str = "bookings@slotwise.app"
    EMAIL_SENDER_NAME: str = "Slotwise"

    #External calendars
    CALENDAR_TOKEN_KEY: str | None = None
    GOOGLE_CALENDAR_API: str = "https://www.googleapis.com/calendar/v3"
    MICROSOFT_GRAPH_API: str = "https://graph.microsoft.com/v1.0"
    CALENDAR_TIMEOUT_SECONDS: float = 5.0

    VERIFICATION_TOKEN_TTL_HOURS: int = 24

    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()


#Defaults applied when a provider's schedule config is first created
SCHEDULE_DEFAULTS = {
    "slot_duration_minutes": 30,
    "buffer_minutes": 0,
    "min_notice_hours": 0,
    "max_days_ahead": 30,
    "timezone": "Europe/London",
    "requires_approval": True,
    "accepts_online_booking": True,
}


#Inclusive bounds enforced on provider schedule settings
SCHEDULE_BOUNDS = {
    "slot_duration_minutes": (15, 240),
    "buffer_minutes": (0, 60),
    "min_notice_hours": (0, 168),
    "max_days_ahead": (1, 365),
}


#Public route rate limits (max requests, window seconds)
RATE_LIMITS = {
    "login": (5, 60),
    "booking": (5, 600),
    "verify": (10, 60),
    "slots": (60, 60),
}
