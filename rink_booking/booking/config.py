from dataclasses import dataclass
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    ics_url: str = ''
    arena_tz: str = 'America/New_York'
    database_url: str = ''
    stripe_api_key: str = ''
    stripe_webhook_secret: str = ''
    success_url: str = 'http://localhost:5173/success'
    cancel_url: str = 'http://localhost:5173/cancel'
    hold_ttl_minutes: int = 15
    collaborator_timeout_seconds: float = 10.0
    admin_password: str = 'secret'
    production: bool = False

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.arena_tz)

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """
        Builds settings from the environment. A local .env file is read first in dev, existing env vars win.
        """
        if load_env_file:
            load_dotenv()
        settings = cls(
            ics_url=os.getenv('AVAILABILITY_ICS_URL', ''),
            arena_tz=os.getenv('ARENA_TZ', 'America/New_York'),
            database_url=os.getenv('DATABASE_URL', ''),
            stripe_api_key=os.getenv('STRIPE_API_KEY', ''),
            stripe_webhook_secret=os.getenv('STRIPE_WEBHOOK_SECRET', ''),
            success_url=os.getenv('SUCCESS_URL', 'http://localhost:5173/success'),
            cancel_url=os.getenv('CANCEL_URL', 'http://localhost:5173/cancel'),
            hold_ttl_minutes=int(os.getenv('HOLD_TTL_MINUTES', '15')),
            collaborator_timeout_seconds=float(os.getenv('COLLABORATOR_TIMEOUT_SECONDS', '10')),
            # Must set this in prod
            admin_password=os.getenv('HASH_ADMIN') or 'secret',
            production=os.environ.get('FLASK_ENV') == 'production',
        )
        settings.validate()
        return settings

    def validate(self):
        try:
            ZoneInfo(self.arena_tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"ERROR: unknown ARENA_TZ {self.arena_tz!r}")
        if self.hold_ttl_minutes <= 0:
            raise ValueError("ERROR: HOLD_TTL_MINUTES must be positive")
        if self.collaborator_timeout_seconds <= 0:
            raise ValueError("ERROR: COLLABORATOR_TIMEOUT_SECONDS must be positive")
