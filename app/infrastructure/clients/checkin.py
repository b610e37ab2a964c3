"""Client for the check-in service that owns 'who is at which venue' facts."""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol
import aiohttp
from app.core.exceptions import StoreUnavailableError
from app.config.constants import CHECKIN_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueRef:
    venue_id: str
    venue_name: Optional[str] = None


class CheckInDirectory(Protocol):
    async def get_current_venue(self, user_id: str) -> Optional[VenueRef]:
        """Venue the user is checked into right now, or None."""
        ...


async def shared_venue(directory: CheckInDirectory, user_a: str, user_b: str) -> Optional[VenueRef]:
    """The venue both users are currently checked into, if any."""
    venue_a = await directory.get_current_venue(user_a)
    if venue_a is None:
        return None
    venue_b = await directory.get_current_venue(user_b)
    if venue_b is None or venue_b.venue_id != venue_a.venue_id:
        return None
    return venue_a


class HttpCheckInClient:
    """Reads current check-ins over HTTP. Nothing is cached."""

    def __init__(self, base_url: str, timeout: int = CHECKIN_TIMEOUT_SECONDS):
        """
        Args:
            base_url: Check-in service root, e.g. "https://checkins.internal"
            timeout: Total request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_current_venue(self, user_id: str) -> Optional[VenueRef]:
        url = f"{self.base_url}/users/{user_id}/checkin"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 404:
                        return None
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Check-in service error {response.status}: {error_text}")
                        raise StoreUnavailableError(f"Check-in service returned {response.status}")

                    data = await response.json()

        except aiohttp.ClientError as e:
            logger.error(f"Check-in service network error: {e}")
            raise StoreUnavailableError("Check-in service unreachable") from e

        venue_id = (data or {}).get("venueId")
        if not venue_id:
            return None
        return VenueRef(venue_id=str(venue_id), venue_name=data.get("venueName"))


class StaticCheckInDirectory:
    """In-process directory, used when no check-in service is configured."""

    def __init__(self, checkins: Optional[Dict[str, VenueRef]] = None):
        self.checkins: Dict[str, VenueRef] = dict(checkins or {})

    def check_in(self, user_id: str, venue_id: str, venue_name: Optional[str] = None) -> None:
        self.checkins[user_id] = VenueRef(venue_id=venue_id, venue_name=venue_name)

    def check_out(self, user_id: str) -> None:
        self.checkins.pop(user_id, None)

    async def get_current_venue(self, user_id: str) -> Optional[VenueRef]:
        return self.checkins.get(user_id)


def build_checkin_directory() -> CheckInDirectory:
    """HTTP client when a check-in service is configured, otherwise an empty in-process directory."""
    from app.core.config import settings

    if settings.CHECKIN_SERVICE_URL:
        return HttpCheckInClient(settings.CHECKIN_SERVICE_URL)
    logger.warning("CHECKIN_SERVICE_URL is not set; nobody will appear co-located")
    return StaticCheckInDirectory()
