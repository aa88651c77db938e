import logging
import math
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import LinkExpired, LinkNotFound, ValidationError
from ..schemas.click import ClickData, ClickEvent
from ..utils.clock import utc_now
from ..utils.user_agent import UNKNOWN, detect_browser, detect_device
from .links import LinkRegistry
from .store import STORAGE_KEYS, BaseStore

logger = logging.getLogger(__name__)

CLICKS_KEY = STORAGE_KEYS["CLICKS"]


def _non_negative(value: float) -> bool:
    return math.isfinite(value) and value >= 0


class ClickRecorder:
    """
    Appends click events and bumps the link's counter.

    The recorder only reads links; the counter itself is updated through
    ``LinkRegistry.increment_clicks``.

    Args:
        store: Shared key-value store
        registry: Link lookup and click counter
        on_recorded: Called with the link id after each successful record
    """

    def __init__(self, store: BaseStore, registry: LinkRegistry,
                 now: Callable[[], datetime] = utc_now,
                 on_recorded: Optional[Callable[[str], None]] = None):
        self.store = store
        self.registry = registry
        self.locks = registry.locks
        self._now = now
        self.on_recorded = on_recorded

    async def _load(self) -> List[ClickEvent]:
        raw = await self.store.get(CLICKS_KEY)
        if not isinstance(raw, list):
            return []

        events = []
        for entry in raw:
            try:
                events.append(ClickEvent.model_validate(entry))
            except PydanticValidationError:
                logger.warning("Skipping invalid click entry")
        return events

    @staticmethod
    def _coerce(data: Union[ClickData, dict, None]) -> ClickData:
        if data is None:
            return ClickData()
        if isinstance(data, ClickData):
            return data
        try:
            return ClickData.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid click data: {e.errors()[0]['msg']}") from e

    @staticmethod
    def _validate(data: ClickData) -> None:
        if data.conversion_value is not None and not _non_negative(data.conversion_value):
            raise ValidationError("Conversion value must be a non-negative number")
        if data.session_duration is not None and not _non_negative(data.session_duration):
            raise ValidationError("Session duration must be a non-negative number")

    async def record(self, short_code: str,
                     data: Union[ClickData, dict, None] = None) -> ClickEvent:
        """
        Record one visit of ``short_code``.

        Raises:
            ValidationError: Missing code or negative conversion/session values
            LinkNotFound: Unknown code
            LinkExpired: The link exists but has expired
        """
        if not short_code or not isinstance(short_code, str):
            raise ValidationError("Short code is required and must be a string")

        data = self._coerce(data)
        self._validate(data)

        link = await self.registry.find(short_code, include_expired=True)
        if link is None:
            raise LinkNotFound(f"URL not found for short code: {short_code}")
        if self.registry.is_expired(link):
            raise LinkExpired(f"URL has expired: {short_code}")

        event = ClickEvent(
            id=uuid.uuid4().hex,
            link_id=link.id,
            timestamp=self._now(),
            referrer=data.referrer or UNKNOWN,
            device=data.device or detect_device(data.user_agent),
            browser=data.browser or detect_browser(data.user_agent),
            location=data.location,
            utm_parameters=data.utm_parameters,
            is_conversion=data.is_conversion,
            conversion_type=data.conversion_type,
            conversion_value=data.conversion_value,
            session_duration=data.session_duration,
            exit_page=data.exit_page,
        )

        async with self.locks.hold(CLICKS_KEY):
            raw = await self.store.get(CLICKS_KEY)
            clicks = raw if isinstance(raw, list) else []
            clicks.append(event.model_dump(mode="json"))
            await self.store.set(CLICKS_KEY, clicks)

        await self.registry.increment_clicks(short_code)

        if self.on_recorded is not None:
            self.on_recorded(link.id)

        return event

    async def events_for(self, link_id: str) -> List[ClickEvent]:
        return [event for event in await self._load() if event.link_id == link_id]

    async def count(self) -> int:
        raw = await self.store.get(CLICKS_KEY)
        return len(raw) if isinstance(raw, list) else 0
