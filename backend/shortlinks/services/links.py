import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..core.errors import ValidationError
from ..core.security import CredentialHasher
from ..core.shortener import ShortCodeGenerator
from ..schemas.link import LinkOptions, LinkUpdate, ShortenedLink
from ..utils.clock import as_utc, utc_now
from ..utils.locks import KeyedLock
from ..utils.validators import check_suspicious_url, is_valid_url, validate_password
from .store import STORAGE_KEYS, BaseStore

logger = logging.getLogger(__name__)

URLS_KEY = STORAGE_KEYS["URLS"]
PERMANENT_KEY = STORAGE_KEYS["PERMANENT"]


def generate_id() -> str:
    return uuid.uuid4().hex


class LinkRegistry:
    """
    Owns the collection of shortened links.

    Expiration is lazy: expired links stay stored (and keep their short
    code reserved) but are filtered out of default reads. ``purge_expired``
    drops them for good unless they are pinned.

    Every read-modify-write of a collection runs under that collection's
    lock, so concurrent coroutines cannot lose each other's writes.
    """

    def __init__(self, store: BaseStore,
                 generator: Optional[ShortCodeGenerator] = None,
                 hasher: Optional[CredentialHasher] = None,
                 locks: Optional[KeyedLock] = None,
                 now: Callable[[], datetime] = utc_now,
                 base_url: str = None,
                 default_expiration_days: int = None,
                 max_expiration_days: int = None,
                 reject_suspicious: bool = None):
        self.store = store
        self.generator = generator or ShortCodeGenerator()
        self.hasher = hasher or CredentialHasher()
        self.locks = locks or KeyedLock()
        self._now = now
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self.default_expiration_days = default_expiration_days or settings.DEFAULT_EXPIRATION_DAYS
        self.max_expiration_days = max_expiration_days or settings.MAX_EXPIRATION_DAYS
        self.reject_suspicious = (
            settings.REJECT_SUSPICIOUS_URLS if reject_suspicious is None else reject_suspicious
        )

    # Storage helpers

    async def _load(self) -> List[ShortenedLink]:
        """All structurally valid links, expired ones included"""
        raw = await self.store.get(URLS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("URLs storage is not a list, treating it as empty")
            return []

        links = []
        for entry in raw:
            try:
                links.append(ShortenedLink.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid link entry: {e.error_count()} errors")
        return links

    async def _save(self, links: List[ShortenedLink]) -> None:
        await self.store.set(URLS_KEY, [link.model_dump(mode="json") for link in links])

    async def _load_pins(self) -> List[str]:
        raw = await self.store.get(PERMANENT_KEY)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    # Validation helpers

    def _check_url(self, original_url: str) -> bool:
        """Validate the URL, returns whether it should be flagged"""
        is_valid, error_msg = is_valid_url(original_url)
        if not is_valid:
            raise ValidationError(error_msg)

        suspicious, reason = check_suspicious_url(original_url)
        if suspicious:
            if self.reject_suspicious:
                raise ValidationError(reason)
            logger.warning(f"Flagging suspicious URL ({reason}): {original_url}")
        return suspicious

    def _hash_password(self, password: Optional[str]) -> Optional[str]:
        # Empty means no protection
        if not password:
            return None
        is_valid, error_msg = validate_password(password)
        if not is_valid:
            raise ValidationError(error_msg)
        return self.hasher.hash_password(password)

    def _resolve_expiration(self, requested: Optional[datetime], now: datetime) -> datetime:
        max_date = now + timedelta(days=self.max_expiration_days)

        if requested is None:
            days = min(self.default_expiration_days, self.max_expiration_days)
            return now + timedelta(days=days)

        expires_at = as_utc(requested)
        if expires_at <= now:
            raise ValidationError("Expiration date must be in the future")
        if expires_at > max_date:
            raise ValidationError(
                f"Expiration date cannot be more than {self.max_expiration_days} days in the future"
            )
        return expires_at

    def _short_url(self, short_code: str) -> str:
        return f"{self.base_url}/{short_code}"

    def is_expired(self, link: ShortenedLink) -> bool:
        return link.is_expired(self._now())

    # Public API

    async def is_code_available(self, code: str) -> bool:
        """Codes of expired-but-retained links stay reserved"""
        links = await self._load()
        return not any(link.short_code == code for link in links)

    async def create(self, original_url: str,
                     options: Union[LinkOptions, dict, None] = None) -> ShortenedLink:
        """
        Create and persist a new short link.

        Args:
            original_url: Absolute http/https URL
            options: Alias, expiration, password and UTM parameters

        Returns:
            The stored link

        Raises:
            ValidationError: Invalid URL, alias, expiration or password
            AliasTaken: Custom alias already used
            GenerationExhausted: No free random code found
            StorageError: The store failed; nothing was written
        """
        if options is None:
            options = LinkOptions()
        elif isinstance(options, dict):
            try:
                options = LinkOptions.model_validate(options)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid options: {e.errors()[0]['msg']}") from e

        flagged = self._check_url(original_url)
        now = self._now()
        expires_at = self._resolve_expiration(options.expires_at, now)
        # Slow KDF runs before taking the lock
        password_hash = self._hash_password(options.password)

        async with self.locks.hold(URLS_KEY):
            if options.custom_alias:
                short_code = await self.generator.reserve(options.custom_alias, self)
            else:
                short_code = await self.generator.generate_unique(self)

            link = ShortenedLink(
                id=generate_id(),
                original_url=original_url,
                short_code=short_code,
                short_url=self._short_url(short_code),
                created_at=now,
                expires_at=expires_at,
                click_count=0,
                password_hash=password_hash,
                custom_alias=bool(options.custom_alias),
                utm_parameters=options.utm_parameters,
                flagged=flagged,
            )

            links = await self._load()
            links.append(link)
            await self._save(links)

        logger.info(f"Created link {short_code} -> {original_url}")
        return link

    async def find(self, short_code: str, include_expired: bool = False) -> Optional[ShortenedLink]:
        for link in await self._load():
            if link.short_code == short_code:
                if not include_expired and self.is_expired(link):
                    return None
                return link
        return None

    async def find_by_id(self, link_id: str, include_expired: bool = False) -> Optional[ShortenedLink]:
        for link in await self._load():
            if link.id == link_id:
                if not include_expired and self.is_expired(link):
                    return None
                return link
        return None

    async def list_all(self) -> List[ShortenedLink]:
        return await self._load()

    async def list_active(self) -> List[ShortenedLink]:
        now = self._now()
        return [link for link in await self._load() if not link.is_expired(now)]

    async def update(self, link_id: str,
                     fields: Union[LinkUpdate, dict]) -> Optional[ShortenedLink]:
        """
        Apply a partial update. Identity and click count cannot change.

        Returns:
            The updated link, or None when no link has this id or it has expired
        """
        if isinstance(fields, dict):
            try:
                fields = LinkUpdate.model_validate(fields)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid update: {e.errors()[0]['msg']}") from e

        changes = fields.model_dump(exclude_unset=True)
        updates = {}

        if "original_url" in changes:
            updates["flagged"] = self._check_url(changes["original_url"])
            updates["original_url"] = changes["original_url"]

        if "password" in changes:
            updates["password_hash"] = self._hash_password(changes["password"])

        if "utm_parameters" in changes:
            updates["utm_parameters"] = changes["utm_parameters"]

        if "expires_at" in changes:
            updates["expires_at"] = self._resolve_expiration(changes["expires_at"], self._now())

        async with self.locks.hold(URLS_KEY):
            links = await self._load()
            index = next((i for i, link in enumerate(links) if link.id == link_id), None)
            # Expired links are read-only
            if index is None or self.is_expired(links[index]):
                return None

            new_code = changes.get("short_code")
            if new_code and new_code != links[index].short_code:
                updates["short_code"] = await self.generator.reserve(new_code, self)
                updates["short_url"] = self._short_url(new_code)
                updates["custom_alias"] = True

            updated = links[index].model_copy(update=updates)
            links[index] = updated
            await self._save(links)

        logger.info(f"Updated link {link_id}: {', '.join(sorted(updates)) or 'no changes'}")
        return updated

    async def delete(self, link_id: str) -> bool:
        async with self.locks.hold(URLS_KEY):
            links = await self._load()
            remaining = [link for link in links if link.id != link_id]
            if len(remaining) == len(links):
                return False
            await self._save(remaining)

        await self.unpin(link_id)
        logger.info(f"Deleted link {link_id}")
        return True

    async def increment_clicks(self, short_code: str) -> Optional[int]:
        """Add one click, returns the new count or None if the code is unknown"""
        async with self.locks.hold(URLS_KEY):
            links = await self._load()
            for index, link in enumerate(links):
                if link.short_code == short_code:
                    links[index] = link.model_copy(update={"click_count": link.click_count + 1})
                    await self._save(links)
                    return links[index].click_count
        return None

    async def purge_expired(self) -> int:
        """Delete expired links that are not pinned, returns how many went away"""
        async with self.locks.hold(URLS_KEY):
            links = await self._load()
            pinned = set(await self._load_pins())
            now = self._now()
            kept = [link for link in links if link.id in pinned or not link.is_expired(now)]
            removed = len(links) - len(kept)
            if removed:
                await self._save(kept)

        if removed:
            logger.info(f"Purged {removed} expired links")
        return removed

    # Permanent pins

    async def pin(self, link_id: str) -> bool:
        if await self.find_by_id(link_id, include_expired=True) is None:
            return False

        async with self.locks.hold(PERMANENT_KEY):
            pins = await self._load_pins()
            if link_id not in pins:
                pins.append(link_id)
                await self.store.set(PERMANENT_KEY, pins)
        return True

    async def unpin(self, link_id: str) -> bool:
        async with self.locks.hold(PERMANENT_KEY):
            pins = await self._load_pins()
            if link_id not in pins:
                return False
            await self.store.set(PERMANENT_KEY, [pin for pin in pins if pin != link_id])
        return True

    async def is_pinned(self, link_id: str) -> bool:
        return link_id in await self._load_pins()
