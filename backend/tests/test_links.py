import asyncio
from datetime import timedelta

import pytest

from shortlinks.core.errors import AliasTaken, GenerationExhausted, ValidationError
from shortlinks.core.shortener import ShortCodeGenerator
from shortlinks.services.links import LinkRegistry
from shortlinks.services.store import STORAGE_KEYS


async def test_create_defaults(registry, now):
    link = await registry.create("https://example.com/page")

    assert len(link.short_code) == 6
    assert link.short_url == f"https://sho.rt/{link.short_code}"
    assert link.created_at == now.now
    assert link.expires_at == now.now + timedelta(days=365)
    assert link.click_count == 0
    assert link.password_hash is None
    assert link.custom_alias is False
    assert link.flagged is False

    assert await registry.find(link.short_code) == link


async def test_create_with_alias_password_and_utm(registry):
    link = await registry.create("https://example.com", {
        "custom_alias": "promo-2024",
        "password": "secret123",
        "utm_parameters": {"source": "newsletter"},
    })

    assert link.short_code == "promo-2024"
    assert link.custom_alias is True
    assert link.is_protected
    assert "secret123" not in link.password_hash
    assert registry.hasher.verify_password("secret123", link.password_hash)
    assert link.utm_parameters == {"source": "newsletter"}


async def test_alias_collision(registry):
    await registry.create("https://example.com", {"custom_alias": "taken"})

    with pytest.raises(AliasTaken):
        await registry.create("https://other.com", {"custom_alias": "taken"})

    assert len(await registry.list_all()) == 1


async def test_generation_exhausted(store, now):
    class AlwaysSame:
        def choices(self, population, k):
            return ["a"] * k

    registry = LinkRegistry(
        store,
        generator=ShortCodeGenerator(length=6, max_attempts=10, rng=AlwaysSame()),
        now=now,
    )
    await registry.create("https://example.com")

    with pytest.raises(GenerationExhausted):
        await registry.create("https://example.org")


@pytest.mark.parametrize("url", ["not a url", "ftp://example.com", ""])
async def test_invalid_url_is_rejected(registry, url):
    with pytest.raises(ValidationError):
        await registry.create(url)


async def test_suspicious_url_rejected(registry):
    with pytest.raises(ValidationError) as exc_info:
        await registry.create("https://bit.ly/abc")
    assert exc_info.value.reason == "URL shortener detected"


async def test_suspicious_url_flagged_when_allowed(store, now):
    registry = LinkRegistry(store, now=now, reject_suspicious=False)
    link = await registry.create("https://free.tk/offer")
    assert link.flagged is True


async def test_expiration_bounds(registry, now):
    with pytest.raises(ValidationError):
        await registry.create("https://example.com", {"expires_at": now.now - timedelta(seconds=1)})

    with pytest.raises(ValidationError):
        await registry.create("https://example.com", {"expires_at": now.now + timedelta(days=3651)})

    link = await registry.create("https://example.com", {"expires_at": now.now + timedelta(days=3650)})
    assert link.expires_at == now.now + timedelta(days=3650)


async def test_naive_expiration_is_utc(registry, now):
    naive = (now.now + timedelta(days=2)).replace(tzinfo=None)
    link = await registry.create("https://example.com", {"expires_at": naive})
    assert link.expires_at == now.now + timedelta(days=2)


async def test_short_password_rejected(registry):
    with pytest.raises(ValidationError):
        await registry.create("https://example.com", {"password": "abc"})


async def test_empty_password_means_unprotected(registry):
    link = await registry.create("https://example.com", {"password": ""})
    assert link.is_protected is False


async def test_expired_links_are_hidden_but_keep_their_code(registry, now):
    link = await registry.create("https://example.com", {
        "custom_alias": "brief",
        "expires_at": now.now + timedelta(hours=1),
    })
    now.advance(hours=2)

    assert await registry.find("brief") is None
    assert await registry.find("brief", include_expired=True) == link
    assert await registry.list_active() == []
    assert len(await registry.list_all()) == 1

    with pytest.raises(AliasTaken):
        await registry.create("https://example.com", {"custom_alias": "brief"})


async def test_update_fields(registry):
    link = await registry.create("https://example.com", {"password": "secret123"})

    updated = await registry.update(link.id, {
        "original_url": "https://example.org/new",
        "short_code": "renamed",
        "password": "",
        "utm_parameters": {"campaign": "spring"},
    })

    assert updated.id == link.id
    assert updated.created_at == link.created_at
    assert updated.original_url == "https://example.org/new"
    assert updated.short_code == "renamed"
    assert updated.short_url == "https://sho.rt/renamed"
    assert updated.is_protected is False
    assert updated.utm_parameters == {"campaign": "spring"}

    assert await registry.find(link.short_code) is None
    assert await registry.find("renamed") == updated


async def test_update_keeps_unset_fields(registry):
    link = await registry.create("https://example.com", {"password": "secret123"})
    updated = await registry.update(link.id, {"utm_parameters": {"source": "x"}})

    assert updated.password_hash == link.password_hash
    assert updated.expires_at == link.expires_at


async def test_update_to_taken_code(registry):
    await registry.create("https://example.com", {"custom_alias": "first"})
    second = await registry.create("https://example.com", {"custom_alias": "second"})

    with pytest.raises(AliasTaken):
        await registry.update(second.id, {"short_code": "first"})


async def test_update_explicit_none_expiry_resets_default(registry, now):
    link = await registry.create("https://example.com", {"expires_at": now.now + timedelta(days=5)})
    updated = await registry.update(link.id, {"expires_at": None})
    assert updated.expires_at == now.now + timedelta(days=365)


async def test_update_unknown_link(registry):
    assert await registry.update("missing", {"utm_parameters": {}}) is None


async def test_expired_link_cannot_be_updated(registry, now):
    link = await registry.create("https://example.com", {"expires_at": now.now + timedelta(hours=1)})
    now.advance(hours=2)

    revived = await registry.update(link.id, {
        "original_url": "https://example.org",
        "expires_at": now.now + timedelta(days=30),
    })

    assert revived is None
    assert await registry.list_all() == [link]
    assert await registry.find(link.short_code) is None


async def test_delete(registry):
    link = await registry.create("https://example.com")
    await registry.pin(link.id)

    assert await registry.delete(link.id) is True
    assert await registry.find(link.short_code) is None
    assert await registry.is_pinned(link.id) is False
    assert await registry.delete(link.id) is False


async def test_increment_clicks(registry):
    link = await registry.create("https://example.com")

    assert await registry.increment_clicks(link.short_code) == 1
    assert await registry.increment_clicks(link.short_code) == 2
    assert await registry.increment_clicks("unknown") is None


async def test_concurrent_increments_are_not_lost(registry):
    link = await registry.create("https://example.com")

    await asyncio.gather(*(registry.increment_clicks(link.short_code) for _ in range(25)))

    stored = await registry.find(link.short_code)
    assert stored.click_count == 25


async def test_concurrent_creates_are_not_lost(registry):
    links = await asyncio.gather(*(registry.create(f"https://example.com/{i}") for i in range(20)))

    assert len(await registry.list_all()) == 20
    assert len({link.short_code for link in links}) == 20


async def test_purge_expired_keeps_pinned(registry, now):
    short_lived = await registry.create("https://a.com", {"expires_at": now.now + timedelta(hours=1)})
    pinned = await registry.create("https://b.com", {"expires_at": now.now + timedelta(hours=1)})
    alive = await registry.create("https://c.com")
    assert await registry.pin(pinned.id) is True

    now.advance(hours=2)
    assert await registry.purge_expired() == 1

    remaining = {link.id for link in await registry.list_all()}
    assert remaining == {pinned.id, alive.id}
    assert short_lived.id not in remaining


async def test_pin_unknown_link(registry):
    assert await registry.pin("missing") is False
    assert await registry.unpin("missing") is False


async def test_invalid_stored_entries_are_skipped(store, registry):
    good = await registry.create("https://example.com")
    stored = await store.get(STORAGE_KEYS["URLS"])
    stored.append({"id": "broken"})
    await store.set(STORAGE_KEYS["URLS"], stored)

    assert [link.id for link in await registry.list_all()] == [good.id]


async def test_links_survive_store_roundtrip(store, registry):
    link = await registry.create("https://example.com", {"utm_parameters": {"source": "x"}})

    reloaded = LinkRegistry(store, now=registry._now)
    assert await reloaded.find(link.short_code) == link
