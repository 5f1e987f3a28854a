"""
Bundle cache tests.

Covers:
- If-None-Match parsing
- Fresh rows answer without rendering
- Invalidation marks rows stale and bumps the generation
- Single-flight rendering per device
- A mutation during a render leaves the stored row stale
"""

import asyncio

import pytest

from models import ConfigCache
from services import cache, renderer
from services.invalidation import invalidate_devices
from services.errors import RenderError
from services.renderer import RenderedBundle


def _bundle(text: str = "") -> RenderedBundle:
    files = [("etc/probe", text)] if text else []
    archive = renderer.pack_archive(files)
    return RenderedBundle(files=files, archive=archive, checksum=renderer.checksum_of(archive))


class TestEtagMatches:
    @pytest.mark.parametrize("header, expected", [
        ('"abc"', True),
        ("abc", True),
        ('W/"abc"', True),
        ('"zzz", "abc"', True),
        ("*", True),
        ('"zzz"', False),
        ("", False),
        (None, False),
    ])
    def test_header_forms(self, header, expected):
        assert cache.etag_matches(header, "abc") is expected

    def test_no_checksum_never_matches(self):
        assert cache.etag_matches("*", None) is False


class TestFreshness:
    @pytest.mark.asyncio
    async def test_fresh_row_is_not_rerendered(self, db_session, device, monkeypatch):
        first = await cache.current_bundle(db_session, device)

        async def fail_render(db, dev):
            raise AssertionError("render should not run for a fresh row")

        monkeypatch.setattr(cache, "render", fail_render)
        again = await cache.current_bundle(db_session, device)
        assert again.checksum == first.checksum

    @pytest.mark.asyncio
    async def test_invalidation_bumps_generation(self, db_session, device):
        await cache.current_bundle(db_session, device)
        row = await db_session.get(ConfigCache, device.uuid)
        before = row.generation

        await invalidate_devices(db_session, [device.uuid])
        await db_session.commit()

        row = await cache._load_row(db_session, device.uuid)
        assert row.stale is True
        assert row.generation == before + 1

    @pytest.mark.asyncio
    async def test_download_304_skips_render(self, db_session, device, monkeypatch):
        bundle = await cache.current_bundle(db_session, device)

        async def fail_render(db, dev):
            raise AssertionError("render should not run")

        monkeypatch.setattr(cache, "render", fail_render)
        result = await cache.download(db_session, device, f'"{bundle.checksum}"')
        assert result.not_modified is True


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_refresh_renders_once(self, db_session, device, monkeypatch):
        calls = 0
        gate = asyncio.Event()

        async def slow_render(db, dev):
            nonlocal calls
            calls += 1
            await gate.wait()
            return _bundle("one\n")

        monkeypatch.setattr(cache, "render", slow_render)
        tasks = [asyncio.create_task(cache.refresh(db_session, device)) for _ in range(4)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert len({r.checksum for r in results}) == 1
        assert device.uuid not in cache._inflight

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter(self, db_session, device, monkeypatch):
        gate = asyncio.Event()

        async def broken_render(db, dev):
            await gate.wait()
            raise RuntimeError("boom")

        monkeypatch.setattr(cache, "render", broken_render)
        tasks = [asyncio.create_task(cache.refresh(db_session, device)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert device.uuid not in cache._inflight


class TestRenderRace:
    @pytest.mark.asyncio
    async def test_mutation_during_render_keeps_row_stale(self, db_session, device, monkeypatch):
        await cache.current_bundle(db_session, device)

        async def racing_render(db, dev):
            await invalidate_devices(db, [dev.uuid])
            await db.commit()
            return _bundle("racing\n")

        monkeypatch.setattr(cache, "render", racing_render)
        await cache.refresh(db_session, device)

        row = await cache._load_row(db_session, device.uuid)
        assert row.stale is True

    @pytest.mark.asyncio
    async def test_quiet_render_leaves_row_fresh(self, db_session, device, monkeypatch):
        await cache.current_bundle(db_session, device)
        await invalidate_devices(db_session, [device.uuid])
        await db_session.commit()

        monkeypatch.setattr(cache, "render", lambda db, dev: _async_value(_bundle("quiet\n")))
        result = await cache.current_bundle(db_session, device)

        row = await cache._load_row(db_session, device.uuid)
        assert row.stale is False
        assert row.checksum == result.checksum


async def _async_value(value):
    return value


class TestFirstRender:
    @pytest.mark.asyncio
    async def test_mutation_during_first_render_keeps_row_stale(self, db_session, device, monkeypatch):
        async def racing_render(db, dev):
            await invalidate_devices(db, [dev.uuid])
            await db.commit()
            return _bundle("first\n")

        monkeypatch.setattr(cache, "render", racing_render)
        await cache.refresh(db_session, device)

        row = await cache._load_row(db_session, device.uuid)
        assert row.stale is True
        assert row.checksum == _bundle("first\n").checksum

    @pytest.mark.asyncio
    async def test_quiet_first_render_is_fresh(self, db_session, device):
        bundle = await cache.current_bundle(db_session, device)
        row = await cache._load_row(db_session, device.uuid)
        assert row.stale is False
        assert row.checksum == bundle.checksum


class TestRenderFailure:
    @pytest.mark.asyncio
    async def test_failure_without_bundle_raises(self, db_session, device, monkeypatch):
        async def broken_render(db, dev):
            raise RenderError("undefined variable 'missing'", template_id=1)

        monkeypatch.setattr(cache, "render", broken_render)
        with pytest.raises(RenderError):
            await cache.current_bundle(db_session, device)

        # The claimed row is never served as a bundle
        with pytest.raises(RenderError):
            await cache.checksum(db_session, device)

    @pytest.mark.asyncio
    async def test_failure_serves_previous_bundle(self, db_session, device, monkeypatch):
        good = await cache.current_bundle(db_session, device)
        await invalidate_devices(db_session, [device.uuid])
        await db_session.commit()

        async def broken_render(db, dev):
            raise RenderError("undefined variable 'missing'", template_id=1)

        monkeypatch.setattr(cache, "render", broken_render)
        served = await cache.current_bundle(db_session, device)

        assert served.fallback is True
        assert served.checksum == good.checksum
        assert served.archive == good.archive
        # The device object stays usable after the failed render
        assert device.uuid
