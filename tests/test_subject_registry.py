"""Tests for subject registration, discovery and removal."""

import pytest

from nlcube.core.errors import AlreadyExists, Busy, InvalidName, UnknownSubject
from nlcube.core.subject_registry import validate_subject_name


class TestNames:
    @pytest.mark.parametrize("name", ["sales", "Sales_2024", "x1"])
    def test_valid_names(self, name):
        assert validate_subject_name(name) == name

    @pytest.mark.parametrize("name", ["", "bad-name", "../etc", "with space", "a.b"])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidName):
            validate_subject_name(name)


class TestRegister:
    def test_register_creates_directory(self, registry, data_dir):
        subject = registry.register("sales")
        assert (data_dir / "sales").is_dir()
        assert subject.storage_path == data_dir / "sales" / "sales.duckdb"
        assert subject.attached
        assert registry.names() == ["sales"]
        assert "sales" in registry

    def test_register_twice_fails(self, registry):
        registry.register("sales")
        with pytest.raises(AlreadyExists):
            registry.register("sales")

    def test_register_existing_directory_fails(self, registry, data_dir):
        (data_dir / "sales").mkdir()
        with pytest.raises(AlreadyExists):
            registry.register("sales")

    def test_register_invalid_name_leaves_no_trace(self, registry, data_dir):
        with pytest.raises(InvalidName):
            registry.register("bad-name")
        assert list(data_dir.iterdir()) == []

    def test_discover_skips_invalid_directories(self, registry, data_dir):
        for d in ("beta", "alpha", "not-valid"):
            (data_dir / d).mkdir()
        (data_dir / "stray.txt").write_text("x")

        assert registry.discover() == ["alpha", "beta"]
        assert registry.names() == ["alpha", "beta"]
        # idempotent
        assert registry.discover() == []

    def test_get_unknown_subject(self, registry):
        with pytest.raises(UnknownSubject):
            registry.get("nope")


class TestConnections:
    @pytest.mark.asyncio
    async def test_acquire_opens_store_file(self, registry, data_dir):
        registry.register("sales")
        conn = await registry.acquire("sales")
        try:
            assert conn.handle.execute("SELECT 42").fetchone()[0] == 42
        finally:
            await registry.release(conn)
        assert (data_dir / "sales" / "sales.duckdb").exists()
        assert registry.stats("sales").idle == 1
        await registry.close()

    @pytest.mark.asyncio
    async def test_acquire_unknown_subject(self, registry):
        with pytest.raises(UnknownSubject):
            await registry.acquire("nope")


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_deletes_storage(self, registry, data_dir):
        registry.register("sales")
        conn = await registry.acquire("sales")
        await registry.release(conn)

        await registry.remove("sales")
        assert not (data_dir / "sales").exists()
        assert registry.names() == []
        with pytest.raises(UnknownSubject):
            registry.get("sales")

    @pytest.mark.asyncio
    async def test_remove_busy_subject_times_out(self, registry, data_dir):
        registry.register("sales")
        conn = await registry.acquire("sales")

        with pytest.raises(Busy):
            await registry.remove("sales")

        # still registered and usable once the holder finishes
        assert "sales" in registry
        assert (data_dir / "sales").exists()
        await registry.release(conn)
        again = await registry.acquire("sales")
        await registry.release(again)
        await registry.close()

    @pytest.mark.asyncio
    async def test_remove_unknown_subject(self, registry):
        with pytest.raises(UnknownSubject):
            await registry.remove("nope")
