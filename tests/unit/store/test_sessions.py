"""
Unit tests for SessionStore.

Uses real SQLite databases (in-memory or under tmp_path); no mocking needed.
"""

import pytest

from promptforge.store.sessions import SessionNotFoundError, SessionStore


STAGES = [{"stage": "generator", "output": "Refined", "reasoning": "Clearer"}]


async def _create(store: SessionStore, user_id: str = "ip_1_2_3_4", prompt: str = "Original prompt") -> str:
    return await store.create_session(
        user_id=user_id,
        original_prompt=prompt,
        refined_prompt="Refined",
        stages=STAGES,
        model="gemini-2.0-flash",
        latency_ms=120,
    )


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_creates_database_file(self, tmp_path):
        db_path = tmp_path / "nested" / "sessions.db"
        async with SessionStore(db_path):
            pass
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_use_before_initialize_raises(self):
        store = SessionStore(":memory:")
        with pytest.raises(RuntimeError, match="not initialized"):
            await store.get_session("x")

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        db_path = tmp_path / "sessions.db"
        async with SessionStore(db_path) as store:
            session_id = await _create(store)
        async with SessionStore(db_path) as store:
            record = await store.get_session(session_id)
        assert record["original_prompt"] == "Original prompt"


class TestSessions:

    @pytest.mark.asyncio
    async def test_create_and_get_full_record(self):
        async with SessionStore(":memory:") as store:
            session_id = await _create(store)
            record = await store.get_session(session_id)

        assert record["id"] == session_id
        assert record["user_id"] == "ip_1_2_3_4"
        assert record["refined_prompt"] == "Refined"
        assert record["stages"] == STAGES
        assert record["model"] == "gemini-2.0-flash"
        assert record["latency_ms"] == 120
        assert record["created_at"]
        assert record["output_text"] is None
        assert record["feedback_prompt"] is None

    @pytest.mark.asyncio
    async def test_explicit_session_id_is_used(self):
        async with SessionStore(":memory:") as store:
            session_id = await store.create_session(
                session_id="fixed-id",
                user_id="u",
                original_prompt="p",
                refined_prompt="r",
                stages=[],
                model="m",
                latency_ms=1,
            )
        assert session_id == "fixed-id"

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self):
        async with SessionStore(":memory:") as store:
            with pytest.raises(SessionNotFoundError):
                await store.get_session("missing")

    @pytest.mark.asyncio
    async def test_set_output(self):
        async with SessionStore(":memory:") as store:
            session_id = await _create(store)
            assert await store.set_output(session_id, "Final output") is True
            assert await store.set_output("missing", "x") is False
            record = await store.get_session(session_id)
        assert record["output_text"] == "Final output"

    @pytest.mark.asyncio
    async def test_feedback_goes_to_matching_column(self):
        async with SessionStore(":memory:") as store:
            session_id = await _create(store)
            await store.set_feedback(session_id, "prompt", 1, "nice")
            await store.set_feedback(session_id, "output", -1)
            record = await store.get_session(session_id)

        assert record["feedback_prompt"] == 1
        assert record["feedback_output"] == -1
        assert record["feedback_comment"] is None

    @pytest.mark.asyncio
    async def test_fractional_rating_kept(self):
        async with SessionStore(":memory:") as store:
            session_id = await _create(store)
            await store.set_feedback(session_id, "output", 0.5)
            record = await store.get_session(session_id)

        assert record["feedback_output"] == 0.5

    @pytest.mark.asyncio
    async def test_unknown_feedback_type_rejected(self):
        async with SessionStore(":memory:") as store:
            session_id = await _create(store)
            with pytest.raises(ValueError):
                await store.set_feedback(session_id, "latency", 1)


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_per_user(self):
        async with SessionStore(":memory:") as store:
            first = await _create(store, prompt="first")
            second = await _create(store, prompt="second")
            await _create(store, user_id="someone_else", prompt="other")

            history = await store.list_history("ip_1_2_3_4")

        assert [row["id"] for row in history] == [second, first]
        assert set(history[0]) == {"id", "original_prompt", "created_at"}

    @pytest.mark.asyncio
    async def test_history_respects_limit(self):
        async with SessionStore(":memory:") as store:
            for i in range(5):
                await _create(store, prompt=f"prompt {i}")
            history = await store.list_history("ip_1_2_3_4", limit=2)

        assert len(history) == 2
