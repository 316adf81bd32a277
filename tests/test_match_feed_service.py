"""Unit tests for MatchFeedService and the MatchFeed stale-result guard."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.errors import FetchError
from app.schemas.match import ReconciledMatches
from app.services.match_feed_service import MatchFeed, MatchFeedService
from app.services.normalizer_service import MatchNormalizer
from tests.factories import PLACEHOLDER, make_profile
from tests.fakes import InMemoryMatchBackend


@pytest.fixture
def normalizer():
    return MatchNormalizer(placeholder_photo_url=PLACEHOLDER, default_owner_name="Dog Owner")


class TestMatchFeedService:
    @pytest.mark.asyncio
    async def test_full_pass(self, normalizer, sample_user_id, timestamps):
        backend = InMemoryMatchBackend()
        backend.add_match(sample_user_id, "u1", "d1", dog_name="Biscuit", owner_name="Alice")
        m2 = backend.add_match(sample_user_id, "u2", "d2", dog_name="Mochi", user_second=True)
        backend.add_match(sample_user_id, "u3", "d3", dog_name="Pepper")
        backend.photos["d1"] = ["b1.jpg", "b2.jpg"]

        conv = await backend.create_conversation(m2.id)
        backend.post_message(conv, "walk tomorrow?", timestamps["T1"])

        service = MatchFeedService(backend, backend, normalizer)
        result = await service.load(sample_user_id)

        # Newest match first, conversed match excluded.
        assert [m.id for m in result.unconversed] == ["d3", "d1"]
        assert [(c.conversation.id, c.match.id) for c in result.conversations] == [(conv, "d2")]
        assert result.unconversed[1].owner_name == "Alice"
        assert result.unconversed[1].primary_photo == "b1.jpg"

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, normalizer, sample_user_id):
        source = MagicMock()
        source.fetch_active_matches = AsyncMock(side_effect=FetchError("down"))
        conversations = MagicMock()
        conversations.list_conversations = AsyncMock(return_value=[])

        service = MatchFeedService(source, conversations, normalizer)
        with pytest.raises(FetchError):
            await service.load(sample_user_id)
        conversations.list_conversations.assert_not_awaited()


class _GatedService:
    """Feed service whose loads complete only when released.

    Loads whose index is in ``failing`` raise ``FetchError`` once released.
    """

    def __init__(self, failing=()):
        self.gates: list[asyncio.Event] = []
        self.results: list[ReconciledMatches] = []
        self.failing = set(failing)

    async def load(self, user_id):
        index = len(self.gates)
        gate = asyncio.Event()
        result = ReconciledMatches(unconversed=[make_profile(f"d{index}", "u")])
        self.gates.append(gate)
        self.results.append(result)
        await gate.wait()
        if index in self.failing:
            raise FetchError(f"load {index} failed")
        return result


class TestStaleResultGuard:
    @pytest.mark.asyncio
    async def test_refresh_sets_snapshot(self, sample_user_id):
        service = MagicMock()
        expected = ReconciledMatches()
        service.load = AsyncMock(return_value=expected)
        feed = MatchFeed(service, sample_user_id)

        assert await feed.refresh() is expected
        assert feed.snapshot is expected

    @pytest.mark.asyncio
    async def test_superseded_load_discarded(self, sample_user_id):
        service = _GatedService()
        feed = MatchFeed(service, sample_user_id)

        slow = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)
        fast = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)

        service.gates[1].set()
        assert await fast is service.results[1]

        service.gates[0].set()
        assert await slow is None
        assert feed.snapshot is service.results[1]

    @pytest.mark.asyncio
    async def test_result_after_close_discarded(self, sample_user_id):
        service = _GatedService()
        feed = MatchFeed(service, sample_user_id)

        pending = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)
        feed.close()
        service.gates[0].set()

        assert await pending is None
        assert feed.snapshot is None
        assert feed.closed

    @pytest.mark.asyncio
    async def test_refresh_after_close_is_noop(self, sample_user_id):
        service = MagicMock()
        service.load = AsyncMock()
        feed = MatchFeed(service, sample_user_id)
        feed.close()

        assert await feed.refresh() is None
        service.load.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_superseded_failure_discarded(self, sample_user_id):
        service = _GatedService(failing={0})
        feed = MatchFeed(service, sample_user_id)

        slow = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)
        fast = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)

        service.gates[1].set()
        assert await fast is service.results[1]

        service.gates[0].set()
        assert await slow is None
        assert feed.snapshot is service.results[1]

    @pytest.mark.asyncio
    async def test_failure_after_close_discarded(self, sample_user_id):
        service = _GatedService(failing={0})
        feed = MatchFeed(service, sample_user_id)

        pending = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)
        feed.close()
        service.gates[0].set()

        assert await pending is None
        assert feed.snapshot is None

    @pytest.mark.asyncio
    async def test_current_failure_propagates(self, sample_user_id):
        service = _GatedService(failing={0})
        feed = MatchFeed(service, sample_user_id)

        pending = asyncio.create_task(feed.refresh())
        await asyncio.sleep(0)
        service.gates[0].set()

        with pytest.raises(FetchError):
            await pending
        assert feed.snapshot is None
