"""Unit tests for the reconciliation engine: join, partition and ordering."""
import random
from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.match import ReconciledMatches
from app.services.reconciliation_service import reconcile
from tests.factories import make_conversation, make_profile


class TestConcreteScenario:
    """Matches [d1/u1, d2/u2], one conversation keyed by owner u1."""

    def test_scenario(self, sample_profiles, timestamps):
        conversations = [make_conversation("c1", "u1", timestamps["T2"])]
        result = reconcile(sample_profiles, conversations)

        assert [m.id for m in result.unconversed] == ["d2"]
        assert [(c.conversation.id, c.match.id) for c in result.conversations] == [("c1", "d1")]
        assert result.dropped_conversation_ids == []


class TestDualKeyJoin:
    """Conversation.match_id may hold either the dog id or the owner id."""

    def test_join_by_dog_id(self, sample_profiles):
        result = reconcile(sample_profiles, [make_conversation("c1", "d2")])
        assert result.conversations[0].match.id == "d2"
        assert [m.id for m in result.unconversed] == ["d1"]

    def test_join_by_owner_id_not_duplicated(self, sample_profiles):
        result = reconcile(sample_profiles, [make_conversation("c1", "u2")])
        assert result.conversations[0].match.id == "d2"
        assert "d2" not in [m.id for m in result.unconversed]

    def test_dog_id_preferred_over_owner_id(self):
        # "x" is one profile's dog id and another profile's owner id.
        profiles = [make_profile("a", "x"), make_profile("x", "owner-x")]
        result = reconcile(profiles, [make_conversation("c1", "x")])
        assert [c.match.id for c in result.conversations] == ["x"]
        # "a" is referenced through its owner id but joined to nothing, so it
        # lands in neither partition.
        assert result.unconversed == []
        assert result.dropped_conversation_ids == []

    def test_unknown_match_id_dropped(self, sample_profiles):
        result = reconcile(sample_profiles, [make_conversation("c9", "nobody")])
        assert result.conversations == []
        assert result.dropped_conversation_ids == ["c9"]
        assert [m.id for m in result.unconversed] == ["d1", "d2"]

    def test_blank_match_id_dropped(self, sample_profiles):
        result = reconcile(sample_profiles, [make_conversation("c9", "")])
        assert result.dropped_conversation_ids == ["c9"]
        assert len(result.unconversed) == 2


class TestRecencyOrdering:
    """Conversations sorted newest message first, message-less last."""

    def test_descending_with_no_message_last(self, timestamps):
        profiles = [make_profile(f"d{i}", f"u{i}") for i in range(4)]
        conversations = [
            make_conversation("none", "d0"),
            make_conversation("t3", "d1", timestamps["T3"]),
            make_conversation("t1", "d2", timestamps["T1"]),
            make_conversation("t2", "d3", timestamps["T2"]),
        ]
        result = reconcile(profiles, conversations)
        assert [c.conversation.id for c in result.conversations] == ["t1", "t2", "t3", "none"]

    def test_ties_keep_join_order(self, timestamps):
        profiles = [make_profile(f"d{i}", f"u{i}") for i in range(4)]
        conversations = [
            make_conversation("a", "d0"),
            make_conversation("b", "d1", timestamps["T1"]),
            make_conversation("c", "d2"),
            make_conversation("d", "d3", timestamps["T1"]),
        ]
        result = reconcile(profiles, conversations)
        assert [c.conversation.id for c in result.conversations] == ["b", "d", "a", "c"]

    def test_naive_and_aware_timestamps_compare(self):
        profiles = [make_profile("d0", "u0"), make_profile("d1", "u1")]
        conversations = [
            make_conversation("naive", "d0", datetime(2025, 1, 1, 10, 0)),
            make_conversation("aware", "d1", datetime(2025, 1, 1, 11, 0, tzinfo=timezone.utc)),
        ]
        result = reconcile(profiles, conversations)
        assert [c.conversation.id for c in result.conversations] == ["aware", "naive"]


class TestUnconversedOrdering:
    def test_input_order_preserved_and_uncapped(self):
        profiles = [make_profile(f"d{i}", f"u{i}") for i in range(8)]
        result = reconcile(profiles, [make_conversation("c", "u3")])
        assert [m.id for m in result.unconversed] == ["d0", "d1", "d2", "d4", "d5", "d6", "d7"]

    def test_new_matches_cap_applied_by_caller(self):
        profiles = [make_profile(f"d{i}", f"u{i}") for i in range(8)]
        result = reconcile(profiles, [])
        assert [m.id for m in result.new_matches(5)] == ["d0", "d1", "d2", "d3", "d4"]
        assert len(result.unconversed) == 8

    def test_new_matches_rejects_negative_limit(self):
        with pytest.raises(ValueError):
            ReconciledMatches().new_matches(-1)


class TestPartitionInvariant:
    """Every match lands in exactly one partition."""

    @pytest.mark.parametrize("seed", range(25))
    def test_exhaustive_and_disjoint(self, seed):
        rng = random.Random(seed)
        n = rng.randint(0, 12)
        profiles = [make_profile(f"d{i}", f"u{i}") for i in range(n)]
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)

        keys = [p.id for p in profiles] + [p.owner_id for p in profiles] + ["ghost"]
        conversations = []
        for j in range(rng.randint(0, 10)):
            ts = base + timedelta(minutes=rng.randint(0, 5)) if rng.random() < 0.7 else None
            conversations.append(make_conversation(f"c{j}", rng.choice(keys), ts))

        result = reconcile(profiles, conversations)

        unconversed = {m.id for m in result.unconversed}
        conversed = {c.match.id for c in result.conversations}
        assert unconversed.isdisjoint(conversed)
        assert unconversed | conversed == {p.id for p in profiles}

        stamps = [
            c.conversation.last_message.timestamp if c.conversation.last_message
            else datetime(1970, 1, 1, tzinfo=timezone.utc)
            for c in result.conversations
        ]
        assert stamps == sorted(stamps, reverse=True)

    def test_empty_inputs(self):
        result = reconcile([], [])
        assert result.unconversed == []
        assert result.conversations == []
