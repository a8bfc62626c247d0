"""
Tests for helpers and socket payload schemas.
"""

import pytest
from pydantic import ValidationError

from sharedish.errors import PersistenceFailure, Unauthenticated, ValidationFailure
from sharedish.schemas import NewMessageEvent, SendMessagePayload
from sharedish.utils import ordered_pair, post_room, preview_text, user_room, utc_now_iso


class TestPreviewText:

    def test_short_text_unchanged(self):
        assert preview_text("Is this still available?") == "Is this still available?"

    def test_exactly_limit_unchanged(self):
        text = "a" * 50
        assert preview_text(text) == text

    def test_longer_text_truncated_with_ellipsis(self):
        text = "b" * 51
        assert preview_text(text) == "b" * 50 + "..."

    def test_custom_limit(self):
        assert preview_text("hello world", limit=5) == "hello..."


class TestHelpers:

    def test_ordered_pair(self):
        assert ordered_pair(["B", "A"]) == ("A", "B")
        assert ordered_pair(("A", "B")) == ("A", "B")

    @pytest.mark.parametrize("pair", [("A", "A"), ("A",), ("A", "B", "C")])
    def test_ordered_pair_requires_two_distinct(self, pair):
        with pytest.raises(ValueError):
            ordered_pair(pair)

    def test_room_names(self):
        assert user_room("B") == "user_B"
        assert post_room("P1") == "P1"

    def test_timestamp_format(self):
        ts = utc_now_iso()
        assert ts.endswith("Z")
        assert len(ts) == len("2025-01-15T10:00:00.000Z")


class TestSchemas:

    def test_send_payload_aliases(self):
        payload = SendMessagePayload.model_validate({"postId": "P1", "receiverId": "B", "text": "hi"})

        assert (payload.post_id, payload.receiver_id, payload.text) == ("P1", "B", "hi")

    def test_send_payload_missing_text(self):
        with pytest.raises(ValidationError):
            SendMessagePayload.model_validate({"postId": "P1", "receiverId": "B"})

    def test_notification_serialized_with_client_names(self):
        event = NewMessageEvent(
            sender_id="A",
            sender_name="Alice Baker",
            post_id="P1",
            text="hi",
            timestamp="2025-01-15T10:00:00.000Z",
        )

        assert event.model_dump(by_alias=True) == {
            "senderId": "A",
            "senderName": "Alice Baker",
            "postId": "P1",
            "text": "hi",
            "timestamp": "2025-01-15T10:00:00.000Z",
        }


class TestErrors:

    def test_error_payloads(self):
        assert Unauthenticated().to_payload() == {"message": "User not authenticated"}
        assert PersistenceFailure().to_payload() == {"message": "Failed to save message"}
        assert ValidationFailure("Invalid payload: text").to_payload() == {"message": "Invalid payload: text"}

    def test_metric_labels(self):
        assert Unauthenticated.result == "unauthenticated"
        assert ValidationFailure.result == "validation_error"
        assert PersistenceFailure.result == "persistence_error"
