"""
Payload Codec Tests
"""

import json
import uuid

import pytest

from offline_sync.exceptions import PayloadError
from offline_sync.models import EntityType


class TestPayloadCodec:
    """Tests for encoding and decoding entity snapshots."""

    @pytest.fixture
    def task_id(self):
        return str(uuid.uuid4())

    def test_encode_task(self, task_id):
        from offline_sync.payloads import encode_payload

        raw = encode_payload(EntityType.TASK, {"id": task_id, "title": "Plan week", "star_rating": 3})
        data = json.loads(raw)

        assert data["id"] == task_id
        assert data["title"] == "Plan week"
        assert data["star_rating"] == 3
        assert data["is_completed"] is False

    def test_extra_columns_are_carried(self, task_id):
        from offline_sync.payloads import decode_payload, encode_payload

        raw = encode_payload(EntityType.TASK, {"id": task_id, "title": "A", "color": "blue"})

        assert decode_payload(EntityType.TASK, raw)["color"] == "blue"

    def test_encode_rejects_invalid(self, task_id):
        from offline_sync.payloads import encode_payload

        with pytest.raises(PayloadError, match="title"):
            encode_payload(EntityType.TASK, {"id": task_id})

        with pytest.raises(PayloadError):
            encode_payload(EntityType.TASK, {"id": "not-a-uuid", "title": "A"})

    def test_encode_accepts_model(self, task_id):
        from offline_sync.payloads import GoalPayload, encode_payload

        model = GoalPayload(id=task_id, title="Read", progress=0.5)
        data = json.loads(encode_payload(EntityType.GOAL, model))

        assert data["progress"] == 0.5

    def test_decode_round_trip_is_json_ready(self, task_id):
        from offline_sync.payloads import decode_payload, encode_payload

        raw = encode_payload(
            EntityType.TASK,
            {"id": task_id, "title": "A", "updated_at": "2024-01-01T12:00:00Z"},
        )
        data = decode_payload(EntityType.TASK, raw, entity_id=task_id)

        assert data["id"] == task_id
        assert isinstance(data["updated_at"], str)
        json.dumps(data)

    def test_decode_missing_payload(self):
        from offline_sync.payloads import decode_payload

        with pytest.raises(PayloadError, match="missing"):
            decode_payload(EntityType.TASK, None)

    def test_decode_malformed_json(self):
        from offline_sync.payloads import decode_payload

        with pytest.raises(PayloadError):
            decode_payload(EntityType.TASK, "{broken")

    def test_decode_id_mismatch(self, task_id):
        from offline_sync.payloads import decode_payload, encode_payload

        raw = encode_payload(EntityType.TASK, {"id": task_id, "title": "A"})

        with pytest.raises(PayloadError, match="does not match"):
            decode_payload(EntityType.TASK, raw, entity_id=str(uuid.uuid4()))

    def test_decode_id_match_is_case_insensitive(self, task_id):
        from offline_sync.payloads import decode_payload, encode_payload

        raw = encode_payload(EntityType.TASK, {"id": task_id, "title": "A"})

        assert decode_payload(EntityType.TASK, raw, entity_id=task_id.upper())["id"] == task_id

    @pytest.mark.parametrize("entity_type,data", [
        (EntityType.ACHIEVEMENT, {"type": "first_task"}),
        (EntityType.USER, {"email": "a@example.com"}),
        (EntityType.STREAK, {"current_streak": 4, "longest_streak": 9}),
    ])
    def test_every_entity_type_has_a_schema(self, entity_type, data):
        from offline_sync.payloads import PAYLOAD_SCHEMAS, decode_payload, encode_payload

        entity_id = str(uuid.uuid4())
        raw = encode_payload(entity_type, {"id": entity_id, **data})

        assert set(PAYLOAD_SCHEMAS) == set(EntityType)
        assert decode_payload(entity_type, raw, entity_id=entity_id)["id"] == entity_id
