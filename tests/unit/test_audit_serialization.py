"""Unit tests for audit value serialization and summarizing."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from clinicguard.config import Settings
from clinicguard.kernel.audit.recorder import AuditRecorder, serialize_value
from clinicguard.kernel.models.user import UserRole


class TestSerializeValue:
    """Tests for serialize_value."""

    def test_scalar_types(self):
        rid = uuid.UUID(int=9)
        assert serialize_value(rid) == str(rid)
        assert serialize_value(Decimal("12.50")) == "12.50"
        assert serialize_value(date(2025, 3, 1)) == "2025-03-01"
        assert serialize_value(datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)) == "2025-03-01T08:00:00+00:00"
        assert serialize_value(UserRole.DOCTOR) == "Doctor"
        assert serialize_value(None) is None
        assert serialize_value(True) is True

    def test_nested_structures(self):
        value = {"ids": (uuid.UUID(int=1),), "amount": Decimal("3"), "tags": ["a"]}
        assert serialize_value(value) == {
            "ids": [str(uuid.UUID(int=1))],
            "amount": "3",
            "tags": ["a"],
        }

    def test_credential_like_keys_kept_verbatim(self):
        value = {"user": {"email": "a@b.example", "Password": "hunter2"}, "token": "abc"}
        assert serialize_value(value) == value

    def test_unknown_objects_become_strings(self):
        class Marker:
            def __str__(self):
                return "marker"

        assert serialize_value(Marker()) == "marker"


class TestPrepare:
    """Tests for oversized values being summarized instead of dropped."""

    def test_small_value_kept(self):
        recorder = AuditRecorder(None, Settings(audit_value_max_bytes=100))
        value, truncated = recorder._prepare({"status": "open"})
        assert value == {"status": "open"}
        assert truncated is False

    def test_none_kept(self):
        recorder = AuditRecorder(None, Settings())
        assert recorder._prepare(None) == (None, False)

    def test_large_value_summarized(self):
        recorder = AuditRecorder(None, Settings(audit_value_max_bytes=100, audit_preview_chars=20))
        value, truncated = recorder._prepare({"notes": "x" * 500})

        assert truncated is True
        assert value["_truncated"] is True
        assert value["original_size"] > 500
        assert len(value["preview"]) == 20
