"""Tests for the promotion policy and entity buffers."""

import pytest

from reverb.collector import policy
from reverb.collector.buffer import BufferPhase, BufferStateError, EntityBuffer
from reverb.collector.observation import Observation, ObservationSource
from reverb.config.settings import INSTITUTION_SCHEMA, EntitySchema, PromotionThresholds

LETTERS = EntitySchema(entity_type="letters", required_fields=tuple("abcdefghij"))
THRESHOLDS = PromotionThresholds(min_completeness_pct=70, min_average_confidence=0.6)


def make_obs(field, confidence=0.8, value=None):
    return Observation(
        field=field,
        value=value if value is not None else f"{field}-value",
        confidence=confidence,
        source=ObservationSource.MODEL_INFERENCE,
    )


def filled(fields, confidence=0.8):
    return {name: make_obs(name, confidence) for name in fields}


class TestPolicy:
    def test_completeness_arithmetic(self):
        assert policy.completeness_pct(filled("abcdefg"), LETTERS) == 70.0

    def test_fields_outside_schema_do_not_count(self):
        observations = filled("abc")
        observations["extra"] = make_obs("extra")
        assert policy.completeness_pct(observations, LETTERS) == 30.0

    def test_average_confidence_empty_is_zero(self):
        assert policy.average_confidence({}) == 0.0

    def test_average_confidence(self):
        observations = {"a": make_obs("a", 0.4), "b": make_obs("b", 0.8)}
        assert policy.average_confidence(observations) == pytest.approx(0.6)

    def test_missing_fields_in_schema_order(self):
        assert policy.missing_fields(filled("jca"), LETTERS) == list("bdefghi")

    def test_ready_at_exact_boundary(self):
        assert policy.is_ready(filled("abcdefg", 0.6), LETTERS, THRESHOLDS)

    def test_not_ready_below_confidence(self):
        assert not policy.is_ready(filled("abcdefg", 0.59), LETTERS, THRESHOLDS)

    def test_not_ready_at_69_percent(self):
        hundred = EntitySchema(
            entity_type="hundred", required_fields=tuple(f"f{i}" for i in range(100))
        )
        observations = filled([f"f{i}" for i in range(69)], 0.9)
        assert policy.completeness_pct(observations, hundred) == 69.0
        assert not policy.is_ready(observations, hundred, THRESHOLDS)

    def test_thresholds_are_tunable(self):
        lenient = PromotionThresholds(min_completeness_pct=20, min_average_confidence=0.1)
        assert policy.is_ready(filled("ab", 0.2), LETTERS, lenient)


class TestEntityBuffer:
    @pytest.fixture
    def buffer(self):
        return EntityBuffer("letters_key", LETTERS, THRESHOLDS)

    def test_new_buffer_is_empty(self, buffer):
        assert buffer.phase == BufferPhase.EMPTY
        assert buffer.completeness_pct == 0.0
        assert not buffer.ready_for_storage
        assert buffer.average_confidence() == 0.0

    def test_upsert_recomputes_state(self, buffer):
        buffer.upsert(make_obs("a"))
        assert buffer.phase == BufferPhase.ACCUMULATING
        assert buffer.completeness_pct == 10.0
        assert buffer.missing_fields() == list("bcdefghij")

    def test_confidence_monotonicity(self, buffer):
        for confidence, value in [(0.3, "first"), (0.9, "second"), (0.5, "third")]:
            buffer.upsert(make_obs("a", confidence, value))
        assert buffer.observations["a"].value == "second"
        assert buffer.observations["a"].confidence == 0.9

    def test_tie_break_keeps_later(self, buffer):
        buffer.upsert(make_obs("a", 0.7, "earlier"))
        buffer.upsert(make_obs("a", 0.7, "later"))
        assert buffer.to_record() == {"a": "later"}

    def test_idempotent_requeue(self, buffer):
        obs = make_obs("a", 0.7)
        buffer.upsert(obs)
        version = buffer.version
        buffer.upsert(obs)
        assert buffer.version == version
        assert buffer.observations == {"a": obs}
        assert buffer.completeness_pct == 10.0

    def test_to_record_drops_metadata(self, buffer):
        buffer.upsert(make_obs("a", value="alpha"))
        buffer.upsert(make_obs("b", value=None))
        record = buffer.to_record()
        assert record == {"a": "alpha", "b": "b-value"}

    def test_promotion_and_demotion(self, buffer):
        for name in "abcdefg":
            buffer.upsert(make_obs(name, 0.6))
        assert buffer.ready_for_storage
        assert buffer.phase == BufferPhase.READY

        buffer.upsert(make_obs("h", 0.0))
        assert buffer.completeness_pct == 80.0
        assert not buffer.ready_for_storage
        assert buffer.phase == BufferPhase.ACCUMULATING

    def test_flushed_buffer_rejects_upserts(self, buffer):
        for name in "abcdefg":
            buffer.upsert(make_obs(name, 0.9))
        buffer.mark_flushed()
        assert buffer.phase == BufferPhase.FLUSHED
        with pytest.raises(BufferStateError):
            buffer.upsert(make_obs("h"))

    def test_cannot_flush_unready_buffer(self, buffer):
        buffer.upsert(make_obs("a"))
        with pytest.raises(BufferStateError):
            buffer.mark_flushed()

    def test_institution_snapshot(self):
        buffer = EntityBuffer("strathmore_university", INSTITUTION_SCHEMA, THRESHOLDS)
        buffer.upsert(make_obs("name", 0.95, "Strathmore University"))
        snapshot = buffer.snapshot()
        assert snapshot["entity_type"] == "institution"
        assert snapshot["completeness_pct"] == 12.5
        assert snapshot["missing_fields"][0] == "type"
        assert snapshot["observation_count"] == 1

    def test_record_falls_back_to_label_for_missing_name(self):
        buffer = EntityBuffer(
            "moi_university", INSTITUTION_SCHEMA, THRESHOLDS, label="Moi University"
        )
        buffer.upsert(make_obs("county", 0.9, "Uasin Gishu"))
        assert buffer.to_record() == {"county": "Uasin Gishu", "name": "Moi University"}

        buffer.upsert(make_obs("name", 0.9, "Moi Univ."))
        assert buffer.to_record()["name"] == "Moi Univ."
