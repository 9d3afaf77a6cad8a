"""Unit tests for telemetry_stream.protocol."""
from __future__ import annotations

import json

import pytest

from telemetry_stream.exceptions import FrameDecodeError
from telemetry_stream.models import Sample
from telemetry_stream.protocol import (
    BatchMetricFrame,
    EntityListFrame,
    MetricFrame,
    ModeFrame,
    encode_frame,
    mode_frame,
    parse_frame,
    ping_frame,
)


# ---------------------------------------------------------------------------
# multi-metric
# ---------------------------------------------------------------------------
class TestMultiMetric:
    def test_entries_become_samples(self):
        raw = json.dumps(
            {
                "type": "multi-metric",
                "data": [
                    {"node": "A", "ts": 1000, "throughput": 10, "latencyMs": 5, "alertRate": 0.1, "flowIndex": 0.5},
                    {"node": "B", "ts": 1001, "throughput": 20},
                ],
            }
        )
        frame = parse_frame(raw)
        assert isinstance(frame, BatchMetricFrame)
        assert frame.samples[0] == Sample("A", 1000, 10.0, 5.0, 0.1, 0.5)
        assert frame.samples[1].entity_id == "B"
        assert frame.entity_ids == ("A", "B")

    def test_missing_metrics_stay_unset(self):
        frame = parse_frame('{"type":"multi-metric","data":[{"node":"A","ts":5}]}')
        assert isinstance(frame, BatchMetricFrame)
        sample = frame.samples[0]
        assert sample.throughput is None
        assert sample.latency is None
        assert sample.alert_rate is None
        assert sample.flow_index is None

    def test_entries_without_string_node_are_filtered(self):
        raw = json.dumps(
            {
                "type": "multi-metric",
                "data": [{"node": 7, "ts": 1}, {"ts": 2}, "junk", None, {"node": "", "ts": 3}, {"node": "C", "ts": 4}],
            }
        )
        frame = parse_frame(raw)
        assert isinstance(frame, BatchMetricFrame)
        assert [s.entity_id for s in frame.samples] == ["C"]

    def test_entity_ids_are_distinct_in_first_seen_order(self):
        raw = json.dumps(
            {"type": "multi-metric", "data": [{"node": "B", "ts": 1}, {"node": "A", "ts": 2}, {"node": "B", "ts": 3}]}
        )
        frame = parse_frame(raw)
        assert isinstance(frame, BatchMetricFrame)
        assert frame.entity_ids == ("B", "A")

    def test_overflowing_ts_uses_receive_time(self):
        frame = parse_frame('{"type":"multi-metric","data":[{"node":"A","ts":1e400},{"node":"B","ts":NaN}]}',
                            received_at=9)
        assert isinstance(frame, BatchMetricFrame)
        assert [s.timestamp for s in frame.samples] == [9, 9]

    def test_empty_data(self):
        frame = parse_frame('{"type":"multi-metric","data":[]}')
        assert frame == BatchMetricFrame(samples=())

    def test_data_not_a_list_is_invalid(self):
        with pytest.raises(FrameDecodeError):
            parse_frame('{"type":"multi-metric","data":{"node":"A"}}')

    def test_non_numeric_metric_is_invalid(self):
        with pytest.raises(FrameDecodeError):
            parse_frame('{"type":"multi-metric","data":[{"node":"A","ts":1,"throughput":"fast"}]}')


# ---------------------------------------------------------------------------
# metric
# ---------------------------------------------------------------------------
class TestMetric:
    def test_single_sample(self):
        frame = parse_frame('{"type":"metric","node":"X","ts":42,"latencyMs":7.5}')
        assert frame == MetricFrame(sample=Sample("X", 42, latency=7.5))

    def test_missing_node_defaults(self):
        frame = parse_frame('{"type":"metric","ts":42,"throughput":1}')
        assert isinstance(frame, MetricFrame)
        assert frame.sample.entity_id == "DEFAULT"

    def test_non_string_node_defaults(self):
        frame = parse_frame('{"type":"metric","node":12,"ts":42}')
        assert isinstance(frame, MetricFrame)
        assert frame.sample.entity_id == "DEFAULT"

    def test_missing_ts_uses_receive_time(self):
        frame = parse_frame('{"type":"metric","node":"X"}', received_at=777)
        assert isinstance(frame, MetricFrame)
        assert frame.sample.timestamp == 777

    @pytest.mark.parametrize("ts", ["Infinity", "-Infinity", "NaN", "1e400", "-1e400", str(10**400)])
    def test_non_finite_ts_uses_receive_time(self, ts):
        frame = parse_frame('{"type":"metric","node":"A","ts":%s,"throughput":1}' % ts, received_at=555)
        assert isinstance(frame, MetricFrame)
        assert frame.sample.timestamp == 555
        assert frame.sample.throughput == 1.0

    def test_fractional_ts_is_truncated(self):
        frame = parse_frame('{"type":"metric","node":"X","ts":1000.9}')
        assert isinstance(frame, MetricFrame)
        assert frame.sample.timestamp == 1000


# ---------------------------------------------------------------------------
# info / mode
# ---------------------------------------------------------------------------
class TestInfoAndMode:
    def test_info(self):
        assert parse_frame('{"type":"info","nodes":["NYC","LA"],"mode":"NORMAL"}') == EntityListFrame(("NYC", "LA"))

    def test_info_nodes_must_be_strings(self):
        with pytest.raises(FrameDecodeError):
            parse_frame('{"type":"info","nodes":["NYC",3]}')

    def test_mode(self):
        assert parse_frame('{"type":"mode","mode":"OUTAGE"}') == ModeFrame("OUTAGE")

    def test_mode_must_be_string(self):
        with pytest.raises(FrameDecodeError):
            parse_frame('{"type":"mode","mode":1}')


# ---------------------------------------------------------------------------
# Malformed / unknown
# ---------------------------------------------------------------------------
class TestMalformed:
    @pytest.mark.parametrize("raw", ["not json", "", "{", b"\xff\xfe", "[1,2]", "42", "null"])
    def test_raises_decode_error(self, raw):
        with pytest.raises(FrameDecodeError):
            parse_frame(raw)

    @pytest.mark.parametrize("raw", ['{"type":"ping","ts":1}', '{"type":"telem"}', '{"data":[]}', '{"type":[]}'])
    def test_unknown_kind_is_ignored(self, raw):
        assert parse_frame(raw) is None

    def test_bytes_payload(self):
        assert parse_frame(b'{"type":"mode","mode":"FLAP"}') == ModeFrame("FLAP")


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------
class TestOutbound:
    def test_ping_frame(self):
        assert ping_frame(123) == {"type": "ping", "ts": 123}

    def test_mode_frame_encoding(self):
        assert encode_frame(mode_frame("CONGESTION")) == '{"type":"mode","mode":"CONGESTION"}'
