"""
Tests for the capture admission controller: rate gate, hit cache and quota.
"""

from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from capture import CaptureAdmissionController, CaptureState, FrameStatus
from detection.engine import DetectionEngine
from domain.errors import PersistenceFailure, TransientInferenceError
from models.config import CaptureConfig, DetectionConfig
from models.detection import Detection

MINUTE_MS = 60_000
# Frame clock in epoch milliseconds
T0 = 1_700_000_000_000


def det(name, confidence=0.9, class_index=0):
    return Detection(cx=0.5, cy=0.5, w=0.2, h=0.2, confidence=confidence,
                     class_index=class_index, class_name=name)


class ScriptedDetector:
    """Returns detections from a per-call script (default: nothing)."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = 0
        self.applied = []

    def detect(self, frame):
        self.calls += 1
        if self.script:
            result = self.script.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return []

    def apply_config(self, config):
        self.applied.append(config)


class RecordingSink:
    def __init__(self):
        self.saved = []

    def save(self, image, detections, captured_at=None):
        self.saved.append((image, list(detections), captured_at))
        return Path(f"/captures/{len(self.saved)}.jpg")


class MemoryStore:
    def __init__(self, last_save=0):
        self.last_save = last_save
        self.writes = []

    def get_last_save_timestamp(self):
        return self.last_save

    def set_last_save_timestamp(self, ts_ms):
        self.last_save = ts_ms
        self.writes.append(ts_ms)


class OnePersonRuntime:
    """32x32 model runtime that always reports one person at the center."""

    input_shape = [1, 3, 32, 32]
    output_shape = [1, 6, 4]

    def infer(self, inputs):
        out = np.zeros((1, 6, 4), dtype=np.float32)
        out[0, :, 0] = (16, 16, 8, 8, 0.9, 0.1)
        return out

    def close(self):
        pass


def frame(value=0):
    return np.full((4, 4, 3), value, dtype=np.uint8)


def make_controller(detector=None, sink=None, store=None, **capture_kwargs):
    config = CaptureConfig(**capture_kwargs)
    return CaptureAdmissionController(
        detector or ScriptedDetector(),
        sink or RecordingSink(),
        store or MemoryStore(),
        config,
    )


class TestRateGate:
    def test_frames_inside_interval_are_dropped(self):
        detector = ScriptedDetector()
        controller = make_controller(detector, frame_rate=10)

        statuses = [controller.process_frame(frame(), t).status for t in (0, 50, 100, 150, 200)]

        assert statuses == [
            FrameStatus.NO_HIT,
            FrameStatus.DROPPED,
            FrameStatus.NO_HIT,
            FrameStatus.DROPPED,
            FrameStatus.NO_HIT,
        ]
        assert detector.calls == 3

    def test_first_frame_is_always_admitted(self):
        detector = ScriptedDetector()
        controller = make_controller(detector, frame_rate=1)

        controller.process_frame(frame(), 0)

        assert detector.calls == 1
        assert controller.state.last_processed_ts_ms == 0

    def test_dropped_frames_have_no_side_effects(self):
        detector = ScriptedDetector([[det("person")]])
        controller = make_controller(detector, frame_rate=10, max_images_per_period=1, period_hours=1)
        controller.process_frame(frame(1), T0)
        before = controller.state.last_processed_ts_ms

        result = controller.process_frame(frame(2), T0 + 10)

        assert result.status == FrameStatus.DROPPED
        assert controller.state.last_processed_ts_ms == before
        assert detector.calls == 1


class TestHitCache:
    def test_allow_list_filters_hits(self):
        detector = ScriptedDetector([[det("car", 0.99), det("cat", 0.8, 15)]])
        controller = make_controller(detector, period_hours=8)
        controller.state.last_save_ts_ms = T0

        result = controller.process_frame(frame(), T0 + 1)

        assert result.status == FrameStatus.HIT
        assert [d.class_name for d in result.detections] == ["cat"]
        assert [d.class_name for d in controller.state.cached_hit.detections] == ["cat"]

    def test_non_allowed_only_is_not_a_hit(self):
        detector = ScriptedDetector([[det("car")]])
        controller = make_controller(detector)
        controller.state.last_save_ts_ms = T0

        result = controller.process_frame(frame(), T0 + 1)

        assert result.status == FrameStatus.NO_HIT
        assert controller.state.cached_hit is None

    def test_empty_allow_list_admits_everything(self):
        detector = ScriptedDetector([[det("car")]])
        controller = make_controller(detector, class_allow_list=[])
        controller.state.last_save_ts_ms = T0

        assert controller.process_frame(frame(), T0 + 1).status == FrameStatus.HIT

    def test_latest_hit_wins_regardless_of_confidence(self):
        detector = ScriptedDetector([[det("person", 0.99)], [det("dog", 0.71, 16)]])
        controller = make_controller(detector, frame_rate=1)
        controller.state.last_save_ts_ms = T0

        controller.process_frame(frame(1), T0 + 1_000)
        controller.process_frame(frame(2), T0 + 2_000)

        hit = controller.state.cached_hit
        assert hit.timestamp_ms == T0 + 2_000
        assert hit.detections[0].class_name == "dog"
        assert hit.frame[0, 0, 0] == 2

    def test_cached_frame_is_a_copy(self):
        detector = ScriptedDetector([[det("person")]])
        controller = make_controller(detector)
        controller.state.last_save_ts_ms = T0
        image = frame(5)

        controller.process_frame(image, T0 + 1)
        image[:] = 0

        assert controller.state.cached_hit.frame[0, 0, 0] == 5

    def test_reset_discards_cached_hit(self):
        detector = ScriptedDetector([[det("person")]])
        controller = make_controller(detector)
        controller.state.last_save_ts_ms = T0
        controller.process_frame(frame(), T0 + 1)

        controller.reset()

        assert controller.state.cached_hit is None

    def test_inference_error_skips_frame(self):
        detector = ScriptedDetector([TransientInferenceError("boom"), [det("person")]])
        controller = make_controller(detector, frame_rate=1)
        controller.state.last_save_ts_ms = T0

        first = controller.process_frame(frame(), T0 + 1_000)
        second = controller.process_frame(frame(), T0 + 2_000)

        assert first.status == FrameStatus.ERROR
        assert second.status == FrameStatus.HIT

    @pytest.mark.parametrize("bad_frame", [
        np.zeros((0, 0, 3), dtype=np.uint8),
        np.zeros((4, 4, 2), dtype=np.uint8),
    ])
    def test_malformed_frame_does_not_stop_capture(self, bad_frame):
        engine = DetectionEngine(OnePersonRuntime(), ["person", "cat"], DetectionConfig())
        engine.open()
        controller = make_controller(engine, frame_rate=1)
        controller.state.last_save_ts_ms = T0

        first = controller.process_frame(bad_frame, T0 + 1_000)
        second = controller.process_frame(frame(), T0 + 2_000)

        assert first.status == FrameStatus.ERROR
        assert second.status == FrameStatus.HIT
        assert second.detections[0].class_name == "person"
        assert not controller.is_halted


class TestQuota:
    def test_save_interval(self):
        assert CaptureConfig(max_images_per_period=64, period_hours=8).save_interval_ms == 450_000
        assert CaptureConfig(max_images_per_period=2, period_hours=1).save_interval_ms == 30 * MINUTE_MS

    def test_quota_scenario_saves_latest_hit(self):
        detector = ScriptedDetector([[det("person")], [det("cat", 0.8, 15)], [det("dog", 0.75, 16)]])
        sink = RecordingSink()
        store = MemoryStore(last_save=0)
        controller = make_controller(detector, sink, store, max_images_per_period=2, period_hours=1)

        r0 = controller.process_frame(frame(0), T0)
        r10 = controller.process_frame(frame(10), T0 + 10 * MINUTE_MS)
        r40 = controller.process_frame(frame(40), T0 + 40 * MINUTE_MS)

        assert r0.status == FrameStatus.SAVED
        assert r10.status == FrameStatus.HIT
        assert r40.status == FrameStatus.SAVED
        assert [d[1][0].class_name for d in sink.saved] == ["person", "dog"]
        assert sink.saved[1][0][0, 0, 0] == 40
        assert store.writes == [T0, T0 + 40 * MINUTE_MS]
        assert controller.state.cached_hit is None

    def test_window_stays_open_until_a_hit_arrives(self):
        detector = ScriptedDetector([[], [], [det("person")]])
        sink = RecordingSink()
        controller = make_controller(detector, sink, MemoryStore(last_save=T0 - 60 * MINUTE_MS),
                                     max_images_per_period=2, period_hours=1)

        statuses = [
            controller.process_frame(frame(), T0 + i * MINUTE_MS).status for i in range(3)
        ]

        assert statuses == [FrameStatus.NO_HIT, FrameStatus.NO_HIT, FrameStatus.SAVED]
        assert len(sink.saved) == 1

    def test_cached_hit_saved_on_later_no_hit_frame(self):
        detector = ScriptedDetector([[det("person")], []])
        sink = RecordingSink()
        store = MemoryStore(last_save=T0 - 20 * MINUTE_MS)
        controller = make_controller(detector, sink, store, max_images_per_period=2, period_hours=1)

        assert controller.process_frame(frame(), T0).status == FrameStatus.HIT
        result = controller.process_frame(frame(), T0 + 10 * MINUTE_MS)

        assert result.status == FrameStatus.SAVED
        assert result.detections == []
        assert store.writes == [T0 + 10 * MINUTE_MS]
        # captured_at comes from the hit, not the saving frame
        assert sink.saved[0][2].timestamp() == pytest.approx(T0 / 1000)

    def test_saves_bounded_per_period(self):
        period_ms = 60 * MINUTE_MS
        sink = RecordingSink()
        detector = MagicMock()
        detector.detect.return_value = [det("person")]
        controller = make_controller(detector, sink, MemoryStore(), frame_rate=1,
                                     max_images_per_period=4, period_hours=1)

        for t in range(0, period_ms, 1_000):
            controller.process_frame(frame(), T0 + t)

        assert len(sink.saved) == 4

    def test_last_save_read_from_store(self):
        store = MemoryStore(last_save=T0)
        controller = make_controller(store=store)
        assert controller.state.last_save_ts_ms == T0


class TestPersistenceFailure:
    def test_sink_error_halts_controller(self):
        sink = MagicMock()
        sink.save.side_effect = OSError("disk full")
        store = MemoryStore()
        controller = make_controller(ScriptedDetector([[det("person")]]), sink, store)

        with pytest.raises(PersistenceFailure):
            controller.process_frame(frame(), T0)

        assert controller.is_halted
        assert store.writes == []
        with pytest.raises(PersistenceFailure):
            controller.process_frame(frame(), T0 + 60 * MINUTE_MS)

    def test_sink_reporting_failure_halts(self):
        sink = MagicMock()
        sink.save.return_value = None
        controller = make_controller(ScriptedDetector([[det("person")]]), sink)

        with pytest.raises(PersistenceFailure):
            controller.process_frame(frame(), T0)
        assert controller.is_halted

    def test_store_error_halts(self):
        store = MagicMock()
        store.get_last_save_timestamp.return_value = 0
        store.set_last_save_timestamp.side_effect = RuntimeError("readonly")
        controller = make_controller(ScriptedDetector([[det("person")]]), RecordingSink(), store)

        with pytest.raises(PersistenceFailure):
            controller.process_frame(frame(), T0)
        assert controller.is_halted

    def test_saved_capture_is_written_to_capture_log(self):
        capture_log = MagicMock()
        controller = CaptureAdmissionController(
            ScriptedDetector([[det("person")]]),
            RecordingSink(),
            MemoryStore(),
            CaptureConfig(),
            capture_log=capture_log,
        )

        controller.process_frame(frame(), T0)

        capture_log.record_capture.assert_called_once()
        ts, path, detections = capture_log.record_capture.call_args[0]
        assert ts == T0
        assert path == "/captures/1.jpg"
        assert detections[0].class_name == "person"


class TestPauseAndReconfigure:
    def test_paused_frames_are_ignored(self):
        detector = ScriptedDetector()
        controller = make_controller(detector)

        controller.pause()
        result = controller.process_frame(frame(), T0)

        assert result.status == FrameStatus.PAUSED
        assert detector.calls == 0
        assert controller.state.last_processed_ts_ms is None

        controller.resume()
        assert controller.process_frame(frame(), T0).status == FrameStatus.NO_HIT

    def test_apply_config_requires_pause(self):
        controller = make_controller()
        with pytest.raises(RuntimeError):
            controller.apply_config(CaptureConfig(frame_rate=5))

    def test_apply_config_while_paused(self):
        detector = ScriptedDetector()
        controller = make_controller(detector, frame_rate=1)
        new_detection = DetectionConfig(confidence_threshold=0.4)

        controller.pause()
        controller.apply_config(CaptureConfig(frame_rate=10, class_allow_list=["car"]), new_detection)
        controller.resume()

        assert controller.config.frame_rate == 10
        assert detector.applied == [new_detection]

        detector.script = [[det("car")]]
        controller.state.last_save_ts_ms = T0
        assert controller.process_frame(frame(), T0 + 1).status == FrameStatus.HIT

    def test_explicit_state_is_used(self):
        state = CaptureState(last_save_ts_ms=T0)
        store = MemoryStore(last_save=0)
        controller = CaptureAdmissionController(ScriptedDetector(), RecordingSink(), store,
                                                CaptureConfig(), state=state)
        assert controller.state is state
