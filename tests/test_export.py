"""Tests for the side-by-side export state machine."""

import numpy as np
import pytest

from racereview.alignment import ClipRange
from racereview.export import (
    ExportSession,
    ExportState,
    compose_frames,
    get_export_layout,
    hex_to_bgr,
)


def _readers(factory, log, names=('alpha', 'bravo', 'charlie'), **kwargs):
    return [factory(name, log, **kwargs) for name in names]


class TestLayout:
    @pytest.mark.parametrize('count,expected', [
        (0, (0, 0)), (1, (1, 1)), (2, (2, 1)), (3, (3, 1)), (4, (2, 2)), (5, (3, 2)),
    ])
    def test_grid(self, count, expected):
        assert get_export_layout(count) == expected

    def test_compose_size(self):
        frames = [np.full((24, 32, 3), 10, dtype=np.uint8), None]
        canvas = compose_frames(frames, tile_size=(64, 48))
        assert canvas.shape == (48, 128, 3)
        # Missing frame renders black
        assert canvas[:, 64:].max() == 0
        assert canvas[40, 10, 0] == 10

    def test_compose_with_labels(self):
        frames = [np.zeros((48, 64, 3), dtype=np.uint8)] * 4
        canvas = compose_frames(frames, labels=['a', 'b', 'c', 'd'],
                                colors=[(255, 255, 255)] * 4, tile_size=(64, 48))
        assert canvas.shape == (96, 128, 3)
        assert canvas.max() > 0

    def test_hex_to_bgr(self):
        assert hex_to_bgr('#e74c3c') == (0x3c, 0x4c, 0xe7)


class TestExportSession:
    def test_frame_count_covers_window(self, three_clips, fake_reader_factory, fake_writer_factory):
        log = []
        export = ExportSession(_readers(fake_reader_factory, log), three_clips,
                               fake_writer_factory(), fps=25)
        # 1.2s window at 25fps: frames 0..30
        assert export.total_frames == 31
        assert export.synchronized is True

    def test_seeks_all_before_reading(self, three_clips, fake_reader_factory, fake_writer_factory):
        log = []
        writer = fake_writer_factory()
        export = ExportSession(_readers(fake_reader_factory, log), three_clips, writer, fps=25)
        assert export.run() == 'out.mp4'

        # Every frame: three seeks, then three reads
        assert len(log) == export.total_frames * 6
        for frame in range(export.total_frames):
            chunk = log[frame * 6:(frame + 1) * 6]
            assert [entry[0] for entry in chunk] == ['seek'] * 3 + ['read'] * 3

    def test_positions_follow_shared_elapsed(self, three_clips, fake_reader_factory, fake_writer_factory):
        log = []
        export = ExportSession(_readers(fake_reader_factory, log), three_clips,
                               fake_writer_factory(), fps=25)
        export.run()
        seeks = [entry for entry in log if entry[0] == 'seek']
        # Frame 0 starts every stream at its own clip start
        assert seeks[:3] == [('seek', 'alpha', 2.0), ('seek', 'bravo', 1.5), ('seek', 'charlie', 1.8)]
        # Last frame: every stream on its own clip end
        assert seeks[-3:] == [('seek', 'alpha', 2.5), ('seek', 'bravo', 2.3), ('seek', 'charlie', 3.0)]

    def test_state_sequence(self, fake_reader_factory, fake_writer_factory):
        log = []
        clips = [ClipRange(0.0, 0.04), ClipRange(0.0, 0.04)]
        export = ExportSession(_readers(fake_reader_factory, log, names=('a', 'b')), clips,
                               fake_writer_factory(), fps=25)
        export.run()
        assert export.history == [
            ExportState.IDLE,
            ExportState.ALIGNING_SEEK, ExportState.BUFFER_READY, ExportState.CAPTURING,
            ExportState.ALIGNING_SEEK, ExportState.BUFFER_READY, ExportState.CAPTURING,
            ExportState.FINALIZING, ExportState.IDLE,
        ]
        assert export.state == ExportState.IDLE

    def test_writer_receives_composited_frames(self, three_clips, fake_reader_factory, fake_writer_factory):
        log = []
        writer = fake_writer_factory()
        export = ExportSession(_readers(fake_reader_factory, log), three_clips, writer,
                               labels=['alpha', 'bravo', 'charlie'], tile_size=(64, 48))
        export.run()
        assert len(writer.frames) == export.total_frames == export.frames_captured
        assert writer.frames[0].shape == (48, 192, 3)
        assert writer.closed is True

    def test_readers_released(self, three_clips, fake_reader_factory, fake_writer_factory):
        readers = _readers(fake_reader_factory, [])
        ExportSession(readers, three_clips, fake_writer_factory()).run()
        assert all(r.released for r in readers)

    def test_tile_order_winner_first(self, fake_reader_factory, fake_writer_factory):
        log = []
        readers = _readers(fake_reader_factory, log, names=('a', 'b'))
        clips = [ClipRange(0.0, 0.0), ClipRange(0.4, 0.4)]  # b's tile is frame 10
        writer = fake_writer_factory()
        ExportSession(readers, clips, writer, order=[1, 0], tile_size=(32, 24)).run()
        frame = writer.frames[0]
        assert frame[12, 16, 0] == 10
        assert frame[12, 48, 0] == 0

    def test_stream_without_clip_is_black(self, fake_reader_factory, fake_writer_factory):
        log = []
        readers = _readers(fake_reader_factory, log, names=('a', 'b'))
        writer = fake_writer_factory()
        ExportSession(readers, [ClipRange(0.4, 0.48), None], writer, tile_size=(32, 24)).run()
        assert all(entry[1] == 'a' for entry in log)
        assert writer.frames[0][:, 32:].max() == 0

    def test_fallback_to_full_recordings(self, fake_reader_factory, fake_writer_factory):
        log = []
        readers = _readers(fake_reader_factory, log, names=('a', 'b'), frame_count=10)
        export = ExportSession(readers, [None, None], fake_writer_factory())
        assert export.synchronized is False
        # 10 frames at 25fps = 0.4s
        assert export.total_frames == 11
        assert export.run() == 'out.mp4'

    def test_end_of_file_holds_last_frame(self, fake_reader_factory, fake_writer_factory):
        log = []
        readers = _readers(fake_reader_factory, log, names=('a', 'b'), frame_count=5)
        writer = fake_writer_factory()
        # Clip runs past the last decodable frame (frame 4)
        ExportSession(readers, [ClipRange(0.0, 0.4), ClipRange(0.0, 0.4)], writer,
                      tile_size=(32, 24)).run()
        assert writer.frames[-1][12, 16, 0] == 4

    def test_nothing_to_export(self, fake_reader_factory, fake_writer_factory):
        readers = _readers(fake_reader_factory, [], names=('a', 'b'), frame_count=0)
        writer = fake_writer_factory()
        export = ExportSession(readers, [None, None], writer)
        assert export.run() is None
        assert export.error
        assert writer.aborted is True
        assert export.state == ExportState.IDLE

    def test_stop(self, three_clips, fake_reader_factory, fake_writer_factory):
        writer = fake_writer_factory()
        export = ExportSession(_readers(fake_reader_factory, []), three_clips, writer)
        calls = {'n': 0}

        def should_stop():
            calls['n'] += 1
            return calls['n'] > 3

        assert export.run(should_stop=should_stop) is None
        assert export.error == 'stopped'
        assert len(writer.frames) == 3
        assert writer.aborted is True
        assert writer.closed is False

    def test_encoder_failure(self, three_clips, fake_reader_factory, fake_writer_factory):
        export = ExportSession(_readers(fake_reader_factory, []), three_clips,
                               fake_writer_factory(fail=True))
        assert export.run() is None
        assert export.error == 'Encoder failed'

    def test_reader_error_finalizes_and_propagates(self, three_clips, fake_reader_factory, fake_writer_factory):
        readers = _readers(fake_reader_factory, [])

        def broken_read():
            raise RuntimeError('decoder crashed')

        readers[1].read = broken_read
        export = ExportSession(readers, three_clips, fake_writer_factory())
        with pytest.raises(RuntimeError, match='decoder crashed'):
            export.run()
        assert export.state == ExportState.IDLE
        assert ExportState.FINALIZING in export.history
        assert all(r.released for r in readers)

    def test_failure_before_first_frame_releases_readers(self, three_clips, fake_reader_factory, fake_writer_factory):
        readers = _readers(fake_reader_factory, [])
        writer = fake_writer_factory()

        def should_stop():
            raise KeyError('job')

        export = ExportSession(readers, three_clips, writer)
        with pytest.raises(KeyError):
            export.run(should_stop=should_stop)
        assert all(r.released for r in readers)
        assert writer.aborted is True
        assert export.history == [ExportState.IDLE, ExportState.FINALIZING, ExportState.IDLE]

    def test_progress(self, three_clips, fake_reader_factory, fake_writer_factory):
        seen = []
        export = ExportSession(_readers(fake_reader_factory, []), three_clips, fake_writer_factory())
        export.run(progress_callback=lambda current, total: seen.append((current, total)))
        assert seen[0] == (1, 31)
        assert seen[-1] == (31, 31)

    def test_illegal_transition(self, three_clips, fake_reader_factory, fake_writer_factory):
        export = ExportSession(_readers(fake_reader_factory, []), three_clips, fake_writer_factory())
        with pytest.raises(RuntimeError):
            export._transition(ExportState.CAPTURING)
