"""Shared fixtures for race review tests."""

import json

import numpy as np
import pytest

from racereview.alignment import ClipRange


@pytest.fixture
def three_clips():
    """alpha 0.5s, bravo 0.8s, charlie 1.2s race segments at different offsets."""
    return [
        ClipRange(2.0, 2.5),
        ClipRange(1.5, 2.3),
        ClipRange(1.8, 3.0),
    ]


class FakeReader:
    """In-memory stream: frame n is filled with value n, logs seeks/reads."""

    def __init__(self, name, log, fps=25, frame_count=100, size=(32, 24)):
        self.name = name
        self.log = log
        self.fps = fps
        self.frame_count = frame_count
        self.size = size
        self.position = 0.0
        self.released = False

    @property
    def duration(self):
        return self.frame_count / self.fps

    def seek(self, position):
        self.log.append(('seek', self.name, round(position, 4)))
        self.position = position

    def read(self):
        self.log.append(('read', self.name))
        frame_num = int(round(self.position * self.fps))
        if frame_num >= self.frame_count:
            return None
        w, h = self.size
        return np.full((h, w, 3), frame_num % 256, dtype=np.uint8)

    def release(self):
        self.released = True


class FakeWriter:
    def __init__(self, output='out.mp4', fail=False):
        self.output = output
        self.fail = fail
        self.frames = []
        self.closed = False
        self.aborted = False

    def write(self, frame):
        self.frames.append(frame)

    def close(self):
        self.closed = True
        return None if self.fail else self.output

    def abort(self):
        self.aborted = True


@pytest.fixture
def fake_reader_factory():
    return FakeReader


@pytest.fixture
def fake_writer_factory():
    return FakeWriter


def write_race(results_dir, name, summary):
    race_dir = results_dir / name
    race_dir.mkdir(parents=True)
    with open(race_dir / 'summary.json', 'w') as f:
        json.dump(summary, f)
    return race_dir


@pytest.fixture
def results_dir(tmp_path):
    results = tmp_path / 'results'
    results.mkdir()
    write_race(results, 'alpha-vs-bravo', {
        'racers': ['alpha', 'bravo', 'charlie'],
        'overall_winner': 'alpha',
        'rankings': ['alpha', 'bravo', 'charlie'],
        'profile': [
            {'measured': {'networkTransferSize': 500}, 'total': {'networkTransferSize': 1000, 'scriptDuration': 100}},
            {'measured': {'networkTransferSize': 800}, 'total': {'networkTransferSize': 2000, 'scriptDuration': 50}},
            None,
        ],
        'clip_times': [
            {'start': 2.0, 'end': 2.5},
            {'start': 1.5, 'end': 2.3},
            {'start': 1.8, 'end': 3.0},
        ],
        'videos': ['alpha/alpha.race.webm', 'bravo/bravo.race.webm', 'charlie/charlie.race.webm'],
    })
    write_race(results, 'lauda-vs-hunt', {
        'racers': ['lauda', 'hunt'],
        'overall_winner': 'hunt',
        'profile': [{'networkTransferSize': 1000}, {'networkTransferSize': 2000}],
        'clip_times': [None, None],
    })
    return results
