#!/usr/bin/env python3
"""
Race review Flask application.

JSON API over a results directory written by the race harness:
profile comparisons and reports, synchronized playback sessions with
per-racer clip calibration, and side-by-side video exports.
"""

import logging
import threading
import uuid
from pathlib import Path

from flask import Flask, jsonify, request

from .comparison import build_profile_markdown
from .config import ReviewConfig
from .encoder import FfmpegFrameWriter
from .export import ExportSession, VideoStreamReader
from .session import ReviewSession
from .summary import RaceSummary, find_races

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['REVIEW'] = ReviewConfig.load()

# Key: session_id, Value: ReviewSession
review_sessions = {}
sessions_lock = threading.Lock()

# Key: job_id, Value: dict with 'status', 'progress', 'output', 'error'
export_jobs = {}
export_jobs_lock = threading.Lock()


def _config() -> ReviewConfig:
    return app.config['REVIEW']


def _load_race(race: str):
    """RaceSummary for race, or None if it doesn't exist."""
    results_dir = Path(_config().results_dir)
    race_dir = results_dir / race
    # Reject anything that escapes the results directory
    if race_dir.resolve().parent != results_dir.resolve():
        return None
    if not (race_dir / 'summary.json').is_file():
        return None
    return RaceSummary.from_json(race_dir)


def _get_session(session_id: str):
    with sessions_lock:
        return review_sessions.get(session_id)


def _open_reader(path):
    return VideoStreamReader(str(path))


def _make_writer(output_path, fps):
    return FfmpegFrameWriter(str(output_path), fps)


@app.route('/api/races')
def list_races():
    """List races available in the results directory."""
    races = []
    for name in find_races(_config().results_dir):
        try:
            summary = _load_race(name)
        except (ValueError, OSError) as e:
            logger.warning(f"Skipping race {name}: {e}")
            continue
        races.append({
            'name': name,
            'racers': summary.racers,
            'overall_winner': summary.overall_winner,
            'has_profile': summary.has_profile,
            'has_videos': bool(summary.videos),
        })
    return jsonify({'races': races})


@app.route('/api/races/<race>/profile')
def get_profile(race):
    try:
        summary = _load_race(race)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if summary is None:
        return jsonify({'error': 'Race not found'}), 404

    result = summary.profile_comparison()
    return jsonify({'racers': summary.racers, 'profile': result.to_dict()})


@app.route('/api/races/<race>/report')
def get_report(race):
    """Markdown profile section for the race report."""
    try:
        summary = _load_race(race)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if summary is None:
        return jsonify({'error': 'Race not found'}), 404

    markdown = build_profile_markdown(summary.profile_comparison(), summary.racers)
    return jsonify({'race': race, 'markdown': markdown})


@app.route('/api/review/<race>', methods=['POST'])
def create_review_session(race):
    """Start a synchronized playback session for a race."""
    try:
        summary = _load_race(race)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if summary is None:
        return jsonify({'error': 'Race not found'}), 404

    session_id = str(uuid.uuid4())[:8]
    session = ReviewSession(
        session_id,
        summary.racers,
        summary.clip_times,
        overall_winner=summary.overall_winner,
        rankings=summary.rankings,
        race=race,
    )

    with sessions_lock:
        review_sessions[session_id] = session

    logger.info(f"Review session {session_id} started for {race} "
                f"({'synchronized' if session.synchronized else 'unsynchronized'})")
    return jsonify(session.to_dict())


@app.route('/api/review/session/<session_id>')
def get_review_session(session_id):
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404
    return jsonify(session.to_dict())


@app.route('/api/review/session/<session_id>/seek', methods=['POST'])
def seek(session_id):
    """Seek all streams. Body: {"elapsed": seconds} or {"fraction": 0..1}."""
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404

    data = request.get_json(silent=True) or {}
    try:
        if 'fraction' in data:
            state = session.seek_fraction(float(data['fraction']))
        elif 'elapsed' in data:
            state = session.seek(float(data['elapsed']))
        else:
            return jsonify({'error': 'elapsed or fraction is required'}), 400
    except (TypeError, ValueError):
        return jsonify({'error': 'elapsed/fraction must be a number'}), 400

    return jsonify(state)


@app.route('/api/review/session/<session_id>/step', methods=['POST'])
def step(session_id):
    """Step all streams by whole frames. Body: {"frames": -1}."""
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404

    data = request.get_json(silent=True) or {}
    frames = data.get('frames', 1)
    if isinstance(frames, bool) or not isinstance(frames, int):
        return jsonify({'error': 'frames must be an integer'}), 400

    return jsonify(session.step(frames))


@app.route('/api/review/session/<session_id>/calibration', methods=['GET'])
def get_calibration(session_id):
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404
    return jsonify(session.calibration())


@app.route('/api/review/session/<session_id>/calibration', methods=['POST'])
def adjust_calibration(session_id):
    """Shift one racer's clip start. Body: {"stream": 1, "delta": -5}."""
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404

    data = request.get_json(silent=True) or {}
    stream = data.get('stream')
    delta = data.get('delta')
    for field_name, value in (('stream', stream), ('delta', delta)):
        if isinstance(value, bool) or not isinstance(value, int):
            return jsonify({'error': f'{field_name} must be an integer'}), 400

    try:
        offset = session.adjust_offset(stream, delta)
    except IndexError as e:
        return jsonify({'error': str(e)}), 400

    state = session.seek(session.elapsed)
    state['offset'] = {'stream': stream, 'frames': offset}
    state['calibration'] = session.calibration()
    return jsonify(state)


@app.route('/api/review/session/<session_id>/calibration/reset', methods=['POST'])
def reset_calibration(session_id):
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404

    session.reset_offsets()
    state = session.seek(session.elapsed)
    state['calibration'] = session.calibration()
    return jsonify(state)


def run_export_job(job_id: str, export: ExportSession):
    """Background thread body for an export."""
    def progress(current, total):
        with export_jobs_lock:
            export_jobs[job_id]['progress'] = {'current': current, 'total': total}

    def should_stop():
        with export_jobs_lock:
            return export_jobs[job_id]['status'] == 'stopping'

    with export_jobs_lock:
        if export_jobs[job_id]['status'] == 'starting':
            export_jobs[job_id]['status'] = 'running'

    try:
        output = export.run(progress_callback=progress, should_stop=should_stop)
    except Exception as e:
        logger.exception(f"Export job {job_id} failed")
        with export_jobs_lock:
            export_jobs[job_id]['status'] = 'failed'
            export_jobs[job_id]['error'] = str(e)
        return

    with export_jobs_lock:
        job = export_jobs[job_id]
        if output:
            job['status'] = 'completed'
            job['output'] = output
        elif export.error == 'stopped':
            job['status'] = 'stopped'
        else:
            job['status'] = 'failed'
            job['error'] = export.error


@app.route('/api/review/session/<session_id>/export', methods=['POST'])
def start_export(session_id):
    """Export the session's recordings side by side using its calibration."""
    session = _get_session(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404

    try:
        summary = _load_race(session.race)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if summary is None:
        return jsonify({'error': 'Race not found'}), 404
    if len(summary.videos) != len(summary.racers):
        return jsonify({'error': 'Race has no video for every racer'}), 400

    config = _config()
    readers = []
    try:
        for path in summary.video_paths():
            readers.append(_open_reader(path))
    except IOError as e:
        for reader in readers:
            reader.release()
        return jsonify({'error': str(e)}), 400

    job_id = str(uuid.uuid4())[:8]
    output_path = Path(config.export_dir) / f"{summary.name}-{job_id}.mp4"
    export = ExportSession(
        readers,
        session.clips(),
        _make_writer(output_path, config.export_fps),
        labels=session.racers,
        order=session.order,
        fps=config.export_fps,
        tile_size=config.tile_size,
    )

    with export_jobs_lock:
        export_jobs[job_id] = {
            'status': 'starting',
            'race': summary.name,
            'session_id': session_id,
            'synchronized': export.synchronized,
            'progress': {'current': 0, 'total': export.total_frames},
            'output': None,
            'error': None,
        }

    thread = threading.Thread(target=run_export_job, args=(job_id, export))
    thread.daemon = True
    thread.start()

    return jsonify({'job_id': job_id, 'status': 'starting'})


@app.route('/api/export/<job_id>')
def get_export_job(job_id):
    with export_jobs_lock:
        if job_id not in export_jobs:
            return jsonify({'error': 'Job not found'}), 404
        job = dict(export_jobs[job_id])
    return jsonify(job)


@app.route('/api/export/<job_id>/stop', methods=['POST'])
def stop_export_job(job_id):
    """Stop a running export (the job thread checks between frames)."""
    with export_jobs_lock:
        if job_id not in export_jobs:
            return jsonify({'error': 'Job not found'}), 404
        export_jobs[job_id]['status'] = 'stopping'
    return jsonify({'success': True})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s %(message)s')
    config = _config()
    print("Race review server")
    print(f"  Results: {config.results_dir}")
    print(f"  Exports: {config.export_dir}")
    app.run(host=config.host, port=config.port, debug=False)
