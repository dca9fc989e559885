#!/usr/bin/env python3
"""
Vocabulary SRS - Flask Web Application
JSON API over the spaced repetition scheduler: review submission, term
discovery, due lists and progress statistics.
"""

import os
import logging
import argparse
from typing import Any, Dict, List

from flask import Flask, request, session, jsonify

from vocab_srs import db
from vocab_srs.errors import ConflictError, NotFoundError, ValidationError
from vocab_srs.quality import check_count, describe_quality, validate_quality
from vocab_srs.structured import ExerciseOutcome

# Check for debug mode
DEBUG = os.environ.get("DEBUG", "0") == "1"
DEFAULT_DUE_LIMIT = 20
MAX_DUE_LIMIT = 100

logger = logging.getLogger("vocab_srs.app")

app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['DUE_LIMIT'] = DEFAULT_DUE_LIMIT
app.config['AUTO_DISCOVER'] = db.AUTO_DISCOVER


@app.before_request
def initialize_app() -> None:
    """Initialize the database if needed."""
    if not hasattr(app, '_database_initialized'):
        if not db.is_db_initialized():
            db.init_db()
            logger.info("Database initialized on startup")
        setattr(app, "_database_initialized", True)


@app.before_request
def ensure_username() -> None:
    """Ensure username is set in session."""
    if 'username' not in session:
        session['username'] = 'default_user'


@app.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError) -> Any:
    return jsonify({'status': 'error', 'message': str(e)}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(e: NotFoundError) -> Any:
    return jsonify({'status': 'error', 'message': str(e)}), 404


@app.errorhandler(ConflictError)
def handle_conflict(e: ConflictError) -> Any:
    return jsonify({'status': 'error', 'message': str(e)}), 409


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _term_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("termId must be a non-empty string")
    return value


def _due_limit() -> int:
    raw = request.args.get('limit', type=int)
    if raw is None:
        raw = app.config['DUE_LIMIT']
    return min(max(1, raw), MAX_DUE_LIMIT)


@app.route('/api/srs/due')
def api_due_terms() -> Any:
    """Terms due for review, most overdue first."""
    limit = _due_limit()
    states = db.list_due_terms(session['username'], limit=limit)
    logger.info("Fetched due terms: user=%s count=%d limit=%d", session['username'], len(states), limit)
    return jsonify({'status': 'success', 'terms': [s.to_dict() for s in states]})


@app.route('/api/srs/stats')
def api_stats() -> Any:
    """Overall progress statistics."""
    stats = db.get_user_stats(session['username'])
    return jsonify({'status': 'success', 'stats': stats})


@app.route('/api/srs/review', methods=['POST'])
def api_review() -> Any:
    """Record a review whose quality (0-5) was already derived by the client."""
    data = _json_body()
    term_id = data.get('termId')
    if not term_id:
        raise ValidationError("termId is required")
    if data.get('quality') is None:
        raise ValidationError("quality is required")
    quality = validate_quality(data['quality'])
    response_time_ms = data.get('responseTimeMs')
    check_count('responseTimeMs', response_time_ms)

    state = db.submit_review(
        session['username'],
        _term_id(term_id),
        quality,
        response_time_ms=response_time_ms,
        auto_discover=app.config['AUTO_DISCOVER'],
    )
    return jsonify({
        'status': 'success',
        'quality': quality,
        'feedback': describe_quality(quality),
        'progress': state.to_dict(),
    })


@app.route('/api/srs/exercise', methods=['POST'])
def api_exercise() -> Any:
    """Record a raw exercise result; the server derives the quality."""
    data = _json_body()
    term_ids: List[Any] = data.get('termIds') or ([data['termId']] if data.get('termId') else [])
    if not isinstance(term_ids, list) or not term_ids:
        raise ValidationError("termIds is required")
    raw_outcome = data.get('outcome')
    if not isinstance(raw_outcome, dict):
        raise ValidationError("outcome is required")
    outcome = ExerciseOutcome.from_dict(raw_outcome)

    quality, states = db.submit_exercise_outcome(
        session['username'],
        [_term_id(t) for t in term_ids],
        outcome,
        auto_discover=app.config['AUTO_DISCOVER'],
    )
    return jsonify({
        'status': 'success',
        'quality': quality,
        'feedback': describe_quality(quality),
        'is_correct': quality >= 3,
        'progress': [s.to_dict() for s in states],
    })


@app.route('/api/srs/discover', methods=['POST'])
def api_discover() -> Any:
    """Start tracking a term on first exposure. No-op if already tracked."""
    data = _json_body()
    term_id = data.get('termId')
    if not term_id:
        raise ValidationError("termId is required")
    state = db.discover_term(session['username'], _term_id(term_id))
    return jsonify({'status': 'success', 'progress': state.to_dict()})


@app.route('/api/srs/term/<term_id>')
def api_term(term_id: str) -> Any:
    state = db.get_term_progress(session['username'], term_id)
    return jsonify({'status': 'success', 'progress': state.to_dict()})


@app.route('/api/srs/term/<term_id>/history')
def api_term_history(term_id: str) -> Any:
    limit = min(max(1, request.args.get('limit', 50, type=int)), MAX_DUE_LIMIT)
    history = db.get_review_history(session['username'], term_id, limit=limit)
    return jsonify({'status': 'success', 'history': history})


@app.route('/api/srs/term/<term_id>/reset', methods=['POST'])
def api_term_reset(term_id: str) -> Any:
    state = db.reset_term_progress(session['username'], term_id)
    return jsonify({'status': 'success', 'progress': state.to_dict()})


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Vocabulary SRS API')
    parser.add_argument('--host', default='127.0.0.1', help='Host IP to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=5000, help='Port to bind to (default: 5000)')
    parser.add_argument('--due-limit', type=int, default=DEFAULT_DUE_LIMIT,
                        help='Default number of due terms returned (default: 20)')
    parser.add_argument('--auto-discover', action='store_true',
                        help='Start tracking unknown terms when a review arrives for them')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    if args.debug:
        DEBUG = True

    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app.config['DUE_LIMIT'] = args.due_limit
    if args.auto_discover:
        app.config['AUTO_DISCOVER'] = True

    if not db.is_db_initialized():
        db.init_db()
        logger.info("Database initialized")

    logger.info("Starting server on http://%s:%d", args.host, args.port)
    app.run(debug=DEBUG, host=args.host, port=args.port)
