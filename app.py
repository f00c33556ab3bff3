#!/usr/bin/env python3
"""
WaniKani Cache - Flask Web Application
JSON API over the local WaniKani cache. Subject details can be pulled in
bulk through a server-sent-events stream that reports progress per subject.
"""

import os
import argparse
import logging
from typing import Any, List

from flask import Flask, Response, jsonify, request

# Check for test mode
TEST_MODE = os.environ.get("TEST_MODE", "0") == "1"

if not TEST_MODE:
    # Must run before wanikani_cache reads WK_CACHE_DB / WANIKANI_API_TOKEN
    from dotenv import load_dotenv
    load_dotenv()

from wanikani_cache import db, export, sync
from wanikani_cache.client import WaniKaniClient
from wanikani_cache.errors import (
    AuthError,
    HttpError,
    NetworkError,
    RateLimitError,
    ValidationError,
    WaniKaniError,
)
from wanikani_cache.events import ErrorEvent, to_sse

# Check for debug mode
DEBUG = os.environ.get("DEBUG", "0") == "1"

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["PACING_DELAY"] = sync.PACING_DELAY
# Tests put a fake client here; otherwise one is built per request from the environment.
app.config["WANIKANI_CLIENT"] = None


def get_client() -> Any:
    return app.config.get("WANIKANI_CLIENT") or WaniKaniClient()


def _split_param(name: str) -> List[str]:
    value = request.args.get(name, "", type=str)
    return [v.strip() for v in value.split(",") if v.strip()]


def _required_param(name: str, example: str) -> List[str]:
    values = _split_param(name)
    if not values:
        raise ValidationError(f"{name} query parameter required (e.g., ?{name}={example})")
    return values


@app.before_request
def initialize_app() -> None:
    """Initialize the database if needed."""
    if not hasattr(app, '_database_initialized'):
        try:
            if not db.is_db_initialized():
                db.init_db()
                logger.info("Database initialized on startup")
        except Exception:
            logger.exception("Database startup check failed")
        setattr(app, "_database_initialized", True)


@app.errorhandler(WaniKaniError)
def handle_wanikani_error(error: WaniKaniError) -> Any:
    if isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, AuthError):
        status = 401
    elif isinstance(error, RateLimitError):
        status = 429
    elif isinstance(error, (HttpError, NetworkError)):
        status = 502
    else:
        status = 500
    if status >= 500:
        logger.warning("Upstream failure on %s: %s", request.path, error)
    return jsonify({"error": str(error)}), status


@app.route('/health')
def health() -> Any:
    return jsonify({"status": "ok"})


@app.route('/api/user')
def api_user() -> Any:
    """Profile, cached for five minutes."""
    return jsonify(sync.get_profile(get_client()))


@app.route('/api/reviews')
def api_reviews() -> Any:
    """Reviews available right now, cached for one minute."""
    return jsonify(sync.get_reviews(get_client()))


@app.route('/api/subjects')
def api_subjects() -> Any:
    """Subjects by level(s), optionally filtered by type(s).

    Usage: /api/subjects?levels=1,2,3&types=kanji,vocabulary
    """
    levels = _required_param("levels", "1,2,3")
    return jsonify(sync.get_subjects(get_client(), levels, _split_param("types")))


@app.route('/api/subject-details/stream')
def api_subject_details_stream() -> Any:
    """Fetch subject details with SSE progress.

    Usage: /api/subject-details/stream?ids=1,2,3&force=false
    """
    ids = _required_param("ids", "1,2,3")
    force = request.args.get("force", "false").lower() == "true"

    # Validation and credential problems surface here as plain JSON errors.
    events = sync.synchronize_details(
        ids, get_client(), force=force, pacing_delay=app.config["PACING_DELAY"]
    )

    def generate() -> Any:
        try:
            for event in events:
                yield to_sse(event)
        except Exception as e:
            logger.exception("Subject detail stream failed")
            yield to_sse(ErrorEvent(message=str(e)))
        finally:
            events.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.route('/api/subject-details', methods=['POST'])
def api_fetch_subject_details() -> Any:
    """Fetch subject details without streaming.

    Body: { "ids": [1, 2, 3], "force": false }
    """
    data = request.get_json(silent=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("ids array required in request body")
    result = sync.fetch_details(
        ids, get_client(), force=bool(data.get("force", False)),
        pacing_delay=app.config["PACING_DELAY"],
    )
    return jsonify(result)


@app.route('/api/subject-details')
def api_cached_subject_details() -> Any:
    """Cached subject details by ids; never calls WaniKani."""
    ids = _required_param("ids", "1,2,3")
    return jsonify(sync.get_cached_details(ids))


@app.route('/api/sync', methods=['POST'])
def api_sync() -> Any:
    """Force the next reads of profile, reviews and subjects to hit WaniKani."""
    cleared = sync.force_resync()
    return jsonify({
        "message": "Cache cleared, next request will fetch fresh data",
        "cleared": cleared,
    })


@app.route('/api/filters')
def api_filters() -> Any:
    """Filter vocabulary for the cached subjects of the given levels."""
    corpus = sync.cached_corpus(_required_param("levels", "1,2,3"))
    return jsonify({
        "types": list(sync.SUBJECT_TYPES),
        "srs": list(export.SRS_BUCKETS),
        "parts_of_speech": export.parts_of_speech_vocabulary(corpus["details"].values()),
    })


@app.route('/api/export')
def api_export() -> Any:
    """Download cached subjects as CSV, context sentences CSV or a plain list.

    Usage: /api/export?levels=1,2&format=csv&types=vocabulary&srs=guru,master&pos=noun
    """
    levels = _required_param("levels", "1,2,3")
    fmt = request.args.get("format", "csv")
    if fmt not in export.EXPORT_FORMATS:
        raise ValidationError(f"Unknown export format: {fmt}")

    corpus = sync.cached_corpus(levels)
    criteria = export.FilterCriteria.from_params(
        request.args.get("types", ""), request.args.get("srs", ""), request.args.get("pos", "")
    )
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], criteria)
    body = export.render(fmt, chosen, corpus["details"])

    level_numbers = sync.validate_levels(levels)
    stem = {"csv": "export", "sentences": "context-sentences", "list": "list"}[fmt]
    extension = "txt" if fmt == "list" else "csv"
    filename = f"wanikani-{stem}-levels-{min(level_numbers)}-{max(level_numbers)}.{extension}"
    return Response(
        body,
        mimetype=export.EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='WaniKani Cache')
    parser.add_argument('--host', default='127.0.0.1', help='Host IP to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=int(os.environ.get('PORT', 3001)),
                        help='Port to bind to (default: 3001)')
    parser.add_argument('--pacing-delay', type=int,
                        help='Milliseconds between subject detail fetches (default: WK_PACING_DELAY_MS or 200)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    if args.debug:
        DEBUG = True

    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.pacing_delay is not None:
        app.config['PACING_DELAY'] = args.pacing_delay / 1000.0
    logger.info("Pacing delay between detail fetches: %.3fs", app.config['PACING_DELAY'])

    # Initialize database
    try:
        if not db.is_db_initialized():
            db.init_db()
            logger.info("Database initialized")
    except Exception:
        logger.exception("Database initialization failed")

    logger.info("Starting server on http://%s:%s", args.host, args.port)
    app.run(debug=DEBUG, host=args.host, port=args.port, threaded=True)
