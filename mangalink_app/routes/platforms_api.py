"""
================================================================================
MangaLink v1.0 - Platforms & Maintenance API
================================================================================
Endpoints:
    GET  /api/platforms                  - registered platforms with health
    GET  /api/platforms/<id>/search?q=   - free-text lookup (top 5)
    PUT  /api/platforms/<id>/token       - store or clear a bearer token
    POST /api/maintenance/flush          - drop expired store entries now
    GET  /api/health                     - database + platform status
    GET  /api/logs                       - drain the live log queue
================================================================================
"""

from flask import Blueprint, jsonify, request

from mangalink_app.database import check_database_connection, get_database_stats
from mangalink_app.log import log, drain_messages
from mangalink_app.storage import PersistenceError
from .common import get_services, run_async
from .validators import validate_platform_id

platforms_bp = Blueprint('platforms_api', __name__, url_prefix='/api')


@platforms_bp.route('/platforms')
def list_platforms():
    services = get_services()
    return jsonify({'platforms': services.registry.get_health_info()})


@platforms_bp.route('/platforms/<platform>/search')
def search_platform(platform: str):
    error = validate_platform_id(platform)
    if error:
        return jsonify({'error': error}), 400
    query = (request.args.get('q') or '').strip()
    if not query:
        return jsonify({'error': 'Missing query parameter: q'}), 400
    if len(query) > 200:
        return jsonify({'error': 'Query too long'}), 400

    services = get_services()
    adapter = services.registry.get(platform)
    try:
        candidates = run_async(services.manager.search_platform(platform, query))
    except Exception as e:
        log(f"⚠️ Search on {platform} failed: {e}")
        return jsonify({'error': str(e)}), 500

    return jsonify({'results': [
        dict(candidate.to_dict(), url=adapter.link(candidate.slug)) for candidate in candidates
    ]})


@platforms_bp.route('/platforms/<platform>/token', methods=['PUT'])
def set_token(platform: str):
    error = validate_platform_id(platform)
    if error:
        return jsonify({'error': error}), 400
    data = request.get_json(silent=True) or {}
    token = data.get('token')
    if token is not None and not isinstance(token, str):
        return jsonify({'error': "Field 'token' must be str"}), 400

    services = get_services()
    try:
        run_async(services.manager.set_token(platform, token))
    except PersistenceError as e:
        log(f"❌ Token save failed: {e}")
        return jsonify({'error': 'Could not save token'}), 500
    log(f"🔑 Token {'saved' if token else 'cleared'} for {platform}")
    return jsonify({'status': 'ok'})


@platforms_bp.route('/maintenance/flush', methods=['POST'])
def flush_expired():
    services = get_services()
    try:
        removed = services.manager.flush_expired()
    except PersistenceError as e:
        return jsonify({'error': str(e)}), 500
    return jsonify({'removed': removed})


@platforms_bp.route('/health')
def health():
    services = get_services()
    db_ok = check_database_connection(services.engine)
    payload = {
        'status': 'ok' if db_ok else 'degraded',
        'database': db_ok,
        'platforms': services.registry.keys(),
        'sweeps': services.sweeper.runs if services.sweeper else 0,
    }
    if db_ok:
        payload['stats'] = get_database_stats(services.session_factory)
    return jsonify(payload), (200 if db_ok else 503)


@platforms_bp.route('/logs')
def logs():
    return jsonify({'messages': drain_messages()})
