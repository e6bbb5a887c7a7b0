"""
================================================================================
MangaLink v1.0 - Context API
================================================================================
The presentation surface of the mapping engine: which work is displayed,
what every other platform knows about it, and the user actions on it.

Endpoints:
    POST   /api/context                    - navigate to a work
    GET    /api/context                    - current session state
    DELETE /api/context                    - navigate away
    POST   /api/context/refresh            - refresh one platform (or all)
    POST   /api/context/links              - save a manual link (slug or url)
    DELETE /api/context/links/<platform>   - drop links for a platform
    POST   /api/progress                   - record local reading progress

Mutating endpoints accept "wait": true to block until background discovery
for the context has finished.
================================================================================
"""

from flask import Blueprint, jsonify, request

from mangalink_app.log import log
from mangalink_app.mapping import NoContextError
from mangalink_app.storage import PersistenceError
from .common import WAIT_TIMEOUT, get_services, run_async
from .validators import (
    MAX_SLUG_LENGTH, MAX_URL_LENGTH,
    validate_fields, validate_platform_id, validate_titles, parse_units, parse_flag,
)

context_bp = Blueprint('context_api', __name__, url_prefix='/api')


@context_bp.errorhandler(NoContextError)
def _no_context(e):
    return jsonify({'error': str(e)}), 409


@context_bp.errorhandler(ValueError)
def _bad_value(e):
    return jsonify({'error': str(e)}), 400


@context_bp.errorhandler(PersistenceError)
def _persistence(e):
    log(f"❌ Store write failed: {e}")
    return jsonify({'error': 'Could not save changes'}), 500


def _snapshot(wait: bool):
    services = get_services()
    if wait:
        run_async(services.manager.wait_idle(WAIT_TIMEOUT), timeout=WAIT_TIMEOUT + 5)
    return run_async(services.manager.snapshot())


@context_bp.route('/context', methods=['POST'])
def set_context():
    """
    Navigate to a work.

    Request body:
        {
            "platform": "mangalib",
            "slug": "7965--chainsaw-man",
            "titles": ["Человек-бензопила", "Chainsaw Man"],   # optional
            "source_units": 180,                               # optional
            "wait": false                                      # optional
        }
    """
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('platform', str, 50), ('slug', str, MAX_SLUG_LENGTH)])
    if error:
        return jsonify({'error': error}), 400
    error = validate_platform_id(data['platform'])
    if error:
        return jsonify({'error': error}), 400
    titles, error = validate_titles(data.get('titles'))
    if error:
        return jsonify({'error': error}), 400
    source_units, error = parse_units(data.get('source_units'), 'source_units')
    if error:
        return jsonify({'error': error}), 400

    services = get_services()
    state = run_async(services.manager.set_context(
        data['platform'], data['slug'].strip(), titles=titles, source_units=source_units,
    ))
    if state is None:
        return jsonify({'error': 'Superseded by a newer navigation'}), 409
    return jsonify({'context': _snapshot(parse_flag(data.get('wait', False)))})


@context_bp.route('/context', methods=['GET'])
def get_context():
    return jsonify({'context': _snapshot(parse_flag(request.args.get('wait', False)))})


@context_bp.route('/context', methods=['DELETE'])
def clear_context():
    services = get_services()
    services.manager.navigate_away()
    return jsonify({'status': 'ok'})


@context_bp.route('/context/refresh', methods=['POST'])
def refresh():
    data = request.get_json(silent=True) or {}
    platform = data.get('platform')
    if platform is not None:
        error = validate_platform_id(platform)
        if error:
            return jsonify({'error': error}), 400

    services = get_services()
    refreshed = run_async(services.manager.refresh(platform))
    return jsonify({'refreshed': refreshed, 'context': _snapshot(parse_flag(data.get('wait', False)))})


@context_bp.route('/context/links', methods=['POST'])
def save_link():
    """
    Save a manual link.

    Request body:
        {"platform": "senkuro", "slug": "chainsaw-man"}
        or
        {"platform": "senkuro", "url": "https://senkuro.me/manga/chainsaw-man/chapters"}
    """
    data = request.get_json(silent=True) or {}
    error = validate_platform_id(data.get('platform'))
    if error:
        return jsonify({'error': error}), 400

    services = get_services()
    if data.get('url'):
        error = validate_fields(data, [('url', str, MAX_URL_LENGTH)])
        if error:
            return jsonify({'error': error}), 400
        resolution = run_async(services.manager.save_manual_link_from_url(data['platform'], data['url']))
    else:
        error = validate_fields(data, [('slug', str, MAX_SLUG_LENGTH)])
        if error:
            return jsonify({'error': error}), 400
        resolution = run_async(services.manager.save_manual_link(data['platform'], data['slug']))

    return jsonify({
        'resolution': resolution.to_dict(),
        'context': _snapshot(parse_flag(data.get('wait', False))),
    })


@context_bp.route('/context/links/<platform>', methods=['DELETE'])
def delete_link(platform: str):
    error = validate_platform_id(platform)
    if error:
        return jsonify({'error': error}), 400

    services = get_services()
    resolution = run_async(services.manager.delete_manual_link(platform))
    return jsonify({
        'resolution': resolution.to_dict(),
        'context': _snapshot(parse_flag(request.args.get('wait', False))),
    })


@context_bp.route('/progress', methods=['POST'])
def record_progress():
    """
    Record units consumed on a platform without a bookmark API.

    Request body:
        {"platform": "mangabuff", "slug": "chainsaw-man", "units": 42}
    """
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('platform', str, 50), ('slug', str, MAX_SLUG_LENGTH)])
    if error:
        return jsonify({'error': error}), 400
    error = validate_platform_id(data['platform'])
    if error:
        return jsonify({'error': error}), 400
    units, error = parse_units(data.get('units'), 'units')
    if error or units is None:
        return jsonify({'error': error or "Missing required field: units"}), 400

    services = get_services()
    run_async(services.manager.record_progress(data['platform'], data['slug'], units))
    return jsonify({'status': 'ok', 'units': units})
