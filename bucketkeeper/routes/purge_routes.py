"""
Purge routes - dry-run previews and the status of scheduled purges.

Live purges only run from the scheduler or `flask purge --live`.
"""

from flask import Blueprint, jsonify, request

from bucketkeeper import create_purge_engine, get_directory
from bucketkeeper.errors import DirectoryError
from bucketkeeper.scheduler import get_last_summary, get_scheduled_jobs, is_scheduler_running


bp = Blueprint('purge', __name__, url_prefix='/api/purge')


@bp.route('/preview', methods=['GET'])
def preview_purge():
    """
    Compute the purge plan without deleting anything.

    Query params:
        - installation: Limit the preview to one installation

    Returns:
        JSON summary (see PurgeEngine.enforce_all) or one installation report
    """
    engine = create_purge_engine(dry_run=True)
    installation_id = request.args.get('installation')

    if not installation_id:
        return jsonify(engine.enforce_all())

    try:
        filesources = get_directory().list_filesources()
    except DirectoryError as e:
        return jsonify({'error': str(e)}), 503

    report = engine.purge_installation(installation_id, filesources)
    result = report.to_dict()
    result['logs'] = engine.logs
    return jsonify(result)


@bp.route('/last', methods=['GET'])
def last_purge():
    """
    Get the summary of the most recent scheduled or CLI purge.
    """
    summary = get_last_summary()
    if summary is None:
        return jsonify({'error': 'No purge has run yet'}), 404
    return jsonify(summary)


@bp.route('/scheduler', methods=['GET'])
def scheduler_status():
    return jsonify({
        'status': 'running' if is_scheduler_running() else 'stopped',
        'jobs': get_scheduled_jobs()
    })
