"""
Backup listing routes - read-only views of installations and their backups.
"""

from flask import Blueprint, jsonify

from bucketkeeper import create_purge_engine, get_directory
from bucketkeeper.backup.purge import InstallationReport
from bucketkeeper.errors import DirectoryError


bp = Blueprint('backups', __name__, url_prefix='/api/installations')


@bp.route('/', methods=['GET'])
def list_installations():
    """
    Get every installation known to the cluster directory.

    Returns:
        JSON with installation ids
    """
    try:
        installations = get_directory().list_installations()
    except DirectoryError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({'installations': installations})


@bp.route('/<installation_id>/backups', methods=['GET'])
def list_installation_backups(installation_id):
    """
    Get the backups of one installation across every filesource.

    Returns:
        JSON with:
        - backups: name, filesource and parsed date (null when unknown), oldest first
        - errors: filesources that could not be listed
    """
    try:
        filesources = get_directory().list_filesources()
    except DirectoryError as e:
        return jsonify({'error': str(e)}), 503

    engine = create_purge_engine(dry_run=True)
    report = InstallationReport(installation_id=installation_id, dry_run=True)
    backups, _ = engine.collect_backups(installation_id, filesources, report)

    backups.sort(key=lambda b: (b.date is None, b.date.isoformat() if b.date else '', b.name))

    return jsonify({
        'installation_id': installation_id,
        'backups': [
            {
                'name': b.name,
                'filesource': b.filesource,
                'date': b.date.isoformat() if b.date else None
            }
            for b in backups
        ],
        'errors': report.errors
    })
