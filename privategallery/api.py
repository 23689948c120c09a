import os

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException

from .errors import GalleryError, ValidationError
from .folders import ROOT
from .service import Upload

api = Blueprint('api', __name__, url_prefix='/api')


def _service():
    return current_app.extensions['gallery']


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(value):
    if isinstance(value, bool):
        return value
    return str(value or '').lower() in ('1', 'true', 'yes', 'on')


def _send(full_path, record, download=False):
    return send_from_directory(os.path.dirname(full_path), os.path.basename(full_path),
                               mimetype=record.get('type'), as_attachment=download,
                               download_name=record.get('name'))


@api.app_errorhandler(GalleryError)
def handle_gallery_error(error):
    return jsonify(error.to_dict()), error.status_code


@api.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'error': error.description, 'kind': error.name.replace(' ', '')}), error.code


@api.route('/health')
def health():
    return jsonify({'status': 'ok'})


# --- Accounts ---

@api.route('/auth/register', methods=['POST'])
def register():
    """Creates an account with an empty root folder."""
    data = _json_body()
    user = _service().register(data.get('username'), data.get('email'), data.get('password'))
    return jsonify({'success': True, 'user': user}), 201


@api.route('/auth/login', methods=['POST'])
def login():
    data = _json_body()
    user = _service().login(data.get('username'), data.get('password'))
    return jsonify({'success': True, 'user': user})


@api.route('/users/<user_id>')
def get_user(user_id):
    """Returns the user's data document (folder tree and settings)."""
    return jsonify(_service().get_user_document(user_id))


@api.route('/users/<user_id>/email', methods=['PATCH'])
def update_email(user_id):
    data = _json_body()
    user = _service().update_email(user_id, data.get('email'))
    return jsonify({'success': True, 'user': user})


# --- Folders ---

@api.route('/folders', methods=['POST'])
def create_folder():
    data = _json_body()
    folder_id = _service().create_folder(data.get('userId'), data.get('folderName'),
                                         data.get('parentFolderId') or ROOT)
    return jsonify({'success': True, 'folderId': folder_id}), 201


@api.route('/folders/<folder_id>')
def list_folder(folder_id):
    """Returns a folder with its subfolders, file records and breadcrumb."""
    return jsonify(_service().list_folder(request.args.get('userId'), folder_id))


@api.route('/folders/<folder_id>', methods=['PATCH'])
def update_folder(folder_id):
    """Renames and/or moves a folder; both changes are saved together or not at all."""
    data = _json_body()
    name = (data.get('name') or '') if 'name' in data else None
    parent_id = (data.get('parentFolderId') or '') if 'parentFolderId' in data else None
    folder = _service().update_folder(data.get('userId'), folder_id, name, parent_id)
    return jsonify({'success': True, 'folder': folder})


@api.route('/folders/<folder_id>', methods=['DELETE'])
def delete_folder(folder_id):
    """Deletes a folder, its subfolders and every file inside them."""
    data = _json_body()
    _service().delete_folder(data.get('userId'), folder_id, data.get('parentFolderId'))
    return jsonify({'success': True})


# --- Files ---

@api.route('/files', methods=['POST'])
def upload_files():
    """Handles one or more uploads into a folder, reporting each failure by name."""
    user_id = request.form.get('userId')
    folder_id = request.form.get('folderId') or ROOT
    payloads = request.files.getlist('file') + request.files.getlist('files')
    uploads = [Upload(f.filename, f.stream, f.mimetype) for f in payloads]
    result = _service().upload_files(user_id, folder_id, uploads)
    if result['failed']:
        names = ', '.join(f['name'] for f in result['failed'])
        return jsonify({'error': f"{len(result['failed'])} file(s) failed: {names}", **result}), 400
    return jsonify({'success': True, 'message': f"{len(result['files'])} file(s) uploaded", **result}), 201


@api.route('/files/<file_id>')
def get_file(file_id):
    return jsonify(_service().get_file(file_id))


@api.route('/files/<file_id>', methods=['PATCH'])
def update_file(file_id):
    data = _json_body()
    record = _service().update_file(file_id, data.get('metadata', data))
    return jsonify({'success': True, 'file': record})


@api.route('/files/<file_id>', methods=['DELETE'])
def delete_file(file_id):
    data = _json_body()
    _service().delete_file(data.get('userId'), file_id, data.get('folderId'))
    return jsonify({'success': True})


@api.route('/files/<file_id>/move', methods=['POST'])
def move_file(file_id):
    data = _json_body()
    record = _service().move_file(data.get('userId'), file_id, data.get('folderId'))
    return jsonify({'success': True, 'file': record})


@api.route('/files/<file_id>/content')
def file_content(file_id):
    """Serves the original media, inline unless ?download=1."""
    full_path, record = _service().file_content(file_id)
    return _send(full_path, record, _flag(request.args.get('download')))


@api.route('/files/<file_id>/thumbnail')
def file_thumbnail(file_id):
    thumbnail_path = _service().thumbnail(file_id, current_app.config['THUMBNAIL_MAX_DIMENSION'])
    return send_from_directory(os.path.dirname(thumbnail_path), os.path.basename(thumbnail_path),
                               mimetype='image/webp')


@api.route('/search')
def search():
    args = request.args
    tags = [t.strip() for t in args.get('tags', '').split(',') if t.strip()]
    files = _service().search_files(
        args.get('userId'), args.get('folderId') or ROOT,
        query=args.get('q', ''), file_type=args.get('type', 'all'),
        date_from=args.get('dateFrom'), date_to=args.get('dateTo'), tags=tags,
        sort=args.get('sort', 'name'), order=args.get('order', 'asc'),
        recursive=_flag(args.get('recursive')),
    )
    return jsonify({'files': files, 'count': len(files)})


# --- Shares ---

@api.route('/shares', methods=['POST'])
def create_share():
    data = _json_body()
    share = _service().create_share(data.get('userId'), data.get('folderId'),
                                    _flag(data.get('protectedDownload')), request.host_url)
    return jsonify(share), 201


@api.route('/shares')
def list_shares():
    return jsonify(_service().list_shares(request.args.get('userId')))


@api.route('/shares/<share_id>')
def get_share(share_id):
    return jsonify(_service().get_share(share_id, request.args.get('token')))


@api.route('/shares/<share_id>/view')
def view_share(share_id):
    return jsonify(_service().view_share(share_id, request.args.get('token')))


@api.route('/shares/<share_id>/files/<file_id>')
def shared_file(share_id, file_id):
    """Serves a file through a share; downloads are refused on protected shares."""
    download = _flag(request.args.get('download'))
    full_path, record = _service().share_file(share_id, request.args.get('token'), file_id, download)
    return _send(full_path, record, download)


@api.route('/shares/<share_id>', methods=['DELETE'])
def delete_share(share_id):
    data = _json_body()
    _service().delete_share(share_id, data.get('userId'))
    return jsonify({'success': True})
