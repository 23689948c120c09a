"""File metadata records and the bytes they describe.

One JSON document per uploaded file, keyed by file id, separate from the
owner's folder tree. Bytes live under ``<upload root>/<userId>/``; the record
keeps that location relative to the upload root in ``path``.

Ordering rules:
- upload: bytes are durably stored before the record is written;
- delete: bytes go first (absence tolerated), then the record. A crash in
  between leaves a record pointing at nothing, which is logged and accepted.
"""
import logging
import os
import shutil
import tempfile

from werkzeug.utils import secure_filename

from . import config, media
from .errors import IOFailure, NotFound, ValidationError
from .folders import now

logger = logging.getLogger(__name__)

PROTECTED_FIELDS = {'id', 'path', 'size', 'type', 'folderId', 'createdAt', 'modifiedAt', 'ownerId'}
# What a share viewer may see of a record.
DISPLAY_FIELDS = ('id', 'name', 'type', 'size', 'createdAt', 'modifiedAt', 'description', 'tags',
                  'notes', 'captureDate', 'camera', 'cameraSettings', 'dimensions', 'duration',
                  'format', 'mediaType')


def display_record(record):
    return {key: record[key] for key in DISPLAY_FIELDS if key in record}


def normalize_tags(tags):
    """Set semantics stored as a list: stripped, non-empty, first occurrence kept."""
    if isinstance(tags, str):
        tags = tags.split(',')
    if not isinstance(tags, (list, tuple)):
        raise ValidationError("Tags must be a list of strings")
    result = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def new_file_record(file_id, owner_id, folder_id, name, mime_type, size, path, enrichment=None):
    stamp = now()
    record = {
        'id': file_id,
        'ownerId': owner_id,
        'name': name,
        'type': mime_type,
        'size': size,
        'path': path,
        'createdAt': stamp,
        'modifiedAt': stamp,
        'folderId': folder_id,
        'description': '',
        'tags': [],
        'notes': '',
    }
    for key, value in (enrichment or {}).items():
        record.setdefault(key, value)
    return record


class FileCatalog:

    def __init__(self, store, upload_dir, prefix=config.FILE_DOC_PREFIX):
        self.store = store
        self.upload_dir = os.path.abspath(upload_dir)
        self.prefix = prefix
        self.store.ensure_container(self.upload_dir)

    def _key(self, file_id):
        return f"{self.prefix}/{file_id}"

    # --- Physical storage ---

    def user_dir(self, user_id):
        path = os.path.join(self.upload_dir, user_id)
        self.store.ensure_container(path)
        return path

    def full_path(self, record):
        """Absolute location of a record's bytes, confined to the upload root."""
        full_path = os.path.abspath(os.path.join(self.upload_dir, record.get('path', '')))
        if not full_path.startswith(self.upload_dir + os.sep):
            raise ValidationError("Stored path points outside the upload directory")
        return full_path

    def store_bytes(self, user_id, file_id, filename, stream):
        """Writes an upload to a temp file, fsyncs and renames it into place.

        Returns (relative path, size in bytes).
        """
        safe_name = secure_filename(filename) or 'file'
        directory = self.user_dir(user_id)
        stored_name = f"{file_id}_{safe_name}"
        final_path = os.path.join(directory, stored_name)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.upload_', suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as buffer:
                shutil.copyfileobj(stream, buffer)
                buffer.flush()
                os.fsync(buffer.fileno())
            os.replace(tmp_path, final_path)
        except OSError as e:
            logger.error("Error saving upload %s: %s", final_path, e)
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise IOFailure(f"Could not store file '{filename}'") from e
        size = os.path.getsize(final_path)
        return os.path.relpath(final_path, self.upload_dir).replace('\\', '/'), size

    def _remove_bytes(self, record):
        full_path = self.full_path(record)
        for path in (full_path, media.get_thumbnail_path(full_path)):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise IOFailure(f"Could not delete {os.path.basename(path)}: {e}") from e

    # --- Records ---

    def create(self, record):
        """Persists a record whose bytes are already stored. Returns its id."""
        if not os.path.isfile(self.full_path(record)):
            raise IOFailure(f"Refusing to record metadata for missing bytes of {record['id']}")
        self.store.write(self._key(record['id']), record)
        return record['id']

    def get(self, file_id):
        try:
            return self.store.read(self._key(file_id))
        except NotFound:
            raise NotFound(f"File {file_id} not found")

    def find(self, file_id):
        try:
            return self.get(file_id)
        except NotFound:
            return None

    def update(self, file_id, fields):
        """Merges ``fields`` onto the record and refreshes ``modifiedAt``."""
        if not isinstance(fields, dict):
            raise ValidationError("Metadata must be an object")
        protected = PROTECTED_FIELDS.intersection(fields)
        if protected:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(protected))}")
        patch = dict(fields)
        if 'tags' in patch:
            patch['tags'] = normalize_tags(patch['tags'])
        if 'name' in patch:
            patch['name'] = str(patch['name']).strip()
            if not patch['name']:
                raise ValidationError("File name cannot be empty")

        def mutate(record):
            record.update(patch)
            record['modifiedAt'] = now()

        try:
            record, _ = self.store.update(self._key(file_id), mutate)
        except NotFound:
            raise NotFound(f"File {file_id} not found")
        return record

    def set_folder(self, file_id, folder_id):
        def mutate(record):
            record['folderId'] = folder_id
            record['modifiedAt'] = now()

        record, _ = self.store.update(self._key(file_id), mutate)
        return record

    def delete_physical_and_record(self, file_id):
        """Deletes bytes, thumbnail and record. Already-absent parts are not errors."""
        record = self.find(file_id)
        if record is None:
            logger.info("File %s already deleted", file_id)
            return False
        self._remove_bytes(record)
        self.store.delete(self._key(file_id))
        logger.info("Deleted file %s (%s)", file_id, record.get('name'))
        return True

    def all_ids(self):
        return self.store.keys(self.prefix)
