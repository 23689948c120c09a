"""Application layer: sequences the per-document steps of every operation.

Each step is a read-modify-write of exactly one document (a user's data
document, the user directory, the share registry or one file record). Nothing
spans two documents atomically, so every multi-step operation is ordered to
leave a retryable state if it stops halfway:

- register: directory entry, then user document;
- upload: bytes, then file record, then the folder's ``files`` list;
- delete file: bytes and record, then the folder's ``files`` list;
- delete folder: every file in the subtree, then the user document with the
  subtree detached, then the shares that pointed into it.
"""
import logging
import os
from collections import namedtuple

from . import config, folders, media
from .errors import (GalleryError, InvalidCredentials, InvalidShare, IOFailure, NotFound,
                     PermissionDenied, UnsupportedType, UserNotFound, ValidationError)
from .files import FileCatalog, display_record, new_file_record
from .ids import new_id
from .search import filter_files, sort_files
from .shares import ShareRegistry
from .store import RecordStore
from .users import (UserDirectory, hash_password, new_user_entry, normalize_email,
                    validate_registration, verify_password)

logger = logging.getLogger(__name__)

Upload = namedtuple('Upload', ['filename', 'stream', 'content_type'])


def public_user(doc):
    return {'id': doc['id'], 'username': doc['username'], 'email': doc['email']}


class GalleryService:

    def __init__(self, data_dir, upload_dir, public_url=''):
        self.store = RecordStore(data_dir)
        for prefix in (config.USER_DOC_PREFIX, config.FILE_DOC_PREFIX):
            self.store.ensure_container(os.path.join(self.store.root, prefix))
        self.directory = UserDirectory(self.store)
        self.shares = ShareRegistry(self.store)
        self.catalog = FileCatalog(self.store, upload_dir)
        self.public_url = public_url

    # --- User documents ---

    def _user_key(self, user_id):
        if not user_id:
            raise ValidationError("User id required")
        return f"{config.USER_DOC_PREFIX}/{user_id}"

    def load_user(self, user_id):
        try:
            return self.store.read(self._user_key(user_id))
        except NotFound:
            raise UserNotFound(f"User {user_id} not found")

    def _update_user(self, user_id, mutate):
        try:
            return self.store.update(self._user_key(user_id), mutate)
        except UserNotFound:
            raise
        except NotFound as e:
            if not self.store.exists(self._user_key(user_id)):
                raise UserNotFound(f"User {user_id} not found") from e
            raise

    # --- Accounts ---

    def register(self, username, email, password):
        username = (username or '').strip()
        email = normalize_email(email)
        validate_registration(username, email, password)
        user_id = new_id()
        password_hash = hash_password(password)
        self.directory.append(new_user_entry(user_id, username, email))
        doc = folders.new_user_document(user_id, username, email, password_hash)
        self.store.write(self._user_key(user_id), doc)
        self.catalog.user_dir(user_id)
        return public_user(doc)

    def login(self, username, password):
        if not username or not password:
            raise ValidationError("Username and password required")
        entry = self.directory.find_by_username(username)
        if entry is None:
            raise InvalidCredentials("Invalid username or password")
        doc = self.load_user(entry['id'])
        if not verify_password(password, doc.get('passwordHash')):
            raise InvalidCredentials("Invalid username or password")
        return public_user(doc)

    def get_user_document(self, user_id):
        doc = self.load_user(user_id)
        doc.pop('passwordHash', None)
        return doc

    def update_email(self, user_id, new_email):
        self.load_user(user_id)
        entry = self.directory.update_email(user_id, new_email)

        def mutate(doc):
            doc['email'] = entry['email']

        doc, _ = self._update_user(user_id, mutate)
        return public_user(doc)

    # --- Folders ---

    def create_folder(self, user_id, name, parent_id=folders.ROOT):
        def mutate(doc):
            return folders.create_folder(doc, name, parent_id or folders.ROOT)

        _, folder_id = self._update_user(user_id, mutate)
        logger.info("User %s created folder %s under %s", user_id, folder_id, parent_id)
        return folder_id

    def delete_folder(self, user_id, folder_id, parent_id=None):
        if not folder_id:
            raise ValidationError("Folder id required")

        def mutate(doc):
            return folders.delete_folder(doc, folder_id, parent_id,
                                         delete_file=self.catalog.delete_physical_and_record)

        doc, removed = self._update_user(user_id, mutate)
        # Also catches shares left behind by an earlier call that stopped after the write.
        stale = {share['folderId'] for share in self.shares.list_by_owner(user_id)} - set(doc['folders'])
        self.shares.delete_for_folders(user_id, stale)
        return True

    def rename_folder(self, user_id, folder_id, name):
        return self.update_folder(user_id, folder_id, name=name or '')

    def update_folder(self, user_id, folder_id, name=None, new_parent_id=None):
        """Renames and/or moves a folder in one write; if either change is invalid, neither is saved."""
        if name is None and new_parent_id is None:
            raise ValidationError("Nothing to update")

        def mutate(doc):
            if new_parent_id is not None:
                folders.move_folder(doc, folder_id, new_parent_id)
            if name is not None:
                folders.rename_folder(doc, folder_id, name)
            return dict(folders.get_folder(doc, folder_id))

        _, folder = self._update_user(user_id, mutate)
        return folder

    def move_folder(self, user_id, folder_id, new_parent_id):
        self.update_folder(user_id, folder_id, new_parent_id=new_parent_id or '')
        return True

    def _records(self, file_ids):
        records = []
        for file_id in file_ids:
            record = self.catalog.find(file_id)
            if record is None:
                logger.warning("Folder lists missing file %s", file_id)
                continue
            records.append(record)
        return records

    def list_folder(self, user_id, folder_id=folders.ROOT):
        doc = self.load_user(user_id)
        listing = folders.list_folder(doc, folder_id or folders.ROOT)
        listing['files'] = self._records(listing['files'])
        listing['path'] = folders.folder_path(doc, folder_id or folders.ROOT)
        return listing

    # --- Files ---

    def upload_files(self, user_id, folder_id, uploads):
        """Stores each upload and files it into ``folder_id``.

        Returns {'files': [created ids], 'failed': [{'name', 'kind', 'error'}]}.
        A rejected payload never reaches the disk.
        """
        if not uploads:
            raise ValidationError("No files provided")
        doc = self.load_user(user_id)
        folders.get_folder(doc, folder_id)
        created, failed = [], []

        for upload in uploads:
            name = os.path.basename(upload.filename or '')
            try:
                created.append(self._store_upload(user_id, folder_id, name, upload))
            except GalleryError as e:
                logger.warning("Upload of '%s' failed: %s", name, e.message)
                failed.append({'name': name, 'kind': e.kind, 'error': e.message})

        if created:
            def mutate(doc):
                for file_id in created:
                    folders.add_file_to_folder(doc, folder_id, file_id)

            try:
                self._update_user(user_id, mutate)
            except GalleryError:
                logger.error("Could not file %d upload(s) into folder %s, removing them", len(created), folder_id)
                for file_id in created:
                    self.catalog.delete_physical_and_record(file_id)
                raise
        return {'files': created, 'failed': failed}

    def _store_upload(self, user_id, folder_id, name, upload):
        if not name:
            raise ValidationError("No selected file")
        if not media.allowed_file(name):
            raise UnsupportedType(f"File type not allowed: {media.get_extension(name) or name}")
        file_id = new_id()
        path, size = self.catalog.store_bytes(user_id, file_id, name, upload.stream)
        record = new_file_record(
            file_id, user_id, folder_id, name,
            media.guess_mime_type(name, upload.content_type), size, path,
            media.extract_metadata(os.path.join(self.catalog.upload_dir, path), name),
        )
        try:
            self.catalog.create(record)
        except GalleryError:
            try:
                os.remove(self.catalog.full_path(record))
            except FileNotFoundError:
                pass
            raise
        return file_id

    def get_file(self, file_id):
        if not file_id:
            raise ValidationError("File id required")
        return self.catalog.get(file_id)

    def update_file(self, file_id, fields):
        if not file_id:
            raise ValidationError("File id required")
        return self.catalog.update(file_id, fields)

    def delete_file(self, user_id, file_id, folder_id=None):
        """Removes a file from its folder and deletes it. Repeating it is harmless."""
        if not file_id:
            raise ValidationError("File id required")
        doc = self.load_user(user_id)
        record = self.catalog.find(file_id)
        if record is not None and record.get('ownerId', user_id) != user_id:
            raise PermissionDenied("File belongs to another user")
        self.catalog.delete_physical_and_record(file_id)

        def mutate(doc):
            candidates = [folder_id, record.get('folderId') if record else None,
                          folders.find_file_folder(doc, file_id)]
            for candidate in candidates:
                if candidate and file_id in doc['folders'].get(candidate, {}).get('files', []):
                    folders.remove_file_from_folder(doc, candidate, file_id)

        if folders.find_file_folder(doc, file_id) is not None:
            self._update_user(user_id, mutate)
        return True

    def move_file(self, user_id, file_id, to_folder_id):
        """Moves a file between folders: user document first, then the record's folderId."""
        record = self.catalog.get(file_id)
        if record.get('ownerId', user_id) != user_id:
            raise PermissionDenied("File belongs to another user")

        def mutate(doc):
            folders.get_folder(doc, to_folder_id)
            source = folders.find_file_folder(doc, file_id)
            if source is None:
                raise NotFound(f"File {file_id} is not in any folder")
            if source != to_folder_id:
                folders.remove_file_from_folder(doc, source, file_id)
                folders.add_file_to_folder(doc, to_folder_id, file_id)

        self._update_user(user_id, mutate)
        return self.catalog.set_folder(file_id, to_folder_id)

    def file_content(self, file_id):
        """(absolute path, record) of a file's bytes."""
        record = self.catalog.get(file_id)
        full_path = self.catalog.full_path(record)
        if not os.path.isfile(full_path):
            logger.error("Record %s points at missing bytes %s", file_id, full_path)
            raise NotFound("File not found on disk")
        return full_path, record

    def thumbnail(self, file_id, max_dimension=config.THUMBNAIL_MAX_DIMENSION):
        full_path, record = self.file_content(file_id)
        thumbnail_path = media.generate_thumbnail(full_path, record['name'], max_dimension)
        if not thumbnail_path:
            raise NotFound("No thumbnail available for this file")
        return thumbnail_path

    def search_files(self, user_id, folder_id=folders.ROOT, query='', file_type='all',
                     date_from=None, date_to=None, tags=None, sort='name', order='asc',
                     recursive=False):
        doc = self.load_user(user_id)
        folder_id = folder_id or folders.ROOT
        folders.get_folder(doc, folder_id)
        scope = folders.subtree(doc, folder_id) if recursive else [folder_id]
        file_ids = [f for current in scope for f in doc['folders'][current].get('files', [])]
        matched = filter_files(self._records(file_ids), query, file_type, date_from, date_to, tags)
        return sort_files(matched, sort, order)

    # --- Shares ---

    def create_share(self, user_id, folder_id, protected_download=False, base_url=''):
        if not user_id or not folder_id:
            raise ValidationError("User and folder are required")
        doc = self.load_user(user_id)
        folders.get_folder(doc, folder_id)
        return self.shares.create(user_id, folder_id, protected_download, self.public_url or base_url)

    def get_share(self, share_id, token):
        return self.shares.resolve(share_id, token)

    def list_shares(self, user_id):
        if not user_id:
            raise ValidationError("User id required")
        return self.shares.list_by_owner(user_id)

    def delete_share(self, share_id, user_id):
        if not share_id or not user_id:
            raise ValidationError("Share and user are required")
        self.shares.delete(share_id, user_id)
        return True

    def _shared_folder(self, share_id, token):
        share = self.shares.resolve(share_id, token)
        try:
            doc = self.load_user(share['userId'])
            folders.get_folder(doc, share['folderId'])
        except NotFound:
            logger.warning("Share %s points at a folder that no longer exists", share_id)
            raise InvalidShare("The shared folder no longer exists")
        return share, doc

    def view_share(self, share_id, token):
        """Everything needed to render a shared folder, without owner secrets."""
        share, doc = self._shared_folder(share_id, token)
        listing = folders.list_folder(doc, share['folderId'])
        return {
            'share': {k: share[k] for k in ('shareId', 'folderId', 'protectedDownload', 'createdAt')},
            'owner': {'username': doc['username']},
            'folder': listing['folder'],
            'subfolders': listing['subfolders'],
            'files': [display_record(r) for r in self._records(listing['files'])],
        }

    def share_file(self, share_id, token, file_id, download=False):
        """(absolute path, record) of a file reachable through a share."""
        share, doc = self._shared_folder(share_id, token)
        home = folders.find_file_folder(doc, file_id)
        if home is None or home not in folders.subtree(doc, share['folderId']):
            raise NotFound("File is not part of this share")
        if download and share.get('protectedDownload'):
            raise PermissionDenied("Downloads are disabled for this share")
        return self.file_content(file_id)

    # --- Integrity ---

    def check_library(self):
        """Reports tree problems, dangling file references and misplaced records."""
        report = {'users': 0, 'problems': []}
        for user_id in self.store.keys(config.USER_DOC_PREFIX):
            report['users'] += 1
            try:
                doc = self.store.read(self._user_key(user_id))
            except (NotFound, IOFailure) as e:
                report['problems'].append(f"user {user_id}: unreadable document ({e.message})")
                continue
            for problem in folders.check_tree(doc):
                report['problems'].append(f"user {user_id}: {problem}")
            for folder_id, folder in doc.get('folders', {}).items():
                for file_id in folder.get('files', []):
                    record = self.catalog.find(file_id)
                    if record is None:
                        report['problems'].append(f"user {user_id}: folder {folder_id} lists missing file {file_id}")
                    elif record.get('folderId') != folder_id:
                        report['problems'].append(
                            f"user {user_id}: file {file_id} records folder {record.get('folderId')} but sits in {folder_id}")
        for problem in report['problems']:
            logger.warning("Integrity: %s", problem)
        return report
