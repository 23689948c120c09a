"""Folder tree of one user's data document.

``doc['folders']`` maps folder id to a folder record::

    {'id', 'name', 'files': [fileId], 'subfolders': [folderId],
     'createdAt', 'modifiedAt'}

The parent -> child edge in ``subfolders`` is the only link; there is no
stored back-reference, so parents are found by scanning. Every folder except
``root`` appears in exactly one ``subfolders`` list and every file id in
exactly one ``files`` list.

All functions mutate the loaded document in place. Persisting it is the
caller's job (one read-modify-write per operation).
"""
import logging
from datetime import datetime

from . import config
from .errors import NotFound, ValidationError
from .ids import new_id

logger = logging.getLogger(__name__)

ROOT = config.ROOT_FOLDER_ID
MAX_FOLDER_NAME = 255


def now():
    return datetime.now().isoformat()


def new_folder(folder_id, name):
    stamp = now()
    return {
        'id': folder_id,
        'name': name,
        'files': [],
        'subfolders': [],
        'createdAt': stamp,
        'modifiedAt': stamp,
    }


def new_user_document(user_id, username, email, password_hash):
    """A fresh data document holding only the root folder."""
    return {
        'id': user_id,
        'username': username,
        'email': email,
        'passwordHash': password_hash,
        'createdAt': now(),
        'folders': {ROOT: new_folder(ROOT, config.ROOT_FOLDER_NAME)},
        'settings': dict(config.DEFAULT_SETTINGS),
    }


def clean_folder_name(name):
    name = (name or '').strip()
    if not name:
        raise ValidationError("Folder name not provided")
    if len(name) > MAX_FOLDER_NAME:
        raise ValidationError("Folder name too long")
    if '/' in name or '\\' in name:
        raise ValidationError("Folder name may not contain slashes")
    return name


def get_folder(doc, folder_id):
    folder = doc.get('folders', {}).get(folder_id)
    if folder is None:
        raise NotFound(f"Folder {folder_id} not found")
    folder.setdefault('files', [])
    folder.setdefault('subfolders', [])
    return folder


def _touch(folder):
    folder['modifiedAt'] = now()


def create_folder(doc, name, parent_id=ROOT, folder_id=None):
    """Adds an empty folder under ``parent_id`` and returns its id.

    A parent that does not exist is rejected; no placeholder is fabricated.
    """
    name = clean_folder_name(name)
    parent = get_folder(doc, parent_id or ROOT)
    folder_id = folder_id or new_id()
    doc['folders'][folder_id] = new_folder(folder_id, name)
    parent['subfolders'].append(folder_id)
    _touch(parent)
    return folder_id


def find_parent(doc, folder_id):
    for candidate_id, folder in doc.get('folders', {}).items():
        if folder_id in folder.get('subfolders', []):
            return candidate_id
    return None


def find_file_folder(doc, file_id):
    for folder_id, folder in doc.get('folders', {}).items():
        if file_id in folder.get('files', []):
            return folder_id
    return None


def subtree(doc, folder_id):
    """Ids of ``folder_id`` and all its descendants, parents before children.

    Uses an explicit stack so depth is bounded by memory, not recursion
    limits. Ids listed as children but missing from ``doc['folders']`` are
    skipped, and each folder is visited once even if the tree is malformed.
    """
    folders = doc.get('folders', {})
    if folder_id not in folders:
        return []
    order = []
    seen = set()
    stack = [folder_id]
    while stack:
        current = stack.pop()
        if current in seen or current not in folders:
            continue
        seen.add(current)
        order.append(current)
        stack.extend(reversed(folders[current].get('subfolders', [])))
    return order


def delete_folder(doc, folder_id, parent_id=None, delete_file=None):
    """Deletes a folder with all descendants and files. Returns the removed ids.

    Order: every file in the subtree is deleted through ``delete_file``
    (deepest folders first), then the folder is detached from its parent,
    then the subtree's folder records are dropped. If a file deletion raises,
    the document is left untouched, the folder stays attached and the call
    can be repeated. Deleting an absent folder is a no-op apart from cleaning
    a dangling id out of its parent's ``subfolders``.
    """
    if folder_id == ROOT:
        raise ValidationError("The root folder cannot be deleted")
    folders = doc.setdefault('folders', {})
    doomed = subtree(doc, folder_id)

    for current in reversed(doomed):
        for file_id in list(folders[current].get('files', [])):
            if delete_file is not None:
                delete_file(file_id)

    if parent_id not in folders or folder_id not in folders[parent_id].get('subfolders', []):
        parent_id = find_parent(doc, folder_id)
    if parent_id is not None:
        parent = folders[parent_id]
        parent['subfolders'] = [f for f in parent['subfolders'] if f != folder_id]
        _touch(parent)

    for current in doomed:
        folders.pop(current, None)
    if doomed:
        logger.info("Deleted folder %s with %d descendant(s)", folder_id, len(doomed) - 1)
    return doomed


def add_file_to_folder(doc, folder_id, file_id):
    """Appends ``file_id`` unless the folder already lists it."""
    folder = get_folder(doc, folder_id)
    if file_id not in folder['files']:
        folder['files'].append(file_id)
    _touch(folder)


def remove_file_from_folder(doc, folder_id, file_id):
    """Filters ``file_id`` out of the folder's list, keeping the order of the rest.

    Returns False when the folder does not exist.
    """
    folder = doc.get('folders', {}).get(folder_id)
    if folder is None:
        return False
    folder['files'] = [f for f in folder.get('files', []) if f != file_id]
    _touch(folder)
    return True


def rename_folder(doc, folder_id, name):
    folder = get_folder(doc, folder_id)
    folder['name'] = clean_folder_name(name)
    _touch(folder)
    return folder


def move_folder(doc, folder_id, new_parent_id):
    """Re-parents a folder. Moving root, or into its own subtree, is rejected."""
    if folder_id == ROOT:
        raise ValidationError("The root folder cannot be moved")
    get_folder(doc, folder_id)
    target = get_folder(doc, new_parent_id)
    if new_parent_id in subtree(doc, folder_id):
        raise ValidationError("A folder cannot be moved into itself or its descendants")
    old_parent_id = find_parent(doc, folder_id)
    if old_parent_id == new_parent_id:
        return
    if old_parent_id is not None:
        old_parent = doc['folders'][old_parent_id]
        old_parent['subfolders'] = [f for f in old_parent['subfolders'] if f != folder_id]
        _touch(old_parent)
    target['subfolders'].append(folder_id)
    _touch(target)


def folder_path(doc, folder_id):
    """Breadcrumb from root down to ``folder_id`` as [{'id', 'name'}]."""
    get_folder(doc, folder_id)
    parents = {}
    for parent_id, folder in doc['folders'].items():
        for child in folder.get('subfolders', []):
            parents.setdefault(child, parent_id)
    path = []
    current = folder_id
    while current is not None and len(path) <= len(doc['folders']):
        folder = doc['folders'].get(current)
        if folder is None:
            break
        path.append({'id': current, 'name': folder['name']})
        current = parents.get(current)
    path.reverse()
    return path


def list_folder(doc, folder_id):
    folder = get_folder(doc, folder_id)
    subfolders = [doc['folders'][f] for f in folder['subfolders'] if f in doc['folders']]
    return {
        'folder': folder,
        'subfolders': subfolders,
        'files': list(folder['files']),
    }


def check_tree(doc):
    """Lists every structural problem found in the document's folder tree."""
    problems = []
    folders = doc.get('folders', {})
    if ROOT not in folders:
        return ["missing root folder"]

    parents = {}
    file_homes = {}
    for folder_id, folder in folders.items():
        for child in folder.get('subfolders', []):
            if child not in folders:
                problems.append(f"folder {folder_id} lists unknown subfolder {child}")
            elif child == ROOT:
                problems.append(f"folder {folder_id} lists root as a subfolder")
            elif child in parents:
                problems.append(f"folder {child} has more than one parent")
            else:
                parents[child] = folder_id
        files = folder.get('files', [])
        if len(files) != len(set(files)):
            problems.append(f"folder {folder_id} lists a file twice")
        for file_id in files:
            if file_id in file_homes and file_homes[file_id] != folder_id:
                problems.append(f"file {file_id} is placed in more than one folder")
            file_homes.setdefault(file_id, folder_id)

    reachable = set(subtree(doc, ROOT))
    for folder_id in folders:
        if folder_id not in reachable:
            problems.append(f"folder {folder_id} is not reachable from root")
    return problems
