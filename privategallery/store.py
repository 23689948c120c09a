"""JSON document persistence.

Each document lives in its own ``<key>.json`` under the data root. A write
replaces the whole document: it goes to a temporary file in the same
directory, is fsynced and then renamed over the old one, so readers see either
the previous or the new document and never a torn one.

Documents carry a ``_rev`` counter. ``write(..., expected_rev=n)`` refuses to
replace a document whose stored revision is no longer ``n`` and raises
``Conflict``; this turns the lost-update race between two writers of the same
document into an error the second writer can see. The check and the rename
are serialized by a lock inside one process only; two processes can still
interleave between them.
"""
import json
import logging
import os
import re
import tempfile
import threading

from .errors import Conflict, IOFailure, NotFound, ValidationError

logger = logging.getLogger(__name__)

REV_FIELD = '_rev'
_KEY_SEGMENT = re.compile(r'^[A-Za-z0-9_-]+$')
_MISSING = object()


class RecordStore:

    def __init__(self, root):
        self.root = os.path.abspath(root)
        self._lock = threading.Lock()
        self.ensure_container(self.root)

    def path_for(self, key):
        segments = key.split('/') if isinstance(key, str) else []
        if not segments or not all(_KEY_SEGMENT.match(s) for s in segments):
            raise ValidationError(f"Invalid document key: {key!r}")
        return os.path.join(self.root, *segments) + '.json'

    def ensure_container(self, path):
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create directory {path}: {e}") from e

    def exists(self, key):
        return os.path.isfile(self.path_for(key))

    def read(self, key, default=_MISSING):
        """Loads a document. Raises NotFound unless a default is given."""
        path = self.path_for(key)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            if default is not _MISSING:
                return default
            raise NotFound(f"Document not found: {key}")
        except (OSError, ValueError) as e:
            logger.error("Could not read document %s: %s", path, e)
            raise IOFailure(f"Could not read document {key}") from e

    def write(self, key, doc, expected_rev=None):
        """Replaces a document and bumps its revision.

        With ``expected_rev`` set, the stored revision (0 when absent) must
        still match or ``Conflict`` is raised and nothing is written.
        """
        path = self.path_for(key)
        with self._lock:
            current_rev = self.read(key, default={}).get(REV_FIELD, 0)
            if expected_rev is not None and current_rev != expected_rev:
                raise Conflict(f"Document {key} was modified concurrently")
            doc[REV_FIELD] = current_rev + 1
            self._atomic_write(path, doc)
        return doc

    def update(self, key, mutate, default=_MISSING):
        """Read-modify-write of one document.

        ``mutate(doc)`` changes the document in place and may return a value,
        which is handed back together with the stored document. If ``mutate``
        raises, nothing is written.
        """
        doc = self.read(key, default=default)
        if doc is default and default is not _MISSING:
            doc = json.loads(json.dumps(default))
        rev = doc.get(REV_FIELD, 0)
        result = mutate(doc)
        self.write(key, doc, expected_rev=rev)
        return doc, result

    def delete(self, key):
        """Removes a document. Returns False when it was already absent."""
        path = self.path_for(key)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise IOFailure(f"Could not delete document {key}: {e}") from e

    def keys(self, prefix):
        """Ids of the documents stored under ``prefix/``."""
        directory = os.path.dirname(self.path_for(f"{prefix}/x"))
        if not os.path.isdir(directory):
            return []
        return sorted(name[:-5] for name in os.listdir(directory)
                      if name.endswith('.json') and not name.startswith('.'))

    def _atomic_write(self, path, doc):
        directory = os.path.dirname(path)
        self.ensure_container(directory)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.' + os.path.basename(path), suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(doc, f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Could not write document %s: %s", path, e)
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise IOFailure(f"Could not write document {os.path.basename(path)}") from e
