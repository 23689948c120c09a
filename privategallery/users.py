"""User directory and password handling.

The directory is one global document listing lightweight user entries
(id, username, email, createdAt). Each user's full data document, which holds
the password hash and the folder tree, is stored separately under its id.
"""
import logging
import re
from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from . import config
from .errors import DuplicateError, NotFound, ValidationError

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_.-]{3,32}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 6


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password, password_hash):
    """The single hash-and-compare check used by every login path."""
    if not password or not password_hash:
        return False
    return check_password_hash(password_hash, password)


def normalize_email(email):
    return (email or '').strip().lower()


def validate_registration(username, email, password):
    if not username or not email or not password:
        raise ValidationError("Username, email and password are required")
    if not USERNAME_PATTERN.match(username):
        raise ValidationError("Username must be 3-32 characters of letters, digits, '.', '_' or '-'")
    validate_email(email)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def validate_email(email):
    if not email or not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address")


class UserDirectory:

    def __init__(self, store, key=config.USER_INDEX_KEY):
        self.store = store
        self.key = key

    def _load(self):
        return self.store.read(self.key, default={'users': []})

    def all(self):
        return list(self._load().get('users', []))

    def find_by_username(self, username):
        wanted = (username or '').lower()
        for user in self.all():
            if user['username'].lower() == wanted:
                return user
        return None

    def find_by_email(self, email):
        wanted = normalize_email(email)
        for user in self.all():
            if user['email'] == wanted:
                return user
        return None

    def find_by_id(self, user_id):
        for user in self.all():
            if user['id'] == user_id:
                return user
        return None

    def append(self, user):
        """Adds an entry. Uniqueness is checked inside the same read-modify-write."""
        def mutate(doc):
            users = doc.setdefault('users', [])
            for existing in users:
                if existing['username'].lower() == user['username'].lower():
                    raise DuplicateError("Username already exists")
                if existing['email'] == user['email']:
                    raise DuplicateError("Email already exists")
            users.append(user)

        self.store.update(self.key, mutate, default={'users': []})
        logger.info("Registered user %s (%s)", user['username'], user['id'])
        return user

    def update_email(self, user_id, new_email):
        new_email = normalize_email(new_email)
        validate_email(new_email)

        def mutate(doc):
            users = doc.setdefault('users', [])
            target = None
            for existing in users:
                if existing['id'] == user_id:
                    target = existing
                elif existing['email'] == new_email:
                    raise DuplicateError("Email already exists")
            if target is None:
                raise NotFound(f"User {user_id} not found")
            target['email'] = new_email
            return dict(target)

        _, entry = self.store.update(self.key, mutate, default={'users': []})
        return entry


def new_user_entry(user_id, username, email):
    return {
        'id': user_id,
        'username': username,
        'email': normalize_email(email),
        'createdAt': datetime.now().isoformat(),
    }
