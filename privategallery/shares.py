"""Share registry: one global document mapping share id to descriptor.

A share is a two-part capability. The share id names it, the token proves
access; resolving needs both.
"""
import hmac
import logging
from datetime import datetime

from . import config
from .errors import InvalidShare, NotFound, PermissionDenied, ValidationError
from .ids import new_id, new_token

logger = logging.getLogger(__name__)


def build_share_url(base_url, share_id, token):
    return f"{base_url.rstrip('/')}/api/shares/{share_id}/view?token={token}"


class ShareRegistry:

    def __init__(self, store, key=config.SHARE_REGISTRY_KEY):
        self.store = store
        self.key = key

    def _shares(self):
        return self.store.read(self.key, default={'shares': {}}).get('shares', {})

    def create(self, owner_id, folder_id, protected_download=False, base_url=''):
        if not owner_id or not folder_id:
            raise ValidationError("User and folder are required")
        share_id = new_id()
        token = new_token()
        descriptor = {
            'shareId': share_id,
            'token': token,
            'url': build_share_url(base_url, share_id, token),
            'userId': owner_id,
            'folderId': folder_id,
            'protectedDownload': bool(protected_download),
            'createdAt': datetime.now().isoformat(),
        }

        def mutate(doc):
            doc.setdefault('shares', {})[share_id] = descriptor

        self.store.update(self.key, mutate, default={'shares': {}})
        logger.info("Created share %s for folder %s of user %s", share_id, folder_id, owner_id)
        return descriptor

    def resolve(self, share_id, token):
        """Returns the descriptor when both id and token match; InvalidShare otherwise."""
        if not share_id or not token:
            raise InvalidShare("Share link is not valid")
        descriptor = self._shares().get(share_id)
        expected = descriptor['token'] if descriptor else ''
        # Compare even when the id is unknown so both failures cost the same.
        if not hmac.compare_digest(str(expected).encode(), str(token).encode()) or descriptor is None:
            raise InvalidShare("Share link is not valid")
        return descriptor

    def list_by_owner(self, owner_id):
        return [share for share in self._shares().values() if share.get('userId') == owner_id]

    def delete(self, share_id, requester_id):
        def mutate(doc):
            shares = doc.setdefault('shares', {})
            descriptor = shares.get(share_id)
            if descriptor is None:
                raise NotFound(f"Share {share_id} not found")
            if descriptor.get('userId') != requester_id:
                raise PermissionDenied("Only the owner can delete this share")
            del shares[share_id]

        self.store.update(self.key, mutate, default={'shares': {}})
        logger.info("Deleted share %s", share_id)

    def delete_for_folders(self, owner_id, folder_ids):
        """Drops the owner's shares that target any of ``folder_ids``. Returns their ids."""
        folder_ids = set(folder_ids)
        if not folder_ids:
            return []

        def mutate(doc):
            shares = doc.setdefault('shares', {})
            doomed = [share_id for share_id, share in shares.items()
                      if share.get('userId') == owner_id and share.get('folderId') in folder_ids]
            for share_id in doomed:
                del shares[share_id]
            return doomed

        if not self.list_by_owner(owner_id):
            return []
        _, doomed = self.store.update(self.key, mutate, default={'shares': {}})
        if doomed:
            logger.info("Invalidated %d share(s) of deleted folders", len(doomed))
        return doomed
