import os

from dotenv import load_dotenv

load_dotenv()

# --- Configuration ---
# Data root holds the JSON documents (users.json, shares.json, users/, files/).
# Upload root holds the media bytes, one subdirectory per user.
DATA_DIR = os.path.abspath(os.getenv('GALLERY_DATA_DIR', 'data'))
UPLOAD_DIR = os.path.abspath(os.getenv('GALLERY_UPLOAD_DIR', 'uploads'))
MAX_UPLOAD_MB = int(os.getenv('GALLERY_MAX_UPLOAD_MB', '512'))
PUBLIC_URL = os.getenv('GALLERY_PUBLIC_URL', '') # e.g. https://gallery.example.com/

ROOT_FOLDER_ID = 'root'
ROOT_FOLDER_NAME = 'My Gallery'
DEFAULT_SETTINGS = {'theme': 'dark', 'language': 'en'}

USER_INDEX_KEY = 'users'
SHARE_REGISTRY_KEY = 'shares'
USER_DOC_PREFIX = 'users'
FILE_DOC_PREFIX = 'files'

# Thumbnail configuration
THUMBNAIL_SUBFOLDER_NAME = '.thumbnails' # Hidden directory inside each user's upload directory
THUMBNAIL_MAX_DIMENSION = 480 # Max width or height for thumbnails

# Allowed extensions for upload, with leading dots
ALLOWED_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.heic', '.avif'}
ALLOWED_RAW_EXTENSIONS = {'.nef', '.nrw', '.cr2', '.cr3', '.crw', '.arw', '.srf', '.sr2',
                          '.orf', '.raf', '.rw2', '.raw', '.dng', '.kdc', '.dcr', '.erf',
                          '.3fr', '.mef', '.pef', '.x3f'}
ALLOWED_VIDEO_EXTENSIONS = {'.mp4', '.mov', '.webm', '.avi', '.mkv'}
ALLOWED_AUDIO_EXTENSIONS = {'.mp3', '.wav', '.ogg', '.aac', '.m4a', '.flac'}
ALL_MEDIA_EXTENSIONS = (ALLOWED_IMAGE_EXTENSIONS | ALLOWED_RAW_EXTENSIONS |
                        ALLOWED_VIDEO_EXTENSIONS | ALLOWED_AUDIO_EXTENSIONS)


def app_defaults():
    """Flask config values derived from the environment."""
    return {
        'DATA_DIR': DATA_DIR,
        'UPLOAD_DIR': UPLOAD_DIR,
        'PUBLIC_URL': PUBLIC_URL,
        'MAX_CONTENT_LENGTH': MAX_UPLOAD_MB * 1024 * 1024,
        'THUMBNAIL_MAX_DIMENSION': THUMBNAIL_MAX_DIMENSION,
    }
