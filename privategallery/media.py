"""Media type checks, metadata extraction and thumbnails.

Extraction is an enrichment step: it never fails an upload. Whatever can be
read (EXIF capture date, camera, dimensions, duration) is returned as a flat
dict that is merged into the file record.
"""
import logging
import mimetypes
import os
from datetime import datetime

import cv2 # Video frames and properties
import numpy as np # rawpy output check
import rawpy # RAW decoding
from PIL import ExifTags, Image
from pillow_heif import register_heif_opener

from . import config

# Register the HEIF opener for Pillow so Image.open() handles HEIC files.
register_heif_opener()

logger = logging.getLogger(__name__)

EXIF_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'


def get_extension(filename):
    return os.path.splitext(filename or '')[1].lower()


def allowed_file(filename):
    """Checks if a file has an allowed extension."""
    return get_extension(filename) in config.ALL_MEDIA_EXTENSIONS


def get_media_type(filename):
    """Determines the media type (image, raw, video, audio)."""
    ext = get_extension(filename)
    if ext in config.ALLOWED_IMAGE_EXTENSIONS:
        return 'image'
    elif ext in config.ALLOWED_RAW_EXTENSIONS:
        return 'raw'
    elif ext in config.ALLOWED_VIDEO_EXTENSIONS:
        return 'video'
    elif ext in config.ALLOWED_AUDIO_EXTENSIONS:
        return 'audio'
    return 'unknown'


def guess_mime_type(filename, declared=None):
    """Client-declared type first, then the extension, then '<media>/x-<ext>'."""
    if declared and declared != 'application/octet-stream':
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    if guessed:
        return guessed
    media_type = get_media_type(filename)
    prefix = 'image' if media_type == 'raw' else media_type
    return f"{prefix}/x-{get_extension(filename).lstrip('.')}"


# --- Metadata extraction ---

def _exif_date(value):
    try:
        return datetime.strptime(str(value).strip(), EXIF_DATE_FORMAT).date().isoformat()
    except ValueError:
        return None


def _format_exposure(value):
    seconds = float(value)
    if 0 < seconds < 1:
        return f"1/{round(1 / seconds)}s"
    return f"{seconds:g}s"


def _image_metadata(path):
    metadata = {}
    with Image.open(path) as img:
        metadata['dimensions'] = f"{img.width}x{img.height}"
        exif = img.getexif()
        if not exif:
            return metadata
        details = exif.get_ifd(ExifTags.IFD.Exif)

        capture = details.get(ExifTags.Base.DateTimeOriginal) or exif.get(ExifTags.Base.DateTime)
        if capture:
            capture_date = _exif_date(capture)
            if capture_date:
                metadata['captureDate'] = capture_date

        make = str(exif.get(ExifTags.Base.Make, '')).strip('\x00 ')
        model = str(exif.get(ExifTags.Base.Model, '')).strip('\x00 ')
        camera = f"{make} {model}".strip() if model else ''
        if camera:
            metadata['camera'] = camera

        settings = []
        iso = details.get(ExifTags.Base.ISOSpeedRatings)
        if iso:
            settings.append(f"ISO {iso[0] if isinstance(iso, tuple) else iso}")
        if details.get(ExifTags.Base.FNumber):
            settings.append(f"f/{round(float(details[ExifTags.Base.FNumber]), 1)}")
        if details.get(ExifTags.Base.ExposureTime):
            settings.append(_format_exposure(details[ExifTags.Base.ExposureTime]))
        if details.get(ExifTags.Base.FocalLength):
            settings.append(f"{round(float(details[ExifTags.Base.FocalLength]))}mm")
        if settings:
            metadata['cameraSettings'] = ', '.join(settings)

        gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
        if ExifTags.GPS.GPSLatitude in gps and ExifTags.GPS.GPSLongitude in gps:
            metadata['hasGPS'] = True
    return metadata


def _raw_metadata(path):
    with rawpy.imread(path) as raw:
        return {'dimensions': f"{raw.sizes.width}x{raw.sizes.height}"}


def _video_metadata(path):
    metadata = {}
    cap = cv2.VideoCapture(path)
    try:
        if not cap.isOpened():
            logger.warning("Could not open video %s", path)
            return metadata
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if width and height:
            metadata['dimensions'] = f"{width}x{height}"
        fps = cap.get(cv2.CAP_PROP_FPS)
        frames = cap.get(cv2.CAP_PROP_FRAME_COUNT)
        if fps and frames:
            metadata['duration'] = round(frames / fps, 2)
    finally:
        cap.release()
    return metadata


def extract_metadata(path, filename):
    """Returns the enrichment map for a stored media file. Never raises."""
    media_type = get_media_type(filename)
    metadata = {
        'format': get_extension(filename).lstrip('.').upper(),
        'mediaType': media_type,
    }
    try:
        if media_type == 'image':
            metadata.update(_image_metadata(path))
        elif media_type == 'raw':
            metadata.update(_raw_metadata(path))
        elif media_type == 'video':
            metadata.update(_video_metadata(path))
    except Exception as e:
        logger.warning("Could not extract metadata from %s: %s: %s", path, type(e).__name__, e)
    return metadata


# --- Thumbnails ---

def get_thumbnail_path(original_full_path):
    """Generates the expected full path for a thumbnail."""
    original_dir = os.path.dirname(original_full_path)
    base_filename = os.path.basename(original_full_path)
    thumbnail_dir = os.path.join(original_dir, config.THUMBNAIL_SUBFOLDER_NAME)
    # Use original filename base but change extension to .webp for consistency
    thumbnail_filename = f"{os.path.splitext(base_filename)[0]}.webp"
    return os.path.join(thumbnail_dir, thumbnail_filename)


def _apply_orientation(img):
    orientation = img.getexif().get(ExifTags.Base.Orientation)
    if orientation == 3:
        img = img.transpose(Image.Transpose.ROTATE_180)
    elif orientation == 6:
        img = img.transpose(Image.Transpose.ROTATE_270)
    elif orientation == 8:
        img = img.transpose(Image.Transpose.ROTATE_90)
    return img


def _open_for_thumbnail(original_full_path, media_type):
    if media_type == 'video':
        cap = cv2.VideoCapture(original_full_path)
        try:
            if not cap.isOpened():
                logger.error("Could not open video %s", original_full_path)
                return None
            ret, frame = cap.read()
            if not ret:
                logger.error("Could not read frame from video %s", original_full_path)
                return None
            # Convert the frame (which is BGR) to RGB for Pillow
            return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        finally:
            cap.release()
    if media_type == 'raw':
        with rawpy.imread(original_full_path) as raw:
            rgb = raw.postprocess(use_camera_wb=True, no_auto_bright=True, output_bps=8)
        if not isinstance(rgb, np.ndarray):
            logger.error("rawpy did not return an array for %s", original_full_path)
            return None
        return Image.fromarray(rgb)
    if media_type == 'image':
        img = Image.open(original_full_path)
        img.load()
        return _apply_orientation(img)
    return None


def generate_thumbnail(original_full_path, filename, max_dimension=config.THUMBNAIL_MAX_DIMENSION):
    """Generates (or reuses) a WEBP thumbnail. Returns its path, or None for audio and failures."""
    thumbnail_path = get_thumbnail_path(original_full_path)

    # Reuse a thumbnail that is newer than the original
    if os.path.exists(thumbnail_path) and os.path.getmtime(thumbnail_path) >= os.path.getmtime(original_full_path):
        return thumbnail_path

    media_type = get_media_type(filename)
    if media_type not in ('image', 'raw', 'video'):
        return None

    try:
        img = _open_for_thumbnail(original_full_path, media_type)
        if img is None:
            return None
        if img.mode in ('RGBA', 'LA', 'P', 'L'):
            img = img.convert('RGB')
        img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        os.makedirs(os.path.dirname(thumbnail_path), exist_ok=True)
        img.save(thumbnail_path, "WEBP", quality=85)
        return thumbnail_path
    except Exception as e:
        logger.error("Error generating thumbnail for %s: %s: %s", original_full_path, type(e).__name__, e)
        return None
