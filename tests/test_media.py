import os

import pytest
from PIL import Image

from privategallery import media

from conftest import jpeg_with_exif, png_bytes


@pytest.mark.parametrize('filename,expected', [
    ('photo.JPG', 'image'),
    ('shot.heic', 'image'),
    ('DSC_0001.NEF', 'raw'),
    ('clip.mov', 'video'),
    ('song.flac', 'audio'),
    ('notes.txt', 'unknown'),
    ('no_extension', 'unknown'),
])
def test_media_type_by_extension(filename, expected):
    assert media.get_media_type(filename) == expected
    assert media.allowed_file(filename) is (expected != 'unknown')


def test_mime_type_guessing():
    assert media.guess_mime_type('a.png', 'image/png') == 'image/png'
    assert media.guess_mime_type('a.png', 'application/octet-stream') == 'image/png'
    assert media.guess_mime_type('a.mp4') == 'video/mp4'
    assert media.guess_mime_type('DSC.nef').startswith('image/')


def test_extract_metadata_reads_exif(tmp_path):
    path = tmp_path / 'beach.jpg'
    path.write_bytes(jpeg_with_exif())
    metadata = media.extract_metadata(str(path), 'beach.jpg')
    assert metadata['format'] == 'JPG'
    assert metadata['mediaType'] == 'image'
    assert metadata['dimensions'] == '64x48'
    assert metadata['camera'] == 'Canon EOS 5D'
    assert metadata['captureDate'] == '2021-07-14'
    assert 'hasGPS' not in metadata


def test_extract_metadata_never_raises_on_garbage(tmp_path):
    path = tmp_path / 'broken.jpg'
    path.write_bytes(b'definitely not a jpeg')
    assert media.extract_metadata(str(path), 'broken.jpg') == {'format': 'JPG', 'mediaType': 'image'}


def test_thumbnail_is_bounded_webp(tmp_path):
    path = tmp_path / 'wide.png'
    path.write_bytes(png_bytes(size=(1000, 200)))
    thumbnail = media.generate_thumbnail(str(path), 'wide.png', max_dimension=100)
    assert thumbnail == media.get_thumbnail_path(str(path))
    assert os.path.dirname(thumbnail).endswith('.thumbnails')
    with Image.open(thumbnail) as img:
        assert img.format == 'WEBP'
        assert max(img.size) == 100


def test_no_thumbnail_for_audio(tmp_path):
    path = tmp_path / 'song.mp3'
    path.write_bytes(b'ID3')
    assert media.generate_thumbnail(str(path), 'song.mp3') is None
