import io

import pytest
from PIL import ExifTags, Image

from privategallery import create_app
from privategallery.service import GalleryService, Upload
from privategallery.store import RecordStore


def png_bytes(size=(32, 24), color='blue'):
    buf = io.BytesIO()
    Image.new('RGB', size, color).save(buf, 'PNG')
    return buf.getvalue()


def jpeg_with_exif(size=(64, 48)):
    exif = Image.Exif()
    exif[ExifTags.Base.Make] = 'Canon'
    exif[ExifTags.Base.Model] = 'EOS 5D'
    exif[ExifTags.Base.DateTime] = '2021:07:14 12:30:00'
    buf = io.BytesIO()
    Image.new('RGB', size, 'red').save(buf, 'JPEG', exif=exif)
    return buf.getvalue()


def upload(name, data=None, content_type=None):
    return Upload(name, io.BytesIO(png_bytes() if data is None else data), content_type)


@pytest.fixture
def store(tmp_path):
    return RecordStore(tmp_path / 'data')


@pytest.fixture
def service(tmp_path):
    return GalleryService(str(tmp_path / 'data'), str(tmp_path / 'uploads'),
                          public_url='https://gallery.test/')


@pytest.fixture
def alice(service):
    return service.register('alice', 'alice@example.com', 'Passw0rd')


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'DATA_DIR': str(tmp_path / 'data'),
        'UPLOAD_DIR': str(tmp_path / 'uploads'),
        'PUBLIC_URL': '',
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()
