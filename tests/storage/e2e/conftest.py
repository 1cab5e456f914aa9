# tests/storage/e2e/conftest.py
"""Shared fixtures for end-to-end tests."""

import io
import os
import shutil
import tempfile
import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "e2e: end-to-end tests across store restarts"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take more than 5 seconds"
    )


@pytest.fixture
def temp_dir():
    """Create a temporary data directory, cleanup after test."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    if os.path.exists(temp_dir):
        shutil.rmtree(temp_dir)


@pytest.fixture
def storage_config(temp_dir):
    """Config pointing at the temporary directory with a short debounce."""
    from swatchbook.storage.config import StorageConfig
    return StorageConfig(data_dir=temp_dir, debounce_seconds=0.05)


@pytest.fixture
def source_image(temp_dir):
    """A 640x480 RGB image on disk."""
    from PIL import Image

    path = os.path.join(temp_dir, 'source.png')
    img = Image.new('RGB', (640, 480), (180, 60, 30))
    for x in range(0, 640, 40):
        for y in range(480):
            img.putpixel((x, y), (20, 20, 160))
    img.save(path, format='PNG')
    return path


@pytest.fixture
def source_image_bytes(source_image):
    with open(source_image, 'rb') as f:
        return f.read()


def make_product(product_id, name='Tea Cup', category='Drinkware'):
    """Catalog product dict as handed to add_to_list()."""
    return {
        'id': product_id,
        'fields': {
            '美工圖編號': f'ART-{product_id}',
            '美工圖名稱': name,
            '品項': category,
            '設計者1': 'Wu',
        },
    }


@pytest.fixture
def product_factory():
    return make_product


def png_size(data_url):
    """(width, height) of a PNG data URL."""
    from PIL import Image
    from swatchbook.storage.processing import decode_data_url

    with Image.open(io.BytesIO(decode_data_url(data_url))) as img:
        return img.size


@pytest.fixture
def data_url_size():
    return png_size
