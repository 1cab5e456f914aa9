# tests/storage/benchmarks/conftest.py
"""Shared fixtures for benchmark tests.

Uses module-scoped fixtures to reduce setup overhead for repeated runs.
"""

import os
import shutil
import tempfile
import pytest


def pytest_configure(config):
    """Register benchmark marker."""
    config.addinivalue_line(
        "markers", "benchmark: performance benchmark tests"
    )


@pytest.fixture(scope='module')
def bench_dir():
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    if os.path.exists(temp_dir):
        shutil.rmtree(temp_dir)


@pytest.fixture(scope='module')
def bench_storage(bench_dir):
    """Storage with 20 lists of 25 products, each with 3 variants and swatches."""
    from swatchbook.storage.config import StorageConfig
    from swatchbook.storage.facade import CurationStorage

    storage = CurationStorage(StorageConfig(data_dir=bench_dir, debounce_seconds=0.05))
    storage.init()

    lists = {}
    for l in range(20):
        products = []
        for p in range(25):
            product_id = f'p{l}-{p}'
            products.append({
                'id': product_id,
                'fields': {'美工圖名稱': f'Item {p}', '品項': 'Drinkware, Gifts'},
                'colorVariants': [
                    {'colors': {'hue': v * 40, 'saturation': 50, 'lightness': 100}}
                    for v in range(3)
                ],
            })
            for v in range(3):
                storage.swatches.save_many(
                    [(v * 40, 50, 100), (v * 40 + 5, 60, 90)], f'List {l}', product_id, v
                )
        lists[f'List {l}'] = products
    storage.lists.replace(lists)
    storage.lists.flush()

    yield storage

    storage.shutdown()


@pytest.fixture(scope='module')
def bench_image_bytes():
    """A 1200x800 PNG, large enough for resizing to dominate."""
    import io
    from PIL import Image

    img = Image.new('RGB', (1200, 800), (120, 80, 40))
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()
