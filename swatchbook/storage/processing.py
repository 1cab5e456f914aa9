# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Image processing for color variants.

Turns a variant's source image into the downsized processed image and
the recolored variant rendering that the lists store persists. Results
are PNG data URLs so they can be stored as plain strings.
"""

import base64
import io
import logging
import os
from typing import Optional, Union

from PIL import Image, ImageEnhance

from swatchbook.storage.models import HSLColor

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = 'data:image/png;base64,'

ImageSource = Union[str, bytes]


def decode_data_url(data_url: str) -> bytes:
    """Extract the binary payload of a base64 data URL.

    Raises:
        ValueError: If the string is not a base64 data URL.
    """
    header, sep, payload = data_url.partition(',')
    if not sep or not header.startswith('data:') or not header.endswith(';base64'):
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(payload)


def encode_png_data_url(img: Image.Image) -> str:
    buffer = io.BytesIO()
    img.save(buffer, format='PNG', optimize=True)
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode('ascii')


def _open_source(source: ImageSource) -> Image.Image:
    if isinstance(source, bytes):
        return Image.open(io.BytesIO(source))
    if source.startswith('data:'):
        return Image.open(io.BytesIO(decode_data_url(source)))
    if os.path.exists(source):
        return Image.open(source)
    raise ValueError(f"Unsupported image source: {source[:64]}")


class ImageProcessor:
    """Downsizes source images and renders recolored variants."""

    def __init__(self, max_width: int = 300):
        """Initialize the processor.

        Args:
            max_width: Width processed images are scaled to.
        """
        self.max_width = max_width

    def process_image(self, source: ImageSource) -> Optional[str]:
        """Scale an image to max_width, keeping its aspect ratio.

        Args:
            source: File path, raw bytes or a base64 data URL.

        Returns:
            PNG data URL, or None if the image could not be processed.
        """
        try:
            with _open_source(source) as img:
                img.load()
                scale = self.max_width / img.width
                height = max(1, round(img.height * scale))
                resized = img.convert('RGBA').resize(
                    (self.max_width, height), Image.LANCZOS
                )
            return encode_png_data_url(resized)
        except (OSError, ValueError) as e:
            logger.error(f"Error processing image: {e}")
            return None

    def create_variant(self, base_image: ImageSource, colors) -> Optional[str]:
        """Render a recolored copy of an image.

        The hue is rotated by ``colors.hue`` degrees, saturation scaled by
        ``colors.saturation`` percent and brightness by
        ``colors.lightness`` percent, so (0, 100, 100) is the identity.

        Args:
            base_image: Processed image as a data URL, bytes or path.
            colors: HSLColor or a dict with hue/saturation/lightness.

        Returns:
            PNG data URL, or None if rendering failed.
        """
        try:
            color = HSLColor.coerce(colors)
            with _open_source(base_image) as img:
                rgba = img.convert('RGBA')

            alpha = rgba.getchannel('A')
            h, s, v = rgba.convert('RGB').convert('HSV').split()
            shift = int(round((color.hue % 360) / 360.0 * 256))
            h = h.point(lambda x: (x + shift) % 256)
            rgb = Image.merge('HSV', (h, s, v)).convert('RGB')

            rgb = ImageEnhance.Color(rgb).enhance(color.saturation / 100.0)
            rgb = ImageEnhance.Brightness(rgb).enhance(color.lightness / 100.0)

            rgb.putalpha(alpha)
            return encode_png_data_url(rgb)
        except (OSError, ValueError) as e:
            logger.error(f"Error creating variant: {e}")
            return None
