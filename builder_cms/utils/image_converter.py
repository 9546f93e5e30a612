"""
Image conversion utility for project uploads.
Checks that uploaded bytes are a readable image and converts them to WebP
before they go to Cloudinary.
"""
import io
import logging
from typing import Optional, Tuple
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# WebP conversion settings
DEFAULT_WEBP_QUALITY = 85  # Balance between quality and file size (0-100)
DEFAULT_WEBP_METHOD = 6    # Compression method (0-6, higher = better compression but slower)
MAX_DIMENSION = 3840       # Maximum width or height before downscaling (None to disable)


def _fit_within(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    if width >= height:
        return max_dimension, max(1, int(height * (max_dimension / width)))
    return max(1, int(width * (max_dimension / height))), max_dimension


async def convert_to_webp(
    image_bytes: bytes,
    quality: int = DEFAULT_WEBP_QUALITY,
    method: int = DEFAULT_WEBP_METHOD,
    max_dimension: Optional[int] = MAX_DIMENSION,
    skip_if_webp: bool = True
) -> Tuple[bytes, bool]:
    """
    Convert image bytes to WebP format to reduce file size.

    Args:
        image_bytes: Original image file bytes
        quality: WebP quality (0-100, default: 85); 100 means lossless
        method: WebP compression method (0-6, default: 6)
        max_dimension: Maximum width or height before downscaling (None to disable)
        skip_if_webp: If True, return original bytes if already WebP format

    Returns:
        Tuple[bytes, bool]:
            - Converted image bytes (or original if skipped/failed)
            - Whether conversion was successful/skipped (True) or failed (False)
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))

        if skip_if_webp and image.format == 'WEBP':
            logger.debug("Image is already WebP format, skipping conversion")
            return image_bytes, True

        # WebP keeps alpha, so only palette and exotic modes need converting
        if image.mode == 'P':
            image = image.convert('RGBA')
        elif image.mode not in ('RGB', 'RGBA', 'LA'):
            if image.mode not in ('CMYK', 'L'):
                logger.warning(f"Unusual image mode '{image.mode}', converting to RGB")
            image = image.convert('RGB')

        if max_dimension:
            width, height = image.size
            if width > max_dimension or height > max_dimension:
                new_size = _fit_within(width, height, max_dimension)
                logger.info(f"Downscaling image from {width}x{height} to {new_size[0]}x{new_size[1]}")
                image = image.resize(new_size, Image.Resampling.LANCZOS)

        save_kwargs = {
            'format': 'WEBP',
            'quality': quality,
            'method': method,
        }
        if quality == 100:
            save_kwargs['lossless'] = True

        webp_buffer = io.BytesIO()
        image.save(webp_buffer, **save_kwargs)
        webp_bytes = webp_buffer.getvalue()

        original_size = len(image_bytes)
        converted_size = len(webp_bytes)
        reduction = ((original_size - converted_size) / original_size) * 100
        logger.info(
            f"Converted image to WebP: {original_size:,} bytes -> {converted_size:,} bytes "
            f"({reduction:.1f}% reduction, quality={quality})"
        )

        return webp_bytes, True

    except UnidentifiedImageError as e:
        logger.warning(f"Cannot identify image format: {str(e)}")
        return image_bytes, False

    except Exception as e:
        logger.error(f"Error converting image to WebP: {str(e)}", exc_info=True)
        return image_bytes, False


def get_image_info(image_bytes: bytes) -> Optional[dict]:
    """
    Get basic information about an image.

    Returns:
        dict: format, size, mode and bytes, or None if the bytes are not a readable image
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.verify()
        return {
            'format': image.format,
            'size': image.size,
            'mode': image.mode,
            'bytes': len(image_bytes)
        }
    except Exception as e:
        logger.debug(f"Error getting image info: {str(e)}")
        return None
