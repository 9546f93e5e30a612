"""
Cloudinary service for project image upload and deletion.
Storage backend behind the CMS upload and file cleanup endpoints.
"""
import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from builder_cms.config import settings
import logging
import asyncio
import re
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Configure Cloudinary with credentials from settings
cloudinary.config(
    cloud_name=settings.CLOUDINARY_CLOUD_NAME,
    api_key=settings.CLOUDINARY_API_KEY,
    api_secret=settings.CLOUDINARY_API_SECRET,
    secure=True  # Always use HTTPS for secure URLs
)


async def upload_image(
    file: Any,
    folder: Optional[str] = None,
    public_id: Optional[str] = None,
    max_retries: int = 3
) -> Dict[str, Any]:
    """
    Upload image to Cloudinary with automatic optimization and retry logic.

    Args:
        file: File object, file path, or bytes to upload
        folder: Cloudinary folder path (default: settings.CLOUDINARY_FOLDER)
        public_id: Optional custom public ID for the image
        max_retries: Maximum number of retry attempts for transient failures

    Returns:
        dict: url, public_id, format, width, height, bytes

    Raises:
        CloudinaryError: If upload fails after all retries
    """
    folder = folder or settings.CLOUDINARY_FOLDER
    for attempt in range(max_retries):
        try:
            result = cloudinary.uploader.upload(
                file,
                folder=folder,
                public_id=public_id,
                fetch_format="auto",
                quality="auto",
                transformation=[
                    {
                        "width": 2400,
                        "height": 1600,
                        "crop": "limit"  # Limit max dimensions, maintain aspect ratio
                    }
                ]
            )

            logger.info(f"Successfully uploaded image: {result['public_id']}")

            return {
                "url": result["secure_url"],
                "public_id": result["public_id"],
                "format": result.get("format"),
                "width": result.get("width"),
                "height": result.get("height"),
                "bytes": result.get("bytes"),
            }

        except CloudinaryError as e:
            logger.warning(f"Cloudinary upload error (attempt {attempt + 1}/{max_retries}): {str(e)}")

            if attempt < max_retries - 1:
                await asyncio.sleep(2 ** attempt)  # 1s, 2s, 4s backoff
                continue

            logger.error(f"Cloudinary upload failed after {max_retries} attempts: {str(e)}")
            raise


async def delete_image(public_id: str, max_retries: int = 3) -> Dict[str, Any]:
    """
    Delete image from Cloudinary with retry logic.
    A 'not found' result counts as deleted.

    Raises:
        CloudinaryError: If deletion fails after all retries
    """
    for attempt in range(max_retries):
        try:
            result = cloudinary.uploader.destroy(
                public_id,
                invalidate=True,  # Invalidate CDN cache
                resource_type='image'
            )

            if result.get('result') in ('ok', 'not found'):
                logger.info(f"Deleted image from Cloudinary: {public_id} (result: {result.get('result')})")
            else:
                logger.warning(f"Unexpected Cloudinary delete result for {public_id}: {result}")
            return result

        except CloudinaryError as e:
            logger.warning(f"Cloudinary delete error (attempt {attempt + 1}/{max_retries}) for {public_id}: {str(e)}")

            if attempt < max_retries - 1:
                await asyncio.sleep(2 ** attempt)
                continue

            logger.error(f"Cloudinary delete failed after {max_retries} attempts for {public_id}: {str(e)}")
            raise


def extract_public_id_from_url(cloudinary_url: str) -> str:
    """
    Extract Cloudinary public_id from a delivery URL.

    https://res.cloudinary.com/{cloud}/image/upload/v{version}/{public_id}.{format}
    -> "{public_id}" (folders kept, extension dropped)

    Raises:
        ValueError: If URL format is invalid
    """
    match = re.search(r'/image/upload(?:/v\d+)?/(.+)$', cloudinary_url)
    if not match:
        raise ValueError(f"Invalid Cloudinary URL format: {cloudinary_url}")

    path = match.group(1).split('?')[0]
    folder, _, filename = path.rpartition('/')
    if '.' in filename:
        filename = filename.rsplit('.', 1)[0]
    return f"{folder}/{filename}" if folder else filename


async def delete_image_by_url(url: str) -> bool:
    """
    Delete the asset behind a Cloudinary URL.

    Returns:
        bool: True if Cloudinary accepted the deletion, False if the URL is not a
            Cloudinary asset or the result was unexpected

    Raises:
        CloudinaryError: If deletion fails after all retries
    """
    try:
        public_id = extract_public_id_from_url(url)
    except ValueError as e:
        logger.warning(f"Skipping deletion of non-Cloudinary file: {str(e)}")
        return False

    result = await delete_image(public_id)
    return result.get('result') in ('ok', 'not found')


def validate_cloudinary_config() -> bool:
    """
    Validate that Cloudinary is properly configured.

    Returns:
        bool: True if Cloudinary is configured, False otherwise
    """
    if not settings.CLOUDINARY_CLOUD_NAME:
        logger.warning("CLOUDINARY_CLOUD_NAME not configured")
        return False
    if not settings.CLOUDINARY_API_KEY:
        logger.warning("CLOUDINARY_API_KEY not configured")
        return False
    if not settings.CLOUDINARY_API_SECRET:
        logger.warning("CLOUDINARY_API_SECRET not configured")
        return False

    logger.info("Cloudinary configuration validated successfully")
    return True
