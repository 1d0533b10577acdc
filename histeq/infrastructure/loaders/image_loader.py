import os

import numpy as np
from PIL import Image, UnidentifiedImageError

from histeq.domain.errors import InvalidInputError
from histeq.domain.models import GreyImage
from histeq.kernel.system.logging import get_logger

logger = get_logger(__name__)

# Modes that already hold one 8-bit channel, or convert to one losslessly
GREYSCALE_MODES = ("L", "1")


def load_greyscale(path: str) -> GreyImage:
    """
    Decodes an 8-bit single channel raster (PGM, PNG, TIFF...).
    Colour and high bit depth images are rejected.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Image not found: {path}")

    try:
        with Image.open(path) as img:
            img.load()
            if img.mode not in GREYSCALE_MODES:
                raise InvalidInputError(
                    f"{os.path.basename(path)} is not an 8-bit greyscale image (mode {img.mode})",
                    operation="load",
                )
            if img.mode != "L":
                img = img.convert("L")
            arr = np.asarray(img, dtype=np.uint8)
    except UnidentifiedImageError as e:
        raise InvalidInputError(
            f"Cannot decode {os.path.basename(path)}: {e}", operation="load"
        ) from e

    image = GreyImage.from_array(arr)
    logger.info(f"Loaded {os.path.basename(path)} ({image.width}x{image.height})")
    return image


def save_greyscale(image: GreyImage, path: str) -> None:
    """Encodes by file extension; directories are created as needed."""
    out_dir = os.path.dirname(os.path.abspath(path))
    os.makedirs(out_dir, exist_ok=True)
    Image.fromarray(np.ascontiguousarray(image.pixels)).save(path)
    logger.info(f"Saved {path}")
