import logging
import time
from pathlib import Path
from typing import Tuple

from votechain import config
from votechain.security import decode_base64_payload

logger = logging.getLogger(__name__)


def upload_dir() -> Path:
    path = Path(config.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_base64_image(base64_str: str, prefix: str = "candidate") -> Tuple[str, str]:
    """
    Save a base64 image string to the uploads directory.
    - base64_str: may be raw base64 or a data URL (data:image/jpeg;base64,...)
    Returns: (filename, public url)
    """
    data = decode_base64_payload(base64_str)
    # assume jpeg; browsers send captured photos as jpeg data URLs
    filename = f"{prefix}_{int(time.time() * 1000)}.jpg"
    with open(upload_dir() / filename, "wb") as f:
        f.write(data)
    logger.info(f"Saved candidate photo {filename} ({len(data)} bytes)")
    return filename, f"{config.UPLOAD_URL_PREFIX}/{filename}"
