"""
Catalogue Store - the read-only table of images placepugs can serve.

Two flavours exist: a catalogue.json file describing every image with its
attribution and native size, or a bare directory listing where any image
file may be served.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from errors import CatalogueLoadError, ImageReadError

logger = logging.getLogger(__name__)

LANDSCAPE = 'landscape'
PORTRAIT = 'portrait'
ORIENTATIONS = (LANDSCAPE, PORTRAIT)

# Supported image formats for the directory variant
SUPPORTED_FORMATS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp'}

REQUIRED_FIELDS = ('file', 'desc', 'link', 'orientation', 'width', 'height')

# Characters left alone when percent-encoding attribution links
LINK_SAFE_CHARS = ":/?#[]@!$&'()*+,;=%~"


@dataclass(frozen=True)
class CatalogueEntry:
    file: str
    desc: str = ''
    link: str = ''
    orientation: str = ''
    width: int = 0
    height: int = 0


class Catalogue:
    """Immutable, ordered set of images resolved against an image root."""

    def __init__(self, image_root, entries, indexed=True):
        """
        Args:
            image_root: Directory the entry file names are relative to
            entries: Iterable of CatalogueEntry, kept in the given order
            indexed: True when entries carry metadata (catalogue.json),
                False for a plain directory listing
        """
        self.image_root = Path(image_root).resolve()
        self.entries = tuple(entries)
        self.indexed = indexed

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def path_for(self, entry):
        return self.image_root / entry.file

    def read_bytes(self, entry):
        """Read the raw bytes of an entry's image file."""
        path = self.path_for(entry)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise ImageReadError('err: failed to open image') from e


def _is_safe_path(image_root, requested_path):
    """
    Check that requested_path stays within image_root.

    Returns:
        bool: True if safe, False otherwise
    """
    try:
        resolved = (image_root / requested_path).resolve()
    except (ValueError, RuntimeError):
        return False
    return resolved.is_relative_to(image_root)


def _parse_entry(image_root, index, raw):
    if not isinstance(raw, dict):
        raise CatalogueLoadError(f"entry {index} is not an object")

    missing = [field for field in REQUIRED_FIELDS if field not in raw]
    if missing:
        raise CatalogueLoadError(
            f"entry {index} is missing field(s): {', '.join(missing)}")

    for field in ('file', 'desc', 'link', 'orientation'):
        if not isinstance(raw[field], str):
            raise CatalogueLoadError(f"entry {index}: '{field}' must be a string")

    for field in ('width', 'height'):
        value = raw[field]
        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise CatalogueLoadError(
                f"entry {index}: '{field}' must be a non-negative integer")

    if raw['orientation'] not in ORIENTATIONS:
        raise CatalogueLoadError(
            f"entry {index}: unknown orientation '{raw['orientation']}'")

    if not raw['file'] or not _is_safe_path(image_root, raw['file']):
        raise CatalogueLoadError(f"entry {index}: invalid file path '{raw['file']}'")

    path = image_root / raw['file']
    if not path.is_file():
        raise CatalogueLoadError(f"entry {index}: image '{raw['file']}' does not exist")

    return CatalogueEntry(
        file=raw['file'],
        desc=raw['desc'],
        # Links end up in a response header, which must stay ASCII
        link=quote(raw['link'], safe=LINK_SAFE_CHARS),
        orientation=raw['orientation'],
        width=raw['width'],
        height=raw['height'],
    )


def load_catalogue(image_root, catalogue_file='catalogue.json'):
    """
    Load the catalogue description file from the image root.

    Args:
        image_root: Directory holding the images and the catalogue file
        catalogue_file: Name of the JSON catalogue inside image_root

    Returns:
        Catalogue: The loaded, validated catalogue

    Raises:
        CatalogueLoadError: If the file is missing, malformed or empty
    """
    image_root = Path(image_root).resolve()
    path = image_root / catalogue_file

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except OSError as e:
        raise CatalogueLoadError(f"failed to open catalogue file {path}: {e}") from e
    except ValueError as e:
        raise CatalogueLoadError(f"failed to parse catalogue file {path}: {e}") from e

    if not isinstance(raw, list):
        raise CatalogueLoadError(f"catalogue file {path} must contain a JSON array")
    if not raw:
        raise CatalogueLoadError(f"catalogue file {path} is empty")

    entries = [_parse_entry(image_root, i, item) for i, item in enumerate(raw)]
    logger.info("loaded %d catalogue entries from %s", len(entries), path)
    return Catalogue(image_root, entries, indexed=True)


def load_directory(image_root):
    """
    List every supported image file directly inside image_root.

    Raises:
        CatalogueLoadError: If the directory is missing or holds no images
    """
    image_root = Path(image_root).resolve()
    if not image_root.is_dir():
        raise CatalogueLoadError(f"images directory {image_root} not present")

    files = sorted(
        p.name for p in image_root.iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_FORMATS
    )
    if not files:
        raise CatalogueLoadError(f"images directory {image_root} is empty")

    logger.info("found %d images in %s", len(files), image_root)
    return Catalogue(image_root, (CatalogueEntry(file=name) for name in files),
                     indexed=False)


def load(config):
    """Load the catalogue flavour named by config['variant']."""
    if config['variant'] == 'directory':
        return load_directory(config['image_root'])
    return load_catalogue(config['image_root'], config['catalogue_file'])
