"""
Selector - maps a requested size to a single catalogue entry.
"""

import random

from catalogue import LANDSCAPE, PORTRAIT


def orientation_for(width, height):
    """Classify a request; square requests count as portrait."""
    return LANDSCAPE if width > height else PORTRAIT


def find_exact_match(entries, width, height):
    """Return the first entry with exactly the requested size, or None."""
    for entry in entries:
        if entry.width == width and entry.height == height:
            return entry
    return None


def select_entry(catalogue, width, height, rng=None):
    """
    Pick the image to serve for a width x height request.

    Exact matches win, first in catalogue order. Otherwise a random entry of
    the same orientation as the request is chosen. Catalogues without
    metadata (directory listings) pick uniformly from every file.

    Args:
        catalogue: Catalogue to select from
        width: Requested width
        height: Requested height
        rng: Object with a choice() method, defaults to the random module

    Returns:
        CatalogueEntry or None if nothing is eligible
    """
    rng = rng or random
    entries = catalogue.entries

    if not catalogue.indexed:
        return rng.choice(entries) if entries else None

    exact = find_exact_match(entries, width, height)
    if exact is not None:
        return exact

    # TODO: prefer the entry with the closest aspect ratio before falling
    # back to orientation

    orientation = orientation_for(width, height)
    candidates = [entry for entry in entries if entry.orientation == orientation]
    if not candidates:
        return None
    return rng.choice(candidates)
