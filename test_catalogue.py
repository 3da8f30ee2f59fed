#!/usr/bin/env python3
"""
Tests for loading the image catalogue and directory listings.
"""

import json
import shutil
import tempfile
from pathlib import Path

from PIL import Image

from catalogue import CatalogueEntry, load, load_catalogue, load_directory
from errors import CatalogueLoadError, ImageReadError


def make_image(path, width=40, height=30):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGB', (width, height), color='tan').save(path)


def valid_entry(**overrides):
    entry = {
        'file': 'a.jpg',
        'desc': 'a sleepy pug',
        'link': 'https://example.com/a',
        'orientation': 'landscape',
        'width': 40,
        'height': 30,
    }
    entry.update(overrides)
    return entry


def assert_load_fails(image_dir, content, reason):
    (image_dir / 'catalogue.json').write_text(content)
    try:
        load_catalogue(image_dir)
    except CatalogueLoadError:
        return
    raise AssertionError(f"Expected CatalogueLoadError for {reason}")


def test_load_catalogue():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        make_image(image_dir / 'a.jpg')
        make_image(image_dir / 'nested' / 'b.jpg', 30, 40)
        entries = [
            valid_entry(),
            valid_entry(file='nested/b.jpg', orientation='portrait', width=30, height=40),
        ]
        (image_dir / 'catalogue.json').write_text(json.dumps(entries))

        catalogue = load_catalogue(image_dir)
        assert catalogue.indexed, "catalogue.json entries carry metadata"
        assert len(catalogue) == 2
        assert [e.file for e in catalogue] == ['a.jpg', 'nested/b.jpg'], "Catalogue order must be kept"
        assert catalogue.entries[1] == CatalogueEntry('nested/b.jpg', 'a sleepy pug',
                                                      'https://example.com/a', 'portrait', 30, 40)
        assert catalogue.path_for(catalogue.entries[1]) == image_dir.resolve() / 'nested' / 'b.jpg'
        assert catalogue.read_bytes(catalogue.entries[0]).startswith(b'\xff\xd8'), "Expected JPEG bytes"
    finally:
        shutil.rmtree(image_dir)


def test_load_catalogue_failures():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        try:
            load_catalogue(image_dir)
            raise AssertionError("A missing catalogue file must fail")
        except CatalogueLoadError:
            pass

        make_image(image_dir / 'a.jpg')
        make_image(image_dir.parent / f'{image_dir.name}-outside.jpg')
        try:
            cases = [
                ('[{"file": ', 'invalid JSON'),
                ('{"file": "a.jpg"}', 'a non-array document'),
                ('[]', 'an empty catalogue'),
                ('["a.jpg"]', 'a non-object entry'),
                (json.dumps([{'file': 'a.jpg'}]), 'missing fields'),
                (json.dumps([valid_entry(orientation='diagonal')]), 'an unknown orientation'),
                (json.dumps([valid_entry(width='40')]), 'a string width'),
                (json.dumps([valid_entry(height=-1)]), 'a negative height'),
                (json.dumps([valid_entry(width=True)]), 'a boolean width'),
                (json.dumps([valid_entry(link=None)]), 'a null link'),
                (json.dumps([valid_entry(file='missing.jpg')]), 'a missing image'),
                (json.dumps([valid_entry(file='')]), 'an empty file name'),
                (json.dumps([valid_entry(file=f'../{image_dir.name}-outside.jpg')]),
                 'a path outside the image root'),
            ]
            for content, reason in cases:
                assert_load_fails(image_dir, content, reason)
        finally:
            (image_dir.parent / f'{image_dir.name}-outside.jpg').unlink()
    finally:
        shutil.rmtree(image_dir)


def test_load_directory():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        make_image(image_dir / 'b.jpg')
        make_image(image_dir / 'a.PNG')
        (image_dir / 'catalogue.json').write_text('[]')
        (image_dir / 'notes.txt').write_text('not an image')
        (image_dir / 'subdir').mkdir()

        catalogue = load_directory(image_dir)
        assert not catalogue.indexed
        assert [e.file for e in catalogue] == ['a.PNG', 'b.jpg'], \
            f"Only image files should be listed, got {[e.file for e in catalogue]}"
    finally:
        shutil.rmtree(image_dir)


def test_load_directory_failures():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        for target, reason in ((image_dir, 'an empty directory'),
                               (image_dir / 'nope', 'a missing directory')):
            try:
                load_directory(target)
                raise AssertionError(f"Expected CatalogueLoadError for {reason}")
            except CatalogueLoadError:
                pass
    finally:
        shutil.rmtree(image_dir)


def test_load_dispatches_on_variant():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        make_image(image_dir / 'a.jpg')
        (image_dir / 'pugs.json').write_text(json.dumps([valid_entry()]))

        config = {'image_root': str(image_dir), 'catalogue_file': 'pugs.json', 'variant': 'catalogue'}
        assert load(config).indexed

        config['variant'] = 'directory'
        assert not load(config).indexed
    finally:
        shutil.rmtree(image_dir)


def test_read_bytes_failure():
    image_dir = Path(tempfile.mkdtemp(prefix='placepugs-test-'))
    try:
        make_image(image_dir / 'a.jpg')
        catalogue = load_directory(image_dir)
        (image_dir / 'a.jpg').unlink()
        try:
            catalogue.read_bytes(catalogue.entries[0])
            raise AssertionError("Reading a vanished file must fail")
        except ImageReadError as e:
            assert e.status == 500
    finally:
        shutil.rmtree(image_dir)
