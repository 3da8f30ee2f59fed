#!/usr/bin/env python3
"""
placepugs - placeholder image server (HTTP, or FastCGI behind a web server)
Serves an image from a local catalogue, resized to the width and height
given in the request path: GET /{width}/{height}
"""

import os
import re
import sys
import signal
import logging
import threading
import configparser
from pathlib import Path
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIServer as WSGIRefServer, make_server

try:
    from flup.server.fcgi import WSGIServer
except ImportError as e:
    raise ImportError(
        "Missing required library for placepugs. Please install dependencies with "
        "'pip install -e .'. Original error: {0}".format(e)
    ) from e

import catalogue as catalogue_store
from errors import (
    CatalogueLoadError,
    InvalidParameter,
    MissingParameter,
    NoCandidateImage,
    PlaceholderError,
)
from resizer import DEFAULT_QUALITY, render
from selector import orientation_for, select_entry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DIGITS = re.compile(r'[0-9]+')

# Requests are never larger than this, whatever the configuration says
MAX_DIMENSION = 2000

STATUS_MESSAGES = {
    200: 'OK',
    400: 'Bad Request',
    404: 'Not Found',
    405: 'Method Not Allowed',
    500: 'Internal Server Error',
}


class PlaceholderServer:
    """Selects, resizes and encodes placeholder images."""

    def __init__(self, catalogue, max_width=MAX_DIMENSION, max_height=MAX_DIMENSION,
                 quality=DEFAULT_QUALITY, rng=None):
        """
        Initialize the placeholder server.

        Args:
            catalogue: Loaded Catalogue to serve images from
            max_width: Maximum allowed width in pixels, capped at MAX_DIMENSION
            max_height: Maximum allowed height in pixels, capped at MAX_DIMENSION
            quality: JPEG quality (1-100)
            rng: Random source for fallback selection (random module if None)
        """
        self._catalogue = catalogue
        self._reload_lock = threading.Lock()
        self.max_width = min(max_width, MAX_DIMENSION)
        self.max_height = min(max_height, MAX_DIMENSION)
        self.quality = quality
        self.rng = rng

    @property
    def catalogue(self):
        return self._catalogue

    def reload_catalogue(self, catalogue):
        """
        Swap in a freshly loaded catalogue. Requests already in flight keep
        the catalogue they started with.
        """
        with self._reload_lock:
            previous = self._catalogue
            self._catalogue = catalogue
        logger.info("catalogue reloaded: %d -> %d images", len(previous), len(catalogue))

    @staticmethod
    def parse_dimension(value, name, limit):
        """
        Parse a width or height path segment.

        Args:
            value: Raw path segment (may be empty)
            name: 'width' or 'height', used in error messages
            limit: Largest accepted value

        Returns:
            int: The parsed dimension, between 1 and limit

        Raises:
            MissingParameter: If the segment is empty
            InvalidParameter: If it is not a number or out of range
        """
        if not value:
            raise MissingParameter(f"err: {name} not present")

        message = f"err: {name} must be greater than 0 but at most {limit}"
        # Reject absurdly long numbers before int() has to deal with them
        if not DIGITS.fullmatch(value) or len(value.lstrip('0')) > len(str(limit)):
            raise InvalidParameter(message)

        number = int(value)
        if number < 1 or number > limit:
            raise InvalidParameter(message)
        return number

    def serve_placeholder(self, width, height):
        """
        Serve a placeholder image of the requested size.

        Args:
            width: Requested width, as taken from the path
            height: Requested height, as taken from the path

        Returns:
            tuple: (status, content_type, data, extra_headers)
        """
        catalogue = self.catalogue

        try:
            w = self.parse_dimension(width, 'width', self.max_width)
            h = self.parse_dimension(height, 'height', self.max_height)
        except PlaceholderError as e:
            logger.info("bad request for /%s/%s: %s", width, height, e.message)
            return (e.status, 'text/plain', e.message.encode('utf-8'), [])

        logger.debug("retrieving image of w:%d h:%d", w, h)

        try:
            entry = select_entry(catalogue, w, h, rng=self.rng)
            if entry is None:
                raise NoCandidateImage(
                    f"err: no {orientation_for(w, h)} image available for {w}x{h}")
            logger.debug("selected %s for w:%d h:%d", entry.file, w, h)

            image_bytes = render(catalogue.read_bytes(entry), w, h, quality=self.quality)
        except PlaceholderError as e:
            logger.error("internal server error: %s (%s)", e.message, e.__cause__)
            return (500, 'text/plain', e.message.encode('utf-8'), [])
        except Exception:
            # Don't expose internal error details to users
            logger.exception("unexpected error serving w:%d h:%d", w, h)
            return (500, 'text/plain', b'err: internal server error', [])

        headers = []
        if catalogue.indexed and entry.link:
            headers.append(('X-Original-Link', entry.link))
        return (200, 'image/jpeg', image_bytes, headers)


class PlaceholderApp:
    """WSGI application routing requests to a PlaceholderServer."""

    def __init__(self, server):
        self.server = server

    def __call__(self, environ, start_response):
        method = environ.get('REQUEST_METHOD', 'GET')
        path = environ.get('PATH_INFO', '/') or '/'

        if path == '/':
            if method != 'GET':
                return self._method_not_allowed(start_response)
            return self._respond(start_response, 200, 'text/plain', b'')

        segments = path[1:].split('/') if path.startswith('/') else []
        if not segments or len(segments) > 2:
            return self._respond(start_response, 404, 'text/plain', b'404 page not found')

        if method != 'GET':
            return self._method_not_allowed(start_response)

        width = segments[0]
        height = segments[1] if len(segments) > 1 else ''
        status_code, content_type, data, headers = self.server.serve_placeholder(width, height)
        return self._respond(start_response, status_code, content_type, data, headers)

    def _method_not_allowed(self, start_response):
        return self._respond(start_response, 405, 'text/plain', b'',
                             [('Allow', 'GET')])

    @staticmethod
    def _respond(start_response, status_code, content_type, data, extra_headers=()):
        status = '{0} {1}'.format(status_code, STATUS_MESSAGES.get(status_code, 'Error'))
        response_headers = [
            ('Content-Type', content_type),
            ('Content-Length', str(len(data))),
        ]
        response_headers.extend(extra_headers)
        start_response(status, response_headers)
        return [data]


def load_config(config_path=None, environ=None):
    """
    Load configuration from config.ini file or environment variables.
    Environment variables take precedence over config file.

    Args:
        config_path: ini file to read (config.ini next to this file if None)
        environ: Mapping of environment variables (os.environ if None)

    Returns:
        dict: Configuration dictionary
    """
    config = {
        'image_root': 'images',
        'catalogue_file': 'catalogue.json',
        'variant': 'catalogue',
        'host': '',
        'port': 8482,
        'protocol': 'http',
        'max_width': MAX_DIMENSION,
        'max_height': MAX_DIMENSION,
        'quality': DEFAULT_QUALITY,
        'log_level': 'INFO',
    }
    environ = os.environ if environ is None else environ

    # Try to load from config.ini file
    config_path = Path(config_path) if config_path else Path(__file__).parent / 'config.ini'
    if config_path.exists():
        parser = configparser.ConfigParser()
        try:
            parser.read(config_path)

            if parser.has_section('server'):
                for key in ('image_root', 'catalogue_file', 'variant', 'host', 'protocol'):
                    if parser.has_option('server', key):
                        config[key] = parser.get('server', key)
                if parser.has_option('server', 'port'):
                    config['port'] = parser.getint('server', 'port')

            if parser.has_section('resize'):
                for key in ('max_width', 'max_height', 'quality'):
                    if parser.has_option('resize', key):
                        config[key] = parser.getint('resize', key)

            if parser.has_section('logging'):
                if parser.has_option('logging', 'level'):
                    config['log_level'] = parser.get('logging', 'level')
        except (configparser.Error, ValueError):
            # If config file is malformed, keep what was read so far
            pass

    # Environment variables override config file
    for key, env_name in (('image_root', 'IMAGE_ROOT'),
                          ('catalogue_file', 'CATALOGUE_FILE'),
                          ('variant', 'VARIANT'),
                          ('host', 'HOST'),
                          ('protocol', 'PROTOCOL'),
                          ('log_level', 'LOG_LEVEL')):
        if env_name in environ:
            config[key] = environ[env_name]

    for key, env_name in (('port', 'PORT'),
                          ('max_width', 'MAX_WIDTH'),
                          ('max_height', 'MAX_HEIGHT'),
                          ('quality', 'JPEG_QUALITY')):
        if env_name in environ:
            try:
                config[key] = int(environ[env_name])
            except ValueError:
                pass

    config['variant'] = config['variant'].strip().lower()
    if config['variant'] not in ('catalogue', 'directory'):
        config['variant'] = 'catalogue'
    config['protocol'] = config['protocol'].strip().lower()
    if config['protocol'] not in ('http', 'fcgi'):
        config['protocol'] = 'http'
    for key in ('max_width', 'max_height'):
        config[key] = max(1, min(config[key], MAX_DIMENSION))
    config['quality'] = max(1, min(config['quality'], 100))  # Limit to valid range

    return config


def configure_logging(level='INFO'):
    """Configure the root logger; unknown level names fall back to INFO."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def create_server(config):
    """
    Load the catalogue and build the PlaceholderServer around it.

    Raises:
        CatalogueLoadError: If the catalogue cannot be loaded
    """
    return PlaceholderServer(
        catalogue_store.load(config),
        max_width=config['max_width'],
        max_height=config['max_height'],
        quality=config['quality'],
    )


def create_application(config=None):
    """Build the WSGI application, loading config if none is given."""
    if config is None:
        config = load_config()
    return PlaceholderApp(create_server(config))


def reload_catalogue(app, config):
    """Reload the catalogue from config; a failed load keeps the current one."""
    try:
        app.server.reload_catalogue(catalogue_store.load(config))
    except CatalogueLoadError as e:
        logger.error("catalogue reload failed, keeping the previous one: %s", e)
        return False
    return True


class ThreadingWSGIServer(ThreadingMixIn, WSGIRefServer):
    """Handle each request in its own thread."""

    daemon_threads = True


def serve_http(app, config):
    """Serve plain HTTP until interrupted. SIGHUP reloads the catalogue."""
    httpd = make_server(config['host'], config['port'], app,
                        server_class=ThreadingWSGIServer)
    previous_handler = None
    if hasattr(signal, 'SIGHUP'):
        previous_handler = signal.signal(
            signal.SIGHUP, lambda signum, frame: reload_catalogue(app, config))
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()
        if previous_handler is not None:
            signal.signal(signal.SIGHUP, previous_handler)


def serve_fcgi(app, config):
    """Serve FastCGI behind a web server until told to stop."""
    bind_address = (config['host'], config['port'])
    # flup's run() returns True when it exits because of SIGHUP
    while WSGIServer(app, bindAddress=bind_address).run():
        reload_catalogue(app, config)


def main(config=None):
    """
    Load the catalogue and serve it over HTTP, or FastCGI when
    configured with protocol = fcgi.

    Returns:
        int: Process exit status
    """
    if config is None:
        config = load_config()
    configure_logging(config['log_level'])

    try:
        app = create_application(config)
    except CatalogueLoadError as e:
        logger.critical("err: cannot start placepugs: %s", e)
        return 1

    logger.info("running placepugs (%s) on port %d with %d images (%s)",
                config['protocol'], config['port'], len(app.server.catalogue),
                config['variant'])

    if config['protocol'] == 'fcgi':
        serve_fcgi(app, config)
    else:
        serve_http(app, config)

    logger.info("shutting down")
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
