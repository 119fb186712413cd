"""
Mock poster API server for local development and testing.

This simple server keeps posters in memory and implements the endpoints the
sync client uses. Use it for local development without a real backend.

Usage:
    python server.py

The server will listen on port 8080 and serve the API under /api
"""

import json
import logging
import math
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

REMOVE_MAX_DISTANCE_METERS = 20.0
EARTH_RADIUS_METERS = 6371000.0


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


class PosterAPIServer(HTTPServer):
    """HTTP server holding the in-memory poster table."""

    def __init__(self, server_address: Tuple[str, int]):
        super().__init__(server_address, MockAPIHandler)
        self.posters = {}
        self.lock = threading.Lock()
        self._next_id = 1

    def place(self, user_id: int, party_id: int, lat: float, lng: float) -> int:
        with self.lock:
            poster_id = self._next_id
            self._next_id += 1
            self.posters[poster_id] = {
                'poster_id': poster_id,
                'user_id': user_id,
                'party_id': party_id,
                'lat': lat,
                'lng': lng,
                'removed': False,
                'updated': time.time()
            }
            return poster_id

    def remove_nearest(self, party_id: int, lat: float, lng: float) -> Optional[int]:
        with self.lock:
            candidates = [
                (distance_meters(lat, lng, p['lat'], p['lng']), p)
                for p in self.posters.values()
                if p['party_id'] == party_id and not p['removed']
            ]
            candidates = [c for c in candidates if c[0] < REMOVE_MAX_DISTANCE_METERS]
            if not candidates:
                return None
            _, poster = min(candidates, key=lambda c: c[0])
            poster['removed'] = True
            poster['updated'] = time.time()
            return poster['poster_id']

    def updates_since(self, party_id: int, since: float) -> list:
        with self.lock:
            return [
                {
                    'poster_id': p['poster_id'],
                    'location': {'lat': p['lat'], 'lng': p['lng']},
                    'removed': p['removed']
                }
                for p in sorted(self.posters.values(), key=lambda p: p['poster_id'])
                if p['party_id'] == party_id and p['updated'] >= since
            ]


class MockAPIHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the mock poster API."""

    def _send_json_response(self, status_code: int, data: dict):
        """Send a JSON response."""
        body = json.dumps(data).encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _fail(self, status_code: int, error: str):
        self._send_json_response(status_code, {'code': 'FAILED', 'error': error})

    def _authorized(self) -> bool:
        header = self.headers.get('Authorization', '')
        if not header.startswith('Bearer ') or not header[len('Bearer '):].strip():
            self._fail(401, 'missing auth key')
            return False
        return True

    def _read_poster_request(self) -> Optional[dict]:
        content_length = int(self.headers.get('Content-Length', 0))
        try:
            request = json.loads(self.rfile.read(content_length).decode('utf-8'))
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            self._fail(400, 'invalid JSON')
            return None
        if not request.get('location'):
            self._fail(400, 'location of poster not set')
            return None
        if not request.get('user_id'):
            self._fail(400, 'userId not set')
            return None
        if not request.get('party_id'):
            self._fail(400, 'partyId not set')
            return None
        return request

    def do_GET(self):
        """Handle GET requests."""
        url = urlparse(self.path)
        if url.path in ('/health', '/api/health'):
            self._send_json_response(200, {'status': 'healthy'})
        elif url.path == '/api/posters/updates':
            if not self._authorized():
                return
            query = parse_qs(url.query)
            try:
                party_id = int(query['party_id'][0])
                since = float(query.get('since', ['0'])[0])
            except (KeyError, ValueError):
                self._fail(400, 'party_id and since must be numbers')
                return
            posters = self.server.updates_since(party_id, since)
            logger.info(f"Sending {len(posters)} updates since {since} to party {party_id}")
            self._send_json_response(200, {'code': 'OK', 'posters': posters})
        else:
            self._send_json_response(404, {'error': 'Not found'})

    def do_POST(self):
        """Handle POST requests."""
        url = urlparse(self.path)
        if url.path not in ('/api/posters', '/api/posters/remove'):
            self._send_json_response(404, {'error': 'Not found'})
            return
        if not self._authorized():
            return
        request = self._read_poster_request()
        if request is None:
            return

        location = request['location']
        if url.path == '/api/posters':
            poster_id = self.server.place(request['user_id'], request['party_id'], location['lat'], location['lng'])
            logger.info(f"Placed poster {poster_id} at ({location['lat']}, {location['lng']})")
            self._send_json_response(201, {'code': 'OK', 'poster_id': poster_id})
            return

        poster_id = self.server.remove_nearest(request['party_id'], location['lat'], location['lng'])
        if poster_id is None:
            self._fail(404, f"no posters found within {REMOVE_MAX_DISTANCE_METERS:g} meters")
            return
        logger.info(f"Removed poster {poster_id}")
        self._send_json_response(200, {'code': 'OK', 'poster_id': poster_id})

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.debug(f"{self.address_string()} - {format % args}")


def start_in_thread(host: str = '127.0.0.1', port: int = 0) -> Tuple[PosterAPIServer, threading.Thread]:
    """Start a server on a background thread. Port 0 picks a free port."""
    httpd = PosterAPIServer((host, port))
    thread = threading.Thread(target=httpd.serve_forever, name="MockPosterAPI", daemon=True)
    thread.start()
    return httpd, thread


def run_server(host: str = '0.0.0.0', port: int = 8080):
    """Run the mock API server."""
    httpd = PosterAPIServer((host, port))
    logger.info(f"Mock poster API server running on http://{host}:{port}")
    logger.info("Endpoints:")
    logger.info("  GET  /health                - Health check")
    logger.info("  POST /api/posters           - Place a poster")
    logger.info("  POST /api/posters/remove    - Remove the nearest poster")
    logger.info("  GET  /api/posters/updates   - Posters changed since a time")
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
        httpd.server_close()


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    run_server()
