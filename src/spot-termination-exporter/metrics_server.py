"""
Metrics HTTP Server Module

Serves the collector registry over HTTP using prometheus_client's WSGI app and
threading WSGI server, so concurrent scrapes run in parallel.

Routes:
    - <metrics path>: Prometheus exposition of the registry
    - anything else: HTML landing page linking to the metrics path
"""
import html
import logging
import threading
from typing import Callable, Tuple
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>Spot Termination Exporter</title></head>
<body>
<h1>Spot Termination Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>"""


class LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def create_app(registry: CollectorRegistry, metrics_path: str) -> Callable:
    """
    Build the WSGI app routing the metrics path to the registry.

    Args:
        registry: Registry holding the termination collector
        metrics_path: Path that serves the metrics, e.g. '/metrics'

    Returns:
        WSGI application
    """
    metrics_app = make_wsgi_app(registry)
    landing_page = LANDING_PAGE.format(metrics_path=html.escape(metrics_path)).encode('utf-8')

    def app(environ, start_response):
        if environ.get('PATH_INFO', '/') == metrics_path:
            return metrics_app(environ, start_response)
        start_response('200 OK', [('Content-Type', 'text/html; charset=utf-8'),
                                  ('Content-Length', str(len(landing_page)))])
        return [landing_page]

    return app


def start_metrics_server(app: Callable, host: str, port: int) -> Tuple[ThreadingWSGIServer, threading.Thread]:
    """
    Serve the app on a background thread.

    Raises:
        OSError: If the address cannot be bound
    """
    httpd = make_server(host, port, app, ThreadingWSGIServer, handler_class=LoggingRequestHandler)
    thread = threading.Thread(target=httpd.serve_forever, name='metrics-server', daemon=True)
    thread.start()
    logger.info(f"Starting metric http endpoint on {host or '0.0.0.0'}:{httpd.server_port}")
    return httpd, thread
