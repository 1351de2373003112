"""
WebDAV access to the data directory.

Finished recordings are renamed, moved and deleted through a WebDAV client
mounted at ``{prefix}/dav/``. WsgiDAV serves the directory; aiohttp-wsgi
runs it inside the aiohttp application on a worker thread.
"""

from aiohttp import web
from aiohttp_wsgi import WSGIHandler
from wsgidav.fs_dav_provider import FilesystemProvider
from wsgidav.wsgidav_app import WsgiDAVApp

from .logger import get_logger


def build_dav_app(data_dir: str, mount_path: str) -> WsgiDAVApp:
    """
    Create the WsgiDAV application for a directory.

    Args:
        data_dir: Directory shared as the WebDAV root. Must exist.
        mount_path: URL path the application is mounted at, e.g. ``/dav``.

    Returns:
        WSGI application serving ``data_dir`` read-write, without auth.
    """
    config = {
        "mount_path": mount_path,
        "provider_mapping": {"/": FilesystemProvider(data_dir)},
        # anonymous access, like the rest of the front end
        "simple_dc": {"user_mapping": {"*": True}},
        "dir_browser": {"enable": False},
        "logging": {"enable": False},
        "verbose": 1,
    }
    return WsgiDAVApp(config)


def add_dav_routes(app: web.Application, prefix: str, data_dir: str) -> None:
    """Mount the WebDAV share of ``data_dir`` at ``{prefix}/dav/``."""
    mount_path = f"{prefix}/dav"
    handler = WSGIHandler(build_dav_app(data_dir, mount_path))
    app.router.add_route("*", f"{mount_path}/{{path_info:.*}}", handler)
    get_logger('web').debug(f"WebDAV share of {data_dir} mounted at {mount_path}/")
