"""
aiohttp front end for StreaMan.

Serves a single HTML page listing active, failed and finished recordings,
the form endpoints that start, stop and dismiss recordings, and the
recorded files themselves (read-only here, read-write over WebDAV).
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List
from urllib.parse import quote

from aiohttp import web
from aiohttp.web import AppKey
from jinja2 import Environment

from .config import Config
from .dav import add_dav_routes
from .errors import RecordingNotFound, SignalFailed
from .logger import get_logger
from .registry import RecordingRegistry

CONFIG_KEY = AppKey("config", Config)
REGISTRY_KEY = AppKey("registry", RecordingRegistry)

_CHANNEL_RE = re.compile(r'[A-Za-z0-9_-]+')

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>StreaMan</title>
</head>
<body>

<h1>Active Recordings</h1>

<table>
    <thead>
    <tr>
        <td>Name</td>
        <td>Time</td>
        <td>Action</td>
    </tr>
    </thead>
    <tbody>
    {% for recording in recordings %}
        <tr>
            <td>{{ recording.filename }}</td>
            <td>{{ recording.elapsed_formatted }}</td>
            <td>
                <form style="display: inline;" action="./stop-recording" method="post">
                    <input type="hidden" name="id" value="{{ recording.id }}"/>
                    <input type="submit" value="Stop"/>
                </form>
            </td>
        </tr>
    {% endfor %}
    </tbody>
</table>

<h1>Record</h1>

<form action="./record" method="post">
    <div>
        <label for="channel">Channel: </label> <input name="channel" id="channel"/>
    </div>
    {% if can_transcode %}
        <div>
            <label for="transcode">Transcode video to h265</label>
            <input type="checkbox" name="transcode" id="transcode"/>
        </div>
    {% endif %}
    <div>
        <input type="submit" value="Record"/>
    </div>
</form>

<h1>Failed Recordings</h1>

<table>
    <thead>
    <tr>
        <td>Name</td>
        <td>Start</td>
        <td>Reason</td>
        <td>Action</td>
    </tr>
    </thead>
    <tbody>
    {% for failure in failures %}
        <tr>
            <td>{{ failure.filename }}</td>
            <td>{{ failure.start_time | rfc1123 }}</td>
            <td>{{ failure.reason }}</td>
            <td>
                <form style="display: inline;" action="./delete-failure" method="post">
                    <input type="hidden" name="id" value="{{ failure.id }}"/>
                    <input type="submit" value="Delete"/>
                </form>
            </td>
        </tr>
    {% endfor %}
    </tbody>
</table>

<h1>Old Recordings</h1>

{% for file in files %}
    <a href="./files/{{ file.url_name }}">{{ file.name }}</a> (Size: {{ file.size_formatted }})<br/>
{% endfor %}

</body>
</html>
"""


@dataclass
class FileEntry:
    """A file in the data directory."""
    name: str
    size_bytes: int

    @property
    def url_name(self) -> str:
        return quote(self.name)

    @property
    def size_formatted(self) -> str:
        """Get human-readable file size."""
        size = float(self.size_bytes)
        for unit in ['B', 'kB', 'MB', 'GB']:
            if size < 1000:
                return f"{size:.0f} {unit}" if unit == 'B' else f"{size:.1f} {unit}"
            size /= 1000
        return f"{size:.1f} TB"


def format_rfc1123(value: datetime) -> str:
    return value.astimezone().strftime('%a, %d %b %Y %H:%M:%S %Z')


def list_files(data_dir: Path) -> List[FileEntry]:
    """List regular files of the data directory, sorted by name."""
    entries = []
    with os.scandir(data_dir) as it:
        for entry in it:
            if entry.is_dir():
                continue
            entries.append(FileEntry(name=entry.name, size_bytes=entry.stat().st_size))
    entries.sort(key=lambda e: e.name)
    return entries


_environment = Environment(autoescape=True)
_environment.filters['rfc1123'] = format_rfc1123
_page = _environment.from_string(PAGE_TEMPLATE)


async def index(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    registry = request.app[REGISTRY_KEY]

    try:
        files = list_files(Path(config.server.data_dir))
    except OSError as e:
        get_logger('web').error(f"Cannot list data directory: {e}")
        raise web.HTTPInternalServerError(text=f"cannot list directory: {e}")

    snapshot = await registry.list_recordings()
    html = _page.render(
        recordings=snapshot.active,
        failures=snapshot.failed,
        files=files,
        can_transcode=not config.server.no_encode,
    )
    return web.Response(text=html, content_type="text/html")


async def record(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    registry = request.app[REGISTRY_KEY]
    form = await request.post()

    channel = str(form.get('channel', '')).strip()
    if not _CHANNEL_RE.fullmatch(channel):
        raise web.HTTPBadRequest(text="invalid channel")

    transcode = not config.server.no_encode and form.get('transcode') == 'on'
    await registry.start(channel, transcode)
    raise web.HTTPFound('./')


async def stop_recording(request: web.Request) -> web.Response:
    registry = request.app[REGISTRY_KEY]
    form = await request.post()

    try:
        await registry.stop(str(form.get('id', '')))
    except (RecordingNotFound, SignalFailed) as e:
        raise web.HTTPBadRequest(text=str(e))
    raise web.HTTPFound('./')


async def delete_failure(request: web.Request) -> web.Response:
    registry = request.app[REGISTRY_KEY]
    form = await request.post()

    await registry.dismiss(str(form.get('id', '')))
    raise web.HTTPFound('./')


def build_app(config: Config, registry: RecordingRegistry) -> web.Application:
    """Create the web application for a registry."""
    prefix = config.server.prefix.rstrip('/')

    app = web.Application()
    app[CONFIG_KEY] = config
    app[REGISTRY_KEY] = registry

    app.router.add_get(f"{prefix}/", index)
    app.router.add_post(f"{prefix}/record", record)
    app.router.add_post(f"{prefix}/stop-recording", stop_recording)
    app.router.add_post(f"{prefix}/delete-failure", delete_failure)
    app.router.add_static(f"{prefix}/files", config.server.data_dir)
    if config.server.webdav:
        add_dav_routes(app, prefix, config.server.data_dir)
    return app
