"""
Configuration module for StreaMan.
Loads settings from a YAML file and provides typed configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml


@dataclass
class ServerConfig:
    """HTTP front end settings."""
    prefix: str = ""                 # HTTP path prefix, e.g. "/streaman"
    listen_address: str = ":3000"    # host:port, empty host binds all interfaces
    data_dir: str = "./data"         # Recordings are written and served from here
    no_encode: bool = False          # Hide and refuse the h265 transcode option
    webdav: bool = True              # Serve data_dir over WebDAV at {prefix}/dav/

    @property
    def host(self) -> Optional[str]:
        return parse_listen_address(self.listen_address)[0]

    @property
    def port(self) -> int:
        return parse_listen_address(self.listen_address)[1]


@dataclass
class RecordingConfig:
    """Capture pipeline settings."""
    shell: str = "/bin/bash"
    streamlink: str = "streamlink"
    url_template: str = "https://twitch.tv/{channel}"
    quality: str = "best"
    ffmpeg: str = "ffmpeg"
    skip: str = "00:00:20.0"         # Drop the stream's initial buffering
    video_codec: str = "libx265"     # Used only when transcoding
    crf: int = 28
    stderr_lines: int = 5            # stderr tail kept for failure reasons
    shutdown_timeout: float = 10.0   # seconds to wait for pipelines on exit


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = ""
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def ensure_directories(self) -> None:
        """Create the data directory (and log directory if configured)."""
        Path(self.server.data_dir).mkdir(parents=True, exist_ok=True)
        if self.logging.file:
            Path(self.logging.file).parent.mkdir(parents=True, exist_ok=True)


def as_bool(value: Any, default: bool) -> bool:
    """Parse bool from YAML value with safe fallbacks."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "y", "on"):
            return True
        if text in ("0", "false", "no", "n", "off"):
            return False
    return default


def as_float(value: Any, default: float) -> float:
    """Parse float from YAML value with safe fallbacks."""
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return default
    return default


def as_int(value: Any, default: int) -> int:
    """Parse int from YAML value with safe fallbacks."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            return int(float(text.replace(",", ".")))
        except ValueError:
            return default
    return default


def parse_listen_address(address: str) -> Tuple[Optional[str], int]:
    """
    Split a ``host:port`` listen address.

    An empty host means all interfaces. IPv6 hosts are written in brackets,
    e.g. ``[::1]:3000``; the brackets are removed.

    Raises:
        ValueError: If the port is missing or not a valid TCP port.
    """
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ValueError(f"Invalid listen address: {address!r}")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in listen address: {address!r}") from None
    if not 0 <= port_number <= 65535:
        raise ValueError(f"Port out of range in listen address: {address!r}")
    return host or None, port_number


def check_url_template(template: str) -> None:
    """Reject templates that cannot be filled with a channel name alone."""
    if '{channel}' not in template:
        raise ValueError("recording.url_template must contain '{channel}'")
    try:
        template.format(channel='channel')
    except (AttributeError, IndexError, KeyError, ValueError) as e:
        raise ValueError(f"Invalid recording.url_template {template!r}: {e!r}") from None


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Section '{name}' must be a mapping")
    return section


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file. None returns defaults.

    Returns:
        Config object with all settings.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If the file is not a YAML mapping or a value is invalid.
    """
    if config_path is None:
        return Config()

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"See config.example.yaml for reference."
        )

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a mapping")

    server_data = _section(data, 'server')
    defaults = ServerConfig()
    server_config = ServerConfig(
        prefix=str(server_data.get('prefix', defaults.prefix) or '').rstrip('/'),
        listen_address=str(server_data.get('listen_address', defaults.listen_address)),
        data_dir=str(server_data.get('data_dir', defaults.data_dir)),
        no_encode=as_bool(server_data.get('no_encode'), defaults.no_encode),
        webdav=as_bool(server_data.get('webdav'), defaults.webdav),
    )
    parse_listen_address(server_config.listen_address)

    recording_data = _section(data, 'recording')
    rec_defaults = RecordingConfig()
    url_template = str(recording_data.get('url_template', rec_defaults.url_template))
    check_url_template(url_template)
    recording_config = RecordingConfig(
        shell=str(recording_data.get('shell', rec_defaults.shell)),
        streamlink=str(recording_data.get('streamlink', rec_defaults.streamlink)),
        url_template=url_template,
        quality=str(recording_data.get('quality', rec_defaults.quality)),
        ffmpeg=str(recording_data.get('ffmpeg', rec_defaults.ffmpeg)),
        skip=str(recording_data.get('skip', rec_defaults.skip)),
        video_codec=str(recording_data.get('video_codec', rec_defaults.video_codec)),
        crf=as_int(recording_data.get('crf'), rec_defaults.crf),
        stderr_lines=max(1, as_int(recording_data.get('stderr_lines'), rec_defaults.stderr_lines)),
        shutdown_timeout=max(0.0, as_float(recording_data.get('shutdown_timeout'), rec_defaults.shutdown_timeout)),
    )

    logging_data = _section(data, 'logging')
    log_defaults = LoggingConfig()
    logging_config = LoggingConfig(
        level=str(logging_data.get('level', log_defaults.level)),
        file=str(logging_data.get('file') or ''),
        max_size_mb=as_int(logging_data.get('max_size_mb'), log_defaults.max_size_mb),
        backup_count=as_int(logging_data.get('backup_count'), log_defaults.backup_count),
    )

    return Config(
        server=server_config,
        recording=recording_config,
        logging=logging_config,
    )


def create_example_config(path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example = """# StreaMan Configuration

server:
  prefix: ""                # HTTP path prefix, e.g. /streaman
  listen_address: ":3000"   # host:port
  data_dir: ./data          # Recordings are written to and served from here
  no_encode: false          # true disables the h265 transcode option
  webdav: true              # Browse, rename and delete recordings at <prefix>/dav/

recording:
  shell: /bin/bash
  streamlink: streamlink
  url_template: https://twitch.tv/{channel}
  quality: best
  ffmpeg: ffmpeg
  skip: "00:00:20.0"        # Drop the first seconds of the stream
  video_codec: libx265      # Used when "transcode" is ticked
  crf: 28
  stderr_lines: 5           # Lines of pipeline stderr kept in failure reasons
  shutdown_timeout: 10      # Seconds to wait for pipelines on shutdown

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR
  file: ""     # e.g. ./logs/streamman.log, empty logs to console only
  max_size_mb: 10
  backup_count: 5
"""
    with open(path, 'w', encoding='utf-8') as f:
        f.write(example)


if __name__ == '__main__':
    create_example_config()
    print("Created config.example.yaml")
