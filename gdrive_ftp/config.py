import configparser
from dataclasses import dataclass
from pathlib import Path

TRUE_VALUES = ("true", "1", "yes")


@dataclass
class GoogleDriveConfig:
    client_secrets_file: str | None = None
    token_file: str | None = None
    root_folder_id: str = "root"
    shared_drive: str | None = None  # Name or ID of a shared drive
    num_retries: int = 0  # Retries with backoff for 429 and 5xx responses, 0 = none


@dataclass
class FTPServerConfig:
    host: str = "127.0.0.1"
    port: int = 2121
    username: str | None = None  # None serves anonymous, read-only
    password: str | None = None
    permissions: str = "elradfmwMT"
    passive_ports: tuple[int, int] | None = None
    max_connections: int = 64
    banner: str = "gdrive-ftp ready."


@dataclass
class UploadConfig:
    background: bool = True
    spool_memory_bytes: int = 8 * 1024 * 1024
    temp_dir: str | None = None
    chunk_size_bytes: int = 8 * 1024 * 1024  # Multiple of 256 KiB
    workers: int = 2


@dataclass
class CacheConfig:
    enabled: bool = True
    entry_ttl_seconds: int = 5
    max_entries: int = 1024


@dataclass
class LogConfig:
    level: str = "INFO"
    file: str = "gdrive-ftp.log"
    console: bool = True


@dataclass
class AppConfig:
    gdrive: GoogleDriveConfig
    ftp: FTPServerConfig
    upload: UploadConfig
    cache: CacheConfig
    logging: LogConfig


def _get_int(section, key: str, target: dict, label: str | None = None) -> None:
    value = section.get(key)
    if not value:
        return
    try:
        target[key] = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {label or key} value in config: '{value}' - must be an integer"
        )


def _get_bool(section, key: str, target: dict) -> None:
    value = section.get(key)
    if value:
        target[key] = value.lower() in TRUE_VALUES


def _get_str(section, key: str, target: dict) -> None:
    value = section.get(key)
    if value:
        target[key] = value


def parse_port_range(value: str) -> tuple[int, int]:
    """Parse a passive port range such as '60000-60100'."""
    try:
        start_text, end_text = value.split("-", 1)
        start, end = int(start_text), int(end_text)
    except ValueError:
        raise ValueError(f"Invalid passive_ports value: '{value}' - expected START-END")
    if not (0 < start <= end <= 65535):
        raise ValueError(f"Invalid passive_ports range: '{value}'")
    return start, end


def load_config(config_path: str | None = None, **cli_args) -> AppConfig:
    """
    Load configuration from an INI file and/or CLI arguments.
    CLI arguments take precedence over config file.

    Args:
        config_path: Path to the INI configuration file.
        **cli_args: Key-value pairs from command line arguments.

    Returns:
        AppConfig: The populated configuration object.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If a value is malformed or the FTP credentials are inconsistent.
    """
    # Initialize with defaults
    gdrive_config = {
        "client_secrets_file": None,
        "token_file": None,
        "root_folder_id": "root",
        "shared_drive": None,
        "num_retries": 0,
    }
    ftp_config = {
        "host": "127.0.0.1",
        "port": 2121,
        "username": None,
        "password": None,
        "permissions": "elradfmwMT",
        "passive_ports": None,
        "max_connections": 64,
        "banner": "gdrive-ftp ready.",
    }
    upload_config = {
        "background": True,
        "spool_memory_bytes": 8 * 1024 * 1024,
        "temp_dir": None,
        "chunk_size_bytes": 8 * 1024 * 1024,
        "workers": 2,
    }
    cache_config = {
        "enabled": True,
        "entry_ttl_seconds": 5,
        "max_entries": 1024,
    }
    log_config = {
        "level": "INFO",
        "file": "gdrive-ftp.log",
        "console": True,
    }

    # Parse INI file if provided
    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_file, encoding="utf-8")

        # Load [gdrive] section
        if parser.has_section("gdrive"):
            section = parser["gdrive"]
            for key in ("client_secrets_file", "token_file", "root_folder_id", "shared_drive"):
                _get_str(section, key, gdrive_config)
            _get_int(section, "num_retries", gdrive_config)

        # Load [ftp] section
        if parser.has_section("ftp"):
            section = parser["ftp"]
            for key in ("host", "username", "password", "permissions", "banner"):
                _get_str(section, key, ftp_config)
            _get_int(section, "port", ftp_config)
            _get_int(section, "max_connections", ftp_config)
            if section.get("passive_ports"):
                ftp_config["passive_ports"] = parse_port_range(section.get("passive_ports"))

        # Load [upload] section
        if parser.has_section("upload"):
            section = parser["upload"]
            _get_bool(section, "background", upload_config)
            _get_int(section, "spool_memory_bytes", upload_config)
            _get_str(section, "temp_dir", upload_config)
            _get_int(section, "chunk_size_bytes", upload_config)
            _get_int(section, "workers", upload_config)

        # Load [cache] section
        if parser.has_section("cache"):
            section = parser["cache"]
            _get_bool(section, "enabled", cache_config)
            _get_int(section, "entry_ttl_seconds", cache_config)
            _get_int(section, "max_entries", cache_config)

        # Load [logging] section
        if parser.has_section("logging"):
            section = parser["logging"]
            _get_str(section, "level", log_config)
            _get_str(section, "file", log_config)
            _get_bool(section, "console", log_config)

    # Override with CLI arguments (cli_args take precedence)
    if cli_args.get("client_secrets") is not None:
        gdrive_config["client_secrets_file"] = cli_args["client_secrets"]
    if cli_args.get("token_file") is not None:
        gdrive_config["token_file"] = cli_args["token_file"]
    if cli_args.get("root_folder") is not None:
        gdrive_config["root_folder_id"] = cli_args["root_folder"]
    if cli_args.get("shared_drive") is not None:
        gdrive_config["shared_drive"] = cli_args["shared_drive"]
    if cli_args.get("host") is not None:
        ftp_config["host"] = cli_args["host"]
    if cli_args.get("port") is not None:
        ftp_config["port"] = int(cli_args["port"])
    if cli_args.get("username") is not None:
        ftp_config["username"] = cli_args["username"] or None
    if cli_args.get("password") is not None:
        ftp_config["password"] = cli_args["password"] or None
    if cli_args.get("passive_ports") is not None:
        ftp_config["passive_ports"] = parse_port_range(cli_args["passive_ports"])
    if cli_args.get("foreground_uploads"):
        upload_config["background"] = False
    if cli_args.get("debug"):
        log_config["level"] = "DEBUG"
        log_config["console"] = True

    # Validate
    if ftp_config["password"] and not ftp_config["username"]:
        raise ValueError("An FTP password was given without a username")
    if not (0 < ftp_config["port"] <= 65535):
        raise ValueError(f"Invalid FTP port: {ftp_config['port']}")
    if gdrive_config["num_retries"] < 0:
        raise ValueError(f"Invalid num_retries value: {gdrive_config['num_retries']}")
    if upload_config["workers"] < 1:
        raise ValueError(f"Invalid upload workers value: {upload_config['workers']}")
    chunk_size = upload_config["chunk_size_bytes"]
    if chunk_size <= 0 or chunk_size % (256 * 1024) != 0:
        raise ValueError(
            f"Invalid chunk_size_bytes value: {chunk_size} - must be a multiple of 262144"
        )

    return AppConfig(
        gdrive=GoogleDriveConfig(**gdrive_config),
        ftp=FTPServerConfig(**ftp_config),
        upload=UploadConfig(**upload_config),
        cache=CacheConfig(**cache_config),
        logging=LogConfig(**log_config),
    )
