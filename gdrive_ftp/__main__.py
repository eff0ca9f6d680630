"""
gdrive-ftp - Main Entry Point

This module provides the CLI interface and wires up all components to
serve a Google Drive over FTP using pyftpdlib.
"""

import argparse
import logging
import sys

from .config import load_config
from .filesystem import GoogleDriveFileSystem
from .ftp_bridge import build_server
from .gdrive_auth import get_credentials
from .logger import setup_logging
from .transfers import BackgroundTransferWorker

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="gdrive-ftp - Serve Google Drive over FTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gdrive-ftp auth google --client-secrets client_secrets.json
  gdrive-ftp serve --port 2121 --user alice --password secret
  gdrive-ftp serve --config gdrive-ftp.ini
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the FTP server")
    serve_parser.add_argument("--config", help="Path to configuration file")
    serve_parser.add_argument("--host", help="Address to listen on")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")
    serve_parser.add_argument("--user", help="FTP username (anonymous read-only if omitted)")
    serve_parser.add_argument("--password", help="FTP password")
    serve_parser.add_argument("--passive-ports", help="Passive port range, e.g. 60000-60100")
    serve_parser.add_argument("--token-file", help="Saved Google OAuth token")
    serve_parser.add_argument("--root-folder", help="Google Drive folder ID to serve (default: root)")
    serve_parser.add_argument("--shared-drive", help="Name or ID of shared/team drive")
    serve_parser.add_argument(
        "--foreground-uploads",
        action="store_true",
        help="Finish each upload before replying to STOR",
    )
    serve_parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    # Auth command (Google Drive OAuth setup)
    auth_parser = subparsers.add_parser("auth", help="Authenticate with a cloud service")
    auth_parser.add_argument("service", choices=["google"], help="Service to authenticate with")
    auth_parser.add_argument("--config", help="Path to configuration file")
    auth_parser.add_argument("--client-secrets", help="Path to Google OAuth client_secrets.json")
    auth_parser.add_argument(
        "--token-file", help="Where to save the token (default: ~/.gdrive-ftp/token.json)"
    )

    return parser.parse_args(argv)


def cmd_serve(args):
    """
    Handle the serve command.

    Loads configuration, authenticates, builds the Drive filesystem and the
    FTP server, and serves until Ctrl+C is pressed.
    """
    drive = None
    worker = None
    server = None

    try:
        # 1. Load Configuration
        config = load_config(
            config_path=args.config,
            host=args.host,
            port=args.port,
            username=args.user,
            password=args.password,
            passive_ports=args.passive_ports,
            token_file=args.token_file,
            root_folder=args.root_folder,
            shared_drive=args.shared_drive,
            foreground_uploads=args.foreground_uploads,
            debug=args.verbose,
        )

        # 2. Setup Logging
        setup_logging(config.logging)
        from . import __version__

        logger.info("Starting gdrive-ftp v%s", __version__)

        # 3. Connect to Google Drive
        credentials = get_credentials(config.gdrive.token_file)
        drive = GoogleDriveFileSystem.from_config(credentials, config.gdrive, config.upload)
        logger.info("Connected to Google Drive")

        # 4. Background upload worker
        if config.upload.background:
            worker = BackgroundTransferWorker(config.upload.workers)

        # 5. FTP server
        server = build_server(config, drive, worker)

        print(f"[OK] Serving Google Drive at ftp://{config.ftp.host}:{config.ftp.port}")
        if not config.ftp.username:
            print("     Access: anonymous, read-only")
        if config.upload.background:
            print("     Uploads: background")
        print("     Press Ctrl+C to stop.")

        try:
            server.serve_forever(handle_exit=False)
        except KeyboardInterrupt:
            print()  # Newline after ^C
            logger.info("Received interrupt, stopping...")

        return 0

    except ValueError as e:
        # Configuration or credential errors
        print(f"[ERROR] {e}")
        return 1
    except FileNotFoundError as e:
        print(f"[ERROR] {e}")
        return 1
    except OSError as e:
        logger.error("Failed to start server: %s", e)
        print(f"[ERROR] Failed to start server: {e}")
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        print(f"[ERROR] Fatal error: {e}")
        return 1
    finally:
        if server is not None:
            logger.info("Stopping FTP server...")
            server.close_all()
        if worker is not None:
            worker.shutdown(wait=True)
        if drive is not None:
            drive.close()
            print("[OK] Server stopped")


def cmd_auth(args):
    """
    Handle the auth command.

    Runs the OAuth flow for a cloud service and saves credentials.
    """
    if args.service == "google":
        from .gdrive_auth import get_token_path, run_auth_flow, save_credentials

        try:
            config = load_config(
                config_path=args.config,
                client_secrets=args.client_secrets,
                token_file=args.token_file,
            )
            if not config.gdrive.client_secrets_file:
                print("[ERROR] --client-secrets is required (or [gdrive] client_secrets_file)")
                return 1

            print("[INFO] Authenticating with Google Drive...")
            creds = run_auth_flow(config.gdrive.client_secrets_file)
            token_path = get_token_path(config.gdrive.token_file)
            save_credentials(creds, token_path)
            print("[OK] Google Drive authorized successfully")
            print(f"     Token saved to: {token_path}")
            print("     You can now start the server with: gdrive-ftp serve")
            return 0
        except FileNotFoundError as e:
            print(f"[ERROR] {e}")
            return 1
        except Exception as e:
            print(f"[ERROR] Authentication failed: {e}")
            return 1
    else:
        print(f"[ERROR] Unknown service: {args.service}")
        return 1


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "auth":
        return cmd_auth(args)
    else:
        print("Usage: gdrive-ftp <command> [options]")
        print()
        print("Commands:")
        print("  serve    Serve Google Drive over FTP")
        print("  auth     Authorize access to Google Drive")
        print()
        print("Run 'gdrive-ftp <command> --help' for more information.")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
