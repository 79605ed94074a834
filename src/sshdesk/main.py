"""Main application entry point for SSHDesk."""

import sys
from pathlib import Path

import webview

from .api import SSHDeskAPI
from .config import Config
from .exceptions import SSHDeskError
from .logger import Logger

UI_DIR = Path(__file__).parent / "ui"

FALLBACK_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>SSHDesk</title>
    <style>
        body {
            font-family: Arial, sans-serif;
            text-align: center;
            padding: 50px;
            background: #1a1a1a;
            color: #fff;
        }
    </style>
</head>
<body>
    <h1>SSHDesk</h1>
    <p>User interface not installed. The session API is available as window.pywebview.api.</p>
</body>
</html>
"""


def load_html_template() -> str:
    """Load the bundled UI page, or a placeholder when none is installed."""
    template_path = UI_DIR / "index.html"
    if not template_path.exists():
        return FALLBACK_HTML
    return template_path.read_text(encoding="utf-8")


def main():
    """Main application entry point."""
    config = Config()
    Logger(config.log_file)
    logger = Logger.get_logger(__name__)

    logger.info("=== SSHDesk Starting ===")
    logger.info(f"Config directory: {config.config_dir}")

    config.ensure_config_dir()
    api = SSHDeskAPI(config)

    try:
        window = webview.create_window(
            title=config.get_app_title(),
            html=load_html_template(),
            js_api=api,
            width=config.window_width,
            height=config.window_height,
            min_size=(config.window_min_width, config.window_min_height),
        )
        api.attach_window(window)
        logger.info("WebView window created")

        webview.start(debug=False)
    finally:
        api.cleanup()
        logger.info("=== SSHDesk Shutdown ===")


def run():
    try:
        main()
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except SSHDeskError as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    run()
