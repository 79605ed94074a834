"""SSHDesk - desktop SSH client with encrypted credentials and live sessions."""

__version__ = "0.1.0"
