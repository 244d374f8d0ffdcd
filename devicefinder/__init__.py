"""Find a device on the local network by broadcast, mDNS and subnet scan."""

__version__ = "0.1.0"
__all__ = ["__version__"]