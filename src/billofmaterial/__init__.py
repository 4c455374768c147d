"""Software Bill of Materials generation for npm projects."""

__version__ = "0.3.0"
