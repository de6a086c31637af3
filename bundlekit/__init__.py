"""bundlekit -- discover, unpack and map extension bundle archives."""

__version__ = "0.1.0"
