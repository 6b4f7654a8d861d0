"""Device core services: control and file-transfer channels, a timeout lock, key-value storage and SHA-1."""

__version__ = "0.0.16"