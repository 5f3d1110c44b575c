"""protodesc - schema-driven protobuf descriptor registry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("protodesc")
except PackageNotFoundError:
    __version__ = "(local)"
