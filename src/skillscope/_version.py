from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("skillscope")
except PackageNotFoundError:
    # source tree that was never installed
    __version__ = "0.0.0"
