import logging
from importlib import metadata as importlib_metadata


try:
    __version__ = importlib_metadata.version(__package__)
except importlib_metadata.PackageNotFoundError:
    # running from a source checkout that was never installed
    __version__ = "0+unknown"


# Register traffic is logged one level below DEBUG.
if not hasattr(logging, "TRACE"):
    logging.addLevelName(5, "TRACE")
    logging.TRACE = 5
    logging.Logger.trace = lambda self, msg, *args, **kwargs: \
        self.log(logging.TRACE, msg, *args, **kwargs)


from .registers import Filter, Variant
from .device import *
