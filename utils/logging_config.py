import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_level="INFO"):
    """
    Configures logging for the application.

    Safe to call more than once: the stdout handler installed by an earlier
    call is replaced rather than duplicated.
    """
    root = logging.getLogger()
    root.setLevel(log_level)

    for existing in list(root.handlers):
        if getattr(existing, "_flowgraph_handler", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler._flowgraph_handler = True  # type: ignore[attr-defined]

    formatter = logging.Formatter(LOG_FORMAT)
    handler.setFormatter(formatter)

    root.addHandler(handler)
    return handler
