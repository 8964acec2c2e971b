import os
import logging
from datetime import datetime

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(service_name, level="INFO", log_dir=None):
    """Configures the root logger so every module's getLogger(__name__) shares one format.

    A dated file handler is added only when ``log_dir`` is given.
    """
    root = logging.getLogger()
    root.setLevel(level)

    formatter = logging.Formatter(FORMAT)

    # Re-running setup (uvicorn reload, tests) must not stack handlers
    for handler in list(root.handlers):
        if getattr(handler, "_audioprint", False):
            root.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler._audioprint = True
    root.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_filename = os.path.join(log_dir, f"{service_name}_{datetime.now().strftime('%Y%m%d')}.log")
        file_handler = logging.FileHandler(log_filename)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler._audioprint = True
        root.addHandler(file_handler)

    return logging.getLogger(service_name)
