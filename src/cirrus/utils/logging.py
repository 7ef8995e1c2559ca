import logging
import sys


def get_logger(name: str | None = None):
    logger = logging.getLogger("cirrus")
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
    if name:
        return logger.getChild(name)
    return logger


def signature_logger():
    # canonical strings only; secrets and derived keys are never logged
    return get_logger("signature")
