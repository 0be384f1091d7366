import os
import logging
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")


def _level_overrides():
    """ Parse SPOTSWAP_LOGLEVELS ("module=LEVEL,*=LEVEL") into a dict.
    """
    spec = os.environ.get("SPOTSWAP_LOGLEVELS", "")
    overrides = {}
    for item in spec.split(","):
        if "=" not in item:
            continue
        k, v = item.split("=", 1)
        overrides[k.strip()] = v.strip()
    return overrides


def logger(name):
    logger        = logging.getLogger(name)
    logger.NOTICE = NOTICE
    logger.DEBUG  = logging.DEBUG

    is_sam_local = os.environ.get("AWS_SAM_LOCAL") == "true"
    log_level    = logging.DEBUG if is_sam_local else logging.INFO

    overrides = _level_overrides()
    if name in overrides or "*" in overrides:
        module_level = overrides[name] if name in overrides else overrides["*"]
        level = getattr(logging, module_level, None)
        if level is None and module_level == "NOTICE":
            level = NOTICE
        if not isinstance(level, int):
            logger.warning("Invalid log level: %s" % module_level)
        else:
            log_level = level

    logger.setLevel(log_level)
    logger.propagate = False

    # Module reload (tests, warm Lambda) must not stack handlers
    if not logger.handlers:
        ch = logging.StreamHandler()
        extra_logging = "%(asctime)s - " if is_sam_local else ""
        formatter = logging.Formatter("[%%(levelname)s] %s%%(filename)s:%%(lineno)d - %%(message)s" % extra_logging)
        ch.setFormatter(formatter)
        logger.addHandler(ch)
    for h in logger.handlers:
        h.setLevel(log_level)
    return logger
