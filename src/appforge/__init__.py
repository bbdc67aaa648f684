# AppForge orchestration package init
import logging
import os

__version__ = "0.1.0"


def _configure_logging() -> None:
    level_name = (os.getenv("APPFORGE_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("appforge")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[APPFORGE][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    llm_level_name = (os.getenv("APPFORGE_LLM_LOG_LEVEL") or level_name).upper()
    llm_level = getattr(logging, llm_level_name, level)
    logging.getLogger("appforge.llm").setLevel(llm_level)


_configure_logging()
