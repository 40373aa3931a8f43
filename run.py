import logging
import logging.config
from pathlib import Path

import uvicorn

from timetable_import.core.config import settings
from timetable_import.core.logs import build_log_config

if __name__ == "__main__":
    level_name = "DEBUG" if settings.debug else settings.log_level.upper()
    log_file = None
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        log_file = settings.log_file
    log_config = build_log_config(level_name, log_file)
    # Configure now to ensure any early logs use our formatter.
    logging.config.dictConfig(log_config)
    # Use import string so the app is imported after logging is configured.
    uvicorn.run(
        "timetable_import.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_config=log_config,
        log_level=level_name.lower(),
    )
