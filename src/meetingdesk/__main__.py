from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import uvicorn

from meetingdesk.app import create_app
from meetingdesk.config import apply_env_overrides, load_frontend_config
from meetingdesk.home import ensure_meetingdesk_layout, resolve_meetingdesk_home


def main() -> None:
    home = resolve_meetingdesk_home()
    paths = ensure_meetingdesk_layout(home)
    config = apply_env_overrides(load_frontend_config(paths))

    # Configure logging
    log_file = paths.log_path
    logging.basicConfig(
        level=config.logging.level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RotatingFileHandler(
                log_file,
                maxBytes=config.logging.max_size_mb * 1024 * 1024,
                backupCount=config.logging.backup_count,
            ),
            logging.StreamHandler(),
        ],
    )

    uvicorn.run(create_app(), host=config.network.bind_host, port=config.network.port)


if __name__ == "__main__":
    main()
