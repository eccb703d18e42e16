"""
Activity Engine — background rollup and achievement runner.
Entry point for the headless process.
"""

import faulthandler
import logging
import sys

faulthandler.enable()

from PySide6.QtCore import QCoreApplication

from activity_engine.config import EngineSettings
from activity_engine.data.database import Database
from activity_engine.engine import build_engine
from activity_engine.errors import StoreUnavailableError
from activity_engine.services.tracking_service import TrackingService


def setup_logging(log_file: str) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def main() -> None:
    settings = EngineSettings()
    setup_logging(settings.log_file)
    logger = logging.getLogger(__name__)
    logger.info("Starting activity engine...")

    app = QCoreApplication(sys.argv)
    app.setApplicationName("ActivityEngine")
    app.setOrganizationName("ActivityEngine")

    try:
        engine = build_engine(Database(settings.db_path), settings)
    except StoreUnavailableError:
        logger.exception("Cannot open the activity store")
        sys.exit(1)

    tracking = TrackingService(engine.rollups, engine.achievements)
    tracking.start(settings.check_interval_min)
    app.aboutToQuit.connect(tracking.stop)
    app.aboutToQuit.connect(engine.close)

    exit_code = app.exec()
    logger.info("Activity engine exited with code %d", exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
