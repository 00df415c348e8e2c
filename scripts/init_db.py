import logging

from aggregator.config import configure_logging
from aggregator.db.models import Base
from aggregator.db.session import ENGINE, current_engine_url

logger = logging.getLogger(__name__)


def main():
    configure_logging()
    logger.info("Initializing database schema url=%s", current_engine_url())
    Base.metadata.create_all(bind=ENGINE)
    logger.info("Database schema initialized successfully.")


if __name__ == "__main__":
    main()
