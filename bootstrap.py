import logging

from compliance import models  # noqa: F401
from compliance.db import Base, engine


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main():
    Base.metadata.create_all(bind=engine)
    logger.info('Compliance tables ready: %s', ', '.join(sorted(Base.metadata.tables)))


if __name__ == '__main__':
    main()
