import logging

import uvicorn

from storefront.config import settings
from storefront.db.sqlite import init_db


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    init_db()

    uvicorn.run("storefront.web.main:app", host="127.0.0.1", port=8000, log_config=None)

if __name__ == "__main__":
    main()
