import uvicorn

from vault_categorizer.core import settings
from vault_categorizer.logger import get_logging_config


def main() -> None:
    uvicorn.run(
        "vault_categorizer.app:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    main()
