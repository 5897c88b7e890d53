from config import (
    SECRET_KEY,
    WEB_HOST,
    WEB_PORT,
    configure_logging,
    create_staking_repository,
)
from interfaces.web.handlers import create_web_app


def main() -> None:
    if not SECRET_KEY:
        raise RuntimeError("SECRET_KEY environment variable is not set.")

    configure_logging()
    staking_repo = create_staking_repository()

    app = create_web_app(staking_repo, SECRET_KEY)
    app.run(host=WEB_HOST, port=WEB_PORT)


if __name__ == "__main__":
    main()
