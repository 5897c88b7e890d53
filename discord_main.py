from config import DISCORD_TOKEN, configure_logging, create_staking_repository
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    if not DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    configure_logging()
    staking_repo = create_staking_repository()

    bot = create_discord_bot(staking_repo)
    bot.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
