"""Entry point for running the bot as a module via python -m bots"""

from bots.verification import run

if __name__ == "__main__":
    run()
