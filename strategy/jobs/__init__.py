# PATH: strategy/jobs/__init__.py
"""
Strategy jobs package.

Available entry points:
    python -m strategy.jobs.run_bot --config config/bot.yaml   # Live bot
    python -m strategy.jobs.run_bot --local --once             # Demo market, one cycle

NOTE: This __init__.py does NOT import run_bot, so importing the package
does not pull in the CLI. Import it directly when needed:

    from strategy.jobs.run_bot import build_local_context, supervise
"""

__all__: list[str] = []
