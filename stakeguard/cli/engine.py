#!/usr/bin/env python3
"""
StakeGuard Engine CLI

Runs scoring, selection and reward distribution over a validator scenario
described in TOML. A scenario file holds the usual engine configuration
sections plus one ``[[validators]]`` table per validator:

    [scoring.weights]
    performance = 40
    reputation = 30
    uptime = 20
    stake = 10

    reward_pool = 1000

    [[validators]]
    address = "0xA"
    stake = 100
    performance = 90
    reputation = 80
    uptime = 95

Usage:
    stakeguard-engine scores <scenario>
    stakeguard-engine select <scenario>
    stakeguard-engine rewards <scenario> [--pool AMOUNT]
    stakeguard-engine check-config [config]
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import tomli

from stakeguard import __version__
from stakeguard.config import EngineConfig
from stakeguard.engine import StakeGuardEngine
from stakeguard.exceptions import StakeGuardException
from stakeguard.logger import get_logger


def load_scenario(path: str) -> Tuple[EngineConfig, List[Dict[str, Any]], int]:
    """Read a scenario file into (config, validator tables, reward pool)."""
    try:
        with open(path, "rb") as f:
            raw = tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise click.ClickException(f"Invalid TOML in {path}: {e}")

    validators = raw.pop("validators", [])
    reward_pool = raw.pop("reward_pool", 0)
    try:
        config = EngineConfig.from_dict(raw).apply_env()
        config.validate()
    except StakeGuardException as e:
        raise click.ClickException(str(e))
    return config, validators, reward_pool


def build_engine(path: str) -> Tuple[StakeGuardEngine, int]:
    config, validators, reward_pool = load_scenario(path)
    engine = StakeGuardEngine(config=config)
    admin = engine.issue_capability("cli")

    try:
        for entry in validators:
            engine.register_validator(
                admin,
                entry["address"],
                stake=entry.get("stake", 0),
                performance_score=entry.get("performance", 0),
                reputation_score=entry.get("reputation", 0),
                uptime_score=entry.get("uptime", 0),
            )
            if entry.get("disqualified"):
                engine.disqualify(admin, entry["address"])
    except KeyError as e:
        raise click.ClickException(f"Validator entry missing field {e}")
    except StakeGuardException as e:
        raise click.ClickException(str(e))

    return engine, reward_pool


@click.group()
@click.version_option(version=__version__, prog_name="stakeguard-engine")
@click.option("--verbose", "-v", is_flag=True, help="Show engine log output")
def cli(verbose: bool):
    """StakeGuard Engine Command Line Interface

    Inspect validator scoring, selection and reward distribution.
    """
    get_logger("stakeguard").setLevel(logging.INFO if verbose else logging.WARNING)


@cli.command("scores")
@click.argument("scenario", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def scores_cmd(scenario: str, as_json: bool):
    """Show the merit score of every eligible validator, best first."""
    engine, _ = build_engine(scenario)
    ranking = engine.ranking()

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in ranking], indent=2))
        return

    if not ranking:
        click.echo(click.style("No eligible validators", fg="yellow"))
        return

    click.echo(click.style(f"{'Validator':<44} {'Score':>8}", bold=True))
    for record in ranking:
        click.echo(f"{record.address:<44} {record.total_score:>8}")


@cli.command("select")
@click.argument("scenario", type=click.Path(exists=True))
def select_cmd(scenario: str):
    """Select the best validator for the current epoch."""
    engine, _ = build_engine(scenario)
    result = engine.select_best()

    if not result.selected:
        click.echo(click.style("No eligible validator", fg="yellow"))
        return

    click.echo(click.style("✓ Validator selected", fg="green"))
    click.echo(f"Address: {result.address}")
    click.echo(f"Score:   {result.total_score}")
    click.echo(f"Epoch:   {result.epoch}")


@cli.command("rewards")
@click.argument("scenario", type=click.Path(exists=True))
@click.option("--pool", "-p", type=int, default=None, help="Reward pool (overrides reward_pool)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def rewards_cmd(scenario: str, pool: Optional[int], as_json: bool):
    """Distribute a reward pool pro-rata by merit score."""
    engine, reward_pool = build_engine(scenario)
    amount = reward_pool if pool is None else pool
    admin = engine.issue_capability("cli")

    try:
        engine.fund_pool(admin, amount)
        report = engine.distribute_rewards(admin)
    except StakeGuardException as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    click.echo(click.style(f"{'Validator':<44} {'Reward':>10}", bold=True))
    for address, reward in report.rewards.items():
        click.echo(f"{address:<44} {reward:>10}")
    click.echo()
    click.echo(f"Pool:        {report.total_pool}")
    click.echo(f"Distributed: {report.distributed}")
    if report.dust:
        click.echo(click.style(f"Dust:        {report.dust}", fg="yellow"))


@cli.command("check-config")
@click.argument("config_file", type=click.Path(), default="stakeguard.toml")
def check_config_cmd(config_file: str):
    """Validate an engine configuration file."""
    if not Path(config_file).exists():
        click.echo(click.style(f"{config_file} not found, checking defaults", fg="yellow"))
    try:
        config = EngineConfig.from_file(config_file)
    except StakeGuardException as e:
        raise click.ClickException(str(e))

    click.echo(click.style("✓ Configuration valid", fg="green"))
    click.echo(json.dumps(config.to_dict(), indent=2))


def main():
    cli()


if __name__ == "__main__":
    main()
