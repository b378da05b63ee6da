"""
StakeGuard Package

Validator incentive and discipline engine: merit scoring, selection,
reputation-scaled slashing with appeals, pro-rata rewards and
reputation-weighted voting.

Core imports are lazily loaded so the CLI and config tools stay light:

    from stakeguard.engine import StakeGuardEngine
    from stakeguard.config import load_config
    from stakeguard.exceptions import PreconditionViolation
"""

__version__ = "1.0.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'StakeGuardEngine':
        from .engine import StakeGuardEngine
        return StakeGuardEngine
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'stakeguard' has no attribute {name!r}")

__all__ = ['StakeGuardEngine', 'load_config', '__version__']
