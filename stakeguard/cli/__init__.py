"""
StakeGuard command line tools.
"""
