"""Token sniper - detect new Solana tokens, match rule sets, execute guarded buys."""

__version__ = "0.1.0"
