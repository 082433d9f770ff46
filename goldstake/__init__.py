"""
GoldStake Bridge

A custodial bridge between the XRP Ledger and the bridge database that provides:
- Live intake of stake and swap payments to the pool wallets
- Exactly-once settlement of swap, unstake and claim payouts
- Fixed-APR reward accrual with pool rollover
- Recovery of payments missed while offline
"""

__version__ = "0.1.0"
__author__ = "GoldStake Team"
