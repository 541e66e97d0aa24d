# src/veledger/ledger/constants.py
from __future__ import annotations

"""Protocol constants.

Defaults for the ve-ledger and the epoch distribution engine. Every value that
governance may tune is copied into state["params"] at genesis; these constants
only seed that copy.
"""

# Token precision (1 unit = 1e-18)
COIN_DECIMALS: int = 18
COIN: int = 10**COIN_DECIMALS

# Epoch cadence: one week
DAY_SECONDS: int = 86_400
EPOCH_SECONDS: int = 7 * DAY_SECONDS

# Maximum lock: 208 epochs (~4 years at weekly epochs)
MAX_LOCK_EPOCHS: int = 208

# Minimum principal accepted by LOCK_CREATE
MIN_LOCK_AMOUNT: int = COIN

# Minimum distances (in epochs) between the current epoch and a lock expiry
MIN_LOCK_EPOCHS_AHEAD: int = 2
MIN_DELEGATION_EPOCHS_AHEAD: int = 3
MIN_UNDELEGATION_EPOCHS_AHEAD: int = 2

# Delegate fees are expressed in basis points
FEE_DENOMINATOR: int = 10_000
MAX_DELEGATE_FEE_BPS: int = 5_000
FEE_INCREASE_DELAY_EPOCHS: int = 2

# Vote migration percentages (basis points)
PERCENT_DENOMINATOR: int = 10_000

# Precision used only to check that an epoch-level subsidy survives division
SUBSIDY_PREVIEW_PRECISION: int = 10**18

# Unclaimed/residual balances become sweepable this many epochs after an epoch
SWEEP_DELAY_EPOCHS: int = 6

# Assets
LOCK_ASSETS = ("VOTE", "VOTE_STAKED")
REWARD_ASSET: str = "REWARD"

# Canonical custody account holding locked principal and epoch funding
VAULT_ACCOUNT_ID: str = "VAULT"
SYSTEM_ACCOUNT_ID: str = "SYSTEM"
# accounts that never hold signing keys
RESERVED_ACCOUNT_IDS = (VAULT_ACCOUNT_ID, SYSTEM_ACCOUNT_ID)

# Accumulator roles
ROLE_PERSONAL: str = "personal"
ROLE_DELEGATE: str = "delegate"
ROLES = (ROLE_PERSONAL, ROLE_DELEGATE)

# Epoch stages
EPOCH_VOTING: str = "voting"
EPOCH_ENDED: str = "ended"
EPOCH_VERIFIED: str = "verified"
EPOCH_PROCESSED: str = "processed"
EPOCH_FINALIZED: str = "finalized"
EPOCH_STAGES = (EPOCH_VOTING, EPOCH_ENDED, EPOCH_VERIFIED, EPOCH_PROCESSED, EPOCH_FINALIZED)
