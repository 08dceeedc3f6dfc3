"""
Fixed parameters of the sweepstakes.

These values define the public rules of a round.
Changing them changes eligibility or payout and MUST be publicly announced.
"""

# SOL uses 9 decimals; lamports are the ledger's base unit
SOL_DECIMALS = 9
LAMPORTS_PER_SOL = 10**SOL_DECIMALS

# Round length in minutes
DEFAULT_GAME_DURATION_MINUTES = 20

# Minimum SOL spent by the payer for a purchase to count as an entry
DEFAULT_MIN_SOL_AMOUNT = "0.040"

# Maximum number of entrants drawn into the shortlist
SHORTLIST_CAP = 25

# Share of admitted volume credited to the prize pool (10% of 1%)
DEFAULT_PRIZE_POOL_FRACTION = "0.001"

# Commitment level used for every ledger read
COMMITMENT = "confirmed"

# Placeholder values shipped in example .env files; treated as "not configured"
PLACEHOLDER_MINTS = {
    "INSERT_YOUR_MAINNET_TOKEN_MINT_ADDRESS_HERE",
    "INSERT_YOUR_DEVNET_TOKEN_MINT_ADDRESS_HERE",
    "INSERT_YOUR_TESTNET_TOKEN_MINT_ADDRESS_HERE",
}

# Notification event names
EVENT_NEW_PARTICIPANT = "new_participant"
EVENT_WINNER_DECLARED = "winner_declared"
EVENT_NEW_GAME_STARTED = "new_game_started"
