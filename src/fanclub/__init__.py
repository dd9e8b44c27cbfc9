"""FanClub API: user accounts and their lifecycle side effects."""
