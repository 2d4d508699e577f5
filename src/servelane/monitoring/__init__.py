"""Dashboard registration for deployed APIs."""
