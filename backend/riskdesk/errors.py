from __future__ import annotations


class PortfolioNotFoundError(Exception):
    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio {portfolio_id} not found.")
        self.portfolio_id = portfolio_id


class SnapshotPersistenceError(Exception):
    def __init__(self, portfolio_id: str, benchmark: str) -> None:
        super().__init__(f"Failed to persist snapshot for {portfolio_id} ({benchmark}).")
        self.portfolio_id = portfolio_id
        self.benchmark = benchmark
