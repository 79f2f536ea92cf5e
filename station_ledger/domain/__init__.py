"""Pure functional core of the ledger: clock, DTOs, balance math, dates and reports."""
